"""Tests for singleton recovery: solo promotion, extras and leftovers."""

import pytest

from photo_pairing.models.schemas import Evidence, ProductGroup
from photo_pairing.services.invariants import PairingInvariantError
from photo_pairing.services.pool import ImagePool
from photo_pairing.services.singletons import SingletonResolver, extra_score
from tests.helpers import row


def group(front_url, brand, back_url="back.jpg"):
    return ProductGroup(
        product_id=f"pair:{front_url}",
        front_url=front_url,
        back_url=back_url,
        evidence=Evidence(brand=brand, confidence=0.95, triggers=["auto-pair"])
    )


def test_unique_brand_front_becomes_solo_product():
    products = [group("acme-front.jpg", "Acme")]
    singles = [row("zeta.jpg", "front", "Zeta", "night cream", "50ml")]

    result = SingletonResolver().resolve(singles, products)

    assert result.solo_promotions == 1
    solo = products[-1]
    assert solo.product_id == "solo:zeta.jpg"
    assert solo.front_url == "zeta.jpg"
    assert solo.back_url == ""
    assert solo.evidence.triggers == ["solo-product-unique-brand"]
    assert solo.evidence.confidence == 0.5
    assert solo.evidence.match_score == 0
    assert solo.evidence.product == "night cream"
    assert result.remaining_singletons == []


def test_solo_brand_set_grows_during_the_pass():
    """A second front of a freshly promoted brand attaches to that solo."""
    products = []
    singles = [
        row("zeta-1.jpg", "front", "Zeta"),
        row("zeta-2.jpg", "front", "ZETA"),
    ]

    result = SingletonResolver().resolve(singles, products)

    assert [p.product_id for p in products] == ["solo:zeta-1.jpg"]
    assert products[0].extras == ["zeta-2.jpg"]
    assert result.solo_promotions == 1
    assert result.extras_attached == 1


def test_backs_are_never_promoted():
    products = []
    result = SingletonResolver().resolve([row("b.jpg", "back", "Zeta")], products)

    assert products == []
    assert [r.url for r in result.remaining_singletons] == ["b.jpg"]


def test_original_role_decides_promotion():
    """A front demoted by feature extraction still counts as a front."""
    products = []
    single = row("x.jpg", "other", "Zeta", original_role="front")

    SingletonResolver().resolve([single], products)

    assert [p.product_id for p in products] == ["solo:x.jpg"]


def test_extra_score_weights():
    g = group("20251115_100000.jpg", "Acme")

    assert extra_score(row("x.jpg", "back", "acme"), g) == 2
    assert extra_score(row("20251115_200000.jpg", "back", "acme"), g) == 3
    assert extra_score(row("20251115_200000.jpg", "back", "Other"), g) == 1
    assert extra_score(row("x.jpg", "back", ""), group("y.jpg", "")) == 0


@pytest.mark.parametrize("single, attached", [
    (row("b.jpg", "back", "Acme"), True),
    (row("20251115_300000.jpg", "back", ""), False),
    (row("b.jpg", "other", "Bolt"), False),
])
def test_extra_attachment_threshold(single, attached):
    """Prefix alone scores 1 and is not enough; a brand match alone is."""
    products = [group("20251115_100000.jpg", "Acme")]

    result = SingletonResolver().resolve([single], products)

    assert (products[0].extras == [single.url]) is attached
    assert (result.remaining_singletons == []) is attached


def test_ties_go_to_first_group():
    products = [group("first.jpg", "Acme"), group("second.jpg", "Acme", "back2.jpg")]

    SingletonResolver().resolve([row("b.jpg", "back", "Acme")], products)

    assert products[0].extras == ["b.jpg"]
    assert products[1].extras == []


def test_placed_rows_are_claimed_in_pool():
    rows = [
        row("zeta.jpg", "front", "Zeta"),
        row("zeta-back.jpg", "back", "Zeta"),
        row("junk.jpg", "back", ""),
    ]
    pool = ImagePool(rows)

    result = SingletonResolver().resolve(rows, [], pool)

    assert pool.owner("zeta.jpg") == "solo-product-unique-brand"
    assert pool.owner("zeta-back.jpg") == "extra:solo:zeta.jpg"
    assert pool.is_available("junk.jpg")
    assert [r.url for r in result.remaining_singletons] == ["junk.jpg"]


def test_double_claim_is_a_defect():
    pool = ImagePool([row("a.jpg")])
    pool.claim("a.jpg", "auto-pair")
    with pytest.raises(PairingInvariantError):
        pool.claim("a.jpg", "model-assisted-pair")
    with pytest.raises(PairingInvariantError):
        pool.claim("missing.jpg", "auto-pair")
