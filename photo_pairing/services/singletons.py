"""
Singleton Resolver.

Recovers every image the pairing stages left unclaimed, in input order:

1. Solo promotion: an original front whose brand is not yet used by any
   group becomes its own product (no back).
2. Attach as extra: otherwise the image joins the best group scored as
   ``2 * brandMatch + 1 * filenamePrefixMatch`` when that score is >= 2.
3. True singleton: anything left is reported as-is.

Rule 1 always runs before rule 2, so a uniquely-branded front is never
filed as an extra of an unrelated group. Solos promoted earlier in the pass
count as existing groups for later rows.
"""

import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence, Tuple

from photo_pairing.models.schemas import Evidence, FeatureRow, ProductGroup, Role
from photo_pairing.services.audit import AuditLog
from photo_pairing.services.pool import ImagePool

logger = logging.getLogger(__name__)

SOLO_TRIGGER = "solo-product-unique-brand"
SOLO_CONFIDENCE = 0.5
BRAND_MATCH_WEIGHT = 2
PREFIX_MATCH_WEIGHT = 1
MIN_EXTRA_SCORE = 2
PREFIX_LEN = 9  # e.g. "20251115_"


@dataclass
class ResolveResult:
    products: List[ProductGroup]
    remaining_singletons: List[FeatureRow] = field(default_factory=list)
    solo_promotions: int = 0
    extras_attached: int = 0


def group_brand(group: ProductGroup) -> str:
    return (group.evidence.brand or "").strip().lower()


def extra_score(row: FeatureRow, group: ProductGroup, prefix_len: int = PREFIX_LEN) -> int:
    """Affinity of a leftover row for an existing group."""
    brand = row.brand_key
    brand_match = 1 if brand and brand == group_brand(group) else 0

    prefix = (row.url or "")[:prefix_len]
    prefix_match = 1 if prefix and prefix in (group.front_url or "") else 0

    return BRAND_MATCH_WEIGHT * brand_match + PREFIX_MATCH_WEIGHT * prefix_match


def best_group(
    row: FeatureRow,
    products: Sequence[ProductGroup],
    prefix_len: int = PREFIX_LEN
) -> Tuple[Optional[ProductGroup], int]:
    """Highest-scoring group for ``row``; the earliest group wins ties."""
    best, best_score = None, 0
    for group in products:
        score = extra_score(row, group, prefix_len)
        if score > best_score:
            best, best_score = group, score
    return best, best_score


def solo_group(row: FeatureRow) -> ProductGroup:
    return ProductGroup(
        product_id=f"solo:{row.url}",
        front_url=row.url,
        back_url="",
        extras=[],
        evidence=Evidence(
            brand=row.brand_norm,
            product=" ".join(row.product_tokens),
            variant=" ".join(row.variant_tokens) or None,
            match_score=0,
            confidence=SOLO_CONFIDENCE,
            triggers=[SOLO_TRIGGER]
        )
    )


class SingletonResolver:
    """Applies the three resolution rules to leftover rows."""

    def __init__(self, audit: Optional[AuditLog] = None, prefix_len: int = PREFIX_LEN):
        self.audit = audit or AuditLog()
        self.prefix_len = prefix_len

    def resolve(
        self,
        singletons: Sequence[FeatureRow],
        products: List[ProductGroup],
        pool: Optional[ImagePool] = None
    ) -> ResolveResult:
        """
        Resolve ``singletons`` against ``products``.

        ``products`` is extended in place with any solo groups and receives
        extras; the same list is returned in the result. When a pool is
        given, every placed row is claimed in it.
        """
        result = ResolveResult(products=products)
        brands = {group_brand(p) for p in products if group_brand(p)}

        for row in singletons:
            brand = row.brand_key

            if row.original_role == Role.FRONT and brand and brand not in brands:
                group = solo_group(row)
                products.append(group)
                brands.add(brand)
                self._claim(pool, row.url, SOLO_TRIGGER)
                result.solo_promotions += 1
                self.audit.record(
                    "singletons",
                    "solo_product",
                    url=row.url,
                    reason="unique brand",
                    brand=brand
                )
                continue

            target, score = best_group(row, products, self.prefix_len)
            if target is not None and score >= MIN_EXTRA_SCORE:
                target.extras.append(row.url)
                self._claim(pool, row.url, f"extra:{target.product_id}")
                result.extras_attached += 1
                self.audit.record(
                    "singletons",
                    "extra",
                    url=row.url,
                    product_id=target.product_id,
                    score=score
                )
                continue

            result.remaining_singletons.append(row)
            self.audit.record(
                "singletons",
                "unresolved",
                url=row.url,
                reason="no matching product or unique brand",
                best_score=score
            )

        logger.info(
            f"Singleton resolution: {result.solo_promotions} solo products, "
            f"{result.extras_attached} extras, {len(result.remaining_singletons)} remaining"
        )
        return result

    @staticmethod
    def _claim(pool: Optional[ImagePool], url: str, owner: str) -> None:
        if pool is not None:
            pool.claim(url, owner)
