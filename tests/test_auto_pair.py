"""Tests for the threshold-based auto-pair rules."""

import math

from photo_pairing.models.schemas import AutoPairRule, Candidate, PairingThresholds
from photo_pairing.services.auto_pair import (
    CLAIMED_BY_EARLIER,
    NO_CANDIDATES,
    AutoPairDecider,
    score_gap,
    select_rule,
)
from photo_pairing.services.candidates import CandidateGenerator
from photo_pairing.services.pool import ImagePool
from tests.helpers import row


def cands(*scores):
    return [
        Candidate(front_url="f.jpg", back_url=f"b{i}.jpg", score=s)
        for i, s in enumerate(scores)
    ]


def test_score_gap():
    assert score_gap(cands(5.0, 3.5)) == 1.5
    assert math.isinf(score_gap(cands(5.0)))
    assert score_gap([]) == 0.0


def test_gap_enforced_even_for_high_scores():
    """A strong top candidate is not accepted while the runner-up is close."""
    front = row("f.jpg")
    thresholds = PairingThresholds()

    assert select_rule(front, cands(6.5, 6.0), thresholds) is None
    assert select_rule(front, cands(3.0, 2.0), thresholds) == AutoPairRule.GENERAL
    assert select_rule(front, cands(3.0), thresholds) == AutoPairRule.GENERAL


def test_variance_rule_only_for_variance_prone_fronts():
    thresholds = PairingThresholds()

    plain = row("f.jpg")
    prone = row("f.jpg", variance_prone=True)

    assert select_rule(plain, cands(2.2), thresholds) is None
    assert select_rule(prone, cands(2.2), thresholds) == AutoPairRule.VARIANCE_CATEGORY
    # gap 0.6 is below the variance gap of 0.7
    assert select_rule(prone, cands(2.2, 1.6), thresholds) is None


def test_general_rule_checked_first():
    prone = row("f.jpg", variance_prone=True)
    assert select_rule(prone, cands(5.0), PairingThresholds()) == AutoPairRule.GENERAL


def test_decide_pairs_ambiguous_and_unmatched():
    rows = [
        row("clear.jpg", "front", "Acme", "vitamin c serum"),
        row("clear-back.jpg", "back", "Acme", "vitamin c serum"),
        row("tie.jpg", "front", "Bolt", "shampoo"),
        row("tie-b1.jpg", "back", "Bolt", "shampoo"),
        row("tie-b2.jpg", "back", "Bolt", "shampoo"),
        row("lonely.jpg", "front", "Cora", "lip balm"),
    ]
    thresholds = PairingThresholds()
    pool = ImagePool(rows)
    candidates = CandidateGenerator(thresholds).build(rows)

    outcome = AutoPairDecider(thresholds).decide(candidates, pool)

    assert [(p.front_url, p.back_url) for p in outcome.pairs] == [("clear.jpg", "clear-back.jpg")]
    assert outcome.pairs[0].confidence == 0.95
    assert outcome.pairs[0].trigger == "auto-pair"
    assert outcome.pairs[0].gap is None

    assert list(outcome.ambiguous) == ["tie.jpg"]
    assert [c.back_url for c in outcome.ambiguous["tie.jpg"]] == ["tie-b1.jpg", "tie-b2.jpg"]

    assert [(r.url, r.reason) for r in outcome.unmatched] == [("lonely.jpg", NO_CANDIDATES)]

    assert pool.owner("clear.jpg") == "auto-pair"
    assert pool.owner("clear-back.jpg") == "auto-pair"
    assert pool.is_available("tie.jpg")


def test_claimed_back_is_not_reused():
    """Two fronts competing for one back: the first in url order wins."""
    rows = [
        row("a-front.jpg", "front", "Acme", "shampoo"),
        row("b-front.jpg", "front", "Acme", "shampoo"),
        row("back.jpg", "back", "Acme", "shampoo"),
    ]
    thresholds = PairingThresholds()
    pool = ImagePool(rows)
    candidates = CandidateGenerator(thresholds).build(rows)

    outcome = AutoPairDecider(thresholds).decide(candidates, pool)

    assert [(p.front_url, p.back_url) for p in outcome.pairs] == [("a-front.jpg", "back.jpg")]
    assert [r.url for r in outcome.unmatched] == ["b-front.jpg"]
    assert outcome.unmatched[0].reason == CLAIMED_BY_EARLIER
    assert outcome.unmatched[0].reason.startswith("declined despite candidates")


def test_variance_pair_confidence():
    thresholds = PairingThresholds(auto_pair_score=5.5, auto_pair_hair_score=4.5)
    rows = [
        row("f.jpg", "front", "Acme", "argan shampoo", variance_prone=True),
        row("b.jpg", "back", "Acme", "argan shampoo"),
    ]
    pool = ImagePool(rows)
    candidates = CandidateGenerator(thresholds).build(rows)

    outcome = AutoPairDecider(thresholds).decide(candidates, pool)

    assert len(outcome.pairs) == 1
    assert outcome.pairs[0].trigger == "auto-pair-variance-category"
    assert outcome.pairs[0].confidence == 0.90
