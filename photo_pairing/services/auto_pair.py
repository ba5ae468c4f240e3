"""
Auto-Pair Decider.

Accepts a front's top candidate without outside help when it is both strong
and clearly ahead of the runner-up:

    general:        top >= auto_pair_score       and gap >= auto_pair_gap
    variance-prone: top >= auto_pair_hair_score  and gap >= auto_pair_hair_gap

The gap rule stops confident-looking ties from being accepted. Fronts that
fail both rules but still have candidates are handed on as ambiguous.
"""

import logging
import math
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from photo_pairing.models.schemas import (
    AutoPairRule,
    Candidate,
    FeatureRow,
    Pair,
    PairingThresholds,
    SingletonRecord,
)
from photo_pairing.services.audit import AuditLog
from photo_pairing.services.pool import ImagePool

logger = logging.getLogger(__name__)

NO_CANDIDATES = "no candidates"
CLAIMED_BY_EARLIER = "declined despite candidates: candidates claimed by earlier pairs"

# Confidence assigned to accepted pairs, per rule
AUTO_PAIR_CONFIDENCE = {
    AutoPairRule.GENERAL: 0.95,
    AutoPairRule.VARIANCE_CATEGORY: 0.90,
}


@dataclass
class AutoPairOutcome:
    """What the decider did with each front."""
    pairs: List[Pair] = field(default_factory=list)
    ambiguous: Dict[str, List[Candidate]] = field(default_factory=dict)
    unmatched: List[SingletonRecord] = field(default_factory=list)


def score_gap(candidates: List[Candidate]) -> float:
    """Lead of the top candidate over the runner-up (inf with no runner-up)."""
    if not candidates:
        return 0.0
    runner_up = candidates[1].score if len(candidates) > 1 else -math.inf
    return candidates[0].score - runner_up


def select_rule(
    front: FeatureRow,
    candidates: List[Candidate],
    thresholds: PairingThresholds
) -> Optional[AutoPairRule]:
    """Rule that accepts the top candidate, or None if the call is too close."""
    if not candidates:
        return None
    top = candidates[0].score
    gap = score_gap(candidates)

    if top >= thresholds.auto_pair_score and gap >= thresholds.auto_pair_gap:
        return AutoPairRule.GENERAL
    if (
        front.variance_prone
        and top >= thresholds.auto_pair_hair_score
        and gap >= thresholds.auto_pair_hair_gap
    ):
        return AutoPairRule.VARIANCE_CATEGORY
    return None


class AutoPairDecider:
    """Applies the threshold rules front by front, in url order."""

    def __init__(self, thresholds: PairingThresholds, audit: Optional[AuditLog] = None):
        self.thresholds = thresholds
        self.audit = audit or AuditLog()

    def decide(
        self,
        candidates_by_front: Dict[str, List[Candidate]],
        pool: ImagePool
    ) -> AutoPairOutcome:
        outcome = AutoPairOutcome()

        for front_url in sorted(candidates_by_front):
            if not pool.is_available(front_url):
                continue
            front = pool.get(front_url)

            # Earlier fronts may already have claimed some of these
            live = [
                c for c in candidates_by_front[front_url]
                if pool.is_available(c.back_url)
                and c.score >= self.thresholds.min_pre_score
            ]

            if not live:
                shortlisted = len(candidates_by_front[front_url])
                reason = CLAIMED_BY_EARLIER if shortlisted else NO_CANDIDATES
                outcome.unmatched.append(SingletonRecord(url=front_url, reason=reason))
                self.audit.record(
                    "auto_pair",
                    "candidates_claimed" if shortlisted else "no_candidates",
                    url=front_url,
                    reason=reason,
                    shortlisted=shortlisted
                )
                continue

            rule = select_rule(front, live, self.thresholds)
            gap = score_gap(live)

            if rule is None:
                outcome.ambiguous[front_url] = live
                self.audit.record(
                    "auto_pair",
                    "ambiguous",
                    url=front_url,
                    top=live[0].score,
                    gap=None if math.isinf(gap) else round(gap, 2),
                    candidates=len(live)
                )
                continue

            best = live[0]
            pool.claim(front_url, rule.value)
            pool.claim(best.back_url, rule.value)
            outcome.pairs.append(Pair(
                front_url=front_url,
                back_url=best.back_url,
                score=best.score,
                gap=None if math.isinf(gap) else round(gap, 4),
                confidence=AUTO_PAIR_CONFIDENCE[rule],
                trigger=rule.value
            ))
            self.audit.record(
                "auto_pair",
                "accepted",
                url=front_url,
                back=best.back_url,
                rule=rule.value,
                score=best.score,
                gap=None if math.isinf(gap) else round(gap, 2),
                brand_match=best.brand_match,
                product_jaccard=best.product_jaccard
            )

        logger.info(
            f"Auto-pair: {len(outcome.pairs)} accepted, "
            f"{len(outcome.ambiguous)} ambiguous, {len(outcome.unmatched)} without candidates"
        )
        return outcome
