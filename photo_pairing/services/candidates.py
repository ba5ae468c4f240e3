"""
Candidate Generator for front -> back/other image pairing.

For every front image, scores every back/other image in the batch and keeps
an ordered shortlist. Pure function of the rows and thresholds.

Scoring Formula (weights live in PairingThresholds):
    + brand_weight          brandNorm equal (case-insensitive, both non-empty)
    + product_strong_bonus  product token Jaccard >= product_jaccard_strong
      (else product_weak_bonus when >= product_jaccard_weak)
    + variant_bonus         variant token Jaccard >= variant_jaccard_min
    + proximity_bonus       file names share a capture-session prefix
    - other_role_penalty    candidate role is "other" rather than "back"

Candidates scoring below min_pre_score are dropped here and never reach the
auto-pair or model-assist stages.
"""

import logging
import re
import time
from collections import defaultdict
from typing import Dict, List, Optional, Sequence

from photo_pairing.models.schemas import Candidate, FeatureRow, PairingThresholds, Role
from photo_pairing.services.audit import AuditLog

logger = logging.getLogger(__name__)

_DIGIT = re.compile(r"\d")


def jaccard(a: Sequence[str], b: Sequence[str]) -> float:
    """Jaccard similarity of two token sequences (0 when both are empty)."""
    set_a = {t.lower() for t in a if t}
    set_b = {t.lower() for t in b if t}
    union = set_a | set_b
    if not union:
        return 0.0
    return len(set_a & set_b) / len(union)


def basename(url: str) -> str:
    """File name part of a URL or path, without query string."""
    return (url or "").split("?")[0].rstrip("/").split("/")[-1]


def capture_session_prefix(url: str, length: int = 9) -> str:
    """
    Timestamp-like prefix of the file name, e.g. ``20251115_`` from
    ``20251115_142814.jpg``. Empty when the name is too short or the prefix
    has no digits (so ``IMG_`` style names never count as a session).
    """
    prefix = basename(url)[:length].lower()
    if len(prefix) < length or not _DIGIT.search(prefix):
        return ""
    return prefix


class CandidateGenerator:
    """
    Builds per-front candidate lists.

    Ordering within a list: score desc, product Jaccard desc, brand match
    first, then back_url asc so identical inputs always produce identical
    lists.
    """

    def __init__(
        self,
        thresholds: PairingThresholds,
        audit: Optional[AuditLog] = None,
        max_back_front_ratio: int = 3,
        max_build_ms: int = 2000
    ):
        self.thresholds = thresholds
        self.audit = audit or AuditLog()
        self.max_back_front_ratio = max_back_front_ratio
        self.max_build_ms = max_build_ms

    def score(self, front: FeatureRow, other: FeatureRow) -> Candidate:
        """Score a single front/other pair."""
        t = self.thresholds
        score = 0.0

        brand_match = bool(front.brand_key) and front.brand_key == other.brand_key
        if brand_match:
            score += t.brand_weight

        prod_jac = jaccard(front.product_tokens, other.product_tokens)
        if prod_jac >= t.product_jaccard_strong:
            score += t.product_strong_bonus
        elif prod_jac >= t.product_jaccard_weak:
            score += t.product_weak_bonus

        var_jac = jaccard(front.variant_tokens, other.variant_tokens)
        if var_jac >= t.variant_jaccard_min:
            score += t.variant_bonus

        front_prefix = capture_session_prefix(front.url, t.proximity_prefix_len)
        proximity = bool(front_prefix) and front_prefix == capture_session_prefix(
            other.url, t.proximity_prefix_len
        )
        if proximity:
            score += t.proximity_bonus

        if other.role != Role.BACK:
            score -= t.other_role_penalty

        return Candidate(
            front_url=front.url,
            back_url=other.url,
            score=round(score, 4),
            brand_match=brand_match,
            product_jaccard=round(prod_jac, 4),
            variant_jaccard=round(var_jac, 4),
            proximity=proximity
        )

    def candidates_for(
        self,
        front: FeatureRow,
        others: Sequence[FeatureRow]
    ) -> List[Candidate]:
        """Scored, pruned, ordered and truncated candidates for one front."""
        kept = []
        for other in others:
            if other.url == front.url or other.role == Role.FRONT:
                continue
            cand = self.score(front, other)
            if cand.score >= self.thresholds.min_pre_score:
                kept.append(cand)

        kept.sort(key=lambda c: (
            -c.score,
            -c.product_jaccard,
            not c.brand_match,
            c.back_url
        ))
        return kept[:self.thresholds.max_candidates_per_front]

    def build(self, rows: Sequence[FeatureRow]) -> Dict[str, List[Candidate]]:
        """
        Candidate lists for every front in ``rows``, keyed by front url.

        Fronts with no surviving candidates map to an empty list so callers
        can tell "no candidates" apart from "not a front".
        """
        start = time.perf_counter()

        fronts = sorted((r for r in rows if r.role == Role.FRONT), key=lambda r: r.url)
        others = sorted(
            (r for r in rows if r.role in (Role.BACK, Role.OTHER)),
            key=lambda r: r.url
        )

        result: Dict[str, List[Candidate]] = {}
        for front in fronts:
            result[front.url] = self.candidates_for(front, others)
            self.audit.record(
                "candidates",
                "scored",
                url=front.url,
                count=len(result[front.url]),
                top=result[front.url][0].score if result[front.url] else None
            )

        build_ms = int((time.perf_counter() - start) * 1000)
        if build_ms > self.max_build_ms:
            self.audit.record(
                "candidates",
                "slow_candidate_build",
                reason=f"took {build_ms}ms (threshold {self.max_build_ms}ms)"
            )

        self._warn_overloaded_backs(result)

        logger.info(
            f"Built candidates for {len(fronts)} fronts against {len(others)} "
            f"back/other images in {build_ms}ms"
        )
        return result

    def _warn_overloaded_backs(self, candidates: Dict[str, List[Candidate]]) -> None:
        """A back shortlisted under many fronts usually means thresholds are too loose."""
        fronts_by_back: Dict[str, List[str]] = defaultdict(list)
        for front_url, cands in candidates.items():
            for c in cands:
                fronts_by_back[c.back_url].append(front_url)

        for back_url in sorted(fronts_by_back):
            fronts = fronts_by_back[back_url]
            if len(fronts) >= self.max_back_front_ratio:
                self.audit.record(
                    "candidates",
                    "overloaded_back",
                    url=back_url,
                    reason=f"appears under {len(fronts)} fronts; consider raising min_pre_score",
                    fronts=len(fronts)
                )
