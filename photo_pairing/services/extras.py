"""
Extras grouping for accepted pairs.

Runs after pairs are merged and before singleton resolution. Each pair (in
acceptance order) picks up to ``max_extras_per_product`` unclaimed "other"
shots, scored as:

    +3  brand matches the front's or the back's brand
    +1  product tokens overlap with the front or the back
    +1  same folder as the front or the back

A known-brand mismatch rejects the shot outright; at least 2 points are
needed to attach. Whatever is left over still goes to the SingletonResolver.
"""

import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence

from photo_pairing.models.schemas import FeatureRow, ProductGroup, Role
from photo_pairing.services.audit import AuditLog
from photo_pairing.services.pool import ImagePool

logger = logging.getLogger(__name__)

BRAND_SCORE = 3
PRODUCT_OVERLAP_SCORE = 1
SAME_FOLDER_SCORE = 1
MIN_ATTACH_SCORE = 2


@dataclass
class ExtraMatch:
    url: str
    score: int
    reasons: List[str]


def folder(url: str) -> str:
    """Directory part of a URL or path (empty for bare file names)."""
    path = (url or "").split("?")[0]
    return path.rsplit("/", 1)[0] if "/" in path else ""


def match_extra(front: FeatureRow, back: FeatureRow, extra: FeatureRow) -> Optional[ExtraMatch]:
    """Score ``extra`` against one pair; None when it must not attach."""
    if extra.role != Role.OTHER:
        return None

    reasons = []
    score = 0

    brand = extra.brand_key
    if brand and brand in (front.brand_key, back.brand_key):
        reasons.append("brandMatch")
        score += BRAND_SCORE
    elif brand and front.brand_key and back.brand_key:
        return None

    tokens = {t.lower() for t in extra.product_tokens}
    pair_tokens = {t.lower() for t in front.product_tokens + back.product_tokens}
    if tokens & pair_tokens:
        reasons.append("productOverlap")
        score += PRODUCT_OVERLAP_SCORE

    extra_folder = folder(extra.url)
    if extra_folder and extra_folder in (folder(front.url), folder(back.url)):
        reasons.append("sameFolder")
        score += SAME_FOLDER_SCORE

    if score < MIN_ATTACH_SCORE:
        return None
    return ExtraMatch(url=extra.url, score=score, reasons=reasons)


class ExtrasGrouper:
    """Attaches "other" shots to accepted pairs, claiming them in the pool."""

    def __init__(self, max_extras_per_product: int = 4, audit: Optional[AuditLog] = None):
        self.max_extras_per_product = max_extras_per_product
        self.audit = audit or AuditLog()

    def attach(self, products: Sequence[ProductGroup], pool: ImagePool) -> int:
        """Extend each pair group's ``extras`` in place. Returns the number attached."""
        attached = 0

        for group in products:
            if not group.back_url:
                continue
            front = pool.get(group.front_url)
            back = pool.get(group.back_url)

            matches = []
            for extra in pool.unclaimed():
                match = match_extra(front, back, extra)
                if match:
                    matches.append(match)

            # Stable sort keeps input order among equal scores
            matches.sort(key=lambda m: -m.score)
            for match in matches[:self.max_extras_per_product]:
                pool.claim(match.url, f"extra:{group.product_id}")
                group.extras.append(match.url)
                attached += 1
                self.audit.record(
                    "extras",
                    "attached",
                    url=match.url,
                    product_id=group.product_id,
                    score=match.score,
                    reasons="+".join(match.reasons)
                )

        logger.info(f"Extras grouping: {attached} attached to {len(products)} pairs")
        return attached
