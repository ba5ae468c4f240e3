"""
Metrics for pairing runs.

Pure aggregation over a finished run. Nothing here feeds back into pairing
decisions; the numbers exist for threshold tuning and dashboards.
"""

from collections import Counter
from datetime import datetime, timezone
from typing import Dict, Iterable, List, Sequence

import numpy as np

from photo_pairing.models.schemas import (
    BrandStats,
    Candidate,
    FeatureRow,
    Pair,
    PairingMetrics,
    PairingThresholds,
    PairingTotals,
    ResolutionStats,
    Role,
    ScoreStats,
    SingletonRecord,
)

UNKNOWN_BRAND = "Unknown"


def reason_bucket(reason: str) -> str:
    """Collapse free-form decline reasons into histogram keys."""
    if reason.startswith("declined despite candidates"):
        return "declined_despite_candidates"
    if reason == "no candidates":
        return "no_candidates"
    return "other"


def reason_histogram(records: Iterable[SingletonRecord]) -> Dict[str, int]:
    return dict(Counter(reason_bucket(r.reason) for r in records))


def brand_breakdown(rows: Sequence[FeatureRow], pairs: Sequence[Pair]) -> Dict[str, BrandStats]:
    """Fronts and paired fronts per brand. URL comparison is case-insensitive."""
    paired_fronts = {p.front_url.lower() for p in pairs}
    counts: Dict[str, List[int]] = {}

    for row in rows:
        if row.role != Role.FRONT:
            continue
        brand = row.brand_norm or UNKNOWN_BRAND
        fronts_paired = counts.setdefault(brand, [0, 0])
        fronts_paired[0] += 1
        if row.url.lower() in paired_fronts:
            fronts_paired[1] += 1

    return {
        brand: BrandStats(
            fronts=fronts,
            paired=paired,
            pair_rate=round(paired / fronts, 2) if fronts else 0.0
        )
        for brand, (fronts, paired) in sorted(counts.items())
    }


def score_stats(candidates_by_front: Dict[str, List[Candidate]]) -> ScoreStats:
    scores = np.array(
        [c.score for cands in candidates_by_front.values() for c in cands],
        dtype=float
    )
    if scores.size == 0:
        return ScoreStats()
    return ScoreStats(
        mean=round(float(np.mean(scores)), 3),
        median=round(float(np.median(scores)), 3),
        max=round(float(np.max(scores)), 3)
    )


def build_metrics(
    rows: Sequence[FeatureRow],
    candidates_by_front: Dict[str, List[Candidate]],
    auto_pairs: Sequence[Pair],
    model_pairs: Sequence[Pair],
    singleton_records: Sequence[SingletonRecord],
    remaining_singletons: Sequence[FeatureRow],
    thresholds: PairingThresholds,
    duration_ms: int,
    solo_promotions: int = 0,
    extras_attached: int = 0,
    pair_extras: int = 0
) -> PairingMetrics:
    """
    Build the write-once summary for a run.

    Args:
        rows: Every input row
        candidates_by_front: Candidate lists as produced by the generator
        auto_pairs: Pairs accepted by threshold rules
        model_pairs: Pairs accepted through model assist
        singleton_records: Rows handed to singleton resolution, with reasons
        remaining_singletons: Rows still unresolved at the end
        thresholds: Configuration the run used
        duration_ms: Wall-clock run time
    """
    fronts = sum(1 for r in rows if r.role == Role.FRONT)
    backs = sum(1 for r in rows if r.role in (Role.BACK, Role.OTHER))

    return PairingMetrics(
        totals=PairingTotals(
            images=len(rows),
            fronts=fronts,
            backs=backs,
            candidates=sum(len(c) for c in candidates_by_front.values()),
            auto_pairs=len(auto_pairs),
            model_pairs=len(model_pairs),
            singletons=len(remaining_singletons)
        ),
        by_brand=brand_breakdown(rows, list(auto_pairs) + list(model_pairs)),
        reasons=reason_histogram(singleton_records),
        resolution=ResolutionStats(
            pair_extras=pair_extras,
            solo_promotions=solo_promotions,
            extras_attached=extras_attached,
            remaining=len(remaining_singletons)
        ),
        score_stats=score_stats(candidates_by_front),
        thresholds=thresholds,
        timestamp=datetime.now(timezone.utc),
        duration_ms=max(0, int(duration_ms))
    )


def format_metrics_log(m: PairingMetrics) -> str:
    t = m.totals
    return (
        f"METRICS images={t.images} fronts={t.fronts} backs={t.backs} "
        f"candidates={t.candidates} autoPairs={t.auto_pairs} modelPairs={t.model_pairs} "
        f"singletons={t.singletons} durationMs={m.duration_ms}"
    )
