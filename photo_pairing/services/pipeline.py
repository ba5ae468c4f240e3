"""
Pairing pipeline orchestration.

Candidate Generation -> Auto-Pair -> Model Assist (ambiguous fronts only)
-> merge + extras -> Singleton Resolution -> Metrics

Every stage works on the run's own ImagePool; nothing is shared between runs.
The only await point is the model-assist call, which is bounded by a timeout
and fails closed.
"""

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence

from photo_pairing.models.schemas import (
    AuditEvent,
    Candidate,
    Evidence,
    FeatureRow,
    Pair,
    PairingMetrics,
    PairingResult,
    PairingThresholds,
    ProductGroup,
    SingletonRecord,
)
from photo_pairing.services.audit import AuditLog
from photo_pairing.services.auto_pair import AutoPairDecider
from photo_pairing.services.candidates import CandidateGenerator
from photo_pairing.services.config import (
    PairingSettings,
    load_settings_from_env,
    load_thresholds_from_env,
    model_assist_configured,
)
from photo_pairing.services.disambiguator import (
    Disambiguator,
    LLMDisambiguator,
    ModelAssistGateway,
)
from photo_pairing.services.extras import ExtrasGrouper
from photo_pairing.services.invariants import check_unique_urls, verify_partition
from photo_pairing.services.metrics import build_metrics, format_metrics_log
from photo_pairing.services.pool import ImagePool
from photo_pairing.services.singletons import SingletonResolver

logger = logging.getLogger(__name__)


@dataclass
class PairingRun:
    """Everything a run produces. Discarded by the engine once returned."""
    run_id: str
    result: PairingResult
    metrics: PairingMetrics
    candidates: Dict[str, List[Candidate]] = field(default_factory=dict)
    auto_pairs: List[Pair] = field(default_factory=list)
    model_pairs: List[Pair] = field(default_factory=list)
    singleton_records: List[SingletonRecord] = field(default_factory=list)
    audit: List[AuditEvent] = field(default_factory=list)


def pair_to_group(pair: Pair, pool: ImagePool) -> ProductGroup:
    front = pool.get(pair.front_url)
    back = pool.get(pair.back_url)
    product_tokens = front.product_tokens or back.product_tokens
    variant_tokens = front.variant_tokens or back.variant_tokens
    return ProductGroup(
        product_id=f"pair:{pair.front_url}",
        front_url=pair.front_url,
        back_url=pair.back_url,
        extras=[],
        evidence=Evidence(
            brand=front.brand_norm or back.brand_norm,
            product=" ".join(product_tokens),
            variant=" ".join(variant_tokens) or None,
            match_score=round(pair.score, 1),
            confidence=pair.confidence,
            triggers=[pair.trigger],
            gap=pair.gap,
            reasoning=pair.reasoning
        )
    )


class PairingPipeline:
    """
    Runs one batch through every pairing stage.

    Usage:
        pipeline = PairingPipeline(thresholds, disambiguator=LLMDisambiguator())
        run = await pipeline.run(rows)
    """

    def __init__(
        self,
        thresholds: Optional[PairingThresholds] = None,
        disambiguator: Optional[Disambiguator] = None,
        settings: Optional[PairingSettings] = None
    ):
        self.thresholds = thresholds or PairingThresholds()
        self.settings = settings or PairingSettings()
        self.disambiguator = disambiguator if self.settings.model_assist_enabled else None

    async def run(
        self,
        rows: Sequence[FeatureRow],
        on_progress: Optional[Callable[[str, int, int], None]] = None
    ) -> PairingRun:
        """
        Pair one batch.

        Args:
            rows: One FeatureRow per image, in upload order
            on_progress: Optional callback(stage, current, total)

        Returns:
            PairingRun with the result, metrics and audit trail

        Raises:
            InvalidFeatureInputError: duplicate URLs in ``rows``
            PairingInvariantError: an image was dropped or assigned twice
        """
        start = time.perf_counter()
        rows = list(rows)
        check_unique_urls(rows)

        run_id = uuid.uuid4().hex[:12]
        audit = AuditLog(run_id=run_id)
        pool = ImagePool(rows)
        logger.info(f"Pairing run {run_id}: {len(rows)} images")

        def progress(stage: str, current: int, total: int) -> None:
            if on_progress:
                on_progress(stage, current, total)

        # 1. Candidates
        progress("candidates", 0, len(rows))
        generator = CandidateGenerator(
            self.thresholds,
            audit=audit,
            max_back_front_ratio=self.settings.max_back_front_ratio,
            max_build_ms=self.settings.max_candidate_build_ms
        )
        candidates = generator.build(rows)

        # 2. Auto-pair
        progress("auto_pair", 0, len(candidates))
        auto = AutoPairDecider(self.thresholds, audit=audit).decide(candidates, pool)

        # 3. Model assist for the ambiguous subset
        progress("model_assist", 0, len(auto.ambiguous))
        gateway = ModelAssistGateway(
            self.disambiguator,
            timeout_s=self.settings.model_timeout_s,
            max_requests=self.settings.max_model_requests,
            disable_tiebreak=self.settings.disable_tiebreak,
            min_pair_score=self.thresholds.min_model_pair_score,
            audit=audit
        )
        assisted = await gateway.resolve(auto.ambiguous, pool)

        # 4. Merge accepted pairs into groups and attach their "other" shots
        pairs = auto.pairs + assisted.pairs
        products = [pair_to_group(p, pool) for p in pairs]
        pair_extras = ExtrasGrouper(
            max_extras_per_product=self.thresholds.max_extras_per_product,
            audit=audit
        ).attach(products, pool)

        # 5. Everything unclaimed goes to singleton resolution, in input order
        reasons = {r.url: r.reason for r in auto.unmatched + assisted.declined}
        leftovers = pool.unclaimed()
        singleton_records = [
            SingletonRecord(url=r.url, reason=reasons.get(r.url, f"unpaired {r.role.value}"))
            for r in leftovers
        ]
        progress("singletons", 0, len(leftovers))
        resolved = SingletonResolver(audit=audit).resolve(leftovers, products, pool)

        result = PairingResult(
            products=resolved.products,
            remaining_singletons=resolved.remaining_singletons
        )
        verify_partition(rows, result)

        # 6. Metrics
        duration_ms = int((time.perf_counter() - start) * 1000)
        metrics = build_metrics(
            rows=rows,
            candidates_by_front=candidates,
            auto_pairs=auto.pairs,
            model_pairs=assisted.pairs,
            singleton_records=singleton_records,
            remaining_singletons=resolved.remaining_singletons,
            thresholds=self.thresholds,
            duration_ms=duration_ms,
            solo_promotions=resolved.solo_promotions,
            extras_attached=resolved.extras_attached,
            pair_extras=pair_extras
        )
        logger.info(format_metrics_log(metrics))
        logger.debug(f"Audit decisions: {audit.decision_counts()}")
        logger.info(
            f"SUMMARY run={run_id} frontsWithCandidates="
            f"{sum(1 for c in candidates.values() if c)}/{len(candidates)} "
            f"autoPairs={len(auto.pairs)} modelPairs={len(assisted.pairs)} "
            f"products={len(result.products)} singletons={len(result.remaining_singletons)}"
        )
        progress("completed", len(rows), len(rows))

        return PairingRun(
            run_id=run_id,
            result=result,
            metrics=metrics,
            candidates=candidates,
            auto_pairs=auto.pairs,
            model_pairs=assisted.pairs,
            singleton_records=singleton_records,
            audit=audit.events
        )


async def run_pairing(
    rows: Sequence[FeatureRow],
    thresholds: Optional[PairingThresholds] = None,
    disambiguator: Optional[Disambiguator] = None,
    settings: Optional[PairingSettings] = None
) -> PairingRun:
    return await PairingPipeline(thresholds, disambiguator, settings).run(rows)


def run_pairing_sync(
    rows: Sequence[FeatureRow],
    thresholds: Optional[PairingThresholds] = None,
    disambiguator: Optional[Disambiguator] = None,
    settings: Optional[PairingSettings] = None
) -> PairingRun:
    """Blocking wrapper for scripts and tests without an event loop."""
    return asyncio.run(run_pairing(rows, thresholds, disambiguator, settings))


# Singleton instance
_pairing_pipeline: Optional[PairingPipeline] = None


def get_pairing_pipeline() -> PairingPipeline:
    """Get or create the environment-configured PairingPipeline."""
    global _pairing_pipeline
    if _pairing_pipeline is None:
        settings = load_settings_from_env()
        disambiguator = None
        if settings.model_assist_enabled and model_assist_configured():
            disambiguator = LLMDisambiguator(model=settings.model)
        _pairing_pipeline = PairingPipeline(
            thresholds=load_thresholds_from_env(),
            disambiguator=disambiguator,
            settings=settings
        )
    return _pairing_pipeline
