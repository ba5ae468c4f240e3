# Services package
from .invariants import (
    PairingError,
    InvalidFeatureInputError,
    PairingInvariantError,
    check_unique_urls,
    verify_partition
)
from .pool import ImagePool
from .audit import AuditLog
from .candidates import CandidateGenerator, jaccard, capture_session_prefix
from .auto_pair import AutoPairDecider, AutoPairOutcome, select_rule, score_gap
from .disambiguator import (
    Disambiguator,
    LLMDisambiguator,
    ModelAssistGateway,
    ModelAssistOutcome
)
from .extras import ExtrasGrouper, match_extra
from .singletons import SingletonResolver, ResolveResult
from .metrics import build_metrics, format_metrics_log
from .config import (
    PairingSettings,
    load_thresholds_from_env,
    load_settings_from_env,
    model_assist_configured
)
from .pipeline import (
    PairingPipeline,
    PairingRun,
    run_pairing,
    run_pairing_sync,
    get_pairing_pipeline
)
