"""
Environment-driven configuration for pairing runs.

Thresholds can be overridden per deployment without code changes:

    PAIR_MIN_PRESCORE, PAIR_AUTO_SCORE, PAIR_AUTO_GAP,
    PAIR_AUTO_HAIR_SCORE, PAIR_AUTO_HAIR_GAP, PAIR_MAX_CANDIDATES,
    PAIR_MAX_EXTRAS, PAIR_MIN_MODEL_PAIR_SCORE

Model assist and safety limits:

    PAIR_MODEL, PAIR_MODEL_TIMEOUT_S, PAIR_MAX_MODEL_REQUESTS,
    PAIR_DISABLE_TIEBREAK, PAIR_DISABLE_MODEL_ASSIST,
    PAIR_MAX_BACK_FRONT_RATIO, PAIR_MAX_CANDIDATE_BUILD_MS
"""

import logging
import os
from typing import Dict, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field

from photo_pairing.models.schemas import PairingThresholds

logger = logging.getLogger(__name__)

# env var -> PairingThresholds field
THRESHOLD_ENV = {
    "PAIR_MIN_PRESCORE": "min_pre_score",
    "PAIR_AUTO_SCORE": "auto_pair_score",
    "PAIR_AUTO_GAP": "auto_pair_gap",
    "PAIR_AUTO_HAIR_SCORE": "auto_pair_hair_score",
    "PAIR_AUTO_HAIR_GAP": "auto_pair_hair_gap",
    "PAIR_MAX_CANDIDATES": "max_candidates_per_front",
    "PAIR_MAX_EXTRAS": "max_extras_per_product",
    "PAIR_MIN_MODEL_PAIR_SCORE": "min_model_pair_score",
}


class PairingSettings(BaseModel):
    """Run-level settings that are not scoring thresholds."""
    model_config = ConfigDict(protected_namespaces=())

    model: str = Field(default="claude-3-haiku-20240307")
    model_assist_enabled: bool = Field(default=True)
    model_timeout_s: float = Field(default=20.0, gt=0, description="Bound on each model-assist call")
    max_model_requests: int = Field(default=100, ge=0)
    disable_tiebreak: bool = Field(default=False, description="Decline ambiguous fronts without asking the model")
    max_back_front_ratio: int = Field(default=3, ge=1)
    max_candidate_build_ms: int = Field(default=2000, ge=0)


def _flag(value: Optional[str]) -> bool:
    return (value or "").strip().lower() in ("1", "true", "yes", "on")


def load_thresholds_from_env(
    env: Optional[Mapping[str, str]] = None,
    base: Optional[PairingThresholds] = None
) -> PairingThresholds:
    """Thresholds from ``base`` (or defaults) with PAIR_* overrides applied."""
    env = os.environ if env is None else env
    overrides: Dict[str, str] = {}
    for var, field_name in THRESHOLD_ENV.items():
        raw = env.get(var)
        if raw not in (None, ""):
            overrides[field_name] = raw

    if overrides:
        logger.info(f"Threshold overrides from environment: {overrides}")

    data = (base or PairingThresholds()).model_dump()
    data.update(overrides)
    return PairingThresholds.model_validate(data)


def load_settings_from_env(env: Optional[Mapping[str, str]] = None) -> PairingSettings:
    env = os.environ if env is None else env
    data = {}
    if env.get("PAIR_MODEL"):
        data["model"] = env["PAIR_MODEL"]
    if env.get("PAIR_MODEL_TIMEOUT_S"):
        data["model_timeout_s"] = env["PAIR_MODEL_TIMEOUT_S"]
    if env.get("PAIR_MAX_MODEL_REQUESTS"):
        data["max_model_requests"] = env["PAIR_MAX_MODEL_REQUESTS"]
    if env.get("PAIR_MAX_BACK_FRONT_RATIO"):
        data["max_back_front_ratio"] = env["PAIR_MAX_BACK_FRONT_RATIO"]
    if env.get("PAIR_MAX_CANDIDATE_BUILD_MS"):
        data["max_candidate_build_ms"] = env["PAIR_MAX_CANDIDATE_BUILD_MS"]
    data["disable_tiebreak"] = _flag(env.get("PAIR_DISABLE_TIEBREAK"))
    data["model_assist_enabled"] = not _flag(env.get("PAIR_DISABLE_MODEL_ASSIST"))
    return PairingSettings.model_validate(data)


def model_assist_configured(env: Optional[Mapping[str, str]] = None) -> bool:
    env = os.environ if env is None else env
    return bool(env.get("ANTHROPIC_API_KEY") or env.get("OPENAI_API_KEY"))
