"""
Pydantic models for the Photo Pairing Engine
"""

from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class CamelModel(BaseModel):
    """Base model: snake_case in Python, camelCase on the wire."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# =============================================================================
# Enums
# =============================================================================

class Role(str, Enum):
    FRONT = "front"
    BACK = "back"
    OTHER = "other"


class AutoPairRule(str, Enum):
    GENERAL = "auto-pair"
    VARIANCE_CATEGORY = "auto-pair-variance-category"


# =============================================================================
# Input
# =============================================================================

class FeatureRow(CamelModel):
    """One image, as described by the feature-extraction step."""
    url: str = Field(..., min_length=1, description="Stable image identifier")
    role: Role
    original_role: Optional[Role] = Field(None, description="Role assigned by feature extraction")
    brand_norm: str = ""
    product_tokens: List[str] = Field(default_factory=list)
    variant_tokens: List[str] = Field(default_factory=list)
    variance_prone: bool = Field(
        default=False,
        description="Front belongs to a category with high packaging variance (hair/cosmetics)"
    )

    @model_validator(mode="after")
    def _default_original_role(self) -> "FeatureRow":
        if self.original_role is None:
            self.original_role = self.role
        return self

    @property
    def brand_key(self) -> str:
        return (self.brand_norm or "").strip().lower()


class PairingThresholds(CamelModel):
    """Threshold and weight configuration. Immutable for the length of a run."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    min_pre_score: float = Field(default=2.0, description="Candidates below this are pruned")
    auto_pair_score: float = Field(default=2.4)
    auto_pair_gap: float = Field(default=0.8, ge=0)
    auto_pair_hair_score: float = Field(default=2.1)
    auto_pair_hair_gap: float = Field(default=0.7, ge=0)

    # Scoring weights
    brand_weight: float = Field(default=3.0, ge=0)
    product_jaccard_strong: float = Field(default=0.5, ge=0, le=1)
    product_strong_bonus: float = Field(default=2.0, ge=0)
    product_jaccard_weak: float = Field(default=0.3, ge=0, le=1)
    product_weak_bonus: float = Field(default=1.0, ge=0)
    variant_jaccard_min: float = Field(default=0.5, ge=0, le=1)
    variant_bonus: float = Field(default=1.0, ge=0)
    proximity_bonus: float = Field(default=0.5, ge=0)
    proximity_prefix_len: int = Field(default=9, ge=1)
    other_role_penalty: float = Field(default=2.0, ge=0)

    max_candidates_per_front: int = Field(default=4, ge=1, le=50)
    max_extras_per_product: int = Field(default=4, ge=0, description="Cap on 'other' shots attached to an accepted pair")
    min_model_pair_score: float = Field(default=3.0, description="Model-picked pairs scoring below this are rejected")


# =============================================================================
# Intermediate
# =============================================================================

class Candidate(CamelModel):
    """A scored front -> back/other relationship. Lives only for one run."""
    front_url: str
    back_url: str
    score: float
    brand_match: bool = False
    product_jaccard: float = 0.0
    variant_jaccard: float = 0.0
    proximity: bool = False


class Pair(CamelModel):
    """An accepted front/back match, before it becomes a ProductGroup."""
    front_url: str
    back_url: str
    score: float
    gap: Optional[float] = None
    confidence: float = Field(..., ge=0, le=1)
    trigger: str
    reasoning: Optional[str] = None


class SingletonRecord(CamelModel):
    """A row handed to singleton resolution, with the reason it got there."""
    url: str
    reason: str


# =============================================================================
# Output
# =============================================================================

class Evidence(CamelModel):
    brand: str = ""
    product: str = ""
    variant: Optional[str] = None
    match_score: float = 0.0
    confidence: float = Field(..., ge=0, le=1)
    triggers: List[str] = Field(default_factory=list)
    gap: Optional[float] = None
    reasoning: Optional[str] = None


class ProductGroup(CamelModel):
    product_id: str
    front_url: str
    back_url: str = Field("", description="Empty string for solo products")
    extras: List[str] = Field(default_factory=list)
    evidence: Evidence

    def urls(self) -> List[str]:
        out = [self.front_url]
        if self.back_url:
            out.append(self.back_url)
        out.extend(self.extras)
        return out


class PairingResult(CamelModel):
    products: List[ProductGroup] = Field(default_factory=list)
    remaining_singletons: List[FeatureRow] = Field(default_factory=list)


# =============================================================================
# Model-assist boundary
# =============================================================================

class DisambiguationRequest(CamelModel):
    front: FeatureRow
    candidates: List[FeatureRow]


class DisambiguationResponse(CamelModel):
    """Either ``{backUrl}`` or ``{declined: true, reason}``."""
    back_url: Optional[str] = None
    declined: bool = False
    reason: str = ""

    @model_validator(mode="after")
    def _exactly_one_outcome(self) -> "DisambiguationResponse":
        if self.declined and self.back_url:
            raise ValueError("response cannot both select a back and decline")
        if not self.declined and not self.back_url:
            raise ValueError("response must select a back or decline")
        return self

    @classmethod
    def decline(cls, reason: str) -> "DisambiguationResponse":
        return cls(declined=True, reason=reason)


# =============================================================================
# Metrics & audit
# =============================================================================

class PairingTotals(CamelModel):
    images: int = 0
    fronts: int = 0
    backs: int = 0
    candidates: int = 0
    auto_pairs: int = 0
    model_pairs: int = 0
    singletons: int = 0


class BrandStats(CamelModel):
    fronts: int = 0
    paired: int = 0
    pair_rate: float = 0.0


class ResolutionStats(CamelModel):
    pair_extras: int = 0
    solo_promotions: int = 0
    extras_attached: int = 0
    remaining: int = 0


class ScoreStats(CamelModel):
    mean: float = 0.0
    median: float = 0.0
    max: float = 0.0


class PairingMetrics(CamelModel):
    """Write-once run summary."""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, frozen=True)

    totals: PairingTotals
    by_brand: Dict[str, BrandStats] = Field(default_factory=dict)
    reasons: Dict[str, int] = Field(default_factory=dict)
    resolution: ResolutionStats = Field(default_factory=ResolutionStats)
    score_stats: ScoreStats = Field(default_factory=ScoreStats)
    thresholds: PairingThresholds
    timestamp: datetime
    duration_ms: int = Field(..., ge=0)


class AuditEvent(CamelModel):
    stage: str
    decision: str
    url: str = ""
    reason: str = ""
    details: Dict[str, Any] = Field(default_factory=dict)


# =============================================================================
# API
# =============================================================================

class PairingRequest(CamelModel):
    features: List[FeatureRow] = Field(..., min_length=1)
    thresholds: Optional[PairingThresholds] = None


class PairingResponse(CamelModel):
    products: List[ProductGroup]
    remaining_singletons: List[FeatureRow]
    metrics: PairingMetrics
    audit: List[AuditEvent] = Field(default_factory=list)


class HealthResponse(BaseModel):
    """Health check response"""
    model_config = ConfigDict(protected_namespaces=())

    status: str
    version: str
    model_assist_configured: bool
    timestamp: datetime

