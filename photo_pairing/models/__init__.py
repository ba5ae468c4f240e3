# Models package
from .schemas import (
    Role,
    AutoPairRule,
    FeatureRow,
    PairingThresholds,
    Candidate,
    Pair,
    SingletonRecord,
    Evidence,
    ProductGroup,
    PairingResult,
    DisambiguationRequest,
    DisambiguationResponse,
    PairingMetrics,
    AuditEvent,
)
