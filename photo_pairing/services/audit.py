"""
Audit sink for pairing decisions.

Stages report what they decided (stage, decision, image, reason) here rather
than formatting log lines themselves. Each event is kept for the caller and
echoed through ``logging``.
"""

import logging
from collections import Counter
from typing import Any, Dict, List

from photo_pairing.models.schemas import AuditEvent

logger = logging.getLogger(__name__)

# Decisions that deserve WARNING level in the log
_WARN_DECISIONS = {"overloaded_back", "slow_candidate_build", "model_assist_failed"}


class AuditLog:
    """Collects structured events for one run."""

    def __init__(self, run_id: str = ""):
        self.run_id = run_id
        self._events: List[AuditEvent] = []

    def record(
        self,
        stage: str,
        decision: str,
        url: str = "",
        reason: str = "",
        **details: Any
    ) -> AuditEvent:
        event = AuditEvent(
            stage=stage,
            decision=decision,
            url=url,
            reason=reason,
            details=details
        )
        self._events.append(event)

        level = logging.WARNING if decision in _WARN_DECISIONS else logging.INFO
        detail_str = " ".join(f"{k}={v}" for k, v in details.items())
        logger.log(
            level,
            f"[{stage}] {decision.upper()} url={url or '-'}"
            + (f" reason={reason}" if reason else "")
            + (f" {detail_str}" if detail_str else ""),
            extra={"run_id": self.run_id, "stage": stage, "decision": decision}
        )
        return event

    @property
    def events(self) -> List[AuditEvent]:
        return list(self._events)

    def for_stage(self, stage: str) -> List[AuditEvent]:
        return [e for e in self._events if e.stage == stage]

    def decision_counts(self) -> Dict[str, int]:
        return dict(Counter(f"{e.stage}:{e.decision}" for e in self._events))
