"""
Model-Assisted Disambiguator for fronts the threshold rules could not settle.

The collaborator (an LLM behind ``LLMDisambiguator`` by default) receives one
front plus its score-ordered candidates and answers with a back URL or an
explicit decline. ``ModelAssistGateway`` wraps any collaborator with a bounded
timeout and fails closed: timeouts, provider errors, malformed answers and
answers outside the candidate list all become declines, never exceptions.
"""

import asyncio
import json
import logging
import os
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from pydantic import ValidationError

from photo_pairing.models.schemas import (
    Candidate,
    DisambiguationRequest,
    DisambiguationResponse,
    Pair,
    SingletonRecord,
)
from photo_pairing.services.audit import AuditLog
from photo_pairing.services.pool import ImagePool

logger = logging.getLogger(__name__)

DECLINED_PREFIX = "declined despite candidates"
MODEL_PAIR_CONFIDENCE = 0.90
MODEL_PAIR_TRIGGER = "model-assisted-pair"

_CODE_FENCE = re.compile(r"```(?:json)?")


def decline_reason(detail: str) -> str:
    return f"{DECLINED_PREFIX}: {detail}" if detail else DECLINED_PREFIX


class Disambiguator:
    """Collaborator contract. Subclasses override ``disambiguate``."""

    async def disambiguate(self, request: DisambiguationRequest) -> DisambiguationResponse:
        raise NotImplementedError


class LLMDisambiguator(Disambiguator):
    """
    Asks an LLM to pick the matching back for one front.

    Uses Claude by default; model names without "claude"/"anthropic" go to
    OpenAI. Token usage is tracked for cost monitoring.
    """

    def __init__(
        self,
        api_key: Optional[str] = None,
        model: str = "claude-3-haiku-20240307",
        max_tokens: int = 256
    ):
        """
        Initialize the disambiguator.

        Args:
            api_key: API key for the LLM provider. If None, reads from env.
            model: Model to use.
            max_tokens: Response token cap.
        """
        self.model = model
        self.max_tokens = max_tokens
        self.api_key = api_key or (
            os.getenv("ANTHROPIC_API_KEY") if self._is_anthropic else os.getenv("OPENAI_API_KEY")
        )
        self._client = None
        self._total_tokens_used = 0

        self.metrics = {
            "requests": 0,
            "selected": 0,
            "declined": 0,
            "errors": 0
        }

        if not self.api_key:
            logger.warning(
                "LLM disambiguator has no API key; every request will be declined. "
                "Set ANTHROPIC_API_KEY or OPENAI_API_KEY to enable."
            )
        else:
            logger.info(f"LLM disambiguator initialized with model: {model}")

    @property
    def _is_anthropic(self) -> bool:
        name = self.model.lower()
        return "claude" in name or "anthropic" in name

    @property
    def client(self):
        """Lazy-load the provider's async client."""
        if self._client is None:
            if self._is_anthropic:
                import anthropic
                self._client = anthropic.AsyncAnthropic(api_key=self.api_key)
            else:
                import openai
                self._client = openai.AsyncOpenAI(api_key=self.api_key)
        return self._client

    async def disambiguate(self, request: DisambiguationRequest) -> DisambiguationResponse:
        if not self.api_key:
            return DisambiguationResponse.decline("model assist unavailable (no API key)")

        self.metrics["requests"] += 1
        try:
            prompt = self._build_prompt(request)
            text = await self._call_llm(prompt)
            response = self._parse_response(text)
        except Exception:
            self.metrics["errors"] += 1
            raise

        if response.declined:
            self.metrics["declined"] += 1
        else:
            self.metrics["selected"] += 1
        return response

    def _build_prompt(self, request: DisambiguationRequest) -> str:
        """Build the pairing prompt. Candidates keep their score order."""
        front = request.front
        lines = []
        for i, cand in enumerate(request.candidates, start=1):
            lines.append(
                f"{i}. url={cand.url} role={cand.role.value} brand={cand.brand_norm or 'unknown'} "
                f"product={' '.join(cand.product_tokens) or '-'} "
                f"variant={' '.join(cand.variant_tokens) or '-'}"
            )
        candidates_block = "\n".join(lines)

        return f"""You match product photos. The FRONT image below belongs to exactly one physical product.
Decide which candidate image (if any) is the BACK of the same product.

FRONT: url={front.url} brand={front.brand_norm or 'unknown'} product={' '.join(front.product_tokens) or '-'} variant={' '.join(front.variant_tokens) or '-'}

CANDIDATES (best heuristic score first):
{candidates_block}

Rules:
1. Brand must agree unless one side is unknown.
2. Product line and variant (flavor, shade, size) must agree.
3. Only choose a url from the candidate list.
4. If none clearly matches, decline.

Respond with JSON only, one of:
{{"backUrl": "<candidate url>"}}
{{"declined": true, "reason": "<short explanation>"}}"""

    async def _call_llm(self, prompt: str) -> str:
        """Call the LLM API. Override this for different providers."""
        if self._is_anthropic:
            return await self._call_anthropic(prompt)
        return await self._call_openai(prompt)

    async def _call_anthropic(self, prompt: str) -> str:
        response = await self.client.messages.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0,
            messages=[{"role": "user", "content": prompt}]
        )

        if hasattr(response, 'usage'):
            input_tokens = getattr(response.usage, 'input_tokens', 0)
            output_tokens = getattr(response.usage, 'output_tokens', 0)
            self._total_tokens_used += input_tokens + output_tokens
            logger.debug(
                f"Disambiguation tokens: {input_tokens} input, "
                f"{output_tokens} output (total: {self._total_tokens_used})"
            )

        return response.content[0].text

    async def _call_openai(self, prompt: str) -> str:
        response = await self.client.chat.completions.create(
            model=self.model,
            max_tokens=self.max_tokens,
            temperature=0,
            response_format={"type": "json_object"},
            messages=[{"role": "user", "content": prompt}]
        )
        if getattr(response, 'usage', None) is not None:
            self._total_tokens_used += getattr(response.usage, 'total_tokens', 0) or 0
        return response.choices[0].message.content or ""

    def _parse_response(self, text: str) -> DisambiguationResponse:
        """Parse the model's JSON answer. Raises ValueError when malformed."""
        cleaned = _CODE_FENCE.sub("", text or "").strip()
        try:
            payload = json.loads(cleaned)
        except json.JSONDecodeError as e:
            raise ValueError(f"response is not JSON: {cleaned[:80]!r}") from e
        if not isinstance(payload, dict):
            raise ValueError("response is not a JSON object")
        return DisambiguationResponse.model_validate(payload)

    def get_usage_stats(self) -> Dict[str, Any]:
        return {
            "total_tokens_used": self._total_tokens_used,
            "metrics": self.metrics.copy()
        }


@dataclass
class ModelAssistOutcome:
    pairs: List[Pair] = field(default_factory=list)
    declined: List[SingletonRecord] = field(default_factory=list)
    failures: int = 0


class ModelAssistGateway:
    """
    Fail-closed front door to a Disambiguator.

    Guarantees for every ambiguous front exactly one of: an accepted pair whose
    back came from that front's candidate list and was still unclaimed, or a
    decline with a recorded reason.
    """

    def __init__(
        self,
        disambiguator: Optional[Disambiguator],
        timeout_s: float = 20.0,
        max_requests: int = 100,
        disable_tiebreak: bool = False,
        min_pair_score: float = 3.0,
        audit: Optional[AuditLog] = None
    ):
        self.disambiguator = disambiguator
        self.min_pair_score = min_pair_score
        self.timeout_s = timeout_s
        self.max_requests = max_requests
        self.disable_tiebreak = disable_tiebreak
        self.audit = audit or AuditLog()
        self._requests_used = 0
        self.failures = 0

    async def request(self, request: DisambiguationRequest) -> DisambiguationResponse:
        """Ask the collaborator, turning every failure mode into a decline."""
        if self.disable_tiebreak:
            return DisambiguationResponse.decline("tiebreak disabled")
        if self.disambiguator is None:
            return DisambiguationResponse.decline("model assist not configured")
        if self._requests_used >= max(0, self.max_requests):
            return DisambiguationResponse.decline("model assist budget exhausted")

        self._requests_used += 1
        try:
            response = await asyncio.wait_for(
                self.disambiguator.disambiguate(request),
                timeout=self.timeout_s
            )
        except asyncio.TimeoutError:
            return self._failure(request, f"model assist timeout after {self.timeout_s:g}s")
        except asyncio.CancelledError:
            # Only a cancellation aimed at this task may escape
            task = asyncio.current_task()
            if task is not None and task.cancelling():
                raise
            return self._failure(request, "model assist cancelled")
        except (ValidationError, ValueError) as e:
            return self._failure(request, f"malformed response: {str(e)[:80]}")
        except Exception as e:
            return self._failure(request, f"model assist error: {type(e).__name__}: {str(e)[:80]}")

        if not isinstance(response, DisambiguationResponse):
            return self._failure(request, "malformed response: unexpected type")

        if not response.declined:
            allowed = {c.url for c in request.candidates}
            if response.back_url not in allowed:
                return self._failure(
                    request,
                    f"malformed response: back {response.back_url} not among candidates"
                )
        return response

    def _failure(self, request: DisambiguationRequest, detail: str) -> DisambiguationResponse:
        self.failures += 1
        self.audit.record(
            "model_assist",
            "model_assist_failed",
            url=request.front.url,
            reason=detail
        )
        return DisambiguationResponse.decline(detail)

    async def resolve(
        self,
        ambiguous: Dict[str, List[Candidate]],
        pool: ImagePool
    ) -> ModelAssistOutcome:
        """Settle every ambiguous front, in url order."""
        outcome = ModelAssistOutcome()
        failures_before = self.failures

        for front_url in sorted(ambiguous):
            if not pool.is_available(front_url):
                continue
            front = pool.get(front_url)
            live = [c for c in ambiguous[front_url] if pool.is_available(c.back_url)]
            scores = {c.back_url: c for c in live}

            if not live:
                self._decline(outcome, front_url, "candidates claimed by earlier pairs")
                continue

            request = DisambiguationRequest(
                front=front,
                candidates=[pool.get(c.back_url) for c in live]
            )
            response = await self.request(request)

            if response.declined:
                self._decline(outcome, front_url, response.reason)
                continue

            chosen = scores[response.back_url]
            if chosen.score < self.min_pair_score:
                self._decline(
                    outcome,
                    front_url,
                    f"model-pair rejected: score={chosen.score:.2f} < {self.min_pair_score:g} threshold"
                )
                continue

            pool.claim(front_url, MODEL_PAIR_TRIGGER)
            pool.claim(chosen.back_url, MODEL_PAIR_TRIGGER)
            outcome.pairs.append(Pair(
                front_url=front_url,
                back_url=chosen.back_url,
                score=chosen.score,
                confidence=MODEL_PAIR_CONFIDENCE,
                trigger=MODEL_PAIR_TRIGGER,
                reasoning=response.reason or None
            ))
            self.audit.record(
                "model_assist",
                "accepted",
                url=front_url,
                back=chosen.back_url,
                score=chosen.score,
                rank=live.index(chosen) + 1
            )

        outcome.failures = self.failures - failures_before
        logger.info(
            f"Model assist: {len(outcome.pairs)} accepted, {len(outcome.declined)} declined "
            f"({outcome.failures} collaborator failures)"
        )
        return outcome

    def _decline(self, outcome: ModelAssistOutcome, front_url: str, detail: str) -> None:
        reason = decline_reason(detail)
        outcome.declined.append(SingletonRecord(url=front_url, reason=reason))
        self.audit.record("model_assist", "declined", url=front_url, reason=reason)
