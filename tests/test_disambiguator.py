"""Tests for model-assisted disambiguation and its fail-closed gateway."""

import asyncio

import pytest

from photo_pairing.models.schemas import DisambiguationRequest, DisambiguationResponse, PairingThresholds
from photo_pairing.services.audit import AuditLog
from photo_pairing.services.candidates import CandidateGenerator
from photo_pairing.services.disambiguator import (
    LLMDisambiguator,
    ModelAssistGateway,
    decline_reason,
)
from photo_pairing.services.pool import ImagePool
from tests.helpers import AlwaysDecline, Broken, Cancelling, Garbled, OutOfList, PickLast, Slow, row


def ambiguous_setup(tied_batch):
    pool = ImagePool(tied_batch)
    candidates = CandidateGenerator(PairingThresholds()).build(tied_batch)
    return pool, {"f.jpg": candidates["f.jpg"]}


def test_decline_reason_format():
    assert decline_reason("variants differ") == "declined despite candidates: variants differ"


def test_response_needs_exactly_one_outcome():
    with pytest.raises(ValueError):
        DisambiguationResponse()
    with pytest.raises(ValueError):
        DisambiguationResponse(back_url="b.jpg", declined=True)
    assert DisambiguationResponse.model_validate({"backUrl": "b.jpg"}).back_url == "b.jpg"


def test_accepted_pair(tied_batch):
    pool, ambiguous = ambiguous_setup(tied_batch)
    picker = PickLast()

    outcome = asyncio.run(ModelAssistGateway(picker).resolve(ambiguous, pool))

    assert picker.calls == 1
    assert len(outcome.pairs) == 1
    pair = outcome.pairs[0]
    assert (pair.front_url, pair.back_url) == ("f.jpg", "b2.jpg")
    assert pair.confidence == 0.90
    assert pair.trigger == "model-assisted-pair"
    assert pair.reasoning == "label text matches"
    assert pool.owner("b2.jpg") == "model-assisted-pair"
    assert pool.is_available("b1.jpg")


def test_explicit_decline(tied_batch):
    pool, ambiguous = ambiguous_setup(tied_batch)

    outcome = asyncio.run(ModelAssistGateway(AlwaysDecline()).resolve(ambiguous, pool))

    assert outcome.pairs == []
    assert outcome.declined[0].reason == "declined despite candidates: variants differ"
    assert outcome.failures == 0


@pytest.mark.parametrize("collaborator, detail", [
    (Slow(), "timeout"),
    (Broken(), "RuntimeError"),
    (Garbled(), "malformed response"),
    (OutOfList(), "not among candidates"),
    (Cancelling(), "cancelled"),
])
def test_fails_closed(tied_batch, collaborator, detail):
    """Every collaborator failure becomes a decline; nothing is paired or raised."""
    pool, ambiguous = ambiguous_setup(tied_batch)
    audit = AuditLog()
    gateway = ModelAssistGateway(collaborator, timeout_s=0.05, audit=audit)

    outcome = asyncio.run(gateway.resolve(ambiguous, pool))

    assert outcome.pairs == []
    assert len(outcome.declined) == 1
    reason = outcome.declined[0].reason
    assert reason.startswith("declined despite candidates")
    assert detail in reason
    assert outcome.failures == 1
    assert [e.decision for e in audit.for_stage("model_assist")].count("model_assist_failed") == 1
    assert all(pool.is_available(r.url) for r in tied_batch)


def test_outer_cancellation_still_propagates(tied_batch):
    """Cancelling the run itself is not swallowed as a decline."""
    gateway = ModelAssistGateway(Slow(), timeout_s=30)
    request = DisambiguationRequest(front=tied_batch[0], candidates=tied_batch[1:])

    async def cancel_midway():
        task = asyncio.create_task(gateway.request(request))
        await asyncio.sleep(0.01)
        task.cancel()
        await task

    with pytest.raises(asyncio.CancelledError):
        asyncio.run(cancel_midway())


def test_low_score_model_pick_rejected():
    """A model pick scoring below the pair floor is declined, not paired."""
    rows = [
        row("f.jpg", "front", "", "hand cream"),
        row("b1.jpg", "back", "", "hand cream"),
        row("b2.jpg", "back", "", "hand cream"),
    ]
    pool = ImagePool(rows)
    candidates = CandidateGenerator(PairingThresholds()).build(rows)
    assert [c.score for c in candidates["f.jpg"]] == [2.0, 2.0]

    outcome = asyncio.run(
        ModelAssistGateway(PickLast(), min_pair_score=3.0).resolve(candidates, pool)
    )

    assert outcome.pairs == []
    assert outcome.declined[0].reason == (
        "declined despite candidates: model-pair rejected: score=2.00 < 3 threshold"
    )
    assert all(pool.is_available(r.url) for r in rows)


def test_pair_floor_is_configurable():
    rows = [
        row("f.jpg", "front", "", "hand cream"),
        row("b1.jpg", "back", "", "hand cream"),
        row("b2.jpg", "back", "", "hand cream"),
    ]
    pool = ImagePool(rows)
    candidates = CandidateGenerator(PairingThresholds()).build(rows)

    outcome = asyncio.run(
        ModelAssistGateway(PickLast(), min_pair_score=2.0).resolve(candidates, pool)
    )

    assert [(p.front_url, p.back_url) for p in outcome.pairs] == [("f.jpg", "b2.jpg")]


def test_not_configured_declines(tied_batch):
    pool, ambiguous = ambiguous_setup(tied_batch)
    outcome = asyncio.run(ModelAssistGateway(None).resolve(ambiguous, pool))
    assert outcome.declined[0].reason == "declined despite candidates: model assist not configured"


def test_tiebreak_disabled_skips_collaborator(tied_batch):
    pool, ambiguous = ambiguous_setup(tied_batch)
    picker = PickLast()

    outcome = asyncio.run(
        ModelAssistGateway(picker, disable_tiebreak=True).resolve(ambiguous, pool)
    )

    assert picker.calls == 0
    assert outcome.declined[0].reason == "declined despite candidates: tiebreak disabled"


def test_request_budget(tied_batch):
    pool, ambiguous = ambiguous_setup(tied_batch)
    picker = PickLast()

    outcome = asyncio.run(
        ModelAssistGateway(picker, max_requests=0).resolve(ambiguous, pool)
    )

    assert picker.calls == 0
    assert "budget exhausted" in outcome.declined[0].reason


def test_claimed_candidates_are_not_offered(tied_batch):
    pool, ambiguous = ambiguous_setup(tied_batch)
    pool.claim("b1.jpg", "auto-pair")
    pool.claim("b2.jpg", "auto-pair")
    picker = PickLast()

    outcome = asyncio.run(ModelAssistGateway(picker).resolve(ambiguous, pool))

    assert picker.calls == 0
    assert outcome.declined[0].reason == (
        "declined despite candidates: candidates claimed by earlier pairs"
    )


class TestLLMDisambiguator:
    """Prompt and response handling without calling a provider."""

    def setup_method(self):
        self.llm = LLMDisambiguator(api_key="test-key")

    def test_parse_selection_in_code_fence(self):
        response = self.llm._parse_response('```json\n{"backUrl": "b1.jpg"}\n```')
        assert response.back_url == "b1.jpg"
        assert not response.declined

    def test_parse_decline(self):
        response = self.llm._parse_response('{"declined": true, "reason": "different shade"}')
        assert response.declined
        assert response.reason == "different shade"

    def test_parse_garbage_raises(self):
        with pytest.raises(ValueError):
            self.llm._parse_response("I think it is the second one")
        with pytest.raises(ValueError):
            self.llm._parse_response("[1, 2]")

    def test_prompt_lists_candidates_in_order(self, tied_batch):
        request = DisambiguationRequest(front=tied_batch[0], candidates=tied_batch[1:])
        prompt = self.llm._build_prompt(request)
        assert "FRONT: url=f.jpg" in prompt
        assert prompt.index("1. url=b1.jpg") < prompt.index("2. url=b2.jpg")

    def test_no_key_declines(self, tied_batch, monkeypatch):
        monkeypatch.delenv("ANTHROPIC_API_KEY", raising=False)
        llm = LLMDisambiguator(api_key=None)
        request = DisambiguationRequest(front=tied_batch[0], candidates=tied_batch[1:])

        response = asyncio.run(llm.disambiguate(request))

        assert response.declined
        assert llm.get_usage_stats()["metrics"]["requests"] == 0

    def test_provider_selection(self):
        assert self.llm._is_anthropic
        assert not LLMDisambiguator(api_key="k", model="gpt-4o-mini")._is_anthropic
