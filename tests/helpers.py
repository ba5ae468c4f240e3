"""Shared builders for pairing tests."""

import asyncio

from photo_pairing.models.schemas import DisambiguationResponse, FeatureRow
from photo_pairing.services.disambiguator import Disambiguator


def row(url, role="front", brand="", product="", variant="", **kwargs):
    """FeatureRow from space-separated token strings."""
    return FeatureRow(
        url=url,
        role=role,
        brand_norm=brand,
        product_tokens=product.split(),
        variant_tokens=variant.split(),
        **kwargs
    )


class PickLast(Disambiguator):
    """Chooses the lowest-ranked candidate so tests can tell it from auto-pair."""

    def __init__(self):
        self.calls = 0

    async def disambiguate(self, request):
        self.calls += 1
        return DisambiguationResponse(back_url=request.candidates[-1].url, reason="label text matches")


class AlwaysDecline(Disambiguator):
    async def disambiguate(self, request):
        return DisambiguationResponse.decline("variants differ")


class Slow(Disambiguator):
    async def disambiguate(self, request):
        await asyncio.sleep(5)
        return DisambiguationResponse(back_url=request.candidates[0].url)


class Broken(Disambiguator):
    async def disambiguate(self, request):
        raise RuntimeError("provider unavailable")


class Garbled(Disambiguator):
    async def disambiguate(self, request):
        raise ValueError("response is not JSON")


class OutOfList(Disambiguator):
    async def disambiguate(self, request):
        return DisambiguationResponse(back_url="elsewhere/not-a-candidate.jpg")


class Cancelling(Disambiguator):
    """An SDK that cancels its own internal work and lets the error surface."""

    async def disambiguate(self, request):
        raise asyncio.CancelledError()
