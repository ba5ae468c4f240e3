"""Test fixtures for pairing tests."""

import pytest

from tests.helpers import row


@pytest.fixture
def mixed_batch():
    """
    One clean pair, one uniquely-branded front with nothing to pair, an
    "other" shot of the paired brand and an unbranded back.
    """
    return [
        row("shots/20251115_100000.jpg", "front", "Acme", "vitamin c serum", "30ml"),
        row("shots/20251115_100005.jpg", "back", "acme", "vitamin c serum", "30ml"),
        row("shots/IMG_0002.jpg", "front", "Nordic", "fish oil"),
        row("shots/IMG_0003.jpg", "other", "Acme", "gift box"),
        row("shots/IMG_0004.jpg", "back", "", "receipt"),
    ]


@pytest.fixture
def tied_batch():
    """A front with two equally good backs."""
    return [
        row("f.jpg", "front", "Acme", "shampoo"),
        row("b1.jpg", "back", "Acme", "shampoo"),
        row("b2.jpg", "back", "Acme", "shampoo"),
    ]
