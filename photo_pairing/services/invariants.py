"""
Partition checks for pairing output.

Every input URL must end up exactly once: as a group's front, back or extra,
or as a remaining singleton. A violation is an internal defect, never a
data-quality problem, so it raises instead of being logged and skipped.
"""

from collections import Counter
from typing import Iterable, List

from photo_pairing.models.schemas import FeatureRow, PairingResult


class PairingError(Exception):
    """Base class for pairing engine errors."""


class InvalidFeatureInputError(PairingError, ValueError):
    """The feature batch cannot be paired as given (e.g. duplicate URLs)."""


class PairingInvariantError(PairingError, AssertionError):
    """An image was dropped, duplicated or claimed twice."""


def check_unique_urls(rows: Iterable[FeatureRow]) -> None:
    counts = Counter(r.url for r in rows)
    dupes = sorted(url for url, n in counts.items() if n > 1)
    if dupes:
        raise InvalidFeatureInputError(f"Duplicate image URLs in batch: {dupes[:5]}")


def verify_partition(rows: List[FeatureRow], result: PairingResult) -> None:
    """Raise PairingInvariantError unless ``result`` partitions ``rows``."""
    assigned: List[str] = []
    for group in result.products:
        assigned.extend(group.urls())
    assigned.extend(s.url for s in result.remaining_singletons)

    counts = Counter(assigned)
    duplicated = sorted(url for url, n in counts.items() if n > 1)
    if duplicated:
        raise PairingInvariantError(f"URLs assigned more than once: {duplicated[:5]}")

    expected = {r.url for r in rows}
    missing = sorted(expected - counts.keys())
    if missing:
        raise PairingInvariantError(f"URLs dropped from output: {missing[:5]}")

    unknown = sorted(counts.keys() - expected)
    if unknown:
        raise PairingInvariantError(f"URLs in output that were never input: {unknown[:5]}")
