"""
Working set of not-yet-assigned images for a single pairing run.

Stages claim images through the pool instead of filtering lists, so an image
can only ever be owned by one stage.
"""

from typing import Dict, List, Optional

from photo_pairing.models.schemas import FeatureRow
from photo_pairing.services.invariants import PairingInvariantError


class ImagePool:
    """Insertion-ordered index of the batch with claim tracking."""

    def __init__(self, rows: List[FeatureRow]):
        self._rows: Dict[str, FeatureRow] = {r.url: r for r in rows}
        self._claimed: Dict[str, str] = {}

    def __len__(self) -> int:
        return len(self._rows)

    def __contains__(self, url: str) -> bool:
        return url in self._rows

    def get(self, url: str) -> Optional[FeatureRow]:
        return self._rows.get(url)

    def is_available(self, url: str) -> bool:
        return url in self._rows and url not in self._claimed

    def claim(self, url: str, owner: str) -> FeatureRow:
        """Mark ``url`` as assigned to ``owner``. Claiming twice is a defect."""
        if url not in self._rows:
            raise PairingInvariantError(f"{owner} claimed unknown image {url}")
        if url in self._claimed:
            raise PairingInvariantError(
                f"{owner} claimed {url}, already claimed by {self._claimed[url]}"
            )
        self._claimed[url] = owner
        return self._rows[url]

    def owner(self, url: str) -> Optional[str]:
        return self._claimed.get(url)

    def unclaimed(self) -> List[FeatureRow]:
        """Rows nobody has claimed, in input order."""
        return [r for url, r in self._rows.items() if url not in self._claimed]
