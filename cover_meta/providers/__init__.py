from __future__ import annotations

from dataclasses import dataclass
from typing import List, Optional, Protocol

from ..models import AlbumIdentity


@dataclass(frozen=True, slots=True)
class CoverCandidate:
    """A discovered cover: either a URL to download or inline image bytes."""

    source: str
    url: Optional[str] = None
    data: Optional[bytes] = None
    release_id: Optional[str] = None
    score: float = 0.0


class CoverDiscovery(Protocol):
    name: str

    def lookup(self, identity: AlbumIdentity) -> List[CoverCandidate]:
        """Return candidates best first; raise NoCandidates or DiscoveryUnavailable."""
        ...

    def fetch(self, candidate: CoverCandidate) -> bytes:
        ...


__all__ = ["CoverCandidate", "CoverDiscovery"]
