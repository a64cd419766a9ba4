from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Dict, Iterator, List, Optional

import musicbrainzngs

import cover_meta

from ..config import DiscoverySettings
from ..errors import DiscoveryUnavailable, NoCandidates
from ..heuristics import token_overlap_ratio
from ..models import AlbumIdentity
from . import CoverCandidate

logger = logging.getLogger(__name__)

APP_NAME = "cover-meta"
MIN_TITLE_OVERLAP = 0.5
SEARCH_LIMIT = 10
HTTP_NOT_FOUND = 404


class _NotFound(Exception):
    pass


class MusicBrainzCoverArt:
    """Release search on MusicBrainz, front image from the Cover Art Archive.

    The core calls :meth:`lookup` once per album; network and service errors
    surface as :class:`DiscoveryUnavailable` and are not retried here beyond
    what musicbrainzngs does for transient HTTP failures.
    """

    name = "musicbrainz"

    def __init__(self, settings: DiscoverySettings) -> None:
        self.settings = settings
        musicbrainzngs.set_useragent(APP_NAME, cover_meta.__version__, contact=settings.contact)
        musicbrainzngs.set_hostname(settings.musicbrainz_host, use_https=settings.use_https)
        musicbrainzngs.set_caa_hostname(settings.coverart_host, use_https=settings.use_https)

    def lookup(self, identity: AlbumIdentity) -> List[CoverCandidate]:
        if not identity.album:
            raise NoCandidates(f"no album name for {identity}")
        candidates: List[CoverCandidate] = []
        for release in self._search(identity):
            url = self._front_image(release["id"])
            if url:
                candidates.append(
                    CoverCandidate(
                        source=self.name,
                        url=url,
                        release_id=release["id"],
                        score=_score(release) / 100.0,
                    )
                )
            if len(candidates) >= self.settings.max_candidates:
                break
        if not candidates:
            raise NoCandidates(f"no cover art found for {identity}")
        logger.debug("Found %d cover candidate(s) for %s", len(candidates), identity)
        return candidates

    def fetch(self, candidate: CoverCandidate) -> bytes:
        if candidate.data is not None:
            return candidate.data
        if not candidate.release_id:
            raise NoCandidates("candidate has neither data nor release")
        try:
            with _service_errors("Cover Art Archive download"):
                return musicbrainzngs.get_image_front(candidate.release_id, size=self.settings.image_size)
        except _NotFound as exc:
            raise NoCandidates(f"front cover of release {candidate.release_id} vanished") from exc

    def _search(self, identity: AlbumIdentity) -> List[Dict[str, Any]]:
        query: Dict[str, str] = {"release": identity.album or ""}
        if identity.artist:
            query["artist"] = identity.artist
        try:
            with _service_errors("MusicBrainz release search"):
                response = musicbrainzngs.search_releases(limit=SEARCH_LIMIT, **query)
        except _NotFound:
            return []
        releases = [
            release
            for release in response.get("release-list", [])
            if release.get("id")
            and token_overlap_ratio(identity.album, release.get("title")) >= MIN_TITLE_OVERLAP
        ]
        releases.sort(key=_score, reverse=True)
        return releases

    def _front_image(self, release_id: str) -> Optional[str]:
        try:
            with _service_errors("Cover Art Archive listing"):
                listing = musicbrainzngs.get_image_list(release_id)
        except _NotFound:
            logger.debug("No Cover Art Archive entry for release %s", release_id)
            return None
        for image in listing.get("images", []):
            if image.get("front"):
                return image.get("image")
        return None


@contextmanager
def _service_errors(label: str) -> Iterator[None]:
    try:
        yield
    except musicbrainzngs.ResponseError as exc:
        if getattr(exc.cause, "code", None) == HTTP_NOT_FOUND:
            raise _NotFound(label) from exc
        raise DiscoveryUnavailable(f"{label} failed: {exc}") from exc
    except musicbrainzngs.WebServiceError as exc:
        raise DiscoveryUnavailable(f"{label} failed: {exc}") from exc


def _score(release: Dict[str, Any]) -> int:
    try:
        return int(release.get("ext:score", 0))
    except (TypeError, ValueError):
        return 0
