import unittest
from types import SimpleNamespace
from typing import Any, Dict, List, Optional
from unittest.mock import patch

from cover_meta.config import DiscoverySettings
from cover_meta.errors import DiscoveryUnavailable, NoCandidates
from cover_meta.models import AlbumIdentity
from cover_meta.providers import CoverCandidate
from cover_meta.providers.coverart import MusicBrainzCoverArt


class _MBStub:
    """Stands in for the musicbrainzngs module."""

    class WebServiceError(Exception):
        def __init__(self, message: Optional[str] = None, cause: Any = None) -> None:
            super().__init__(message)
            self.cause = cause

    class NetworkError(WebServiceError):
        pass

    class ResponseError(WebServiceError):
        pass

    def __init__(
        self,
        releases: Optional[List[Dict[str, Any]]] = None,
        listings: Optional[Dict[str, Any]] = None,
        images: Optional[Dict[str, Any]] = None,
        search_error: Optional[Exception] = None,
    ) -> None:
        self.releases = releases or []
        self.listings = listings or {}
        self.images = images or {}
        self.search_error = search_error
        self.calls: List[tuple] = []

    def set_useragent(self, app, version, contact=None) -> None:
        self.calls.append(("useragent", app, contact))

    def set_hostname(self, host, use_https=False) -> None:
        self.calls.append(("hostname", host, use_https))

    def set_caa_hostname(self, host, use_https=False) -> None:
        self.calls.append(("caa_hostname", host, use_https))

    def search_releases(self, limit=None, **query):
        self.calls.append(("search", query))
        if self.search_error is not None:
            raise self.search_error
        return {"release-list": self.releases, "release-count": len(self.releases)}

    def get_image_list(self, release_id):
        self.calls.append(("listing", release_id))
        return self._answer(self.listings, release_id)

    def get_image_front(self, release_id, size=None):
        self.calls.append(("front", release_id, size))
        return self._answer(self.images, release_id)

    def _answer(self, table: Dict[str, Any], release_id: str):
        value = table.get(release_id)
        if value is None:
            raise _MBStub.ResponseError(cause=SimpleNamespace(code=404))
        if isinstance(value, Exception):
            raise value
        return value


def _release(release_id: str, title: str, score: int) -> Dict[str, Any]:
    return {"id": release_id, "title": title, "ext:score": str(score)}


def _listing(url: str) -> Dict[str, Any]:
    return {
        "images": [
            {"front": False, "image": "https://img.test/back.jpg"},
            {"front": True, "image": url},
        ]
    }


def _client(stub: _MBStub, **overrides) -> MusicBrainzCoverArt:
    values = {"contact": "tests@example.org", "musicbrainz_host": "mb.test", "coverart_host": "caa.test"}
    values.update(overrides)
    return MusicBrainzCoverArt(DiscoverySettings(**values))


class TestMusicBrainzCoverArt(unittest.TestCase):
    def test_configures_the_web_service(self) -> None:
        stub = _MBStub()
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            _client(stub)
        self.assertIn(("useragent", "cover-meta", "tests@example.org"), stub.calls)
        self.assertIn(("hostname", "mb.test", True), stub.calls)
        self.assertIn(("caa_hostname", "caa.test", True), stub.calls)

    def test_lookup_orders_by_score_and_filters_titles(self) -> None:
        stub = _MBStub(
            releases=[
                _release("r-low", "Blue Album", 60),
                _release("r-other", "Something Else", 100),
                _release("r-high", "The Blue Album", 95),
            ],
            listings={
                "r-low": _listing("https://img.test/low.jpg"),
                "r-high": _listing("https://img.test/high.jpg"),
            },
        )
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            candidates = _client(stub).lookup(AlbumIdentity("Weezer", "Blue Album"))

        self.assertEqual([c.release_id for c in candidates], ["r-high", "r-low"])
        self.assertEqual(candidates[0].url, "https://img.test/high.jpg")
        self.assertAlmostEqual(candidates[0].score, 0.95)
        self.assertIn(("search", {"release": "Blue Album", "artist": "Weezer"}), stub.calls)

    def test_lookup_respects_max_candidates(self) -> None:
        stub = _MBStub(
            releases=[_release(f"r{i}", "Album", 90 - i) for i in range(4)],
            listings={f"r{i}": _listing(f"https://img.test/{i}.jpg") for i in range(4)},
        )
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            candidates = _client(stub, max_candidates=2).lookup(AlbumIdentity(None, "Album"))
        self.assertEqual(len(candidates), 2)
        self.assertIn(("search", {"release": "Album"}), stub.calls)

    def test_release_without_front_image_yields_no_candidates(self) -> None:
        stub = _MBStub(releases=[_release("r1", "Album", 100)])
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            with self.assertRaises(NoCandidates):
                _client(stub).lookup(AlbumIdentity("A", "Album"))

    def test_network_error_is_discovery_unavailable(self) -> None:
        stub = _MBStub(search_error=_MBStub.NetworkError("dns"))
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            with self.assertRaises(DiscoveryUnavailable):
                _client(stub).lookup(AlbumIdentity("A", "Album"))

    def test_server_error_is_discovery_unavailable(self) -> None:
        stub = _MBStub(search_error=_MBStub.ResponseError(cause=SimpleNamespace(code=503)))
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            with self.assertRaises(DiscoveryUnavailable):
                _client(stub).lookup(AlbumIdentity("A", "Album"))

    def test_missing_album_name(self) -> None:
        stub = _MBStub()
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            with self.assertRaises(NoCandidates):
                _client(stub).lookup(AlbumIdentity("Artist", None))
        self.assertFalse([call for call in stub.calls if call[0] == "search"])

    def test_fetch_downloads_front_image_or_returns_inline_data(self) -> None:
        stub = _MBStub(images={"r1": b"\xff\xd8\xffdata"})
        with patch("cover_meta.providers.coverart.musicbrainzngs", stub):
            client = _client(stub, image_size=500)
            self.assertEqual(
                client.fetch(CoverCandidate(source="musicbrainz", release_id="r1")),
                b"\xff\xd8\xffdata",
            )
            self.assertEqual(client.fetch(CoverCandidate(source="inline", data=b"raw")), b"raw")
            with self.assertRaises(NoCandidates):
                client.fetch(CoverCandidate(source="musicbrainz", release_id="gone"))
        self.assertIn(("front", "r1", "500"), stub.calls)


if __name__ == "__main__":
    unittest.main()
