import tempfile
import threading
import time
import unittest
from pathlib import Path

from cover_meta.config import ImageSettings
from cover_meta.errors import DiscoveryUnavailable, ImageDecodeError, NoCandidates
from cover_meta.models import Album, AlbumIdentity, AudioFile, Format
from cover_meta.resolution import CoverResolver, SingleFlight, identity_for

from media_fixtures import FakeDiscovery, flac_bytes, jpeg_bytes, mp3_bytes, png_bytes


class TestSingleFlight(unittest.TestCase):
    def test_concurrent_callers_share_one_call(self) -> None:
        flight: SingleFlight[int] = SingleFlight()
        calls = []
        barrier = threading.Barrier(8)
        results = []

        def slow() -> int:
            calls.append(1)
            time.sleep(0.05)
            return 42

        def worker() -> None:
            barrier.wait()
            results.append(flight.do("album", slow))

        threads = [threading.Thread(target=worker) for _ in range(8)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(calls), 1)
        self.assertEqual(results, [42] * 8)
        self.assertIn("album", flight)

    def test_failures_are_memoised(self) -> None:
        flight: SingleFlight[int] = SingleFlight()
        calls = []

        def failing() -> int:
            calls.append(1)
            raise NoCandidates("nothing")

        for _ in range(3):
            with self.assertRaises(NoCandidates):
                flight.do("album", failing)
        self.assertEqual(len(calls), 1)

    def test_distinct_keys_run_separately(self) -> None:
        flight: SingleFlight[str] = SingleFlight()
        self.assertEqual(flight.do("a", lambda: "A"), "A")
        self.assertEqual(flight.do("b", lambda: "B"), "B")


class TestCoverResolver(unittest.TestCase):
    def test_files_of_one_album_trigger_one_discovery(self) -> None:
        discovery = FakeDiscovery([png_bytes()], delay=0.05)
        resolver = CoverResolver(ImageSettings(), discovery=discovery)
        identity = AlbumIdentity("Artist", "Album")
        results = []

        def worker() -> None:
            results.append(resolver.discover(identity))

        threads = [threading.Thread(target=worker) for _ in range(6)]
        for thread in threads:
            thread.start()
        for thread in threads:
            thread.join()

        self.assertEqual(len(discovery.lookups), 1)
        self.assertEqual(len({blob.data for blob in results}), 1)

    def test_undecodable_candidate_falls_through_to_next(self) -> None:
        good = jpeg_bytes()
        discovery = FakeDiscovery([b"garbage", good])
        blob = CoverResolver(ImageSettings(), discovery=discovery).discover(AlbumIdentity("A", "B"))
        self.assertEqual(blob.data, good)

    def test_only_undecodable_candidates_raise(self) -> None:
        discovery = FakeDiscovery([b"garbage"])
        with self.assertRaises(ImageDecodeError):
            CoverResolver(ImageSettings(), discovery=discovery).discover(AlbumIdentity("A", "B"))

    def test_disabled_discovery_and_empty_identity(self) -> None:
        with self.assertRaises(DiscoveryUnavailable):
            CoverResolver(ImageSettings()).discover(AlbumIdentity("A", "B"))
        resolver = CoverResolver(ImageSettings(), discovery=FakeDiscovery([png_bytes()]))
        with self.assertRaises(NoCandidates):
            resolver.discover(AlbumIdentity(None, None))

    def test_album_falls_back_to_embedded_cover(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir) / "Artist - Album"
            directory.mkdir()
            cover = jpeg_bytes()
            plain = directory / "01.flac"
            plain.write_bytes(flac_bytes())
            tagged = directory / "02.mp3"
            tagged.write_bytes(mp3_bytes(album="Album", cover=cover))
            album = Album(
                directory=directory,
                files=[AudioFile(plain, Format.FLAC), AudioFile(tagged, Format.MP3)],
            )
            discovery = FakeDiscovery([], error=DiscoveryUnavailable("offline"))
            blob = CoverResolver(ImageSettings(), discovery=discovery).resolve_for_album(album)
            self.assertEqual(blob.data, cover)
            self.assertEqual(len(discovery.lookups), 1)

    def test_album_without_any_cover_raises_the_discovery_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir) / "Album"
            directory.mkdir()
            path = directory / "01.flac"
            path.write_bytes(flac_bytes())
            album = Album(directory=directory, files=[AudioFile(path, Format.FLAC)])
            discovery = FakeDiscovery([], error=NoCandidates("nothing found"))
            with self.assertRaises(NoCandidates):
                CoverResolver(ImageSettings(), discovery=discovery).resolve_for_album(album)

    def test_identity_from_folder_when_tags_are_missing(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            directory = Path(tmpdir) / "Artist - Album" / "CD1"
            directory.mkdir(parents=True)
            path = directory / "01.flac"
            path.write_bytes(flac_bytes())
            identity = identity_for([AudioFile(path, Format.FLAC)], directory)
            self.assertEqual(identity, AlbumIdentity("Artist", "Album"))

    def test_identity_prefers_tags(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "01.flac"
            path.write_bytes(flac_bytes(comments={"ALBUMARTIST": "Tagged Artist", "ALBUM": "Tagged Album"}))
            identity = identity_for([AudioFile(path, Format.FLAC)], Path(tmpdir))
            self.assertEqual(identity, AlbumIdentity("Tagged Artist", "Tagged Album"))


if __name__ == "__main__":
    unittest.main()
