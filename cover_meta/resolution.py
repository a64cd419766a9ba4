from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Callable, Dict, Generic, Iterable, Optional, Sequence, Tuple, TypeVar, Union

from mutagen import File as MutagenFile
from mutagen import MutagenError

from .config import ImageSettings
from .errors import CoverError, DiscoveryUnavailable, ImageDecodeError, NoCandidates
from .formats import read_cover
from .heuristics import album_root, guess_identity_from_directory
from .imaging import normalize
from .models import Album, AlbumIdentity, AudioFile, ImageBlob
from .providers import CoverDiscovery

logger = logging.getLogger(__name__)

T = TypeVar("T")

ALBUM_KEYS = ("album", "WM/AlbumTitle")
ARTIST_KEYS = ("albumartist", "album artist", "WM/AlbumArtist", "artist", "Author")


class SingleFlight(Generic[T]):
    """Per-key memo where concurrent callers for one key share a single call.

    The first caller for a key runs ``fn`` while holding that key's lock; later
    callers block on the same lock and then read the memoised outcome.
    Failures are memoised too, so a key is attempted at most once per run.
    """

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._locks: Dict[str, threading.Lock] = {}
        self._results: Dict[str, Tuple[bool, Union[T, BaseException]]] = {}

    def do(self, key: str, fn: Callable[[], T]) -> T:
        with self._guard:
            lock = self._locks.setdefault(key, threading.Lock())
        with lock:
            if key not in self._results:
                try:
                    self._results[key] = (True, fn())
                except CoverError as exc:
                    self._results[key] = (False, exc)
            ok, value = self._results[key]
        if not ok:
            raise value  # type: ignore[misc]
        return value  # type: ignore[return-value]

    def __contains__(self, key: str) -> bool:
        return key in self._results


def identity_from_tags(file: AudioFile) -> AlbumIdentity:
    try:
        audio = MutagenFile(file.path, easy=True)
    except (MutagenError, OSError) as exc:
        logger.debug("Could not read tags from %s: %s", file.path, exc)
        return AlbumIdentity(None, None)
    if audio is None or audio.tags is None:
        return AlbumIdentity(None, None)
    return AlbumIdentity(_first_text(audio.tags, ARTIST_KEYS), _first_text(audio.tags, ALBUM_KEYS))


def identity_for(files: Sequence[AudioFile], directory: Path) -> AlbumIdentity:
    """Album identity from the first tagged member, else from the folder name."""
    for file in files:
        identity = identity_from_tags(file)
        if identity.album:
            return identity
    return guess_identity_from_directory(album_root(directory))


class CoverResolver:
    """Decides the canonical cover for a file or an album.

    Discovery results are memoised per album key in a shared
    :class:`SingleFlight`, so concurrent workers on the same album issue
    one lookup between them.
    """

    def __init__(
        self,
        policy: ImageSettings,
        discovery: Optional[CoverDiscovery] = None,
        memo: Optional[SingleFlight[ImageBlob]] = None,
    ) -> None:
        self.policy = policy
        self.discovery = discovery
        self.memo: SingleFlight[ImageBlob] = memo or SingleFlight()

    def discover(self, identity: AlbumIdentity) -> ImageBlob:
        if self.discovery is None:
            raise DiscoveryUnavailable("discovery is disabled")
        if identity.is_empty():
            raise NoCandidates("album identity is unknown")
        return self.memo.do(identity.key, lambda: self._discover(identity))

    def _discover(self, identity: AlbumIdentity) -> ImageBlob:
        assert self.discovery is not None
        logger.info("Looking up cover for %s via %s", identity, self.discovery.name)
        last_error: Optional[CoverError] = None
        for candidate in self.discovery.lookup(identity):
            try:
                return normalize(self.discovery.fetch(candidate), self.policy)
            except (ImageDecodeError, NoCandidates) as exc:
                logger.warning("Skipping cover candidate %s: %s", candidate.url or candidate.source, exc)
                last_error = exc
        raise last_error or NoCandidates(f"no usable cover for {identity}")

    def resolve_for_file(self, file: AudioFile) -> ImageBlob:
        """The discovered cover for ``file``'s album; raises when there is none."""
        return self.discover(identity_for([file], file.directory))

    def resolve_for_album(self, album: Album) -> ImageBlob:
        """Discovered cover for the album, else the first embedded cover among its files."""
        discovery_error: Optional[CoverError] = None
        if self.discovery is not None:
            try:
                return self.discover(identity_for(album.files, album.directory))
            except (DiscoveryUnavailable, ImageDecodeError, NoCandidates) as exc:
                logger.info("No discovered cover for %s: %s", album.directory, exc)
                discovery_error = exc
        embedded = self._first_embedded(album.files)
        if embedded is not None:
            return normalize(embedded.data, self.policy)
        if discovery_error is not None:
            raise discovery_error
        raise NoCandidates("no embedded cover among the album's files")

    @staticmethod
    def _first_embedded(files: Sequence[AudioFile]) -> Optional[ImageBlob]:
        for file in files:
            try:
                blob = read_cover(file)
            except CoverError as exc:
                logger.warning("Cannot read embedded cover of %s: %s", file.path, exc)
                continue
            if blob is not None:
                logger.debug("Using embedded cover of %s", file.path)
                return blob
        return None


def _first_text(tags, keys: Iterable[str]) -> Optional[str]:
    for key in keys:
        try:
            values = tags[key]
        except (KeyError, ValueError):
            continue
        if not isinstance(values, list):
            values = [values]
        for value in values:
            text = str(value).strip()
            if text:
                return text
    return None
