from __future__ import annotations

import fnmatch
import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path
from typing import Dict, List, Optional

from .config import LibrarySettings
from .heuristics import album_root
from .models import COMMENT_EMBEDDED, Album, AudioFile, Format

logger = logging.getLogger(__name__)

SNIFF_BYTES = 64
ASF_HEADER_GUID = bytes.fromhex("3026B2758E66CF11A6D900AA0062CE6C")
EBML_MAGIC = b"\x1a\x45\xdf\xa3"


def _skip_id3v2(fh) -> bytes:
    head = fh.read(SNIFF_BYTES)
    while head.startswith(b"ID3") and len(head) >= 10:
        size = 0
        for byte in head[6:10]:
            size = (size << 7) | (byte & 0x7F)
        footer = 10 if head[5] & 0x10 else 0
        fh.seek(fh.tell() - len(head) + 10 + size + footer)
        head = fh.read(SNIFF_BYTES)
    return head


def sniff_format(head: bytes) -> Optional[Format]:
    """Identify a container from its leading bytes (after any ID3v2 tag)."""
    if head.startswith(b"fLaC"):
        return Format.FLAC
    if head.startswith(b"OggS"):
        if b"OpusHead" in head:
            return Format.OPUS
        if b"\x01vorbis" in head:
            return Format.OGG
        return None
    if head[:4] == b"RIFF" and head[8:12] == b"WAVE":
        return Format.WAV
    if head[:4] == b"FORM" and head[8:12] in (b"AIFF", b"AIFC"):
        return Format.AIFF
    if head[4:8] == b"ftyp":
        return Format.M4A
    if head.startswith(EBML_MAGIC):
        return Format.WEBM
    if head.startswith(b"FLV\x01"):
        return Format.FLV
    if head.startswith(b"MAC "):
        return Format.APE
    if head.startswith(ASF_HEADER_GUID):
        return Format.WMA
    if len(head) >= 2 and head[0] == 0xFF and head[1] & 0xE0 == 0xE0:
        # ADTS frames use MPEG layer bits 00.
        return Format.AAC if (head[1] >> 1) & 0x3 == 0 else Format.MP3
    return None


class LibraryScanner:
    """Finds supported audio files under the given roots and groups them into albums."""

    def __init__(self, settings: LibrarySettings) -> None:
        self.settings = settings
        self._exts = {ext.lower() for ext in self.settings.include_extensions}

    def iter_files(self, roots: Iterable[Path]) -> Iterator[AudioFile]:
        seen: set[Path] = set()
        for root in roots:
            root = Path(root).absolute()
            if not root.exists():
                logger.warning("Input path does not exist: %s", root)
                continue
            paths = [root] if root.is_file() else self._walk(root)
            for path in paths:
                if path in seen:
                    continue
                seen.add(path)
                audio = self.classify(path)
                if audio is not None:
                    yield audio

    def iter_albums(self, roots: Iterable[Path]) -> Iterator[Album]:
        albums: Dict[Path, Album] = {}
        for audio in self.iter_files(roots):
            directory = album_root(audio.directory)
            album = albums.get(directory)
            if album is None:
                album = albums[directory] = Album(directory=directory)
            album.files.append(audio)
        yield from albums.values()

    def classify(self, path: Path) -> Optional[AudioFile]:
        if not self._should_include(path):
            return None
        by_extension = Format.from_extension(path.suffix)
        if by_extension is None:
            return None
        try:
            size = path.stat().st_size
            with path.open("rb") as fh:
                sniffed = sniff_format(_skip_id3v2(fh))
        except OSError as exc:
            logger.warning("Cannot read %s: %s", path, exc)
            return None
        if sniffed is None:
            logger.debug("Skipping %s: unrecognised signature", path)
            return None
        fmt = sniffed
        if by_extension is Format.ALAC and sniffed is Format.M4A:
            # ALAC is stored in an ordinary MP4 container.
            fmt = by_extension
        elif sniffed is not by_extension and {sniffed.family, by_extension.family} != {COMMENT_EMBEDDED}:
            logger.warning(
                "%s looks like %s despite its extension", path, sniffed.label
            )
        return AudioFile(path=path, format=fmt, size=size)

    def _walk(self, root: Path) -> List[Path]:
        def _on_error(exc: OSError) -> None:
            logger.warning("Cannot scan %s: %s", exc.filename, exc.strerror or exc)

        paths: List[Path] = []
        for dirpath, dirnames, filenames in os.walk(root, onerror=_on_error, followlinks=False):
            dirnames.sort()
            directory = Path(dirpath)
            for name in sorted(filenames):
                file_path = directory / name
                if file_path.is_file():
                    paths.append(file_path)
        return paths

    def _should_include(self, path: Path) -> bool:
        if path.suffix.lower() not in self._exts:
            return False
        rel = str(path)
        for pattern in self.settings.exclude_patterns:
            if fnmatch.fnmatch(rel, pattern) or fnmatch.fnmatch(path.name, pattern):
                return False
        return True
