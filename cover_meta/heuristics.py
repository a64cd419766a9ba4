from __future__ import annotations

import re
import unicodedata
from pathlib import Path
from typing import Optional

from .models import AlbumIdentity

ARTIST_ALBUM_PATTERN = re.compile(r"^(?P<artist>[^/]+?)\s+[-–]\s+(?P<album>.+)$")
YEAR_PREFIX_PATTERN = re.compile(r"^[\[(]?(?:19|20)\d{2}[\])]?\s*[-–.]?\s*")


def looks_like_disc_folder(name: str) -> bool:
    return bool(re.search(r"(?:^|\s)(disc|cd|disk)\s*\d", name, re.IGNORECASE))


def album_root(directory: Path) -> Path:
    """Disc sub-folders (``CD1``, ``Disc 2``) belong to the album folder above them."""
    if looks_like_disc_folder(directory.name) and directory.parent != directory:
        return directory.parent
    return directory


def guess_identity_from_directory(directory: Path) -> AlbumIdentity:
    """Derive ``(artist, album)`` from ``Artist/Album`` or ``Artist - Album`` folders."""
    names: list[str] = []
    current = directory
    for _ in range(3):
        if not current.name:
            break
        names.append(current.name)
        if current.parent == current:
            break
        current = current.parent

    album_index = next(
        (idx for idx, name in enumerate(names) if not looks_like_disc_folder(name)),
        None,
    )
    if album_index is None:
        return AlbumIdentity(None, _clean(names[0]) if names else None)

    album_dir = names[album_index]
    match = ARTIST_ALBUM_PATTERN.match(album_dir)
    if match:
        return AlbumIdentity(_clean(match.group("artist")), _clean_album(match.group("album")))

    artist = None
    for name in names[album_index + 1 :]:
        if not looks_like_disc_folder(name):
            artist = _clean(name)
            break
    return AlbumIdentity(artist, _clean_album(album_dir))


def tokenize(value: Optional[str]) -> list[str]:
    if not value:
        return []
    cleaned = unicodedata.normalize("NFKD", value)
    cleaned = cleaned.encode("ascii", "ignore").decode("ascii").lower()
    cleaned = re.sub(r"[^a-z0-9]+", " ", cleaned)
    return [token for token in cleaned.split() if token]


def token_overlap_ratio(expected: Optional[str], candidate: Optional[str]) -> float:
    expected_tokens = tokenize(expected)
    if not expected_tokens:
        return 0.0
    candidate_tokens = set(tokenize(candidate))
    if not candidate_tokens:
        return 0.0
    overlap = sum(1 for token in expected_tokens if token in candidate_tokens)
    return overlap / len(expected_tokens)


def _clean_album(value: str) -> Optional[str]:
    return _clean(YEAR_PREFIX_PATTERN.sub("", value) or value)


def _clean(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    cleaned = value.replace("_", " ").strip(" ._-")
    return cleaned or None
