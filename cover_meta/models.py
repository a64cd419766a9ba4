from __future__ import annotations

import re
import unicodedata
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, Iterator, List, Optional

from .errors import CoverError, PartialBatchFailure

FRAME_TAGGED = "frame-tagged"
ATOM_TREE = "atom-tree"
BLOCK_CHAINED = "block-chained"
COMMENT_EMBEDDED = "comment-embedded"
CONTAINER_ATTACHMENT = "container-attachment"
TAG_TABLE = "tag-table"

PNG_MIME = "image/png"
JPEG_MIME = "image/jpeg"


class Format(Enum):
    MP3 = ("mp3", FRAME_TAGGED, (".mp3",))
    AAC = ("aac", FRAME_TAGGED, (".aac",))
    WAV = ("wav", FRAME_TAGGED, (".wav", ".wave"))
    AIFF = ("aiff", FRAME_TAGGED, (".aif", ".aiff", ".aifc"))
    M4A = ("m4a", ATOM_TREE, (".m4a", ".m4b", ".mp4"))
    ALAC = ("alac", ATOM_TREE, (".alac",))
    FLAC = ("flac", BLOCK_CHAINED, (".flac",))
    OGG = ("ogg", COMMENT_EMBEDDED, (".ogg", ".oga"))
    OPUS = ("opus", COMMENT_EMBEDDED, (".opus",))
    WEBM = ("webm", CONTAINER_ATTACHMENT, (".webm", ".mka"))
    FLV = ("flv", CONTAINER_ATTACHMENT, (".flv",))
    APE = ("ape", TAG_TABLE, (".ape",))
    WMA = ("wma", TAG_TABLE, (".wma", ".asf"))

    def __init__(self, label: str, family: str, extensions: tuple[str, ...]) -> None:
        self.label = label
        self.family = family
        self.extensions = extensions

    @classmethod
    def from_extension(cls, suffix: str) -> Optional["Format"]:
        suffix = suffix.lower()
        for fmt in cls:
            if suffix in fmt.extensions:
                return fmt
        return None

    @classmethod
    def all_extensions(cls) -> List[str]:
        return [ext for fmt in cls for ext in fmt.extensions]


@dataclass(frozen=True, slots=True)
class ImageBlob:
    data: bytes
    mime: str
    width: Optional[int] = None
    height: Optional[int] = None

    @property
    def kind(self) -> Optional[str]:
        if self.mime == PNG_MIME:
            return "png"
        if self.mime == JPEG_MIME:
            return "jpeg"
        return None

    @property
    def extension(self) -> str:
        return ".png" if self.kind == "png" else ".jpg"

    def __len__(self) -> int:
        return len(self.data)

    def __repr__(self) -> str:
        return f"ImageBlob(mime={self.mime!r}, size={len(self.data)}, dims={self.width}x{self.height})"


@dataclass(slots=True)
class AudioFile:
    path: Path
    format: Format
    size: int = 0
    has_embedded_cover: Optional[bool] = None

    @property
    def directory(self) -> Path:
        return self.path.parent


@dataclass(frozen=True, slots=True)
class AlbumIdentity:
    artist: Optional[str]
    album: Optional[str]

    @property
    def key(self) -> str:
        return f"{_fold(self.artist)}\x1f{_fold(self.album)}"

    def is_empty(self) -> bool:
        return not (self.artist or self.album)

    def __str__(self) -> str:
        return f"{self.artist or '?'} - {self.album or '?'}"


@dataclass(slots=True)
class Album:
    directory: Path
    files: List[AudioFile] = field(default_factory=list)
    canonical_cover: Optional[ImageBlob] = None


class OutcomeStatus(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True, slots=True)
class OperationOutcome:
    status: OutcomeStatus
    reason: Optional[str] = None
    error_kind: Optional[str] = None

    @classmethod
    def success(cls, reason: Optional[str] = None) -> "OperationOutcome":
        return cls(OutcomeStatus.SUCCESS, reason)

    @classmethod
    def skipped(cls, reason: str) -> "OperationOutcome":
        return cls(OutcomeStatus.SKIPPED, reason)

    @classmethod
    def failed(cls, error: CoverError) -> "OperationOutcome":
        return cls(OutcomeStatus.FAILED, str(error) or error.kind, error.kind)

    @property
    def ok(self) -> bool:
        return self.status is not OutcomeStatus.FAILED


class BatchReport:
    """Per-path outcomes for one run, in the order they were recorded."""

    def __init__(self) -> None:
        self._outcomes: Dict[Path, OperationOutcome] = {}

    def record(self, path: Path, outcome: OperationOutcome) -> None:
        self._outcomes[path] = outcome

    def merge(self, other: "BatchReport") -> None:
        for path, outcome in other.items():
            self.record(path, outcome)

    def get(self, path: Path) -> Optional[OperationOutcome]:
        return self._outcomes.get(path)

    def items(self) -> Iterator[tuple[Path, OperationOutcome]]:
        return iter(list(self._outcomes.items()))

    def _with_status(self, status: OutcomeStatus) -> Dict[Path, OperationOutcome]:
        return {p: o for p, o in self._outcomes.items() if o.status is status}

    def succeeded(self) -> Dict[Path, OperationOutcome]:
        return self._with_status(OutcomeStatus.SUCCESS)

    def skipped(self) -> Dict[Path, OperationOutcome]:
        return self._with_status(OutcomeStatus.SKIPPED)

    def failed(self) -> Dict[Path, OperationOutcome]:
        return self._with_status(OutcomeStatus.FAILED)

    def summary(self) -> Dict[str, int]:
        return {
            "succeeded": len(self.succeeded()),
            "skipped": len(self.skipped()),
            "failed": len(self.failed()),
        }

    def raise_for_failures(self) -> None:
        if self.failed():
            raise PartialBatchFailure(self)

    def __len__(self) -> int:
        return len(self._outcomes)

    def __contains__(self, path: object) -> bool:
        return path in self._outcomes


def _fold(value: Optional[str]) -> str:
    if not value:
        return ""
    normalized = unicodedata.normalize("NFKD", value)
    stripped = "".join(ch for ch in normalized if not unicodedata.combining(ch))
    return re.sub(r"\s+", " ", stripped).strip().casefold()
