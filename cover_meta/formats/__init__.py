"""Per-container picture codecs, selected by :class:`~cover_meta.models.Format`."""

from __future__ import annotations

from typing import Dict, Optional

from ..errors import FileIOError
from ..models import AudioFile, Format, ImageBlob
from .ape import APECodec
from .asf import ASFCodec
from .base import CoverCodec
from .flac import FLACCodec
from .flv import FLVCodec
from .id3 import ID3Codec
from .matroska import MatroskaCodec
from .mp4 import MP4Codec
from .vorbis import VorbisCommentCodec

_CODECS: tuple[CoverCodec, ...] = (
    ID3Codec(),
    MP4Codec(),
    FLACCodec(),
    VorbisCommentCodec(),
    MatroskaCodec(),
    FLVCodec(),
    APECodec(),
    ASFCodec(),
)

REGISTRY: Dict[Format, CoverCodec] = {
    fmt: codec for codec in _CODECS for fmt in codec.formats
}


def codec_for(fmt: Format) -> CoverCodec:
    return REGISTRY[fmt]


def read_bytes(file: AudioFile) -> bytes:
    try:
        return file.path.read_bytes()
    except OSError as exc:
        raise FileIOError(f"cannot read {file.path}: {exc}") from exc


def read_cover(file: AudioFile) -> Optional[ImageBlob]:
    """Return the embedded front cover of ``file`` and record whether it has one."""
    blob = codec_for(file.format).read(read_bytes(file), file.format)
    file.has_embedded_cover = blob is not None
    return blob


__all__ = ["CoverCodec", "REGISTRY", "codec_for", "read_bytes", "read_cover"]
