from __future__ import annotations

import struct
from contextlib import contextmanager
from io import BytesIO
from typing import ClassVar, FrozenSet, Iterator, Optional

from mutagen import MutagenError, PaddingInfo

from ..errors import FormatParseError, UnsupportedImageType
from ..models import JPEG_MIME, PNG_MIME, Format, ImageBlob

# Picture type codes shared by ID3 APIC, FLAC/Vorbis picture blocks and WM/Picture.
PICTURE_OTHER = 0
PICTURE_FRONT_COVER = 3

COVER_DESCRIPTION = "Cover (front)"


def compact_padding(info: PaddingInfo) -> int:
    return 0


@contextmanager
def parse_errors(fmt: Format) -> Iterator[None]:
    """Translate library-level parse failures into FormatParseError."""
    try:
        yield
    except (MutagenError, struct.error, EOFError) as exc:
        raise FormatParseError(f"{fmt.label}: {exc}") from exc


class CoverCodec:
    """Read, write and strip the embedded picture of one container family.

    Codecs work on an in-memory copy of the file; callers own the bytes and
    decide whether and how to persist the result.
    """

    family: ClassVar[str] = ""
    formats: ClassVar[FrozenSet[Format]] = frozenset()
    accepted_mimes: ClassVar[FrozenSet[str]] = frozenset({JPEG_MIME, PNG_MIME})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        raise NotImplementedError

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        raise NotImplementedError

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        """Return the file without pictures, or None when there was nothing to remove."""
        raise NotImplementedError

    def check_image(self, blob: ImageBlob) -> None:
        if blob.mime not in self.accepted_mimes:
            raise UnsupportedImageType(
                f"{blob.mime} cannot be embedded in {self.family} containers"
            )

    @staticmethod
    def staged(data: bytes) -> BytesIO:
        return BytesIO(data)
