from __future__ import annotations

import struct
from typing import List, Optional

from mutagen.asf import ASF, ASFByteArrayAttribute

from ..errors import FormatParseError
from ..imaging import probe
from ..models import TAG_TABLE, Format, ImageBlob
from .base import COVER_DESCRIPTION, PICTURE_FRONT_COVER, CoverCodec, compact_padding, parse_errors

PICTURE_ATTRIBUTE = "WM/Picture"
_HEAD = struct.Struct("<bI")
_UTF16_NUL = b"\x00\x00"


class WMPicture:
    """Packed ``WM/Picture`` value: type, length, mime, description, data."""

    __slots__ = ("type", "mime", "description", "data")

    def __init__(self, type: int, mime: str, description: str, data: bytes) -> None:
        self.type = type
        self.mime = mime
        self.description = description
        self.data = data

    @classmethod
    def parse(cls, raw: bytes) -> "WMPicture":
        try:
            type_, size = _HEAD.unpack_from(raw)
        except struct.error as exc:
            raise FormatParseError("truncated WM/Picture value") from exc
        offset = _HEAD.size
        mime, offset = _read_utf16z(raw, offset)
        description, offset = _read_utf16z(raw, offset)
        data = raw[offset:offset + size]
        if len(data) != size:
            raise FormatParseError("WM/Picture data shorter than declared")
        return cls(type_, mime, description, data)

    def pack(self) -> bytes:
        return b"".join(
            (
                _HEAD.pack(self.type, len(self.data)),
                self.mime.encode("utf-16-le") + _UTF16_NUL,
                self.description.encode("utf-16-le") + _UTF16_NUL,
                self.data,
            )
        )


class ASFCodec(CoverCodec):
    family = TAG_TABLE
    formats = frozenset({Format.WMA})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        with parse_errors(fmt):
            audio = ASF(self.staged(data))
        pictures = self._pictures(audio)
        if not pictures:
            return None
        chosen = next((p for p in pictures if p.type == PICTURE_FRONT_COVER), pictures[0])
        return probe(chosen.data, chosen.mime)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        buf = self.staged(data)
        with parse_errors(fmt):
            audio = ASF(buf)
            picture = WMPicture(PICTURE_FRONT_COVER, blob.mime, COVER_DESCRIPTION, blob.data)
            # Values over 64 KiB are moved to the metadata library object by mutagen.
            audio.tags[PICTURE_ATTRIBUTE] = [ASFByteArrayAttribute(picture.pack())]
            buf.seek(0)
            audio.save(buf, padding=compact_padding)
        return buf.getvalue()

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        buf = self.staged(data)
        with parse_errors(fmt):
            audio = ASF(buf)
            if PICTURE_ATTRIBUTE not in audio.tags:
                return None
            del audio.tags[PICTURE_ATTRIBUTE]
            buf.seek(0)
            audio.save(buf, padding=compact_padding)
        return buf.getvalue()

    @staticmethod
    def _pictures(audio: ASF) -> List[WMPicture]:
        if PICTURE_ATTRIBUTE not in audio.tags:
            return []
        return [WMPicture.parse(bytes(value.value)) for value in audio.tags[PICTURE_ATTRIBUTE]]


def _read_utf16z(raw: bytes, offset: int) -> tuple[str, int]:
    end = offset
    while True:
        if end + 2 > len(raw):
            raise FormatParseError("unterminated string in WM/Picture value")
        if raw[end:end + 2] == _UTF16_NUL:
            break
        end += 2
    return raw[offset:end].decode("utf-16-le", errors="replace"), end + 2
