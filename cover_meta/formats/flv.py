from __future__ import annotations

import struct
from typing import Optional

from ..errors import FormatParseError, UnsupportedFormat
from ..models import CONTAINER_ATTACHMENT, Format, ImageBlob
from .base import CoverCodec

FLV_SIGNATURE = b"FLV"
TAG_HEADER = struct.Struct(">B3s3sB3s")
TAG_TYPES = {8: "audio", 9: "video", 18: "script"}


def validate(data: bytes) -> int:
    """Walk the FLV tag stream and return the number of tags."""
    if len(data) < 9 or not data.startswith(FLV_SIGNATURE):
        raise FormatParseError("flv: missing FLV signature")
    header_size = struct.unpack(">I", data[5:9])[0]
    pos = header_size + 4  # PreviousTagSize0
    if pos > len(data):
        raise FormatParseError("flv: truncated header")
    count = 0
    while pos < len(data):
        if pos + TAG_HEADER.size > len(data):
            raise FormatParseError(f"flv: truncated tag header at offset {pos}")
        tag_type, size, _, _, _ = TAG_HEADER.unpack_from(data, pos)
        if tag_type & 0x1F not in TAG_TYPES:
            raise FormatParseError(f"flv: unknown tag type {tag_type} at offset {pos}")
        body = int.from_bytes(size, "big")
        end = pos + TAG_HEADER.size + body + 4
        if end > len(data):
            raise FormatParseError(f"flv: tag at offset {pos} overruns the file")
        previous = struct.unpack(">I", data[end - 4:end])[0]
        if previous != TAG_HEADER.size + body:
            raise FormatParseError(f"flv: bad PreviousTagSize after offset {pos}")
        pos = end
        count += 1
    return count


class FLVCodec(CoverCodec):
    """FLV has no picture structure; embedding is left to the fallback."""

    family = CONTAINER_ATTACHMENT
    formats = frozenset({Format.FLV})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        validate(data)
        return None

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        validate(data)
        raise UnsupportedFormat("flv: container has no place for an embedded picture")

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        validate(data)
        return None
