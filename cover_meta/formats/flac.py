from __future__ import annotations

import logging
from typing import Optional, Sequence

from mutagen.flac import FLAC, Picture

from ..errors import CapacityExceeded
from ..imaging import probe
from ..models import BLOCK_CHAINED, Format, ImageBlob
from .base import COVER_DESCRIPTION, PICTURE_FRONT_COVER, CoverCodec, compact_padding, parse_errors

logger = logging.getLogger(__name__)

# METADATA_BLOCK_HEADER carries a 24-bit length.
MAX_BLOCK_SIZE = (1 << 24) - 1
# type, mime length, description length, width, height, depth, colours, data length
PICTURE_FIXED_FIELDS = 8 * 4


def front_cover_picture(blob: ImageBlob) -> Picture:
    """Build a METADATA_BLOCK_PICTURE body for ``blob`` as the front cover."""
    picture = Picture()
    picture.type = PICTURE_FRONT_COVER
    picture.mime = blob.mime
    picture.desc = COVER_DESCRIPTION
    picture.width = blob.width or 0
    picture.height = blob.height or 0
    picture.depth = 24 if blob.kind == "jpeg" else 32
    picture.data = blob.data
    return picture


def picture_block_size(picture: Picture) -> int:
    return (
        PICTURE_FIXED_FIELDS
        + len(picture.mime.encode("ascii"))
        + len(picture.desc.encode("utf-8"))
        + len(picture.data)
    )


def choose_front(pictures: Sequence[Picture]) -> Optional[Picture]:
    if not pictures:
        return None
    return next((p for p in pictures if p.type == PICTURE_FRONT_COVER), pictures[0])


class FLACCodec(CoverCodec):
    family = BLOCK_CHAINED
    formats = frozenset({Format.FLAC})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        with parse_errors(fmt):
            audio = FLAC(self.staged(data))
        picture = choose_front(audio.pictures)
        if picture is None:
            return None
        return probe(picture.data, picture.mime)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        picture = front_cover_picture(blob)
        size = picture_block_size(picture)
        if size > MAX_BLOCK_SIZE:
            raise CapacityExceeded(
                f"picture block of {size} bytes exceeds the {MAX_BLOCK_SIZE} byte FLAC limit"
            )
        buf = self.staged(data)
        with parse_errors(fmt):
            audio = FLAC(buf)
            audio.clear_pictures()
            audio.add_picture(picture)
            buf.seek(0)
            audio.save(buf, padding=compact_padding)
        return buf.getvalue()

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        buf = self.staged(data)
        with parse_errors(fmt):
            audio = FLAC(buf)
            if not audio.pictures:
                return None
            logger.debug("Removing %d picture block(s)", len(audio.pictures))
            audio.clear_pictures()
            buf.seek(0)
            audio.save(buf, padding=compact_padding)
        return buf.getvalue()
