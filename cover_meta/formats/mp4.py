from __future__ import annotations

from typing import Optional

from mutagen.mp4 import MP4, MP4Cover

from ..imaging import probe
from ..models import ATOM_TREE, JPEG_MIME, PNG_MIME, Format, ImageBlob
from .base import CoverCodec, compact_padding, parse_errors

COVER_KEY = "covr"

IMAGE_FORMATS = {
    JPEG_MIME: MP4Cover.FORMAT_JPEG,
    PNG_MIME: MP4Cover.FORMAT_PNG,
}


class MP4Codec(CoverCodec):
    """``covr`` data atoms under ``moov.udta.meta.ilst``.

    mutagen rewrites the ancestor atom sizes and shifts the ``stco``/``co64``
    chunk offset tables when the metadata grows or shrinks.
    """

    family = ATOM_TREE
    formats = frozenset({Format.M4A, Format.ALAC})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        with parse_errors(fmt):
            audio = MP4(self.staged(data))
        covers = (audio.tags or {}).get(COVER_KEY) or []
        if not covers:
            return None
        cover = covers[0]
        declared = PNG_MIME if cover.imageformat == MP4Cover.FORMAT_PNG else JPEG_MIME
        return probe(bytes(cover), declared)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        buf = self.staged(data)
        with parse_errors(fmt):
            audio = MP4(buf)
            if audio.tags is None:
                audio.add_tags()
            audio.tags[COVER_KEY] = [MP4Cover(blob.data, imageformat=IMAGE_FORMATS[blob.mime])]
            buf.seek(0)
            audio.save(buf, padding=compact_padding)
        return buf.getvalue()

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        buf = self.staged(data)
        with parse_errors(fmt):
            audio = MP4(buf)
            if audio.tags is None or COVER_KEY not in audio.tags:
                return None
            del audio.tags[COVER_KEY]
            buf.seek(0)
            audio.save(buf, padding=compact_padding)
        return buf.getvalue()
