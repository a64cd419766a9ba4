from __future__ import annotations

import base64
import binascii
from io import BytesIO
from typing import List, Optional, Union

from mutagen.flac import Picture
from mutagen.oggopus import OggOpus
from mutagen.oggvorbis import OggVorbis

from ..errors import FormatParseError
from ..imaging import probe
from ..models import COMMENT_EMBEDDED, Format, ImageBlob
from .base import CoverCodec, compact_padding, parse_errors
from .flac import choose_front, front_cover_picture

PICTURE_FIELD = "metadata_block_picture"
LEGACY_FIELDS = ("coverart", "coverartmime")

OggFile = Union[OggVorbis, OggOpus]


class VorbisCommentCodec(CoverCodec):
    """Base64 picture blocks stored as Vorbis comment fields.

    The comment packet is re-paginated by mutagen, which rewrites page
    sequence numbers, segment tables and CRCs of the following pages.
    """

    family = COMMENT_EMBEDDED
    formats = frozenset({Format.OGG, Format.OPUS})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        audio = self._open(self.staged(data), fmt)
        if audio.tags is None:
            return None
        picture = choose_front(self._decode_pictures(audio, fmt))
        if picture is not None:
            return probe(picture.data, picture.mime)
        return self._legacy_cover(audio, fmt)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        buf = self.staged(data)
        audio = self._open(buf, fmt)
        if audio.tags is None:
            raise FormatParseError(f"{fmt.label}: stream has no comment header")
        self._clear(audio)
        encoded = base64.b64encode(front_cover_picture(blob).write()).decode("ascii")
        audio.tags[PICTURE_FIELD] = [encoded]
        self._save(audio, buf, fmt)
        return buf.getvalue()

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        buf = self.staged(data)
        audio = self._open(buf, fmt)
        if audio.tags is None or not self._clear(audio):
            return None
        self._save(audio, buf, fmt)
        return buf.getvalue()

    @staticmethod
    def _open(buf: BytesIO, fmt: Format) -> OggFile:
        kind = OggOpus if fmt is Format.OPUS else OggVorbis
        with parse_errors(fmt):
            return kind(buf)

    @staticmethod
    def _save(audio: OggFile, buf: BytesIO, fmt: Format) -> None:
        buf.seek(0)
        with parse_errors(fmt):
            audio.save(buf, padding=compact_padding)

    @staticmethod
    def _clear(audio: OggFile) -> int:
        removed = 0
        for field in (PICTURE_FIELD,) + LEGACY_FIELDS:
            if field in audio.tags:
                removed += len(audio.tags[field])
                del audio.tags[field]
        return removed

    @staticmethod
    def _decode_pictures(audio: OggFile, fmt: Format) -> List[Picture]:
        pictures = []
        for value in audio.tags.get(PICTURE_FIELD, []):
            try:
                raw = base64.b64decode(value)
            except (binascii.Error, ValueError) as exc:
                raise FormatParseError(f"{fmt.label}: invalid base64 picture field") from exc
            with parse_errors(fmt):
                pictures.append(Picture(raw))
        return pictures

    @staticmethod
    def _legacy_cover(audio: OggFile, fmt: Format) -> Optional[ImageBlob]:
        values = audio.tags.get("coverart", [])
        if not values:
            return None
        try:
            raw = base64.b64decode(values[0])
        except (binascii.Error, ValueError) as exc:
            raise FormatParseError(f"{fmt.label}: invalid base64 COVERART field") from exc
        mimes = audio.tags.get("coverartmime", [])
        return probe(raw, mimes[0] if mimes else None)
