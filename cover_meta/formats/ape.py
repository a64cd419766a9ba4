from __future__ import annotations

from typing import List, Optional, Tuple

from mutagen.apev2 import BINARY, APENoHeaderError, APEv2, APEValue

from ..imaging import probe
from ..models import TAG_TABLE, Format, ImageBlob
from .base import COVER_DESCRIPTION, CoverCodec, parse_errors

FRONT_COVER_KEY = "Cover Art (Front)"
COVER_KEY_PREFIX = "cover art ("
ID3V1_SIZE = 128


class APECodec(CoverCodec):
    """Binary ``Cover Art (...)`` items of an APEv2 tag.

    Item values are ``<file name or description>\\0<image bytes>``. A trailing
    ID3v1 tag is kept behind the APEv2 footer.
    """

    family = TAG_TABLE
    formats = frozenset({Format.APE})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        tags = self._load(data, fmt)
        if tags is None:
            return None
        keys = _cover_keys(tags)
        if not keys:
            return None
        key = next((k for k in keys if k.lower() == FRONT_COVER_KEY.lower()), keys[0])
        _, image = _split_item(bytes(tags[key]))
        return probe(image)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        body, trailer = _split_id3v1(data)
        tags = self._load(body, fmt) or APEv2()
        for key in _cover_keys(tags):
            del tags[key]
        name = f"{COVER_DESCRIPTION}{blob.extension}".encode("utf-8")
        tags[FRONT_COVER_KEY] = APEValue(name + b"\0" + blob.data, BINARY)
        return self._save(tags, body, fmt) + trailer

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        body, trailer = _split_id3v1(data)
        tags = self._load(body, fmt)
        if tags is None:
            return None
        keys = _cover_keys(tags)
        if not keys:
            return None
        for key in keys:
            del tags[key]
        return self._save(tags, body, fmt) + trailer

    def _load(self, data: bytes, fmt: Format) -> Optional[APEv2]:
        with parse_errors(fmt):
            try:
                return APEv2(self.staged(data))
            except APENoHeaderError:
                return None

    def _save(self, tags: APEv2, body: bytes, fmt: Format) -> bytes:
        buf = self.staged(body)
        with parse_errors(fmt):
            tags.save(buf)
        return buf.getvalue()


def _cover_keys(tags: APEv2) -> List[str]:
    return [
        key
        for key in tags.keys()
        if key.lower().startswith(COVER_KEY_PREFIX) and tags[key].kind == BINARY
    ]


def _split_item(value: bytes) -> Tuple[bytes, bytes]:
    name, sep, image = value.partition(b"\0")
    if not sep:
        return b"", value
    return name, image


def _split_id3v1(data: bytes) -> Tuple[bytes, bytes]:
    # mutagen truncates everything after the APEv2 footer when saving.
    if len(data) >= ID3V1_SIZE and data[-ID3V1_SIZE:-ID3V1_SIZE + 3] == b"TAG":
        return data[:-ID3V1_SIZE], data[-ID3V1_SIZE:]
    return data, b""
