from __future__ import annotations

import logging
from io import BytesIO
from typing import Callable, Optional, Tuple

from mutagen.aiff import AIFF
from mutagen.id3 import APIC, ID3, ID3NoHeaderError, PictureType
from mutagen.wave import WAVE

from ..errors import CapacityExceeded
from ..imaging import probe
from ..models import FRAME_TAGGED, Format, ImageBlob
from .base import COVER_DESCRIPTION, CoverCodec, compact_padding, parse_errors

logger = logging.getLogger(__name__)

# ID3v2 tag sizes are stored as 28-bit synch-safe integers.
MAX_TAG_SIZE = (1 << 28) - 1

Saver = Callable[[BytesIO, int], None]


class ID3Codec(CoverCodec):
    """APIC frames inside an ID3v2 tag.

    MP3 and ADTS streams carry the tag at the head of the file, WAV and AIFF
    inside a dedicated RIFF/IFF chunk whose size mutagen recomputes. The tag is
    written back in the major version it was read in; v2.2 tags become v2.4.
    """

    family = FRAME_TAGGED
    formats = frozenset({Format.MP3, Format.AAC, Format.WAV, Format.AIFF})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        tags, _ = self._load(self.staged(data), fmt)
        if tags is None:
            return None
        frames = _pictures(tags)
        if not frames:
            return None
        chosen = next((f for f in frames if f.type == PictureType.COVER_FRONT), frames[0])
        return probe(chosen.data, chosen.mime)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        buf = self.staged(data)
        tags, save = self._load(buf, fmt, create=True)
        _drop_pictures(tags)
        tags.add(
            APIC(
                encoding=3,
                mime=blob.mime,
                type=PictureType.COVER_FRONT,
                desc=COVER_DESCRIPTION,
                data=blob.data,
            )
        )
        self._commit(tags, save, buf, fmt)
        return buf.getvalue()

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        buf = self.staged(data)
        tags, save = self._load(buf, fmt)
        if tags is None or not _pictures(tags):
            return None
        _drop_pictures(tags)
        self._commit(tags, save, buf, fmt)
        return buf.getvalue()

    def _load(self, buf: BytesIO, fmt: Format, create: bool = False) -> Tuple[Optional[ID3], Saver]:
        with parse_errors(fmt):
            if fmt in (Format.WAV, Format.AIFF):
                kind = WAVE if fmt is Format.WAV else AIFF
                container = kind(buf, translate=False)
                if container.tags is None and create:
                    container.add_tags()

                def save_chunk(target: BytesIO, version: int) -> None:
                    target.seek(0)
                    container.save(target, v2_version=version, padding=compact_padding)

                return container.tags, save_chunk

            try:
                tags = ID3(buf, translate=False)
            except ID3NoHeaderError:
                if not create:
                    return None, _no_save
                tags = ID3()

            def save_head(target: BytesIO, version: int) -> None:
                target.seek(0)
                tags.save(target, v2_version=version, padding=compact_padding)

            return tags, save_head

    @staticmethod
    def _commit(tags: ID3, save: Saver, buf: BytesIO, fmt: Format) -> None:
        # v2.2 tags cannot be written back and are upgraded.
        version = 3 if tags.version[1] == 3 else 4
        if version == 3:
            tags.update_to_v23()
        else:
            tags.update_to_v24()
        with parse_errors(fmt):
            try:
                save(buf, version)
            except ValueError as exc:
                raise CapacityExceeded(
                    f"ID3v2.{version} tag would exceed {MAX_TAG_SIZE} bytes"
                ) from exc
        logger.debug("Saved ID3v2.%d tag (%d bytes total)", version, len(buf.getvalue()))


def _no_save(target: BytesIO, version: int) -> None:
    raise AssertionError("no tag to save")


def _pictures(tags: ID3) -> list:
    # Untranslated v2.2 tags keep their three-letter PIC frames.
    return tags.getall("APIC") + tags.getall("PIC")


def _drop_pictures(tags: ID3) -> None:
    tags.delall("APIC")
    tags.delall("PIC")
