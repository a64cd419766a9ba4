"""Cover art as Matroska/WebM attachments.

Matroska stores pictures as ``AttachedFile`` children of a level-1
``Attachments`` element. Elements after an edited region are never moved:
existing ``Attachments`` are overwritten in place with an EBML ``Void`` of the
same length and the new set of attachments is appended at the end of the
``Segment``. Only three kinds of field are rewritten: the Segment size, the
``SeekPosition`` of the Attachments entry in each ``SeekHead`` and the
SeekHead's CRC-32 when it carries one. Cue points, cluster positions and
everything else stay valid byte for byte.
"""

from __future__ import annotations

import hashlib
import logging
import zlib
from dataclasses import dataclass
from pathlib import PurePosixPath
from typing import Dict, Iterator, List, Optional, Tuple

from ..errors import CapacityExceeded, FormatParseError
from ..imaging import probe
from ..models import CONTAINER_ATTACHMENT, Format, ImageBlob
from .base import COVER_DESCRIPTION, CoverCodec

logger = logging.getLogger(__name__)

EBML_HEADER = 0x1A45DFA3
SEGMENT = 0x18538067
SEEK_HEAD = 0x114D9B74
SEEK = 0x4DBB
SEEK_ID = 0x53AB
SEEK_POSITION = 0x53AC
INFO = 0x1549A966
TRACKS = 0x1654AE6B
CLUSTER = 0x1F43B675
CUES = 0x1C53BB6B
ATTACHMENTS = 0x1941A469
ATTACHED_FILE = 0x61A7
FILE_DESCRIPTION = 0x467E
FILE_NAME = 0x466E
FILE_MIME_TYPE = 0x4660
FILE_DATA = 0x465C
FILE_UID = 0x46AE
CHAPTERS = 0x1043A770
TAGS = 0x1254C367
VOID = 0xEC
CRC32 = 0xBF

# Elements that can only appear directly under a Segment; one of these ends an
# unknown-size Cluster.
LEVEL1_IDS = frozenset({SEEK_HEAD, INFO, TRACKS, CLUSTER, CUES, ATTACHMENTS, CHAPTERS, TAGS})

COVER_STEM = "cover"


@dataclass
class Element:
    id: int
    offset: int
    id_width: int
    size_width: int
    size: int
    unknown_size: bool = False

    @property
    def header_size(self) -> int:
        return self.id_width + self.size_width

    @property
    def data_offset(self) -> int:
        return self.offset + self.header_size

    @property
    def end(self) -> int:
        return self.data_offset + self.size

    @property
    def length(self) -> int:
        return self.end - self.offset


@dataclass
class Attachment:
    element: Element
    name: str
    mime: str
    description: str
    data: bytes

    @property
    def is_image(self) -> bool:
        return self.mime.lower().startswith("image/")

    @property
    def stem(self) -> str:
        return PurePosixPath(self.name).stem.lower()


def encode_id(element_id: int) -> bytes:
    return element_id.to_bytes((element_id.bit_length() + 7) // 8, "big")


def encode_size(value: int, width: Optional[int] = None) -> bytes:
    """EBML variable-length size; the all-ones pattern is reserved for "unknown"."""
    if width is None:
        width = 1
        while value >= (1 << (7 * width)) - 1:
            width += 1
            if width > 8:
                raise CapacityExceeded(f"EBML size {value} does not fit in 8 bytes")
    elif value >= (1 << (7 * width)) - 1:
        raise CapacityExceeded(f"EBML size {value} does not fit in {width} byte(s)")
    return ((1 << (7 * width)) | value).to_bytes(width, "big")


def encode_uint(value: int) -> bytes:
    return value.to_bytes(max(1, (value.bit_length() + 7) // 8), "big")


def render(element_id: int, body: bytes) -> bytes:
    return encode_id(element_id) + encode_size(len(body)) + body


def void_element(length: int) -> bytes:
    """A Void element occupying exactly ``length`` bytes."""
    if length < 2:
        raise ValueError("a Void element needs at least two bytes")
    if length <= 128:
        return bytes([VOID]) + encode_size(length - 2, 1) + bytes(length - 2)
    return bytes([VOID]) + encode_size(length - 9, 8) + bytes(length - 9)


def read_element(data: bytes, pos: int, limit: int) -> Element:
    if pos >= limit:
        raise FormatParseError(f"element header expected at offset {pos}")
    first = data[pos]
    id_width = 9 - first.bit_length()
    if first == 0 or id_width > 4:
        raise FormatParseError(f"invalid EBML ID at offset {pos}")
    size_pos = pos + id_width
    if size_pos >= limit:
        raise FormatParseError(f"truncated element header at offset {pos}")
    lead = data[size_pos]
    size_width = 9 - lead.bit_length()
    if lead == 0 or size_pos + size_width > limit:
        raise FormatParseError(f"invalid EBML size at offset {size_pos}")
    element_id = int.from_bytes(data[pos:size_pos], "big")
    raw = int.from_bytes(data[size_pos:size_pos + size_width], "big")
    size = raw & ((1 << (7 * size_width)) - 1)
    unknown = size == (1 << (7 * size_width)) - 1
    element = Element(element_id, pos, id_width, size_width, 0 if unknown else size, unknown)
    if not unknown and element.end > limit:
        raise FormatParseError(
            f"element 0x{element_id:X} at offset {pos} overruns its parent"
        )
    return element


def iter_children(data: bytes, start: int, end: int) -> Iterator[Element]:
    pos = start
    while pos < end:
        element = read_element(data, pos, end)
        if element.unknown_size:
            raise FormatParseError(
                f"unknown-size element 0x{element.id:X} inside a sized parent"
            )
        yield element
        pos = element.end


class MatroskaLayout:
    """The level-1 regions of the first Segment of a Matroska file."""

    def __init__(self, data: bytes) -> None:
        self.data = data
        header = read_element(data, 0, len(data))
        if header.id != EBML_HEADER or header.unknown_size:
            raise FormatParseError("missing EBML header")
        pos = header.end
        segment = None
        while pos < len(data):
            element = read_element(data, pos, len(data))
            if element.id == SEGMENT:
                segment = element
                break
            if element.unknown_size:
                raise FormatParseError(f"unknown-size element 0x{element.id:X} before Segment")
            pos = element.end
        if segment is None:
            raise FormatParseError("no Segment element")
        self.segment = segment
        self.segment_end = len(data) if segment.unknown_size else segment.end
        self.children = list(self._segment_children())

    def _segment_children(self) -> Iterator[Element]:
        pos = self.segment.data_offset
        while pos < self.segment_end:
            element = read_element(self.data, pos, self.segment_end)
            if element.unknown_size:
                if element.id != CLUSTER:
                    raise FormatParseError(f"unknown-size element 0x{element.id:X} in Segment")
                element.size = self._measure_cluster(element.data_offset) - element.data_offset
            yield element
            pos = element.end

    def _measure_cluster(self, pos: int) -> int:
        while pos < self.segment_end:
            child = read_element(self.data, pos, self.segment_end)
            if child.id in LEVEL1_IDS:
                return pos
            if child.unknown_size:
                raise FormatParseError(f"unknown-size element 0x{child.id:X} in Cluster")
            pos = child.end
        return pos

    def find(self, element_id: int) -> List[Element]:
        return [child for child in self.children if child.id == element_id]

    def relative(self, offset: int) -> int:
        return offset - self.segment.data_offset

    def attachments(self) -> List[Attachment]:
        found = []
        for container in self.find(ATTACHMENTS):
            for child in iter_children(self.data, container.data_offset, container.end):
                if child.id == ATTACHED_FILE:
                    found.append(self._attachment(child))
        return found

    def _attachment(self, element: Element) -> Attachment:
        fields: Dict[int, bytes] = {}
        for child in iter_children(self.data, element.data_offset, element.end):
            fields.setdefault(child.id, self.data[child.data_offset:child.end])
        return Attachment(
            element=element,
            name=_text(fields.get(FILE_NAME, b"")),
            mime=_text(fields.get(FILE_MIME_TYPE, b"")),
            description=_text(fields.get(FILE_DESCRIPTION, b"")),
            data=fields.get(FILE_DATA, b""),
        )


def choose_cover(attachments: List[Attachment]) -> Optional[Attachment]:
    images = [a for a in attachments if a.is_image and a.data]
    if not images:
        return None
    return next((a for a in images if a.stem == COVER_STEM), images[0])


def cover_attachment(blob: ImageBlob) -> bytes:
    uid = int.from_bytes(hashlib.sha1(blob.data).digest()[:8], "big") or 1
    return render(
        ATTACHED_FILE,
        b"".join(
            (
                render(FILE_DESCRIPTION, COVER_DESCRIPTION.encode("utf-8")),
                render(FILE_NAME, f"{COVER_STEM}{blob.extension}".encode("utf-8")),
                render(FILE_MIME_TYPE, blob.mime.encode("ascii")),
                render(FILE_DATA, blob.data),
                render(FILE_UID, encode_uint(uid)),
            )
        ),
    )


Patch = Tuple[int, int, bytes]


class MatroskaCodec(CoverCodec):
    family = CONTAINER_ATTACHMENT
    formats = frozenset({Format.WEBM})

    def read(self, data: bytes, fmt: Format) -> Optional[ImageBlob]:
        cover = choose_cover(MatroskaLayout(data).attachments())
        if cover is None:
            return None
        return probe(cover.data, cover.mime)

    def write(self, data: bytes, fmt: Format, blob: ImageBlob) -> bytes:
        self.check_image(blob)
        layout = MatroskaLayout(data)
        return self._rewrite(layout, cover_attachment(blob))

    def strip(self, data: bytes, fmt: Format) -> Optional[bytes]:
        layout = MatroskaLayout(data)
        if not any(a.is_image for a in layout.attachments()):
            return None
        return self._rewrite(layout, b"")

    def _rewrite(self, layout: MatroskaLayout, cover: bytes) -> bytes:
        data = layout.data
        retained = [a for a in layout.attachments() if not a.is_image]
        body = b"".join(data[a.element.offset:a.element.end] for a in retained) + cover
        new_attachments = render(ATTACHMENTS, body) if body else b""

        patches: List[Patch] = []
        insert_at = layout.segment_end
        for element in layout.find(ATTACHMENTS):
            if element.end == layout.segment_end:
                # Trailing Attachments are replaced rather than voided.
                insert_at = element.offset
            else:
                patches.append((element.offset, element.end, void_element(element.length)))
        patches.append((insert_at, layout.segment_end, new_attachments))

        new_position = layout.relative(insert_at) if new_attachments else None
        for seek_head in layout.find(SEEK_HEAD):
            patch = self._repoint(data, seek_head, new_position)
            if patch is not None:
                patches.append(patch)

        delta = sum(len(rep) - (end - start) for start, end, rep in patches)
        if not layout.segment.unknown_size:
            segment = layout.segment
            size_field = encode_size(segment.size + delta, segment.size_width)
            start = segment.offset + segment.id_width
            patches.append((start, start + segment.size_width, size_field))

        out = bytearray(data)
        for start, end, replacement in sorted(patches, key=lambda p: p[0], reverse=True):
            out[start:end] = replacement
        logger.debug(
            "Rewrote Matroska attachments: %d retained, cover %d bytes, segment delta %+d",
            len(retained),
            len(cover),
            delta,
        )
        return bytes(out)

    @staticmethod
    def _repoint(data: bytes, seek_head: Element, position: Optional[int]) -> Optional[Patch]:
        body = bytearray(data[seek_head.data_offset:seek_head.end])
        base = seek_head.data_offset
        crc: Optional[Element] = None
        changed = False
        pointed = False
        for child in iter_children(data, seek_head.data_offset, seek_head.end):
            if child.id == CRC32 and child.offset == base:
                crc = child
                continue
            if child.id != SEEK:
                continue
            fields = {
                entry.id: entry
                for entry in iter_children(data, child.data_offset, child.end)
            }
            seek_id = fields.get(SEEK_ID)
            seek_pos = fields.get(SEEK_POSITION)
            if seek_id is None or data[seek_id.data_offset:seek_id.end] != encode_id(ATTACHMENTS):
                continue
            start = child.offset - base
            if position is not None and not pointed and seek_pos is not None and position < (1 << (8 * seek_pos.size)):
                value = position.to_bytes(seek_pos.size, "big")
                body[seek_pos.data_offset - base:seek_pos.end - base] = value
                pointed = True
            else:
                body[start:start + child.length] = void_element(child.length)
            changed = True
        if not changed:
            return None
        if crc is not None and crc.size == 4:
            checksum = zlib.crc32(bytes(body[crc.length:])) & 0xFFFFFFFF
            body[crc.header_size:crc.length] = checksum.to_bytes(4, "little")
        return (seek_head.data_offset, seek_head.end, bytes(body))


def _text(raw: bytes) -> str:
    return raw.rstrip(b"\0").decode("utf-8", errors="replace")
