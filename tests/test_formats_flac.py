import struct
import unittest

from mutagen.flac import Picture

from cover_meta.config import ImageSettings
from cover_meta.errors import CapacityExceeded, FormatParseError
from cover_meta.formats.flac import MAX_BLOCK_SIZE, FLACCodec, front_cover_picture, picture_block_size
from cover_meta.imaging import normalize
from cover_meta.models import Format, ImageBlob

from media_fixtures import FLAC_AUDIO, flac_blocks, flac_bytes, jpeg_bytes, png_blob

PICTURE = 6
VORBIS_COMMENT = 4


def _picture_body(data: bytes, picture_type: int = 0) -> bytes:
    picture = Picture()
    picture.type = picture_type
    picture.mime = "image/jpeg"
    picture.data = data
    return picture.write()


class TestFLACCodec(unittest.TestCase):
    def setUp(self) -> None:
        self.codec = FLACCodec()

    def test_worked_example_jpeg_into_file_without_pictures(self) -> None:
        source = jpeg_bytes(size=(500, 500))
        blob = normalize(source, ImageSettings(max_bytes=1024 * 1024))
        original = flac_bytes(comments={"ALBUM": "Album"})

        out = self.codec.write(original, Format.FLAC, blob)

        blocks, audio_offset = flac_blocks(out)
        self.assertEqual(out[audio_offset:], FLAC_AUDIO)
        self.assertEqual([last for last, _, _ in blocks].count(True), 1)
        self.assertTrue(blocks[-1][0])
        pictures = [body for _, kind, body in blocks if kind == PICTURE]
        self.assertEqual(len(pictures), 1)
        picture = Picture(pictures[0])
        self.assertEqual(picture.type, 3)
        self.assertEqual(picture.data, blob.data)
        self.assertEqual(len(picture.data), len(blob.data))
        self.assertEqual(picture.width, 500)
        self.assertEqual(picture.height, 500)

        original_blocks, _ = flac_blocks(original)
        self.assertEqual(blocks[0][2], original_blocks[0][2])
        comment = [body for _, kind, body in blocks if kind == VORBIS_COMMENT]
        self.assertEqual(comment, [original_blocks[1][2]])

    def test_write_replaces_all_existing_pictures(self) -> None:
        original = flac_bytes(
            pictures=[_picture_body(jpeg_bytes(color=(1, 2, 3))), _picture_body(jpeg_bytes(), 3)]
        )
        blob = png_blob()
        out = self.codec.write(original, Format.FLAC, blob)
        blocks, _ = flac_blocks(out)
        self.assertEqual(sum(1 for _, kind, _ in blocks if kind == PICTURE), 1)
        self.assertEqual(self.codec.read(out, Format.FLAC).data, blob.data)

    def test_read_prefers_front_cover(self) -> None:
        front = jpeg_bytes(color=(9, 9, 9))
        original = flac_bytes(pictures=[_picture_body(jpeg_bytes()), _picture_body(front, 3)])
        self.assertEqual(self.codec.read(original, Format.FLAC).data, front)

    def test_strip_removes_pictures_and_is_idempotent(self) -> None:
        original = flac_bytes(comments={"TITLE": "x"}, pictures=[_picture_body(jpeg_bytes(), 3)])
        stripped = self.codec.strip(original, Format.FLAC)
        self.assertIsNotNone(stripped)
        blocks, audio_offset = flac_blocks(stripped)
        self.assertNotIn(PICTURE, [kind for _, kind, _ in blocks])
        self.assertEqual(stripped[audio_offset:], FLAC_AUDIO)
        self.assertIsNone(self.codec.strip(stripped, Format.FLAC))
        self.assertIsNone(self.codec.read(stripped, Format.FLAC))

    def test_strip_without_pictures_is_a_no_op(self) -> None:
        self.assertIsNone(self.codec.strip(flac_bytes(padding=64), Format.FLAC))

    def test_oversized_picture_block_raises_capacity_exceeded(self) -> None:
        blob = ImageBlob(data=b"\xff\xd8\xff" + bytes(MAX_BLOCK_SIZE), mime="image/jpeg")
        with self.assertRaises(CapacityExceeded):
            self.codec.write(flac_bytes(), Format.FLAC, blob)

    def test_picture_block_size_matches_serialised_length(self) -> None:
        picture = front_cover_picture(png_blob())
        self.assertEqual(picture_block_size(picture), len(picture.write()))

    def test_garbage_raises_format_parse_error(self) -> None:
        with self.assertRaises(FormatParseError):
            self.codec.read(b"OggS" + struct.pack(">I", 5) + bytes(40), Format.FLAC)


if __name__ == "__main__":
    unittest.main()
