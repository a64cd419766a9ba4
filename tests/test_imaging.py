import unittest
from io import BytesIO

from PIL import Image

from cover_meta.config import ImageSettings
from cover_meta.errors import ImageDecodeError
from cover_meta.imaging import normalize, probe, sniff_mime

from media_fixtures import jpeg_bytes, png_bytes


def _decode(data: bytes) -> Image.Image:
    img = Image.open(BytesIO(data))
    img.load()
    return img


class TestNormalize(unittest.TestCase):
    def test_compliant_jpeg_passes_through_unchanged(self) -> None:
        data = jpeg_bytes(size=(300, 300))
        blob = normalize(data, ImageSettings())
        self.assertEqual(blob.data, data)
        self.assertEqual(blob.mime, "image/jpeg")
        self.assertEqual((blob.width, blob.height), (300, 300))

    def test_large_image_is_downscaled_keeping_aspect(self) -> None:
        data = png_bytes(size=(800, 400))
        blob = normalize(data, ImageSettings(max_dimension=200))
        self.assertEqual((blob.width, blob.height), (200, 100))
        self.assertEqual(_decode(blob.data).size, (200, 100))
        self.assertEqual(blob.mime, "image/png")

    def test_output_format_jpeg_flattens_alpha(self) -> None:
        blob = normalize(png_bytes(color=(0, 0, 255, 128)), ImageSettings(output_format="jpeg"))
        self.assertEqual(blob.mime, "image/jpeg")
        self.assertEqual(_decode(blob.data).mode, "RGB")

    def test_output_format_png_converts_jpeg(self) -> None:
        blob = normalize(jpeg_bytes(), ImageSettings(output_format="png"))
        self.assertEqual(blob.mime, "image/png")
        self.assertTrue(blob.data.startswith(b"\x89PNG"))

    def test_other_formats_are_converted(self) -> None:
        out = BytesIO()
        Image.new("RGB", (40, 40), (10, 20, 30)).save(out, format="GIF")
        blob = normalize(out.getvalue(), ImageSettings())
        self.assertIn(blob.mime, ("image/jpeg", "image/png"))

    def test_max_bytes_is_enforced(self) -> None:
        noisy = Image.effect_noise((600, 600), 80).convert("RGB")
        out = BytesIO()
        noisy.save(out, format="JPEG", quality=95)
        policy = ImageSettings(max_dimension=None, max_bytes=40_000)
        blob = normalize(out.getvalue(), policy)
        self.assertLessEqual(len(blob.data), 40_000)
        self.assertEqual(blob.mime, "image/jpeg")

    def test_reencoding_is_deterministic(self) -> None:
        data = png_bytes(size=(500, 500))
        policy = ImageSettings(max_dimension=120, output_format="jpeg")
        self.assertEqual(normalize(data, policy).data, normalize(data, policy).data)

    def test_undecodable_bytes_raise(self) -> None:
        with self.assertRaises(ImageDecodeError):
            normalize(b"definitely not an image", ImageSettings())


class TestProbe(unittest.TestCase):
    def test_sniff_mime(self) -> None:
        self.assertEqual(sniff_mime(png_bytes()), "image/png")
        self.assertEqual(sniff_mime(jpeg_bytes()), "image/jpeg")
        self.assertIsNone(sniff_mime(b"nope"))

    def test_probe_trusts_bytes_over_declared_mime(self) -> None:
        blob = probe(png_bytes(size=(10, 12)), "image/jpeg")
        self.assertEqual(blob.mime, "image/png")
        self.assertEqual((blob.width, blob.height), (10, 12))

    def test_probe_keeps_unreadable_data(self) -> None:
        blob = probe(b"\x00\x01\x02", "image/jpeg")
        self.assertEqual(blob.mime, "image/jpeg")
        self.assertIsNone(blob.width)


if __name__ == "__main__":
    unittest.main()
