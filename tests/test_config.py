import os
import tempfile
import unittest
from pathlib import Path

from pydantic import ValidationError

from cover_meta.config import BatchSettings, LibrarySettings, Settings, find_config


class TestSettings(unittest.TestCase):
    def test_defaults(self) -> None:
        settings = Settings()
        self.assertEqual(settings.image.output_format, "keep")
        self.assertEqual(settings.batch.folder_cover_name, "cover")
        self.assertIn(".flac", settings.library.include_extensions)
        self.assertTrue(settings.fallback.enabled)

    def test_load_yaml(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text(
                "\n".join(
                    [
                        "library:",
                        "  include_extensions: [FLAC, .mp3]",
                        "image:",
                        "  output_format: jpeg",
                        "  max_dimension: 600",
                        "batch:",
                        "  worker_concurrency: 2",
                        "  fail_fast: true",
                        "fallback:",
                        "  ffmpeg_path: ~/bin/ffmpeg",
                    ]
                ),
                encoding="utf-8",
            )
            settings = Settings.load(path)

        self.assertEqual(settings.library.include_extensions, [".flac", ".mp3"])
        self.assertEqual(settings.image.output_format, "jpeg")
        self.assertEqual(settings.image.max_dimension, 600)
        self.assertEqual(settings.batch.worker_concurrency, 2)
        self.assertTrue(settings.batch.fail_fast)
        self.assertEqual(settings.fallback.ffmpeg_path, Path("~/bin/ffmpeg").expanduser())

    def test_empty_file_gives_defaults(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            path = Path(tmpdir) / "config.yaml"
            path.write_text("", encoding="utf-8")
            self.assertEqual(Settings.load(path), Settings())

    def test_invalid_values_are_rejected(self) -> None:
        with self.assertRaises(ValidationError):
            Settings.model_validate({"image": {"output_format": "gif"}})
        with self.assertRaises(ValidationError):
            Settings.model_validate({"batch": {"worker_concurrency": 0}})
        with self.assertRaises(ValidationError):
            Settings.model_validate({"image": {"jpeg_quality": 101}})

    def test_folder_cover_name_must_be_a_stem(self) -> None:
        for name in ("", "a/b", "a\\b", ".", ".."):
            with self.subTest(name=name):
                with self.assertRaises(ValidationError):
                    BatchSettings(folder_cover_name=name)
        self.assertEqual(BatchSettings(folder_cover_name="folder").folder_cover_name, "folder")

    def test_extension_normalisation(self) -> None:
        self.assertEqual(LibrarySettings(include_extensions=["OGG", ".Opus"]).include_extensions, [".ogg", ".opus"])


class TestFindConfig(unittest.TestCase):
    def setUp(self) -> None:
        self._cwd = os.getcwd()
        self._tmp = tempfile.TemporaryDirectory()
        os.chdir(self._tmp.name)

    def tearDown(self) -> None:
        os.chdir(self._cwd)
        self._tmp.cleanup()

    def test_explicit_path_must_exist(self) -> None:
        with self.assertRaises(FileNotFoundError):
            find_config(Path("missing.yaml"))

    def test_discovers_config_in_working_directory(self) -> None:
        self.assertIsNone(find_config(None))
        Path("config.yml").write_text("batch: {}\n", encoding="utf-8")
        self.assertEqual(find_config(None), Path.cwd() / "config.yml")
        Path("config.yaml").write_text("batch: {}\n", encoding="utf-8")
        self.assertEqual(find_config(None), Path.cwd() / "config.yaml")

    def test_load_or_default(self) -> None:
        self.assertEqual(Settings.load_or_default(None), Settings())


if __name__ == "__main__":
    unittest.main()
