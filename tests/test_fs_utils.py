import os
import stat
import tempfile
import unittest
from pathlib import Path
from unittest import mock

from cover_meta.errors import FileIOError
from cover_meta.fs_utils import NEW_FILE_MODE, atomic_write, staged_path


class TestFsUtils(unittest.TestCase):
    def test_atomic_write_replaces_content_and_keeps_mode(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "song.flac"
            target.write_bytes(b"old")
            os.chmod(target, 0o640)
            atomic_write(target, b"new content")
            self.assertEqual(target.read_bytes(), b"new content")
            self.assertEqual(stat.S_IMODE(target.stat().st_mode), 0o640)
            self.assertEqual(os.listdir(tmpdir), ["song.flac"])

    def test_atomic_write_creates_new_file_with_umask_mode(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "cover.jpg"
            atomic_write(target, b"\xff\xd8\xff")
            self.assertEqual(stat.S_IMODE(target.stat().st_mode), NEW_FILE_MODE)

    def test_failed_rename_leaves_original_and_no_temp_file(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "song.mp3"
            target.write_bytes(b"original")
            with mock.patch("cover_meta.fs_utils.os.replace", side_effect=OSError("disk full")):
                with self.assertRaises(FileIOError):
                    atomic_write(target, b"changed")
            self.assertEqual(target.read_bytes(), b"original")
            self.assertEqual(os.listdir(tmpdir), ["song.mp3"])

    def test_interrupt_after_staging_leaves_original(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            target = Path(tmpdir) / "song.ogg"
            target.write_bytes(b"original")
            with self.assertRaises(KeyboardInterrupt):
                with staged_path(target) as temp:
                    temp.write_bytes(b"half written")
                    self.assertTrue(temp.name.startswith(".song.ogg."))
                    self.assertEqual(temp.parent, target.parent)
                    raise KeyboardInterrupt
            self.assertEqual(target.read_bytes(), b"original")
            self.assertEqual(os.listdir(tmpdir), ["song.ogg"])

    def test_missing_directory_is_reported_as_file_io_error(self) -> None:
        with tempfile.TemporaryDirectory() as tmpdir:
            with self.assertRaises(FileIOError):
                atomic_write(Path(tmpdir) / "missing" / "cover.png", b"x")


if __name__ == "__main__":
    unittest.main()
