from __future__ import annotations

import logging
from pathlib import Path
from typing import Callable, Optional

from .config import BatchSettings
from .errors import CoverError, DiscoveryUnavailable, FileIOError, NoCandidates, UnsupportedFormat
from .fallback import FfmpegFallback
from .formats import codec_for, read_bytes, read_cover
from .fs_utils import atomic_write
from .models import Album, AudioFile, BatchReport, ImageBlob, OperationOutcome
from .resolution import CoverResolver

logger = logging.getLogger(__name__)

FOLDER_COVER_EXTENSIONS = (".jpg", ".jpeg", ".png")


class CoverEngine:
    """Applies covers file by file; every unit commits atomically or not at all.

    Each operation reads the whole file, mutates an in-memory copy through the
    format codec and replaces the original with :func:`atomic_write`. Errors
    are turned into a failed :class:`OperationOutcome` for that path and never
    reach sibling units.
    """

    def __init__(
        self,
        resolver: CoverResolver,
        settings: BatchSettings,
        fallback: Optional[FfmpegFallback] = None,
    ) -> None:
        self.resolver = resolver
        self.settings = settings
        self.fallback = fallback

    # Single files -----------------------------------------------------------------

    def process_file(self, file: AudioFile) -> OperationOutcome:
        """Discover a cover for ``file``'s album and embed it."""
        try:
            blob = self.resolver.resolve_for_file(file)
        except (DiscoveryUnavailable, NoCandidates) as exc:
            logger.info("Leaving %s untouched: %s", file.path, exc)
            return OperationOutcome.skipped(str(exc))
        except CoverError as exc:
            return self._failed(file.path, exc)
        return self.embed_file(file, blob)

    def embed_file(self, file: AudioFile, blob: ImageBlob) -> OperationOutcome:
        return self._guard(file.path, lambda: self._embed(file, blob))

    def strip_file(self, file: AudioFile) -> OperationOutcome:
        return self._guard(file.path, lambda: self._strip(file))

    def extract_file(self, file: AudioFile, destination: Optional[Path] = None) -> OperationOutcome:
        return self._guard(file.path, lambda: self._extract(file, destination))

    def _embed(self, file: AudioFile, blob: ImageBlob) -> OperationOutcome:
        data = read_bytes(file)
        try:
            updated = codec_for(file.format).write(data, file.format, blob)
        except UnsupportedFormat:
            if self.fallback is None or not self.fallback.available:
                raise
            if not self.fallback.embed_blob(file.path, file.format, blob):
                raise UnsupportedFormat(f"{file.format.label}: fallback could not embed the cover")
            file.has_embedded_cover = True
            return OperationOutcome.success("embedded with ffmpeg")
        if updated != data:
            atomic_write(file.path, updated)
        file.has_embedded_cover = True
        logger.info("Embedded %s cover into %s", blob.kind, file.path)
        return OperationOutcome.success()

    def _strip(self, file: AudioFile) -> OperationOutcome:
        data = read_bytes(file)
        stripped = codec_for(file.format).strip(data, file.format)
        file.has_embedded_cover = False
        if stripped is None:
            return OperationOutcome.success("no embedded cover")
        atomic_write(file.path, stripped)
        logger.info("Stripped embedded cover from %s", file.path)
        return OperationOutcome.success()

    def _extract(self, file: AudioFile, destination: Optional[Path]) -> OperationOutcome:
        blob = read_cover(file)
        if blob is None:
            return OperationOutcome.skipped("no embedded cover")
        target = destination or file.path.with_name(f"{file.path.stem}.cover{blob.extension}")
        if target.is_dir():
            target = target / f"{file.path.stem}{blob.extension}"
        atomic_write(target, blob.data)
        logger.info("Extracted cover of %s to %s", file.path, target)
        return OperationOutcome.success(str(target))

    # Folder mode ------------------------------------------------------------------

    def process_album(self, album: Album) -> BatchReport:
        """Write one folder cover for ``album`` and strip every member file.

        Member files are only stripped once a folder cover exists, and each
        strip commits independently of its siblings.
        """
        report = BatchReport()
        cover_name = self.settings.folder_cover_name
        existing = find_folder_cover(album.directory, cover_name)

        if existing is not None and self.settings.skip_existing_folder_cover:
            logger.info("Keeping existing folder cover %s", existing)
            report.record(existing, OperationOutcome.skipped("folder cover already exists"))
        else:
            cover_path = self._write_folder_cover(album, report)
            if cover_path is None:
                return report
            for stale in _folder_covers(album.directory, cover_name):
                if stale != cover_path:
                    self._remove_stale(stale, report)

        for file in album.files:
            outcome = self.strip_file(file)
            report.record(file.path, outcome)
            if not outcome.ok and self.settings.fail_fast:
                for rest in album.files[album.files.index(file) + 1:]:
                    report.record(rest.path, OperationOutcome.skipped("stopped after failure"))
                break
        return report

    def _write_folder_cover(self, album: Album, report: BatchReport) -> Optional[Path]:
        try:
            blob = self.resolver.resolve_for_album(album)
        except (DiscoveryUnavailable, NoCandidates) as exc:
            logger.info("Skipping album %s: %s", album.directory, exc)
            for file in album.files:
                report.record(file.path, OperationOutcome.skipped(str(exc)))
            return None
        except CoverError as exc:
            report.record(album.directory, self._failed(album.directory, exc))
            self._skip_members(album, report, "album cover could not be prepared")
            return None

        album.canonical_cover = blob
        cover_path = album.directory / f"{self.settings.folder_cover_name}{blob.extension}"
        outcome = self._guard(cover_path, lambda: self._commit_folder_cover(cover_path, blob))
        report.record(cover_path, outcome)
        if not outcome.ok:
            self._skip_members(album, report, "folder cover was not written")
            return None
        return cover_path

    @staticmethod
    def _commit_folder_cover(path: Path, blob: ImageBlob) -> OperationOutcome:
        atomic_write(path, blob.data)
        logger.info("Wrote folder cover %s (%d bytes)", path, len(blob))
        return OperationOutcome.success()

    def _remove_stale(self, path: Path, report: BatchReport) -> None:
        try:
            path.unlink()
        except OSError as exc:
            report.record(path, self._failed(path, FileIOError(f"cannot remove {path}: {exc}")))
            return
        logger.info("Removed superseded folder cover %s", path)

    @staticmethod
    def _skip_members(album: Album, report: BatchReport, reason: str) -> None:
        for file in album.files:
            report.record(file.path, OperationOutcome.skipped(reason))

    # Helpers ----------------------------------------------------------------------

    def _guard(self, path: Path, action: Callable[[], OperationOutcome]) -> OperationOutcome:
        try:
            return action()
        except CoverError as exc:
            return self._failed(path, exc)
        except OSError as exc:
            return self._failed(path, FileIOError(str(exc)))

    @staticmethod
    def _failed(path: Path, exc: CoverError) -> OperationOutcome:
        logger.warning("%s: %s", path, exc)
        return OperationOutcome.failed(exc)


def _folder_covers(directory: Path, stem: str) -> list[Path]:
    try:
        entries = list(directory.iterdir())
    except FileNotFoundError:
        return []
    return sorted(
        entry
        for entry in entries
        if entry.is_file()
        and entry.stem.lower() == stem.lower()
        and entry.suffix.lower() in FOLDER_COVER_EXTENSIONS
    )


def find_folder_cover(directory: Path, stem: str) -> Optional[Path]:
    covers = _folder_covers(directory, stem)
    return covers[0] if covers else None
