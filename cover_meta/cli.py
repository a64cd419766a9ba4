from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence

from pydantic import ValidationError

from .app import CoverMetaApp
from .commands import doctor as cmd_doctor
from .commands.output import summary_lines
from .config import Settings, find_config
from .errors import PartialBatchFailure
from .models import BatchReport, OutcomeStatus
from .runner import BatchRunner

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(levelname).1s | %(name)s | %(message)s"
WARNING_LOG_NAME = "cover-meta-warnings.log"
EXIT_INTERRUPTED = 130

C_RESET = "\033[0m"
LEVEL_COLORS = {
    logging.DEBUG: "\033[36m",  # Cyan
    logging.INFO: "\033[37m",  # Light gray
    logging.WARNING: "\033[33m",  # Yellow
    logging.ERROR: "\033[31m",  # Red
    logging.CRITICAL: "\033[35m",  # Magenta
}


class ShortPathFormatter(logging.Formatter):
    def __init__(self, fmt: str, roots: list[Path]) -> None:
        super().__init__(fmt)
        # Longest first so nested roots are trimmed before their parents.
        self.roots = sorted((str(root) for root in roots if str(root) not in ("", "/")), key=len, reverse=True)

    def _shorten(self, message: str) -> str:
        for root in self.roots:
            if not message:
                break
            message = message.replace(f"{root}/", "")
            message = message.replace(root, "")
        return message

    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        return self._shorten(message)


class ColorFormatter(ShortPathFormatter):
    def format(self, record: logging.LogRecord) -> str:
        message = super().format(record)
        color = LEVEL_COLORS.get(record.levelno)
        if not color:
            return message
        return f"{color}{message}{C_RESET}"


class WarningBufferHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.WARNING)
        self.records: list[str] = []

    def emit(self, record: logging.LogRecord) -> None:
        try:
            msg = self.format(record)
        except Exception:  # pragma: no cover
            msg = record.getMessage()
        self.records.append(msg)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="cover-meta", description="Embed, centralise and strip album cover art"
    )
    parser.add_argument("--config", type=Path, help="Path to config.yaml")
    parser.add_argument("--log-level", default="INFO", help="Python logging level")

    processing = argparse.ArgumentParser(add_help=False)
    processing.add_argument("--workers", type=int, help="Number of files/albums processed in parallel")
    processing.add_argument(
        "--fail-fast",
        action="store_true",
        default=None,
        help="Stop dispatching work after the first failure",
    )
    processing.add_argument(
        "--format",
        dest="output_format",
        choices=("keep", "jpeg", "png"),
        help="Image type to embed (keep re-uses PNG/JPEG sources as-is)",
    )
    processing.add_argument("--jpeg-quality", type=int, help="Force JPEG re-encode at this quality")
    processing.add_argument("--max-dimension", type=int, help="Downscale covers larger than this (pixels)")
    processing.add_argument("--max-bytes", type=int, help="Recompress covers larger than this (bytes)")
    processing.add_argument(
        "--no-discovery",
        action="store_true",
        help="Do not query MusicBrainz / Cover Art Archive",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)
    embed_parser = subparsers.add_parser(
        "embed", parents=[processing], help="Discover a cover per file and embed it"
    )
    embed_parser.add_argument("paths", nargs="+", type=Path)
    folder_parser = subparsers.add_parser(
        "folder",
        parents=[processing],
        help="Write one cover file per album folder and strip embedded covers",
    )
    folder_parser.add_argument("paths", nargs="+", type=Path)
    folder_parser.add_argument("--cover-name", help="File stem of the folder cover (default: cover)")
    strip_parser = subparsers.add_parser(
        "strip", parents=[processing], help="Remove embedded covers from every file"
    )
    strip_parser.add_argument("paths", nargs="+", type=Path)
    extract_parser = subparsers.add_parser("extract", help="Save a file's embedded cover to disk")
    extract_parser.add_argument("path", type=Path)
    extract_parser.add_argument("--out", type=Path, help="Destination file or directory")
    doctor_parser = subparsers.add_parser(
        "doctor", help="Check configuration, ffmpeg and discovery availability"
    )
    doctor_parser.add_argument("paths", nargs="*", type=Path)
    doctor_parser.add_argument(
        "--online",
        action="store_true",
        help="Also contact the discovery services",
    )
    return parser


def apply_overrides(settings: Settings, args: argparse.Namespace) -> Settings:
    raw: Dict[str, Any] = settings.model_dump()
    overrides = {
        ("batch", "worker_concurrency"): getattr(args, "workers", None),
        ("batch", "fail_fast"): getattr(args, "fail_fast", None),
        ("batch", "folder_cover_name"): getattr(args, "cover_name", None),
        ("image", "output_format"): getattr(args, "output_format", None),
        ("image", "jpeg_quality"): getattr(args, "jpeg_quality", None),
        ("image", "max_dimension"): getattr(args, "max_dimension", None),
        ("image", "max_bytes"): getattr(args, "max_bytes", None),
    }
    for (section, key), value in overrides.items():
        if value is not None:
            raw[section][key] = value
    if getattr(args, "no_discovery", False) or getattr(args, "command", None) == "strip":
        raw["discovery"]["enabled"] = False
    return Settings.model_validate(raw)


def configure_logging(level_name: str, roots: List[Path]) -> tuple[WarningBufferHandler, Path]:
    log_level = getattr(logging, level_name.upper(), logging.INFO)
    root_logger = logging.getLogger()
    root_logger.handlers.clear()
    root_logger.setLevel(log_level)

    color_handler = logging.StreamHandler()
    color_handler.setFormatter(ColorFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(color_handler)

    warn_buffer = WarningBufferHandler()
    warn_buffer.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(warn_buffer)

    warn_log_path = Path.cwd() / WARNING_LOG_NAME
    file_handler = logging.FileHandler(warn_log_path, mode="w", encoding="utf-8")
    file_handler.setLevel(logging.WARNING)
    file_handler.setFormatter(ShortPathFormatter(LOG_FORMAT, roots))
    root_logger.addHandler(file_handler)

    logging.getLogger("musicbrainzngs").setLevel(logging.WARNING)
    logging.getLogger("PIL").setLevel(logging.WARNING)
    return warn_buffer, warn_log_path


def _display_roots(paths: Sequence[Path]) -> List[Path]:
    roots = []
    for path in paths:
        resolved = path.absolute()
        roots.append(resolved.parent if resolved.is_file() else resolved)
    return roots


def run_batch(app: CoverMetaApp, runner: BatchRunner, command: str, paths: Sequence[Path]) -> BatchReport:
    if command == "folder":
        albums = list(app.scanner.iter_albums(paths))
        logger.info("Processing %d album folder(s)", len(albums))
        return runner.run(albums, app.engine.process_album)
    files = list(app.scanner.iter_files(paths))
    if not files:
        logger.warning("No supported audio files found")
    action = app.engine.process_file if command == "embed" else app.engine.strip_file
    return runner.run(files, action)


def main(argv: Optional[Sequence[str]] = None) -> None:
    parser = build_parser()
    args = parser.parse_args(argv)
    try:
        config_path = find_config(args.config)
        settings = apply_overrides(Settings.load_or_default(config_path), args)
    except FileNotFoundError as exc:
        parser.error(str(exc))
    except ValidationError as exc:
        parser.error(f"invalid settings: {exc}")

    paths: List[Path] = list(getattr(args, "paths", None) or [getattr(args, "path", Path.cwd())])
    roots = _display_roots(paths)
    warn_buffer, warn_log_path = configure_logging(args.log_level, roots)

    report: Optional[BatchReport] = None
    try:
        match args.command:
            case "embed" | "folder" | "strip":
                app = CoverMetaApp.create(settings)
                runner = app.runner()
                # Filled in as units finish, so an interrupt still has a summary.
                report = runner.report
                run_batch(app, runner, args.command, paths)
                report.raise_for_failures()
            case "extract":
                app = CoverMetaApp.create(settings)
                audio = app.scanner.classify(args.path.absolute())
                if audio is None:
                    raise SystemExit(f"Unsupported or unreadable audio file: {args.path}")
                outcome = app.engine.extract_file(audio, args.out)
                if outcome.status is OutcomeStatus.SUCCESS:
                    print(outcome.reason)
                elif outcome.status is OutcomeStatus.SKIPPED:
                    print(f"{args.path}: {outcome.reason}")
                else:
                    raise SystemExit(f"{args.path}: [{outcome.error_kind}] {outcome.reason}")
            case "doctor":
                result = cmd_doctor.run(
                    settings,
                    config_path=config_path,
                    paths=getattr(args, "paths", []),
                    check_online=getattr(args, "online", False),
                )
                for line in result.checks:
                    print(line)
                if not result.ok:
                    raise SystemExit(1)
            case _:
                parser.error("Unknown command")
    except PartialBatchFailure as exc:
        logger.error("%s", exc)
        raise SystemExit(1)
    except KeyboardInterrupt:
        print("\nInterrupted.")
        raise SystemExit(EXIT_INTERRUPTED)
    finally:
        if report is not None:
            print()
            for line in summary_lines(report, roots):
                print(line)
        if warn_buffer.records:
            print("\n\033[33mWarnings/Errors summary:\033[0m")
            for line in warn_buffer.records:
                print(f" - {line}")
            print(f"\nFull warning log: {warn_log_path}")
