from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:  # pragma: no cover
    from .models import BatchReport


class CoverError(Exception):
    """Raised when a single file or album cannot be processed; siblings keep going."""

    kind = "error"


class FormatParseError(CoverError):
    """The container structure is unreadable or corrupt."""

    kind = "format_parse_error"


class UnsupportedImageType(CoverError):
    kind = "unsupported_image_type"


class CapacityExceeded(CoverError):
    """The container has a hard size ceiling the picture cannot satisfy."""

    kind = "capacity_exceeded"


class UnsupportedFormat(CoverError):
    """The container has no place to store an embedded picture."""

    kind = "unsupported_format"


class ImageDecodeError(CoverError):
    kind = "image_decode_error"


class DiscoveryUnavailable(CoverError):
    kind = "discovery_unavailable"


class NoCandidates(CoverError):
    kind = "no_candidates"


class FileIOError(CoverError):
    kind = "io_error"


class PartialBatchFailure(CoverError):
    """Raised after a batch completed with at least one failed unit."""

    kind = "partial_batch_failure"

    def __init__(self, report: "BatchReport") -> None:
        failed = report.failed()
        super().__init__(f"{len(failed)} of {len(report)} file(s) failed")
        self.report = report
