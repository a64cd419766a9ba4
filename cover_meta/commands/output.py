from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, List, Optional

from ..models import BatchReport, OutcomeStatus


@dataclass(frozen=True, slots=True)
class CheckLine:
    label: str
    status: str
    detail: Optional[str] = None

    def render(self) -> str:
        if self.detail:
            return f"{self.label}: {self.status} ({self.detail})"
        return f"{self.label}: {self.status}"


def ok(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "OK", detail).render()


def warning(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "WARNING", detail).render()


def error(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "ERROR", detail).render()


def skipped(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "SKIPPED", detail).render()


def enabled(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "ENABLED", detail).render()


def disabled(label: str, detail: Optional[str] = None) -> str:
    return CheckLine(label, "DISABLED", detail).render()


def summary_lines(report: BatchReport, roots: Iterable[Path] = ()) -> List[str]:
    """End-of-run summary: counts first, then one line per failed path."""
    counts = report.summary()
    lines = [
        f"Succeeded: {counts['succeeded']}  Skipped: {counts['skipped']}  Failed: {counts['failed']}"
    ]
    for path, outcome in report.items():
        if outcome.status is OutcomeStatus.FAILED:
            lines.append(f" - {_display(path, roots)}: [{outcome.error_kind}] {outcome.reason}")
    return lines


def _display(path: Path, roots: Iterable[Path]) -> str:
    for root in roots:
        try:
            relative = path.relative_to(root)
        except ValueError:
            continue
        return str(relative) if str(relative) != "." else path.name
    return str(path)
