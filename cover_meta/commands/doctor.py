from __future__ import annotations

from dataclasses import dataclass
from importlib import metadata
from pathlib import Path
from typing import Optional, Sequence
import urllib.error
import urllib.request

from ..config import DiscoverySettings, Settings
from ..fallback import FfmpegFallback
from ..models import Format
from .output import disabled, enabled, error, ok as ok_line, skipped, warning

WARNING_LOG_NAME = "cover-meta-warnings.log"

NETWORK_NEEDLES = (
    "Temporary failure in name resolution",
    "Name or service not known",
    "urlopen error",
    "timed out",
)


@dataclass(slots=True)
class DoctorReport:
    ok: bool
    checks: list[str]


def _recent_discovery_health_lines(log_path: Path) -> list[str]:
    if not log_path.exists():
        return []
    try:
        text = log_path.read_text(encoding="utf-8", errors="replace")
    except OSError:
        return [warning("Discovery (recent warnings)", f"unreadable log {log_path}")]
    if any(needle in text for needle in NETWORK_NEEDLES):
        return [
            warning(
                "Discovery (recent warnings)",
                "possible network outage in the last run (see warnings log)",
            )
        ]
    return [ok_line("Discovery (recent warnings)", "no obvious network errors")]


def _library_versions() -> str:
    parts = []
    for dist in ("mutagen", "Pillow", "musicbrainzngs"):
        try:
            parts.append(f"{dist} {metadata.version(dist)}")
        except metadata.PackageNotFoundError:
            parts.append(f"{dist} missing")
    return ", ".join(parts)


def run(
    settings: Settings,
    *,
    config_path: Optional[Path] = None,
    paths: Sequence[Path] = (),
    check_online: bool = False,
) -> DoctorReport:
    checks: list[str] = []
    ok = True

    checks.append(ok_line("Config", str(config_path) if config_path else "defaults"))
    checks.append(ok_line("Libraries", _library_versions()))

    known = set(Format.all_extensions())
    unknown = [ext for ext in settings.library.include_extensions if ext not in known]
    if unknown:
        checks.append(warning("Extensions", f"no codec for {', '.join(unknown)}"))
    else:
        checks.append(ok_line("Extensions", f"{len(settings.library.include_extensions)} enabled"))

    if paths:
        missing = [str(path) for path in paths if not path.exists()]
        if missing:
            ok = False
            checks.append(error("Input paths", f"missing: {', '.join(missing)}"))
        else:
            checks.append(ok_line("Input paths", f"{len(paths)} path(s)"))

    image = settings.image
    checks.append(
        ok_line(
            "Image policy",
            f"format={image.output_format} max_dimension={image.max_dimension} "
            f"max_bytes={image.max_bytes}",
        )
    )

    if settings.fallback.enabled:
        ffmpeg = FfmpegFallback(settings.fallback).binary()
        if ffmpeg:
            checks.append(enabled("Fallback (ffmpeg)", ffmpeg))
        else:
            checks.append(
                warning("Fallback (ffmpeg)", "not found; FLV embeds will fail as unsupported")
            )
    else:
        checks.append(disabled("Fallback (ffmpeg)"))

    discovery = settings.discovery
    if not discovery.enabled:
        checks.append(disabled("Discovery", "folder mode falls back to embedded covers"))
    else:
        checks.append(enabled("Discovery", discovery.musicbrainz_host))
        checks.extend(_recent_discovery_health_lines(Path.cwd() / WARNING_LOG_NAME))
        if check_online:
            scheme = "https" if discovery.use_https else "http"
            for label, host in (
                ("MusicBrainz", discovery.musicbrainz_host),
                ("Cover Art Archive", discovery.coverart_host),
            ):
                reachable, line = _probe(label, f"{scheme}://{host}/", discovery)
                ok = ok and reachable
                checks.append(line)
        else:
            checks.append(skipped("Discovery (network)", "pass --online"))

    return DoctorReport(ok=ok, checks=checks)


def _probe(label: str, url: str, discovery: DiscoverySettings) -> tuple[bool, str]:
    request = urllib.request.Request(
        url, method="HEAD", headers={"User-Agent": f"cover-meta ( {discovery.contact} )"}
    )
    try:
        with urllib.request.urlopen(request, timeout=discovery.timeout_seconds) as response:
            status = response.status
    except urllib.error.HTTPError as exc:
        status = exc.code
    except (urllib.error.URLError, TimeoutError) as exc:
        return False, error(f"{label} (network)", str(getattr(exc, "reason", exc)))
    if status >= 500:
        return False, error(f"{label} (network)", f"HTTP {status}")
    return True, ok_line(f"{label} (network)", f"HTTP {status}")
