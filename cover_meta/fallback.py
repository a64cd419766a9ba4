from __future__ import annotations

import logging
import shutil
import subprocess
import tempfile
from pathlib import Path
from typing import Optional

from .config import FallbackSettings
from .fs_utils import staged_path
from .models import Format, ImageBlob

logger = logging.getLogger(__name__)

# The staged output has a .tmp suffix, so the muxer is always named.
MUXERS = {
    Format.MP3: "mp3",
    Format.AAC: "adts",
    Format.WAV: "wav",
    Format.AIFF: "aiff",
    Format.M4A: "ipod",
    Format.ALAC: "ipod",
    Format.FLAC: "flac",
    Format.OGG: "ogg",
    Format.OPUS: "opus",
    Format.WEBM: "matroska",
    Format.FLV: "flv",
    Format.APE: "ape",
    Format.WMA: "asf",
}


class FfmpegFallback:
    """Embeds a picture with ffmpeg for containers the codecs cannot write.

    Streams are copied, never re-encoded; the image is mapped as an
    ``attached_pic`` video stream.
    """

    name = "ffmpeg"

    def __init__(self, settings: FallbackSettings) -> None:
        self.settings = settings

    def binary(self) -> Optional[str]:
        if self.settings.ffmpeg_path is not None:
            path = self.settings.ffmpeg_path
            return str(path) if path.exists() else None
        return shutil.which("ffmpeg")

    @property
    def available(self) -> bool:
        return self.settings.enabled and self.binary() is not None

    def embed(self, path: Path, image_path: Path, fmt: Format) -> bool:
        """Attach ``image_path`` to ``path`` in place; False when ffmpeg fails."""
        ffmpeg = self.binary()
        if not self.settings.enabled or ffmpeg is None:
            return False
        try:
            with staged_path(path) as output:
                cmd = [
                    ffmpeg,
                    "-y",
                    "-loglevel",
                    "error",
                    "-i",
                    str(path),
                    "-i",
                    str(image_path),
                    "-map",
                    "0",
                    "-map",
                    "1",
                    "-c",
                    "copy",
                    "-disposition:v:0",
                    "attached_pic",
                    "-metadata:s:v",
                    "title=Cover (front)",
                    "-f",
                    MUXERS[fmt],
                    str(output),
                ]
                result = subprocess.run(
                    cmd,
                    capture_output=True,
                    text=True,
                    check=False,
                    timeout=self.settings.timeout_seconds,
                )
                if result.returncode != 0:
                    raise FallbackFailed(result.stderr.strip() or f"exit status {result.returncode}")
        except FallbackFailed as exc:
            logger.warning("ffmpeg could not embed a cover into %s: %s", path, exc)
            return False
        except subprocess.TimeoutExpired:
            logger.warning("ffmpeg timed out embedding a cover into %s", path)
            return False
        logger.info("Embedded cover into %s using ffmpeg", path)
        return True

    def embed_blob(self, path: Path, fmt: Format, blob: ImageBlob) -> bool:
        with tempfile.TemporaryDirectory(prefix="cover-meta-") as tmp:
            image_path = Path(tmp) / f"cover{blob.extension}"
            image_path.write_bytes(blob.data)
            return self.embed(path, image_path, fmt)


class FallbackFailed(Exception):
    pass
