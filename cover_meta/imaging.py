from __future__ import annotations

import logging
from io import BytesIO
from typing import Optional

from PIL import Image, ImageOps, UnidentifiedImageError

from .config import ImageSettings
from .errors import CapacityExceeded, ImageDecodeError
from .models import JPEG_MIME, PNG_MIME, ImageBlob

logger = logging.getLogger(__name__)

MIME_BY_PIL_FORMAT = {
    "JPEG": JPEG_MIME,
    "PNG": PNG_MIME,
    "GIF": "image/gif",
    "BMP": "image/bmp",
    "WEBP": "image/webp",
    "TIFF": "image/tiff",
}

MIN_JPEG_QUALITY = 40
MIN_DIMENSION = 64
SCALE_STEP = 0.75
DEFAULT_JPEG_QUALITY = 90


def sniff_mime(data: bytes) -> Optional[str]:
    if data.startswith(b"\x89PNG\r\n\x1a\n"):
        return PNG_MIME
    if data.startswith(b"\xff\xd8\xff"):
        return JPEG_MIME
    if data[:6] in (b"GIF87a", b"GIF89a"):
        return "image/gif"
    if data.startswith(b"BM"):
        return "image/bmp"
    if data[:4] == b"RIFF" and data[8:12] == b"WEBP":
        return "image/webp"
    return None


def probe(data: bytes, mime: Optional[str] = None) -> ImageBlob:
    """Describe embedded picture bytes without re-encoding them.

    The declared ``mime`` from a container is only used when the bytes
    themselves are not recognisable.
    """
    detected = sniff_mime(data) or mime or "application/octet-stream"
    width: Optional[int] = None
    height: Optional[int] = None
    try:
        with Image.open(BytesIO(data)) as img:
            width, height = img.size
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError):
        logger.debug("Could not read picture dimensions (%d bytes)", len(data))
    return ImageBlob(data=data, mime=detected, width=width, height=height)


def normalize(data: bytes, policy: ImageSettings) -> ImageBlob:
    """Condition a source image for embedding according to ``policy``.

    The input is returned untouched when it is already a compliant PNG/JPEG and
    no re-encode was requested, so embedding an image twice is byte-stable.
    Re-encoding is deterministic for identical input and policy.
    """
    try:
        with Image.open(BytesIO(data)) as img:
            img.load()
            source_mime = MIME_BY_PIL_FORMAT.get(img.format or "")
            target_mime = _target_mime(policy.output_format, source_mime, img)
            width, height = img.size
            if _can_pass_through(data, source_mime, target_mime, width, height, policy):
                return ImageBlob(data=data, mime=target_mime, width=width, height=height)
            working = ImageOps.exif_transpose(img)
    except (UnidentifiedImageError, OSError, ValueError, Image.DecompressionBombError) as exc:
        raise ImageDecodeError(f"cannot decode image: {exc}") from exc

    working = _prepare_mode(working, target_mime)
    if policy.max_dimension and max(working.size) > policy.max_dimension:
        working = _scaled(working, policy.max_dimension / max(working.size))

    quality = policy.jpeg_quality or DEFAULT_JPEG_QUALITY
    encoded = _encode(working, target_mime, quality, policy.png_optimize)
    while policy.max_bytes and len(encoded) > policy.max_bytes:
        if target_mime == JPEG_MIME and quality > MIN_JPEG_QUALITY:
            quality = max(MIN_JPEG_QUALITY, quality - 10)
        else:
            if max(working.size) * SCALE_STEP < MIN_DIMENSION:
                raise CapacityExceeded(
                    f"image cannot be reduced below {policy.max_bytes} bytes"
                )
            working = _scaled(working, SCALE_STEP)
        encoded = _encode(working, target_mime, quality, policy.png_optimize)
    logger.debug(
        "Normalised image %s -> %s %dx%d (%d bytes)",
        source_mime,
        target_mime,
        working.size[0],
        working.size[1],
        len(encoded),
    )
    return ImageBlob(
        data=encoded, mime=target_mime, width=working.size[0], height=working.size[1]
    )


def _target_mime(output_format: str, source_mime: Optional[str], img: Image.Image) -> str:
    if output_format == "jpeg":
        return JPEG_MIME
    if output_format == "png":
        return PNG_MIME
    if source_mime in (JPEG_MIME, PNG_MIME):
        return source_mime
    return PNG_MIME if _has_alpha(img) else JPEG_MIME


def _can_pass_through(
    data: bytes,
    source_mime: Optional[str],
    target_mime: str,
    width: int,
    height: int,
    policy: ImageSettings,
) -> bool:
    if source_mime != target_mime:
        return False
    if policy.max_dimension and max(width, height) > policy.max_dimension:
        return False
    if policy.max_bytes and len(data) > policy.max_bytes:
        return False
    if target_mime == JPEG_MIME and policy.jpeg_quality:
        return False
    if target_mime == PNG_MIME and policy.png_optimize:
        return False
    return True


def _has_alpha(img: Image.Image) -> bool:
    return img.mode in ("RGBA", "LA", "PA") or (img.mode == "P" and "transparency" in img.info)


def _prepare_mode(img: Image.Image, target_mime: str) -> Image.Image:
    if target_mime == JPEG_MIME:
        if _has_alpha(img):
            rgba = img.convert("RGBA")
            background = Image.new("RGB", rgba.size, (255, 255, 255))
            background.paste(rgba, mask=rgba.getchannel("A"))
            return background
        if img.mode not in ("RGB", "L"):
            return img.convert("RGB")
        return img
    if img.mode not in ("RGB", "RGBA", "L", "LA", "P"):
        return img.convert("RGBA" if _has_alpha(img) else "RGB")
    return img


def _scaled(img: Image.Image, factor: float) -> Image.Image:
    size = (max(1, round(img.size[0] * factor)), max(1, round(img.size[1] * factor)))
    return img.resize(size, Image.Resampling.LANCZOS)


def _encode(img: Image.Image, mime: str, quality: int, png_optimize: bool) -> bytes:
    out = BytesIO()
    if mime == JPEG_MIME:
        img.save(out, format="JPEG", quality=quality, optimize=True)
    else:
        img.save(out, format="PNG", optimize=png_optimize)
    return out.getvalue()
