from __future__ import annotations

from pathlib import Path
from typing import List, Literal, Optional

import yaml
from pydantic import BaseModel, Field, field_validator

from .models import Format


class LibrarySettings(BaseModel):
    include_extensions: List[str] = Field(default_factory=Format.all_extensions)
    exclude_patterns: List[str] = Field(default_factory=list)

    @field_validator("include_extensions", mode="after")
    @classmethod
    def _normalize_exts(cls, values: List[str]) -> List[str]:
        return [v.lower() if v.startswith(".") else f".{v.lower()}" for v in values]


class ImageSettings(BaseModel):
    output_format: Literal["keep", "jpeg", "png"] = "keep"
    max_dimension: Optional[int] = Field(default=1200, ge=1)
    max_bytes: Optional[int] = Field(default=1024 * 1024, ge=1)
    jpeg_quality: Optional[int] = Field(default=None, ge=1, le=100)
    png_optimize: bool = False


class DiscoverySettings(BaseModel):
    enabled: bool = True
    contact: str = "unknown@example.com"
    musicbrainz_host: str = "musicbrainz.org"
    coverart_host: str = "coverartarchive.org"
    use_https: bool = True
    image_size: Optional[Literal["250", "500", "1200"]] = "1200"
    timeout_seconds: float = Field(default=10.0, gt=0)
    max_candidates: int = Field(default=3, ge=1)

    @field_validator("image_size", mode="before")
    @classmethod
    def _size_as_text(cls, value: object) -> object:
        return str(value) if isinstance(value, int) else value


class BatchSettings(BaseModel):
    worker_concurrency: int = Field(default=4, ge=1)
    fail_fast: bool = False
    folder_cover_name: str = "cover"
    skip_existing_folder_cover: bool = True

    @field_validator("folder_cover_name")
    @classmethod
    def _plain_name(cls, value: str) -> str:
        if not value or "/" in value or "\\" in value or value in (".", ".."):
            raise ValueError("folder_cover_name must be a plain file stem")
        return value


class FallbackSettings(BaseModel):
    enabled: bool = True
    ffmpeg_path: Optional[Path] = None
    timeout_seconds: float = 120.0

    @field_validator("ffmpeg_path", mode="before")
    @classmethod
    def _expand_ffmpeg(cls, value: Optional[str | Path]) -> Optional[Path]:
        if value is None:
            return None
        return Path(value).expanduser()


class Settings(BaseModel):
    library: LibrarySettings = LibrarySettings()
    image: ImageSettings = ImageSettings()
    discovery: DiscoverySettings = DiscoverySettings()
    batch: BatchSettings = BatchSettings()
    fallback: FallbackSettings = FallbackSettings()

    @classmethod
    def load(cls, path: Path) -> "Settings":
        with path.open("r", encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
        return cls.model_validate(raw or {})

    @classmethod
    def load_or_default(cls, path: Optional[Path]) -> "Settings":
        if path is None:
            return cls()
        return cls.load(path)


def find_config(explicit_path: Optional[Path]) -> Optional[Path]:
    if explicit_path:
        if not explicit_path.exists():
            raise FileNotFoundError(f"Config file not found: {explicit_path}")
        return explicit_path
    cwd = Path.cwd()
    for candidate in (cwd / "config.yaml", cwd / "config.yml"):
        if candidate.exists():
            return candidate
    return None
