from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Optional

from .config import Settings
from .engine import CoverEngine
from .fallback import FfmpegFallback
from .providers import CoverDiscovery
from .providers.coverart import MusicBrainzCoverArt
from .resolution import CoverResolver, SingleFlight
from .runner import BatchRunner
from .scanner import LibraryScanner

logger = logging.getLogger(__name__)


@dataclass
class CoverMetaApp:
    settings: Settings
    scanner: LibraryScanner
    engine: CoverEngine
    discovery: Optional[CoverDiscovery] = None
    fallback: Optional[FfmpegFallback] = None
    memo: SingleFlight = field(default_factory=SingleFlight)

    @classmethod
    def create(
        cls,
        settings: Settings,
        discovery: Optional[CoverDiscovery] = None,
    ) -> "CoverMetaApp":
        if discovery is None and settings.discovery.enabled:
            discovery = MusicBrainzCoverArt(settings.discovery)
        fallback: Optional[FfmpegFallback] = None
        if settings.fallback.enabled:
            fallback = FfmpegFallback(settings.fallback)
            if not fallback.available:
                logger.debug("ffmpeg not found; unsupported containers will be reported")
        memo: SingleFlight = SingleFlight()
        resolver = CoverResolver(settings.image, discovery=discovery, memo=memo)
        return cls(
            settings=settings,
            scanner=LibraryScanner(settings.library),
            engine=CoverEngine(resolver, settings.batch, fallback=fallback),
            discovery=discovery,
            fallback=fallback,
            memo=memo,
        )

    def runner(self) -> BatchRunner:
        return BatchRunner(
            workers=self.settings.batch.worker_concurrency,
            fail_fast=self.settings.batch.fail_fast,
        )
