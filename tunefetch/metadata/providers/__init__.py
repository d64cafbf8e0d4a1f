"""
Auxiliary metadata providers, registered by the name used in configuration.
"""

from typing import List

from tunefetch.models.config import DownloadConfig
from tunefetch.sources.http import HttpSession
from tunefetch.sources.rate_limiter import RateLimitBudget

from .base import MetadataProvider
from .genius import GeniusProvider
from .itunes import ItunesProvider
from .lrclib import LrclibProvider
from .lyrics_ovh import LyricsOvhProvider
from .musixmatch import MusixmatchProvider

__all__ = [
    "GeniusProvider",
    "ItunesProvider",
    "LrclibProvider",
    "LyricsOvhProvider",
    "MetadataProvider",
    "MusixmatchProvider",
    "build_providers",
]


def build_providers(
    config: DownloadConfig, http: HttpSession, budget: RateLimitBudget
) -> List[MetadataProvider]:
    """Instantiates the configured providers in their declaration order."""
    factories = {
        "lrclib": lambda: LrclibProvider(http, budget),
        "lyrics_ovh": lambda: LyricsOvhProvider(http, budget),
        "musixmatch": lambda: MusixmatchProvider(http, budget, config.musixmatch_api_key),
        "genius": lambda: GeniusProvider(http, budget, config.genius_access_token),
        "itunes": lambda: ItunesProvider(http, budget),
    }
    names: List[str] = []
    if config.embed_metadata:
        names.extend(config.tag_providers)
    if config.embed_metadata and config.download_lyrics:
        names.extend(config.lyrics_providers)
    return [factories[name]() for name in names]
