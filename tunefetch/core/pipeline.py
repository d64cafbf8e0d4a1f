"""
The set of collaborators every job in a batch shares, and the factory that
builds them from a configuration.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional, Sequence

from tunefetch.media.audio_tool import AudioTool, FfmpegAudioTool
from tunefetch.media.segments import SegmentFilter
from tunefetch.media.tagger import TagEmbedder
from tunefetch.media.transcoder import Transcoder
from tunefetch.metadata.providers import build_providers
from tunefetch.metadata.resolver import MetadataResolver
from tunefetch.models.config import DownloadConfig
from tunefetch.models.track import SourcePlatform
from tunefetch.sources.base import PlaylistExpander
from tunefetch.sources.direct import DirectFetcher
from tunefetch.sources.dispatcher import SourceStrategy
from tunefetch.sources.http import HttpSession
from tunefetch.sources.rate_limiter import RateLimitBudget
from tunefetch.sources.sponsorblock import SponsorBlockClient
from tunefetch.sources.spotify import SpotifyFetcher
from tunefetch.sources.ytdlp import YtDlpFetcher
from tunefetch.storage.naming import OutputNamer

from .retry import RetryPolicy

log = logging.getLogger(__name__)


@dataclass
class Pipeline:
    """Stage implementations plus the budgets shared across jobs."""

    config: DownloadConfig
    sources: SourceStrategy
    resolver: MetadataResolver
    segments: SegmentFilter
    transcoder: Transcoder
    tagger: TagEmbedder
    namer: OutputNamer
    retry: RetryPolicy = field(default_factory=RetryPolicy)
    sponsorblock: Optional[SponsorBlockClient] = None
    expanders: Sequence[PlaylistExpander] = ()
    http: Optional[HttpSession] = None

    async def close(self) -> None:
        if self.http is not None:
            await self.http.close()


def build_pipeline(config: DownloadConfig, tool: Optional[AudioTool] = None) -> Pipeline:
    """Wires the production collaborators for ``config``."""
    http = HttpSession(max_connections=max(4, config.concurrency_limit * 2))
    budget = RateLimitBudget(
        default_concurrency=config.provider_concurrency,
        overrides=config.provider_rate_limits,
    )
    tool = tool or FfmpegAudioTool(
        config.ffmpeg_bin, config.ffprobe_bin, timeout=config.process_timeout
    )

    ytdlp = YtDlpFetcher(config.yt_dlp_bin, timeout=config.process_timeout)
    spotify = SpotifyFetcher(
        http,
        budget,
        ytdlp,
        client_id=config.spotify_client_id,
        client_secret=config.spotify_client_secret,
    )
    sources = SourceStrategy(
        {
            SourcePlatform.YOUTUBE: ytdlp,
            SourcePlatform.SOUNDCLOUD: ytdlp,
            SourcePlatform.SEARCH: ytdlp,
            SourcePlatform.SPOTIFY: spotify,
            SourcePlatform.DIRECT: DirectFetcher(http),
        },
        tool,
    )
    if not spotify.available:
        log.debug("Spotify credentials not configured; Spotify sources are disabled")

    resolver = MetadataResolver(
        build_providers(config, http, budget),
        priority=config.field_priority,
        timeout=config.provider_timeout,
        http=http,
        budget=budget,
        fetch_cover=config.embed_metadata and config.download_cover,
    )
    sponsorblock = (
        SponsorBlockClient(http, budget, config.sponsorblock_categories)
        if config.sponsorblock_enabled
        else None
    )
    tagger = TagEmbedder(
        embed_tags=config.embed_metadata,
        embed_art=config.download_cover,
        embed_lyrics=config.download_lyrics,
        max_cover_bytes=config.max_cover_bytes,
        cover_max_dimension=config.cover_max_dimension,
        verify=config.verify_output,
    )
    return Pipeline(
        config=config,
        sources=sources,
        resolver=resolver,
        segments=SegmentFilter(tool),
        transcoder=Transcoder(tool),
        tagger=tagger,
        namer=OutputNamer(config.output_dir, config.output_template),
        retry=RetryPolicy(
            config.max_retries, config.retry_base_delay, config.retry_max_delay
        ),
        sponsorblock=sponsorblock,
        expanders=(spotify, ytdlp),
        http=http,
    )
