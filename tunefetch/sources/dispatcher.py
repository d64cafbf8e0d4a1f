"""
Source dispatch: picks the acquisition path for a track request from a
closed set of platforms and returns the fetched media with its native
metadata.
"""

import logging
import re
from pathlib import Path
from typing import Mapping, Optional, Tuple

from tunefetch.exceptions import ProcessFailure, ProcessTimeout, SourceUnavailable, UnsupportedSource
from tunefetch.media.audio_tool import AudioTool
from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import MediaBlob, SourcePlatform, TrackRequest

from .base import MediaFetcher

log = logging.getLogger(__name__)

URL_PATTERNS = (
    (re.compile(r"^https?://([a-z0-9-]+\.)*(youtube\.com|youtu\.be)/", re.IGNORECASE), SourcePlatform.YOUTUBE),
    (re.compile(r"^https?://([a-z0-9-]+\.)*soundcloud\.com/", re.IGNORECASE), SourcePlatform.SOUNDCLOUD),
    (re.compile(r"^https?://open\.spotify\.com/", re.IGNORECASE), SourcePlatform.SPOTIFY),
    (re.compile(r"^spotify:(track|album|playlist):", re.IGNORECASE), SourcePlatform.SPOTIFY),
    (re.compile(r"^https?://", re.IGNORECASE), SourcePlatform.DIRECT),
)


def identify_source(request: TrackRequest) -> SourcePlatform:
    """An explicit hint wins; otherwise URL patterns decide, and free text is a search."""
    if request.source_hint is not None:
        return request.source_hint
    source = request.source.strip()
    for pattern, platform in URL_PATTERNS:
        if pattern.search(source):
            return platform
    return SourcePlatform.SEARCH


class SourceStrategy:
    """
    Dispatches requests to one fetcher per platform.

    The mapping must name every SourcePlatform; a platform mapped to None
    is known but unsupported in this configuration.
    """

    def __init__(
        self,
        fetchers: Mapping[SourcePlatform, Optional[MediaFetcher]],
        tool: AudioTool,
    ):
        missing = [p.name for p in SourcePlatform if p not in fetchers]
        if missing:
            raise ValueError(f"No fetcher mapping for platform(s): {', '.join(missing)}")
        self.fetchers = dict(fetchers)
        self.tool = tool

    def identify_source(self, request: TrackRequest) -> SourcePlatform:
        return identify_source(request)

    def fetcher_for(self, platform: SourcePlatform) -> MediaFetcher:
        fetcher = self.fetchers[platform]
        if fetcher is None:
            raise UnsupportedSource(f"No fetcher configured for {platform.value}")
        if not fetcher.available:
            raise UnsupportedSource(
                f"{platform.value} is unavailable: credentials are not configured"
            )
        return fetcher

    async def acquire(
        self, request: TrackRequest, workdir: Path
    ) -> Tuple[MediaBlob, MetadataFragment]:
        """
        Fetches the request's media into ``workdir`` and probes it.

        Raises:
            UnsupportedSource: No usable fetcher for the request's platform.
            SourceUnavailable, RateLimited, NotFound: From the fetcher.
        """
        platform = self.identify_source(request)
        fetcher = self.fetcher_for(platform)
        log.debug(f"Acquiring '{request.label}' via {fetcher.name} ({platform.value})")

        fetched = await fetcher.fetch(request, workdir)
        try:
            probe = await self.tool.probe(fetched.path)
        except (ProcessFailure, ProcessTimeout) as e:
            raise SourceUnavailable(f"Fetched file could not be probed: {e}") from e

        blob = MediaBlob(
            path=fetched.path,
            container=probe.container,
            codec=probe.codec,
            duration=probe.duration,
            bitrate=probe.bitrate,
            origin_id=fetched.origin_id,
        )
        return blob, fetched.native
