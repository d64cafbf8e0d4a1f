"""
Direct HTTP(S) audio downloads.
"""

import logging
import mimetypes
from pathlib import Path, PurePosixPath
from typing import Optional
from urllib.parse import unquote, urlparse

from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import TrackRequest

from .base import FetchedMedia
from .http import HttpSession

log = logging.getLogger(__name__)

AUDIO_SUFFIXES = {".mp3", ".m4a", ".aac", ".flac", ".ogg", ".opus", ".wav", ".webm"}


def _suffix(url: str, content_type: Optional[str] = None) -> str:
    suffix = PurePosixPath(urlparse(url).path).suffix.lower()
    if suffix in AUDIO_SUFFIXES:
        return suffix
    if content_type:
        guessed = mimetypes.guess_extension(content_type.split(";")[0].strip())
        if guessed in AUDIO_SUFFIXES:
            return guessed
    return ".bin"


class DirectFetcher:
    """Streams an audio file from a plain URL into the work directory."""

    name = "direct"

    def __init__(self, http: HttpSession):
        self.http = http

    @property
    def available(self) -> bool:
        return True

    async def fetch(self, request: TrackRequest, workdir: Path) -> FetchedMedia:
        url = request.source.strip()
        destination = workdir / f"source{_suffix(url)}"
        size, content_type = await self.http.download(url, destination)
        log.debug(f"Downloaded {size} bytes from {urlparse(url).netloc}")

        if destination.suffix == ".bin":
            renamed = destination.with_suffix(_suffix(url, content_type))
            destination = destination.rename(renamed)

        stem = unquote(PurePosixPath(urlparse(url).path).stem)
        return FetchedMedia(
            path=destination,
            native=MetadataFragment(source="direct", source_priority=90, title=stem or None),
            origin_id=None,
        )
