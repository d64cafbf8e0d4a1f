"""
Collaborator interfaces for media acquisition and playlist expansion.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Optional, Protocol, runtime_checkable

from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import TrackRequest


@dataclass(frozen=True)
class FetchedMedia:
    """The raw file a fetcher wrote plus what the platform said about it."""

    path: Path
    native: MetadataFragment
    origin_id: Optional[str] = None


@dataclass(frozen=True)
class PlaylistEntry:
    """One entry of an expanded playlist; ``request`` is None when unusable."""

    origin: str
    request: Optional[TrackRequest] = None
    reason: Optional[str] = None


@runtime_checkable
class MediaFetcher(Protocol):
    """Downloads the media behind one identifier into a work directory."""

    name: str

    @property
    def available(self) -> bool: ...

    async def fetch(self, request: TrackRequest, workdir: Path) -> FetchedMedia: ...


@runtime_checkable
class PlaylistExpander(Protocol):
    """Turns a playlist or album reference into per-track entries."""

    def handles(self, url: str) -> bool: ...

    async def expand(self, url: str) -> list[PlaylistEntry]: ...
