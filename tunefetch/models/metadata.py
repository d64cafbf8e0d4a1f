"""
Metadata records: partial fragments from individual sources and the single
canonical record produced by merging them.
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

# Fields that take part in merging, in the order they are written as tags.
MERGEABLE_FIELDS = (
    "title",
    "artist",
    "album",
    "album_artist",
    "track_no",
    "disc_no",
    "release_date",
    "genre",
    "isrc",
    "duration",
    "cover_art",
    "lyrics",
    "synced_lyrics",
)


def has_value(value: Any) -> bool:
    """True when a fragment field actually carries information."""
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    if isinstance(value, (bytes, bytearray)):
        return len(value) > 0
    return True


@dataclass(frozen=True)
class MetadataFragment:
    """A partial metadata record produced by one source or provider."""

    source: str
    source_priority: int = 100
    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    track_no: Optional[int] = None
    disc_no: Optional[int] = None
    release_date: Optional[str] = None
    genre: Optional[str] = None
    isrc: Optional[str] = None
    duration: Optional[float] = None
    cover_art: Optional[bytes] = field(default=None, repr=False)
    cover_art_url: Optional[str] = None
    lyrics: Optional[str] = field(default=None, repr=False)
    synced_lyrics: Optional[str] = field(default=None, repr=False)

    def filled_fields(self) -> Tuple[str, ...]:
        return tuple(name for name in MERGEABLE_FIELDS if has_value(getattr(self, name)))


@dataclass(frozen=True)
class CanonicalMetadata:
    """
    The merged record used for embedding. Each field was taken whole from the
    highest-priority fragment that supplied it (see ``provenance``), or is empty.
    """

    title: Optional[str] = None
    artist: Optional[str] = None
    album: Optional[str] = None
    album_artist: Optional[str] = None
    track_no: Optional[int] = None
    disc_no: Optional[int] = None
    release_date: Optional[str] = None
    genre: Optional[str] = None
    isrc: Optional[str] = None
    duration: Optional[float] = None
    cover_art: Optional[bytes] = field(default=None, repr=False)
    lyrics: Optional[str] = field(default=None, repr=False)
    synced_lyrics: Optional[str] = field(default=None, repr=False)
    provenance: Dict[str, str] = field(default_factory=dict, compare=False)
    warnings: Tuple[str, ...] = field(default=(), compare=False)

    @property
    def year(self) -> Optional[str]:
        if self.release_date and len(self.release_date) >= 4:
            return self.release_date[:4]
        return None

    def as_dict(self) -> Dict[str, Any]:
        """Field values only, without provenance bookkeeping."""
        skip = {"provenance", "warnings"}
        return {f.name: getattr(self, f.name) for f in fields(self) if f.name not in skip}


@dataclass(frozen=True)
class CommittedFile:
    """The durable output of a job: a fully written, tagged file."""

    path: Path
    size: int
    warnings: Tuple[str, ...] = ()
