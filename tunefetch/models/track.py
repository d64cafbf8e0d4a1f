"""
Immutable records describing a requested track and the media that flows
through a job's pipeline.
"""

import uuid
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Optional, Tuple

from .metadata import MetadataFragment

LOSSLESS_CODECS = frozenset({"flac", "pcm_s16le", "pcm_s24le", "alac"})


class SourcePlatform(Enum):
    """The closed set of platforms a track can be acquired from."""

    YOUTUBE = "youtube"
    SOUNDCLOUD = "soundcloud"
    SPOTIFY = "spotify"
    SEARCH = "search"
    DIRECT = "direct"


@dataclass(frozen=True)
class FormatSpec:
    """Target container, codec and bitrate (kbps, None for lossless)."""

    container: str
    codec: str
    bitrate: Optional[int] = None

    @property
    def is_lossless(self) -> bool:
        return self.codec in LOSSLESS_CODECS

    def __str__(self) -> str:
        if self.bitrate and not self.is_lossless:
            return f"{self.container}/{self.codec} {self.bitrate}k"
        return f"{self.container}/{self.codec}"


@dataclass(frozen=True)
class TrackRequest:
    """
    One desired download.

    ``source`` is a URL, a platform identifier or a free-text search query.
    ``hints`` holds caller-supplied metadata (e.g. the title and artist columns
    of a CSV row) and takes part in metadata merging under the ``request``
    source name.
    """

    source: str
    source_hint: Optional[SourcePlatform] = None
    target: Optional[FormatSpec] = None
    output_path: Optional[Path] = None
    hints: Optional[MetadataFragment] = None
    origin: str = ""
    request_id: str = field(default_factory=lambda: uuid.uuid4().hex[:12])

    @property
    def label(self) -> str:
        """A short human-readable name for logs and progress displays."""
        if self.hints and self.hints.title:
            if self.hints.artist:
                return f"{self.hints.artist} - {self.hints.title}"
            return self.hints.title
        return self.source


@dataclass(frozen=True)
class MediaBlob:
    """
    A media file owned by exactly one job.

    ``duration`` is the probed duration of the fetched file in seconds, which
    is the authoritative bound for segment trimming.
    """

    path: Path
    container: str
    codec: str
    duration: Optional[float] = None
    bitrate: Optional[int] = None
    origin_id: Optional[str] = None

    @property
    def is_lossless(self) -> bool:
        return self.codec in LOSSLESS_CODECS


@dataclass(frozen=True)
class SegmentSpec:
    """An ordered set of (start, end) ranges in seconds to cut from a stream."""

    ranges: Tuple[Tuple[float, float], ...] = ()

    def __bool__(self) -> bool:
        return bool(self.ranges)

    def normalized(self) -> "SegmentSpec":
        """Returns the ranges sorted by start with overlapping ones merged."""
        merged: list[list[float]] = []
        for start, end in sorted(self.ranges):
            if merged and start <= merged[-1][1]:
                merged[-1][1] = max(merged[-1][1], end)
            else:
                merged.append([start, end])
        return SegmentSpec(tuple((s, e) for s, e in merged))

    @property
    def total(self) -> float:
        """Total seconds covered, assuming the ranges are normalized."""
        return sum(end - start for start, end in self.ranges)
