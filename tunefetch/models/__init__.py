"""
Data Models Layer.

This package contains the records that define the core data structures used
throughout the application: configuration, track requests and media blobs,
metadata fragments, and job/batch results.
"""

from .config import DownloadConfig, get_format_spec
from .job import (
    BatchResult,
    ExpansionFailure,
    JobOutcome,
    JobState,
    ProgressEvent,
)
from .metadata import CanonicalMetadata, CommittedFile, MetadataFragment
from .track import FormatSpec, MediaBlob, SegmentSpec, SourcePlatform, TrackRequest

__all__ = [
    "BatchResult",
    "CanonicalMetadata",
    "CommittedFile",
    "DownloadConfig",
    "ExpansionFailure",
    "FormatSpec",
    "JobOutcome",
    "JobState",
    "MediaBlob",
    "MetadataFragment",
    "ProgressEvent",
    "SegmentSpec",
    "SourcePlatform",
    "TrackRequest",
    "get_format_spec",
]
