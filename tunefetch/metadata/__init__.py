"""
Metadata resolution: auxiliary providers and the deterministic merge policy.
"""

from .merge import DEFAULT_FIELD_PRIORITY, build_priority_table, merge_fragments
from .resolver import MetadataResolver

__all__ = [
    "DEFAULT_FIELD_PRIORITY",
    "MetadataResolver",
    "build_priority_table",
    "merge_fragments",
]
