"""
Deterministic metadata merge.

Every field of the canonical record is taken whole from exactly one
fragment: the first fragment, in priority order, that has a value for it.
Priority is a per-field list of fragment roles. ``request`` is the caller's
hints, ``native`` the source platform's own fragment, and every other name
is an auxiliary provider. Fragments whose role a field's list does not name
rank after the listed ones, by ``source_priority`` and then by the order
they were declared in. Arrival order never matters.
"""

import logging
from typing import Dict, List, Mapping, Optional, Sequence, Tuple

from tunefetch.models.metadata import MERGEABLE_FIELDS, CanonicalMetadata, MetadataFragment, has_value

log = logging.getLogger(__name__)

REQUEST = "request"
NATIVE = "native"

DEFAULT_FIELD_PRIORITY: Dict[str, List[str]] = {
    "title": [REQUEST, NATIVE, "itunes"],
    "artist": [REQUEST, NATIVE, "itunes"],
    "album": [REQUEST, NATIVE, "itunes"],
    "album_artist": [NATIVE, "itunes", REQUEST],
    "track_no": [NATIVE, "itunes", REQUEST],
    "disc_no": [NATIVE, "itunes", REQUEST],
    "release_date": [NATIVE, "itunes", REQUEST],
    "genre": [NATIVE, "itunes", REQUEST],
    "isrc": [NATIVE, "itunes", REQUEST],
    "duration": [NATIVE, "itunes", REQUEST],
    "cover_art": [NATIVE, "itunes"],
    "lyrics": ["lrclib", "lyrics_ovh", "genius", "musixmatch", NATIVE],
    "synced_lyrics": ["lrclib", "musixmatch", NATIVE],
}


def build_priority_table(
    overrides: Optional[Mapping[str, Sequence[str]]] = None,
) -> Dict[str, List[str]]:
    """Returns the default table with per-field overrides applied."""
    table = {field: list(order) for field, order in DEFAULT_FIELD_PRIORITY.items()}
    for field, order in (overrides or {}).items():
        if field not in MERGEABLE_FIELDS:
            raise ValueError(f"Unknown metadata field in priority table: '{field}'")
        table[field] = list(order)
    return table


def _has_field(fragment: MetadataFragment, field: str) -> bool:
    if field == "cover_art":
        return has_value(fragment.cover_art) or has_value(fragment.cover_art_url)
    return has_value(getattr(fragment, field))


def rank(
    field: str,
    candidates: Sequence[Tuple[str, MetadataFragment]],
    table: Mapping[str, Sequence[str]],
) -> List[Tuple[str, MetadataFragment]]:
    """Orders the (role, fragment) pairs that supply ``field``, best first."""
    order = list(table.get(field, ()))

    def key(item):
        index, (role, fragment) = item
        if role in order:
            return (0, order.index(role), 0, index)
        return (1, 0, fragment.source_priority, index)

    supplied = [
        (i, pair) for i, pair in enumerate(candidates) if _has_field(pair[1], field)
    ]
    return [pair for _, pair in sorted(supplied, key=key)]


def merge_fragments(
    fragments: Sequence[Tuple[str, MetadataFragment]],
    table: Optional[Mapping[str, Sequence[str]]] = None,
    warnings: Sequence[str] = (),
) -> CanonicalMetadata:
    """
    Merges (role, fragment) pairs into one canonical record.

    Args:
        fragments: Fragments paired with their role, in declaration order.
        table: Per-field priority; defaults to DEFAULT_FIELD_PRIORITY.
        warnings: Degradations collected while gathering the fragments.
    """
    table = table if table is not None else DEFAULT_FIELD_PRIORITY
    values = {}
    provenance: Dict[str, str] = {}
    for field in MERGEABLE_FIELDS:
        ranked = rank(field, fragments, table)
        if not ranked:
            continue
        role, fragment = ranked[0]
        provenance[field] = role
        values[field] = getattr(fragment, field)
    return CanonicalMetadata(**values, provenance=provenance, warnings=tuple(warnings))
