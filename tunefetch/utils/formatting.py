"""
Helper functions for formatting data into human-readable strings.
"""

import re
from typing import Optional

# Separators that join several artists in a credit, longest first so that
# "feat." wins over "ft".
_ARTIST_SEPARATORS = re.compile(
    r"\s*(?:,|;|\s&\s|\sx\s|\svs\.?\s|\sfeat\.?\s|\sft\.?\s|\sfeaturing\s)\s*",
    re.IGNORECASE,
)


def format_size(bytes_size: int) -> str:
    """Formats bytes into a human-readable size string (e.g., '8.3 MB')."""
    if bytes_size <= 0:
        return "0 B"
    units = ["B", "KB", "MB", "GB", "TB"]
    i = 0
    size = float(bytes_size)
    while size >= 1024 and i < len(units) - 1:
        size /= 1024
        i += 1
    return f"{size:.1f} {units[i]}"


def format_duration(seconds: float) -> str:
    """
    Formats a duration in seconds into a human-readable string (e.g., '2h 34m 12s').
    """
    s = int(seconds)
    hours, remainder = divmod(s, 3600)
    minutes, secs = divmod(remainder, 60)
    parts = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")
    if secs > 0 or not parts:
        parts.append(f"{secs}s")
    return " ".join(parts)


def split_artists(credit: Optional[str]) -> list[str]:
    """Splits an artist credit like 'A feat. B & C' into ['A', 'B', 'C']."""
    if not credit:
        return []
    names = [part.strip() for part in _ARTIST_SEPARATORS.split(credit)]
    seen: list[str] = []
    for name in names:
        if name and name.lower() not in (s.lower() for s in seen):
            seen.append(name)
    return seen


def format_artists(credit: Optional[str], max_artists: int = 3) -> str:
    """
    Normalizes an artist credit for use in file names.

    All separators collapse to ', ' and credits with more than ``max_artists``
    names are shortened to the first ones followed by 'et al.'.
    """
    names = split_artists(credit)
    if not names:
        return "Unknown Artist"
    if len(names) > max_artists:
        return ", ".join(names[:max_artists]) + " et al."
    return ", ".join(names)


def truncate(text: str, width: int = 60) -> str:
    """Shortens text for table cells, keeping the start."""
    if len(text) <= width:
        return text
    return text[: max(0, width - 1)] + "…"
