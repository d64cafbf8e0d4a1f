"""LRCLIB: free synced and plain lyrics, no credentials required."""

import logging
from typing import Optional

from tunefetch.models.metadata import MetadataFragment

from .base import HttpProvider, normalize, primary_artist

log = logging.getLogger(__name__)

SEARCH_URL = "https://lrclib.net/api/search"


class LrclibProvider(HttpProvider):
    name = "lrclib"
    source_priority = 10

    async def lookup(self, title: str, artist: str) -> Optional[MetadataFragment]:
        results = await self._get_json(
            SEARCH_URL,
            params={"track_name": title, "artist_name": primary_artist(artist)},
        )
        if not isinstance(results, list) or not results:
            return None

        wanted = normalize(title)
        # Prefer an exact title match with synced lyrics, then any synced, then plain.
        ranked = sorted(
            results,
            key=lambda r: (
                normalize(r.get("trackName") or "") != wanted,
                not (r.get("syncedLyrics") or "").strip(),
                not (r.get("plainLyrics") or "").strip(),
            ),
        )
        best = ranked[0]
        synced = (best.get("syncedLyrics") or "").strip() or None
        plain = (best.get("plainLyrics") or "").strip() or None
        if not synced and not plain:
            return None
        return self.fragment(lyrics=plain, synced_lyrics=synced)
