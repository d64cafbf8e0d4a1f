"""lyrics.ovh: plain lyrics by artist and title."""

from typing import Optional
from urllib.parse import quote

from tunefetch.models.metadata import MetadataFragment

from .base import HttpProvider, primary_artist

API_URL = "https://api.lyrics.ovh/v1/{artist}/{title}"


class LyricsOvhProvider(HttpProvider):
    name = "lyrics_ovh"
    source_priority = 20

    async def lookup(self, title: str, artist: str) -> Optional[MetadataFragment]:
        url = API_URL.format(
            artist=quote(primary_artist(artist), safe=""), title=quote(title, safe="")
        )
        payload = await self._get_json(url)
        text = (payload or {}).get("lyrics", "").strip()
        if not text:
            return None
        return self.fragment(lyrics=text.replace("\r\n", "\n"))
