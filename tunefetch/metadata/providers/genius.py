"""Genius: song search through the API, lyrics scraped from the song page."""

import logging
from typing import Optional

from bs4 import BeautifulSoup

from tunefetch.models.metadata import MetadataFragment

from .base import HttpProvider, normalize, primary_artist

log = logging.getLogger(__name__)

SEARCH_URL = "https://api.genius.com/search"


def extract_lyrics(html: str) -> Optional[str]:
    """Pulls the lyrics text out of a Genius song page."""
    soup = BeautifulSoup(html, "html.parser")
    containers = soup.select('div[data-lyrics-container="true"]')
    if not containers:
        return None
    blocks = []
    for container in containers:
        for br in container.find_all("br"):
            br.replace_with("\n")
        # Annotation headers and embeds live in nested excluded blocks
        for junk in container.select('[data-exclude-from-selection="true"]'):
            junk.decompose()
        blocks.append(container.get_text())
    text = "\n".join(block.strip() for block in blocks if block.strip())
    return text or None


class GeniusProvider(HttpProvider):
    name = "genius"
    source_priority = 30

    def __init__(self, http, budget, access_token: str = ""):
        super().__init__(http, budget)
        self.access_token = access_token

    @property
    def available(self) -> bool:
        return bool(self.access_token)

    async def lookup(self, title: str, artist: str) -> Optional[MetadataFragment]:
        payload = await self._get_json(
            SEARCH_URL,
            params={"q": f"{primary_artist(artist)} {title}"},
            headers={"Authorization": f"Bearer {self.access_token}"},
        )
        hits = ((payload or {}).get("response") or {}).get("hits") or []
        song_url = None
        wanted_title, wanted_artist = normalize(title), normalize(primary_artist(artist))
        for hit in hits:
            result = hit.get("result") or {}
            if hit.get("type") != "song" or not result.get("url"):
                continue
            hit_artist = normalize((result.get("primary_artist") or {}).get("name", ""))
            if normalize(result.get("title", "")) == wanted_title and hit_artist == wanted_artist:
                song_url = result["url"]
                break
            song_url = song_url or result["url"]
        if not song_url:
            return None

        html = await self._get_text(song_url)
        if not html:
            return None
        lyrics = extract_lyrics(html)
        if not lyrics:
            log.debug(f"Genius page had no lyrics container: {song_url}")
            return None
        return self.fragment(lyrics=lyrics)
