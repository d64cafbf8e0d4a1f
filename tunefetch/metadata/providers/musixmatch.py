"""Musixmatch: plain lyrics through the matcher API; needs an API key."""

from typing import Optional

from tunefetch.exceptions import ProviderError
from tunefetch.models.metadata import MetadataFragment

from .base import HttpProvider, primary_artist

MATCHER_URL = "https://api.musixmatch.com/ws/1.1/matcher.lyrics.get"
# Free-tier bodies end with this disclaimer
DISCLAIMER = "******* This Lyrics is NOT for Commercial use *******"


class MusixmatchProvider(HttpProvider):
    name = "musixmatch"
    source_priority = 40

    def __init__(self, http, budget, api_key: str = ""):
        super().__init__(http, budget)
        self.api_key = api_key

    @property
    def available(self) -> bool:
        return bool(self.api_key)

    async def lookup(self, title: str, artist: str) -> Optional[MetadataFragment]:
        payload = await self._get_json(
            MATCHER_URL,
            params={
                "q_track": title,
                "q_artist": primary_artist(artist),
                "apikey": self.api_key,
            },
        )
        message = (payload or {}).get("message", {})
        status = message.get("header", {}).get("status_code")
        if status == 404:
            return None
        if status != 200:
            raise ProviderError(f"musixmatch returned status {status}")

        body = message.get("body") or {}
        text = ((body.get("lyrics") or {}).get("lyrics_body") or "").strip()
        if DISCLAIMER in text:
            text = text.split(DISCLAIMER)[0].strip()
        if not text:
            return None
        return self.fragment(lyrics=text)
