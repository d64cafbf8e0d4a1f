"""
Spotify acquisition: track metadata from the Web API, audio matched through
a yt-dlp search, and playlist/album expansion.
"""

import asyncio
import logging
import re
import time
from pathlib import Path
from typing import Any, Dict, Optional, Tuple

import aiohttp

from tunefetch.exceptions import NotFound, RateLimited, UnsupportedSource
from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import SourcePlatform, TrackRequest

from .base import FetchedMedia, PlaylistEntry
from .http import HttpSession
from .rate_limiter import RateLimitBudget
from .ytdlp import YtDlpFetcher

log = logging.getLogger(__name__)

TOKEN_URL = "https://accounts.spotify.com/api/token"
API_BASE = "https://api.spotify.com/v1"

URL_PATTERN = re.compile(
    r"open\.spotify\.com/(?:intl-[a-z]{2}/)?(track|album|playlist)/([A-Za-z0-9]+)"
)
URI_PATTERN = re.compile(r"spotify:(track|album|playlist):([A-Za-z0-9]+)")


def parse_spotify_id(identifier: str) -> Optional[Tuple[str, str]]:
    """Returns (kind, id) for a Spotify URL or URI, or None."""
    match = URL_PATTERN.search(identifier) or URI_PATTERN.search(identifier)
    if not match:
        return None
    return match.group(1), match.group(2)


def fragment_from_track(track: Dict[str, Any]) -> MetadataFragment:
    """Maps a Spotify track object onto a native metadata fragment."""
    album = track.get("album") or {}
    images = album.get("images") or []
    album_artists = album.get("artists") or []
    duration_ms = track.get("duration_ms")
    return MetadataFragment(
        source="spotify",
        source_priority=10,
        title=track.get("name"),
        artist=", ".join(a["name"] for a in track.get("artists", []) if a.get("name")) or None,
        album=album.get("name"),
        album_artist=album_artists[0].get("name") if album_artists else None,
        track_no=track.get("track_number"),
        disc_no=track.get("disc_number"),
        release_date=album.get("release_date"),
        isrc=(track.get("external_ids") or {}).get("isrc"),
        duration=duration_ms / 1000 if duration_ms else None,
        cover_art_url=images[0]["url"] if images else None,
    )


class SpotifyFetcher:
    """
    Resolves Spotify tracks to metadata via client-credentials auth; the
    audio itself is matched on YouTube. Unavailable without credentials.
    """

    name = "spotify"

    def __init__(
        self,
        http: HttpSession,
        budget: RateLimitBudget,
        media: YtDlpFetcher,
        client_id: str = "",
        client_secret: str = "",
    ):
        self.http = http
        self.budget = budget
        self.media = media
        self.client_id = client_id
        self.client_secret = client_secret
        self._token: Optional[str] = None
        self._token_expires = 0.0
        self._token_lock = asyncio.Lock()

    @property
    def available(self) -> bool:
        return bool(self.client_id and self.client_secret)

    async def _access_token(self) -> str:
        async with self._token_lock:
            if self._token and time.monotonic() < self._token_expires - 60:
                return self._token
            if not self.available:
                raise UnsupportedSource("Spotify credentials are not configured")
            payload = await self.http.request_json(
                "POST",
                TOKEN_URL,
                data={"grant_type": "client_credentials"},
                auth=aiohttp.BasicAuth(self.client_id, self.client_secret),
            )
            self._token = payload["access_token"]
            self._token_expires = time.monotonic() + float(payload.get("expires_in", 3600))
            log.debug("Obtained Spotify access token")
            return self._token

    async def _api(self, url: str, **params) -> Dict[str, Any]:
        if not url.startswith("http"):
            url = f"{API_BASE}{url}"
        token = await self._access_token()
        async with self.budget.slot(self.name):
            try:
                return await self.http.get_json(
                    url,
                    params=params or None,
                    headers={"Authorization": f"Bearer {token}"},
                )
            except RateLimited as e:
                await self.budget.on_rate_limited(self.name, e.retry_after)
                raise

    async def track(self, track_id: str) -> Dict[str, Any]:
        return await self._api(f"/tracks/{track_id}")

    async def fetch(self, request: TrackRequest, workdir: Path) -> FetchedMedia:
        parsed = parse_spotify_id(request.source)
        if parsed is None or parsed[0] != "track":
            raise NotFound(f"Not a Spotify track reference: {request.source}")
        track = await self.track(parsed[1])
        native = fragment_from_track(track)
        if not native.title:
            raise NotFound(f"Spotify track {parsed[1]} has no title")

        query = f"ytsearch1:{native.artist} - {native.title}" if native.artist else f"ytsearch1:{native.title}"
        path, info = await self.media.download(query, workdir)
        log.debug(f"Matched Spotify track {parsed[1]} to YouTube {info.get('id')}")
        return FetchedMedia(
            path=path,
            native=native,
            origin_id=f"youtube:{info['id']}" if info.get("id") else None,
        )

    def handles(self, url: str) -> bool:
        parsed = parse_spotify_id(url)
        return parsed is not None and parsed[0] in ("album", "playlist")

    async def expand(self, url: str) -> list[PlaylistEntry]:
        """Pages through a playlist or album and yields one entry per track."""
        parsed = parse_spotify_id(url)
        if parsed is None:
            raise NotFound(f"Not a Spotify playlist or album: {url}")
        kind, spotify_id = parsed
        next_url: Optional[str] = f"/{kind}s/{spotify_id}/tracks"
        params = {"limit": "50" if kind == "album" else "100"}

        entries: list[PlaylistEntry] = []
        index = 0
        while next_url:
            page = await self._api(next_url, **params)
            params = {}
            for item in page.get("items") or []:
                index += 1
                origin = f"{url}#{index}"
                track = item.get("track") if kind == "playlist" else item
                if not track or item.get("is_local") or not track.get("id"):
                    name = (track or {}).get("name") or "unknown"
                    entries.append(
                        PlaylistEntry(origin=origin, reason=f"Track unavailable on Spotify: {name}")
                    )
                    continue
                entries.append(
                    PlaylistEntry(
                        origin=origin,
                        request=TrackRequest(
                            source=f"spotify:track:{track['id']}",
                            source_hint=SourcePlatform.SPOTIFY,
                            origin=origin,
                        ),
                    )
                )
            next_url = page.get("next")
        return entries
