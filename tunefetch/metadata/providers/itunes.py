"""iTunes Search API: album, numbering, genre, release date and artwork."""

from typing import Any, Dict, Optional

from tunefetch.models.metadata import MetadataFragment

from .base import HttpProvider, normalize, primary_artist

SEARCH_URL = "https://itunes.apple.com/search"


def artwork_url(result: Dict[str, Any], size: int = 1000) -> Optional[str]:
    """Upgrades the 100px artwork link to ``size`` pixels."""
    url = result.get("artworkUrl100") or result.get("artworkUrl60")
    if not url:
        return None
    return url.replace("100x100bb", f"{size}x{size}bb").replace("60x60bb", f"{size}x{size}bb")


class ItunesProvider(HttpProvider):
    name = "itunes"
    source_priority = 50

    async def lookup(self, title: str, artist: str) -> Optional[MetadataFragment]:
        payload = await self._get_json(
            SEARCH_URL,
            params={
                "term": f"{primary_artist(artist)} {title}",
                "media": "music",
                "entity": "song",
                "limit": "5",
            },
        )
        results = (payload or {}).get("results") or []
        if not results:
            return None

        wanted = normalize(title)
        best = next(
            (r for r in results if normalize(r.get("trackName", "")) == wanted), None
        )
        if best is None:
            return None

        millis = best.get("trackTimeMillis")
        release = best.get("releaseDate") or ""
        return self.fragment(
            album=best.get("collectionName"),
            album_artist=best.get("collectionArtistName") or best.get("artistName"),
            track_no=best.get("trackNumber"),
            disc_no=best.get("discNumber"),
            release_date=release[:10] or None,
            genre=best.get("primaryGenreName"),
            duration=millis / 1000 if millis else None,
            cover_art_url=artwork_url(best),
        )
