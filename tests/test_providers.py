"""Tests for the auxiliary metadata providers."""

import pytest

from tunefetch.exceptions import NotFound, ProviderError, RateLimited, SourceUnavailable
from tunefetch.metadata.providers import (
    GeniusProvider,
    ItunesProvider,
    LrclibProvider,
    LyricsOvhProvider,
    MusixmatchProvider,
    build_providers,
)
from tunefetch.metadata.providers.base import normalize, primary_artist
from tunefetch.metadata.providers.genius import extract_lyrics
from tunefetch.metadata.providers.itunes import artwork_url
from tunefetch.models.config import DownloadConfig
from tunefetch.sources.rate_limiter import RateLimitBudget

from fakes import FakeHttp

GENIUS_PAGE = """
<html><body>
<div data-lyrics-container="true">First line<br/>Second line
  <div data-exclude-from-selection="true">Embed</div>
</div>
<div data-lyrics-container="true">Chorus<br>Again</div>
</body></html>
"""


class TestHelpers:
    """Tests for query normalization helpers."""

    def test_primary_artist(self) -> None:
        assert primary_artist("Daft Punk feat. Pharrell") == "Daft Punk"
        assert primary_artist("Simon & Garfunkel") == "Simon"
        assert primary_artist("Solo") == "Solo"

    def test_normalize(self) -> None:
        assert normalize("Don't Stop (Remastered!)") == "don t stop remastered"

    def test_artwork_url_upscaled(self) -> None:
        result = {"artworkUrl100": "https://is1.mzstatic.com/a/100x100bb.jpg"}

        assert artwork_url(result) == "https://is1.mzstatic.com/a/1000x1000bb.jpg"
        assert artwork_url({}) is None

    def test_extract_genius_lyrics(self) -> None:
        assert extract_lyrics(GENIUS_PAGE) == "First line\nSecond line\nChorus\nAgain"
        assert extract_lyrics("<html></html>") is None


class TestLrclib:
    """Tests for LrclibProvider."""

    @pytest.mark.asyncio
    async def test_prefers_exact_title_with_synced_lyrics(self) -> None:
        http = FakeHttp(
            {
                "https://lrclib.net": [
                    {"trackName": "Song (Live)", "syncedLyrics": "[00:01.00]live"},
                    {"trackName": "Song", "plainLyrics": "plain only"},
                    {"trackName": "Song", "plainLyrics": "plain", "syncedLyrics": "[00:01.00]x"},
                ]
            }
        )

        fragment = await LrclibProvider(http, RateLimitBudget()).lookup("Song", "Band feat. X")

        assert fragment.synced_lyrics == "[00:01.00]x"
        assert fragment.lyrics == "plain"
        assert fragment.source == "lrclib"
        assert http.requests[0][1]["params"]["artist_name"] == "Band"

    @pytest.mark.asyncio
    async def test_no_results(self) -> None:
        http = FakeHttp({"https://lrclib.net": []})

        assert await LrclibProvider(http, RateLimitBudget()).lookup("Song", "Band") is None

    @pytest.mark.asyncio
    async def test_not_found_is_no_match(self) -> None:
        http = FakeHttp({"https://lrclib.net": NotFound("404")})

        assert await LrclibProvider(http, RateLimitBudget()).lookup("Song", "Band") is None

    @pytest.mark.asyncio
    async def test_rate_limit_becomes_provider_error(self) -> None:
        http = FakeHttp({"https://lrclib.net": RateLimited("429", retry_after=0)})

        with pytest.raises(ProviderError, match="rate limited"):
            await LrclibProvider(http, RateLimitBudget()).lookup("Song", "Band")

    @pytest.mark.asyncio
    async def test_transport_failure_becomes_provider_error(self) -> None:
        http = FakeHttp({"https://lrclib.net": SourceUnavailable("HTTP 500")})

        with pytest.raises(ProviderError):
            await LrclibProvider(http, RateLimitBudget()).lookup("Song", "Band")


class TestItunes:
    """Tests for ItunesProvider."""

    @pytest.mark.asyncio
    async def test_maps_matching_result(self) -> None:
        http = FakeHttp(
            {
                "https://itunes.apple.com": {
                    "results": [
                        {"trackName": "Other"},
                        {
                            "trackName": "song",
                            "collectionName": "Record",
                            "artistName": "Band",
                            "trackNumber": 5,
                            "discNumber": 1,
                            "releaseDate": "2018-06-01T07:00:00Z",
                            "primaryGenreName": "Rock",
                            "trackTimeMillis": 240000,
                            "artworkUrl100": "https://img/100x100bb.jpg",
                        },
                    ]
                }
            }
        )

        fragment = await ItunesProvider(http, RateLimitBudget()).lookup("Song", "Band")

        assert fragment.album == "Record"
        assert fragment.album_artist == "Band"
        assert fragment.track_no == 5
        assert fragment.release_date == "2018-06-01"
        assert fragment.genre == "Rock"
        assert fragment.duration == 240.0
        assert fragment.cover_art_url == "https://img/1000x1000bb.jpg"
        assert fragment.title is None

    @pytest.mark.asyncio
    async def test_no_matching_title(self) -> None:
        http = FakeHttp({"https://itunes.apple.com": {"results": [{"trackName": "Else"}]}})

        assert await ItunesProvider(http, RateLimitBudget()).lookup("Song", "Band") is None


class TestLyricsProviders:
    """Tests for lyrics.ovh, Musixmatch and Genius."""

    @pytest.mark.asyncio
    async def test_lyrics_ovh(self) -> None:
        http = FakeHttp({"https://api.lyrics.ovh": {"lyrics": "line one\r\nline two\n"}})

        fragment = await LyricsOvhProvider(http, RateLimitBudget()).lookup("A/B", "AC/DC")

        assert fragment.lyrics == "line one\nline two"
        assert http.requests[0][0] == "https://api.lyrics.ovh/v1/AC%2FDC/A%2FB"

    @pytest.mark.asyncio
    async def test_musixmatch_strips_disclaimer(self) -> None:
        body = "words\n...\n\n******* This Lyrics is NOT for Commercial use *******\n(1409)"
        http = FakeHttp(
            {
                "https://api.musixmatch.com": {
                    "message": {
                        "header": {"status_code": 200},
                        "body": {"lyrics": {"lyrics_body": body}},
                    }
                }
            }
        )

        fragment = await MusixmatchProvider(http, RateLimitBudget(), "key").lookup("S", "A")

        assert fragment.lyrics == "words\n..."

    @pytest.mark.asyncio
    async def test_musixmatch_error_status(self) -> None:
        http = FakeHttp(
            {"https://api.musixmatch.com": {"message": {"header": {"status_code": 401}}}}
        )

        with pytest.raises(ProviderError):
            await MusixmatchProvider(http, RateLimitBudget(), "key").lookup("S", "A")

    def test_credentials_decide_availability(self) -> None:
        http, budget = FakeHttp(), RateLimitBudget()

        assert not MusixmatchProvider(http, budget).available
        assert not GeniusProvider(http, budget).available
        assert GeniusProvider(http, budget, "token").available

    @pytest.mark.asyncio
    async def test_genius_scrapes_best_hit(self) -> None:
        http = FakeHttp(
            {
                "https://api.genius.com": {
                    "response": {
                        "hits": [
                            {
                                "type": "song",
                                "result": {
                                    "url": "https://genius.com/cover",
                                    "title": "Song",
                                    "primary_artist": {"name": "Someone Else"},
                                },
                            },
                            {
                                "type": "song",
                                "result": {
                                    "url": "https://genius.com/band-song-lyrics",
                                    "title": "Song",
                                    "primary_artist": {"name": "Band"},
                                },
                            },
                        ]
                    }
                },
                "https://genius.com/band-song-lyrics": GENIUS_PAGE,
            }
        )

        fragment = await GeniusProvider(http, RateLimitBudget(), "token").lookup("Song", "Band")

        assert fragment.lyrics.startswith("First line")
        assert http.requests[-1][0] == "https://genius.com/band-song-lyrics"


class TestBuildProviders:
    """Tests for provider registration from configuration."""

    def test_declaration_order(self) -> None:
        config = DownloadConfig(tag_providers=["itunes"], lyrics_providers=["genius", "lrclib"])

        providers = build_providers(config, FakeHttp(), RateLimitBudget())

        assert [p.name for p in providers] == ["itunes", "genius", "lrclib"]

    def test_lyrics_disabled(self) -> None:
        config = DownloadConfig(download_lyrics=False)

        providers = build_providers(config, FakeHttp(), RateLimitBudget())

        assert [p.name for p in providers] == ["itunes"]

    def test_metadata_disabled(self) -> None:
        config = DownloadConfig(embed_metadata=False)

        assert build_providers(config, FakeHttp(), RateLimitBudget()) == []
