"""
YouTube, SoundCloud and search acquisition through the yt-dlp binary.
"""

import json
import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from tunefetch.exceptions import (
    NotFound,
    ProcessFailure,
    ProcessTimeout,
    RateLimited,
    SourceUnavailable,
    UnsupportedSource,
)
from tunefetch.media.process import run_process
from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import SourcePlatform, TrackRequest

from .base import FetchedMedia, PlaylistEntry

log = logging.getLogger(__name__)

NOT_FOUND_MARKERS = (
    "video unavailable",
    "private video",
    "this video has been removed",
    "does not exist",
    "http error 404",
    "no video results",
    "not available in your country",
    "unable to extract",
)
RATE_LIMIT_MARKERS = ("http error 429", "too many requests", "rate-limit", "rate limit")

PLAYLIST_PATTERN = re.compile(
    r"(youtube\.com/(playlist|watch)\?.*\blist=)|(soundcloud\.com/[^/]+/sets/)",
    re.IGNORECASE,
)


def classify_error(error: ProcessFailure) -> Exception:
    """Maps yt-dlp's stderr to the application's error taxonomy."""
    if error.returncode is None:
        return UnsupportedSource(str(error))
    text = (error.stderr or str(error)).lower()
    if any(marker in text for marker in RATE_LIMIT_MARKERS):
        return RateLimited(f"yt-dlp was rate limited: {_last_line(error)}")
    if any(marker in text for marker in NOT_FOUND_MARKERS):
        return NotFound(_last_line(error))
    return SourceUnavailable(f"yt-dlp failed: {_last_line(error)}")


def _last_line(error: ProcessFailure) -> str:
    lines = (error.stderr or str(error)).strip().splitlines()
    return lines[-1] if lines else str(error)


def search_query(request: TrackRequest) -> str:
    """Builds a 'ytsearch1:' query from the request's hints or source text."""
    hints = request.hints
    if hints and hints.title:
        if hints.artist:
            return f"ytsearch1:{hints.artist} - {hints.title}"
        return f"ytsearch1:{hints.title}"
    return f"ytsearch1:{request.source}"


def _clean_artist(name: Optional[str]) -> Optional[str]:
    if not name:
        return None
    return re.sub(r"\s*-\s*Topic$", "", name).strip() or None


def _release_date(info: Dict[str, Any]) -> Optional[str]:
    raw = info.get("release_date") or info.get("upload_date")
    if raw and re.fullmatch(r"\d{8}", str(raw)):
        raw = str(raw)
        return f"{raw[:4]}-{raw[4:6]}-{raw[6:]}"
    if info.get("release_year"):
        return str(info["release_year"])
    return None


def fragment_from_info(info: Dict[str, Any], source: str) -> MetadataFragment:
    """Maps yt-dlp's info JSON onto a native metadata fragment."""
    artist = info.get("artist") or info.get("creator")
    if not artist and info.get("artists"):
        artist = ", ".join(info["artists"])
    return MetadataFragment(
        source=source,
        source_priority=50,
        title=info.get("track") or info.get("title"),
        artist=_clean_artist(artist or info.get("uploader") or info.get("channel")),
        album=info.get("album"),
        album_artist=info.get("album_artist"),
        track_no=info.get("track_number"),
        disc_no=info.get("disc_number"),
        release_date=_release_date(info),
        genre=info.get("genre"),
        duration=info.get("duration"),
        cover_art_url=info.get("thumbnail"),
    )


def _downloaded_path(info: Dict[str, Any], workdir: Path) -> Path:
    for download in info.get("requested_downloads") or ():
        if download.get("filepath"):
            return Path(download["filepath"])
    if info.get("_filename"):
        return Path(info["_filename"])
    candidates = [p for p in workdir.glob("source.*") if not p.name.endswith(".part")]
    if not candidates:
        raise SourceUnavailable("yt-dlp reported success but wrote no file")
    return candidates[0]


class YtDlpFetcher:
    """Fetches best-quality audio with yt-dlp and reports its info JSON."""

    name = "yt-dlp"

    def __init__(self, binary: str = "yt-dlp", timeout: float = 600.0):
        self.binary = binary
        self.timeout = timeout

    @property
    def available(self) -> bool:
        return True

    def build_download_command(self, target: str, workdir: Path) -> list[str]:
        return [
            self.binary,
            "--no-playlist",
            "--no-progress",
            "--no-warnings",
            "--format", "bestaudio/best",
            "--output", str(workdir / "source.%(ext)s"),
            "--print-json",
            target,
        ]

    async def download(self, target: str, workdir: Path) -> tuple[Path, Dict[str, Any]]:
        """Downloads a URL or 'ytsearch1:' query into ``workdir``."""
        try:
            stdout, _ = await run_process(
                self.build_download_command(target, workdir), timeout=self.timeout
            )
        except ProcessTimeout as e:
            raise SourceUnavailable(str(e)) from e
        except ProcessFailure as e:
            raise classify_error(e) from e

        lines = [line for line in stdout.decode("utf-8", "replace").splitlines() if line.strip()]
        if not lines:
            raise NotFound(f"yt-dlp found nothing for '{target}'")
        try:
            info = json.loads(lines[-1])
        except ValueError as e:
            raise SourceUnavailable("yt-dlp printed unreadable JSON") from e
        return _downloaded_path(info, workdir), info

    async def fetch(self, request: TrackRequest, workdir: Path) -> FetchedMedia:
        source = request.source.strip()
        target = source if source.startswith(("http://", "https://")) else search_query(request)
        path, info = await self.download(target, workdir)

        extractor = (info.get("extractor_key") or info.get("extractor") or "youtube").lower()
        extractor = extractor.split(":")[0]
        log.debug(f"yt-dlp fetched {info.get('id')} via {extractor}: {path.name}")
        return FetchedMedia(
            path=path,
            native=fragment_from_info(info, extractor),
            origin_id=f"{extractor}:{info.get('id')}" if info.get("id") else None,
        )

    def handles(self, url: str) -> bool:
        return bool(PLAYLIST_PATTERN.search(url))

    async def expand(self, url: str) -> list[PlaylistEntry]:
        """Lists a YouTube or SoundCloud playlist without downloading it."""
        try:
            stdout, _ = await run_process(
                [self.binary, "--flat-playlist", "--no-warnings", "-J", url], timeout=120
            )
        except ProcessTimeout as e:
            raise SourceUnavailable(str(e)) from e
        except ProcessFailure as e:
            raise classify_error(e) from e

        try:
            info = json.loads(stdout)
        except ValueError as e:
            raise SourceUnavailable("yt-dlp printed unreadable playlist JSON") from e

        platform = (
            SourcePlatform.SOUNDCLOUD if "soundcloud.com" in url.lower() else SourcePlatform.YOUTUBE
        )
        entries = []
        for index, entry in enumerate(info.get("entries") or [], start=1):
            origin = f"{url}#{index}"
            title = entry.get("title") or ""
            entry_url = entry.get("url") or entry.get("webpage_url")
            if not entry_url and entry.get("id") and platform is SourcePlatform.YOUTUBE:
                entry_url = f"https://www.youtube.com/watch?v={entry['id']}"
            if not entry_url or title in ("[Deleted video]", "[Private video]"):
                entries.append(
                    PlaylistEntry(origin=origin, reason=f"Entry unavailable: {title or 'no URL'}")
                )
                continue
            entries.append(
                PlaylistEntry(
                    origin=origin,
                    request=TrackRequest(source=entry_url, source_hint=platform, origin=origin),
                )
            )
        return entries
