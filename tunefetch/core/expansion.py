"""
Normalizes batch inputs (single requests, playlist references and CSV
imports) into individual track requests before scheduling.
"""

import asyncio
import csv
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Tuple, Union

from tunefetch.exceptions import ExpansionError, TuneFetchError
from tunefetch.models.config import get_format_spec
from tunefetch.models.job import ExpansionFailure
from tunefetch.models.metadata import MetadataFragment
from tunefetch.models.track import FormatSpec, TrackRequest
from tunefetch.sources.base import PlaylistExpander

log = logging.getLogger(__name__)

# Header aliases, lowercased. Exportify exports come first.
COLUMN_ALIASES: Dict[str, Tuple[str, ...]] = {
    "url": ("track uri", "spotify uri", "url", "uri", "link", "source"),
    "title": ("track name", "title", "name", "track"),
    "artist": ("artist name(s)", "artist", "artists"),
    "album": ("album name", "album"),
    "release_date": ("album release date", "release date", "release_date", "date"),
    "duration_ms": ("duration (ms)", "duration_ms"),
    "isrc": ("isrc",),
    "format": ("format",),
}


@dataclass(frozen=True)
class PlaylistReference:
    """A playlist or album URL to be expanded into its tracks."""

    url: str
    target: Optional[FormatSpec] = None


@dataclass(frozen=True)
class CsvImport:
    """A CSV file listing one track per row."""

    path: Path
    target: Optional[FormatSpec] = None


BatchInput = Union[TrackRequest, PlaylistReference, CsvImport]


def _is_spotify(url: str) -> bool:
    return url.startswith("spotify:") or "open.spotify.com" in url


def _parse_duration(raw: Optional[str]) -> Optional[float]:
    if not raw:
        return None
    try:
        return int(float(raw)) / 1000
    except ValueError:
        return None


def _column_map(header: Sequence[str]) -> Dict[str, str]:
    normalized = {name.strip().lower(): name for name in header if name}
    columns = {}
    for key, aliases in COLUMN_ALIASES.items():
        for alias in aliases:
            if alias in normalized:
                columns[key] = normalized[alias]
                break
    return columns


def row_to_request(
    row: Dict[str, str],
    columns: Dict[str, str],
    origin: str,
    default_target: Optional[FormatSpec] = None,
) -> TrackRequest:
    """
    Builds a request from one CSV row.

    Rows with a title are searched by "artist - title" unless they carry a
    non-Spotify URL, so Exportify files work without Spotify credentials;
    the row's values become the request's metadata hints.

    Raises:
        ValueError: The row has neither a usable URL/URI nor a title, or an
        unknown format.
    """

    def value(key: str) -> Optional[str]:
        column = columns.get(key)
        text = (row.get(column) or "").strip() if column else ""
        return text or None

    url, title, artist = value("url"), value("title"), value("artist")
    if not url and not title:
        raise ValueError("Row has neither a track URL/URI nor a title")

    target = default_target
    if fmt := value("format"):
        target = get_format_spec(fmt, default_target.bitrate if default_target else None)

    hints = None
    if title:
        hints = MetadataFragment(
            source="request",
            source_priority=0,
            title=title,
            artist=artist.replace(";", ",") if artist else None,
            album=value("album"),
            release_date=value("release_date"),
            isrc=value("isrc"),
            duration=_parse_duration(value("duration_ms")),
        )

    if url and not (title and _is_spotify(url)):
        source = url
    else:
        source = f"{hints.artist} - {title}" if hints.artist else title
    return TrackRequest(source=source, target=target, hints=hints, origin=origin)


def read_csv(
    path: Path, default_target: Optional[FormatSpec] = None
) -> Tuple[List[TrackRequest], List[ExpansionFailure]]:
    """Parses a CSV import; malformed rows become failures, never exceptions."""
    requests: List[TrackRequest] = []
    failures: List[ExpansionFailure] = []
    try:
        with open(path, newline="", encoding="utf-8-sig") as f:
            reader = csv.DictReader(f)
            columns = _column_map(reader.fieldnames or [])
            if "url" not in columns and "title" not in columns:
                raise ExpansionError(
                    f"'{path.name}' has no URL/URI or title column"
                )
            for row_number, row in enumerate(reader, start=1):
                origin = f"{path.name}:row {row_number}"
                try:
                    requests.append(row_to_request(row, columns, origin, default_target))
                except ValueError as e:
                    log.warning(f"[yellow]Skipping {origin}: {e}[/yellow]")
                    failures.append(ExpansionFailure(origin=origin, reason=str(e)))
    except OSError as e:
        failures.append(ExpansionFailure(origin=str(path), reason=f"Cannot read CSV: {e}"))
    except (csv.Error, UnicodeDecodeError) as e:
        failures.append(ExpansionFailure(origin=str(path), reason=f"Invalid CSV: {e}"))
    except ExpansionError as e:
        failures.append(ExpansionFailure(origin=str(path), reason=str(e)))
    return requests, failures


class RequestExpander:
    """Turns a mixed list of batch inputs into track requests plus failures."""

    def __init__(
        self,
        expanders: Sequence[PlaylistExpander] = (),
        default_target: Optional[FormatSpec] = None,
    ):
        self.expanders = list(expanders)
        self.default_target = default_target

    async def expand(
        self, inputs: Sequence[BatchInput]
    ) -> Tuple[List[TrackRequest], List[ExpansionFailure]]:
        requests: List[TrackRequest] = []
        failures: List[ExpansionFailure] = []
        for item in inputs:
            if isinstance(item, TrackRequest):
                requests.append(item)
            elif isinstance(item, CsvImport):
                found, failed = await asyncio.to_thread(
                    read_csv, item.path, item.target or self.default_target
                )
                log.info(f"CSV '{item.path.name}': {len(found)} track(s), {len(failed)} skipped")
                requests.extend(found)
                failures.extend(failed)
            elif isinstance(item, PlaylistReference):
                found, failed = await self._expand_playlist(item)
                requests.extend(found)
                failures.extend(failed)
            else:
                failures.append(
                    ExpansionFailure(origin=repr(item), reason="Unsupported batch input")
                )
        return requests, failures

    async def _expand_playlist(
        self, reference: PlaylistReference
    ) -> Tuple[List[TrackRequest], List[ExpansionFailure]]:
        expander = next((e for e in self.expanders if e.handles(reference.url)), None)
        if expander is None:
            return [], [
                ExpansionFailure(reference.url, "No playlist expander handles this URL")
            ]
        try:
            entries = await expander.expand(reference.url)
        except TuneFetchError as e:
            log.error(f"[red]Could not expand playlist {reference.url}: {e}[/red]")
            return [], [ExpansionFailure(reference.url, str(e))]

        target = reference.target or self.default_target
        requests, failures = [], []
        for entry in entries:
            if entry.request is None:
                failures.append(ExpansionFailure(entry.origin, entry.reason or "Unavailable"))
            elif target is not None and entry.request.target is None:
                requests.append(
                    TrackRequest(
                        source=entry.request.source,
                        source_hint=entry.request.source_hint,
                        target=target,
                        hints=entry.request.hints,
                        origin=entry.request.origin,
                    )
                )
            else:
                requests.append(entry.request)
        log.info(f"Playlist expanded to {len(requests)} track(s), {len(failures)} unavailable")
        return requests, failures
