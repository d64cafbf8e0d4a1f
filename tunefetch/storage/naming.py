"""
Output file naming: renders the output template from canonical metadata and
reserves collision-free names so concurrent jobs never write the same path.
"""

import asyncio
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Set

from pathvalidate import sanitize_filename, sanitize_filepath

from tunefetch.models.metadata import CanonicalMetadata
from tunefetch.utils.formatting import format_artists

log = logging.getLogger(__name__)

MAX_SUFFIX = 9999


def _clean(value: Any, fallback: str) -> str:
    text = str(value).strip() if value not in (None, "") else fallback
    text = text.replace(";", ",")
    return sanitize_filename(text, replacement_text="_", platform="universal") or fallback


class OutputNamer:
    """
    Formats the output path template and hands out unique paths.

    Reserved names are held until the owning job releases them, so two jobs
    with identical metadata get ``Name.mp3`` and ``Name (1).mp3``.
    """

    def __init__(self, output_dir: Path, template: str = "{artist} - {title}.{ext}"):
        self.output_dir = output_dir
        self.template = template
        self._reserved: Set[Path] = set()
        self._lock = asyncio.Lock()

    def template_vars(self, metadata: CanonicalMetadata, ext: str) -> Dict[str, str]:
        """Builds the variable dictionary for template formatting."""
        return {
            "title": _clean(metadata.title, "Unknown Title"),
            "artist": _clean(format_artists(metadata.artist), "Unknown Artist"),
            "album": _clean(metadata.album, "Unknown Album"),
            "album_artist": _clean(
                format_artists(metadata.album_artist or metadata.artist), "Unknown Artist"
            ),
            "track": f"{int(metadata.track_no or 0):02}",
            "disc": str(metadata.disc_no or 1),
            "year": metadata.year or "0000",
            "ext": ext,
        }

    def render(self, metadata: CanonicalMetadata, ext: str) -> Path:
        """Generates the sanitized path the template yields, without reserving it."""
        try:
            relative = self.template.format(**self.template_vars(metadata, ext))
        except (KeyError, IndexError) as e:
            raise ValueError(f"Unknown placeholder in output template: {e}") from e
        return self.output_dir / Path(sanitize_filepath(relative, platform="universal"))

    def target_for(
        self, metadata: CanonicalMetadata, ext: str, override: Optional[Path] = None
    ) -> Path:
        """The desired path: a caller override when given, otherwise the template."""
        if override is None:
            return self.render(metadata, ext)
        path = override if override.is_absolute() else self.output_dir / override
        if path.is_dir():
            return path / self.render(metadata, ext).name
        if not path.suffix:
            path = path.with_name(f"{path.name}.{ext}")
        return path

    async def reserve(self, desired: Path) -> Path:
        """Claims ``desired`` or the first free ' (n)' variant of it."""
        async with self._lock:
            for n in range(MAX_SUFFIX + 1):
                candidate = (
                    desired.with_name(f"{desired.stem} ({n}){desired.suffix}") if n else desired
                )
                if candidate not in self._reserved and not candidate.exists():
                    break
            else:
                raise FileExistsError(f"No free file name left for '{desired.name}'")
            self._reserved.add(candidate)
        if candidate != desired:
            log.debug(f"'{desired.name}' is taken, using '{candidate.name}'")
        return candidate

    def release(self, path: Path) -> None:
        """Frees a reservation; safe to call from cleanup paths."""
        self._reserved.discard(path)

    @property
    def reserved(self) -> Set[Path]:
        return set(self._reserved)
