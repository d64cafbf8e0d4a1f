"""
Provides methods for checking the integrity of written media files.
"""

import logging
from pathlib import Path

import mutagen
from mutagen import MutagenError

log = logging.getLogger(__name__)


class FileIntegrityChecker:
    """A collection of static methods for validating media file integrity."""

    @staticmethod
    def check(filepath: Path) -> bool:
        """
        Checks that mutagen can open the file and that it has a positive duration.

        Args:
            filepath: Path to the media file.

        Returns:
            True if the file appears to be a valid audio file, False otherwise.
        """
        try:
            audio = mutagen.File(filepath)
        except MutagenError as e:
            log.warning(f"Integrity check failed for '{filepath.name}': {e}")
            return False
        if audio is None:
            log.warning(f"Integrity check failed for '{filepath.name}': Unknown format.")
            return False
        if audio.info and getattr(audio.info, "length", 0) > 0:
            return True
        log.warning(
            f"Integrity check failed for '{filepath.name}': No valid stream info."
        )
        return False
