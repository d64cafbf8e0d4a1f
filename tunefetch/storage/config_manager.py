"""
Manages loading and validation of the INI configuration file.
"""

import configparser
import logging
from pathlib import Path
from typing import Any, Optional, get_args, get_origin

from pydantic import ValidationError

from tunefetch.exceptions import ConfigurationError
from tunefetch.models.config import DownloadConfig

log = logging.getLogger(__name__)

DEFAULT_CONFIG_PATH = Path.home() / ".config" / "tunefetch" / "config.ini"
SECTION = "tunefetch"


def _split_list(raw: str) -> list[str]:
    return [item.strip() for item in raw.split(",") if item.strip()]


class ConfigManager:
    """Reads the application's INI config file; missing files mean defaults."""

    def __init__(self, config_file_path: Optional[Path] = None):
        self.config_file_path = config_file_path or DEFAULT_CONFIG_PATH
        self._explicit = config_file_path is not None
        self._parser = configparser.ConfigParser(interpolation=None)

    def load_config(self, cli_options: Optional[dict[str, Any]] = None) -> DownloadConfig:
        """
        Loads configuration from the INI file, applies CLI overrides, and validates it.

        Args:
            cli_options: Options provided via the command line; None values are ignored.

        Raises:
            ConfigurationError: If an explicit config file is missing, unparsable,
            or validation fails.
        """
        values: dict[str, Any] = {}
        if self.config_file_path.is_file():
            try:
                self._parser.read(self.config_file_path, encoding="utf-8")
            except configparser.Error as e:
                raise ConfigurationError(f"Error parsing configuration file: {e}") from e
            values = self._get_config_as_dict()
            log.debug(f"Loaded configuration from {self.config_file_path}")
        elif self._explicit:
            raise ConfigurationError(
                f"Configuration file not found at '{self.config_file_path}'."
            )

        if cli_options:
            values.update({k: v for k, v in cli_options.items() if v is not None})

        try:
            return DownloadConfig(**values)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed:\n{e}") from e

    def _get_config_as_dict(self) -> dict[str, Any]:
        """
        Reads the [tunefetch] section (or DEFAULT) into model field values.

        ``priority.<field> = a,b`` entries build ``field_priority`` and
        ``rate_limit.<provider> = 2.5`` entries build ``provider_rate_limits``.
        """
        section = (
            self._parser[SECTION] if self._parser.has_section(SECTION) else self._parser["DEFAULT"]
        )
        known = DownloadConfig.model_fields
        values: dict[str, Any] = {}
        priority: dict[str, list[str]] = {}
        rate_limits: dict[str, float] = {}

        for key, raw in section.items():
            try:
                if key.startswith("priority."):
                    priority[key.split(".", 1)[1]] = _split_list(raw)
                elif key.startswith("rate_limit."):
                    rate_limits[key.split(".", 1)[1]] = float(raw)
                elif key not in known:
                    log.warning(f"[yellow]Ignoring unknown config key '{key}'[/yellow]")
                elif self._is_list(known[key].annotation):
                    values[key] = _split_list(raw)
                elif known[key].annotation is bool:
                    values[key] = section.getboolean(key)
                else:
                    values[key] = raw
            except ValueError as e:
                raise ConfigurationError(f"Invalid value for '{key}': {e}") from e

        if priority:
            values["field_priority"] = priority
        if rate_limits:
            values["provider_rate_limits"] = rate_limits
        return values

    @staticmethod
    def _is_list(annotation: Any) -> bool:
        return get_origin(annotation) is list or (
            get_origin(annotation) is not None and list in get_args(annotation)
        )
