"""
Pydantic model for application configuration.
Provides robust validation for all settings.
"""

from pathlib import Path
from string import Formatter
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from .metadata import MERGEABLE_FIELDS
from .track import FormatSpec

# Maps user-facing format names to their container/codec and metadata
FORMAT_MAP = {
    "mp3": {"container": "mp3", "codec": "mp3", "ext": "mp3", "lossless": False},
    "m4a": {"container": "m4a", "codec": "aac", "ext": "m4a", "lossless": False},
    "opus": {"container": "ogg", "codec": "opus", "ext": "opus", "lossless": False},
    "ogg": {"container": "ogg", "codec": "vorbis", "ext": "ogg", "lossless": False},
    "flac": {"container": "flac", "codec": "flac", "ext": "flac", "lossless": True},
    "wav": {"container": "wav", "codec": "pcm_s16le", "ext": "wav", "lossless": True},
}

ALLOWED_BITRATES = (128, 192, 256, 320)

# Placeholders the output template may use
TEMPLATE_FIELDS = (
    "title",
    "artist",
    "album",
    "album_artist",
    "track",
    "disc",
    "year",
    "ext",
)

KNOWN_LYRICS_PROVIDERS = ("lrclib", "lyrics_ovh", "musixmatch", "genius")
KNOWN_TAG_PROVIDERS = ("itunes",)

DEFAULT_SPONSORBLOCK_CATEGORIES = [
    "sponsor",
    "intro",
    "outro",
    "preview",
    "interaction",
    "selfpromo",
    "music_offtopic",
]

FLAC_MAX_BLOCKSIZE = 16777215  # ~16.7MB, max size for a FLAC metadata block


def get_format_spec(name: str, bitrate: Optional[int] = None) -> FormatSpec:
    """Builds a FormatSpec for a user-facing format name."""
    info = FORMAT_MAP.get(name.lower())
    if info is None:
        raise ValueError(f"Unknown format '{name}'. Choose one of: {', '.join(FORMAT_MAP)}.")
    return FormatSpec(
        container=info["container"],
        codec=info["codec"],
        bitrate=None if info["lossless"] else bitrate,
    )


class DownloadConfig(BaseModel):
    """A validated configuration model for the application."""

    model_config = ConfigDict(validate_assignment=True, str_strip_whitespace=True)

    # Output
    output_dir: Path = Path("downloads")
    output_template: str = "{artist} - {title}.{ext}"
    temp_dir: Optional[Path] = None

    # Download Settings
    concurrency_limit: int = 3
    default_format: str = "mp3"
    default_bitrate: int = 320
    max_retries: int = 2
    retry_base_delay: float = 1.5
    retry_max_delay: float = 30.0

    # Metadata
    download_lyrics: bool = True
    download_cover: bool = True
    embed_metadata: bool = True
    lyrics_providers: list[str] = Field(
        default_factory=lambda: list(KNOWN_LYRICS_PROVIDERS)
    )
    tag_providers: list[str] = Field(default_factory=lambda: list(KNOWN_TAG_PROVIDERS))
    field_priority: dict[str, list[str]] = Field(default_factory=dict)
    provider_timeout: float = 10.0
    provider_concurrency: int = 4
    provider_rate_limits: dict[str, float] = Field(default_factory=dict)
    max_cover_bytes: int = FLAC_MAX_BLOCKSIZE
    cover_max_dimension: int = 1400
    verify_output: bool = True

    # Segment trimming
    sponsorblock_enabled: bool = True
    sponsorblock_categories: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SPONSORBLOCK_CATEGORIES)
    )

    # External tools
    ffmpeg_bin: str = "ffmpeg"
    ffprobe_bin: str = "ffprobe"
    yt_dlp_bin: str = "yt-dlp"
    process_timeout: float = 600.0

    # Optional credentials
    spotify_client_id: str = ""
    spotify_client_secret: str = Field(default="", repr=False)
    genius_access_token: str = Field(default="", repr=False)
    musixmatch_api_key: str = Field(default="", repr=False)

    @field_validator("default_format")
    @classmethod
    def validate_format(cls, v: str) -> str:
        """Ensures the default format is one the transcoder can produce."""
        v = v.lower()
        if v not in FORMAT_MAP:
            raise ValueError(f"Format must be one of: {', '.join(FORMAT_MAP)}.")
        return v

    @field_validator("default_bitrate")
    @classmethod
    def validate_bitrate(cls, v: int) -> int:
        if v not in ALLOWED_BITRATES:
            raise ValueError(
                f"Bitrate must be one of {', '.join(map(str, ALLOWED_BITRATES))} kbps."
            )
        return v

    @field_validator("concurrency_limit")
    @classmethod
    def validate_workers(cls, v: int) -> int:
        """Ensures a reasonable number of workers."""
        if v < 1 or v > 32:
            raise ValueError("Concurrency limit must be between 1 and 32.")
        return v

    @field_validator("max_retries")
    @classmethod
    def validate_retries(cls, v: int) -> int:
        if v < 0 or v > 10:
            raise ValueError("Max retries must be between 0 and 10.")
        return v

    @field_validator("output_template")
    @classmethod
    def validate_template(cls, v: str) -> str:
        """Validates the output file name template."""
        if not v:
            raise ValueError("Output template cannot be empty.")
        if ".." in v or v.startswith(("/", "\\")):
            raise ValueError(
                "Output template cannot contain relative '..' or absolute paths."
            )
        try:
            fields = {
                name.split(".")[0].split("[")[0]
                for _, name, _, _ in Formatter().parse(v)
                if name is not None
            }
        except ValueError as e:
            raise ValueError(f"Output template is malformed: {e}") from e
        unknown = [name or "{}" for name in sorted(fields - set(TEMPLATE_FIELDS))]
        if unknown:
            raise ValueError(
                f"Unknown placeholder(s) in output template: {', '.join(unknown)}. "
                f"Available: {', '.join(TEMPLATE_FIELDS)}."
            )
        if "title" not in fields:
            raise ValueError("Output template must contain {title}.")
        return v

    @field_validator("lyrics_providers")
    @classmethod
    def validate_lyrics_providers(cls, v: list[str]) -> list[str]:
        unknown = [name for name in v if name not in KNOWN_LYRICS_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown lyrics provider(s): {', '.join(unknown)}.")
        return v

    @field_validator("tag_providers")
    @classmethod
    def validate_tag_providers(cls, v: list[str]) -> list[str]:
        unknown = [name for name in v if name not in KNOWN_TAG_PROVIDERS]
        if unknown:
            raise ValueError(f"Unknown tag provider(s): {', '.join(unknown)}.")
        return v

    @field_validator("field_priority")
    @classmethod
    def validate_field_priority(cls, v: dict[str, list[str]]) -> dict[str, list[str]]:
        unknown = [name for name in v if name not in MERGEABLE_FIELDS]
        if unknown:
            raise ValueError(f"Unknown metadata field(s) in priority table: {', '.join(unknown)}.")
        return v

    @model_validator(mode="after")
    def validate_option_conflicts(self) -> "DownloadConfig":
        """Checks for conflicting options."""
        if self.max_cover_bytes > FLAC_MAX_BLOCKSIZE:
            raise ValueError(
                f"max_cover_bytes cannot exceed the FLAC block limit ({FLAC_MAX_BLOCKSIZE})."
            )
        if self.provider_timeout <= 0 or self.process_timeout <= 0:
            raise ValueError("Timeouts must be positive.")
        return self

    @property
    def default_target(self) -> FormatSpec:
        return get_format_spec(self.default_format, self.default_bitrate)

    @property
    def work_dir(self) -> Path:
        """Root directory for per-job scratch directories."""
        return self.temp_dir or (self.output_dir / ".tunefetch-tmp")

    @property
    def has_spotify_credentials(self) -> bool:
        return bool(self.spotify_client_id and self.spotify_client_secret)

    @classmethod
    def get_ini_keys(cls) -> set[str]:
        """Returns a set of all keys that can appear in the INI file."""
        return set(cls.model_fields)
