"""
The audio transform collaborator: probing, trimming and transcoding media
files through ffprobe and ffmpeg.

Command construction lives in plain functions so it can be inspected
without running any binary.
"""

import json
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional, Protocol, Sequence, Tuple, runtime_checkable

from tunefetch.exceptions import ProcessFailure
from tunefetch.models.track import FormatSpec

from .process import run_process

log = logging.getLogger(__name__)

# ffmpeg encoder used to produce each codec
ENCODERS = {
    "mp3": "libmp3lame",
    "aac": "aac",
    "flac": "flac",
    "alac": "alac",
    "pcm_s16le": "pcm_s16le",
    "pcm_s24le": "pcm_s24le",
    "opus": "libopus",
    "vorbis": "libvorbis",
}

# ffprobe reports demuxer lists; the first alias found wins
CONTAINER_ALIASES = {
    "mov": "m4a",
    "mp4": "m4a",
    "m4a": "m4a",
    "matroska": "webm",
    "webm": "webm",
    "mp3": "mp3",
    "flac": "flac",
    "ogg": "ogg",
    "wav": "wav",
    "aiff": "aiff",
}

EXTENSIONS = {
    ("m4a", "aac"): "m4a",
    ("m4a", "alac"): "m4a",
    ("ogg", "opus"): "opus",
    ("ogg", "vorbis"): "ogg",
    ("webm", "opus"): "webm",
    ("webm", "vorbis"): "webm",
}


@dataclass(frozen=True)
class ProbeResult:
    """What ffprobe says about a file's first audio stream."""

    container: str
    codec: str
    duration: Optional[float] = None
    bitrate: Optional[int] = None


@runtime_checkable
class AudioTool(Protocol):
    """Inspects and transforms audio files."""

    async def probe(self, path: Path) -> ProbeResult: ...

    async def invoke(self, input_path: Path, operation: str, params: Dict[str, Any]) -> Path: ...


def normalize_container(format_name: str) -> str:
    for name in format_name.split(","):
        if name.strip() in CONTAINER_ALIASES:
            return CONTAINER_ALIASES[name.strip()]
    return format_name.split(",")[0].strip()


def extension_for(container: str, codec: str) -> str:
    return EXTENSIONS.get((container, codec), container)


def parse_probe(payload: Dict[str, Any]) -> ProbeResult:
    """Builds a ProbeResult from ffprobe's JSON output."""
    streams = [s for s in payload.get("streams", []) if s.get("codec_type") == "audio"]
    if not streams:
        raise ProcessFailure("No audio stream found in file")
    stream = streams[0]
    fmt = payload.get("format", {})

    duration = stream.get("duration") or fmt.get("duration")
    bit_rate = stream.get("bit_rate") or fmt.get("bit_rate")
    return ProbeResult(
        container=normalize_container(fmt.get("format_name", "")),
        codec=stream.get("codec_name", "unknown"),
        duration=float(duration) if duration else None,
        bitrate=int(int(bit_rate) / 1000) if bit_rate else None,
    )


def build_probe_command(ffprobe: str, path: Path) -> list[str]:
    return [
        ffprobe,
        "-v", "error",
        "-print_format", "json",
        "-show_format",
        "-show_streams",
        str(path),
    ]


def build_trim_filter(ranges: Sequence[Tuple[float, float]]) -> str:
    """An aselect filter dropping every sample inside one of ``ranges``."""
    between = "+".join(f"between(t,{start:.3f},{end:.3f})" for start, end in ranges)
    return f"aselect='not({between})',asetpts=N/SR/TB"


def build_trim_command(
    ffmpeg: str,
    input_path: Path,
    output_path: Path,
    ranges: Sequence[Tuple[float, float]],
    codec: str,
    bitrate: Optional[int] = None,
) -> list[str]:
    encoder = ENCODERS.get(codec)
    if encoder is None:
        raise ProcessFailure(f"No encoder available to re-encode '{codec}' after trimming")
    cmd = [
        ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
        "-i", str(input_path),
        "-vn",
        "-af", build_trim_filter(ranges),
        "-c:a", encoder,
    ]
    if bitrate:
        cmd += ["-b:a", f"{bitrate}k"]
    cmd.append(str(output_path))
    return cmd


def build_transcode_command(
    ffmpeg: str, input_path: Path, output_path: Path, target: FormatSpec
) -> list[str]:
    encoder = ENCODERS.get(target.codec)
    if encoder is None:
        raise ProcessFailure(f"No encoder available for '{target.codec}'")
    cmd = [
        ffmpeg, "-hide_banner", "-loglevel", "error", "-y",
        "-i", str(input_path),
        "-map", "0:a:0",
        "-vn",
        "-map_metadata", "-1",
        "-c:a", encoder,
    ]
    if target.bitrate and not target.is_lossless:
        cmd += ["-b:a", f"{target.bitrate}k"]
    if target.container == "ogg":
        cmd += ["-f", "ogg"]
    cmd.append(str(output_path))
    return cmd


class FfmpegAudioTool:
    """AudioTool backed by the ffprobe and ffmpeg binaries."""

    OPERATIONS = ("trim", "transcode")

    def __init__(
        self,
        ffmpeg_bin: str = "ffmpeg",
        ffprobe_bin: str = "ffprobe",
        timeout: float = 600.0,
    ):
        self.ffmpeg_bin = ffmpeg_bin
        self.ffprobe_bin = ffprobe_bin
        self.timeout = timeout

    async def probe(self, path: Path) -> ProbeResult:
        stdout, _ = await run_process(
            build_probe_command(self.ffprobe_bin, path), timeout=60
        )
        try:
            payload = json.loads(stdout)
        except ValueError as e:
            raise ProcessFailure(f"Unreadable ffprobe output for {path.name}") from e
        return parse_probe(payload)

    async def invoke(self, input_path: Path, operation: str, params: Dict[str, Any]) -> Path:
        """
        Runs one transform and returns the path of the file it produced.

        Operations:
            trim: params ``ranges``, ``codec``, ``output`` and optional ``bitrate``.
            transcode: params ``target`` (FormatSpec) and ``output``.
        """
        output: Path = params["output"]
        if operation == "trim":
            cmd = build_trim_command(
                self.ffmpeg_bin,
                input_path,
                output,
                params["ranges"],
                params["codec"],
                params.get("bitrate"),
            )
        elif operation == "transcode":
            cmd = build_transcode_command(
                self.ffmpeg_bin, input_path, output, params["target"]
            )
        else:
            raise ValueError(f"Unknown audio operation '{operation}'")

        await run_process(cmd, timeout=self.timeout)
        if not output.is_file() or output.stat().st_size == 0:
            raise ProcessFailure(f"ffmpeg produced no output for {input_path.name}")
        return output
