"""
Converts a media blob into the requested container, codec and bitrate.
"""

import logging
import uuid

from tunefetch.exceptions import ProcessFailure, ProcessTimeout, TranscodeFailure, UnsupportedConversion
from tunefetch.models.track import FormatSpec, MediaBlob

from .audio_tool import ENCODERS, AudioTool, extension_for

log = logging.getLogger(__name__)

# Codecs ffmpeg can decode that we accept as transcoder input
DECODABLE_CODECS = frozenset(
    {
        "mp3",
        "aac",
        "alac",
        "flac",
        "opus",
        "vorbis",
        "pcm_s16le",
        "pcm_s24le",
        "pcm_f32le",
        "wmav2",
    }
)

# Container/codec pairs the transcoder can produce
SUPPORTED_TARGETS = frozenset(
    {
        ("mp3", "mp3"),
        ("m4a", "aac"),
        ("m4a", "alac"),
        ("flac", "flac"),
        ("wav", "pcm_s16le"),
        ("ogg", "opus"),
        ("ogg", "vorbis"),
    }
)

# A source whose bitrate is this close above the target is kept as-is
BITRATE_TOLERANCE_KBPS = 16


def satisfies(blob: MediaBlob, target: FormatSpec) -> bool:
    """True when ``blob`` can be used for ``target`` without re-encoding."""
    if blob.container != target.container or blob.codec != target.codec:
        return False
    if blob.is_lossless or target.bitrate is None or blob.bitrate is None:
        return True
    return blob.bitrate <= target.bitrate + BITRATE_TOLERANCE_KBPS


class Transcoder:
    """Runs the audio tool's transcode operation with short-circuiting."""

    def __init__(self, tool: AudioTool):
        self.tool = tool

    def check_path(self, blob: MediaBlob, target: FormatSpec) -> None:
        """
        Raises:
            UnsupportedConversion: No decoder for the source or no encoder for the target.
        """
        if blob.codec not in DECODABLE_CODECS:
            raise UnsupportedConversion(f"Cannot decode source codec '{blob.codec}'")
        if (target.container, target.codec) not in SUPPORTED_TARGETS or target.codec not in ENCODERS:
            raise UnsupportedConversion(f"No encoder for target {target}")

    async def convert(self, blob: MediaBlob, target: FormatSpec) -> MediaBlob:
        if satisfies(blob, target):
            log.debug(f"{blob.path.name} already matches {target}, skipping transcode")
            return blob

        self.check_path(blob, target)
        output = blob.path.with_name(
            f"transcoded-{uuid.uuid4().hex[:8]}.{extension_for(target.container, target.codec)}"
        )
        log.debug(f"Transcoding {blob.path.name} ({blob.codec}) -> {target}")
        try:
            path = await self.tool.invoke(
                blob.path, "transcode", {"target": target, "output": output}
            )
        except (ProcessFailure, ProcessTimeout) as e:
            raise TranscodeFailure(f"Transcode to {target} failed: {e}") from e

        return MediaBlob(
            path=path,
            container=target.container,
            codec=target.codec,
            duration=blob.duration,
            bitrate=None if target.is_lossless else target.bitrate,
            origin_id=blob.origin_id,
        )
