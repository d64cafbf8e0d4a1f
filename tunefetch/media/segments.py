"""
Removes unwanted time ranges (sponsor reads, intros, silence) from a media
blob.
"""

import logging
import uuid

from tunefetch.exceptions import InvalidSegmentSpec
from tunefetch.models.track import MediaBlob, SegmentSpec

from .audio_tool import AudioTool, extension_for

log = logging.getLogger(__name__)


class SegmentFilter:
    """Cuts normalized skip ranges out of a blob through the audio tool."""

    def __init__(self, tool: AudioTool):
        self.tool = tool

    def validate(self, blob: MediaBlob, spec: SegmentSpec) -> SegmentSpec:
        """
        Normalizes ``spec`` and checks every range against the blob's duration.

        Raises:
            InvalidSegmentSpec: A range is negative, empty or past the end.
        """
        for start, end in spec.ranges:
            if start < 0:
                raise InvalidSegmentSpec(f"Segment starts before 0s: ({start}, {end})")
            if end <= start:
                raise InvalidSegmentSpec(f"Segment ends before it starts: ({start}, {end})")

        normalized = spec.normalized()
        if blob.duration is None:
            raise InvalidSegmentSpec("Cannot trim media of unknown duration")

        for start, end in normalized.ranges:
            if end > blob.duration:
                raise InvalidSegmentSpec(
                    f"Segment ({start:.2f}, {end:.2f}) exceeds media duration "
                    f"{blob.duration:.2f}s"
                )
        if normalized.total >= blob.duration:
            raise InvalidSegmentSpec("Segments would remove the entire track")
        return normalized

    async def trim(self, blob: MediaBlob, spec: SegmentSpec) -> MediaBlob:
        """Returns a new blob without the ranges in ``spec``; an empty spec is a no-op."""
        if not spec:
            return blob

        normalized = self.validate(blob, spec)
        output = blob.path.with_name(
            f"trimmed-{uuid.uuid4().hex[:8]}.{extension_for(blob.container, blob.codec)}"
        )
        log.debug(
            f"Trimming {len(normalized.ranges)} segment(s), "
            f"{normalized.total:.1f}s from {blob.path.name}"
        )
        path = await self.tool.invoke(
            blob.path,
            "trim",
            {
                "ranges": normalized.ranges,
                "codec": blob.codec,
                "bitrate": blob.bitrate,
                "output": output,
            },
        )
        return MediaBlob(
            path=path,
            container=blob.container,
            codec=blob.codec,
            duration=blob.duration - normalized.total,
            bitrate=blob.bitrate,
            origin_id=blob.origin_id,
        )
