"""
SponsorBlock skip segments for YouTube media.
"""

import json
import logging
import math
from typing import Any, List, Optional, Sequence, Tuple

from tunefetch.exceptions import NotFound, TuneFetchError
from tunefetch.models.track import SegmentSpec

from .http import HttpSession
from .rate_limiter import RateLimitBudget

log = logging.getLogger(__name__)

API_URL = "https://sponsor.ajay.app/api/skipSegments"


def parse_segment(item: Any) -> Optional[Tuple[float, float]]:
    """The (start, end) of one API item, or None when it is not a two-number segment."""
    if not isinstance(item, dict):
        return None
    bounds = item.get("segment")
    if not isinstance(bounds, (list, tuple)) or len(bounds) != 2:
        return None
    try:
        start, end = (float(x) for x in bounds)
    except (TypeError, ValueError):
        return None
    if not (math.isfinite(start) and math.isfinite(end)):
        return None
    return start, end


class SponsorBlockClient:
    """Looks up community-submitted segments to cut from a YouTube video."""

    name = "sponsorblock"

    def __init__(
        self,
        http: HttpSession,
        budget: RateLimitBudget,
        categories: Sequence[str],
    ):
        self.http = http
        self.budget = budget
        self.categories = list(categories)

    @staticmethod
    def video_id(origin_id: Optional[str]) -> Optional[str]:
        """Extracts the video id from a 'youtube:<id>' origin, if it is one."""
        if not origin_id or ":" not in origin_id:
            return None
        platform, _, video_id = origin_id.partition(":")
        return video_id if platform == "youtube" and video_id else None

    async def segments(
        self, origin_id: Optional[str], duration: Optional[float]
    ) -> Tuple[SegmentSpec, List[str]]:
        """
        Returns the skip segments for a fetched media file and any warnings.

        Segments reaching past the fetched ``duration`` are dropped: the
        submitted times refer to a possibly different encode of the video.
        """
        video_id = self.video_id(origin_id)
        if video_id is None or not self.categories:
            return SegmentSpec(), []

        try:
            async with self.budget.slot(self.name):
                payload = await self.http.get_json(
                    API_URL,
                    params={
                        "videoID": video_id,
                        "categories": json.dumps(self.categories),
                    },
                )
        except NotFound:
            return SegmentSpec(), []
        except TuneFetchError as e:
            return SegmentSpec(), [f"SponsorBlock lookup failed: {e}"]

        if not isinstance(payload, list):
            return SegmentSpec(), ["SponsorBlock returned an unexpected response"]

        ranges = []
        warnings = []
        for item in payload:
            bounds = parse_segment(item)
            if bounds is None:
                warnings.append(f"Ignored malformed SponsorBlock segment: {item!r}")
                continue
            start, end = bounds
            if end <= start:
                continue
            if duration is not None and end > duration:
                warnings.append(
                    f"Dropped {item.get('category', 'segment')} "
                    f"({start:.1f}-{end:.1f}s) past media end {duration:.1f}s"
                )
                continue
            ranges.append((start, end))
        if ranges:
            log.debug(f"SponsorBlock: {len(ranges)} segment(s) for {video_id}")
        return SegmentSpec(tuple(ranges)), warnings
