"""
Resolves one canonical metadata record per track from the source platform's
native fragment, the caller's hints and any number of auxiliary providers.
"""

import asyncio
import dataclasses
import logging
from typing import List, Mapping, Optional, Sequence, Tuple

from tunefetch.exceptions import TuneFetchError
from tunefetch.models.metadata import CanonicalMetadata, MetadataFragment
from tunefetch.models.track import TrackRequest
from tunefetch.sources.http import HttpSession
from tunefetch.sources.rate_limiter import RateLimitBudget

from .merge import NATIVE, REQUEST, build_priority_table, merge_fragments, rank
from .providers.base import MetadataProvider

log = logging.getLogger(__name__)

COVER_ART_BUDGET = "cover_art"


class MetadataResolver:
    """
    Queries every provider concurrently, each independently timeboxed, and
    merges the results with a fixed per-field priority table. A provider that
    fails, times out or lacks credentials only leaves its fields empty and
    adds a warning.
    """

    def __init__(
        self,
        providers: Sequence[MetadataProvider] = (),
        priority: Optional[Mapping[str, Sequence[str]]] = None,
        timeout: float = 10.0,
        http: Optional[HttpSession] = None,
        budget: Optional[RateLimitBudget] = None,
        fetch_cover: bool = True,
    ):
        self.providers = list(providers)
        self.table = build_priority_table(priority)
        self.timeout = timeout
        self.http = http
        self.budget = budget
        self.fetch_cover = fetch_cover

    async def resolve(
        self, native: MetadataFragment, request: TrackRequest
    ) -> CanonicalMetadata:
        fragments: List[Tuple[str, MetadataFragment]] = []
        if request.hints is not None:
            fragments.append((REQUEST, request.hints))
        fragments.append((NATIVE, native))

        title, artist = self._query_fields(request, native)
        warnings: List[str] = []
        if self.providers and not title:
            warnings.append("No title available to query metadata providers")
        elif self.providers:
            results = await asyncio.gather(
                *(self._guarded_lookup(p, title, artist or "") for p in self.providers)
            )
            for provider, (fragment, warning) in zip(self.providers, results):
                if warning:
                    warnings.append(warning)
                if fragment is not None:
                    fragments.append((provider.name, fragment))

        canonical = merge_fragments(fragments, self.table, warnings)
        return await self._finalize_cover(canonical, fragments)

    @staticmethod
    def _query_fields(
        request: TrackRequest, native: MetadataFragment
    ) -> Tuple[Optional[str], Optional[str]]:
        hints = request.hints
        title = (hints.title if hints and hints.title else None) or native.title
        artist = (hints.artist if hints and hints.artist else None) or native.artist
        return title, artist

    async def _guarded_lookup(
        self, provider: MetadataProvider, title: str, artist: str
    ) -> Tuple[Optional[MetadataFragment], Optional[str]]:
        """Runs one lookup; never raises except on cancellation."""
        if not provider.available:
            return None, f"{provider.name} unavailable: credentials not configured"
        try:
            fragment = await asyncio.wait_for(
                provider.lookup(title, artist), self.timeout
            )
        except asyncio.TimeoutError:
            return None, f"{provider.name} timed out after {self.timeout:.0f}s"
        except TuneFetchError as e:
            return None, f"{provider.name} failed: {e}"
        except Exception as e:
            log.debug(f"Provider {provider.name} raised unexpectedly", exc_info=True)
            return None, f"{provider.name} failed: {e}"
        if fragment is None:
            log.debug(f"{provider.name}: no match for '{artist} - {title}'")
        return fragment, None

    async def _finalize_cover(
        self,
        canonical: CanonicalMetadata,
        fragments: Sequence[Tuple[str, MetadataFragment]],
    ) -> CanonicalMetadata:
        """Downloads cover art when the winning fragment only carries a URL."""
        provenance = dict(canonical.provenance)
        warnings = list(canonical.warnings)

        if not self.fetch_cover:
            provenance.pop("cover_art", None)
            return dataclasses.replace(canonical, cover_art=None, provenance=provenance)
        if canonical.cover_art or "cover_art" not in provenance:
            return canonical

        cover, source = None, None
        for role, fragment in rank("cover_art", fragments, self.table):
            if fragment.cover_art:
                cover, source = fragment.cover_art, role
                break
            data, warning = await self._download_cover(role, fragment.cover_art_url)
            if warning:
                warnings.append(warning)
            if data:
                cover, source = data, role
                break

        if source:
            provenance["cover_art"] = source
        else:
            provenance.pop("cover_art", None)
        return dataclasses.replace(
            canonical, cover_art=cover, provenance=provenance, warnings=tuple(warnings)
        )

    async def _download_cover(
        self, role: str, url: Optional[str]
    ) -> Tuple[Optional[bytes], Optional[str]]:
        if not url or self.http is None:
            return None, None

        async def fetch() -> bytes:
            if self.budget is None:
                return await self.http.get_bytes(url)
            async with self.budget.slot(COVER_ART_BUDGET):
                return await self.http.get_bytes(url)

        try:
            return await asyncio.wait_for(fetch(), self.timeout), None
        except asyncio.TimeoutError:
            return None, f"cover art from {role} timed out"
        except TuneFetchError as e:
            return None, f"cover art from {role} failed: {e}"
