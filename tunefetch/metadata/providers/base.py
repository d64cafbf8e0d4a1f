"""
Auxiliary metadata provider interface and the shared HTTP plumbing used by
the concrete providers.
"""

import logging
import re
from typing import Any, Optional, Protocol, runtime_checkable

from tunefetch.exceptions import NotFound, ProviderError, RateLimited, TuneFetchError
from tunefetch.models.metadata import MetadataFragment
from tunefetch.sources.http import HttpSession
from tunefetch.sources.rate_limiter import RateLimitBudget

log = logging.getLogger(__name__)


@runtime_checkable
class MetadataProvider(Protocol):
    """Best-effort lookup of supplementary fields for one track."""

    name: str

    @property
    def available(self) -> bool: ...

    async def lookup(self, title: str, artist: str) -> Optional[MetadataFragment]: ...


def normalize(text: str) -> str:
    """Lowercases and strips punctuation for loose title/artist comparison."""
    return re.sub(r"[^\w]+", " ", text.lower()).strip()


def primary_artist(artist: str) -> str:
    """The first name of a credit like 'A feat. B', for provider queries."""
    return re.split(r"\s*(?:,|&|\sfeat\.?\s|\sft\.?\s|\sx\s)\s*", artist, maxsplit=1)[0]


class HttpProvider:
    """
    Base for providers that talk JSON/HTML over HTTP.

    Every request holds this provider's slot in the shared rate-limit budget
    and reports 429 responses back to it.
    """

    name = "provider"
    source_priority = 100

    def __init__(self, http: HttpSession, budget: RateLimitBudget):
        self.http = http
        self.budget = budget

    @property
    def available(self) -> bool:
        return True

    async def _get_json(self, url: str, **kwargs) -> Any:
        async with self.budget.slot(self.name):
            try:
                return await self.http.get_json(url, **kwargs)
            except NotFound:
                return None
            except RateLimited as e:
                await self.budget.on_rate_limited(self.name, e.retry_after)
                raise ProviderError(f"{self.name} rate limited") from e
            except TuneFetchError as e:
                raise ProviderError(f"{self.name} lookup failed: {e}") from e

    async def _get_text(self, url: str, **kwargs) -> Optional[str]:
        async with self.budget.slot(self.name):
            try:
                return await self.http.get_text(url, **kwargs)
            except NotFound:
                return None
            except RateLimited as e:
                await self.budget.on_rate_limited(self.name, e.retry_after)
                raise ProviderError(f"{self.name} rate limited") from e
            except TuneFetchError as e:
                raise ProviderError(f"{self.name} lookup failed: {e}") from e

    def fragment(self, **fields) -> MetadataFragment:
        return MetadataFragment(source=self.name, source_priority=self.source_priority, **fields)
