"""
Shared HTTP session for metadata lookups and direct downloads.

All HTTP status and transport errors are classified here into the
application's error taxonomy, so fetchers and providers never see raw
aiohttp exceptions.
"""

import asyncio
import json
import logging
import os
from pathlib import Path
from typing import Any, Optional

import aiofiles
import aiohttp

from tunefetch.exceptions import NotFound, RateLimited, SourceUnavailable

log = logging.getLogger(__name__)

USER_AGENT = "tunefetch/0.4 (+https://github.com/tunefetch/tunefetch)"
CHUNK_SIZE = 262144  # 256 KB


def parse_retry_after(value: Optional[str]) -> Optional[float]:
    """Parses a Retry-After header given in seconds."""
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except ValueError:
        return None


def classify_status(status: int, url: str, retry_after: Optional[str] = None) -> None:
    """Raises the matching application error for a failed HTTP status."""
    if status < 400:
        return
    if status == 429:
        raise RateLimited(
            f"Rate limited by {_host(url)}", retry_after=parse_retry_after(retry_after)
        )
    if status in (404, 410):
        raise NotFound(f"Resource not found: {url}")
    raise SourceUnavailable(f"HTTP {status} from {_host(url)}")


def _host(url: str) -> str:
    return url.split("/")[2] if "://" in url else url


class HttpSession:
    """
    An aiohttp ClientSession wrapper created lazily and closed by its owner.
    """

    def __init__(self, max_connections: int = 8, timeout: float = 30.0):
        self._max_connections = max_connections
        self._timeout = timeout
        self._session: Optional[aiohttp.ClientSession] = None
        self._lock = asyncio.Lock()

    async def session(self) -> aiohttp.ClientSession:
        async with self._lock:
            if self._session and not self._session.closed:
                return self._session
            connector = aiohttp.TCPConnector(
                limit=self._max_connections * 2,
                limit_per_host=self._max_connections,
                ttl_dns_cache=600,
                enable_cleanup_closed=True,
            )
            timeout = aiohttp.ClientTimeout(
                total=None, sock_connect=15, sock_read=self._timeout
            )
            self._session = aiohttp.ClientSession(
                connector=connector,
                timeout=timeout,
                headers={"User-Agent": USER_AGENT},
            )
            log.debug(f"Created HTTP session with limit_per_host={self._max_connections}")
        return self._session

    async def close(self) -> None:
        async with self._lock:
            if self._session and not self._session.closed:
                await self._session.close()
                log.debug("HTTP session closed.")
            self._session = None

    async def __aenter__(self) -> "HttpSession":
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        await self.close()

    async def _request(self, method: str, url: str, **kwargs) -> bytes:
        session = await self.session()
        try:
            async with session.request(method, url, **kwargs) as response:
                body = await response.read()
                classify_status(
                    response.status, url, response.headers.get("Retry-After")
                )
                return body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise SourceUnavailable(f"Request to {_host(url)} failed: {e}") from e

    async def get_json(self, url: str, **kwargs) -> Any:
        """GETs a URL and decodes the JSON body."""
        return await self.request_json("GET", url, **kwargs)

    async def request_json(self, method: str, url: str, **kwargs) -> Any:
        body = await self._request(method, url, **kwargs)
        try:
            return json.loads(body)
        except ValueError as e:
            raise SourceUnavailable(f"Invalid JSON from {_host(url)}: {e}") from e

    async def get_text(self, url: str, **kwargs) -> str:
        body = await self._request("GET", url, **kwargs)
        return body.decode("utf-8", errors="replace")

    async def get_bytes(self, url: str, **kwargs) -> bytes:
        body = await self._request("GET", url, **kwargs)
        return body

    async def download(self, url: str, destination: Path) -> tuple[int, Optional[str]]:
        """
        Streams a URL to ``destination``.

        Returns:
            (bytes written, response Content-Type)
        """
        session = await self.session()
        written = 0
        try:
            async with session.get(url, allow_redirects=True) as response:
                classify_status(
                    response.status, url, response.headers.get("Retry-After")
                )
                content_type = response.headers.get("Content-Type")
                async with aiofiles.open(destination, "wb") as f:
                    async for chunk in response.content.iter_chunked(CHUNK_SIZE):
                        await f.write(chunk)
                        written += len(chunk)
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            _remove_quietly(destination)
            raise SourceUnavailable(f"Download from {_host(url)} failed: {e}") from e
        except BaseException:
            _remove_quietly(destination)
            raise
        return written, content_type


def _remove_quietly(path: Path) -> None:
    try:
        os.remove(path)
    except FileNotFoundError:
        pass
