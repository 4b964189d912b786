"""
HTTP client for the desktop app's local API.

When the desktop app is running it owns the dataset and mirrors its own
changes to the Gist, so mutations are sent there first. When it is not
reachable, callers fall back to the file store (see backends.py).

Nothing here raises to the caller: an absent app, a timeout, a non-2xx
status, or a ``success: false`` envelope all come back as UNREACHABLE.
"""

from __future__ import annotations

import logging
import time
from typing import Any, Callable, NamedTuple, Optional

import httpx

from .config import DEFAULT_LOCAL_API_URL

logger = logging.getLogger(__name__)

# Timeouts
REQUEST_TIMEOUT = 5.0
HEALTH_TIMEOUT = 2.0

# Re-probe health at most this often
HEALTH_CACHE_SECONDS = 30.0


class LocalResult(NamedTuple):
    """Outcome of a proxied call. ``ok`` False means: use the fallback."""
    ok: bool
    data: Any = None


UNREACHABLE = LocalResult(ok=False)


class LocalApiClient:
    """Proxy to the desktop app's local API with a cached health probe."""

    def __init__(
        self,
        base_url: str = DEFAULT_LOCAL_API_URL,
        *,
        health_path: str = "/api/health",
        request_timeout: float = REQUEST_TIMEOUT,
        health_timeout: float = HEALTH_TIMEOUT,
        health_cache_seconds: float = HEALTH_CACHE_SECONDS,
        clock: Callable[[], float] = time.monotonic,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = base_url.rstrip("/")
        self._health_path = health_path
        self._request_timeout = request_timeout
        self._health_timeout = health_timeout
        self._health_cache_seconds = health_cache_seconds
        self._clock = clock

        self._client = httpx.AsyncClient(
            base_url=self._base_url,
            headers={"Content-Type": "application/json"},
            timeout=request_timeout,
            transport=transport,
        )
        self._available: bool | None = None  # cached after first probe
        self._checked_at = 0.0

    @property
    def base_url(self) -> str:
        return self._base_url

    async def is_available(self) -> bool:
        """True if the app answered the health probe recently."""
        now = self._clock()
        if self._available is not None and now - self._checked_at < self._health_cache_seconds:
            return self._available

        try:
            resp = await self._client.get(self._health_path, timeout=self._health_timeout)
            available = resp.is_success
        except httpx.HTTPError as e:
            logger.debug("Local app health probe failed: %s", e)
            available = False

        if available != self._available:
            if available:
                logger.info("Desktop app reachable at %s, using local API", self._base_url)
            else:
                logger.debug("Desktop app not reachable, using file store")
        self._available = available
        self._checked_at = now
        return available

    def reset_health_cache(self) -> None:
        """Forget the cached probe so the next call re-probes."""
        self._available = None
        self._checked_at = 0.0

    async def try_local(
        self,
        method: str,
        path: str,
        payload: Optional[dict] = None,
    ) -> LocalResult:
        """Send one request to the app, or report that it cannot serve it.

        Returns:
            LocalResult(True, data) with the envelope's ``data`` on success,
            otherwise UNREACHABLE.
        """
        if not await self.is_available():
            return UNREACHABLE

        try:
            resp = await self._client.request(
                method, path, json=payload, timeout=self._request_timeout,
            )
        except httpx.TimeoutException:
            logger.warning("Local API %s %s timed out, falling back", method, path)
            self.reset_health_cache()
            return UNREACHABLE
        except httpx.HTTPError as e:
            logger.warning("Local API %s %s failed (%s), falling back", method, path, e)
            self.reset_health_cache()
            return UNREACHABLE

        if not resp.is_success:
            logger.info("Local API %s %s returned %d, falling back", method, path, resp.status_code)
            self.reset_health_cache()
            return UNREACHABLE

        try:
            body = resp.json()
        except ValueError:
            body = None
        if isinstance(body, dict):
            if body.get("success") is False:
                logger.info(
                    "Local API %s %s reported failure (%s), falling back",
                    method, path, body.get("error"),
                )
                self.reset_health_cache()
                return UNREACHABLE
            if "data" in body:
                return LocalResult(True, body["data"])
        return LocalResult(True, body)

    async def health(self) -> Optional[dict]:
        """The app's health document, or None if it is not running."""
        result = await self.try_local("GET", self._health_path)
        if not result.ok:
            return None
        return result.data if isinstance(result.data, dict) else {}

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
