"""
HTTP client for the GitHub Gist API, used as the remote mirror.

The whole dataset is stored as one JSON file inside a private Gist.
Every call takes the access token explicitly; the client holds no sync
state of its own.

Failures are raised as:
- AuthError: 401/403, bad or under-scoped token
- NotFoundError: 404, no such Gist
- RequestTimeout / NetworkError: transport failures, after retries
- RemoteDataError: the Gist exists but does not hold a dataset document
- RemoteError: anything else the API rejects
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, NamedTuple, Optional

import httpx

from .config import DEFAULT_GIST_API_URL, DEFAULT_GIST_FILENAME, require_secure_url
from .errors import (
    AuthError,
    NetworkError,
    NotFoundError,
    RemoteDataError,
    RemoteError,
    RequestTimeout,
)
from .types import StoreData

logger = logging.getLogger(__name__)

# Retry config for transient failures
MAX_RETRIES = 3
RETRY_BACKOFF_BASE = 1.0  # seconds
MAX_RETRY_AFTER = 60.0

DEFAULT_TIMEOUT = 10.0


class TokenInfo(NamedTuple):
    username: str
    scopes: list[str]


class GistAccess(NamedTuple):
    accessible: bool
    is_owner: bool
    message: str


class RemoteGist(NamedTuple):
    id: str
    url: str


class GistClient:
    """Reads and writes the dataset document in a Gist."""

    def __init__(
        self,
        api_url: str = DEFAULT_GIST_API_URL,
        *,
        filename: str = DEFAULT_GIST_FILENAME,
        timeout: float = DEFAULT_TIMEOUT,
        backoff_base: float = RETRY_BACKOFF_BASE,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        # Refuse non-HTTPS (the bearer token would be sent in cleartext)
        self._api_url = require_secure_url(api_url, "Gist API")
        self._filename = filename
        self._backoff_base = backoff_base
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=self._api_url,
            headers={
                "Accept": "application/vnd.github+json",
                "X-GitHub-Api-Version": "2022-11-28",
            },
            timeout=timeout,
            transport=transport,
        )

    @property
    def filename(self) -> str:
        return self._filename

    async def _request(
        self,
        method: str,
        url: str,
        token: str,
        payload: Optional[dict] = None,
    ) -> httpx.Response:
        """Send one API call, retrying transient failures.

        Retries up to MAX_RETRIES times with exponential backoff on 5xx,
        429, timeouts and connection errors. Other 4xx are not retried.
        """
        headers = {"Authorization": f"Bearer {token}"}
        last_error: RemoteError | None = None
        cause: Exception | None = None

        for attempt in range(MAX_RETRIES):
            delay = self._backoff_base * (2 ** attempt)
            try:
                resp = await self._client.request(method, url, json=payload, headers=headers)
            except httpx.TimeoutException as e:
                last_error, cause = RequestTimeout(f"Gist API timed out: {method} {url}"), e
            except httpx.TransportError as e:
                last_error, cause = NetworkError(f"Cannot reach Gist API: {e}"), e
            else:
                cause = None
                status = resp.status_code
                if resp.is_success:
                    return resp
                if status in (401, 403):
                    raise AuthError(f"Gist API rejected the token: {status}")
                if status == 404:
                    raise NotFoundError(f"Gist not found: {url}")
                if status != 429 and status < 500:
                    raise RemoteError(f"Gist API error: {status} - {resp.text[:200]}")
                last_error = RemoteError(f"Gist API error: {status}")
                if status == 429:
                    try:
                        delay = min(float(resp.headers.get("Retry-After", delay)), MAX_RETRY_AFTER)
                    except ValueError:
                        pass

            if attempt < MAX_RETRIES - 1:
                logger.info(
                    "Gist %s attempt %d failed, retrying in %.1fs: %s",
                    method, attempt + 1, delay, last_error,
                )
                await self._sleep(delay)

        assert last_error is not None
        logger.warning("Gist %s %s failed after %d attempts: %s", method, url, MAX_RETRIES, last_error)
        raise last_error from cause

    @staticmethod
    def _json(resp: httpx.Response) -> dict:
        try:
            body = resp.json()
        except ValueError as e:
            raise RemoteDataError("Gist API returned invalid JSON") from e
        if not isinstance(body, dict):
            raise RemoteDataError("Gist API returned an unexpected response")
        return body

    def _files_payload(self, document: StoreData) -> dict:
        content = json.dumps(document.to_dict(), indent=2, ensure_ascii=False)
        return {self._filename: {"content": content}}

    async def validate_token(self, token: str) -> TokenInfo:
        """GET /user -> the token's owner and OAuth scopes."""
        resp = await self._request("GET", "/user", token)
        user = self._json(resp)
        scopes_header = resp.headers.get("x-oauth-scopes", "")
        scopes = [s.strip() for s in scopes_header.split(",") if s.strip()]
        return TokenInfo(username=str(user.get("login", "")), scopes=scopes)

    async def validate_gist(self, token: str, gist_id: str) -> GistAccess:
        """Check that the Gist can be read, and whether the token owns it."""
        try:
            resp = await self._request("GET", f"/gists/{gist_id}", token)
        except (NotFoundError, AuthError) as e:
            return GistAccess(False, False, f"Gist not accessible: {e}")
        gist = self._json(resp)
        user = await self.validate_token(token)
        owner = (gist.get("owner") or {}).get("login")
        is_owner = owner == user.username
        return GistAccess(
            True, is_owner,
            "Gist accessible (owner)" if is_owner else "Gist accessible (not owner)",
        )

    async def create(
        self,
        token: str,
        document: StoreData,
        *,
        description: str = "Bytepad Data",
        public: bool = False,
    ) -> RemoteGist:
        """POST /gists with the document as initial content."""
        payload = {
            "description": description,
            "public": public,
            "files": self._files_payload(document),
        }
        gist = self._json(await self._request("POST", "/gists", token, payload))
        gist_id = gist.get("id")
        if not isinstance(gist_id, str):
            raise RemoteDataError("Gist API did not return a Gist id")
        logger.info("Created Gist %s", gist_id)
        return RemoteGist(id=gist_id, url=str(gist.get("html_url", "")))

    async def read(self, token: str, gist_id: str) -> StoreData:
        """GET /gists/{id} and parse the dataset file."""
        gist = self._json(await self._request("GET", f"/gists/{gist_id}", token))
        file = (gist.get("files") or {}).get(self._filename)
        if not isinstance(file, dict):
            raise RemoteDataError(f"No {self._filename} file in Gist")

        content = file.get("content")
        if file.get("truncated") and file.get("raw_url"):
            # Large files are truncated in the Gist response
            content = (await self._request("GET", file["raw_url"], token)).text
        if not isinstance(content, str) or not content:
            raise RemoteDataError(f"{self._filename} in Gist is empty")

        try:
            return StoreData.from_dict(json.loads(content))
        except ValueError as e:
            raise RemoteDataError(f"{self._filename} in Gist is not a dataset document: {e}") from e

    async def write(self, token: str, gist_id: str, document: StoreData) -> None:
        """PATCH /gists/{id}, replacing the dataset file wholesale."""
        payload = {"files": self._files_payload(document)}
        await self._request("PATCH", f"/gists/{gist_id}", token, payload)
        logger.info("Wrote dataset to Gist %s", gist_id)

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()
