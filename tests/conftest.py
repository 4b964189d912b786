"""
Shared pytest fixtures for bytepad tests.

HTTP is never real: the desktop app and the Gist API are both served by
in-memory fakes through httpx.MockTransport.
"""

import json
from pathlib import Path
from typing import Any, Optional

import httpx
import pytest

from bytepad.file_store import FileStore, SyncConfigStore
from bytepad.gist import GistClient
from bytepad.local_api import LocalApiClient
from bytepad.types import StoreData


class FakeClock:
    """Monotonic clock advanced by hand."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_document(items: int = 0, last_modified: str = "2024-01-01T00:00:00.000Z") -> StoreData:
    """A dataset document with ``items`` notes."""
    document = StoreData(last_modified=last_modified)
    document.data["notes"] = [
        {"id": f"n{i}", "title": f"Note {i}", "content": "", "tags": []}
        for i in range(items)
    ]
    return document


def write_document(path: Path, document: StoreData) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(document.to_dict()), encoding="utf-8")


class FakeGistApi:
    """In-memory GitHub Gist API."""

    def __init__(self, username: str = "octocat", filename: str = "bytepad-data.json"):
        self.username = username
        self.filename = filename
        self.gists: dict[str, dict[str, Any]] = {}
        self.requests: list[httpx.Request] = []
        self.fail_with: list[int] = []  # status codes to return before succeeding
        self.valid_token = "ghp_valid"
        self._next_id = 1

    def put_document(self, gist_id: str, document: Optional[StoreData], owner: Optional[str] = None):
        files = {}
        if document is not None:
            files[self.filename] = {"content": json.dumps(document.to_dict())}
        self.gists[gist_id] = {"owner": {"login": owner or self.username}, "files": files}

    def put_raw(self, gist_id: str, content: str):
        self.gists[gist_id] = {
            "owner": {"login": self.username},
            "files": {self.filename: {"content": content}},
        }

    def document(self, gist_id: str) -> StoreData:
        content = self.gists[gist_id]["files"][self.filename]["content"]
        return StoreData.from_dict(json.loads(content))

    def writes(self) -> list[httpx.Request]:
        return [r for r in self.requests if r.method in ("PATCH", "POST")]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if self.fail_with:
            return httpx.Response(self.fail_with.pop(0), json={"message": "boom"})
        if request.headers.get("Authorization") != f"Bearer {self.valid_token}":
            return httpx.Response(401, json={"message": "Bad credentials"})

        path = request.url.path
        if path == "/user":
            return httpx.Response(
                200, json={"login": self.username}, headers={"x-oauth-scopes": "gist, repo"},
            )
        if path == "/gists" and request.method == "POST":
            body = json.loads(request.content)
            gist_id = f"gist{self._next_id}"
            self._next_id += 1
            self.gists[gist_id] = {"owner": {"login": self.username}, "files": body["files"]}
            return httpx.Response(
                201, json={"id": gist_id, "html_url": f"https://gist.github.com/{gist_id}"},
            )
        if path.startswith("/gists/"):
            gist_id = path.split("/")[2]
            gist = self.gists.get(gist_id)
            if gist is None:
                return httpx.Response(404, json={"message": "Not Found"})
            if request.method == "GET":
                return httpx.Response(200, json={"id": gist_id, **gist})
            if request.method == "PATCH":
                body = json.loads(request.content)
                gist["files"].update(body["files"])
                return httpx.Response(200, json={"id": gist_id, **gist})
        return httpx.Response(405)


class FakeLocalApp:
    """In-memory stand-in for the desktop app's local API."""

    def __init__(self, running: bool = True):
        self.running = running
        self.requests: list[httpx.Request] = []
        self.items: dict[str, list[dict]] = {}
        self.fail_status: Optional[int] = None
        self.raise_timeout = False
        self._next_id = 1

    def calls(self, method: Optional[str] = None) -> list[httpx.Request]:
        return [
            r for r in self.requests
            if r.url.path != "/api/health" and (method is None or r.method == method)
        ]

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if not self.running:
            raise httpx.ConnectError("connection refused", request=request)
        path = request.url.path
        if path == "/api/health":
            return httpx.Response(200, json={"success": True, "data": {"status": "ok", "version": "0.24.3"}})
        if self.raise_timeout:
            raise httpx.ReadTimeout("timed out", request=request)
        if self.fail_status is not None:
            return httpx.Response(self.fail_status, json={"success": False, "error": "nope"})

        parts = path.strip("/").split("/")  # api, collection, [id], [action]
        collection = parts[1]
        items = self.items.setdefault(collection, [])
        body = json.loads(request.content) if request.content else {}
        if request.method == "GET":
            return httpx.Response(200, json={"success": True, "data": items})
        if request.method == "POST" and len(parts) == 2:
            item = {"id": f"app{self._next_id}", **body}
            self._next_id += 1
            items.insert(0, item)
            return httpx.Response(201, json={"success": True, "data": {"id": item["id"], "message": "created"}})
        if request.method == "POST" and parts[-1] == "toggle":
            return httpx.Response(200, json={"success": True, "data": {"completed": True}})
        if request.method == "PATCH":
            return httpx.Response(200, json={"success": True, "data": {"id": parts[2]}})
        if request.method == "DELETE":
            return httpx.Response(200, json={"success": True})
        return httpx.Response(405)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def store(tmp_path):
    """Loaded, empty file store."""
    s = FileStore(tmp_path / "bytepad-data.json")
    s.load()
    return s


@pytest.fixture
def sync_config(tmp_path):
    """Sync settings with no environment overrides."""
    config = SyncConfigStore(tmp_path / "gist-config.json", env={})
    config.load()
    return config


@pytest.fixture
def gist_api():
    return FakeGistApi()


@pytest.fixture
def gist_client(gist_api):
    async def no_sleep(_delay):
        return None

    return GistClient(
        "https://api.github.com",
        transport=httpx.MockTransport(gist_api.handler),
        sleep=no_sleep,
    )


@pytest.fixture
def local_app():
    return FakeLocalApp()


@pytest.fixture
def local_client(local_app, clock):
    return LocalApiClient(
        "http://127.0.0.1:31337",
        clock=clock,
        transport=httpx.MockTransport(local_app.handler),
    )
