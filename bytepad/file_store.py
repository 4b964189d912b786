"""
File-backed persistence for the dataset document and the sync settings.

Two JSON files live in the data directory:
- bytepad-data.json: the full dataset (StoreData)
- gist-config.json: sync settings, with the token always written as null

Writes go to a temporary file which is then renamed over the target, and
the in-memory document is swapped only after the rename succeeds. Readers
calling get() therefore always see a complete document, old or new.
Writers are serialized with a lock.
"""

import dataclasses
import json
import logging
import os
import threading
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Mapping, Optional, TypeVar

from .config import ENV_GIST_ID, ENV_TOKEN
from .errors import NotInitializedError
from .types import MIN_SYNC_INTERVAL, StoreData, SyncConfig, parse_timestamp, utc_now

logger = logging.getLogger(__name__)

T = TypeVar("T")


def _atomic_write_json(path: Path, payload: Any) -> None:
    """Write JSON to path via a temp file and rename."""
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")
    with open(tmp_path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)
        f.flush()
        os.fsync(f.fileno())
    os.replace(tmp_path, path)


class FileStore:
    """
    The local dataset document, held in memory and mirrored to disk.

    load() must be called before get(), save() or update(). A missing or
    unreadable file is replaced with a fresh empty document, so first run
    and corruption recovery take the same path.
    """

    def __init__(self, path: Path):
        """
        Args:
            path: Path to the dataset JSON file
        """
        self._path = path
        self._store: Optional[StoreData] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def loaded(self) -> bool:
        return self._store is not None

    def load(self) -> StoreData:
        """Load the document from disk, creating or recovering it if needed."""
        with self._lock:
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
                self._store = StoreData.from_dict(raw)
                logger.info(
                    "Loaded dataset from %s (%d items)",
                    self._path, self._store.count_items().total,
                )
                return self._store
            except FileNotFoundError:
                logger.info("No dataset at %s, creating an empty one", self._path)
            except (ValueError, OSError) as e:
                backup = self._quarantine()
                logger.warning(
                    "Dataset at %s is unreadable (%s); saved as %s and starting fresh",
                    self._path, e, backup,
                )
            self._store = None
            return self._commit(StoreData())

    def get(self) -> StoreData:
        """The current document. Treat it as read-only; use update() to change it."""
        if self._store is None:
            raise NotInitializedError("Store not initialized. Call load() first.")
        return self._store

    def save(self, document: Optional[StoreData] = None) -> StoreData:
        """
        Persist a document, replacing the current one wholesale.

        With no argument, re-persists the current document. lastModified is
        always stamped before writing.
        """
        with self._lock:
            current = self.get()
            return self._commit((document or current).copy())

    def update(self, mutate: Callable[[StoreData], T]) -> T:
        """
        Apply ``mutate`` to a copy of the document and persist the copy.

        If ``mutate`` raises, nothing is written and the current document is
        unchanged. ``mutate`` must not call back into this store.

        Returns:
            Whatever ``mutate`` returns
        """
        with self._lock:
            draft = self.get().copy()
            result = mutate(draft)
            self._commit(draft)
        return result

    def _commit(self, document: StoreData) -> StoreData:
        document.last_modified = self._next_timestamp()
        _atomic_write_json(self._path, document.to_dict())
        self._store = document
        return document

    def _next_timestamp(self) -> str:
        """now(), but never earlier than the current lastModified."""
        now = utc_now()
        if self._store is None:
            return now
        previous = self._store.last_modified
        try:
            if parse_timestamp(previous) > parse_timestamp(now):
                return previous
        except ValueError:
            pass
        return now

    def _quarantine(self) -> Optional[Path]:
        """Move an unreadable dataset file aside so it is not lost."""
        stamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S")
        backup = self._path.with_name(f"{self._path.name}.corrupt-{stamp}")
        try:
            os.replace(self._path, backup)
        except OSError:
            return None
        return backup


class SyncConfigStore:
    """
    Sync settings persisted to gist-config.json.

    GITHUB_TOKEN and GIST_ID from the environment take precedence over
    the file at load time. The token is never written to disk.
    """

    def __init__(self, path: Path, env: Optional[Mapping[str, str]] = None):
        self._path = path
        self._env = os.environ if env is None else env
        self._config: Optional[SyncConfig] = None
        self._lock = threading.Lock()

    @property
    def path(self) -> Path:
        return self._path

    @property
    def config(self) -> SyncConfig:
        """Current settings; defaults from the environment if never loaded."""
        if self._config is None:
            self._config = self._apply_env(SyncConfig())
        return self._config

    def load(self) -> SyncConfig:
        with self._lock:
            try:
                raw = json.loads(self._path.read_text(encoding="utf-8"))
                if not isinstance(raw, dict):
                    raise ValueError("sync config must be a JSON object")
                self._config = self._apply_env(SyncConfig.from_dict(raw))
                return self._config
            except FileNotFoundError:
                logger.info("No sync config at %s, creating defaults", self._path)
            except (ValueError, OSError) as e:
                logger.warning("Sync config at %s is unreadable (%s), using defaults", self._path, e)
            self._config = self._apply_env(SyncConfig())
            _atomic_write_json(self._path, self._config.to_dict())
            return self._config

    def update(self, **changes: Any) -> SyncConfig:
        """Apply field changes (SyncConfig attribute names) and persist."""
        with self._lock:
            if "sync_interval" in changes:
                changes["sync_interval"] = max(MIN_SYNC_INTERVAL, int(changes["sync_interval"]))
            self._config = dataclasses.replace(self.config, **changes)
            _atomic_write_json(self._path, self._config.to_dict())
            return self._config

    def mark_synced(self) -> SyncConfig:
        return self.update(last_sync_at=utc_now())

    def _apply_env(self, config: SyncConfig) -> SyncConfig:
        token = self._env.get(ENV_TOKEN)
        if token:
            config.token = token
        gist_id = self._env.get(ENV_GIST_ID)
        if gist_id:
            config.gist_id = gist_id
        return config
