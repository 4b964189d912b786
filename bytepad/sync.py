"""
Reconciliation between the local dataset and its Gist mirror.

The whole document is the unit of conflict resolution: a pull replaces
the local document, a push replaces the remote file, and smart sync picks
one of the two by comparing lastModified. Nothing is merged per record,
so edits made on both sides since the last sync keep only the newer side.

Pull and push refuse to overwrite a dataset of more than 10 items with
one less than half its size unless forced (see check_data_loss).
"""

import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Optional

from .errors import DataLossRiskError, NotFoundError, RemoteDataError, SyncNotConfiguredError
from .file_store import FileStore, SyncConfigStore
from .gist import GistClient
from .types import StoreData, parse_timestamp

logger = logging.getLogger(__name__)

# Guard thresholds
LOSS_RATIO = 0.5
LOSS_MIN_ITEMS = 10


def check_data_loss(direction: str, local_items: int, remote_items: int) -> None:
    """
    Raise DataLossRiskError if the sync would shrink the target too much.

    For a pull the target is local; for a push the target is remote.
    """
    if direction == "pull":
        incoming, existing = remote_items, local_items
    else:
        incoming, existing = local_items, remote_items
    if incoming < existing * LOSS_RATIO and existing > LOSS_MIN_ITEMS:
        raise DataLossRiskError(direction, local_items, remote_items)


@dataclass(frozen=True)
class SyncOutcome:
    """What a sync operation did."""
    action: str  # "pull" | "push" | "create" | "none"
    message: str
    item_count: Optional[int] = None
    gist_id: Optional[str] = None
    url: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        d: dict[str, Any] = {"action": self.action}
        if self.item_count is not None:
            d["itemCount"] = self.item_count
        if self.gist_id is not None:
            d["gistId"] = self.gist_id
        if self.url is not None:
            d["url"] = self.url
        return d


class SyncReconciler:
    """Pull, push and smart sync against the configured Gist."""

    def __init__(self, store: FileStore, config: SyncConfigStore, gist: GistClient):
        self._store = store
        self._config = config
        self._gist = gist
        self._lock = asyncio.Lock()

    @property
    def in_progress(self) -> bool:
        return self._lock.locked()

    def _token(self) -> str:
        token = self._config.config.token
        if not token:
            raise SyncNotConfiguredError("GitHub token not configured")
        return token

    def _credentials(self) -> tuple[str, str]:
        config = self._config.config
        if not config.token or not config.gist_id:
            raise SyncNotConfiguredError("Gist not configured (token or gistId missing)")
        return config.token, config.gist_id

    def status(self) -> dict[str, Any]:
        config = self._config.config
        return {
            "configured": config.configured,
            "gistId": config.gist_id,
            "lastSyncAt": config.last_sync_at,
            "autoSync": config.auto_sync,
            "syncInterval": config.sync_interval,
            "inProgress": self.in_progress,
        }

    async def validate(self) -> dict[str, Any]:
        """Check the token, then the Gist if one is configured.

        Raises:
            SyncNotConfiguredError: No token
            AuthError: Token rejected
        """
        token = self._token()
        user = await self._gist.validate_token(token)
        result: dict[str, Any] = {
            "tokenValid": True,
            "username": user.username,
            "scopes": user.scopes,
            "gistAccessible": False,
        }
        gist_id = self._config.config.gist_id
        if gist_id:
            access = await self._gist.validate_gist(token, gist_id)
            result["gistAccessible"] = access.accessible
            result["isOwner"] = access.is_owner
        return result

    async def create_remote(
        self, description: str = "Bytepad Data", public: bool = False,
    ) -> SyncOutcome:
        """Create a new Gist holding the local document and remember its id."""
        token = self._token()
        document = self._store.get()
        remote = await self._gist.create(token, document, description=description, public=public)
        self._config.update(gist_id=remote.id)
        self._config.mark_synced()
        return SyncOutcome(
            "create", f"Created Gist: {remote.id}",
            item_count=document.count_items().total, gist_id=remote.id, url=remote.url,
        )

    async def pull(self, force: bool = False) -> SyncOutcome:
        """Replace the local document with the remote one."""
        token, gist_id = self._credentials()
        async with self._lock:
            remote = await self._gist.read(token, gist_id)
            return self._apply_pull(remote, force)

    async def push(self, force: bool = False, create_if_missing: bool = False) -> SyncOutcome:
        """Replace the remote document with the local one."""
        token = self._token()
        if not self._config.config.gist_id:
            if create_if_missing:
                outcome = await self.create_remote()
                return SyncOutcome(
                    "push", "Created and pushed to new Gist",
                    item_count=outcome.item_count, gist_id=outcome.gist_id, url=outcome.url,
                )
            raise SyncNotConfiguredError(
                "Gist ID not configured. Use createIfMissing=true to create one."
            )
        gist_id = self._config.config.gist_id
        async with self._lock:
            remote_items: Optional[int] = None
            if not force:
                try:
                    remote_items = (await self._gist.read(token, gist_id)).count_items().total
                except (NotFoundError, RemoteDataError) as e:
                    logger.info("No readable remote document, skipping size check: %s", e)
            return await self._apply_push(token, gist_id, remote_items, force)

    async def smart_sync(self) -> SyncOutcome:
        """Pull if the remote is newer, push if local is newer, else nothing.

        An overlapping call returns action "none" without touching anything.
        """
        token, gist_id = self._credentials()
        if self._lock.locked():
            return SyncOutcome("none", "Sync already in progress")

        async with self._lock:
            try:
                remote = await self._gist.read(token, gist_id)
            except (NotFoundError, RemoteDataError) as e:
                logger.info("Remote document unavailable (%s), pushing local copy", e)
                return await self._apply_push(token, gist_id, None, force=True)

            local = self._store.get()
            local_modified = parse_timestamp(local.last_modified)
            remote_modified = parse_timestamp(remote.last_modified)

            if remote_modified > local_modified:
                outcome = self._apply_pull(remote, force=False)
                logger.info("Smart sync: pulled (remote newer)")
                return SyncOutcome(
                    "pull", "Pulled from Gist (remote was newer)",
                    item_count=outcome.item_count,
                )
            if local_modified > remote_modified:
                outcome = await self._apply_push(
                    token, gist_id, remote.count_items().total, force=False,
                )
                logger.info("Smart sync: pushed (local newer)")
                return SyncOutcome(
                    "push", "Pushed to Gist (local was newer)",
                    item_count=outcome.item_count,
                )
            return SyncOutcome("none", "Already in sync", item_count=local.count_items().total)

    def _apply_pull(self, remote: StoreData, force: bool) -> SyncOutcome:
        local_items = self._store.get().count_items().total
        remote_items = remote.count_items().total
        if not force:
            check_data_loss("pull", local_items, remote_items)
        saved = self._store.save(remote)
        self._config.mark_synced()
        total = saved.count_items().total
        logger.info("Pulled from Gist: %d items", total)
        return SyncOutcome("pull", f"Pulled from Gist: {total} items", item_count=total)

    async def _apply_push(
        self, token: str, gist_id: str, remote_items: Optional[int], force: bool,
    ) -> SyncOutcome:
        document = self._store.get()
        local_items = document.count_items().total
        if not force and remote_items is not None:
            check_data_loss("push", local_items, remote_items)
        await self._gist.write(token, gist_id, document)
        self._config.mark_synced()
        return SyncOutcome(
            "push", f"Pushed to Gist: {local_items} items",
            item_count=local_items, gist_id=gist_id,
        )
