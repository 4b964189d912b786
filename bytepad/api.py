"""
The Bytepad application object.

Wires the file store, the desktop-app bridge, the Gist client, the sync
reconciler, the auto-sync scheduler, the dedup gateway and the command
table together, and exposes one entry point: execute(name, args).
"""

import logging
import time
from pathlib import Path
from typing import Any, Callable, Mapping, Optional

import httpx

from .backends import BackendChain, FileStoreBackend, LocalAppBackend
from .commands import COMMANDS, Commands
from .config import ServerConfig, load_or_create_config
from .errors import BytepadError, NotInitializedError, log_exception
from .file_store import FileStore, SyncConfigStore
from .gateway import CommandGateway
from .gist import GistClient
from .local_api import LocalApiClient
from .logging_config import configure_ops_log, remove_ops_log
from .scheduler import AutoSyncScheduler
from .sync import SyncReconciler
from .types import ToolResult

logger = logging.getLogger(__name__)


class Bytepad:
    """
    Automation server core: commands against the shared dataset.

    Call start() (or use ``async with``) before execute().
    """

    def __init__(
        self,
        data_dir: Optional[str | Path] = None,
        *,
        config: Optional[ServerConfig] = None,
        env: Optional[Mapping[str, str]] = None,
        clock: Callable[[], float] = time.monotonic,
        unit_seconds: float = 60.0,
        ops_log: bool = True,
        local_transport: Optional[httpx.AsyncBaseTransport] = None,
        gist_transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        """
        Args:
            data_dir: Data directory. Uses BYTEPAD_DATA_DIR or ~/.bytepad if not specified.
            config: Pre-loaded ServerConfig (skips reading bytepad.toml).
            env: Environment mapping for overrides (defaults to os.environ).
            clock: Monotonic clock for the dedup TTL and health cache.
            unit_seconds: Seconds per sync-interval unit.
            ops_log: Attach the rotating operations log on start().
            local_transport: Injected transport for the desktop-app client.
            gist_transport: Injected transport for the Gist client.
        """
        if config is None:
            config = load_or_create_config(Path(data_dir) if data_dir else None, env)
        self._config = config
        self._ops_log = ops_log
        self._ops_handler: Optional[logging.Handler] = None
        self._started = False

        self.store = FileStore(config.data_path)
        self.sync_config = SyncConfigStore(config.sync_config_path, env)

        self.local = LocalApiClient(
            config.local_api.url,
            health_path=config.local_api.health_path,
            request_timeout=config.local_api.request_timeout,
            health_timeout=config.local_api.health_timeout,
            health_cache_seconds=config.local_api.health_cache_seconds,
            clock=clock,
            transport=local_transport,
        )
        self.chain = BackendChain(LocalAppBackend(self.local), FileStoreBackend(self.store))

        self.gist = GistClient(
            config.remote.api_url,
            filename=config.remote.filename,
            timeout=config.remote.timeout,
            transport=gist_transport,
        )
        self.reconciler = SyncReconciler(self.store, self.sync_config, self.gist)
        self.scheduler = AutoSyncScheduler(
            self.reconciler, self.sync_config, unit_seconds=unit_seconds,
        )
        self.gateway = CommandGateway(config.dedup_ttl_seconds, clock=clock)
        self.commands = Commands(
            store=self.store,
            chain=self.chain,
            local=self.local,
            sync_config=self.sync_config,
            reconciler=self.reconciler,
            scheduler=self.scheduler,
        )

    @property
    def config(self) -> ServerConfig:
        return self._config

    @property
    def command_names(self) -> list[str]:
        return list(COMMANDS)

    async def start(self, *, auto_sync: bool = True) -> None:
        """Load local state, start the dedup sweeper, and start auto-sync.

        With auto_sync, an initial smart sync runs first if enabled.
        """
        if self._started:
            return
        if self._ops_log:
            self._ops_handler = configure_ops_log(self._config.data_dir)
        self.store.load()
        self.sync_config.load()
        self.gateway.start_sweeper()
        self._started = True
        if auto_sync:
            await self.scheduler.initialize()
        logger.info("Bytepad started (data dir %s)", self._config.data_dir)

    async def execute(self, name: str, args: Optional[Mapping[str, Any]] = None) -> ToolResult:
        """
        Run one command and report its outcome.

        Command failures come back as ``success=False`` results. A store
        that was never loaded is a programming error and raises.
        """
        arguments = dict(args or {})
        try:
            return await self.gateway.execute(
                name, arguments, lambda: self.commands.dispatch(name, arguments),
            )
        except NotInitializedError:
            raise
        except BytepadError as e:
            logger.info("Command %s failed: %s", name, e)
            return ToolResult(False, str(e), e.details())
        except Exception as e:
            log_path = log_exception(e, f"command {name}", self._config.data_dir)
            logger.error("Command %s crashed: %s (details in %s)", name, e, log_path)
            return ToolResult(False, f"Internal error in {name}: {e}")

    async def aclose(self) -> None:
        """Stop background tasks and close HTTP clients."""
        await self.scheduler.aclose()
        await self.gateway.aclose()
        await self.local.aclose()
        await self.gist.aclose()
        if self._ops_handler is not None:
            remove_ops_log(self._ops_handler)
            self._ops_handler = None
        self._started = False

    async def __aenter__(self) -> "Bytepad":
        await self.start()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> bool:
        await self.aclose()
        return False
