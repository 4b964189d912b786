"""
Deduplication of creation commands.

Agents retry tool calls and sometimes send the same call twice at once.
For creation-class commands (``create_*`` and ``write_journal``) the
gateway makes identical calls within the TTL share one execution:

- a cached success is replayed without running the command again
- a call arriving while an identical one runs waits for its outcome
- otherwise the call registers itself as pending and runs

The pending check and insert in execute() happen with no await between
them, which is what keeps two concurrent callers from both running.
A fingerprint is either cached, pending, or neither; never both.
"""

import asyncio
import copy
import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Mapping, Optional

from .types import ToolResult

logger = logging.getLogger(__name__)

DEFAULT_TTL_SECONDS = 300.0

# Commands that create, or upsert one entity per key
UPSERT_COMMANDS = frozenset({"write_journal"})


def is_creation_command(name: str) -> bool:
    return name.startswith("create_") or name in UPSERT_COMMANDS


def fingerprint(name: str, args: Mapping[str, Any]) -> str:
    """Deterministic key for a command and its arguments."""
    canonical = json.dumps(args, sort_keys=True, separators=(",", ":"), default=str)
    return f"{name}:{canonical}"


@dataclass(frozen=True)
class _CacheEntry:
    result: ToolResult
    created_at: float


class CommandGateway:
    """In-memory cache and pending map for creation commands."""

    def __init__(
        self,
        ttl_seconds: float = DEFAULT_TTL_SECONDS,
        *,
        clock: Callable[[], float] = time.monotonic,
    ):
        self._ttl = ttl_seconds
        self._clock = clock
        self._cache: dict[str, _CacheEntry] = {}
        self._pending: dict[str, list[asyncio.Future]] = {}
        self._sweeper: Optional[asyncio.Task] = None

    @property
    def ttl_seconds(self) -> float:
        return self._ttl

    def is_cached(self, key: str) -> bool:
        return key in self._cache

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def __len__(self) -> int:
        return len(self._cache)

    async def execute(
        self,
        name: str,
        args: Mapping[str, Any],
        run: Callable[[], Awaitable[ToolResult]],
    ) -> ToolResult:
        """Run ``run()`` for this command, deduplicating creation commands."""
        if not is_creation_command(name):
            return await run()

        key = fingerprint(name, args)

        entry = self._cache.get(key)
        if entry is not None:
            if self._clock() - entry.created_at < self._ttl:
                logger.info("Returning cached result for %s", name)
                return copy.deepcopy(entry.result)
            del self._cache[key]

        waiters = self._pending.get(key)
        if waiters is not None:
            logger.info("Waiting for in-flight %s with identical arguments", name)
            future = asyncio.get_running_loop().create_future()
            waiters.append(future)
            return await future

        # No await between the lookup above and this insert
        waiters = []
        self._pending[key] = waiters

        try:
            result = await run()
        except BaseException as e:
            del self._pending[key]
            for waiter in waiters:
                if waiter.done():
                    continue
                if isinstance(e, asyncio.CancelledError):
                    waiter.cancel()
                else:
                    waiter.set_exception(e)
            raise

        del self._pending[key]
        if result.success:
            self._cache[key] = _CacheEntry(copy.deepcopy(result), self._clock())
        for waiter in waiters:
            if not waiter.done():
                waiter.set_result(copy.deepcopy(result))
        return result

    def sweep(self) -> int:
        """Drop cache entries older than the TTL. Pending calls are untouched.

        Returns:
            Number of entries dropped
        """
        now = self._clock()
        expired = [k for k, e in self._cache.items() if now - e.created_at >= self._ttl]
        for key in expired:
            del self._cache[key]
        if expired:
            logger.debug("Swept %d expired command results", len(expired))
        return len(expired)

    def start_sweeper(self) -> None:
        """Sweep every TTL/5 in the background."""
        if self._sweeper is not None and not self._sweeper.done():
            return
        self._sweeper = asyncio.get_running_loop().create_task(
            self._sweep_loop(), name="bytepad-dedup-sweeper",
        )

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self._ttl / 5)
            self.sweep()

    async def aclose(self) -> None:
        """Stop the sweeper."""
        task, self._sweeper = self._sweeper, None
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
