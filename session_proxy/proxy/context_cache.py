"""
Context Cache: One Live Browser Context per Session

Rendering reuses a browser context per session file so that cookies and
storage gathered by one request are visible to the next one on the same
session. Contexts are created lazily from the session record and live until
shutdown, or until they sit idle longer than max_idle_s when eviction is
enabled.

Invariant: at most one context exists per session path, also when several
requests miss the cache at the same time.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, AsyncIterator, Awaitable, Callable, Dict, List, Optional, Union
import asyncio
import logging
import time

from .session_store import KeyedLock, SessionStore

logger = logging.getLogger(__name__)

ContextFactory = Callable[[Dict[str, Any]], Awaitable[Any]]


@dataclass
class _Entry:
    context: Any
    last_used: float
    active: int = 0


class ContextCache:
    """
    Maps session file paths to live browser contexts.

    Usage:
        cache = ContextCache(lambda state: create_context(browser, state), store)
        async with cache.use(session_path) as context:
            result = await render_page(context, url)
        ...
        await cache.close_all()
    """

    def __init__(
        self,
        create_context: ContextFactory,
        store: SessionStore,
        *,
        max_idle_s: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic
    ):
        """
        Initialize the cache.

        Args:
            create_context: Coroutine building a context from a storage state
                            (downloads must be allowed)
            store: Session store used to load and persist session state
            max_idle_s: Idle time after which evict_idle closes a context
                        (None disables eviction)
            clock: Monotonic time source
        """
        self._create_context = create_context
        self.store = store
        self.max_idle_s = max_idle_s
        self._clock = clock
        self._entries: Dict[str, _Entry] = {}
        self._creating = KeyedLock()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, session_path: Union[str, Path]) -> bool:
        return str(session_path) in self._entries

    async def get_or_create(self, session_path: Union[str, Path]) -> Any:
        """
        Return the cached context for session_path, creating it on a miss.

        Raises:
            SessionNotFound: no session file to restore from
            SessionParseError: the session file is corrupt
        """
        return (await self._acquire(session_path)).context

    @asynccontextmanager
    async def use(self, session_path: Union[str, Path]) -> AsyncIterator[Any]:
        """Borrow the session's context; borrowed contexts are never evicted."""
        entry = await self._acquire(session_path)
        entry.active += 1
        try:
            yield entry.context
        finally:
            entry.active -= 1
            entry.last_used = self._clock()

    async def _acquire(self, session_path: Union[str, Path]) -> _Entry:
        key = str(session_path)
        entry = self._entries.get(key)
        if entry is None:
            async with self._creating.hold(key):
                entry = self._entries.get(key)
                if entry is None:
                    # Wait out any persist still writing this session (eviction, render).
                    async with self.store.lock(key):
                        record = await asyncio.to_thread(self.store.load, session_path)
                    context = await self._create_context(record.to_storage_state())
                    entry = self._entries[key] = _Entry(context=context, last_used=self._clock())
                    logger.info(f"[CONTEXT] Created context for {key} ({len(record.cookies)} cookies)")
        entry.last_used = self._clock()
        return entry

    async def _persist_and_close(self, key: str, entry: _Entry) -> bool:
        ok = True
        try:
            async with self.store.lock(key):
                await self.store.persist_from_context(entry.context, key)
        except Exception as e:
            logger.warning(f"[CONTEXT] Failed to persist {key}: {e}")
            ok = False
        try:
            await entry.context.close()
        except Exception as e:
            logger.warning(f"[CONTEXT] Failed to close context for {key}: {e}")
            ok = False
        return ok

    async def evict_idle(self, now: Optional[float] = None) -> List[str]:
        """
        Persist and close contexts idle for longer than max_idle_s.

        Returns:
            Session paths that were evicted
        """
        if self.max_idle_s is None:
            return []
        now = self._clock() if now is None else now
        stale = [key for key, entry in self._entries.items() if self._is_idle(entry, now)]
        evicted = []
        for key in stale:
            # Earlier evictions awaited; the entry may have been borrowed since.
            entry = self._entries.get(key)
            if entry is None or not self._is_idle(entry, now):
                continue
            del self._entries[key]
            logger.info(f"[CONTEXT] Evicting idle context for {key}")
            await self._persist_and_close(key, entry)
            evicted.append(key)
        return evicted

    def _is_idle(self, entry: _Entry, now: float) -> bool:
        return entry.active == 0 and now - entry.last_used > self.max_idle_s

    async def run_eviction(self, interval_s: float) -> None:
        """Background loop calling evict_idle every interval_s seconds."""
        while True:
            await asyncio.sleep(interval_s)
            await self.evict_idle()

    async def close_all(self) -> List[str]:
        """
        Persist and close every cached context, continuing past failures.

        Returns:
            Session paths whose persist or close failed
        """
        failed = []
        entries, self._entries = self._entries, {}
        for key, entry in entries.items():
            if not await self._persist_and_close(key, entry):
                failed.append(key)
        logger.info(f"[CONTEXT] Closed {len(entries)} context(s), {len(failed)} failure(s)")
        return failed
