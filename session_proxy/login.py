"""
Interactive Login: Capture a Session by Hand

Opens a visible browser on the login URL and waits for the operator to sign
in and close the window. The session file is written from the live context
before the browser is shut down.

The wait resolves on whichever comes first:
- every page of the context has been closed
- the browser process disconnected (killed, crashed)

A background task snapshots state to the session file every
snapshot_interval_s seconds so an abrupt exit still leaves a recent session.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, Optional, Set
import asyncio
import contextlib
import logging

from playwright.async_api import async_playwright

from .proxy.browser import create_context, launch_browser
from .proxy.session_store import SessionStore

logger = logging.getLogger(__name__)

SNAPSHOT_INTERVAL_S = 30.0


class LoginWatcher:
    """
    Tracks the pages of a login context and signals when the operator is done.

    ``done`` completes with "pages_closed" or "disconnected".
    """

    def __init__(self, browser: Any, context: Any):
        self.pages: Set[Any] = set()
        self.done: asyncio.Future = asyncio.get_running_loop().create_future()
        context.on("page", self._track)
        browser.on("disconnected", lambda _browser: self._finish("disconnected"))
        for page in context.pages:
            self._track(page)

    def _track(self, page: Any) -> None:
        self.pages.add(page)
        page.on("close", self._closed)

    def _closed(self, page: Any) -> None:
        self.pages.discard(page)
        if not self.pages:
            self._finish("pages_closed")

    def _finish(self, reason: str) -> None:
        if not self.done.done():
            self.done.set_result(reason)


async def _snapshot_loop(store: SessionStore, context: Any, session_path: Path, interval_s: float) -> None:
    while True:
        await asyncio.sleep(interval_s)
        try:
            async with store.lock(session_path):
                await store.persist_from_context(context, session_path)
        except Exception as e:
            logger.debug(f"[LOGIN] Snapshot skipped: {e}")


async def wait_for_login(
    store: SessionStore,
    browser: Any,
    context: Any,
    session_path: Path,
    *,
    snapshot_interval_s: Optional[float] = SNAPSHOT_INTERVAL_S
) -> bool:
    """
    Wait until the operator finishes, then persist the final state.

    Returns:
        True if the final state was saved after all pages closed
    """
    watcher = LoginWatcher(browser, context)
    snapshots = None
    if snapshot_interval_s:
        snapshots = asyncio.create_task(_snapshot_loop(store, context, session_path, snapshot_interval_s))

    try:
        reason = await watcher.done
    finally:
        if snapshots is not None:
            snapshots.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await snapshots

    if reason == "disconnected":
        logger.warning(f"[LOGIN] Browser disconnected; last snapshot (if any) kept at {session_path}")
        return False

    # All tabs closed: the context is still alive, so state can be captured.
    saved = False
    try:
        async with store.lock(session_path):
            await store.persist_from_context(context, session_path)
        saved = True
        logger.info(f"[LOGIN] Session saved to: {session_path}")
    except Exception as e:
        logger.error(f"[LOGIN] Failed to save session: {e}")
    await browser.close()
    return saved


async def interactive_login(
    store: SessionStore,
    session_path: Path,
    url: str,
    *,
    snapshot_interval_s: Optional[float] = SNAPSHOT_INTERVAL_S
) -> bool:
    """
    Run the interactive login for session_path starting at url.

    Returns:
        True if the session file was written
    """
    async with async_playwright() as playwright:
        browser = await launch_browser(playwright, headless=False)
        context = await create_context(browser, accept_downloads=False)
        page = await context.new_page()
        await page.goto(url)
        logger.info(f"[LOGIN] Opened: {url}")
        logger.info("[LOGIN] Please log in manually. Close the browser window when done.")
        return await wait_for_login(
            store, browser, context, session_path,
            snapshot_interval_s=snapshot_interval_s,
        )
