"""
Browser Rendering: Playwright Fallback for Pages That Need JavaScript

The direct fetch cannot run scripts, so HTML pages are rendered in a real
browser context restored from the session's storage state. This module wraps
the Playwright async API behind four calls:

- launch_browser: the single Chromium process shared by the whole server
- create_context: an isolated context restored from a session record
- render_page: navigate to a URL and capture the rendered document
- RenderResult: rendered HTML, or a captured download

Download handling:
Some URLs that look like pages answer with a file. Chromium then fires a
"download" event and aborts the navigation (net::ERR_ABORTED). render_page
waits for whichever of {navigation, download} finishes first, and when the
navigation fails with the abort error it waits a bounded grace period for the
download signal before treating it as a real failure.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional
import asyncio
import contextlib
import logging

from playwright.async_api import Browser, BrowserContext, Playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError
from playwright_stealth import Stealth

from .errors import RenderError, RenderTimeout

logger = logging.getLogger(__name__)

NAVIGATION_TIMEOUT_MS = 60_000
DOWNLOAD_GRACE_S = 10.0

LAUNCH_ARGS = [
    "--disable-blink-features=AutomationControlled",
    "--disable-infobars",
]

# Fingerprint evasions, injected as init scripts into every context.
STEALTH = Stealth()


@dataclass(frozen=True)
class RenderResult:
    """
    Result of rendering a URL.

    Attributes:
        body: Rendered document (page results)
        content_type: Content-Type of the main navigation response, if known
        download_path: Temp file holding a captured download
        filename: Browser-suggested filename of the download
        download: Playwright Download handle, used to delete the temp file
    """
    body: Optional[str] = None
    content_type: Optional[str] = None
    download_path: Optional[str] = None
    filename: Optional[str] = None
    download: Any = None

    @property
    def is_download(self) -> bool:
        return self.download_path is not None


async def launch_browser(playwright: Playwright, *, headless: bool = True) -> Browser:
    """Launch the shared Chromium instance."""
    browser = await playwright.chromium.launch(headless=headless, args=LAUNCH_ARGS)
    logger.info(f"[RENDER] Launched Chromium {browser.version} (headless={headless})")
    return browser


async def create_context(
    browser: Browser,
    storage_state: Optional[Dict[str, Any]] = None,
    *,
    accept_downloads: bool = True,
    stealth: Optional[Stealth] = STEALTH
) -> BrowserContext:
    """
    Create a browser context, optionally restoring session state.

    Args:
        browser: Shared browser
        storage_state: Playwright storage state (cookies + origins)
        accept_downloads: Whether navigations may produce downloads
        stealth: Evasions applied to the context (None disables them)
    """
    context = await browser.new_context(
        storage_state=storage_state,
        accept_downloads=accept_downloads,
    )
    if stealth is not None:
        await stealth.apply_stealth_async(context)
    return context


def _is_download_abort(exc: BaseException) -> bool:
    msg = str(exc)
    return "net::ERR_ABORTED" in msg or "Download is starting" in msg


async def _capture_download(download: Any) -> RenderResult:
    try:
        path = await download.path()
    except PlaywrightError as e:
        raise RenderError(f"Download failed: {e}") from e
    filename = download.suggested_filename
    logger.info(f"[RENDER] Captured download: {filename}")
    return RenderResult(download_path=str(path), filename=filename, download=download)


async def render_page(
    context: BrowserContext,
    url: str,
    *,
    timeout_ms: int = NAVIGATION_TIMEOUT_MS,
    download_grace_s: float = DOWNLOAD_GRACE_S
) -> RenderResult:
    """
    Render url in a new page of context.

    The page is always closed; the context stays alive.

    Raises:
        RenderTimeout: network-idle not reached within timeout_ms
        RenderError: navigation failed, or aborted without a download
    """
    page = await context.new_page()
    download_signal: asyncio.Future = asyncio.get_running_loop().create_future()

    def _on_download(download: Any) -> None:
        if not download_signal.done():
            download_signal.set_result(download)

    page.on("download", _on_download)
    navigation = asyncio.ensure_future(
        page.goto(url, wait_until="networkidle", timeout=timeout_ms)
    )

    try:
        await asyncio.wait({navigation, download_signal}, return_when=asyncio.FIRST_COMPLETED)

        if download_signal.done() and not navigation.done():
            navigation.cancel()
            with contextlib.suppress(asyncio.CancelledError, PlaywrightError):
                await navigation
            return await _capture_download(download_signal.result())

        try:
            response = navigation.result()
        except PlaywrightTimeoutError as e:
            raise RenderTimeout(f"Navigation timed out after {timeout_ms}ms: {url}") from e
        except PlaywrightError as e:
            if download_signal.done():
                return await _capture_download(download_signal.result())
            if not _is_download_abort(e):
                raise RenderError(f"Navigation failed for {url}: {e}") from e
            logger.debug(f"[RENDER] Navigation aborted, waiting {download_grace_s}s for download")
            try:
                download = await asyncio.wait_for(download_signal, download_grace_s)
            except asyncio.TimeoutError:
                raise RenderError(f"Navigation aborted and no download started: {url}") from e
            return await _capture_download(download)

        content_type = await response.header_value("content-type") if response is not None else None
        body = await page.content()
        logger.info(f"[RENDER] Rendered {url} ({len(body)} chars)")
        return RenderResult(body=body, content_type=content_type)
    finally:
        if not navigation.done():
            navigation.cancel()
        await page.close()
