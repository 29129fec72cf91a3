"""
Request Router: Direct Stream or Browser Render

Orchestrates one proxied request with a two-tier strategy:

1. DIRECT STREAM (Preferred)
   - GET with the session's cookies injected, no browser
   - Used whenever the upstream answers with anything but HTML
   - Body streamed through unmodified; Set-Cookie merged into the session

2. BROWSER RENDER (Fallback)
   - Used when the upstream answers with HTML, which may need scripts
   - Rendered in the session's cached browser context
   - Full context state (cookies + storage) persisted afterwards

Persisting session state is best-effort on both paths: a failed write is
logged and the response is still sent.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any, AsyncIterator, Dict, List, Tuple
from urllib.parse import quote, unquote, urlsplit
import asyncio
import logging

from starlette.background import BackgroundTask
from starlette.responses import FileResponse, Response, StreamingResponse

from .browser import NAVIGATION_TIMEOUT_MS, RenderResult, render_page
from .context_cache import ContextCache
from .cookies import build_cookie_header, merge_set_cookies
from .http_fetcher import DirectFetchResult, HttpFetcher, is_html, is_textual
from .session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_FILENAME = "download"

# Not forwarded to the client: connection-scoped headers, and cookies, which
# the session file owns.
_DROPPED_HEADERS = {
    "connection",
    "keep-alive",
    "proxy-authenticate",
    "proxy-authorization",
    "te",
    "trailer",
    "transfer-encoding",
    "upgrade",
    "set-cookie",
}


def filename_from_url(url: str) -> str:
    """Last path segment of url, or "download" when there is none."""
    segment = unquote(urlsplit(url).path).rsplit("/", 1)[-1]
    return segment or DEFAULT_FILENAME


def attachment_disposition(filename: str) -> str:
    """
    Build an attachment Content-Disposition value.

    Non-ASCII names get an RFC 5987 filename* alongside an ASCII fallback.
    """
    safe = filename.replace("\\", "_").replace('"', "'").replace("\r", "").replace("\n", "")
    ascii_name = safe.encode("ascii", "ignore").decode("ascii") or DEFAULT_FILENAME
    value = f'attachment; filename="{ascii_name}"'
    if ascii_name != safe:
        value += f"; filename*=UTF-8''{quote(safe)}"
    return value


async def _iter_body(result: DirectFetchResult) -> AsyncIterator[bytes]:
    try:
        async for chunk in result.response.aiter_raw():
            yield chunk
    finally:
        await result.aclose()


async def _delete_download(download: Any) -> None:
    try:
        await download.delete()
    except Exception as e:
        logger.debug(f"[PROXY] Could not delete download temp file: {e}")


class SessionProxy:
    """
    Serves GET /v1 requests from stored sessions.

    Usage:
        proxy = SessionProxy(store, HttpFetcher(), contexts)
        response = await proxy.handle("github", "https://github.com/settings")
    """

    def __init__(
        self,
        store: SessionStore,
        fetcher: HttpFetcher,
        contexts: ContextCache,
        *,
        render_timeout_ms: int = NAVIGATION_TIMEOUT_MS,
        render=render_page
    ):
        """
        Initialize the router.

        Args:
            store: Session store (path resolution, load, save, locks)
            fetcher: Direct fetcher
            contexts: Browser context cache for the render path
            render_timeout_ms: Navigation timeout for the render path
            render: Render coroutine (context, url, timeout_ms=...) -> RenderResult
        """
        self.store = store
        self.fetcher = fetcher
        self.contexts = contexts
        self.render_timeout_ms = render_timeout_ms
        self._render_page = render

    async def handle(self, session: str, url: str) -> Response:
        """
        Proxy url using the stored session named session.

        Raises:
            SessionProxyError: any failure before a response could be built
        """
        session_path = self.store.resolve_path(session)
        logger.info(f"[PROXY] [{session}] {url}")

        record = await asyncio.to_thread(self.store.load_or_empty, session_path)
        result = await self.fetcher.fetch(
            url,
            cookie_header_for=lambda hop_url: build_cookie_header(record, hop_url),
        )

        if is_html(result.content_type):
            await result.aclose()
            logger.info(f"[PROXY] [{session}] HTML response, rendering in browser")
            return await self._render(session_path, url)

        logger.info(f"[PROXY] [{session}] Streaming {result.content_type or 'untyped'} response directly")
        return await self._stream(session_path, url, result)

    # --------------------------------------------------------
    # Direct stream
    # --------------------------------------------------------

    def _forward_headers(self, result: DirectFetchResult, url: str) -> Dict[str, str]:
        headers: Dict[str, str] = {}
        for name, value in result.response.headers.multi_items():
            name = name.lower()
            if name in _DROPPED_HEADERS:
                continue
            headers[name] = f"{headers[name]}, {value}" if name in headers else value

        if "content-disposition" not in headers and not is_textual(result.content_type):
            headers["content-disposition"] = attachment_disposition(filename_from_url(url))
        return headers

    async def _stream(self, session_path: Path, url: str, result: DirectFetchResult) -> Response:
        headers = self._forward_headers(result, url)
        await self._merge_cookies(session_path, result.set_cookies)
        return StreamingResponse(
            _iter_body(result),
            status_code=result.status,
            headers=headers,
            background=BackgroundTask(result.aclose),
        )

    async def _merge_cookies(self, session_path: Path, set_cookies: List[Tuple[str, str]]) -> None:
        if not set_cookies:
            return
        try:
            async with self.store.lock(session_path):
                record = await asyncio.to_thread(self.store.load_or_empty, session_path)
                for hop_url, directive in set_cookies:
                    record = merge_set_cookies(record, [directive], hop_url)
                await asyncio.to_thread(self.store.save, session_path, record)
            logger.info(f"[PROXY] Merged {len(set_cookies)} Set-Cookie header(s) into {session_path}")
        except Exception as e:
            logger.warning(f"[PROXY] Failed to persist cookies for {session_path}: {e}")

    # --------------------------------------------------------
    # Browser render
    # --------------------------------------------------------

    async def _render(self, session_path: Path, url: str) -> Response:
        async with self.contexts.use(session_path) as context:
            result: RenderResult = await self._render_page(context, url, timeout_ms=self.render_timeout_ms)
            await self._persist_context(context, session_path)

        if result.is_download:
            return FileResponse(
                result.download_path,
                filename=result.filename or filename_from_url(url),
                media_type="application/octet-stream",
                background=BackgroundTask(_delete_download, result.download),
            )
        return Response(content=result.body, media_type=result.content_type or "text/html; charset=utf-8")

    async def _persist_context(self, context: Any, session_path: Path) -> None:
        try:
            async with self.store.lock(session_path):
                await self.store.persist_from_context(context, session_path)
        except Exception as e:
            logger.warning(f"[PROXY] Failed to persist context state for {session_path}: {e}")

    async def shutdown(self) -> List[str]:
        """Persist and close all cached contexts, then close the HTTP client."""
        failed = await self.contexts.close_all()
        await self.fetcher.aclose()
        return failed
