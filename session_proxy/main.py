"""
Session Proxy Backend: FastAPI Server

This is the long-running proxy process that:
1. Accepts GET /v1?session=<name-or-path>&url=<encoded url>
2. Streams non-HTML upstream responses directly, with session cookies injected
3. Renders HTML responses in a cached browser context restored from the session
4. Feeds refreshed cookies and storage back into the session file

Run with: uvicorn session_proxy.main:create_app --factory --port 8020
Or: session-proxy serve
"""

import asyncio
import contextlib
import logging
import sys
from contextlib import asynccontextmanager
from functools import partial
from logging.handlers import TimedRotatingFileHandler
from typing import Any, Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from playwright.async_api import async_playwright
from pythonjsonlogger import jsonlogger
from starlette.exceptions import HTTPException as StarletteHTTPException

from .config import ProxySettings
from .proxy import (
    ContextCache,
    HttpFetcher,
    SessionProxy,
    SessionStore,
    create_context,
    launch_browser,
)
from .schemas import ErrorResponse

__version__ = "1.0.0"

NOT_FOUND_MESSAGE = "Not found. Use /v1?session=<name>&url=<encoded_url>"
MISSING_PARAMS_MESSAGE = "Missing required query parameters: session, url"

# ============================================================================
# LOGGING CONFIGURATION
# ============================================================================

class ColoredFormatter(logging.Formatter):
    """Custom formatter with colors for different log levels."""

    COLORS = {
        'DEBUG': '\033[36m',     # Cyan
        'INFO': '\033[32m',      # Green
        'WARNING': '\033[33m',   # Yellow
        'ERROR': '\033[31m',     # Red
        'CRITICAL': '\033[35m',  # Magenta
    }
    RESET = '\033[0m'
    BOLD = '\033[1m'

    def format(self, record):
        # Color a copy so the file handler still sees plain text
        record = logging.makeLogRecord(record.__dict__)
        color = self.COLORS.get(record.levelname, self.RESET)
        record.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        record.msg = f"{color}{record.getMessage()}{self.RESET}"
        record.args = None
        return super().format(record)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> logging.Logger:
    """Setup console and optional JSON file logging for the package logger."""

    logger = logging.getLogger("session_proxy")
    logger.setLevel(logging.DEBUG)
    logger.handlers = []

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, level.upper(), logging.INFO))
    console_formatter = ColoredFormatter(
        '%(asctime)s | %(levelname)s | [%(name)s] %(message)s',
        datefmt='%H:%M:%S'
    )
    console_handler.setFormatter(console_formatter)
    logger.addHandler(console_handler)

    # Rotating file handler for structured JSON logs.
    # Rotates daily, keeps 7 days of logs.
    if log_file:
        file_handler = TimedRotatingFileHandler(
            log_file, when="midnight", interval=1, backupCount=7, encoding='utf-8'
        )
        file_handler.setLevel(logging.DEBUG)
        json_formatter = jsonlogger.JsonFormatter(
            '%(asctime)s %(name)s %(levelname)s %(message)s %(lineno)d %(funcName)s',
            rename_fields={'levelname': 'level', 'asctime': 'timestamp'}
        )
        file_handler.setFormatter(json_formatter)
        logger.addHandler(file_handler)

    return logger


logger = logging.getLogger(__name__)


def error_response(status_code: int, message: str) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=message).model_dump())


# ============================================================================
# LIFECYCLE
# ============================================================================

async def shutdown(proxy: SessionProxy, browser: Any = None, playwright: Any = None) -> None:
    """
    Tear down in order: persist and close every cached context (failures are
    isolated per session), close the HTTP client, then the shared browser.
    """
    failed = await proxy.shutdown()
    if failed:
        logger.warning(f"[PROXY] {len(failed)} session(s) not cleanly persisted: {failed}")
    if browser is not None:
        await browser.close()
    if playwright is not None:
        await playwright.stop()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan handler: shared browser up, graceful shutdown down."""
    if app.state.proxy is not None:
        # Pre-built proxy (tests, embedding): its owner manages the browser.
        yield
        return

    settings: ProxySettings = app.state.settings
    setup_logging(settings.log_level, settings.log_file)

    logger.info("=" * 60)
    logger.info("  SESSION PROXY STARTING")
    logger.info("=" * 60)

    playwright = await async_playwright().start()
    browser = await launch_browser(playwright, headless=settings.headless)
    store = SessionStore(settings.sessions_dir)
    contexts = ContextCache(
        partial(create_context, browser),
        store,
        max_idle_s=settings.context_idle_s,
    )
    fetcher = HttpFetcher(timeout_s=settings.fetch_timeout_s)
    proxy = SessionProxy(store, fetcher, contexts, render_timeout_ms=settings.render_timeout_ms)
    app.state.proxy = proxy

    eviction = None
    if settings.context_idle_s:
        eviction = asyncio.create_task(contexts.run_eviction(max(settings.context_idle_s / 2, 1.0)))

    logger.info(f"Listening on http://{settings.host}:{settings.port}")
    logger.info(
        f"  Example: curl \"http://{settings.host}:{settings.port}/v1?session=example"
        f"&url=https%3A%2F%2Fexample.com\""
    )
    try:
        yield
    finally:
        logger.info("=" * 60)
        logger.info("  SESSION PROXY SHUTTING DOWN")
        logger.info("=" * 60)
        if eviction is not None:
            eviction.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await eviction
        await shutdown(proxy, browser, playwright)
        app.state.proxy = None


# ============================================================================
# FASTAPI APPLICATION
# ============================================================================

def create_app(
    settings: Optional[ProxySettings] = None,
    *,
    proxy: Optional[SessionProxy] = None
) -> FastAPI:
    """
    Build the proxy application.

    Args:
        settings: Resolved settings (from environment when omitted)
        proxy: Pre-built SessionProxy; when given, the lifespan starts no browser
    """
    app = FastAPI(
        title="Session Proxy",
        description="Local HTTP proxy that reuses browser session state for authenticated requests",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.settings = settings or ProxySettings.resolve()
    app.state.proxy = proxy

    @app.exception_handler(StarletteHTTPException)
    async def http_error(request: Request, exc: StarletteHTTPException):
        message = NOT_FOUND_MESSAGE if exc.status_code == 404 else str(exc.detail)
        logger.debug(f"[PROXY] {exc.status_code} {request.method} {request.url.path}")
        return error_response(exc.status_code, message)

    @app.get("/v1")
    async def proxy_v1(request: Request, session: Optional[str] = None, url: Optional[str] = None):
        """Fetch url with the stored session, streaming or rendering as needed."""
        if not session or not url:
            logger.debug(f"[PROXY] 400 {request.url}")
            return error_response(400, MISSING_PARAMS_MESSAGE)

        try:
            return await request.app.state.proxy.handle(session, url)
        except Exception as e:
            logger.error(f"[PROXY] Request failed: {e}")
            return error_response(500, str(e) or "Internal server error")

    return app

