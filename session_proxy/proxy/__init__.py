"""
Proxy Module: Session-Backed Fetching with Browser Fallback

This module answers requests for protected URLs using session state captured
by an earlier interactive login.

Components:
- cookies: Match stored cookies to a URL, merge Set-Cookie responses
- SessionStore: Load/save session files (Playwright storage-state JSON)
- HttpFetcher: Direct streaming fetch with injected cookies
- browser: Playwright launch, context creation, page rendering
- ContextCache: One live browser context per session
- SessionProxy: Per-request routing between direct stream and render

Design Philosophy:
1. Direct-first: Stream anything that is not HTML without a browser
2. Render fallback: Only HTML goes through a real browser context
3. Sessions evolve: Every response feeds cookies back into the session file
"""

from .errors import (
    SessionProxyError,
    SessionError,
    SessionNotFound,
    SessionParseError,
    PersistenceError,
    UpstreamError,
    UpstreamTransportError,
    TooManyRedirects,
    RenderError,
    RenderTimeout,
)
from .cookies import match_cookies, build_cookie_header, parse_set_cookie, merge_set_cookies
from .session_store import KeyedLock, SessionStore, resolve_session_path
from .http_fetcher import HttpFetcher, DirectFetchResult
from .browser import launch_browser, create_context, render_page, RenderResult
from .context_cache import ContextCache
from .request_router import SessionProxy

__all__ = [
    "SessionProxyError",
    "SessionError",
    "SessionNotFound",
    "SessionParseError",
    "PersistenceError",
    "UpstreamError",
    "UpstreamTransportError",
    "TooManyRedirects",
    "RenderError",
    "RenderTimeout",
    "match_cookies",
    "build_cookie_header",
    "parse_set_cookie",
    "merge_set_cookies",
    "KeyedLock",
    "SessionStore",
    "resolve_session_path",
    "HttpFetcher",
    "DirectFetchResult",
    "launch_browser",
    "create_context",
    "render_page",
    "RenderResult",
    "ContextCache",
    "SessionProxy",
]
