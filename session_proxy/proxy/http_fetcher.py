"""
HTTP Fetcher: Direct Fetch Using Session Cookies

This module performs the cheap path of the proxy: a plain HTTP GET with the
session's cookies injected as a Cookie header, no browser involved.

This is the preferred method because:
1. Fast - No browser overhead
2. Streaming - The body is handed back unread so large files pass through
3. Cookie-aware - Set-Cookie headers from every hop are collected for merging

Redirects are followed manually so the Cookie header can be rebuilt for each
hop (cookies never leak to a different host) and so Set-Cookie headers on
redirect responses are not lost.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from http.cookiejar import CookieJar, DefaultCookiePolicy
from typing import Callable, List, Optional, Tuple
import logging

import httpx

from .errors import TooManyRedirects, UpstreamTransportError

logger = logging.getLogger(__name__)

DEFAULT_USER_AGENT = (
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
    "AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36"
)
MAX_REDIRECTS = 20

_HTML_TYPES = {"text/html", "application/xhtml+xml"}
_TEXTUAL_TYPES = {"application/json", "application/xml", "application/javascript", "application/ecmascript"}


def media_type(content_type: Optional[str]) -> str:
    """Bare lowercase media type: "text/html; charset=utf-8" -> "text/html"."""
    return (content_type or "").split(";", 1)[0].strip().lower()


def is_html(content_type: Optional[str]) -> bool:
    return media_type(content_type) in _HTML_TYPES


def is_textual(content_type: Optional[str]) -> bool:
    mt = media_type(content_type)
    return (
        mt.startswith("text/")
        or mt in _TEXTUAL_TYPES
        or mt.endswith("+json")
        or mt.endswith("+xml")
    )


def _discarding_jar() -> CookieJar:
    # Session cookies are owned by the session file, never by the HTTP client.
    return CookieJar(policy=DefaultCookiePolicy(allowed_domains=[]))


@dataclass
class DirectFetchResult:
    """
    Outcome of a direct fetch.

    Attributes:
        response: Terminal (non-redirect) response, body not yet read
        url: Final URL after redirects
        set_cookies: (url, raw Set-Cookie) pairs from every hop, in order
        redirects: Number of redirects followed
    """
    response: httpx.Response
    url: str
    set_cookies: List[Tuple[str, str]] = field(default_factory=list)
    redirects: int = 0

    @property
    def status(self) -> int:
        return self.response.status_code

    @property
    def content_type(self) -> Optional[str]:
        return self.response.headers.get("content-type")

    async def aclose(self) -> None:
        await self.response.aclose()


class HttpFetcher:
    """
    Streams GET requests with injected cookies.

    Usage:
        fetcher = HttpFetcher()
        result = await fetcher.fetch(url, cookie_header="sid=abc")
        async for chunk in result.response.aiter_raw():
            ...
        await result.aclose()
    """

    def __init__(
        self,
        client: Optional[httpx.AsyncClient] = None,
        *,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout_s: Optional[float] = 60.0,
        max_redirects: int = MAX_REDIRECTS,
        verify_ssl: bool = True
    ):
        """
        Initialize the fetcher.

        Args:
            client: Shared httpx.AsyncClient (one is created when omitted)
            user_agent: User-Agent sent with every request
            timeout_s: httpx timeout in seconds (None disables it)
            max_redirects: Redirect hops followed before giving up
            verify_ssl: Whether to verify TLS certificates
        """
        self._owns_client = client is None
        self.client = client or httpx.AsyncClient(
            timeout=httpx.Timeout(timeout_s),
            verify=verify_ssl,
            follow_redirects=False,
        )
        self.client.cookies = _discarding_jar()
        self.user_agent = user_agent
        self.max_redirects = max_redirects

    async def fetch(
        self,
        url: str,
        cookie_header: str = "",
        *,
        cookie_header_for: Optional[Callable[[str], str]] = None
    ) -> DirectFetchResult:
        """
        GET url, following redirects, and return the terminal response unread.

        Args:
            url: Target URL
            cookie_header: Cookie header value used for every hop
            cookie_header_for: Builds the Cookie header per hop URL; overrides cookie_header

        Raises:
            UpstreamTransportError: DNS, connection, TLS or timeout failure
            TooManyRedirects: more than max_redirects hops
        """
        current = url
        set_cookies: List[Tuple[str, str]] = []

        for hop in range(self.max_redirects + 1):
            header = cookie_header_for(current) if cookie_header_for else cookie_header
            headers = {"User-Agent": self.user_agent}
            if header:
                headers["Cookie"] = header

            logger.info(f"[HTTP] Fetching: {current}")
            logger.debug(f"[HTTP] Cookie header: {len(header)} chars")

            try:
                request = self.client.build_request("GET", current, headers=headers)
                response = await self.client.send(request, stream=True)
            except httpx.TransportError as e:
                logger.error(f"[HTTP] Transport error for {current}: {e!r}")
                raise UpstreamTransportError(current, f"Upstream request failed for {current}: {e!r}") from e

            set_cookies.extend((current, v) for v in response.headers.get_list("set-cookie"))

            location = response.headers.get("location")
            if 300 <= response.status_code < 400 and location:
                await response.aclose()
                current = str(httpx.URL(current).join(location))
                logger.debug(f"[HTTP] {response.status_code} redirect -> {current}")
                continue

            logger.info(
                f"[HTTP] {response.status_code} {response.headers.get('content-type', '-')} "
                f"({hop} redirect(s)): {current}"
            )
            return DirectFetchResult(response=response, url=current, set_cookies=set_cookies, redirects=hop)

        logger.warning(f"[HTTP] Redirect limit ({self.max_redirects}) hit for {url}")
        raise TooManyRedirects(url, f"Exceeded {self.max_redirects} redirects fetching {url}")

    async def aclose(self) -> None:
        if self._owns_client:
            await self.client.aclose()
