"""
Cookies: Matching Stored Cookies and Absorbing Set-Cookie Responses

Two halves of the cookie round trip between a persisted session and a
direct HTTP fetch:

- match_cookies / build_cookie_header: choose the stored cookies that may be
  sent to a URL (domain suffix, path prefix, secure, expiry) and format the
  Cookie header.
- parse_set_cookie / merge_set_cookies: turn raw Set-Cookie directives into
  Cookie records and fold them into a session, replacing by
  (name, domain, path).

This is not a full RFC 6265 cookie jar; it implements only the rules the
proxy relies on.
"""

from __future__ import annotations

from datetime import timezone
from email.utils import parsedate_to_datetime
from typing import Iterable, List, Optional, Sequence
from urllib.parse import urlsplit
import logging
import time

from ..schemas import Cookie, SessionRecord

logger = logging.getLogger(__name__)

_SAME_SITE_VALUES = {"strict": "Strict", "lax": "Lax", "none": "None"}


# ============================================================
# MATCHING
# ============================================================

def _domain_matches(cookie_domain: str, hostname: str) -> bool:
    cookie_domain = cookie_domain if cookie_domain.startswith(".") else f".{cookie_domain}"
    host_domain = f".{hostname}"
    return host_domain == cookie_domain or host_domain.endswith(cookie_domain)


def match_cookies(
    cookies: Sequence[Cookie],
    target_url: str,
    now: Optional[float] = None
) -> List[Cookie]:
    """
    Filter cookies to those sendable on target_url, keeping their order.

    Args:
        cookies: Stored cookies of a session
        target_url: URL the request is going to
        now: Current time in epoch seconds (defaults to time.time())

    Returns:
        The matching cookies
    """
    parts = urlsplit(target_url)
    hostname = (parts.hostname or "").lower()
    pathname = parts.path or "/"
    is_https = parts.scheme.lower() == "https"
    now = time.time() if now is None else now

    matched = []
    for c in cookies:
        if not _domain_matches(c.domain.lower(), hostname):
            continue
        if c.path and not pathname.startswith(c.path):
            continue
        if c.secure and not is_https:
            continue
        if not c.is_session_cookie and c.expires < now:
            continue
        matched.append(c)
    return matched


def build_cookie_header(
    record: SessionRecord,
    target_url: str,
    now: Optional[float] = None
) -> str:
    """
    Format the Cookie header value for target_url.

    Returns:
        String formatted as "name1=value1; name2=value2", or "" if nothing matches
    """
    if not record.cookies:
        return ""
    return "; ".join(f"{c.name}={c.value}" for c in match_cookies(record.cookies, target_url, now))


# ============================================================
# MERGING
# ============================================================

def _parse_expires(value: str) -> Optional[float]:
    try:
        parsed = parsedate_to_datetime(value)
        if parsed.tzinfo is None:
            # "-0000" or no zone: cookie dates are GMT
            parsed = parsed.replace(tzinfo=timezone.utc)
        return parsed.timestamp()
    except (TypeError, ValueError, IndexError, OverflowError):
        logger.debug(f"[COOKIES] Dropping unparseable expires: {value!r}")
        return None


def parse_set_cookie(raw: str, target_url: str) -> Optional[Cookie]:
    """
    Parse one Set-Cookie directive received for target_url.

    Examples:
        session=abc; Domain=example.com; Path=/; Secure; HttpOnly
        token=a=b=c; Expires=Wed, 21 Oct 2037 07:28:00 GMT; SameSite=lax

    Returns:
        Cookie, or None when the directive carries no cookie name
    """
    segments = raw.split(";")
    name, sep, value = segments[0].partition("=")
    name = name.strip()
    if not sep or not name:
        return None

    fields = {
        "name": name,
        "value": value.strip(),
        "domain": urlsplit(target_url).hostname or "",
        "path": "/",
    }

    for segment in segments[1:]:
        attr, _, attr_value = segment.partition("=")
        attr = attr.strip().lower()
        attr_value = attr_value.strip()

        if attr == "domain" and attr_value:
            fields["domain"] = attr_value
        elif attr == "path" and attr_value:
            fields["path"] = attr_value
        elif attr == "secure":
            fields["secure"] = True
        elif attr == "httponly":
            fields["httpOnly"] = True
        elif attr == "expires":
            expires = _parse_expires(attr_value)
            if expires is not None:
                fields["expires"] = expires
        elif attr == "samesite":
            fields["sameSite"] = _SAME_SITE_VALUES.get(attr_value.lower(), attr_value)

    return Cookie(**fields)


def merge_set_cookies(
    record: SessionRecord,
    directives: Iterable[str],
    target_url: str
) -> SessionRecord:
    """
    Apply Set-Cookie directives to a session record.

    A cookie replaces the stored cookie with the same (name, domain, path),
    otherwise it is appended. Directives apply in order, so the last one for
    a key wins. The input record is left untouched.

    Returns:
        New SessionRecord with the merged cookie list
    """
    cookies = list(record.cookies)
    index = {c.key: i for i, c in enumerate(cookies)}
    applied = 0

    for raw in directives:
        cookie = parse_set_cookie(raw, target_url)
        if cookie is None:
            continue
        applied += 1
        if cookie.key in index:
            cookies[index[cookie.key]] = cookie
        else:
            index[cookie.key] = len(cookies)
            cookies.append(cookie)

    if applied:
        logger.debug(f"[COOKIES] Merged {applied} Set-Cookie directive(s) from {target_url}")
    return record.model_copy(update={"cookies": cookies})
