"""
Error taxonomy for the proxy core.

Everything raised while serving a request derives from SessionProxyError so
the /v1 handler can turn it into a 500 JSON body. Client errors (bad path,
missing parameters) never reach this hierarchy; the HTTP layer answers them
directly.
"""


class SessionProxyError(Exception):
    """Base class for all proxy failures."""


# ============================================================
# SESSION FILES
# ============================================================

class SessionError(SessionProxyError):
    """Session file could not be used."""

    def __init__(self, path, message: str = ""):
        self.path = str(path)
        super().__init__(message or f"Session error: {self.path}")


class SessionNotFound(SessionError):
    """Session file does not exist."""

    def __init__(self, path):
        super().__init__(path, f"Session not found: {path}")


class SessionParseError(SessionError):
    """Session file exists but is not a valid serialized session."""

    def __init__(self, path, reason: str = ""):
        detail = f" ({reason})" if reason else ""
        super().__init__(path, f"Invalid session file: {path}{detail}")


class PersistenceError(SessionProxyError):
    """Writing session state failed."""


# ============================================================
# UPSTREAM / RENDERING
# ============================================================

class UpstreamError(SessionProxyError):
    """Direct fetch against the target site failed."""

    def __init__(self, url: str, message: str):
        self.url = url
        super().__init__(message)


class UpstreamTransportError(UpstreamError):
    """DNS, connect, TLS or timeout failure talking to the target."""


class TooManyRedirects(UpstreamError):
    """Redirect chain exceeded the configured cap."""


class RenderError(SessionProxyError):
    """Browser navigation or content capture failed."""


class RenderTimeout(RenderError):
    """Navigation did not reach network-idle within the timeout."""
