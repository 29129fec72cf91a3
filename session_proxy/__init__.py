"""session-proxy: reuse captured browser sessions to fetch protected URLs.

A one-time interactive login writes a session file; the proxy server then
answers GET /v1?session=...&url=... by streaming the target directly with the
session's cookies, or by rendering HTML in a browser context restored from
the session.
"""
