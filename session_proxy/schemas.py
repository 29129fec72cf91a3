"""
Pydantic schemas for persisted session state.
Defines the cookie and session record structures stored in session files
(Playwright storage-state format) and the proxy's JSON error body.
"""

from pydantic import BaseModel, ConfigDict, Field
from typing import Any, Dict, List, Optional, Tuple


class Cookie(BaseModel):
    """Single cookie as stored in a session file."""
    model_config = ConfigDict(populate_by_name=True, extra="allow")

    name: str
    value: str = ""
    domain: str
    path: str = "/"
    secure: bool = False
    http_only: bool = Field(default=False, alias="httpOnly")
    expires: Optional[float] = None  # epoch seconds; None or <= 0 = session cookie
    same_site: Optional[str] = Field(default=None, alias="sameSite")

    @property
    def key(self) -> Tuple[str, str, str]:
        """Identity used when merging: (name, domain, path)."""
        return (self.name, self.domain, self.path)

    @property
    def is_session_cookie(self) -> bool:
        return self.expires is None or self.expires <= 0


class SessionRecord(BaseModel):
    """
    Persisted authentication state for one session.

    ``origins`` holds the browser's per-origin storage snapshot and is passed
    through untouched. Unknown top-level keys are kept as extras.
    """
    model_config = ConfigDict(extra="allow")

    cookies: List[Cookie] = Field(default_factory=list)
    origins: List[Dict[str, Any]] = Field(default_factory=list)

    def to_json_dict(self) -> Dict[str, Any]:
        """Serialize with the camelCase keys used on disk."""
        return self.model_dump(by_alias=True, exclude_none=True)

    def to_storage_state(self) -> Dict[str, Any]:
        """
        Shape the record for ``browser.new_context(storage_state=...)``.

        The engine requires ``expires`` and ``sameSite`` on every cookie;
        cookies merged from Set-Cookie headers may lack either.
        """
        state = self.to_json_dict()
        for cookie in state["cookies"]:
            cookie.setdefault("expires", -1)
            cookie.setdefault("sameSite", "Lax")
        return state


class ErrorResponse(BaseModel):
    """JSON body returned for every non-2xx proxy answer."""
    error: str
