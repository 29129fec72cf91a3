"""
Configuration for session-proxy.

Every setting resolves in the same order:
    1. Explicit CLI value (if provided)
    2. Environment variable (a .env file in the working directory is loaded first)
    3. Built-in default
"""

from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any, Optional
import os

from dotenv import find_dotenv, load_dotenv

ENV_PREFIX = "SESSION_PROXY_"

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 8020
DEFAULT_RENDER_TIMEOUT_MS = 60_000
DEFAULT_FETCH_TIMEOUT_S = 60.0

_TRUE = {"1", "true", "yes", "on"}
_FALSE = {"0", "false", "no", "off"}


def resolve_param(cli: Optional[Any], env: Optional[str], fallback: Any) -> Any:
    """
    Resolve a parameter: CLI value, then environment variable, then fallback.

    Empty environment variables are treated as unset.
    """
    if cli is not None:
        return cli
    if env and os.environ.get(env):
        return os.environ[env]
    return fallback


def xdg_state_home() -> Path:
    """XDG_STATE_HOME, defaulting to ~/.local/state."""
    return Path(os.environ.get("XDG_STATE_HOME") or Path.home() / ".local" / "state")


def resolve_sessions_dir(cli: Optional[str] = None) -> Path:
    raw = resolve_param(cli, f"{ENV_PREFIX}SESSIONS_DIR", xdg_state_home() / "session-proxy" / "sessions")
    return Path(raw).expanduser().resolve()


def resolve_host(cli: Optional[str] = None) -> str:
    return str(resolve_param(cli, f"{ENV_PREFIX}HOST", DEFAULT_HOST))


def resolve_port(cli: Optional[Any] = None) -> int:
    raw = resolve_param(None if cli is None else str(cli), f"{ENV_PREFIX}PORT", str(DEFAULT_PORT))
    try:
        port = int(raw)
    except ValueError:
        raise ValueError(f"Invalid port: {raw}") from None
    if port < 0 or port > 65535:
        raise ValueError(f"Invalid port: {raw}")
    return port


def _as_bool(raw: Any, name: str) -> bool:
    if isinstance(raw, bool):
        return raw
    value = str(raw).strip().lower()
    if value in _TRUE:
        return True
    if value in _FALSE:
        return False
    raise ValueError(f"Invalid boolean for {name}: {raw}")


def _as_float(raw: Any, name: str) -> Optional[float]:
    if raw is None or raw == "":
        return None
    try:
        return float(raw)
    except ValueError:
        raise ValueError(f"Invalid number for {name}: {raw}") from None


@dataclass(frozen=True)
class ProxySettings:
    """
    Resolved settings for the proxy server.

    Attributes:
        sessions_dir: Directory holding named session files
        host: Listen address
        port: Listen port
        headless: Run the shared browser headless
        render_timeout_ms: Navigation timeout for the render path
        fetch_timeout_s: httpx timeout for direct fetches (None = no timeout)
        context_idle_s: Evict browser contexts idle this long (None = never)
        log_level: Console log level
        log_file: JSON log file (None = console only)
    """
    sessions_dir: Path
    host: str = DEFAULT_HOST
    port: int = DEFAULT_PORT
    headless: bool = True
    render_timeout_ms: int = DEFAULT_RENDER_TIMEOUT_MS
    fetch_timeout_s: Optional[float] = DEFAULT_FETCH_TIMEOUT_S
    context_idle_s: Optional[float] = None
    log_level: str = "INFO"
    log_file: Optional[str] = None

    @classmethod
    def resolve(
        cls,
        *,
        sessions_dir: Optional[str] = None,
        host: Optional[str] = None,
        port: Optional[Any] = None,
        headless: Optional[bool] = None,
        load_env_file: bool = True
    ) -> "ProxySettings":
        """
        Build settings from CLI values, environment and defaults.

        Args:
            sessions_dir: --sessions-dir value
            host: --host value
            port: --port value
            headless: False for --headed
            load_env_file: Load .env from the working directory first
        """
        env_file = find_dotenv(usecwd=True) if load_env_file else ""
        if env_file:
            load_dotenv(env_file, override=False)

        render_timeout = _as_float(
            resolve_param(None, f"{ENV_PREFIX}RENDER_TIMEOUT_MS", DEFAULT_RENDER_TIMEOUT_MS),
            "render timeout",
        )
        return cls(
            sessions_dir=resolve_sessions_dir(sessions_dir),
            host=resolve_host(host),
            port=resolve_port(port),
            headless=_as_bool(resolve_param(headless, f"{ENV_PREFIX}HEADLESS", True), "headless"),
            render_timeout_ms=int(render_timeout or DEFAULT_RENDER_TIMEOUT_MS),
            fetch_timeout_s=_as_float(
                resolve_param(None, f"{ENV_PREFIX}FETCH_TIMEOUT_S", DEFAULT_FETCH_TIMEOUT_S),
                "fetch timeout",
            ),
            context_idle_s=_as_float(resolve_param(None, f"{ENV_PREFIX}CONTEXT_IDLE_S", None), "context idle"),
            log_level=str(resolve_param(None, f"{ENV_PREFIX}LOG_LEVEL", "INFO")).upper(),
            log_file=resolve_param(None, f"{ENV_PREFIX}LOG_FILE", None),
        )
