"""
Session Store: File-Backed Session Records

Each named session lives in one JSON file in Playwright storage-state format
(cookies + per-origin storage). The store resolves session names to paths,
loads and saves records, and captures full state from a live browser context.

Directory structure:
    sessions_dir/
        {name}.json

Writes go to a temp file in the same directory followed by an atomic rename,
so a concurrent reader never sees a truncated file. Read-merge-write
sequences for one session are serialized with the per-path lock returned by
SessionStore.lock().
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from pathlib import Path
from typing import Any, AsyncIterator, Dict, Union
import asyncio
import json
import logging
import os
import tempfile

from pydantic import ValidationError

from ..schemas import SessionRecord
from .errors import PersistenceError, SessionNotFound, SessionParseError

logger = logging.getLogger(__name__)

SESSION_FILE_SUFFIX = ".json"

PathLike = Union[str, Path]


def resolve_session_path(name_or_path: str, sessions_dir: PathLike) -> Path:
    """
    Resolve a session name or path to a session file path.

    - ".json" is appended when the name has no extension.
    - Absolute paths are otherwise returned as-is.
    - Relative paths and bare names are placed under sessions_dir.

    Args:
        name_or_path: Session name ("github") or path ("/tmp/github.json")
        sessions_dir: Directory holding named sessions

    Returns:
        Path to the session file
    """
    path = Path(name_or_path)
    if not path.suffix:
        path = path.with_name(path.name + SESSION_FILE_SUFFIX)
    if path.is_absolute():
        return path
    return Path(sessions_dir) / path


class KeyedLock:
    """
    asyncio locks keyed by string.

    A key's lock exists only while some task holds or waits for it, so the
    table does not grow with every session ever seen.

    Usage:
        locks = KeyedLock()
        async with locks.hold("/sessions/github.json"):
            ...
    """

    def __init__(self):
        self._locks: Dict[str, asyncio.Lock] = {}
        self._users: Dict[str, int] = {}

    def __len__(self) -> int:
        return len(self._locks)

    def __contains__(self, key: str) -> bool:
        return key in self._locks

    @asynccontextmanager
    async def hold(self, key: str) -> AsyncIterator[None]:
        lock = self._locks.get(key)
        if lock is None:
            lock = self._locks[key] = asyncio.Lock()
        self._users[key] = self._users.get(key, 0) + 1
        try:
            async with lock:
                yield
        finally:
            self._users[key] -= 1
            if not self._users[key]:
                del self._users[key]
                del self._locks[key]


class SessionStore:
    """
    Loads and saves session records under a sessions directory.

    Usage:
        store = SessionStore("~/.local/state/session-proxy/sessions")
        path = store.resolve_path("github")
        record = store.load(path)
        store.save(path, record)
    """

    def __init__(self, sessions_dir: PathLike):
        """
        Initialize the store.

        Args:
            sessions_dir: Directory for named sessions (created lazily on save)
        """
        self.sessions_dir = Path(sessions_dir).expanduser()
        self._locks = KeyedLock()
        logger.info(f"[STORE] Sessions directory: {self.sessions_dir}")

    def resolve_path(self, name_or_path: str) -> Path:
        return resolve_session_path(name_or_path, self.sessions_dir)

    def lock(self, path: PathLike):
        """Per-session lock guarding load/merge/persist sequences (async context manager)."""
        return self._locks.hold(str(path))

    def load(self, path: PathLike) -> SessionRecord:
        """
        Load a session record.

        Raises:
            SessionNotFound: the file does not exist
            SessionParseError: the file is not valid session JSON
        """
        path = Path(path)
        try:
            raw = path.read_text(encoding="utf-8")
        except FileNotFoundError:
            raise SessionNotFound(path) from None
        except UnicodeDecodeError as e:
            raise SessionParseError(path, str(e)) from e

        try:
            return SessionRecord.model_validate(json.loads(raw))
        except json.JSONDecodeError as e:
            raise SessionParseError(path, f"invalid JSON: {e}") from e
        except ValidationError as e:
            raise SessionParseError(path, f"{e.error_count()} validation error(s)") from e

    def load_or_empty(self, path: PathLike) -> SessionRecord:
        """Load a record, treating a missing file as an empty session."""
        try:
            return self.load(path)
        except SessionNotFound:
            logger.debug(f"[STORE] No session file at {path}, using empty session")
            return SessionRecord()

    def save(self, path: PathLike, record: SessionRecord) -> None:
        """
        Atomically write a session record, creating parent directories.

        Raises:
            PersistenceError: the file could not be written
        """
        path = Path(path)
        tmp_name = None
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with tempfile.NamedTemporaryFile(
                "w",
                encoding="utf-8",
                dir=path.parent,
                prefix=f".{path.name}.",
                suffix=".tmp",
                delete=False,
            ) as f:
                tmp_name = f.name
                json.dump(record.to_json_dict(), f, indent=2)
            os.replace(tmp_name, path)
        except OSError as e:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)
            raise PersistenceError(f"Failed to save session {path}: {e}") from e

        logger.debug(f"[STORE] Saved {len(record.cookies)} cookie(s) to {path}")

    async def persist_from_context(self, context: Any, path: PathLike) -> None:
        """
        Capture the full state of a live browser context and save it.

        This supersedes any cookie-only merge for the session: it includes
        cookies set by scripts and the per-origin storage.

        Raises:
            PersistenceError: capture or write failed
        """
        try:
            state = await context.storage_state()
            record = SessionRecord.model_validate(state)
        except Exception as e:
            raise PersistenceError(f"Failed to capture context state for {path}: {e}") from e

        await asyncio.to_thread(self.save, path, record)
        logger.info(f"[STORE] Persisted context state to {path} ({len(record.cookies)} cookies)")
