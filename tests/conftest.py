"""Shared fixtures and Playwright stand-ins. No real browser or network needed."""
import json
from pathlib import Path

import pytest

from session_proxy.proxy import SessionStore


class FakeContext:
    """Minimal BrowserContext: storage_state() and close()."""

    def __init__(self, storage_state, events=None, name="ctx", fail_persist=False, fail_close=False):
        self.storage = storage_state
        self.events = events if events is not None else []
        self.name = name
        self.fail_persist = fail_persist
        self.fail_close = fail_close
        self.closed = False
        self.gate = None

    async def storage_state(self):
        self.events.append(("persist", self.name))
        if self.gate is not None:
            await self.gate.wait()
        if self.fail_persist:
            raise RuntimeError(f"capture failed for {self.name}")
        return self.storage

    async def close(self):
        self.events.append(("close", self.name))
        if self.fail_close:
            raise RuntimeError(f"close failed for {self.name}")
        self.closed = True


class ContextFactory:
    """Records every context it creates, like create_context(browser, state)."""

    def __init__(self, events=None):
        self.created = []
        self.states = []
        self.events = events if events is not None else []

    async def __call__(self, storage_state):
        self.states.append(storage_state)
        ctx = FakeContext(
            {"cookies": storage_state["cookies"], "origins": storage_state.get("origins", [])},
            events=self.events,
            name=f"ctx{len(self.created)}",
        )
        self.created.append(ctx)
        return ctx


class FakeBrowser:
    def __init__(self, events):
        self.events = events

    async def close(self):
        self.events.append(("browser_close", None))


def write_session(store, name, cookies, origins=None) -> Path:
    path = store.resolve_path(name)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps({"cookies": cookies, "origins": origins or []}))
    return path


def cookie(name, value, domain="example.com", path="/", **extra):
    data = {"name": name, "value": value, "domain": domain, "path": path,
            "secure": False, "httpOnly": False}
    data.update(extra)
    return data


@pytest.fixture
def store(tmp_path):
    return SessionStore(tmp_path / "sessions")


@pytest.fixture
def events():
    return []


@pytest.fixture
def context_factory(events):
    return ContextFactory(events)
