"""Tests for settings resolution: CLI value, then environment, then default."""
import importlib
import os

import pytest

from session_proxy.cli import build_parser, main
from session_proxy.config import (
    DEFAULT_PORT,
    ProxySettings,
    resolve_host,
    resolve_param,
    resolve_port,
    resolve_sessions_dir,
)

ENV_VARS = [
    "SESSION_PROXY_SESSIONS_DIR",
    "SESSION_PROXY_HOST",
    "SESSION_PROXY_PORT",
    "SESSION_PROXY_HEADLESS",
    "SESSION_PROXY_RENDER_TIMEOUT_MS",
    "SESSION_PROXY_FETCH_TIMEOUT_S",
    "SESSION_PROXY_CONTEXT_IDLE_S",
    "SESSION_PROXY_LOG_LEVEL",
    "SESSION_PROXY_LOG_FILE",
]


@pytest.fixture(autouse=True)
def clean_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("XDG_STATE_HOME", str(tmp_path / "state"))
    monkeypatch.chdir(tmp_path)


def test_cli_beats_env(monkeypatch):
    monkeypatch.setenv("SESSION_PROXY_HOST", "0.0.0.0")
    assert resolve_host("10.0.0.1") == "10.0.0.1"
    assert resolve_host() == "0.0.0.0"


def test_empty_env_is_unset(monkeypatch):
    monkeypatch.setenv("SESSION_PROXY_HOST", "")
    assert resolve_param(None, "SESSION_PROXY_HOST", "fallback") == "fallback"


def test_default_sessions_dir_under_xdg_state(tmp_path):
    assert resolve_sessions_dir() == (tmp_path / "state" / "session-proxy" / "sessions").resolve()


def test_sessions_dir_from_env(monkeypatch, tmp_path):
    monkeypatch.setenv("SESSION_PROXY_SESSIONS_DIR", str(tmp_path / "custom"))
    assert resolve_sessions_dir() == (tmp_path / "custom").resolve()


def test_relative_sessions_dir_made_absolute(tmp_path):
    assert resolve_sessions_dir("rel") == (tmp_path / "rel").resolve()


def test_port_default_and_sources(monkeypatch):
    assert resolve_port() == DEFAULT_PORT == 8020
    monkeypatch.setenv("SESSION_PROXY_PORT", "9000")
    assert resolve_port() == 9000
    assert resolve_port("9100") == 9100


@pytest.mark.parametrize("raw", ["abc", "-1", "65536", "80.5"])
def test_invalid_port_rejected(raw):
    with pytest.raises(ValueError, match=f"Invalid port: {raw}"):
        resolve_port(raw)


def test_settings_resolve_defaults():
    settings = ProxySettings.resolve()
    assert settings.host == "127.0.0.1"
    assert settings.port == 8020
    assert settings.headless is True
    assert settings.render_timeout_ms == 60_000
    assert settings.fetch_timeout_s == 60.0
    assert settings.context_idle_s is None
    assert settings.log_file is None


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("SESSION_PROXY_HEADLESS", "false")
    monkeypatch.setenv("SESSION_PROXY_RENDER_TIMEOUT_MS", "15000")
    monkeypatch.setenv("SESSION_PROXY_CONTEXT_IDLE_S", "600")
    monkeypatch.setenv("SESSION_PROXY_LOG_LEVEL", "debug")
    settings = ProxySettings.resolve()
    assert settings.headless is False
    assert settings.render_timeout_ms == 15000
    assert settings.context_idle_s == 600.0
    assert settings.log_level == "DEBUG"


def test_headed_flag_overrides_env(monkeypatch):
    monkeypatch.setenv("SESSION_PROXY_HEADLESS", "true")
    assert ProxySettings.resolve(headless=False).headless is False


def test_invalid_boolean_rejected(monkeypatch):
    monkeypatch.setenv("SESSION_PROXY_HEADLESS", "maybe")
    with pytest.raises(ValueError):
        ProxySettings.resolve()


def test_dotenv_file_in_working_directory(tmp_path):
    (tmp_path / ".env").write_text("SESSION_PROXY_PORT=8111\n")
    try:
        assert ProxySettings.resolve().port == 8111
    finally:
        os.environ.pop("SESSION_PROXY_PORT", None)


def test_dotenv_does_not_override_environment(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("SESSION_PROXY_PORT=8111\n")
    monkeypatch.setenv("SESSION_PROXY_PORT", "8222")
    assert ProxySettings.resolve().port == 8222


# ============================================================
# CLI
# ============================================================

def test_parser_subcommands():
    args = build_parser().parse_args(["init", "-s", "github", "-u", "https://github.com/login"])
    assert (args.command, args.session, args.url) == ("init", "github", "https://github.com/login")
    args = build_parser().parse_args(["serve", "--port", "9000", "--headed"])
    assert (args.command, args.port, args.headed) == ("serve", "9000", True)


def test_init_requires_url():
    with pytest.raises(SystemExit):
        build_parser().parse_args(["init", "-s", "github"])


def test_serve_with_bad_port_exits_2(capsys):
    assert main(["serve", "--port", "nope"]) == 2
    assert "Invalid port: nope" in capsys.readouterr().err


def test_bad_port_in_environment_exits_2(monkeypatch, capsys):
    monkeypatch.setenv("SESSION_PROXY_PORT", "abc")
    assert main(["serve"]) == 2
    assert "Invalid port: abc" in capsys.readouterr().err


def test_importing_app_module_resolves_no_settings(monkeypatch):
    import session_proxy.main

    monkeypatch.setenv("SESSION_PROXY_PORT", "abc")
    importlib.reload(session_proxy.main)
    assert not hasattr(session_proxy.main, "app")
