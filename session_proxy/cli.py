"""
Command line entry point.

    session-proxy init  --session github --url https://github.com/login
    session-proxy serve --port 8020
"""

import argparse
import asyncio
import sys
from typing import List, Optional

from .config import ProxySettings, resolve_sessions_dir
from .main import __version__, create_app, setup_logging
from .login import interactive_login
from .proxy.session_store import SessionStore


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="session-proxy",
        description="A local HTTP proxy that reuses browser session state for authenticated requests.",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    sub = parser.add_subparsers(dest="command", required=True)

    init = sub.add_parser("init", help="Initialize a session by performing an interactive browser login.")
    init.add_argument("-s", "--session", required=True, help="Name or path of the session file to create or overwrite.")
    init.add_argument("-u", "--url", required=True, help="Login URL to open in the browser.")
    init.add_argument("--sessions-dir", help="Path to the sessions directory.")

    serve = sub.add_parser("serve", help="Start the proxy server for authenticated requests using stored sessions.")
    serve.add_argument("-p", "--port", help="Port to bind the HTTP server to. Default: 8020.")
    serve.add_argument("--host", help="Address to bind the HTTP server to. Default: 127.0.0.1.")
    serve.add_argument("--sessions-dir", help="Path to the sessions directory.")
    serve.add_argument("--headed", action="store_true", help="Show the rendering browser window.")

    return parser


def run_init(args: argparse.Namespace) -> int:
    setup_logging()
    store = SessionStore(resolve_sessions_dir(args.sessions_dir))
    session_path = store.resolve_path(args.session)
    print(f"Session will be saved to: {session_path}")
    saved = asyncio.run(interactive_login(store, session_path, args.url))
    return 0 if saved else 1


def run_serve(args: argparse.Namespace) -> int:
    import uvicorn

    settings = ProxySettings.resolve(
        sessions_dir=args.sessions_dir,
        host=args.host,
        port=args.port,
        headless=False if args.headed else None,
    )
    print(f"Sessions directory: {settings.sessions_dir}")
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level.lower())
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    args = build_parser().parse_args(argv)
    try:
        if args.command == "init":
            return run_init(args)
        return run_serve(args)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        return 2


if __name__ == "__main__":
    sys.exit(main())
