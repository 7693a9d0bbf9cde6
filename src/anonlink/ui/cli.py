from __future__ import annotations

import argparse
import logging
import sys
from signal import SIGINT, signal
from typing import TYPE_CHECKING

import uvicorn
from dotenv import load_dotenv

from anonlink.app import (
    create_anonymous_identity,
    create_web_app,
    reclaim_expired_leases,
    show_session,
)
from anonlink.config import configure_logging
from anonlink.domain.errors import AnonlinkError

if TYPE_CHECKING:
    from collections.abc import Sequence
    from types import FrameType

    from anonlink.domain.auth_flow import AuthResult

log = logging.getLogger(__name__)

DEFAULT_HOST = "127.0.0.1"
DEFAULT_PORT = 3000


def _parse_args(argv: Sequence[str]) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="Anonymous-first identity service")
    subparsers = parser.add_subparsers(dest="command", required=True)

    serve = subparsers.add_parser("serve", help="Run the identity HTTP API")
    serve.add_argument("--host", type=str, default=DEFAULT_HOST, help="Interface to bind")
    serve.add_argument("--port", type=int, default=DEFAULT_PORT, help="Port to listen on")
    serve.add_argument(
        "--log-level",
        type=str,
        default="info",
        choices=["critical", "error", "warning", "info", "debug"],
        help="uvicorn log level",
    )

    subparsers.add_parser(
        "reclaim-leases",
        help="Fail link requests whose lease expired and free their identities",
    )

    anonymous = subparsers.add_parser("anonymous", help="Anonymous identity commands")
    anonymous_sub = anonymous.add_subparsers(dest="anonymous_command", required=True)
    anonymous_create = anonymous_sub.add_parser("create", help="Create an anonymous identity")
    anonymous_create.add_argument(
        "--display-name",
        type=str,
        help="Display name (defaults to a generated one)",
    )

    session = subparsers.add_parser("session", help="Session commands")
    session_sub = session.add_subparsers(dest="session_command", required=True)
    session_show = session_sub.add_parser("show", help="Resolve a session token")
    session_show.add_argument("--token", type=str, required=True, help="Bearer token")

    return parser.parse_args(list(argv))


def _print_result(result: AuthResult, *, show_token: bool) -> None:
    identity = result.identity
    print(f"identity   {identity.id}")  # noqa: T201
    print(f"kind       {identity.kind}")  # noqa: T201
    print(f"name       {identity.display_name}")  # noqa: T201
    if identity.linked_from is not None:
        print(f"linked     {identity.linked_from}")  # noqa: T201
    if show_token:
        print(f"token      {result.session.token}")  # noqa: T201
    print(f"expires    {result.session.expires_at.isoformat()}")  # noqa: T201


def _serve(host: str, port: int, log_level: str) -> None:
    app = create_web_app()
    config = uvicorn.Config(app, host=host, port=port, log_level=log_level)
    server = uvicorn.Server(config)
    log.info("Serving identity API on http://%s:%s", host, port)
    server.run()


def main(argv: Sequence[str] | None = None) -> None:
    """Main application entry point."""
    load_dotenv()
    configure_logging()
    args_list = list(argv) if argv is not None else list(sys.argv[1:])
    parsed_args = _parse_args(args_list)

    try:
        if parsed_args.command == "serve":
            _serve(parsed_args.host, parsed_args.port, parsed_args.log_level)
        elif parsed_args.command == "reclaim-leases":
            reclaimed = reclaim_expired_leases()
            print(f"reclaimed  {reclaimed}")  # noqa: T201
        elif parsed_args.command == "anonymous" and parsed_args.anonymous_command == "create":
            result = create_anonymous_identity(display_name=parsed_args.display_name)
            _print_result(result, show_token=True)
        elif parsed_args.command == "session" and parsed_args.session_command == "show":
            result = show_session(parsed_args.token)
            _print_result(result, show_token=False)
        else:
            raise ValueError(f"Unsupported command: {parsed_args.command}")  # noqa: TRY301
    except AnonlinkError as exc:
        log.error("%s: %s", exc.code, exc.user_message)  # noqa: TRY400
        sys.exit(1)
    except Exception:
        log.exception("Fatal error")
        sys.exit(1)


def sigint_handler(_signal_received: int, _frame: FrameType | None) -> None:
    """Handle SIGINT (Ctrl+C) gracefully."""
    log.info("Closed by user (Ctrl+C)")
    sys.exit(0)


if __name__ == "__main__":
    signal(SIGINT, sigint_handler)
    main()
