"""QuoteAuth entry point.

Examples:
  quoteauth serve                    Start the authorization server
  quoteauth serve --port 9000        Listen on a different port
  quoteauth purge                    Drop expired codes and tokens from storage
  quoteauth session-token alice      Mint a session token for local testing
"""

import argparse
import logging
from importlib.metadata import PackageNotFoundError
from importlib.metadata import version as get_version

from quoteauth.config import get_settings
from quoteauth.logging_setup import setup_logging

logger = logging.getLogger(__name__)


def _version() -> str:
    try:
        return get_version("quoteauth")
    except PackageNotFoundError:
        from quoteauth import __version__

        return __version__


def _purge() -> None:
    from quoteauth.oauth2.server import get_oauth_server

    codes, tokens = get_oauth_server().purge_expired()
    logger.info("Purged %d codes and %d tokens", codes, tokens)


def _session_token(user_id: str) -> None:
    from quoteauth.security.session_tokens import create_session_token

    settings = get_settings()
    print(
        create_session_token(
            user_id,
            settings.session_secret.get_secret_value(),
            ttl_hours=settings.session_token_ttl_hours,
        )
    )


def main() -> None:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        prog="quoteauth",
        description="QuoteAuth authorization server",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )
    parser.add_argument("--version", "-v", action="version", version=f"%(prog)s {_version()}")
    parser.add_argument("--log-level", default=None, help="Override QUOTEAUTH_LOG_LEVEL")
    sub = parser.add_subparsers(dest="command")

    serve = sub.add_parser("serve", help="Run the API server")
    serve.add_argument("--host", default=None)
    serve.add_argument("--port", type=int, default=None)
    serve.add_argument("--dev", action="store_true", help="Auto-reload on code changes")

    sub.add_parser("purge", help="Remove expired codes and tokens")

    token = sub.add_parser("session-token", help="Print a session token for USER_ID (needs QUOTEAUTH_SESSION_SECRET)")
    token.add_argument("user_id")

    args = parser.parse_args()
    setup_logging(level=args.log_level or get_settings().log_level)

    if args.command == "purge":
        _purge()
    elif args.command == "session-token":
        _session_token(args.user_id)
    else:
        from quoteauth.api.serve import run_api_server

        run_api_server(
            host=getattr(args, "host", None),
            port=getattr(args, "port", None),
            dev=getattr(args, "dev", False),
        )


if __name__ == "__main__":
    main()
