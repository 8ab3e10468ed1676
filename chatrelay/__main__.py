from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from textwrap import dedent

from chatrelay import __version__

__all__ = ["cli"]

EXIT_OK = 0
EXIT_CONFIG = 1
EXIT_BIND = 2

# ---------------------------------------------------------------------------+
#  CLI parser                                                                +
# ---------------------------------------------------------------------------+


def _build_parser() -> argparse.ArgumentParser:  # noqa: D401 – imperative style
    parser = argparse.ArgumentParser(
        prog="chatrelay",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        description=dedent(
            """\
            AI chat relay
            -------------
            Serves POST <prefix>/, POST <prefix>/stream and GET <prefix>/health.
            Everything not given on the command line comes from environment
            variables (CHATBOT_*, RATE_LIMIT_*, FILTER_*, <PROVIDER>_*) or .env.
            """
        ),
    )
    parser.add_argument("--host", help="bind address (default: CHATBOT_HOST)")
    parser.add_argument("--port", type=int, help="bind port (default: CHATBOT_PORT)")
    parser.add_argument("--prefix", help="route prefix (default: CHATBOT_ROUTE_PREFIX)")
    parser.add_argument(
        "-V", "--version", action="version", version=f"%(prog)s {__version__}"
    )
    return parser


# ---------------------------------------------------------------------------+
#  Public entry-point                                                        +
# ---------------------------------------------------------------------------+


def cli(argv: list[str] | None = None) -> int:  # noqa: D401
    """Entry-point for ``python -m chatrelay`` and the ``chatrelay`` script."""
    args = _build_parser().parse_args(argv)

    # Heavy imports after argument parsing keep --help fast.
    from pydantic import ValidationError

    from chatrelay.core.exceptions import ConfigError
    from chatrelay.core.launcher import launch
    from chatrelay.core.logger_setup import bind_deployment_context, setup_logging

    setup_logging()
    bind_deployment_context()
    log = logging.getLogger("chatrelay")

    try:
        asyncio.run(launch(host=args.host, port=args.port, prefix=args.prefix))
    except (ConfigError, ValidationError) as exc:
        log.critical("invalid configuration: %s", getattr(exc, "message", exc))
        return EXIT_CONFIG
    except OSError as exc:
        log.critical("could not bind HTTP server: %s", exc)
        return EXIT_BIND
    except KeyboardInterrupt:
        pass
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(cli())
