"""Entry point — ``pulsemon`` console script.

Usage:
  pulsemon [--syslog] probes.yml
  pulsemon --version
"""

from __future__ import annotations

import argparse
import json
import logging
import socket
import sys
from pathlib import Path

import uvicorn
from rich.console import Console
from rich.panel import Panel

from pulsemon.api.server import create_app
from pulsemon.config import settings
from pulsemon.logs import LogFormatError, configure_logging, parse_level
from pulsemon.probes.registry import ProbeFileParseError, ProbeFileReadError, ProbeRegistry
from pulsemon.version import APP_NAME, __version__, version_payload

logger = logging.getLogger("pulsemon.main")

console = Console(stderr=True)

# Exit codes
EXIT_OK = 0
EXIT_USAGE = 1
EXIT_LOG_CONFIG = 2
EXIT_CONFIG_IO = 3
EXIT_LISTEN = 4
EXIT_CONFIG_PARSE = 5


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=APP_NAME,
        description="Quick and simple monitoring: web and shell probes with a JSON status API",
    )
    parser.add_argument("config", nargs="?", help="probe file (YAML)")
    parser.add_argument("--syslog", action="store_true", help="log to the local syslog daemon")
    parser.add_argument("--version", action="store_true", help="print version JSON and exit")
    return parser


def bind_socket(host: str, port: int) -> socket.socket:
    """Bind the listen socket up front so a bind failure maps to its own exit code."""
    infos = socket.getaddrinfo(host, port, type=socket.SOCK_STREAM, flags=socket.AI_PASSIVE)
    family, socktype, proto, _, addr = infos[0]
    sock = socket.socket(family, socktype, proto)
    sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
    try:
        sock.bind(addr)
    except OSError:
        sock.close()
        raise
    sock.set_inheritable(True)
    return sock


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if args.version:
        print(json.dumps(version_payload()))
        return EXIT_OK

    if not args.config:
        parser.print_usage(sys.stderr)
        return EXIT_USAGE

    try:
        configure_logging(settings.log_level, settings.log_format, args.syslog)
    except LogFormatError as e:
        print(e, file=sys.stderr)
        return EXIT_LOG_CONFIG

    try:
        registry = ProbeRegistry.from_file(Path(args.config))
    except ProbeFileReadError as e:
        logger.critical("%s", e)
        return EXIT_CONFIG_IO
    except ProbeFileParseError as e:
        logger.critical("%s", e)
        return EXIT_CONFIG_PARSE

    listen = f"{settings.host}:{settings.port}"
    try:
        sock = bind_socket(settings.host, settings.port)
    except OSError as e:
        logger.critical("Cannot listen on %s: %s", listen, e)
        logger.info("Use HOST and PORT env variables to customize server settings")
        return EXIT_LISTEN

    console.print(
        Panel.fit(
            f"[bold]{APP_NAME} {__version__}[/bold]\n"
            f"Listen: {listen}\n"
            f"Probes: {len(registry)} from {args.config}\n"
            f"Syslog: {'on' if args.syslog else 'off'}",
            title=APP_NAME,
            border_style="green",
        )
    )
    logger.info("Starting HTTP service at %s", listen)

    server = uvicorn.Server(
        uvicorn.Config(
            create_app(registry),
            log_level=logging.getLevelName(parse_level(settings.log_level)).lower(),
            access_log=False,
            server_header=False,
        )
    )
    # uvicorn handles SIGINT/SIGTERM and returns after shutdown
    server.run(sockets=[sock])
    return EXIT_OK


if __name__ == "__main__":
    sys.exit(main())
