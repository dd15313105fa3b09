"""Command-line interface for daemonctl."""

from __future__ import annotations

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import BinaryIO, List, Optional

from . import constants
from .address import resolve_endpoint
from .client import ControlClient
from .config import load_config
from .errors import ControlError
from .exchange import Command
from .logging import configure_logging
from .tls import ensure_entropy

LOGGER = logging.getLogger(__name__)

COMMANDS_HELP = """\
commands:
  start         start the server; runs the daemon executable
  stop          stop the server
  reload        reload the server
  status        show server status
"""


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog=constants.APP_NAME,
        description="Remote control utility for the daemon server.",
        epilog=COMMANDS_HELP,
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument(
        "-c",
        "--config",
        type=Path,
        default=constants.DEFAULT_CONFIG_PATH,
        help=f"config file (default: {constants.DEFAULT_CONFIG_PATH})",
    )
    parser.add_argument(
        "-s",
        "--server",
        metavar="IP[@PORT]",
        help="server address; if omitted the config is used",
    )
    parser.add_argument(
        "--daemon",
        default=constants.DEFAULT_DAEMON_EXECUTABLE,
        help=(
            "daemon executable launched by 'start' "
            f"(default: {constants.DEFAULT_DAEMON_EXECUTABLE})"
        ),
    )
    parser.add_argument(
        "command",
        nargs=argparse.REMAINDER,
        help="command and its arguments",
    )
    return parser


def start_daemon(executable: str, config_path: Path) -> int:
    """Replace this process with the daemon, passing it the config file.

    Returns only when the exec fails.
    """

    LOGGER.info("Starting %s with config %s", executable, config_path)
    try:
        os.execvp(executable, [executable, "-c", str(config_path)])
    except OSError as exc:
        LOGGER.error("could not exec %s: %s", executable, exc.strerror or exc)
    return 1


def run_command(
    config_path: Path,
    server: Optional[str],
    command: Command,
    output: BinaryIO,
) -> int:
    config = load_config(config_path)
    configure_logging(config.logging.level, log_path=config.logging.path)

    if not config.remote_control.enabled:
        LOGGER.warning("control-enable is 'no' in the config file.")

    endpoint = resolve_endpoint(
        server,
        default_port=config.remote_control.port,
        control_interfaces=config.remote_control.interfaces,
    )

    ensure_entropy()
    client = ControlClient(config.identity_material())
    client.run(endpoint, command, output)
    return 0


def main(argv: Optional[List[str]] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_usage(sys.stderr)
        return 1

    configure_logging()

    if args.command == ["start"]:
        return start_daemon(args.daemon, args.config)

    try:
        command = Command.from_args(args.command)
    except ValueError as exc:
        LOGGER.error("%s", exc)
        return 1

    try:
        return run_command(args.config, args.server, command, sys.stdout.buffer)
    except ControlError as exc:
        LOGGER.error("%s", exc)
        return 1


if __name__ == "__main__":
    sys.exit(main())
