"""CLI for the ACI test server.

Commands:
    start <none|basic|oauth>   Run a server until a POST arrives
    stop <url>                 POST to a running server to stop it
"""

import argparse
import json
import logging
import sys
from pathlib import Path

import requests
import urllib3

from testserver.aci import AciBuilder
from testserver.auth import AuthMode
from testserver.config import ConfigError, load_config
from testserver.httpd import Server
from testserver.lifecycle import ControlChannel, ControlLoop

# Suppress SSL warnings for self-signed certs
urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

logger = logging.getLogger(__name__)

COMMANDS = "start, stop"
AUTH_TYPES = ", ".join(m.value for m in AuthMode)


class UsageError(Exception):
    """Invalid command-line arguments."""


def _configure_logging(verbose: bool):
    level = logging.DEBUG if verbose else logging.WARNING
    logging.basicConfig(
        level=level,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
    )


def auth_info(host: str, mode: AuthMode) -> dict:
    """Build the client auth config document for a running server.

    Args:
        host: Listening address as host:port
        mode: Server auth mode

    Returns:
        Dict with rktKind, rktVersion, domains, type and (unless mode is
        none) credentials
    """
    info = {
        "rktKind": "auth",
        "rktVersion": "v1",
        "domains": [host],
        "type": mode.value,
    }
    credentials = mode.credentials()
    if credentials is not None:
        info["credentials"] = credentials
    return info


class _ArgumentParser(argparse.ArgumentParser):
    """ArgumentParser reporting bad arguments as UsageError, not exit 2."""

    def error(self, message):
        raise UsageError(message)


def _parser(prog: str, description: str) -> argparse.ArgumentParser:
    parser = _ArgumentParser(prog=prog, description=description)
    parser.add_argument(
        "--verbose", "-v",
        action="store_true",
        help="Enable verbose logging",
    )
    return parser


def _handle_start(argv) -> int:
    """Handle 'start' - run the server in the foreground until stopped."""
    parser = _parser("aci-testserver start", "Start the ACI test server")
    parser.add_argument("type", nargs="?", help=f"Auth type: {AUTH_TYPES}")
    parser.add_argument(
        "--config", "-c",
        type=Path,
        help="YAML config file (default: $ACI_TESTSERVER_CONFIG)",
    )
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.type:
        raise UsageError(f"expected a type - {AUTH_TYPES}")
    try:
        mode = AuthMode.parse(args.type)
    except ValueError as e:
        raise UsageError(str(e)) from e

    try:
        config = load_config(args.config)
    except ConfigError as e:
        raise UsageError(str(e)) from e

    channel = ControlChannel()
    builder = AciBuilder(
        go_binary=config.go_binary,
        actool_binary=config.actool_binary,
        timeout=config.build_timeout,
    )
    server = Server(
        mode=mode,
        channel=channel,
        bind=config.bind,
        port=config.port,
        builder=builder,
        cert_dir=config.cert_dir,
        key_size=config.key_size,
        request_timeout=config.request_timeout,
    )

    try:
        server.start()
    except RuntimeError as e:
        print(f"Error: {e}")
        return 1

    logger.info("Serving %s auth at %s", mode.value, server.url)
    print(json.dumps(auth_info(server.host, mode), indent=4))
    print()
    print(f"Ready, waiting for connections at {server.url}", flush=True)

    ControlLoop(channel, server).run()
    return 0


def _handle_stop(argv) -> int:
    """Handle 'stop' - POST to a running server."""
    parser = _parser("aci-testserver stop", "Stop a running ACI test server")
    parser.add_argument("url", nargs="?", help="Server URL printed at startup")
    args = parser.parse_args(argv)
    _configure_logging(args.verbose)

    if not args.url:
        raise UsageError("expected a host")

    try:
        resp = requests.post(
            args.url,
            headers={"Content-Type": "whatever"},
            verify=False,  # Self-signed cert
            timeout=30,
        )
    except requests.exceptions.RequestException as e:
        print(f"Error: failed to send post to {args.url!r}: {e}")
        return 1

    print(f"Response status: {resp.status_code} {resp.reason}")
    if resp.status_code // 100 != 2:
        print("Error: got a nonsuccess status")
        return 1
    return 0


def main(argv=None) -> int:
    """CLI entry point.

    Args:
        argv: Command line arguments (default: sys.argv[1:])

    Returns:
        Exit code: 0 on graceful stop, 1 on any error
    """
    if argv is None:
        argv = sys.argv[1:]

    subcommands = {
        "start": _handle_start,
        "stop": _handle_stop,
    }

    if not argv:
        print(f"Error: expected a command - {COMMANDS}")
        return 1

    subcmd = argv[0]
    if subcmd not in subcommands:
        print(f"Error: wrong command {subcmd!r}, should be {COMMANDS}")
        return 1

    try:
        return subcommands[subcmd](argv[1:])
    except UsageError as e:
        print(f"Error: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
