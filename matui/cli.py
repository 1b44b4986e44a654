from __future__ import annotations

import argparse
import logging
import os
import sys

from matui.config import APP_DIR, CONFIG_FILE, LOG_FILE, ensure_config, load_settings
from matui.errors import ConfigError

logger = logging.getLogger("matui.cli")


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="matui", description="Terminal client for Matrix chat")
    p.add_argument("--homeserver", required=True, help="Homeserver URL, e.g. https://matrix.org")
    p.add_argument("--user", required=True, help="Full user id, e.g. @alice:matrix.org")
    p.add_argument(
        "--password",
        default=os.environ.get("MATUI_PASSWORD", ""),
        help="Account password (default: $MATUI_PASSWORD)",
    )
    p.add_argument("--debug", action="store_true", help=f"Verbose logging to {LOG_FILE}")
    return p


def setup_logging(debug: bool) -> None:
    # the TUI owns the terminal
    APP_DIR.mkdir(parents=True, exist_ok=True)
    logging.basicConfig(
        filename=LOG_FILE,
        level=logging.DEBUG if debug else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    if not debug:
        logging.getLogger("nio").setLevel(logging.WARNING)


def main() -> None:
    parser = build_parser()
    args = parser.parse_args()
    setup_logging(args.debug)

    ensure_config(CONFIG_FILE)
    try:
        settings = load_settings(CONFIG_FILE)
    except ConfigError as e:
        print(f"matui: {e}", file=sys.stderr)
        sys.exit(2)
    if not args.password:
        parser.error("a password is required (--password or MATUI_PASSWORD)")

    from matui.matrix import MatrixClient
    from matui.tui import MatuiApp

    logger.info("starting for %s", args.user)
    client = MatrixClient(args.homeserver, args.user, args.password)
    MatuiApp(client, settings).run()
