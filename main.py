#!/usr/bin/env python3
"""CLI: python main.py mcp | python main.py serve [port] | python main.py migrate."""
import argparse
import logging
import sys
from pathlib import Path

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    datefmt="%H:%M:%S",
    stream=sys.stderr,
)

ROOT = Path(__file__).resolve().parent


def cmd_migrate(args: argparse.Namespace) -> int:
    from alembic import command
    from alembic.config import Config

    cfg = Config(str(ROOT / "alembic.ini"))
    cfg.set_main_option("script_location", str(ROOT / "migrations"))
    command.upgrade(cfg, args.revision)
    print(f"Database upgraded to {args.revision}.")
    return 0


def main() -> int:
    parser = argparse.ArgumentParser(description="WhatsApp MCP bridge")
    parser.add_argument("command", nargs="?", default="mcp", help="mcp | serve | migrate")
    parser.add_argument("port", nargs="?", default=None, help="HTTP port for serve")
    parser.add_argument("--revision", default="head", help="Alembic target revision (default head)")
    args = parser.parse_args()

    if args.command == "migrate":
        return cmd_migrate(args)
    from whatsapp_mcp.__main__ import main as mcp_main

    if args.command == "serve":
        sys.argv = [sys.argv[0], "serve"] + ([args.port] if args.port else [])
        return mcp_main()
    # default: stdio MCP
    sys.argv = [sys.argv[0]]
    return mcp_main()


if __name__ == "__main__":
    sys.exit(main())
