# SPDX-FileCopyrightText: Copyright (c) 2025 NVIDIA CORPORATION & AFFILIATES. All rights reserved.
# SPDX-License-Identifier: Apache-2.0

"""
runghost command line.

  runghost init                 create .runghost/config.yaml with a sample identity
  runghost config               print the effective configuration (tokens masked)
  runghost migrate [--delete]   import the legacy cache.json snapshot into the store
  runghost [start]              serve the dashboard API (default)
"""

from __future__ import annotations

import argparse
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

import yaml

from .config import CONFIG_DIR_NAME, VALID_THEMES, RunGhostConfig, config_to_display_dict, init_config, load_config
from .exceptions import RunGhostError
from .migration import run_migration
from .services import Services, get_services, reset_services

logger = logging.getLogger(__name__)

COMMANDS = ("init", "config", "migrate", "start")


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="runghost",
        description="Multi-identity GitHub dashboard backend.",
        epilog="Examples:\n"
               "  %(prog)s init\n"
               "  %(prog)s --port 4100 start\n"
               "  %(prog)s migrate --delete",
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--port", type=int, default=None, help="HTTP port (default: from config, 4000)")
    parser.add_argument("--host", default=None, help="HTTP host (default: from config, localhost)")
    parser.add_argument("--data-dir", default=None, help="Data directory (default: from config, ~/.runghost)")
    parser.add_argument("--theme", choices=VALID_THEMES, default=None, help="UI theme")
    parser.add_argument("--verbose", action="store_true", default=None, help="Log at INFO level")
    parser.add_argument("--debug", action="store_true", default=None, help="Log at DEBUG level")

    sub = parser.add_subparsers(dest="command")
    sub.add_parser("init", help="Create .runghost/config.yaml in the current directory")
    sub.add_parser("config", help="Print the effective configuration")
    p_mig = sub.add_parser("migrate", help="Import the legacy cache.json snapshot")
    g = p_mig.add_mutually_exclusive_group()
    g.add_argument("--backup", dest="backup", action="store_true", default=True, help="Keep cache.json as cache.json.backup (default)")
    g.add_argument("--delete", dest="delete", action="store_true", default=False, help="Delete cache.json after migrating")
    sub.add_parser("start", help="Serve the dashboard API (default)")

    args = parser.parse_args(list(argv) if argv is not None else None)
    if not args.command:
        args.command = "start"
    return args


def _cli_overrides(args: argparse.Namespace) -> Dict[str, Any]:
    return {
        "port": args.port,
        "host": args.host,
        "dataDirectory": args.data_dir,
        "theme": args.theme,
        "verbose": args.verbose,
        "debug": args.debug,
    }


def _configure_logging(cfg: Optional[RunGhostConfig], args: argparse.Namespace) -> None:
    debug = bool(args.debug or (cfg is not None and cfg.debug))
    verbose = bool(args.verbose or (cfg is not None and cfg.verbose))
    level = logging.DEBUG if debug else (logging.INFO if verbose else logging.WARNING)
    logging.basicConfig(level=level, format="%(asctime)s %(levelname)s %(name)s: %(message)s", force=True)


def cmd_init() -> int:
    path = init_config(Path.cwd() / CONFIG_DIR_NAME)
    print(f"Configuration: {path}")
    print("Edit it to add your GitHub identities and tokens, then run: runghost start")
    return 0


def cmd_config(cfg: RunGhostConfig) -> int:
    sys.stdout.write(yaml.safe_dump(config_to_display_dict(cfg), sort_keys=False, default_flow_style=False))
    return 0


def cmd_migrate(cfg: RunGhostConfig, args: argparse.Namespace) -> int:
    services = Services(cfg, start_audit_timer=False)
    try:
        result = run_migration(
            cfg.data_directory,
            services.store,
            backup=bool(args.backup) and not bool(args.delete),
            delete=bool(args.delete),
        )
    finally:
        services.close()
    print(result.message)
    for err in result.errors:
        print(f"  - {err}", file=sys.stderr)
    return 0 if result.success else 1


def cmd_start(cfg: RunGhostConfig) -> int:
    import uvicorn

    from .server import create_app

    services = get_services(cfg)
    app = create_app(services)
    logger.info("Serving on http://%s:%d (data: %s)", cfg.host, cfg.port, cfg.data_directory)
    try:
        uvicorn.run(app, host=cfg.host, port=cfg.port, log_level=logging.getLevelName(logging.getLogger().level).lower())
    finally:
        reset_services()
    return 0


def main(argv: Optional[Sequence[str]] = None) -> int:
    args = parse_args(argv)

    if args.command == "init":
        _configure_logging(None, args)
        return cmd_init()

    try:
        cfg = load_config(_cli_overrides(args))
    except RunGhostError as e:
        _configure_logging(None, args)
        print(f"Error: {e}", file=sys.stderr)
        return 1
    _configure_logging(cfg, args)

    try:
        if args.command == "config":
            return cmd_config(cfg)
        if args.command == "migrate":
            return cmd_migrate(cfg, args)
        return cmd_start(cfg)
    except RunGhostError as e:
        logger.error("%s", e)
        return 1


if __name__ == "__main__":
    raise SystemExit(main())
