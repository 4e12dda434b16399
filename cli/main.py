#!/usr/bin/env python3
"""
Operations assistant CLI.

Commands:
- init   create or converge the database schema
- serve  run the API server
"""

import argparse
import logging

from lib import config
from lib import db as db_module
from lib.observability import configure_logging

logger = logging.getLogger(__name__)


def cmd_init(args) -> int:
    """Create or converge the database."""
    results = db_module.run_startup_migrations(args.db)
    path = args.db or db_module.get_db_path_str()
    print(f"OK: {path} at schema version {results.get('schema_version')}")
    created = results.get("tables_created") or []
    if created:
        print(f"Tables created: {', '.join(created)}")
    if results.get("errors"):
        for error in results["errors"]:
            print(f"  error: {error}")
        return 1
    return 0


def cmd_serve(args) -> int:
    from api.server import main as serve

    serve(host=args.host, port=args.port)
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="ops-assistant", description="Operations assistant")
    p.add_argument("--log-level", default=config.LOG_LEVEL, help="DEBUG, INFO, WARNING or ERROR")
    sub = p.add_subparsers(dest="cmd", required=True)

    i = sub.add_parser("init", help="Create or converge the database schema")
    i.add_argument("--db", default=None, help="Database path (default: OPS_ASSISTANT_DB or app home)")
    i.set_defaults(func=cmd_init)

    s = sub.add_parser("serve", help="Run the API server")
    s.add_argument("--host", default="0.0.0.0")
    s.add_argument("--port", type=int, default=config.PORT)
    s.set_defaults(func=cmd_serve)
    return p


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    configure_logging(args.log_level, config.LOG_JSON)
    return args.func(args)


if __name__ == "__main__":
    raise SystemExit(main())
