"""
backend/main.py

Entry point: open the database, wire the SecurityMonitor and serve the API.

    cardguard --port 8000 --db-path data/security.db --log-level INFO
"""

from __future__ import annotations

import argparse
import logging
import sys
from typing import NoReturn

import uvicorn

from .api.main import create_app
from .config import settings
from .monitor import build_monitor
from .storage import Database

logger = logging.getLogger("cardguard.main")


def run(host: str, port: int, db_path: str) -> None:
    db = Database(db_path)
    db.init_schema()
    monitor = build_monitor(db=db, config=settings)

    app = create_app(monitor, on_shutdown=db.close)

    logger.info(
        "CardGuard - API=http://%s:%d db=%r events=%d",
        host, port, db_path, len(monitor.store),
    )
    uvicorn.run(app, host=host, port=port, log_level="warning")
    logger.info("Final stats - %s", monitor.health())
    logger.info("CardGuard stopped cleanly")


def _parse_args(argv: list[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(description="CardGuard security monitor API")
    parser.add_argument("--host",    default=settings.API_HOST)
    parser.add_argument("--port",    default=settings.API_PORT, type=int)
    parser.add_argument("--db-path", default=settings.DB_PATH)
    parser.add_argument(
        "--log-level", default=settings.LOG_LEVEL.upper(),
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
    )
    return parser.parse_args(argv)


def main(argv: list[str] | None = None) -> NoReturn:
    args = _parse_args(argv)
    logging.basicConfig(
        level=getattr(logging, args.log_level),
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
        datefmt="%H:%M:%S",
    )
    if not 0 < args.port < 65536:
        print(f"ERROR: invalid --port: {args.port}", file=sys.stderr)
        sys.exit(1)

    run(host=args.host, port=args.port, db_path=args.db_path)
    sys.exit(0)


if __name__ == "__main__":
    main()
