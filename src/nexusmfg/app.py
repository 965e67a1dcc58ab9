from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from pathlib import Path

from nicegui import app, ui

from nexusmfg.core.events import EventBus
from nexusmfg.data.db import Db
from nexusmfg.data.repository import Repository
from nexusmfg.data.sheets_sync import SheetsSyncClient, SyncError, run_sync
from nexusmfg.logging_conf import configure_logging
from nexusmfg.settings import Settings, default_db_path
from nexusmfg.ui.pages import register_pages

logger = logging.getLogger(__name__)


def build_arg_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="NexusMfg production dashboard")
    parser.add_argument("--host", type=str, default="0.0.0.0")
    parser.add_argument("--port", type=int, default=8080)
    parser.add_argument("--title", type=str, default="NexusMfg", help="Browser title")
    parser.add_argument("--db", type=Path, default=None, help="SQLite database path")
    parser.add_argument("--log-level", type=str, default="INFO")
    parser.add_argument("--storage-secret", type=str, default="nexusmfg-local-secret")
    parser.add_argument("--no-seed", action="store_true", help="Do not generate demo production data")
    return parser


def settings_from_args(argv: list[str] | None = None) -> Settings:
    args = build_arg_parser().parse_args(argv)
    return Settings(
        db_path=args.db or default_db_path(),
        host=args.host,
        port=args.port,
        title=args.title,
        log_level=args.log_level,
        storage_secret=args.storage_secret,
        seed_demo=not args.no_seed,
    )


def build_repository(settings: Settings) -> Repository:
    """Open the store: schema, default users/off-days, optional demo data."""
    db = Db(settings.db_path)
    db.ensure_schema()

    repo = Repository(db, bus=EventBus())
    repo.seed_defaults()
    if settings.seed_demo:
        written = repo.seed_demo_entries()
        if written:
            logger.info("Seeded %d demo production entries", written)
    return repo


def main() -> None:
    settings = settings_from_args()
    configure_logging(settings.log_level)

    repo = build_repository(settings)
    register_pages(repo)

    @app.on_startup
    async def _initial_sync() -> None:
        """Silent best-effort sync when an endpoint is configured."""
        client = SheetsSyncClient.from_repository(repo)
        if not client.is_enabled():
            return
        try:
            await run_sync(client, repo)
        except SyncError as ex:
            logger.warning("Startup sync failed: %s", ex)

    if sys.platform == "win32":
        @app.on_startup
        async def _silence_windows_connection_reset() -> None:
            # Suppress noisy ConnectionResetError 10054 from Windows clients dropping websockets.
            loop = asyncio.get_running_loop()

            def _handler(loop: asyncio.AbstractEventLoop, context: dict) -> None:
                exc = context.get("exception")
                if isinstance(exc, ConnectionResetError) and getattr(exc, "winerror", None) == 10054:
                    return
                loop.default_exception_handler(context)

            loop.set_exception_handler(_handler)

    title = repo.get_config(key="plant_name", default=settings.title) or settings.title
    ui.run(
        host=settings.host,
        port=settings.port,
        title=title,
        storage_secret=settings.storage_secret,
        reload=False,
    )


if __name__ in {"__main__", "__mp_main__"}:
    main()
