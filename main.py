"""Application entry point — wires services and runs one library action.

Usage:
    python main.py [--data-dir DIR] [--host H] [--port P] [--user U] SOURCE.json ACTION [GAME_ID]

ACTION is one of ``status``, ``reconcile``, ``download``, ``extract``,
``delete`` (with ``--zip`` and/or ``--folder``).  SOURCE.json holds one
catalog source: ``{"basePath": ..., "zipPath": ..., "games": [...]}``.
"""

from __future__ import annotations

import argparse
import getpass
import json
import sys
import threading
from pathlib import Path

from loguru import logger

from romhost.config import Config, get_app_config
from romhost.context import AppContext
from romhost.core.lifecycle import LifecycleOrchestrator
from romhost.data.library_store import LibraryStore
from romhost.errors import CatalogError, RemoteError
from romhost.logger import setup_logger
from romhost.models.catalog import CatalogSource, GameEntry
from romhost.models.connection import ConnectionDescriptor
from romhost.remote.operations import RemoteOperations
from romhost.remote.session import RemoteSession

_ACTIONS = ("status", "reconcile", "download", "extract", "delete")


def create_context(config: Config | None = None, log_level: str | None = None) -> AppContext:
    """Wire all services and return an AppContext."""
    config = config or get_app_config()

    # Logger
    setup_logger(config.log_dir, log_level)

    # Remote side
    session = RemoteSession()
    operations = RemoteOperations(session)

    # Data
    library_store = LibraryStore(config.data_dir)
    library_store.load()

    orchestrator = LifecycleOrchestrator(operations, library_store)

    return AppContext(
        config=config,
        session=session,
        operations=operations,
        library_store=library_store,
        orchestrator=orchestrator,
    )


def _load_source(path: Path) -> CatalogSource:
    with open(path, encoding="utf-8") as f:
        data = json.load(f)
    return CatalogSource.from_dict(path.stem, data)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="Manage a game library on a remote host over SSH.")
    parser.add_argument("source", type=Path, help="catalog source JSON file")
    parser.add_argument("action", choices=_ACTIONS)
    parser.add_argument("game_id", nargs="?", help="game id (download/extract/delete)")
    parser.add_argument("--data-dir", type=Path, help="config and library store directory")
    parser.add_argument("--host")
    parser.add_argument("--port", type=int)
    parser.add_argument("--user")
    parser.add_argument("-v", "--verbose", action="store_true", help="log SSH commands and transport details")
    parser.add_argument("--zip", action="store_true", help="delete: remove the archive")
    parser.add_argument("--folder", action="store_true", help="delete: remove the extracted folder")
    return parser


def _print_progress(operation_id: str, percent: int) -> None:
    print(f"\r{operation_id}: {percent:3d}%", end="", file=sys.stderr, flush=True)


def _run_download(
    orchestrator: LifecycleOrchestrator, source: CatalogSource, game: GameEntry
) -> None:
    """Download on a worker thread so Ctrl+C can cancel the remote transfer."""
    errors: list[RemoteError] = []

    def _work() -> None:
        try:
            orchestrator.download(source, game, on_progress=_print_progress)
        except RemoteError as e:
            errors.append(e)

    worker = threading.Thread(target=_work, name=f"download-{game.id}", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(timeout=0.2)
    except KeyboardInterrupt:
        orchestrator.cancel_download(game)
        worker.join()
    print(file=sys.stderr)
    if errors:
        raise errors[0]


def main(argv: list[str] | None = None) -> int:
    """Application entry point."""
    args = _build_parser().parse_args(argv)

    config = Config(args.data_dir) if args.data_dir else get_app_config()
    ctx = create_context(config, "DEBUG" if args.verbose else None)

    try:
        source = _load_source(args.source)
    except (OSError, json.JSONDecodeError, CatalogError) as e:
        logger.error(f"Cannot read catalog source {args.source}: {e}")
        return 2

    if args.action == "status":
        statuses = ctx.orchestrator.statuses(source.games)
        for game in source.games:
            print(f"{game.id}\t{statuses[game.id]}\t{game.name}")
        return 0

    game = None
    if args.action != "reconcile":
        game = source.get_game(args.game_id or "")
        if game is None:
            logger.error(f"Unknown game id: {args.game_id!r}")
            return 2

    descriptor = ConnectionDescriptor(
        host=args.host or config.ssh_host,
        port=args.port or config.ssh_port,
        username=args.user or config.ssh_user,
    )
    if not descriptor.host or not descriptor.username:
        logger.error("Host and user are required (pass --host/--user once, they are remembered)")
        return 2
    descriptor.secret = getpass.getpass(f"Password for {descriptor.username}@{descriptor.host}: ")

    try:
        ctx.session.connect(descriptor)
    except RemoteError as e:
        logger.error(str(e))
        return 1
    config.remember_connection(descriptor)

    orchestrator = ctx.orchestrator
    try:
        if args.action == "reconcile":
            result = orchestrator.reconcile(source)
            for game_id, status in result.changed.items():
                print(f"{game_id}\t{status}")
        elif args.action == "download":
            _run_download(orchestrator, source, game)
        elif args.action == "extract":
            orchestrator.extract(source, game)
        elif args.action == "delete":
            status = orchestrator.delete_data(source, game, args.zip, args.folder)
            print(f"{game.id}\t{status}")
    except RemoteError as e:
        logger.error(f"{args.action} failed: {e}")
        return 1
    finally:
        ctx.session.disconnect()
    return 0


if __name__ == "__main__":
    sys.exit(main())
