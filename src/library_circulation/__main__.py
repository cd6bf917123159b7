"""
Command line entry point.

    library-circulation serve-inventory [--host H] [--port P]
    library-circulation serve-borrow [--host H] [--port P]
    library-circulation init-db [--service borrow|inventory|all] [--drop-existing]
    library-circulation sweep
"""

import argparse
import logging
import sys
from datetime import datetime

import uvicorn

from .config import get_settings
from .database.borrow_repository import BorrowRepository
from .database.schema import BorrowBase, InventoryBase
from .database.session import DatabaseManager
from .errors import LibraryError
from .observability import configure_observability

logger = logging.getLogger(__name__)


def _serve_inventory(args: argparse.Namespace) -> None:
    from .api.inventory_app import create_inventory_app

    uvicorn.run(create_inventory_app(get_settings()), host=args.host, port=args.port)


def _serve_borrow(args: argparse.Namespace) -> None:
    from .api.borrow_app import create_borrow_app

    uvicorn.run(create_borrow_app(get_settings()), host=args.host, port=args.port)


def _init_db(args: argparse.Namespace) -> None:
    settings = get_settings()
    targets = []
    if args.service in ("inventory", "all"):
        targets.append(DatabaseManager(settings.inventory_database_url, InventoryBase.metadata))
    if args.service in ("borrow", "all"):
        targets.append(DatabaseManager(settings.borrow_database_url, BorrowBase.metadata))

    for db in targets:
        try:
            if not db.verify_connection():
                logger.error("Failed to connect to %s", db.database_url)
                sys.exit(1)
            db.init_database(drop_existing=args.drop_existing)
            logger.info("Initialized %s", db.database_url)
        finally:
            db.close()


def _sweep(args: argparse.Namespace) -> None:  # noqa: ARG001
    settings = get_settings()
    db = DatabaseManager(settings.borrow_database_url, BorrowBase.metadata)
    try:
        with db.session_scope() as session:
            count = BorrowRepository(session).mark_overdue(datetime.now())
    finally:
        db.close()
    print(f"Marked {count} records overdue")


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="library-circulation", description="Library circulation services")
    commands = parser.add_subparsers(dest="command", required=True)

    inventory = commands.add_parser("serve-inventory", help="Run the inventory service")
    inventory.add_argument("--host", default="127.0.0.1")
    inventory.add_argument("--port", type=int, default=8081)
    inventory.set_defaults(func=_serve_inventory)

    borrow = commands.add_parser("serve-borrow", help="Run the borrow service")
    borrow.add_argument("--host", default="127.0.0.1")
    borrow.add_argument("--port", type=int, default=8083)
    borrow.set_defaults(func=_serve_borrow)

    init_db = commands.add_parser("init-db", help="Create service tables")
    init_db.add_argument("--service", choices=["borrow", "inventory", "all"], default="all")
    init_db.add_argument(
        "--drop-existing",
        action="store_true",
        help="Drop existing tables before creating new ones",
    )
    init_db.set_defaults(func=_init_db)

    sweep = commands.add_parser("sweep", help="Mark past-due loans overdue once and exit")
    sweep.set_defaults(func=_sweep)
    return parser


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_observability(get_settings())
    try:
        args.func(args)
    except KeyboardInterrupt:
        logger.info("Stopped by user")
    except LibraryError as e:
        logger.error("%s", e.message)
        sys.exit(1)


if __name__ == "__main__":
    main()
