"""Tests for the command line entry point."""

from datetime import datetime
from unittest.mock import patch

import pytest
from sqlalchemy import inspect

from library_circulation.__main__ import build_parser, main
from library_circulation.database.borrow_repository import BorrowRepository
from library_circulation.database.schema import BorrowBase, InventoryBase
from library_circulation.database.session import DatabaseManager
from library_circulation.models.book import BookInfo
from library_circulation.models.borrow import BorrowStatus


@pytest.fixture
def env_databases(tmp_path, monkeypatch, clean_env):
    urls = {
        "borrow": f"sqlite:///{tmp_path / 'cli-borrow.db'}",
        "inventory": f"sqlite:///{tmp_path / 'cli-inventory.db'}",
    }
    monkeypatch.setenv("LIBRARY_BORROW_DATABASE_URL", urls["borrow"])
    monkeypatch.setenv("LIBRARY_INVENTORY_DATABASE_URL", urls["inventory"])
    return urls


def tables(url: str, metadata) -> set[str]:
    db = DatabaseManager(url, metadata)
    try:
        return set(inspect(db.engine).get_table_names())
    finally:
        db.close()


class TestParser:
    def test_serve_defaults(self):
        args = build_parser().parse_args(["serve-borrow"])
        assert args.port == 8083
        assert args.host == "127.0.0.1"
        assert build_parser().parse_args(["serve-inventory"]).port == 8081

    def test_command_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestInitDb:
    def test_creates_each_service_schema(self, env_databases):
        main(["init-db"])

        assert tables(env_databases["borrow"], BorrowBase.metadata) == {"borrow_records"}
        assert tables(env_databases["inventory"], InventoryBase.metadata) == {"books"}

    def test_single_service(self, env_databases):
        main(["init-db", "--service", "inventory"])

        assert tables(env_databases["inventory"], InventoryBase.metadata) == {"books"}
        assert tables(env_databases["borrow"], BorrowBase.metadata) == set()


def test_serve_borrow_runs_uvicorn(env_databases):
    with patch("library_circulation.__main__.uvicorn.run") as run:
        main(["serve-borrow", "--port", "9000"])

    _, kwargs = run.call_args
    assert kwargs == {"host": "127.0.0.1", "port": 9000}


def test_sweep_marks_past_due_loans(env_databases, alice, capsys):
    main(["init-db", "--service", "borrow"])
    db = DatabaseManager(env_databases["borrow"], BorrowBase.metadata)
    book = BookInfo(id=7, isbn="9780134685479", title="Effective Java", total_stock=1, available_stock=0)
    try:
        with db.session_scope() as session:
            record = BorrowRepository(session).create(
                alice, book, 1, borrow_time=datetime(2020, 1, 1), due_time=datetime(2020, 1, 2)
            )

        main(["sweep"])

        with db.session_scope() as session:
            assert BorrowRepository(session).get(record.id).status == BorrowStatus.OVERDUE
    finally:
        db.close()
    assert "Marked 1 records overdue" in capsys.readouterr().out
