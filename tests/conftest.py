"""Test configuration and fixtures for the library circulation services.

- Isolated databases: every test gets fresh SQLite files under tmp_path
- Settings isolation: the settings singleton is reset around every test
- A controllable clock for date-dependent borrow scenarios
"""

import os
from collections.abc import Generator
from datetime import datetime, timedelta
from pathlib import Path

import logfire
import pytest

from library_circulation.clients.inventory_client import LocalInventoryClient
from library_circulation.config import ServiceSettings, reset_settings
from library_circulation.context import ROLE_ADMIN, ROLE_USER, UserContext
from library_circulation.database.inventory_repository import InventoryRepository
from library_circulation.database.schema import BorrowBase, InventoryBase
from library_circulation.database.session import DatabaseManager
from library_circulation.models.book import BookCreate, BookInfo
from library_circulation.services.borrow_service import BorrowService

# === Clock ===


class FakeClock:
    """Callable clock that tests move by hand."""

    def __init__(self, now: datetime):
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 1, 1, 0, 0, 0))


# === Settings ===


@pytest.fixture
def settings(tmp_path: Path) -> Generator[ServiceSettings, None, None]:
    reset_settings()
    yield ServiceSettings(
        service_name="test-library",
        borrow_database_url=f"sqlite:///{tmp_path / 'borrow.db'}",
        inventory_database_url=f"sqlite:///{tmp_path / 'inventory.db'}",
        overdue_sweep_enabled=False,
        internal_api_key=None,
    )
    reset_settings()


# === Databases ===


@pytest.fixture
def inventory_db(settings: ServiceSettings) -> Generator[DatabaseManager, None, None]:
    db = DatabaseManager(settings.inventory_database_url, InventoryBase.metadata)
    db.init_database()
    yield db
    db.close()


@pytest.fixture
def borrow_db(settings: ServiceSettings) -> Generator[DatabaseManager, None, None]:
    db = DatabaseManager(settings.borrow_database_url, BorrowBase.metadata)
    db.init_database()
    yield db
    db.close()


def add_book(db: DatabaseManager, isbn: str = "9780134685479", title: str = "Effective Java", **kwargs) -> BookInfo:
    with db.session_scope() as session:
        return InventoryRepository(session).create(BookCreate(isbn=isbn, title=title, **kwargs))


@pytest.fixture
def book(inventory_db: DatabaseManager) -> BookInfo:
    """A listed book with 3 copies."""
    return add_book(inventory_db, total_stock=3, author="Joshua Bloch")


# === Identities ===


@pytest.fixture
def alice() -> UserContext:
    return UserContext(user_id=1, username="alice", role=ROLE_USER)


@pytest.fixture
def bob() -> UserContext:
    return UserContext(user_id=2, username="bob", role=ROLE_USER)


@pytest.fixture
def admin() -> UserContext:
    return UserContext(user_id=99, username="admin", role=ROLE_ADMIN)


# === Services ===


@pytest.fixture
def inventory_client(inventory_db: DatabaseManager) -> LocalInventoryClient:
    return LocalInventoryClient(inventory_db)


@pytest.fixture
def borrow_service(borrow_db, inventory_client, settings, clock) -> BorrowService:
    return BorrowService(borrow_db, inventory_client, settings=settings, clock=clock)


# === Environment ===


@pytest.fixture
def clean_env() -> Generator[None, None, None]:
    """Run without any LIBRARY_* variables from the outer environment."""
    original_env = os.environ.copy()
    for key in list(os.environ.keys()):
        if key.startswith("LIBRARY_"):
            del os.environ[key]
    yield
    os.environ.clear()
    os.environ.update(original_env)


@pytest.fixture(scope="session", autouse=True)
def local_tracing():
    """Keep spans in process for the whole test session."""
    logfire.configure(send_to_logfire=False, console=False)


@pytest.fixture(autouse=True)
def cleanup_after_test():
    yield
    reset_settings()
