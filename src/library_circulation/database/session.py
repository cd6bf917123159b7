"""
Database session management for the circulation services.

Each service owns one ``DatabaseManager`` bound to its own database and
metadata. Sessions are short-lived: one ``session_scope()`` per operation,
committed on success and rolled back on any error.

Concurrency note: correctness of stock counters never relies on sessions or
application locks. It relies on the conditional UPDATE statements issued by
the repositories, which the database applies atomically per row.
"""

import logging
from collections.abc import Callable, Generator
from contextlib import contextmanager
from pathlib import Path
from typing import TypeVar

from sqlalchemy import MetaData, create_engine, event, text
from sqlalchemy.engine import Engine, make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from ..errors import LibraryError, RepositoryError

logger = logging.getLogger(__name__)


class DatabaseManager:
    """
    Owns the engine and session factory of one service database.

    - SQLite in-memory URLs share a single connection (StaticPool)
    - SQLite file URLs use a regular pool with a busy timeout so concurrent
      writers queue on the database lock instead of failing
    - Other databases get a pre-pinged connection pool
    """

    def __init__(self, database_url: str, metadata: MetaData):
        self.database_url = database_url
        self.metadata = metadata
        self._engine: Engine | None = None
        self._session_factory: sessionmaker | None = None

    @property
    def engine(self) -> Engine:
        if self._engine is None:
            url = make_url(self.database_url)
            if url.get_backend_name() == "sqlite":
                in_memory = url.database in (None, "", ":memory:")
                if in_memory:
                    self._engine = create_engine(
                        self.database_url,
                        poolclass=StaticPool,
                        connect_args={"check_same_thread": False},
                    )
                else:
                    Path(url.database).parent.mkdir(parents=True, exist_ok=True)
                    self._engine = create_engine(
                        self.database_url,
                        connect_args={"check_same_thread": False, "timeout": 30},
                    )

                @event.listens_for(self._engine, "connect")
                def set_sqlite_pragma(dbapi_connection, connection_record):  # noqa: ARG001
                    cursor = dbapi_connection.cursor()
                    cursor.execute("PRAGMA foreign_keys=ON")
                    cursor.close()
            else:
                self._engine = create_engine(
                    self.database_url,
                    pool_size=10,
                    max_overflow=20,
                    pool_pre_ping=True,
                )

            logger.info("Database engine created: %s", self._engine.url)

        return self._engine

    @property
    def session_factory(self) -> sessionmaker:
        if self._session_factory is None:
            self._session_factory = sessionmaker(
                bind=self.engine,
                autocommit=False,
                autoflush=False,
                expire_on_commit=False,
            )
        return self._session_factory

    def create_session(self) -> Session:
        return self.session_factory()

    @contextmanager
    def session_scope(self) -> Generator[Session, None, None]:
        """
        Provide a transactional scope for one operation.

        Typed ``LibraryError``s pass through unchanged after rollback; any
        other database error is logged and re-raised as ``RepositoryError``.
        """
        session = self.create_session()
        try:
            yield session
            session.commit()
        except LibraryError:
            session.rollback()
            raise
        except SQLAlchemyError as e:
            logger.exception("Database error, rolling back")
            session.rollback()
            raise RepositoryError(f"Database operation failed: {type(e).__name__}") from e
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    def init_database(self, drop_existing: bool = False) -> None:
        """Create this service's tables (use a migration tool in production)."""
        if drop_existing:
            logger.warning("Dropping all existing tables...")
            self.metadata.drop_all(bind=self.engine)

        self.metadata.create_all(bind=self.engine)
        logger.info("Database initialization complete")

    def verify_connection(self) -> bool:
        """Health check: True when a trivial query succeeds."""
        try:
            with self.engine.connect() as conn:
                conn.execute(text("SELECT 1"))
            return True
        except SQLAlchemyError:
            logger.exception("Database connection failed")
            return False

    def close(self) -> None:
        if self._engine:
            self._engine.dispose()
            logger.info("Database engine disposed")
        self._engine = None
        self._session_factory = None


def safe_commit(session: Session, operation: str) -> None:
    """
    Commit, translating database failures into ``RepositoryError``.

    Raises:
        RepositoryError: If the commit fails
    """
    try:
        session.commit()
    except SQLAlchemyError as e:
        session.rollback()
        raise RepositoryError(f"Database operation '{operation}' failed") from e


T = TypeVar("T")


def safe_query(session: Session, query_func: Callable[[Session], T], error_msg: str) -> T:
    """
    Run a read, translating database failures into ``RepositoryError``.

    Raises:
        RepositoryError: If the query fails
    """
    try:
        return query_func(session)
    except SQLAlchemyError as e:
        logger.exception("Query failed")
        raise RepositoryError(f"{error_msg}: database query failed") from e
