"""
Inventory ledger repository.

The ledger owns the two stock counters of every book. Each mutation is one
conditional UPDATE whose WHERE clause carries the guard, for example:

    UPDATE books SET available_stock = available_stock - :qty
     WHERE id = :id AND available_stock >= :qty AND deleted = false

The database applies the statement atomically, so when N reservations race
for S available copies at most S of them match a row. A statement that
matches zero rows has changed nothing, and the repository then works out
which guard failed to raise the right typed error. No row is ever locked by
the application.
"""

import logging

from sqlalchemy import or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..errors import (
    ConcurrentModificationError,
    DuplicateIsbnError,
    InsufficientStockError,
    NotFoundError,
    OutstandingLoansError,
    OverReturnError,
    RepositoryError,
    ValidationError,
)
from ..models.book import BookCreate, BookInfo, BookQuery, BookStatus, BookUpdate
from ..models.envelope import PageResult
from .repository import PaginationParams, paginate
from .schema import Book as BookDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


def _require_positive(quantity: int) -> None:
    if quantity < 1:
        raise ValidationError("Quantity must be at least 1")


class InventoryRepository:
    """Stock counters and catalog entries of the inventory service."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, book_id: int) -> BookInfo | None:
        """Return the live (not deleted) book, or None."""
        row = self._get_row(book_id)
        return self._to_model(row) if row is not None else None

    def require(self, book_id: int) -> BookInfo:
        book = self.get(book_id)
        if book is None:
            raise NotFoundError(f"Book {book_id} not found")
        return book

    def check_available(self, book_id: int, quantity: int) -> bool:
        """True iff the book exists, is not deleted and has ``quantity`` copies free.

        This is a read; it does not reserve anything.
        """
        row = self._get_row(book_id)
        return row is not None and row.available_stock >= quantity

    def list_books(
        self, query: BookQuery | None = None, pagination: PaginationParams | None = None
    ) -> PageResult[BookInfo]:
        stmt = select(BookDB).where(BookDB.deleted.is_(False))
        if query is not None:
            if query.keyword:
                pattern = f"%{query.keyword}%"
                stmt = stmt.where(
                    or_(
                        BookDB.title.ilike(pattern),
                        BookDB.author.ilike(pattern),
                        BookDB.isbn.ilike(pattern),
                    )
                )
            if query.status is not None:
                stmt = stmt.where(BookDB.status == query.status)
        stmt = stmt.order_by(BookDB.id)
        return paginate(self.session, stmt, pagination, self._to_model)

    # ------------------------------------------------------------------
    # Ledger mutations
    # ------------------------------------------------------------------

    def reserve(self, book_id: int, quantity: int) -> int:
        """
        Take ``quantity`` copies out of available stock.

        Returns:
            The available stock after the reservation

        Raises:
            NotFoundError: If the book does not exist
            InsufficientStockError: If fewer than ``quantity`` copies are free
        """
        _require_positive(quantity)
        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.deleted.is_(False),
                BookDB.available_stock >= quantity,
            )
            .values(available_stock=BookDB.available_stock - quantity)
        )
        if not self._apply(stmt, "reserve stock"):
            self.require(book_id)
            raise InsufficientStockError(f"Insufficient stock for book {book_id}")
        available = self._read_available(book_id)
        safe_commit(self.session, "reserve stock")
        logger.info("Reserved %d of book %s, %d left", quantity, book_id, available)
        return available

    def release(self, book_id: int, quantity: int) -> int:
        """
        Put ``quantity`` copies back into available stock.

        Raises:
            NotFoundError: If the book does not exist
            OverReturnError: If the result would exceed total stock
        """
        _require_positive(quantity)
        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.deleted.is_(False),
                BookDB.available_stock + quantity <= BookDB.total_stock,
            )
            .values(available_stock=BookDB.available_stock + quantity)
        )
        if not self._apply(stmt, "release stock"):
            self.require(book_id)
            raise OverReturnError(
                f"Returning {quantity} of book {book_id} would exceed its total stock"
            )
        available = self._read_available(book_id)
        safe_commit(self.session, "release stock")
        logger.info("Released %d of book %s, %d available", quantity, book_id, available)
        return available

    def add_stock(self, book_id: int, quantity: int) -> int:
        """Add new copies: total and available both grow by ``quantity``."""
        _require_positive(quantity)
        stmt = (
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.deleted.is_(False))
            .values(
                total_stock=BookDB.total_stock + quantity,
                available_stock=BookDB.available_stock + quantity,
            )
        )
        if not self._apply(stmt, "add stock"):
            raise NotFoundError(f"Book {book_id} not found")
        available = self._read_available(book_id)
        safe_commit(self.session, "add stock")
        logger.info("Added %d copies of book %s", quantity, book_id)
        return available

    def reduce_stock(self, book_id: int, quantity: int) -> int:
        """Withdraw copies; only copies on the shelf can be withdrawn."""
        _require_positive(quantity)
        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.deleted.is_(False),
                BookDB.available_stock >= quantity,
            )
            .values(
                total_stock=BookDB.total_stock - quantity,
                available_stock=BookDB.available_stock - quantity,
            )
        )
        if not self._apply(stmt, "reduce stock"):
            self.require(book_id)
            raise InsufficientStockError(
                f"Cannot withdraw {quantity} copies of book {book_id}: not enough on the shelf"
            )
        available = self._read_available(book_id)
        safe_commit(self.session, "reduce stock")
        logger.info("Withdrew %d copies of book %s", quantity, book_id)
        return available

    # ------------------------------------------------------------------
    # Catalog entries
    # ------------------------------------------------------------------

    def create(self, data: BookCreate) -> BookInfo:
        """Create a catalog entry with every copy available."""
        self._ensure_isbn_free(data.isbn)
        row = BookDB(
            isbn=data.isbn,
            title=data.title,
            author=data.author,
            publisher=data.publisher,
            total_stock=data.total_stock,
            available_stock=data.total_stock,
            status=data.status,
            deleted=False,
        )
        try:
            self.session.add(row)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateIsbnError(f"ISBN {data.isbn} already exists") from e
        safe_commit(self.session, "create book")
        self.session.refresh(row)
        logger.info("Created book %s (%s)", row.id, row.title)
        return self._to_model(row)

    def update(self, book_id: int, data: BookUpdate) -> tuple[BookInfo, BookInfo]:
        """
        Replace the editable fields of a book.

        A change of total stock moves available stock by the same delta,
        guarded so that copies on loan are never written off.

        Returns:
            (before, after) snapshots of the book
        """
        before = self.require(book_id)
        if data.isbn != before.isbn:
            self._ensure_isbn_free(data.isbn, exclude_id=book_id)

        delta = data.total_stock - before.total_stock
        values = {
            "isbn": data.isbn,
            "title": data.title,
            "author": data.author,
            "publisher": data.publisher,
            "total_stock": data.total_stock,
            "available_stock": BookDB.available_stock + delta,
        }
        if data.status is not None:
            values["status"] = data.status

        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.deleted.is_(False),
                BookDB.total_stock == before.total_stock,
                BookDB.available_stock + delta >= 0,
            )
            .values(**values)
        )
        try:
            matched = self._apply(stmt, "update book")
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateIsbnError(f"ISBN {data.isbn} already exists") from e
        if not matched:
            current = self.require(book_id)
            if current.total_stock != before.total_stock:
                raise ConcurrentModificationError(f"Book {book_id} stock changed concurrently")
            raise InsufficientStockError(
                f"Cannot reduce total stock of book {book_id} below the copies on loan"
            )
        safe_commit(self.session, "update book")
        after = self.require(book_id)
        logger.info("Updated book %s", book_id)
        return before, after

    def set_status(self, book_id: int, status: BookStatus) -> BookInfo:
        stmt = (
            update(BookDB)
            .where(BookDB.id == book_id, BookDB.deleted.is_(False))
            .values(status=status)
        )
        if not self._apply(stmt, "update book status"):
            raise NotFoundError(f"Book {book_id} not found")
        safe_commit(self.session, "update book status")
        logger.info("Book %s is now %s", book_id, status.value)
        return self.require(book_id)

    def soft_delete(self, book_id: int) -> None:
        """
        Mark a book deleted.

        Refused while ``available_stock < total_stock``: an outstanding loan
        may still reference the book.
        """
        stmt = (
            update(BookDB)
            .where(
                BookDB.id == book_id,
                BookDB.deleted.is_(False),
                BookDB.available_stock == BookDB.total_stock,
            )
            .values(deleted=True)
        )
        if not self._apply(stmt, "delete book"):
            self.require(book_id)
            raise OutstandingLoansError(f"Book {book_id} has copies out on loan")
        safe_commit(self.session, "delete book")
        logger.info("Deleted book %s", book_id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(self, stmt, operation: str) -> bool:
        """Execute a conditional UPDATE; True when exactly one row matched."""
        try:
            result = self.session.execute(stmt.execution_options(synchronize_session=False))
        except IntegrityError:
            self.session.rollback()
            raise
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Database operation '{operation}' failed") from e
        matched = result.rowcount == 1
        if not matched:
            self.session.rollback()
        return matched

    def _get_row(self, book_id: int) -> BookDB | None:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB).where(BookDB.id == book_id, BookDB.deleted.is_(False))
            ).scalar_one_or_none(),
            "Failed to get book",
        )

    def _read_available(self, book_id: int) -> int:
        return safe_query(
            self.session,
            lambda s: s.execute(
                select(BookDB.available_stock).where(BookDB.id == book_id)
            ).scalar_one(),
            "Failed to read available stock",
        )

    def _ensure_isbn_free(self, isbn: str, exclude_id: int | None = None) -> None:
        stmt = select(BookDB.id).where(BookDB.isbn == isbn, BookDB.deleted.is_(False))
        if exclude_id is not None:
            stmt = stmt.where(BookDB.id != exclude_id)
        existing = safe_query(
            self.session, lambda s: s.execute(stmt).first(), "Failed to check ISBN"
        )
        if existing is not None:
            raise DuplicateIsbnError(f"ISBN {isbn} already exists")

    @staticmethod
    def _to_model(row: BookDB) -> BookInfo:
        return BookInfo.model_validate(row, from_attributes=True)
