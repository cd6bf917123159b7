"""
SQLAlchemy schema for the circulation services.

The inventory service and the borrow service own separate databases, so each
has its own declarative base and only ever creates its own tables:

- InventoryBase: ``books`` (the inventory ledger)
- BorrowBase: ``borrow_records`` (the borrow record store)

The stock counter bounds are also enforced by CHECK constraints so that no code
path, including manual SQL, can leave ``0 <= available_stock <= total_stock``.
Neither table is ever physically deleted from; rows carry a ``deleted`` flag.
"""

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    DateTime,
    Enum,
    Index,
    Integer,
    String,
    Text,
    text,
)
from sqlalchemy.orm import declarative_base
from sqlalchemy.sql import func

from ..models.book import BookStatus
from ..models.borrow import BorrowStatus

InventoryBase = declarative_base()
BorrowBase = declarative_base()


class Book(InventoryBase):
    """
    Books table - one row per catalog title with its stock counters.

    Stock is only ever changed through the conditional UPDATE statements in
    ``InventoryRepository``; the row is never locked by the application.
    """

    __tablename__ = "books"

    id = Column(Integer, primary_key=True, autoincrement=True)
    isbn = Column(String(13), nullable=False)
    title = Column(String(255), nullable=False, index=True)
    author = Column(String(255), nullable=True)
    publisher = Column(String(255), nullable=True)
    total_stock = Column(Integer, nullable=False, default=0)
    available_stock = Column(Integer, nullable=False, default=0)
    status = Column(Enum(BookStatus), nullable=False, default=BookStatus.LISTED)
    deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index(
            "uq_book_isbn_live",
            "isbn",
            unique=True,
            sqlite_where=text("deleted = 0"),
            postgresql_where=text("deleted = false"),
        ),
        CheckConstraint("total_stock >= 0", name="check_total_stock_non_negative"),
        CheckConstraint("available_stock >= 0", name="check_available_stock_non_negative"),
        CheckConstraint(
            "available_stock <= total_stock", name="check_available_not_exceed_total"
        ),
    )


class BorrowRecord(BorrowBase):
    """
    Borrow records table - one row per loan.

    ``book_title`` and ``book_isbn`` are snapshots taken at borrow time; the
    title is rewritten by the catalog's rename propagation.
    """

    __tablename__ = "borrow_records"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(Integer, nullable=False)
    username = Column(String(100), nullable=True)
    book_id = Column(Integer, nullable=False)
    book_isbn = Column(String(13), nullable=True)
    book_title = Column(String(255), nullable=True)
    quantity = Column(Integer, nullable=False, default=1)
    borrow_time = Column(DateTime, nullable=False)
    due_time = Column(DateTime, nullable=False)
    return_time = Column(DateTime, nullable=True)
    status = Column(Enum(BorrowStatus), nullable=False, default=BorrowStatus.BORROWING)
    renew_count = Column(Integer, nullable=False, default=0)
    remark = Column(Text, nullable=True)
    deleted = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime, nullable=False, default=func.now())
    updated_at = Column(DateTime, nullable=False, default=func.now(), onupdate=func.now())

    __table_args__ = (
        Index("idx_borrow_user", "user_id"),
        Index("idx_borrow_book", "book_id"),
        Index("idx_borrow_status_due", "status", "due_time"),
        # One outstanding loan per (user, book): the database rejects the
        # second insert even when two borrows race past the duplicate check.
        Index(
            "uq_borrow_active_loan",
            "user_id",
            "book_id",
            unique=True,
            sqlite_where=text("status IN ('BORROWING', 'OVERDUE', 'RENEWED') AND deleted = 0"),
            postgresql_where=text(
                "status IN ('BORROWING', 'OVERDUE', 'RENEWED') AND deleted = false"
            ),
        ),
        CheckConstraint("quantity >= 1", name="check_quantity_positive"),
        CheckConstraint("renew_count >= 0", name="check_renew_count_non_negative"),
        CheckConstraint("due_time > borrow_time", name="check_due_after_borrow"),
    )
