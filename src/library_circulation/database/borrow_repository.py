"""
Borrow record store.

Holds the per-loan state machine. Every state transition is a conditional
UPDATE whose WHERE clause restates the state the caller observed, so two
concurrent transitions of the same record cannot both apply:

- return:  only from an outstanding status
- renew:   only from BORROWING/RENEWED, with the renew count and due time
           the caller read (optimistic concurrency)
- sweep:   bulk BORROWING/RENEWED past due -> OVERDUE

The one-outstanding-loan-per-(user, book) rule is backed by a partial unique
index, so a racing duplicate insert fails with ``DuplicateLoanError``.
"""

import logging
from datetime import datetime

from sqlalchemy import and_, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from ..context import UserContext
from ..errors import DuplicateLoanError, RepositoryError
from ..models.book import BookInfo
from ..models.borrow import (
    OUTSTANDING_STATUSES,
    SWEEPABLE_STATUSES,
    BorrowQuery,
    BorrowRecord,
    BorrowStatistics,
    BorrowStatus,
)
from ..models.envelope import PageResult
from .repository import PaginationParams, paginate
from .schema import BorrowRecord as BorrowDB
from .session import safe_commit, safe_query

logger = logging.getLogger(__name__)


class BorrowRepository:
    """Persistence of borrow records."""

    def __init__(self, session: Session):
        self.session = session

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def get(self, record_id: int) -> BorrowRecord | None:
        row = safe_query(
            self.session,
            lambda s: s.execute(
                select(BorrowDB).where(BorrowDB.id == record_id, BorrowDB.deleted.is_(False))
            ).scalar_one_or_none(),
            "Failed to get borrow record",
        )
        return self._to_model(row) if row is not None else None

    def count_outstanding(self, user_id: int) -> int:
        """Number of loans the user has not returned yet."""
        total = safe_query(
            self.session,
            lambda s: s.execute(
                select(func.count()).select_from(BorrowDB).where(
                    BorrowDB.user_id == user_id,
                    BorrowDB.status.in_(OUTSTANDING_STATUSES),
                    BorrowDB.deleted.is_(False),
                )
            ).scalar(),
            "Failed to count outstanding loans",
        )
        return int(total or 0)

    def find_outstanding(self, user_id: int, book_id: int) -> BorrowRecord | None:
        row = safe_query(
            self.session,
            lambda s: s.execute(
                select(BorrowDB)
                .where(
                    BorrowDB.user_id == user_id,
                    BorrowDB.book_id == book_id,
                    BorrowDB.status.in_(OUTSTANDING_STATUSES),
                    BorrowDB.deleted.is_(False),
                )
                .limit(1)
            ).scalar_one_or_none(),
            "Failed to check outstanding loan",
        )
        return self._to_model(row) if row is not None else None

    def search(
        self, query: BorrowQuery, pagination: PaginationParams | None = None, now: datetime | None = None
    ) -> PageResult[BorrowRecord]:
        """Filtered, newest-first page of records."""
        stmt = select(BorrowDB).where(BorrowDB.deleted.is_(False))

        if query.user_id is not None:
            stmt = stmt.where(BorrowDB.user_id == query.user_id)
        if query.book_id is not None:
            stmt = stmt.where(BorrowDB.book_id == query.book_id)
        if query.book_title:
            stmt = stmt.where(BorrowDB.book_title.ilike(f"%{query.book_title}%"))
        if query.status is not None:
            stmt = stmt.where(BorrowDB.status == query.status)
        if query.borrow_start_time is not None:
            stmt = stmt.where(BorrowDB.borrow_time >= query.borrow_start_time)
        if query.borrow_end_time is not None:
            stmt = stmt.where(BorrowDB.borrow_time <= query.borrow_end_time)
        if query.overdue_only:
            cutoff = now or datetime.now()
            stmt = stmt.where(
                or_(
                    BorrowDB.status == BorrowStatus.OVERDUE,
                    and_(BorrowDB.status.in_(SWEEPABLE_STATUSES), BorrowDB.due_time < cutoff),
                )
            )

        stmt = stmt.order_by(BorrowDB.borrow_time.desc(), BorrowDB.id.desc())
        return paginate(self.session, stmt, pagination, self._to_model)

    def statistics(self, user_id: int) -> BorrowStatistics:
        def count(*criteria) -> int:
            return (
                safe_query(
                    self.session,
                    lambda s: s.execute(
                        select(func.count())
                        .select_from(BorrowDB)
                        .where(BorrowDB.user_id == user_id, BorrowDB.deleted.is_(False), *criteria)
                    ).scalar(),
                    "Failed to compute borrow statistics",
                )
                or 0
            )

        return BorrowStatistics(
            total_borrowed=count(),
            current_borrowing=count(BorrowDB.status.in_(OUTSTANDING_STATUSES)),
            overdue_count=count(
                or_(
                    BorrowDB.status == BorrowStatus.OVERDUE,
                    and_(
                        BorrowDB.status == BorrowStatus.RETURNED,
                        BorrowDB.return_time > BorrowDB.due_time,
                    ),
                )
            ),
        )

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create(
        self,
        user: UserContext,
        book: BookInfo,
        quantity: int,
        borrow_time: datetime,
        due_time: datetime,
        remark: str | None = None,
    ) -> BorrowRecord:
        """
        Insert a new BORROWING record.

        Raises:
            DuplicateLoanError: If the user already has an outstanding loan of the book
            RepositoryError: On any other database failure
        """
        row = BorrowDB(
            user_id=user.user_id,
            username=user.username,
            book_id=book.id,
            book_isbn=book.isbn,
            book_title=book.title,
            quantity=quantity,
            borrow_time=borrow_time,
            due_time=due_time,
            status=BorrowStatus.BORROWING,
            renew_count=0,
            remark=remark,
            deleted=False,
        )
        try:
            self.session.add(row)
            self.session.flush()
        except IntegrityError as e:
            self.session.rollback()
            raise DuplicateLoanError(
                f"User {user.user_id} already has an outstanding loan of book {book.id}"
            ) from e
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError("Failed to create borrow record") from e
        safe_commit(self.session, "create borrow record")
        self.session.refresh(row)
        return self._to_model(row)

    def mark_returned(self, record_id: int, return_time: datetime, remark: str | None) -> bool:
        """Close an outstanding loan. False when it was not outstanding any more."""
        values = {"status": BorrowStatus.RETURNED, "return_time": return_time}
        if remark is not None:
            values["remark"] = remark
        stmt = (
            update(BorrowDB)
            .where(
                BorrowDB.id == record_id,
                BorrowDB.deleted.is_(False),
                BorrowDB.status.in_(OUTSTANDING_STATUSES),
            )
            .values(**values)
        )
        return self._apply(stmt, "return loan")

    def renew(self, record: BorrowRecord, new_due_time: datetime, now: datetime) -> bool:
        """
        Extend a loan that is still exactly as ``record`` describes it.

        Returns False if the record changed since it was read, was swept,
        or became overdue in the meantime.
        """
        stmt = (
            update(BorrowDB)
            .where(
                BorrowDB.id == record.id,
                BorrowDB.deleted.is_(False),
                BorrowDB.status.in_(SWEEPABLE_STATUSES),
                BorrowDB.renew_count == record.renew_count,
                BorrowDB.due_time == record.due_time,
                BorrowDB.due_time >= now,
            )
            .values(
                due_time=new_due_time,
                renew_count=BorrowDB.renew_count + 1,
                status=BorrowStatus.BORROWING,
            )
        )
        return self._apply(stmt, "renew loan")

    def mark_overdue(self, now: datetime) -> int:
        """Move every loan past due to OVERDUE; returns how many moved."""
        stmt = (
            update(BorrowDB)
            .where(
                BorrowDB.deleted.is_(False),
                BorrowDB.status.in_(SWEEPABLE_STATUSES),
                BorrowDB.due_time < now,
            )
            .values(status=BorrowStatus.OVERDUE)
        )
        return self._execute_bulk(stmt, "mark overdue")

    def update_book_title(self, book_id: int, title: str) -> int:
        """Rewrite the title snapshot on every record of a book."""
        stmt = (
            update(BorrowDB)
            .where(BorrowDB.book_id == book_id, BorrowDB.deleted.is_(False))
            .values(book_title=title)
        )
        return self._execute_bulk(stmt, "update book title")

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _apply(self, stmt, operation: str) -> bool:
        return self._execute_bulk(stmt, operation) == 1

    def _execute_bulk(self, stmt, operation: str) -> int:
        try:
            result = self.session.execute(stmt.execution_options(synchronize_session=False))
        except SQLAlchemyError as e:
            self.session.rollback()
            raise RepositoryError(f"Database operation '{operation}' failed") from e
        safe_commit(self.session, operation)
        return result.rowcount

    @staticmethod
    def _to_model(row: BorrowDB) -> BorrowRecord:
        return BorrowRecord.model_validate(row, from_attributes=True)
