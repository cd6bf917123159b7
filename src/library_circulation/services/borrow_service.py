"""
Borrow workflow engine.

Coordinates the borrow service's own record store with the inventory ledger,
which lives in another service and is reached only through an
``InventoryClient``. There is no transaction spanning both, so each workflow
is a short sequence of individually atomic steps:

BORROW
    1. quota:      outstanding loans + quantity <= max_borrow_count
    2. duplicate:  no outstanding loan of the same book
    3. book:       fetched through the facade, must be LISTED
    4. pre-check:  check_available (cheap early rejection only)
    5. reserve:    the ledger's conditional decrement, the authoritative guard
    6. record:     insert the BORROWING record; if that fails the
                   reservation is released again (compensation)

RETURN
    release stock first, then close the record with a conditional UPDATE.
    A failed release leaves the record untouched so the caller can retry.
    If another return closed the record in the meantime, the extra release
    is undone by reserving the copies again.

RENEW
    status, renew count and due time are checked against the loaded record
    and then enforced again by an optimistic conditional UPDATE.

The engine keeps no state between calls. The caller's identity arrives as
an explicit ``UserContext`` argument.
"""

import logging
from collections.abc import Callable
from datetime import datetime, timedelta

from ..config import ServiceSettings, get_settings
from ..context import UserContext
from ..database.borrow_repository import BorrowRepository
from ..database.repository import PaginationParams
from ..database.session import DatabaseManager
from ..errors import (
    AlreadyReturnedError,
    BookUnavailableError,
    ConcurrentModificationError,
    ConflictError,
    DuplicateLoanError,
    ForbiddenError,
    InsufficientStockError,
    LibraryError,
    LoanOverdueError,
    NotFoundError,
    QuotaExceededError,
    RenewLimitError,
    ServiceUnavailableError,
    ValidationError,
    error_for_code,
)
from ..models.book import BookInfo
from ..models.borrow import (
    BorrowQuery,
    BorrowRecord,
    BorrowRequest,
    BorrowStatistics,
    BorrowStatus,
    RenewRequest,
    ReturnRequest,
)
from ..models.envelope import ApiResult, PageResult
from ..observability import trace_operation

logger = logging.getLogger(__name__)


def downstream_error(result: ApiResult, conflict: type[ConflictError] = ConflictError) -> LibraryError:
    """Turn a failed facade result into the typed error the caller should see."""
    if result.code == ServiceUnavailableError.code:
        return ServiceUnavailableError(result.message)
    if result.code == ConflictError.code:
        return conflict(result.message)
    return error_for_code(result.code, result.message)


class BorrowService:
    """Borrow, return and renew loans; query and sweep borrow records."""

    def __init__(
        self,
        db: DatabaseManager,
        inventory,
        settings: ServiceSettings | None = None,
        clock: Callable[[], datetime] = datetime.now,
    ):
        self.db = db
        self.inventory = inventory
        self.settings = settings or get_settings()
        self.clock = clock

    # ------------------------------------------------------------------
    # Workflows
    # ------------------------------------------------------------------

    @trace_operation("borrow")
    def borrow(self, user: UserContext, request: BorrowRequest) -> BorrowRecord:
        """
        Lend ``request.quantity`` copies of a book to ``user``.

        Raises:
            ValidationError: Loan period outside 1..max_borrow_days
            QuotaExceededError: The loan would exceed the user's quota
            DuplicateLoanError: The user already holds this book
            NotFoundError: The book does not exist
            BookUnavailableError: The book is not LISTED
            InsufficientStockError: Not enough copies free
            ServiceUnavailableError: The inventory service cannot be reached
        """
        borrow_days = request.borrow_days or self.settings.default_borrow_days
        if borrow_days > self.settings.max_borrow_days:
            raise ValidationError(f"borrowDays must be between 1 and {self.settings.max_borrow_days}")
        quantity = request.quantity

        with self.db.session_scope() as session:
            repo = BorrowRepository(session)
            outstanding = repo.count_outstanding(user.user_id)
            if outstanding + quantity > self.settings.max_borrow_count:
                logger.info(
                    "Borrow rejected: user %s holds %d, asks %d, quota %d",
                    user.user_id,
                    outstanding,
                    quantity,
                    self.settings.max_borrow_count,
                )
                raise QuotaExceededError(
                    f"Borrowing {quantity} more would exceed the limit of "
                    f"{self.settings.max_borrow_count} (currently {outstanding})"
                )
            if repo.find_outstanding(user.user_id, request.book_id) is not None:
                raise DuplicateLoanError(f"Book {request.book_id} is already on loan to you")

        book = self._fetch_book(request.book_id)
        if not book.is_listed:
            raise BookUnavailableError(f"Book {book.id} is not available for borrowing")

        check = self.inventory.check_available(book.id, quantity)
        if not check.is_success:
            raise downstream_error(check, InsufficientStockError)
        if not check.data:
            raise InsufficientStockError(f"Insufficient stock for book {book.id}")

        reserved = self.inventory.reserve(book.id, quantity)
        if not reserved.is_success:
            logger.info("Reservation of book %s failed: %s", book.id, reserved.message)
            raise downstream_error(reserved, InsufficientStockError)

        now = self.clock()
        try:
            with self.db.session_scope() as session:
                record = BorrowRepository(session).create(
                    user,
                    book,
                    quantity,
                    borrow_time=now,
                    due_time=now + timedelta(days=borrow_days),
                    remark=request.remark,
                )
        except Exception:
            self._compensate_release(book.id, quantity)
            raise

        logger.info(
            "User %s borrowed %d of book %s (record %s, due %s)",
            user.user_id,
            quantity,
            book.id,
            record.id,
            record.due_time.isoformat(),
        )
        return record.with_overdue(now)

    @trace_operation("return")
    def return_book(self, user: UserContext, request: ReturnRequest) -> BorrowRecord:
        """
        Close a loan and put its copies back on the shelf.

        Raises:
            NotFoundError / ForbiddenError: Record absent or not the caller's
            AlreadyReturnedError: The loan is already closed
            ServiceUnavailableError: The inventory service cannot be reached
        """
        with self.db.session_scope() as session:
            record = self._load_own(BorrowRepository(session), user, request.borrow_id)
        if record.status == BorrowStatus.RETURNED:
            raise AlreadyReturnedError(f"Borrow record {record.id} has already been returned")

        released = self.inventory.release(record.book_id, record.quantity)
        if not released.is_success:
            logger.warning("Return of record %s failed at release: %s", record.id, released.message)
            raise downstream_error(released)

        now = self.clock()
        try:
            with self.db.session_scope() as session:
                repo = BorrowRepository(session)
                closed = repo.mark_returned(record.id, now, request.remark)
                updated = repo.get(record.id) if closed else None
        except Exception:
            self._compensate_reserve(record.book_id, record.quantity)
            raise
        if not closed:
            self._compensate_reserve(record.book_id, record.quantity)
            raise AlreadyReturnedError(f"Borrow record {record.id} has already been returned")

        logger.info("User %s returned record %s", user.user_id, record.id)
        return updated.with_overdue(now)

    @trace_operation("renew")
    def renew(self, user: UserContext, request: RenewRequest) -> BorrowRecord:
        """
        Push the due time of an active loan back by ``renew_days``.

        Raises:
            AlreadyReturnedError: The loan is closed
            LoanOverdueError: The loan is past due (it must be returned)
            RenewLimitError: max_renew_count renewals already used
            ConcurrentModificationError: The record changed while renewing
        """
        renew_days = request.renew_days or self.settings.default_renew_days
        if renew_days > self.settings.max_borrow_days:
            raise ValidationError(f"renewDays must be between 1 and {self.settings.max_borrow_days}")
        now = self.clock()

        with self.db.session_scope() as session:
            repo = BorrowRepository(session)
            record = self._load_own(repo, user, request.borrow_id)

            match record.status:
                case BorrowStatus.RETURNED:
                    raise AlreadyReturnedError(f"Borrow record {record.id} has already been returned")
                case BorrowStatus.OVERDUE:
                    raise LoanOverdueError(f"Borrow record {record.id} is overdue, please return it")
                case BorrowStatus.BORROWING | BorrowStatus.RENEWED:
                    pass

            if record.renew_count >= self.settings.max_renew_count:
                raise RenewLimitError(
                    f"Borrow record {record.id} has reached the renewal limit "
                    f"({self.settings.max_renew_count})"
                )
            if now > record.due_time:
                raise LoanOverdueError(f"Borrow record {record.id} is overdue, please return it")

            new_due = record.due_time + timedelta(days=renew_days)
            if not repo.renew(record, new_due, now):
                raise ConcurrentModificationError(
                    f"Borrow record {record.id} was modified concurrently, please retry"
                )
            updated = repo.get(record.id)

        logger.info(
            "User %s renewed record %s until %s", user.user_id, record.id, new_due.isoformat()
        )
        return updated.with_overdue(now)

    @trace_operation("check_overdue")
    def check_overdue(self) -> int:
        """Move every loan past due to OVERDUE; returns how many moved."""
        now = self.clock()
        with self.db.session_scope() as session:
            count = BorrowRepository(session).mark_overdue(now)
        logger.info("Overdue sweep at %s marked %d records", now.isoformat(), count)
        return count

    def update_book_title(self, book_id: int, title: str) -> int:
        title = title.strip()
        if not title:
            raise ValidationError("Title must not be blank")
        with self.db.session_scope() as session:
            count = BorrowRepository(session).update_book_title(book_id, title)
        logger.info("Updated title of book %s on %d borrow records", book_id, count)
        return count

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_record(self, user: UserContext, record_id: int) -> BorrowRecord:
        with self.db.session_scope() as session:
            record = BorrowRepository(session).get(record_id)
        if record is None:
            raise NotFoundError(f"Borrow record {record_id} not found")
        if not user.can_access(record.user_id):
            raise ForbiddenError("You may only view your own borrow records")
        return record.with_overdue(self.clock())

    def my_records(
        self, user: UserContext, query: BorrowQuery, pagination: PaginationParams | None = None
    ) -> PageResult[BorrowRecord]:
        return self.search(query.model_copy(update={"user_id": user.user_id}), pagination)

    def user_records(
        self,
        user: UserContext,
        user_id: int,
        query: BorrowQuery | None = None,
        pagination: PaginationParams | None = None,
    ) -> PageResult[BorrowRecord]:
        if not user.can_access(user_id):
            raise ForbiddenError("You may only view your own borrow records")
        return self.search((query or BorrowQuery()).model_copy(update={"user_id": user_id}), pagination)

    def search(
        self, query: BorrowQuery, pagination: PaginationParams | None = None
    ) -> PageResult[BorrowRecord]:
        now = self.clock()
        with self.db.session_scope() as session:
            page = BorrowRepository(session).search(query, pagination, now=now)
        return page.model_copy(update={"records": [r.with_overdue(now) for r in page.records]})

    def count_outstanding(self, user: UserContext) -> int:
        with self.db.session_scope() as session:
            return BorrowRepository(session).count_outstanding(user.user_id)

    def statistics(self, user: UserContext, user_id: int | None = None) -> BorrowStatistics:
        target = user.user_id if user_id is None else user_id
        if not user.can_access(target):
            raise ForbiddenError("You may only view your own statistics")
        with self.db.session_scope() as session:
            return BorrowRepository(session).statistics(target)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _fetch_book(self, book_id: int) -> BookInfo:
        result = self.inventory.get_book(book_id)
        if not result.is_success or result.data is None:
            raise downstream_error(result, BookUnavailableError)
        return result.data

    @staticmethod
    def _load_own(repo: BorrowRepository, user: UserContext, record_id: int) -> BorrowRecord:
        record = repo.get(record_id)
        if record is None:
            raise NotFoundError(f"Borrow record {record_id} not found")
        if record.user_id != user.user_id:
            raise ForbiddenError("You may only manage your own borrow records")
        return record

    def _compensate_release(self, book_id: int, quantity: int) -> None:
        result = self.inventory.release(book_id, quantity)
        if result.is_success:
            logger.warning("Released %d of book %s after a failed borrow", quantity, book_id)
        else:
            logger.error(
                "RECONCILE: failed to release %d of book %s after a failed borrow: %s",
                quantity,
                book_id,
                result.message,
            )

    def _compensate_reserve(self, book_id: int, quantity: int) -> None:
        result = self.inventory.reserve(book_id, quantity)
        if result.is_success:
            logger.warning("Re-reserved %d of book %s after a failed return", quantity, book_id)
        else:
            logger.error(
                "RECONCILE: failed to re-reserve %d of book %s after a failed return: %s",
                quantity,
                book_id,
                result.message,
            )
