"""
Tests for the borrow workflow engine.

The engine runs against a real inventory database through
``LocalInventoryClient`` unless a test swaps in a mock to simulate a
downstream failure.
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from unittest.mock import MagicMock, patch

import pytest

from library_circulation.context import UserContext
from library_circulation.database.borrow_repository import BorrowRepository
from library_circulation.database.inventory_repository import InventoryRepository
from library_circulation.errors import (
    AlreadyReturnedError,
    BookUnavailableError,
    ConcurrentModificationError,
    DuplicateLoanError,
    ForbiddenError,
    InsufficientStockError,
    LoanOverdueError,
    NotFoundError,
    QuotaExceededError,
    RenewLimitError,
    RepositoryError,
    ServiceUnavailableError,
    ValidationError,
)
from library_circulation.models.book import BookStatus
from library_circulation.models.borrow import (
    BorrowQuery,
    BorrowRequest,
    BorrowStatus,
    RenewRequest,
    ReturnRequest,
)
from library_circulation.models.envelope import ApiResult
from library_circulation.services.borrow_service import BorrowService

from conftest import add_book


def available(inventory_db, book_id):
    with inventory_db.session_scope() as session:
        return InventoryRepository(session).require(book_id).available_stock


class TestBorrow:
    def test_borrow_reserves_stock_and_creates_record(self, borrow_service, inventory_db, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, quantity=2))

        assert record.status == BorrowStatus.BORROWING
        assert record.quantity == 2
        assert record.book_title == book.title
        assert record.username == "alice"
        assert available(inventory_db, book.id) == 1

    def test_due_time_follows_borrow_days(self, borrow_service, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=30))

        assert record.borrow_time == datetime(2024, 1, 1)
        assert record.due_time == datetime(2024, 1, 31)

    def test_default_borrow_days(self, borrow_service, book, alice, settings):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        assert record.due_time - record.borrow_time == timedelta(days=settings.default_borrow_days)

    def test_borrow_days_above_maximum_rejected(self, borrow_service, book, alice):
        with pytest.raises(ValidationError):
            borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=366))

    def test_quota_counts_loans_not_copies(self, borrow_service, inventory_db, alice):
        first = add_book(inventory_db, isbn="9780000000001", title="First", total_stock=5)
        second = add_book(inventory_db, isbn="9780000000002", title="Second", total_stock=5)
        third = add_book(inventory_db, isbn="9780000000003", title="Third")
        borrow_service.borrow(alice, BorrowRequest(book_id=first.id, quantity=5))
        borrow_service.borrow(alice, BorrowRequest(book_id=second.id, quantity=5))

        record = borrow_service.borrow(alice, BorrowRequest(book_id=third.id))

        assert record.quantity == 1
        assert borrow_service.count_outstanding(alice) == 3
        assert borrow_service.statistics(alice).current_borrowing == 3

    def test_quota_counts_outstanding_loans(self, borrow_service, inventory_db, alice):
        for i in range(9):
            b = add_book(inventory_db, isbn=f"978000000000{i}", title=f"Book {i}")
            borrow_service.borrow(alice, BorrowRequest(book_id=b.id))
        target = add_book(inventory_db, isbn="9781111111111", title="Tenth", total_stock=5)

        with pytest.raises(QuotaExceededError):
            borrow_service.borrow(alice, BorrowRequest(book_id=target.id, quantity=2))
        assert available(inventory_db, target.id) == 5

        # 9 + 1 is still within the quota of 10
        borrow_service.borrow(alice, BorrowRequest(book_id=target.id, quantity=1))

    def test_duplicate_loan_rejected(self, borrow_service, inventory_db, book, alice):
        borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        with pytest.raises(DuplicateLoanError):
            borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        assert available(inventory_db, book.id) == 2

    def test_no_stock_rejected(self, borrow_service, inventory_db, alice, bob):
        book = add_book(inventory_db, total_stock=3)
        with inventory_db.session_scope() as session:
            InventoryRepository(session).reserve(book.id, 3)

        with pytest.raises(InsufficientStockError):
            borrow_service.borrow(alice, BorrowRequest(book_id=book.id))

    def test_unlisted_book_rejected(self, borrow_service, inventory_db, alice):
        book = add_book(inventory_db, status=BookStatus.UNLISTED)
        with pytest.raises(BookUnavailableError):
            borrow_service.borrow(alice, BorrowRequest(book_id=book.id))

    def test_unknown_book(self, borrow_service, alice, inventory_db):
        with pytest.raises(NotFoundError):
            borrow_service.borrow(alice, BorrowRequest(book_id=404))

    def test_inventory_down_is_service_unavailable(self, borrow_db, settings, clock, alice):
        inventory = MagicMock()
        inventory.get_book.return_value = ApiResult.failure(503, "inventory service unavailable: timed out")
        service = BorrowService(borrow_db, inventory, settings=settings, clock=clock)

        with pytest.raises(ServiceUnavailableError):
            service.borrow(alice, BorrowRequest(book_id=1))
        inventory.reserve.assert_not_called()

    def test_lost_reservation_race_is_insufficient_stock(self, borrow_db, inventory_client, settings, clock, book, alice):
        inventory = MagicMock(wraps=inventory_client)
        inventory.reserve.return_value = ApiResult.failure(409, "Insufficient stock for book")
        service = BorrowService(borrow_db, inventory, settings=settings, clock=clock)

        with pytest.raises(InsufficientStockError):
            service.borrow(alice, BorrowRequest(book_id=book.id))
        with borrow_db.session_scope() as session:
            assert BorrowRepository(session).count_outstanding(alice.user_id) == 0

    def test_failed_record_write_releases_reservation(self, borrow_service, inventory_db, book, alice):
        with patch.object(BorrowRepository, "create", side_effect=RepositoryError("disk full")):
            with pytest.raises(RepositoryError):
                borrow_service.borrow(alice, BorrowRequest(book_id=book.id, quantity=2))

        assert available(inventory_db, book.id) == 3

    def test_failed_compensation_is_logged(self, borrow_db, inventory_client, settings, clock, book, alice, caplog):
        inventory = MagicMock(wraps=inventory_client)
        inventory.release.return_value = ApiResult.failure(503, "inventory service unavailable")
        service = BorrowService(borrow_db, inventory, settings=settings, clock=clock)

        with patch.object(BorrowRepository, "create", side_effect=RepositoryError("disk full")):
            with pytest.raises(RepositoryError):
                service.borrow(alice, BorrowRequest(book_id=book.id))

        assert any("RECONCILE" in r.getMessage() for r in caplog.records)

    def test_concurrent_borrows_never_oversell(self, borrow_service, inventory_db):
        book = add_book(inventory_db, total_stock=2)
        users = [UserContext(user_id=100 + i, username=f"user{i}") for i in range(6)]

        def attempt(user):
            try:
                borrow_service.borrow(user, BorrowRequest(book_id=book.id))
                return True
            except InsufficientStockError:
                return False

        with ThreadPoolExecutor(max_workers=6) as pool:
            outcomes = list(pool.map(attempt, users))

        assert outcomes.count(True) == 2
        assert available(inventory_db, book.id) == 0


class TestReturn:
    def test_return_releases_stock(self, borrow_service, inventory_db, book, alice, clock):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, quantity=2))
        clock.advance(days=3)

        returned = borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id, remark="ok"))

        assert returned.status == BorrowStatus.RETURNED
        assert returned.return_time == clock.now
        assert returned.remark == "ok"
        assert returned.overdue is False
        assert available(inventory_db, book.id) == 3

    def test_double_return_rejected(self, borrow_service, inventory_db, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id))

        with pytest.raises(AlreadyReturnedError):
            borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id))
        assert available(inventory_db, book.id) == 3

    def test_return_of_someone_elses_loan_forbidden(self, borrow_service, book, alice, bob):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        with pytest.raises(ForbiddenError):
            borrow_service.return_book(bob, ReturnRequest(borrow_id=record.id))

    def test_return_unknown_record(self, borrow_service, alice):
        with pytest.raises(NotFoundError):
            borrow_service.return_book(alice, ReturnRequest(borrow_id=12345))

    def test_failed_release_leaves_record_untouched(self, borrow_db, inventory_client, settings, clock, book, alice):
        service = BorrowService(borrow_db, inventory_client, settings=settings, clock=clock)
        record = service.borrow(alice, BorrowRequest(book_id=book.id))

        inventory = MagicMock(wraps=inventory_client)
        inventory.release.return_value = ApiResult.failure(503, "inventory service unavailable")
        service.inventory = inventory

        with pytest.raises(ServiceUnavailableError):
            service.return_book(alice, ReturnRequest(borrow_id=record.id))
        assert service.get_record(alice, record.id).status == BorrowStatus.BORROWING

    def test_overdue_loan_can_be_returned(self, borrow_service, book, alice, clock):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=10))
        clock.advance(days=12)
        borrow_service.check_overdue()

        returned = borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id))
        assert returned.status == BorrowStatus.RETURNED
        assert returned.overdue is True
        assert returned.overdue_days == 2

    def test_lost_close_race_restores_stock(self, borrow_service, inventory_db, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))

        with patch.object(BorrowRepository, "mark_returned", return_value=False):
            with pytest.raises(AlreadyReturnedError):
                borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id))

        assert available(inventory_db, book.id) == 2


class TestRenew:
    def test_renew_at_due_time(self, borrow_service, book, alice, clock):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=30))
        clock.now = datetime(2024, 1, 31)

        renewed = borrow_service.renew(alice, RenewRequest(borrow_id=record.id, renew_days=15))

        assert renewed.due_time == datetime(2024, 2, 15)
        assert renewed.renew_count == 1
        assert renewed.status == BorrowStatus.BORROWING

    def test_renew_limit(self, borrow_service, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        borrow_service.renew(alice, RenewRequest(borrow_id=record.id))
        borrow_service.renew(alice, RenewRequest(borrow_id=record.id))

        with pytest.raises(RenewLimitError):
            borrow_service.renew(alice, RenewRequest(borrow_id=record.id))

    def test_renew_after_due_time_rejected(self, borrow_service, book, alice, clock):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=30))
        clock.now = datetime(2024, 1, 31, 0, 0, 1)

        with pytest.raises(LoanOverdueError):
            borrow_service.renew(alice, RenewRequest(borrow_id=record.id))

    def test_renew_of_swept_loan_rejected(self, borrow_service, book, alice, clock):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=5))
        clock.advance(days=6)
        borrow_service.check_overdue()

        with pytest.raises(LoanOverdueError):
            borrow_service.renew(alice, RenewRequest(borrow_id=record.id))

    def test_renew_returned_loan_rejected(self, borrow_service, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id))

        with pytest.raises(AlreadyReturnedError):
            borrow_service.renew(alice, RenewRequest(borrow_id=record.id))

    def test_renew_forbidden_for_other_user(self, borrow_service, book, alice, bob):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        with pytest.raises(ForbiddenError):
            borrow_service.renew(bob, RenewRequest(borrow_id=record.id))

    def test_concurrent_modification_detected(self, borrow_service, book, alice):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        with patch.object(BorrowRepository, "renew", return_value=False):
            with pytest.raises(ConcurrentModificationError):
                borrow_service.renew(alice, RenewRequest(borrow_id=record.id))


class TestSweepAndQueries:
    def test_sweep_twice_transitions_nothing_the_second_time(self, borrow_service, inventory_db, alice, bob, clock):
        first = add_book(inventory_db, isbn="9780000000001", title="One")
        second = add_book(inventory_db, isbn="9780000000002", title="Two")
        borrow_service.borrow(alice, BorrowRequest(book_id=first.id, borrow_days=3))
        borrow_service.borrow(bob, BorrowRequest(book_id=second.id, borrow_days=3))
        clock.advance(days=4)

        assert borrow_service.check_overdue() == 2
        assert borrow_service.check_overdue() == 0

    def test_get_record_visibility(self, borrow_service, book, alice, bob, admin):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id))

        assert borrow_service.get_record(alice, record.id).id == record.id
        assert borrow_service.get_record(admin, record.id).id == record.id
        with pytest.raises(ForbiddenError):
            borrow_service.get_record(bob, record.id)

    def test_my_records_ignores_requested_user(self, borrow_service, inventory_db, book, alice, bob):
        borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        borrow_service.borrow(bob, BorrowRequest(book_id=book.id))

        page = borrow_service.my_records(alice, BorrowQuery(user_id=bob.user_id))
        assert [r.user_id for r in page.records] == [alice.user_id]

    def test_user_records_require_self_or_admin(self, borrow_service, book, alice, bob, admin):
        borrow_service.borrow(alice, BorrowRequest(book_id=book.id))

        assert borrow_service.user_records(admin, alice.user_id).total == 1
        returned = BorrowQuery(status=BorrowStatus.RETURNED)
        assert borrow_service.user_records(admin, alice.user_id, returned).total == 0
        with pytest.raises(ForbiddenError):
            borrow_service.user_records(bob, alice.user_id)

    def test_records_are_enriched_with_overdue_days(self, borrow_service, book, alice, clock):
        borrow_service.borrow(alice, BorrowRequest(book_id=book.id, borrow_days=10))
        clock.advance(days=13, hours=2)

        page = borrow_service.my_records(alice, BorrowQuery())
        assert page.records[0].overdue is True
        assert page.records[0].overdue_days == 3

    def test_count_and_statistics(self, borrow_service, book, alice, bob):
        record = borrow_service.borrow(alice, BorrowRequest(book_id=book.id, quantity=2))
        assert borrow_service.count_outstanding(alice) == 1

        borrow_service.return_book(alice, ReturnRequest(borrow_id=record.id))
        stats = borrow_service.statistics(alice)
        assert (stats.total_borrowed, stats.current_borrowing, stats.overdue_count) == (1, 0, 0)

        with pytest.raises(ForbiddenError):
            borrow_service.statistics(bob, alice.user_id)

    def test_update_book_title(self, borrow_service, book, alice):
        borrow_service.borrow(alice, BorrowRequest(book_id=book.id))
        assert borrow_service.update_book_title(book.id, "  New Title ") == 1
        assert borrow_service.my_records(alice, BorrowQuery()).records[0].book_title == "New Title"

        with pytest.raises(ValidationError):
            borrow_service.update_book_title(book.id, "   ")
