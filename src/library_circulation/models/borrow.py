"""
Borrow record models.

A borrow record is one loan of ``quantity`` copies of a book to a user.
Its status moves through a small state machine:

    BORROWING --renew--> BORROWING (renew_count + 1)
    BORROWING --sweep--> OVERDUE
    BORROWING/RENEWED/OVERDUE --return--> RETURNED   (terminal)

RENEWED is accepted for records written by older releases and is treated
exactly like BORROWING. Renewal is refused once a loan is OVERDUE.
"""

import math
from datetime import datetime
from enum import Enum

from pydantic import Field, computed_field, model_validator

from .envelope import CamelModel


class BorrowStatus(str, Enum):
    """Status of a borrow record."""

    BORROWING = "BORROWING"
    RETURNED = "RETURNED"
    OVERDUE = "OVERDUE"
    RENEWED = "RENEWED"

    @property
    def description(self) -> str:
        match self:
            case BorrowStatus.BORROWING:
                return "Borrowing"
            case BorrowStatus.RETURNED:
                return "Returned"
            case BorrowStatus.OVERDUE:
                return "Overdue"
            case BorrowStatus.RENEWED:
                return "Renewed"

    @property
    def is_outstanding(self) -> bool:
        """True while the copies are still out of the library."""
        return self in OUTSTANDING_STATUSES


OUTSTANDING_STATUSES = (BorrowStatus.BORROWING, BorrowStatus.OVERDUE, BorrowStatus.RENEWED)

# Statuses the overdue sweep moves to OVERDUE once past due.
SWEEPABLE_STATUSES = (BorrowStatus.BORROWING, BorrowStatus.RENEWED)


class BorrowRecord(CamelModel):
    """A loan as returned to clients."""

    id: int
    user_id: int
    username: str | None = None
    book_id: int
    book_isbn: str | None = None
    book_title: str | None = None
    quantity: int = Field(..., ge=1)
    borrow_time: datetime
    due_time: datetime
    return_time: datetime | None = None
    status: BorrowStatus = BorrowStatus.BORROWING
    renew_count: int = Field(default=0, ge=0)
    remark: str | None = None
    created_at: datetime | None = None

    overdue: bool = False
    overdue_days: int = 0

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status_desc(self) -> str:
        return self.status.description

    @model_validator(mode="after")
    def validate_timeline(self) -> "BorrowRecord":
        if self.due_time <= self.borrow_time:
            raise ValueError("Due time must be after borrow time")
        if self.return_time is not None and self.status != BorrowStatus.RETURNED:
            raise ValueError("Only returned records carry a return time")
        return self

    def with_overdue(self, now: datetime) -> "BorrowRecord":
        """Fill ``overdue``/``overdue_days`` as seen at ``now``.

        Outstanding loans are measured against ``now``; returned loans
        against their return time.
        """
        end = self.return_time if self.status == BorrowStatus.RETURNED else now
        if end is not None and end > self.due_time:
            days = (end - self.due_time).total_seconds() / 86400
            return self.model_copy(update={"overdue": True, "overdue_days": math.floor(days)})
        return self.model_copy(update={"overdue": False, "overdue_days": 0})


class BorrowRequest(CamelModel):
    """Request to borrow ``quantity`` copies of a book."""

    book_id: int = Field(..., ge=1)
    quantity: int = Field(default=1, ge=1)
    borrow_days: int | None = Field(
        default=None,
        ge=1,
        description="Loan period in days; the configured default applies when omitted",
    )
    remark: str | None = Field(default=None, max_length=500)


class ReturnRequest(CamelModel):
    borrow_id: int = Field(..., ge=1)
    remark: str | None = Field(default=None, max_length=500)


class RenewRequest(CamelModel):
    borrow_id: int = Field(..., ge=1)
    renew_days: int | None = Field(default=None, ge=1)


class BorrowQuery(CamelModel):
    """Filters for paginated borrow record queries."""

    user_id: int | None = None
    book_id: int | None = None
    book_title: str | None = None
    status: BorrowStatus | None = None
    borrow_start_time: datetime | None = None
    borrow_end_time: datetime | None = None
    overdue_only: bool = False


class BorrowStatistics(CamelModel):
    """Per-user loan counters."""

    total_borrowed: int
    current_borrowing: int
    overdue_count: int
