"""
Book inventory models.

A book is identified by an opaque integer id. Its stock is tracked by two
counters owned by the inventory ledger:

- total_stock: copies owned
- available_stock: copies not currently lent, always 0 <= available <= total

Only LISTED books may be lent out.
"""

from datetime import datetime
from enum import Enum

from pydantic import Field, computed_field, field_validator, model_validator

from .envelope import CamelModel


class BookStatus(str, Enum):
    """Catalog listing status of a book."""

    LISTED = "LISTED"
    UNLISTED = "UNLISTED"

    @property
    def description(self) -> str:
        match self:
            case BookStatus.LISTED:
                return "Listed"
            case BookStatus.UNLISTED:
                return "Unlisted"


def normalize_isbn(v: str) -> str:
    """Strip separators and check the ISBN-10/ISBN-13 shape."""
    normalized = v.replace("-", "").replace(" ", "").upper()
    if len(normalized) not in (10, 13):
        raise ValueError("ISBN must be 10 or 13 characters")
    if not normalized[:-1].isdigit() or not (normalized[-1].isdigit() or normalized[-1] == "X"):
        raise ValueError("ISBN must be numeric (ISBN-10 may end with X)")
    return normalized


class BookInfo(CamelModel):
    """Book as exposed by the inventory service."""

    id: int
    isbn: str
    title: str
    author: str | None = None
    publisher: str | None = None
    total_stock: int = Field(..., ge=0)
    available_stock: int = Field(..., ge=0)
    status: BookStatus = BookStatus.LISTED
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @computed_field  # type: ignore[prop-decorator]
    @property
    def status_desc(self) -> str:
        return self.status.description

    @property
    def is_listed(self) -> bool:
        return self.status == BookStatus.LISTED

    @property
    def lent_out(self) -> int:
        """Number of copies currently on loan."""
        return self.total_stock - self.available_stock


class BookCreate(CamelModel):
    """Payload for a new catalog entry."""

    isbn: str = Field(..., examples=["9780134685479"])
    title: str = Field(..., min_length=1, max_length=255)
    author: str | None = Field(default=None, max_length=255)
    publisher: str | None = Field(default=None, max_length=255)
    total_stock: int = Field(default=1, ge=0)
    status: BookStatus = BookStatus.LISTED

    @field_validator("isbn")
    @classmethod
    def validate_isbn(cls, v: str) -> str:
        return normalize_isbn(v)

    @field_validator("title")
    @classmethod
    def strip_title(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Title must not be blank")
        return v


class BookUpdate(BookCreate):
    """Full replacement of a catalog entry's editable fields."""

    status: BookStatus | None = None  # type: ignore[assignment]


class StatusUpdate(CamelModel):
    status: BookStatus


class StockOperation(str, Enum):
    """Ledger operations available through the admin stock endpoint."""

    BORROW = "BORROW"
    RETURN = "RETURN"
    ADD = "ADD"
    REDUCE = "REDUCE"


class StockRequest(CamelModel):
    """Admin request to apply one ledger operation."""

    book_id: int
    quantity: int = Field(..., ge=1)
    operation_type: StockOperation


class BookQuery(CamelModel):
    """Filters for the catalog listing."""

    keyword: str | None = None
    status: BookStatus | None = None

    @model_validator(mode="after")
    def strip_keyword(self) -> "BookQuery":
        if self.keyword is not None:
            self.keyword = self.keyword.strip() or None
        return self
