"""
Shared repository helpers: pagination of SELECT statements.

Repositories return Pydantic models, never ORM rows, so that callers can
serialize results without holding a session open.
"""

from collections.abc import Callable
from typing import TypeVar

from pydantic import BaseModel
from sqlalchemy import Select, func, select
from sqlalchemy.orm import Session

from ..errors import ValidationError
from ..models.envelope import PageResult
from .session import safe_query

ResponseSchemaType = TypeVar("ResponseSchemaType", bound=BaseModel)

DEFAULT_PAGE_SIZE = 10
MAX_PAGE_SIZE = 100


class PaginationParams(BaseModel):
    """1-based page number and page size; oversized pages are capped, not rejected."""

    page_num: int = 1
    page_size: int = DEFAULT_PAGE_SIZE
    max_page_size: int = MAX_PAGE_SIZE

    @property
    def offset(self) -> int:
        return (self.page_num - 1) * self.effective_page_size

    @property
    def effective_page_size(self) -> int:
        return min(self.page_size, self.max_page_size)

    def validate_params(self) -> None:
        if self.page_num < 1:
            raise ValidationError("pageNum must be >= 1")
        if self.page_size < 1:
            raise ValidationError("pageSize must be >= 1")


def paginate(
    session: Session,
    query: Select,
    pagination: PaginationParams | None,
    to_model: Callable[[object], ResponseSchemaType],
) -> PageResult[ResponseSchemaType]:
    """Count ``query``, fetch one page of it and convert rows with ``to_model``."""
    if pagination is None:
        pagination = PaginationParams()
    pagination.validate_params()

    count_query = select(func.count()).select_from(query.order_by(None).subquery())
    total = (
        safe_query(
            session,
            lambda s: s.execute(count_query).scalar(),
            "Failed to count total for pagination",
        )
        or 0
    )

    page_query = query.offset(pagination.offset).limit(pagination.effective_page_size)
    rows = safe_query(
        session,
        lambda s: s.execute(page_query).scalars().all(),
        "Failed to get paginated results",
    )

    return PageResult.of(
        records=[to_model(row) for row in rows],
        total=total,
        page_num=pagination.page_num,
        page_size=pagination.effective_page_size,
    )
