"""
Uniform response envelope and pagination models.

Every HTTP response of both services, success or failure, is an
``ApiResult``: ``{code, message, data, timestamp}`` where ``code == 200``
signals success. The same model is parsed back by the capability clients,
so a remote failure arrives as a typed value rather than an exception.
"""

import time
from typing import Generic, TypeVar

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

T = TypeVar("T")

SUCCESS_CODE = 200


class CamelModel(BaseModel):
    """Base model that speaks camelCase on the wire and snake_case in Python."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )


def _now_millis() -> int:
    return int(time.time() * 1000)


class ApiResult(CamelModel, Generic[T]):
    """Uniform envelope for every response."""

    code: int = SUCCESS_CODE
    message: str = "OK"
    data: T | None = None
    timestamp: int = Field(default_factory=_now_millis)

    @property
    def is_success(self) -> bool:
        return self.code == SUCCESS_CODE

    @classmethod
    def success(cls, data: T | None = None, message: str = "OK") -> "ApiResult[T]":
        return cls(code=SUCCESS_CODE, message=message, data=data)

    @classmethod
    def failure(cls, code: int, message: str) -> "ApiResult[T]":
        return cls(code=code, message=message, data=None)


class PageResult(CamelModel, Generic[T]):
    """One page of a filtered query."""

    records: list[T]
    total: int
    page_num: int
    page_size: int
    pages: int
    has_next: bool
    has_previous: bool

    @classmethod
    def of(cls, records: list[T], total: int, page_num: int, page_size: int) -> "PageResult[T]":
        return cls(
            records=records,
            total=total,
            page_num=page_num,
            page_size=page_size,
            pages=(total + page_size - 1) // page_size,
            has_next=page_num * page_size < total,
            has_previous=page_num > 1,
        )
