"""
Pydantic models shared by the inventory and borrow services.

- envelope: uniform ``ApiResult`` response wrapper and ``PageResult``
- book: inventory view of a catalog entry and stock operations
- borrow: borrow records, their status machine and request payloads
"""

from .book import BookCreate, BookInfo, BookQuery, BookStatus, BookUpdate, StockOperation, StockRequest
from .borrow import (
    OUTSTANDING_STATUSES,
    BorrowQuery,
    BorrowRecord,
    BorrowRequest,
    BorrowStatistics,
    BorrowStatus,
    RenewRequest,
    ReturnRequest,
)
from .envelope import ApiResult, CamelModel, PageResult

__all__ = [
    "OUTSTANDING_STATUSES",
    "ApiResult",
    "BookCreate",
    "BookInfo",
    "BookQuery",
    "BookStatus",
    "BookUpdate",
    "BorrowQuery",
    "BorrowRecord",
    "BorrowRequest",
    "BorrowStatistics",
    "BorrowStatus",
    "CamelModel",
    "PageResult",
    "RenewRequest",
    "ReturnRequest",
    "StockOperation",
    "StockRequest",
]
