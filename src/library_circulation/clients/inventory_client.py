"""
Inventory ledger facade used by the borrow workflow.

Two implementations share one contract, every method returning an
``ApiResult`` instead of raising:

- ``HttpInventoryClient``: calls the inventory service over HTTP through a
  circuit breaker (production)
- ``LocalInventoryClient``: calls ``InventoryRepository`` in process
  (single-process deployments and tests)
"""

import logging
from collections.abc import Callable
from typing import Any, Protocol

import requests

from ..config import ServiceSettings
from ..database.inventory_repository import InventoryRepository
from ..database.session import DatabaseManager
from ..errors import LibraryError
from ..models.book import BookInfo
from ..models.envelope import ApiResult
from .circuit_breaker import BreakerConfig, CircuitBreaker
from .http import ServiceClient

logger = logging.getLogger(__name__)


class InventoryClient(Protocol):
    def get_book(self, book_id: int) -> ApiResult[BookInfo]: ...

    def check_available(self, book_id: int, quantity: int) -> ApiResult[bool]: ...

    def reserve(self, book_id: int, quantity: int) -> ApiResult[int]: ...

    def release(self, book_id: int, quantity: int) -> ApiResult[int]: ...


class HttpInventoryClient(ServiceClient):
    """Inventory facade over the inventory service's HTTP surface."""

    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        breaker: CircuitBreaker | None = None,
        session: requests.Session | None = None,
        api_key: str | None = None,
    ):
        super().__init__(
            "inventory", base_url, timeout, breaker=breaker, session=session, api_key=api_key
        )

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "HttpInventoryClient":
        return cls(
            settings.inventory_base_url,
            timeout=settings.inventory_timeout,
            breaker=CircuitBreaker("inventory", BreakerConfig.from_settings(settings)),
            api_key=settings.internal_api_key,
        )

    def get_book(self, book_id: int) -> ApiResult[BookInfo]:
        return self._call("GET", f"/books/{book_id}", BookInfo)

    def check_available(self, book_id: int, quantity: int) -> ApiResult[bool]:
        return self._call("GET", f"/books/{book_id}/stock/check", bool, params={"quantity": quantity})

    def reserve(self, book_id: int, quantity: int) -> ApiResult[int]:
        return self._call("POST", f"/books/{book_id}/stock/borrow", int, params={"quantity": quantity})

    def release(self, book_id: int, quantity: int) -> ApiResult[int]:
        return self._call("POST", f"/books/{book_id}/stock/return", int, params={"quantity": quantity})


class LocalInventoryClient:
    """Inventory facade backed directly by the inventory database."""

    def __init__(self, db: DatabaseManager):
        self.db = db

    def get_book(self, book_id: int) -> ApiResult[BookInfo]:
        return self._run(lambda repo: repo.require(book_id))

    def check_available(self, book_id: int, quantity: int) -> ApiResult[bool]:
        return self._run(lambda repo: repo.check_available(book_id, quantity))

    def reserve(self, book_id: int, quantity: int) -> ApiResult[int]:
        return self._run(lambda repo: repo.reserve(book_id, quantity))

    def release(self, book_id: int, quantity: int) -> ApiResult[int]:
        return self._run(lambda repo: repo.release(book_id, quantity))

    def _run(self, operation: Callable[[InventoryRepository], Any]) -> ApiResult[Any]:
        try:
            with self.db.session_scope() as session:
                return ApiResult.success(operation(InventoryRepository(session)))
        except LibraryError as e:
            return ApiResult.failure(e.code, e.message)
