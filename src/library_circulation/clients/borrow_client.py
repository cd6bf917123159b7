"""Client the catalog uses to push book renames into the borrow service."""

import logging

import requests

from ..config import ServiceSettings
from ..models.envelope import ApiResult
from .circuit_breaker import BreakerConfig, CircuitBreaker
from .http import ServiceClient

logger = logging.getLogger(__name__)


class BorrowClient(ServiceClient):
    def __init__(
        self,
        base_url: str,
        timeout: float = 5.0,
        breaker: CircuitBreaker | None = None,
        session: requests.Session | None = None,
        api_key: str | None = None,
    ):
        super().__init__(
            "borrow", base_url, timeout, breaker=breaker, session=session, api_key=api_key
        )

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "BorrowClient":
        return cls(
            settings.borrow_base_url,
            timeout=settings.borrow_timeout,
            breaker=CircuitBreaker("borrow", BreakerConfig.from_settings(settings)),
            api_key=settings.internal_api_key,
        )

    def update_book_title(self, book_id: int, title: str) -> ApiResult[int]:
        """Rewrite the title snapshot on the book's borrow records; data is the row count."""
        return self._call(
            "PUT", f"/internal/borrow/book/{book_id}/title", int, params={"title": title}
        )
