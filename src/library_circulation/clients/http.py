"""
Shared plumbing for calls to a downstream service over HTTP.

``ServiceClient._call`` never raises for network trouble. A timeout, a
transport error, a 5xx answer, an unreadable body, or an open circuit all
come back as an ``ApiResult`` with code 503. Any other answer is parsed as
the downstream's own envelope and handed back untouched, so 4xx business
failures keep their code and message.
"""

import logging
import time
from typing import Any

import requests

from ..errors import ServiceUnavailableError
from ..models.envelope import ApiResult
from .circuit_breaker import CircuitBreaker

logger = logging.getLogger(__name__)

API_KEY_HEADER = "X-API-Key"


class ServiceClient:
    """Base class for one downstream service behind one circuit breaker."""

    def __init__(
        self,
        name: str,
        base_url: str,
        timeout: float,
        breaker: CircuitBreaker | None = None,
        session: requests.Session | None = None,
        api_key: str | None = None,
    ):
        self.name = name
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.breaker = breaker or CircuitBreaker(name)
        self.session = session or requests.Session()
        self.api_key = api_key

    def close(self) -> None:
        self.session.close()

    def _unavailable(self, reason: str) -> ApiResult[Any]:
        return ApiResult.failure(
            ServiceUnavailableError.code, f"{self.name} service unavailable: {reason}"
        )

    def _call(
        self,
        method: str,
        path: str,
        result_type: Any,
        params: dict[str, Any] | None = None,
        json: Any = None,
        headers: dict[str, str] | None = None,
    ) -> ApiResult[Any]:
        if not self.breaker.allow_request():
            logger.warning("%s %s short-circuited: circuit open", method, path)
            return self._unavailable("circuit open")

        request_headers = dict(headers or {})
        if self.api_key:
            request_headers[API_KEY_HEADER] = self.api_key

        url = f"{self.base_url}{path}"
        start = time.monotonic()
        try:
            resp = self.session.request(
                method,
                url,
                params=params,
                json=json,
                headers=request_headers,
                timeout=self.timeout,
            )
        except requests.Timeout:
            self.breaker.record_failure(time.monotonic() - start)
            logger.warning("%s %s timed out after %.1fs", method, url, self.timeout)
            return self._unavailable("timed out")
        except requests.RequestException as e:
            self.breaker.record_failure(time.monotonic() - start)
            logger.warning("%s %s failed: %s", method, url, e)
            return self._unavailable("connection failed")

        elapsed = time.monotonic() - start
        if resp.status_code >= 500:
            self.breaker.record_failure(elapsed)
            logger.warning("%s %s returned %d", method, url, resp.status_code)
            return self._unavailable(f"upstream returned {resp.status_code}")

        self.breaker.record_success(elapsed)
        try:
            return ApiResult[result_type].model_validate(resp.json())
        except ValueError:
            logger.warning("%s %s returned an unreadable body (HTTP %d)", method, url, resp.status_code)
            return self._unavailable("invalid response")
