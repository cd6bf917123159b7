"""Identity verifier facade: bearer token in, ``UserContext`` out."""

import logging

import requests
from pydantic import Field

from ..config import ServiceSettings
from ..context import ROLE_USER, UserContext
from ..errors import UnauthorizedError
from ..models.envelope import ApiResult, CamelModel
from .circuit_breaker import BreakerConfig, CircuitBreaker
from .http import ServiceClient

logger = logging.getLogger(__name__)

BEARER_PREFIX = "Bearer "


class TokenVerification(CamelModel):
    """Body of the identity service's verify answer."""

    valid: bool = False
    user_id: int | None = None
    username: str | None = None
    role: str = Field(default=ROLE_USER)
    expiration: int | None = None


class IdentityClient(ServiceClient):
    def __init__(
        self,
        base_url: str,
        timeout: float = 10.0,
        breaker: CircuitBreaker | None = None,
        session: requests.Session | None = None,
    ):
        super().__init__("identity", base_url, timeout, breaker=breaker, session=session)

    @classmethod
    def from_settings(cls, settings: ServiceSettings) -> "IdentityClient":
        return cls(
            settings.identity_base_url,
            timeout=settings.identity_timeout,
            breaker=CircuitBreaker("identity", BreakerConfig.from_settings(settings)),
        )

    def verify(self, token: str) -> ApiResult[UserContext]:
        """
        Resolve a bearer token to the caller's identity.

        Returns code 401 for an invalid or expired token and 503 when the
        identity service cannot be reached.
        """
        if not token.startswith(BEARER_PREFIX):
            token = BEARER_PREFIX + token
        result = self._call(
            "GET", "/auth/verify", TokenVerification, headers={"Authorization": token}
        )
        if not result.is_success:
            return ApiResult.failure(result.code, result.message)

        verification = result.data
        if verification is None or not verification.valid or verification.user_id is None:
            return ApiResult.failure(UnauthorizedError.code, "Invalid or expired token")
        return ApiResult.success(
            UserContext(
                user_id=verification.user_id,
                username=verification.username or "",
                role=verification.role,
            )
        )
