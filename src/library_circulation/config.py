"""Configuration management for the library circulation services.

Both services (inventory and borrow) read the same settings class; each only
uses the fields that concern it:
1. Storage - one database URL per service
2. Borrowing rules - quota, renewal limit, default loan periods
3. Downstream calls - base URLs, timeouts and circuit breaker tuning
4. Scheduling - overdue sweep interval
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    """Settings shared by the inventory and borrow services.

    Every field can be overridden with a ``LIBRARY_``-prefixed environment
    variable, e.g. ``LIBRARY_MAX_BORROW_COUNT=5``.
    """

    model_config = SettingsConfigDict(
        env_prefix="LIBRARY_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # === Service Metadata ===

    service_name: str = Field(
        default="library-borrow",
        description="Name reported in logs and traces",
        pattern=r"^[a-z0-9-]+$",
    )

    environment: str = Field(
        default="development",
        description="Deployment environment label for traces",
    )

    debug: bool = Field(default=False, description="Enable debug logging")

    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR)",
        pattern=r"^(DEBUG|INFO|WARNING|ERROR)$",
    )

    # === Database Configuration ===

    borrow_database_url: str = Field(
        default="sqlite:///data/borrow.db",
        description="SQLAlchemy URL of the borrow record store",
    )

    inventory_database_url: str = Field(
        default="sqlite:///data/inventory.db",
        description="SQLAlchemy URL of the inventory ledger",
    )

    # === Borrowing Rules ===

    max_borrow_count: int = Field(
        default=10,
        description="Maximum number of outstanding copies per user",
        ge=1,
    )

    max_renew_count: int = Field(
        default=2,
        description="Maximum renewals per loan",
        ge=0,
    )

    default_borrow_days: int = Field(default=30, ge=1)
    default_renew_days: int = Field(default=15, ge=1)
    max_borrow_days: int = Field(default=365, ge=1)

    # === Pagination ===

    default_page_size: int = Field(default=10, ge=1)
    max_page_size: int = Field(default=100, ge=1)

    # === Downstream Services ===

    inventory_base_url: str = Field(default="http://127.0.0.1:8081")
    identity_base_url: str = Field(default="http://127.0.0.1:8082")
    borrow_base_url: str = Field(default="http://127.0.0.1:8083")

    inventory_timeout: float = Field(default=5.0, gt=0, description="Seconds")
    identity_timeout: float = Field(default=10.0, gt=0, description="Seconds")
    borrow_timeout: float = Field(default=5.0, gt=0, description="Seconds")

    internal_api_key: str | None = Field(
        default=None,
        description="Shared key required on internal endpoints when set",
        repr=False,
    )

    # === Circuit Breaker ===

    breaker_window_size: int = Field(default=10, ge=1)
    breaker_minimum_calls: int = Field(default=5, ge=1)
    breaker_failure_rate_threshold: float = Field(default=50.0, gt=0, le=100)
    breaker_slow_call_duration: float = Field(default=5.0, gt=0)
    breaker_slow_call_rate_threshold: float = Field(default=50.0, gt=0, le=100)
    breaker_open_seconds: float = Field(default=20.0, ge=0)
    breaker_half_open_calls: int = Field(default=3, ge=1)

    # === Overdue Sweep ===

    overdue_sweep_enabled: bool = Field(default=True)
    overdue_sweep_interval: float = Field(
        default=86400.0,
        description="Seconds between overdue sweeps",
        gt=0,
    )

    # === Tracing ===

    logfire_send: bool = Field(default=False)
    logfire_token: str | None = Field(default=None, repr=False)

    @field_validator("max_page_size")
    @classmethod
    def validate_max_page_size(cls, v: int) -> int:
        """Keep page sizes within what a single query should return."""
        if v > 1000:
            raise ValueError("max_page_size must not exceed 1000")
        return v

    @field_validator("inventory_base_url", "identity_base_url", "borrow_base_url")
    @classmethod
    def validate_base_url(cls, v: str) -> str:
        if not v.startswith(("http://", "https://")):
            raise ValueError(f"Base URL must be http(s): {v}")
        return v.rstrip("/")

    @property
    def is_development(self) -> bool:
        return self.debug or self.log_level == "DEBUG"


class _SettingsStore:
    """Internal storage for the settings singleton."""

    _instance: ServiceSettings | None = None


def get_settings() -> ServiceSettings:
    """Get or create the process-wide settings instance."""
    if _SettingsStore._instance is None:  # type: ignore[reportPrivateUsage]
        _SettingsStore._instance = ServiceSettings()  # type: ignore[reportPrivateUsage]
    return _SettingsStore._instance  # type: ignore[reportPrivateUsage]


def reset_settings() -> None:
    """Drop the cached settings so the next call re-reads the environment."""
    _SettingsStore._instance = None  # type: ignore[reportPrivateUsage]
