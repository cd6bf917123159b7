"""
Capability clients for downstream services.

- inventory_client: inventory ledger (HTTP and in-process)
- identity_client: bearer token verification
- borrow_client: book title propagation from the catalog
- circuit_breaker: per-downstream circuit state machine
"""

from .borrow_client import BorrowClient
from .circuit_breaker import BreakerConfig, CircuitBreaker, CircuitState
from .identity_client import IdentityClient
from .inventory_client import HttpInventoryClient, InventoryClient, LocalInventoryClient

__all__ = [
    "BorrowClient",
    "BreakerConfig",
    "CircuitBreaker",
    "CircuitState",
    "HttpInventoryClient",
    "IdentityClient",
    "InventoryClient",
    "LocalInventoryClient",
]
