"""
Database package of the circulation services.

- schema.py: SQLAlchemy tables, one declarative base per service
- session.py: engine/session management and commit/query helpers
- inventory_repository.py: the inventory ledger
- borrow_repository.py: the borrow record store
"""

from .borrow_repository import BorrowRepository
from .inventory_repository import InventoryRepository
from .repository import PaginationParams
from .schema import BorrowBase, InventoryBase
from .session import DatabaseManager, safe_commit, safe_query

__all__ = [
    "BorrowBase",
    "BorrowRepository",
    "DatabaseManager",
    "InventoryBase",
    "InventoryRepository",
    "PaginationParams",
    "safe_commit",
    "safe_query",
]
