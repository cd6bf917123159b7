"""
Workflow services.

- borrow_service: borrow/return/renew workflows and record queries
- catalog_service: catalog and stock operations of the inventory service
- sweeper: periodic overdue sweep
"""

from .borrow_service import BorrowService
from .catalog_service import CatalogService
from .sweeper import OverdueSweeper

__all__ = ["BorrowService", "CatalogService", "OverdueSweeper"]
