"""FastAPI applications of the inventory and borrow services."""

from .borrow_app import create_borrow_app
from .inventory_app import create_inventory_app

__all__ = ["create_borrow_app", "create_inventory_app"]
