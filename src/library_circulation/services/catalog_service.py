"""
Catalog operations of the inventory service.

Wraps ``InventoryRepository`` with one session per operation and adds the
cross-service side effect of a rename: the new title is pushed to the borrow
service's record snapshots. That push is best effort. A failure is logged and
the rename stands.
"""

import logging

from ..clients.borrow_client import BorrowClient
from ..database.inventory_repository import InventoryRepository
from ..database.repository import PaginationParams
from ..database.session import DatabaseManager
from ..models.book import BookCreate, BookInfo, BookQuery, BookStatus, BookUpdate, StockOperation, StockRequest
from ..models.envelope import PageResult

logger = logging.getLogger(__name__)


class CatalogService:
    def __init__(self, db: DatabaseManager, borrow_client: BorrowClient | None = None):
        self.db = db
        self.borrow_client = borrow_client

    # Reads

    def get_book(self, book_id: int) -> BookInfo:
        with self.db.session_scope() as session:
            return InventoryRepository(session).require(book_id)

    def list_books(
        self, query: BookQuery | None = None, pagination: PaginationParams | None = None
    ) -> PageResult[BookInfo]:
        with self.db.session_scope() as session:
            return InventoryRepository(session).list_books(query, pagination)

    def check_available(self, book_id: int, quantity: int) -> bool:
        with self.db.session_scope() as session:
            return InventoryRepository(session).check_available(book_id, quantity)

    # Ledger

    def reserve(self, book_id: int, quantity: int) -> int:
        with self.db.session_scope() as session:
            return InventoryRepository(session).reserve(book_id, quantity)

    def release(self, book_id: int, quantity: int) -> int:
        with self.db.session_scope() as session:
            return InventoryRepository(session).release(book_id, quantity)

    def operate_stock(self, request: StockRequest) -> int:
        """Apply one admin ledger operation; returns the new available stock."""
        with self.db.session_scope() as session:
            repo = InventoryRepository(session)
            match request.operation_type:
                case StockOperation.BORROW:
                    return repo.reserve(request.book_id, request.quantity)
                case StockOperation.RETURN:
                    return repo.release(request.book_id, request.quantity)
                case StockOperation.ADD:
                    return repo.add_stock(request.book_id, request.quantity)
                case StockOperation.REDUCE:
                    return repo.reduce_stock(request.book_id, request.quantity)

    # Catalog entries

    def create_book(self, data: BookCreate) -> BookInfo:
        with self.db.session_scope() as session:
            return InventoryRepository(session).create(data)

    def update_book(self, book_id: int, data: BookUpdate) -> BookInfo:
        with self.db.session_scope() as session:
            before, after = InventoryRepository(session).update(book_id, data)
        if before.title != after.title:
            self._propagate_title(after.id, after.title)
        return after

    def set_status(self, book_id: int, status: BookStatus) -> BookInfo:
        with self.db.session_scope() as session:
            return InventoryRepository(session).set_status(book_id, status)

    def delete_book(self, book_id: int) -> None:
        with self.db.session_scope() as session:
            InventoryRepository(session).soft_delete(book_id)

    def _propagate_title(self, book_id: int, title: str) -> None:
        if self.borrow_client is None:
            return
        result = self.borrow_client.update_book_title(book_id, title)
        if result.is_success:
            logger.info("Propagated new title of book %s to %s borrow records", book_id, result.data)
        else:
            logger.warning(
                "Could not propagate new title of book %s to borrow records: %s",
                book_id,
                result.message,
            )
