"""
HTTP surface of the inventory service.

Stock endpoints under ``/books/{id}/stock`` are called by the borrow
service and guarded by the internal API key when one is configured.
Catalog writes are admin-only; catalog reads are public.
"""

import logging
from contextlib import asynccontextmanager
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request

from ..clients.borrow_client import BorrowClient
from ..clients.identity_client import IdentityClient
from ..config import ServiceSettings, get_settings
from ..database.schema import InventoryBase
from ..database.session import DatabaseManager
from ..models.book import BookCreate, BookInfo, BookQuery, BookStatus, BookUpdate, StatusUpdate, StockRequest
from ..models.envelope import ApiResult, PageResult
from ..services.catalog_service import CatalogService
from .dependencies import AdminUser, Pagination, require_internal_key
from .handlers import register_exception_handlers

logger = logging.getLogger(__name__)


def _catalog(request: Request) -> CatalogService:
    return request.app.state.catalog


Catalog = Annotated[CatalogService, Depends(_catalog)]
Quantity = Annotated[int, Query(ge=1)]


def create_inventory_app(
    settings: ServiceSettings | None = None,
    db: DatabaseManager | None = None,
    identity: IdentityClient | None = None,
    borrow_client: BorrowClient | None = None,
) -> FastAPI:
    """Build the inventory service application; collaborators default from settings."""
    settings = settings or get_settings()
    db = db or DatabaseManager(settings.inventory_database_url, InventoryBase.metadata)
    identity = identity or IdentityClient.from_settings(settings)
    borrow_client = borrow_client or BorrowClient.from_settings(settings)
    catalog = CatalogService(db, borrow_client)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_database()
        yield
        db.close()

    app = FastAPI(title="Library Inventory Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.identity = identity
    app.state.catalog = catalog
    register_exception_handlers(app)

    internal = [Depends(require_internal_key)]

    @app.get("/health")
    def health() -> ApiResult[dict]:
        return ApiResult.success({"service": settings.service_name, "database": db.verify_connection()})

    # Catalog reads

    @app.get("/books")
    def list_books(
        catalog: Catalog,
        page: Pagination,
        keyword: str | None = None,
        status: BookStatus | None = None,
    ) -> ApiResult[PageResult[BookInfo]]:
        return ApiResult.success(catalog.list_books(BookQuery(keyword=keyword, status=status), page))

    @app.get("/books/{book_id}")
    def get_book(book_id: int, catalog: Catalog) -> ApiResult[BookInfo]:
        return ApiResult.success(catalog.get_book(book_id))

    # Ledger, called by the borrow service

    @app.get("/books/{book_id}/stock/check", dependencies=internal)
    def check_stock(book_id: int, catalog: Catalog, quantity: Quantity = 1) -> ApiResult[bool]:
        return ApiResult.success(catalog.check_available(book_id, quantity))

    @app.post("/books/{book_id}/stock/borrow", dependencies=internal)
    def reserve_stock(book_id: int, catalog: Catalog, quantity: Quantity = 1) -> ApiResult[int]:
        return ApiResult.success(catalog.reserve(book_id, quantity))

    @app.post("/books/{book_id}/stock/return", dependencies=internal)
    def release_stock(book_id: int, catalog: Catalog, quantity: Quantity = 1) -> ApiResult[int]:
        return ApiResult.success(catalog.release(book_id, quantity))

    # Catalog administration

    @app.post("/books")
    def create_book(body: BookCreate, admin: AdminUser, catalog: Catalog) -> ApiResult[BookInfo]:
        return ApiResult.success(catalog.create_book(body), "Book created")

    @app.post("/books/stock/operate")
    def operate_stock(body: StockRequest, admin: AdminUser, catalog: Catalog) -> ApiResult[int]:
        return ApiResult.success(catalog.operate_stock(body))

    @app.put("/books/{book_id}")
    def update_book(book_id: int, body: BookUpdate, admin: AdminUser, catalog: Catalog) -> ApiResult[BookInfo]:
        return ApiResult.success(catalog.update_book(book_id, body), "Book updated")

    @app.put("/books/{book_id}/status")
    def set_status(book_id: int, body: StatusUpdate, admin: AdminUser, catalog: Catalog) -> ApiResult[BookInfo]:
        return ApiResult.success(catalog.set_status(book_id, body.status))

    @app.delete("/books/{book_id}")
    def delete_book(book_id: int, admin: AdminUser, catalog: Catalog) -> ApiResult[None]:
        catalog.delete_book(book_id)
        return ApiResult.success(None, "Book deleted")

    return app
