"""
HTTP surface of the borrow service.

| Method | Path                                  | Access           |
|--------|---------------------------------------|------------------|
| POST   | /borrow                               | user             |
| POST   | /return                               | owner            |
| POST   | /renew                                | owner            |
| GET    | /borrow/my                            | user             |
| GET    | /borrow/count                         | user             |
| GET    | /borrow/all                           | admin            |
| GET    | /borrow/user/{userId}                 | self or admin    |
| GET    | /borrow/statistics[/{userId}]         | self or admin    |
| POST   | /borrow/check-overdue                 | admin            |
| GET    | /borrow/{id}                          | owner or admin   |
| PUT    | /internal/borrow/book/{bookId}/title  | internal API key |
"""

import logging
from collections.abc import Callable
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Annotated

from fastapi import Depends, FastAPI, Query, Request

from ..clients.identity_client import IdentityClient
from ..clients.inventory_client import HttpInventoryClient, InventoryClient
from ..config import ServiceSettings, get_settings
from ..database.schema import BorrowBase
from ..database.session import DatabaseManager
from ..models.borrow import BorrowRecord, BorrowRequest, BorrowStatistics, RenewRequest, ReturnRequest
from ..models.envelope import ApiResult, PageResult
from ..services.borrow_service import BorrowService
from ..services.sweeper import OverdueSweeper
from .dependencies import AdminUser, CurrentUser, Pagination, RecordFilters, require_internal_key
from .handlers import register_exception_handlers

logger = logging.getLogger(__name__)


def _service(request: Request) -> BorrowService:
    return request.app.state.borrow_service


Service = Annotated[BorrowService, Depends(_service)]


def create_borrow_app(
    settings: ServiceSettings | None = None,
    db: DatabaseManager | None = None,
    inventory: InventoryClient | None = None,
    identity: IdentityClient | None = None,
    clock: Callable[[], datetime] = datetime.now,
) -> FastAPI:
    """Build the borrow service application; collaborators default from settings."""
    settings = settings or get_settings()
    db = db or DatabaseManager(settings.borrow_database_url, BorrowBase.metadata)
    inventory = inventory or HttpInventoryClient.from_settings(settings)
    identity = identity or IdentityClient.from_settings(settings)
    service = BorrowService(db, inventory, settings=settings, clock=clock)
    sweeper = OverdueSweeper(service, settings.overdue_sweep_interval)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        db.init_database()
        if settings.overdue_sweep_enabled:
            sweeper.start()
        yield
        sweeper.stop()
        db.close()

    app = FastAPI(title="Library Borrow Service", lifespan=lifespan)
    app.state.settings = settings
    app.state.db = db
    app.state.identity = identity
    app.state.borrow_service = service
    app.state.sweeper = sweeper
    register_exception_handlers(app)

    @app.get("/health")
    def health() -> ApiResult[dict]:
        return ApiResult.success({"service": settings.service_name, "database": db.verify_connection()})

    @app.post("/borrow")
    def borrow(body: BorrowRequest, user: CurrentUser, service: Service) -> ApiResult[BorrowRecord]:
        return ApiResult.success(service.borrow(user, body), "Borrowed successfully")

    @app.post("/return")
    def return_book(body: ReturnRequest, user: CurrentUser, service: Service) -> ApiResult[BorrowRecord]:
        return ApiResult.success(service.return_book(user, body), "Returned successfully")

    @app.post("/renew")
    def renew(body: RenewRequest, user: CurrentUser, service: Service) -> ApiResult[BorrowRecord]:
        return ApiResult.success(service.renew(user, body), "Renewed successfully")

    @app.get("/borrow/my")
    def my_records(
        user: CurrentUser, service: Service, filters: RecordFilters, page: Pagination
    ) -> ApiResult[PageResult[BorrowRecord]]:
        return ApiResult.success(service.my_records(user, filters, page))

    @app.get("/borrow/count")
    def outstanding_count(user: CurrentUser, service: Service) -> ApiResult[int]:
        return ApiResult.success(service.count_outstanding(user))

    @app.get("/borrow/all")
    def all_records(
        admin: AdminUser, service: Service, filters: RecordFilters, page: Pagination
    ) -> ApiResult[PageResult[BorrowRecord]]:
        return ApiResult.success(service.search(filters, page))

    @app.get("/borrow/user/{user_id}")
    def user_records(
        user_id: int, user: CurrentUser, service: Service, filters: RecordFilters, page: Pagination
    ) -> ApiResult[PageResult[BorrowRecord]]:
        return ApiResult.success(service.user_records(user, user_id, filters, page))

    @app.get("/borrow/statistics")
    def my_statistics(user: CurrentUser, service: Service) -> ApiResult[BorrowStatistics]:
        return ApiResult.success(service.statistics(user))

    @app.get("/borrow/statistics/{user_id}")
    def user_statistics(user_id: int, user: CurrentUser, service: Service) -> ApiResult[BorrowStatistics]:
        return ApiResult.success(service.statistics(user, user_id))

    @app.post("/borrow/check-overdue")
    def check_overdue(admin: AdminUser, service: Service) -> ApiResult[int]:
        count = service.check_overdue()
        return ApiResult.success(count, f"Marked {count} records overdue")

    @app.get("/borrow/{record_id}")
    def get_record(record_id: int, user: CurrentUser, service: Service) -> ApiResult[BorrowRecord]:
        return ApiResult.success(service.get_record(user, record_id))

    @app.put("/internal/borrow/book/{book_id}/title", dependencies=[Depends(require_internal_key)])
    def update_book_title(
        book_id: int, title: Annotated[str, Query(min_length=1)], service: Service
    ) -> ApiResult[int]:
        return ApiResult.success(service.update_book_title(book_id, title))

    return app
