"""
FastAPI dependencies shared by both services.

Identity is resolved once per request by ``current_user`` and then passed
explicitly to the services. Admin-only routes compose ``require_admin`` at
registration time.
"""

import logging
from datetime import datetime
from typing import Annotated

from fastapi import Depends, Header, Query, Request

from ..config import ServiceSettings
from ..context import UserContext
from ..database.repository import PaginationParams
from ..errors import ForbiddenError, ServiceUnavailableError, UnauthorizedError
from ..models.borrow import BorrowQuery, BorrowStatus

logger = logging.getLogger(__name__)


def get_app_settings(request: Request) -> ServiceSettings:
    return request.app.state.settings


def current_user(
    request: Request,
    authorization: Annotated[str | None, Header()] = None,
) -> UserContext:
    """Verify the bearer token with the identity service."""
    if not authorization:
        raise UnauthorizedError("Missing Authorization header")
    result = request.app.state.identity.verify(authorization)
    if result.is_success and result.data is not None:
        return result.data
    if result.code == ServiceUnavailableError.code:
        raise ServiceUnavailableError(result.message)
    raise UnauthorizedError(result.message)


def require_admin(user: Annotated[UserContext, Depends(current_user)]) -> UserContext:
    if not user.is_admin:
        logger.info("User %s denied admin-only access", user.user_id)
        raise ForbiddenError("Administrator role required")
    return user


def require_internal_key(
    settings: Annotated[ServiceSettings, Depends(get_app_settings)],
    x_api_key: Annotated[str | None, Header(alias="X-API-Key")] = None,
) -> None:
    """Guard internal endpoints when a shared key is configured."""
    if settings.internal_api_key and x_api_key != settings.internal_api_key:
        raise UnauthorizedError("Invalid or missing API key")


def pagination(
    settings: Annotated[ServiceSettings, Depends(get_app_settings)],
    page_num: Annotated[int, Query(alias="pageNum", ge=1)] = 1,
    page_size: Annotated[int | None, Query(alias="pageSize", ge=1)] = None,
) -> PaginationParams:
    return PaginationParams(
        page_num=page_num,
        page_size=page_size or settings.default_page_size,
        max_page_size=settings.max_page_size,
    )


def borrow_query(
    user_id: Annotated[int | None, Query(alias="userId")] = None,
    book_id: Annotated[int | None, Query(alias="bookId")] = None,
    book_title: Annotated[str | None, Query(alias="bookTitle")] = None,
    status: Annotated[BorrowStatus | None, Query()] = None,
    borrow_start_time: Annotated[datetime | None, Query(alias="borrowStartTime")] = None,
    borrow_end_time: Annotated[datetime | None, Query(alias="borrowEndTime")] = None,
    overdue_only: Annotated[bool, Query(alias="overdueOnly")] = False,
) -> BorrowQuery:
    return BorrowQuery(
        user_id=user_id,
        book_id=book_id,
        book_title=book_title,
        status=status,
        borrow_start_time=borrow_start_time,
        borrow_end_time=borrow_end_time,
        overdue_only=overdue_only,
    )


CurrentUser = Annotated[UserContext, Depends(current_user)]
AdminUser = Annotated[UserContext, Depends(require_admin)]
Pagination = Annotated[PaginationParams, Depends(pagination)]
RecordFilters = Annotated[BorrowQuery, Depends(borrow_query)]
