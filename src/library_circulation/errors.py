"""
Error taxonomy for the circulation services.

Every business failure is a ``LibraryError`` carrying a stable ``code`` that
is also the envelope code and HTTP status returned to clients:

- 400 ValidationError: bad input shape or range, rejected before side effects
- 401 UnauthorizedError: missing, invalid or expired credential
- 403 ForbiddenError: ownership or role mismatch
- 404 NotFoundError: record or book absent
- 409 ConflictError and subclasses: business rule violations
- 503 ServiceUnavailableError: downstream circuit open or timed out
- 500 RepositoryError: storage failure
"""


class LibraryError(Exception):
    """Base exception for all typed failures."""

    code = 500
    default_message = "Internal server error"

    def __init__(self, message: str | None = None):
        self.message = message or self.default_message
        super().__init__(self.message)


class ValidationError(LibraryError):
    code = 400
    default_message = "Invalid request parameters"


class UnauthorizedError(LibraryError):
    code = 401
    default_message = "Authentication required"


class ForbiddenError(LibraryError):
    code = 403
    default_message = "Access denied"


class NotFoundError(LibraryError):
    code = 404
    default_message = "Resource not found"


class ConflictError(LibraryError):
    """Raised when a request is well-formed but violates a business rule."""

    code = 409
    default_message = "Request conflicts with current state"


class QuotaExceededError(ConflictError):
    default_message = "Borrowing quota exceeded"


class DuplicateLoanError(ConflictError):
    default_message = "An outstanding loan for this book already exists"


class DuplicateIsbnError(ConflictError):
    default_message = "ISBN already exists"


class BookUnavailableError(ConflictError):
    default_message = "Book is not listed for borrowing"


class InsufficientStockError(ConflictError):
    default_message = "Insufficient stock"


class OverReturnError(ConflictError):
    default_message = "Return quantity exceeds borrowed quantity"


class RenewLimitError(ConflictError):
    default_message = "Renewal limit reached"


class LoanOverdueError(ConflictError):
    default_message = "Loan is overdue and must be returned"


class AlreadyReturnedError(ConflictError):
    default_message = "Loan has already been returned"


class ConcurrentModificationError(ConflictError):
    default_message = "Record was modified concurrently, please retry"


class OutstandingLoansError(ConflictError):
    default_message = "Book has copies out on loan"


class ServiceUnavailableError(LibraryError):
    code = 503
    default_message = "Service temporarily unavailable"


class RepositoryError(LibraryError):
    code = 500
    default_message = "Database operation failed"


def error_for_code(code: int, message: str | None = None) -> LibraryError:
    """Rebuild a typed error from an envelope code received over the wire."""
    mapping: dict[int, type[LibraryError]] = {
        400: ValidationError,
        401: UnauthorizedError,
        403: ForbiddenError,
        404: NotFoundError,
        409: ConflictError,
        503: ServiceUnavailableError,
    }
    return mapping.get(code, LibraryError)(message)
