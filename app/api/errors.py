from fastapi import HTTPException

from app.core.errors import (
    AppError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    QuotaExceededError,
    ValidationError,
)

STATUS_BY_ERROR: tuple[tuple[type[AppError], int], ...] = (
    (ValidationError, 422),
    (QuotaExceededError, 429),
    (NotFoundError, 404),
    (PermissionDeniedError, 403),
    (ConflictError, 409),
    (ExternalServiceError, 502),
)


def http_error(exc: AppError) -> HTTPException:
    if isinstance(exc, QuotaExceededError):
        return HTTPException(
            status_code=429,
            detail={"code": "quota_exceeded", "feature": exc.feature, "limit": exc.limit, "message": str(exc)},
        )
    for error_type, status_code in STATUS_BY_ERROR:
        if isinstance(exc, error_type):
            return HTTPException(status_code=status_code, detail=str(exc))
    return HTTPException(status_code=500, detail=str(exc))
