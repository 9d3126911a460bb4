from typing import Optional


class AppError(Exception):
    """Base class for errors raised by the analysis core."""


class ValidationError(AppError):
    pass


class QuotaExceededError(AppError):
    def __init__(self, feature: str, limit: int):
        super().__init__(f"Daily AI limit reached for {feature} ({limit} per day)")
        self.feature = feature
        self.limit = limit


class ExternalServiceError(AppError):
    def __init__(self, provider: str, model: str, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.provider = provider
        self.model = model
        self.status_code = status_code


class NotFoundError(AppError):
    pass


class ConflictError(AppError):
    pass


class PermissionDeniedError(AppError):
    pass
