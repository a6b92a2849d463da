"""
Application errors

Raised where a problem is detected and rendered by the handler in main.py.
"""
from typing import Any, Optional


class ApiError(Exception):
    status_code = 500

    def __init__(self, message: str, details: Optional[Any] = None, status_code: Optional[int] = None):
        super().__init__(message)
        self.message = message
        self.details = details
        if status_code is not None:
            self.status_code = status_code


class ValidationError(ApiError):
    status_code = 400


class StockError(ValidationError):
    """Requested quantity exceeds the product's current stock."""


class NotFoundError(ApiError):
    status_code = 404


class ConflictError(ApiError):
    status_code = 409


class ServiceUnavailableError(ApiError):
    status_code = 503
