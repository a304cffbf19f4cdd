# app/core/exceptions.py
"""
Domain error taxonomy shared by the REST and WebSocket surfaces.

None of these are retried server-side: the caller decides whether to retry.
"""
from typing import Optional


class AppError(Exception):
    """Base exception for application errors"""

    status_code: int = 400
    code: str = "error"

    def __init__(self, message: str, status_code: Optional[int] = None):
        self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(message)


class NotFoundError(AppError):
    status_code = 404
    code = "not_found"


class ForbiddenError(AppError):
    status_code = 403
    code = "forbidden"


class InvalidArgumentError(AppError):
    status_code = 400
    code = "invalid_argument"


class AuthenticationError(AppError):
    status_code = 401
    code = "unauthorized"


class ServiceUnavailableError(AppError):
    status_code = 503
    code = "service_unavailable"


class ExecutionTimeoutError(AppError):
    status_code = 504
    code = "timeout"
