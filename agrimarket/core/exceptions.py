"""Error taxonomy.

Every error a client can see is an ``HTTPException`` so services raise them
directly; the handlers in ``agrimarket.main`` turn them into the response
envelope. ``DependencyError`` is never sent to clients: it only marks
best-effort side effects (mail, notifications) that failed.
"""

from typing import Any, List, Optional

from fastapi import HTTPException, status


class AppError(HTTPException):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Request failed"

    def __init__(self, detail: Optional[str] = None, field: Optional[str] = None, headers: Optional[dict] = None):
        super().__init__(status_code=self.status_code, detail=detail or self.message, headers=headers)
        self.field = field


class ValidationError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Validation failed"


class InvalidReceiverError(ValidationError):
    message = "Invalid receiver"


class EmptyCartError(AppError):
    status_code = status.HTTP_400_BAD_REQUEST
    message = "Cart is empty"


class AuthError(AppError):
    status_code = status.HTTP_401_UNAUTHORIZED
    message = "Could not validate credentials"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail, headers={"WWW-Authenticate": "Bearer"})


class ForbiddenError(AppError):
    status_code = status.HTTP_403_FORBIDDEN
    message = "Access denied"


class NotFoundError(AppError):
    status_code = status.HTTP_404_NOT_FOUND
    message = "Not found"


class ConflictError(AppError):
    status_code = status.HTTP_409_CONFLICT
    message = "Conflict"


class InsufficientStockError(ConflictError):
    message = "Insufficient stock available"

    def __init__(self, detail: Optional[str] = None, failures: Optional[List[Any]] = None):
        super().__init__(detail)
        self.failures = failures or []


class PaymentGatewayError(AppError):
    status_code = status.HTTP_502_BAD_GATEWAY
    message = "Payment gateway unavailable"


class DependencyError(Exception):
    """A downstream side effect (mail, notification) failed."""

    def __init__(self, dependency: str, reason: str):
        super().__init__(f"{dependency}: {reason}")
        self.dependency = dependency
        self.reason = reason
