"""Exceptions raised by the service layer.

Each error knows the HTTP status it maps to and how to render itself as the
JSON error body; main.py turns them into responses.
"""

from typing import Any, Dict, Optional


class OilMarketError(Exception):
    """Base exception for all service errors."""

    status_code = 500

    def __init__(self, message: str, **extra: Any):
        self.message = message
        self.extra = extra
        super().__init__(message)

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.message, **self.extra}


class ValidationFailedError(OilMarketError):
    """Raised when input is well-formed JSON but breaks a business rule."""

    status_code = 400


class NotFoundError(OilMarketError):
    """Raised when a referenced entity does not exist."""

    status_code = 404


class ConflictError(OilMarketError):
    """Raised when a write would break a unique key."""

    status_code = 409


class InsufficientStockError(OilMarketError):
    """Raised when an order line asks for more units than are in stock."""

    status_code = 400

    def __init__(self, product_id: int, product_name: str, available: int):
        self.product_id = product_id
        self.product_name = product_name
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}",
            productId=product_id,
            productName=product_name,
            available=available,
        )


class AccessDeniedError(OilMarketError):
    """Raised when the caller's proof (e.g. phone number) does not match."""

    status_code = 403


class AuthenticationError(OilMarketError):
    """Raised when admin credentials or a session token are missing or invalid."""

    status_code = 401

    def __init__(self, message: str = "Invalid credentials"):
        super().__init__(message)


class PermissionDeniedError(OilMarketError):
    """Raised when an authenticated admin lacks the required role."""

    status_code = 403

    def __init__(self, required_role: str, role: Optional[str] = None):
        self.required_role = required_role
        super().__init__(f"Role '{required_role}' required", role=role)


class OrderNumberExhaustedError(OilMarketError):
    """Raised when no unique order/tracking number could be generated."""

    status_code = 500

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Could not allocate a unique order number after {attempts} attempts")
