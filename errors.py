"""Custom exceptions for the storefront API."""


class StoreError(Exception):
    """Base exception for all storefront errors."""

    pass


class ValidationError(StoreError):
    """Raised when input is malformed or violates a business rule."""

    def __init__(self, message: str, field: str | None = None):
        self.field = field
        super().__init__(message)


class NotFoundError(StoreError):
    """Raised when an entity doesn't exist."""

    def __init__(self, message: str = "Not found"):
        super().__init__(message)


class AuthenticationError(StoreError):
    """Raised when the caller is not authenticated."""

    def __init__(self, message: str = "Not authenticated"):
        super().__init__(message)


class AuthorizationError(StoreError):
    """Raised when the caller is authenticated but not allowed."""

    def __init__(self, message: str = "Not allowed"):
        super().__init__(message)


class StateError(StoreError):
    """Raised on an illegal order state transition."""

    def __init__(self, status: str, action: str = "cancel"):
        self.status = status
        self.action = action
        super().__init__(f"Cannot {action} order with status: {status}")


class StockError(StoreError):
    """Raised when inventory cannot cover a requested quantity."""

    def __init__(self, message: str, sku: str | None = None, available: int | None = None):
        self.sku = sku
        self.available = available
        super().__init__(message)


class CouponError(StoreError):
    """Raised when a coupon is invalid, expired or not applicable."""

    def __init__(self, reason: str, code: str | None = None):
        self.reason = reason
        self.code = code
        super().__init__(reason)


class CouponNotFoundError(CouponError):
    """Raised when no coupon exists for a code."""

    def __init__(self, code: str):
        super().__init__("Invalid coupon code", code=code)


class ServiceUnavailableError(StoreError):
    """Raised when the database is not configured."""

    def __init__(self, message: str = "Database not configured"):
        super().__init__(message)
