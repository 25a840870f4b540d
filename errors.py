"""Custom exceptions for the shop API.

Each error carries the HTTP status it is reported with; main.py turns any
ShopError into the standard ``{success: false, message, errors?}`` envelope.
"""


class ShopError(Exception):
    """Base exception for all business errors."""

    status_code = 400

    def __init__(self, message: str):
        self.message = message
        super().__init__(message)


class ValidationFailed(ShopError):
    """Raised when request input is malformed."""

    def __init__(self, errors: list[dict] | None = None, message: str = "Validation failed"):
        self.errors = errors or []
        super().__init__(message)


class NotFound(ShopError):
    """Raised when a cart, order, product or user doesn't exist."""

    status_code = 404


class InsufficientStock(ShopError):
    """Raised when a requested quantity exceeds the available stock."""

    def __init__(self, product_name: str, available: int, message: str | None = None):
        self.product_name = product_name
        self.available = available
        super().__init__(
            message or f"Insufficient stock for {product_name}. Only {available} items available"
        )


class ProductUnavailable(ShopError):
    """Raised inside checkout when a product is missing or inactive."""

    def __init__(self, product_name: str):
        self.product_name = product_name
        super().__init__(f"Product {product_name} is no longer available")


class InvalidTransition(ShopError):
    """Raised when an order cannot move to the requested status."""

    def __init__(self, current: str, target: str, message: str | None = None):
        self.current = current
        self.target = target
        super().__init__(message or f"Order cannot move from {current} to {target}")


class BusinessRuleViolation(ShopError):
    """Raised for other rejections detected before any write."""

    pass


class Unauthorized(ShopError):
    status_code = 401


class Forbidden(ShopError):
    status_code = 403


class GatewaySignatureMismatch(ShopError):
    """Raised when a payment confirmation carries a bad signature."""

    def __init__(self):
        super().__init__("Invalid signature")


class ServiceUnavailable(ShopError):
    """Raised when the database or the payment gateway is not configured."""

    status_code = 503
