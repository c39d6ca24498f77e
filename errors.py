"""Custom exceptions for the storefront API.

Each error carries the HTTP status it maps to; ``main`` turns any
``ShopError`` into the standard ``{success, message, errors}`` envelope.
"""

from typing import Any, Dict, Optional


class ShopError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        self.message = message
        self.details = details
        super().__init__(message)


class NotFoundError(ShopError):
    """Raised when a product, cart, order or cart line doesn't exist."""

    status_code = 404


class UnauthorizedError(ShopError):
    """Raised when a protected route is called without a principal."""

    status_code = 401

    def __init__(self, message: str = "Not authorized, no user credentials"):
        super().__init__(message)


class ForbiddenError(ShopError):
    """Raised on an ownership or role mismatch."""

    status_code = 403


class ValidationError(ShopError):
    status_code = 400


class EmptyCartError(ShopError):
    status_code = 400

    def __init__(self, message: str = "Cart is empty"):
        super().__init__(message)


class ProductUnavailableError(ShopError):
    """Raised when a product is missing or no longer active."""

    status_code = 400

    def __init__(self, product_name: Optional[str] = None, product_id: Optional[str] = None):
        self.product_name = product_name
        self.product_id = product_id
        super().__init__(
            f"Product {product_name or 'Unknown'} is no longer available",
            details={"product_id": product_id, "product_name": product_name},
        )


class InsufficientStockError(ShopError):
    """Raised when a product has fewer units in stock than requested."""

    status_code = 400

    def __init__(self, product_name: str, requested: int, available: int, product_id: Optional[str] = None):
        self.product_name = product_name
        self.product_id = product_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient stock for {product_name}. Available: {available}, Requested: {requested}",
            details={
                "product_id": product_id,
                "product_name": product_name,
                "requested_quantity": requested,
                "available_quantity": available,
            },
        )


class AlreadyPaidError(ShopError):
    status_code = 400

    def __init__(self, message: str = "Order is already paid"):
        super().__init__(message)


class InvalidTransitionError(ShopError):
    """Raised when an order status change is not allowed from its current state."""

    status_code = 400

    def __init__(self, current: str, target: Optional[str] = None, message: Optional[str] = None):
        self.current = current
        self.target = target
        if message is None:
            if target:
                message = f"Cannot change order status from {current} to {target}"
            else:
                message = f"Order cannot be changed in {current} state"
        super().__init__(message, details={"current_status": current, "requested_status": target})


class DatabaseUnavailableError(ShopError):
    status_code = 503

    def __init__(self, message: str = "Database not available"):
        super().__init__(message)


class CartChangedError(ShopError):
    """Raised when the cart was modified or checked out while an order was being placed."""

    status_code = 409

    def __init__(self, message: str = "Cart changed during checkout, please try again"):
        super().__init__(message)
