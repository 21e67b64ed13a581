"""Exceptions raised by the storefront services.

``main.py`` maps each class to an HTTP status; the message becomes the
``{"error": ...}`` body.
"""

from typing import Iterable, Optional


class StorefrontError(Exception):
    """Base exception for all storefront errors."""

    status_code = 500


class InvalidInput(StorefrontError):
    """Raised when a cart or checkout payload cannot be accepted."""

    status_code = 400


class AuthenticationRequired(StorefrontError):
    status_code = 401

    def __init__(self, message: str = "Authentication required"):
        super().__init__(message)


class PermissionDenied(StorefrontError):
    status_code = 403

    def __init__(self, message: str = "Not allowed"):
        super().__init__(message)


class OrderNotFound(StorefrontError):
    status_code = 404

    def __init__(self, order_ref: str):
        self.order_ref = order_ref
        super().__init__(f"Order not found: {order_ref}")


class ProductNotFound(StorefrontError):
    status_code = 404

    def __init__(self, product_id: str):
        self.product_id = product_id
        super().__init__(f"Product not found: {product_id}")


class CartNotFound(StorefrontError):
    status_code = 404

    def __init__(self, cart_id: str):
        self.cart_id = cart_id
        super().__init__(f"Cart not found: {cart_id}")


class IllegalTransition(StorefrontError):
    """Raised when an order is asked to move somewhere its status does not allow."""

    status_code = 409

    def __init__(self, order_id: str, current: str, requested: str):
        self.order_id = order_id
        self.current = current
        self.requested = requested
        super().__init__(f"Order {order_id} cannot go from {current} to {requested}")


class InvalidSignature(StorefrontError):
    """Raised when a webhook delivery fails authenticity checks."""

    status_code = 400

    def __init__(self, reason: Optional[str] = None):
        self.reason = reason
        msg = "Invalid signature"
        if reason:
            msg = f"{msg} ({reason})"
        super().__init__(msg)


class PaymentSessionError(StorefrontError):
    """Raised when the payment processor cannot open a checkout session."""

    status_code = 502


class PaymentConfigurationError(StorefrontError):
    """Raised when webhook verification is impossible because secrets are missing."""

    status_code = 500


class ReconciliationSkipped(StorefrontError):
    """Raised for events reconciliation will never be able to apply.

    These are acknowledged to the processor so it stops re-delivering them.
    """

    status_code = 200

    def __init__(self, reason: str, order_id: Optional[str] = None, order_number: Optional[str] = None):
        self.reason = reason
        self.order_id = order_id
        self.order_number = order_number
        super().__init__(reason)


def missing_fields_error(kind: str, fields: Iterable[str]) -> InvalidInput:
    return InvalidInput(f"Missing {kind} fields: {', '.join(sorted(fields))}")
