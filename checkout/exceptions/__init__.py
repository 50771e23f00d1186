"""Custom exceptions for the checkout engine."""
from checkout.utils.number_format import format_inr


class CheckoutError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        return rv


class ValidationError(CheckoutError):
    """Raised when input blocks an action and the caller must fix it."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class MinimumOrderError(ValidationError):
    """Raised when one or more sellers are below the minimum order value."""
    def __init__(self, violations):
        self.violations = list(violations)
        parts = [
            f"{v.seller_label}: add {format_inr(v.shortfall)} more "
            f"(minimum {format_inr(v.threshold)}, current {format_inr(v.subtotal)})"
            for v in self.violations
        ]
        message = "Minimum order value not met for " + "; ".join(parts)
        super().__init__(message, payload={
            'code': 'MIN_ORDER_NOT_MET',
            'violations': [v.to_dict() for v in self.violations],
        })


class ServiceabilityError(CheckoutError):
    """Raised when no courier can deliver a seller's parcel."""
    def __init__(self, seller_id, reason, payload=None):
        message = f"Shipping not available for seller {seller_id}: {reason}"
        data = dict(payload or ())
        data.update({'code': 'NOT_SERVICEABLE', 'seller_id': seller_id, 'reason': reason})
        super().__init__(message, 422, data)


class ConflictError(CheckoutError):
    """Raised when an account already exists for the submitted identity."""
    def __init__(self, message="account exists", payload=None):
        data = dict(payload or ())
        data.setdefault('code', 'USER_EXISTS')
        data.setdefault('redirect', '/login')
        super().__init__(message, 409, data)


class SignatureError(CheckoutError):
    """Raised when a gateway signature does not match."""
    def __init__(self, message="Invalid payment signature", payload=None):
        super().__init__(message, 400, payload)


class NotFoundError(CheckoutError):
    """Exception raised when a resource is not found."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class OrderRejectedError(CheckoutError):
    """Raised when a verified payment cannot be turned into orders."""
    def __init__(self, message, payload=None):
        super().__init__(message, 422, payload)


class GatewayError(CheckoutError):
    """Raised when an upstream provider (payments, couriers) fails."""
    def __init__(self, message="Payment gateway unavailable", payload=None):
        super().__init__(message, 502, payload)


class UnauthorizedError(CheckoutError):
    """Raised when the request has no authenticated identity."""
    def __init__(self, message="Authentication required"):
        super().__init__(message, 401)
