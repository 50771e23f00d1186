"""Models package - exports all SQLAlchemy models."""
from checkout.models.app_user import AppUser, UserType
from checkout.models.payment_attempt import PaymentAttempt, AttemptStatus
from checkout.models.order import Order, OrderStatus

__all__ = [
    'AppUser', 'UserType',
    'PaymentAttempt', 'AttemptStatus',
    'Order', 'OrderStatus',
]
