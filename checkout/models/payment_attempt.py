"""PaymentAttempt model - the durable anchor of one checkout attempt."""
from sqlalchemy import Column, BigInteger, String, Numeric, DateTime, Text, ForeignKey
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from checkout.database import Base, BigIntPK, JSONType


class AttemptStatus:
    """
    Lifecycle of a checkout attempt.

    CREATED -> VERIFYING -> MATERIALIZED
    CREATED -> VERIFYING -> REJECTED

    An abandoned payment simply stays CREATED.
    """
    CREATED = 'CREATED'
    VERIFYING = 'VERIFYING'
    MATERIALIZED = 'MATERIALIZED'
    REJECTED = 'REJECTED'

    TRANSITIONS = {
        CREATED: {VERIFYING},
        VERIFYING: {MATERIALIZED, REJECTED},
        MATERIALIZED: set(),
        REJECTED: set(),
    }

    TERMINAL = {MATERIALIZED, REJECTED}


class PaymentAttempt(Base):
    """
    Payment intent opened with the gateway plus its recovery payload.

    The recovery payload (user, cart lines with shipping attribution, breakdown
    and shipping address) is what orders are built from at verification time;
    client-held state is never consulted.
    """

    __tablename__ = 'payment_attempt'

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    gateway_order_id = Column(String(64), nullable=False, unique=True, index=True)
    user_id = Column(BigInteger, ForeignKey('app_user.id', ondelete='SET NULL'), nullable=True)
    amount = Column(Numeric(12, 2), nullable=False)
    currency = Column(String(3), nullable=False, default='INR')
    payment_option = Column(String(10), nullable=False)
    recovery_payload = Column(JSONType, nullable=False)
    status = Column(String(20), nullable=False, default=AttemptStatus.CREATED, index=True)
    payment_id = Column(String(64), nullable=True)
    failure_reason = Column(Text, nullable=True)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    updated_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now(), onupdate=func.now())

    user = relationship('AppUser')

    @property
    def is_terminal(self):
        return self.status in AttemptStatus.TERMINAL

    def transition(self, new_status):
        """Move to ``new_status`` or raise ValueError for an illegal jump."""
        allowed = AttemptStatus.TRANSITIONS.get(self.status, set())
        if new_status not in allowed:
            raise ValueError(f"Illegal payment attempt transition {self.status} -> {new_status}")
        self.status = new_status

    def __repr__(self):
        return f"<PaymentAttempt(gateway_order_id='{self.gateway_order_id}', status='{self.status}')>"
