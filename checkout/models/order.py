"""Order model - one row per purchased cart line."""
from sqlalchemy import (
    Column, BigInteger, Integer, String, Numeric, DateTime, Text, ForeignKey, UniqueConstraint
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
from checkout.database import Base, BigIntPK


class OrderStatus:
    """Order status. Only PAID is set here; later states belong to fulfillment."""
    PENDING = 'pending'
    PAID = 'paid'
    CONFIRMED = 'confirmed'
    SHIPPED = 'shipped'
    DELIVERED = 'delivered'
    CANCELLED = 'cancelled'


class Order(Base):
    """
    Seller-attributed order line.

    Rows from one payment share ``order_group_key`` (the gateway payment id).
    The unique constraint on (gateway_order_id, line_no) makes a second
    materialization of the same payment intent fail instead of duplicating rows.
    """

    __tablename__ = 'orders'
    __table_args__ = (
        UniqueConstraint('gateway_order_id', 'line_no', name='uq_orders_gateway_order_line'),
    )

    id = Column(BigIntPK, primary_key=True, autoincrement=True)
    order_group_key = Column(String(64), nullable=False, index=True)
    gateway_order_id = Column(String(64), nullable=False, index=True)
    line_no = Column(Integer, nullable=False)
    order_number = Column(String(32), nullable=False, index=True)

    retailer_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False)
    seller_id = Column(BigInteger, ForeignKey('app_user.id'), nullable=False)
    product_id = Column(String(64), nullable=False)
    product_name = Column(String(255), nullable=True)

    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(12, 2), nullable=False)
    total_amount = Column(Numeric(12, 2), nullable=False)
    tax_rate_snapshot = Column(Numeric(5, 2), nullable=True)

    # Shipping: ship_cost is non-zero on exactly one line per seller group
    ship_cost = Column(Numeric(12, 2), nullable=False, default=0)
    courier_name = Column(String(100), nullable=True)
    courier_company_id = Column(String(32), nullable=True)
    shipping_address = Column(Text, nullable=True)

    # Payout split
    seller_payout = Column(Numeric(12, 2), nullable=False)
    platform_margin = Column(Numeric(12, 2), nullable=False)

    # Payment split
    payment_type = Column(String(10), nullable=False)
    paid_amount = Column(Numeric(12, 2), nullable=False)
    pending_amount = Column(Numeric(12, 2), nullable=False, default=0)

    status = Column(String(20), nullable=False, default=OrderStatus.PAID)
    created_at = Column(DateTime(timezone=True), nullable=False, server_default=func.now())
    paid_at = Column(DateTime(timezone=True), nullable=True)

    retailer = relationship('AppUser', foreign_keys=[retailer_id])
    seller = relationship('AppUser', foreign_keys=[seller_id])

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'order_number': self.order_number,
            'order_group_key': self.order_group_key,
            'seller_id': self.seller_id,
            'product_id': self.product_id,
            'product_name': self.product_name,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'total_amount': str(self.total_amount),
            'ship_cost': str(self.ship_cost),
            'courier_name': self.courier_name,
            'courier_company_id': self.courier_company_id,
            'seller_payout': str(self.seller_payout),
            'platform_margin': str(self.platform_margin),
            'payment_type': self.payment_type,
            'paid_amount': str(self.paid_amount),
            'pending_amount': str(self.pending_amount),
            'status': self.status,
            'created_at': self.created_at.isoformat() if self.created_at else None,
        }

    def __repr__(self):
        return f"<Order(id={self.id}, group='{self.order_group_key}', line={self.line_no}, seller={self.seller_id})>"
