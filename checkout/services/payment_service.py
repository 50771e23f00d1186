"""
Payment intent building.

Turns an aggregated cart plus the selected courier per seller into a payment
breakdown, the outgoing line payload and a gateway order. The full order
context is persisted with the attempt so orders can be rebuilt from it alone.
"""
import logging
import time
from dataclasses import dataclass
from decimal import Decimal, ROUND_CEILING
from typing import Any, Dict, List, Optional, Protocol

import requests
from sqlalchemy.exc import SQLAlchemyError

from checkout.exceptions import GatewayError, ValidationError
from checkout.models import AppUser, AttemptStatus, PaymentAttempt
from checkout.services.cart_service import CartSummary, ensure_minimum_order
from checkout.services.shipping_service import CourierOption
from checkout.utils.number_format import money, to_paise

logger = logging.getLogger(__name__)

FULL = 'full'
ADVANCE = 'advance'
PAYMENT_OPTIONS = (ADVANCE, FULL)

ADDRESS_FIELDS = ('address', 'city', 'state', 'pincode')


class PaymentGateway(Protocol):
    def create_order(self, amount_paise: int, currency: str = 'INR', receipt: Optional[str] = None,
                     notes: Optional[Dict[str, str]] = None) -> Dict[str, Any]:
        ...


@dataclass(frozen=True)
class PaymentBreakdown:
    """
    What the buyer pays now and what stays due.

    ``payable_now + remaining_balance == product_total + shipping_total`` for
    both options.
    """
    product_total: Decimal
    shipping_total: Decimal
    payable_now: Decimal
    remaining_balance: Decimal
    payment_option: str
    advance_percent: Decimal = Decimal('0')

    @property
    def grand_total(self) -> Decimal:
        return self.product_total + self.shipping_total

    @property
    def advance_portion(self) -> Decimal:
        """Product amount collected now (shipping excluded)."""
        return self.payable_now - self.shipping_total

    def to_dict(self) -> Dict[str, Any]:
        return {
            'product_total': str(self.product_total),
            'shipping_total': str(self.shipping_total),
            'payable_now': str(self.payable_now),
            'remaining_balance': str(self.remaining_balance),
            'payment_option': self.payment_option,
            'advance_percent': str(self.advance_percent),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> 'PaymentBreakdown':
        return cls(
            product_total=Decimal(str(data['product_total'])),
            shipping_total=Decimal(str(data['shipping_total'])),
            payable_now=Decimal(str(data['payable_now'])),
            remaining_balance=Decimal(str(data['remaining_balance'])),
            payment_option=data['payment_option'],
            advance_percent=Decimal(str(data.get('advance_percent', '0'))),
        )


@dataclass
class PaymentIntent:
    """Gateway order opened for one checkout attempt."""
    gateway_order_id: str
    amount: Decimal
    currency: str
    breakdown: PaymentBreakdown
    recovery_payload: Dict[str, Any]
    attempt_id: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'gateway_order_id': self.gateway_order_id,
            'amount': str(self.amount),
            'amount_paise': to_paise(self.amount),
            'currency': self.currency,
            'breakdown': self.breakdown.to_dict(),
            'user_id': self.recovery_payload.get('user_id'),
        }


def compute_breakdown(
    product_total,
    shipping_total,
    payment_option: str = FULL,
    advance_percent=Decimal('0'),
) -> PaymentBreakdown:
    """
    Compute the payable split.

    full:    payable = product + shipping, remaining = 0
    advance: payable = ceil(product x pct) + shipping, remaining = product - ceil(product x pct)

    The advance portion is rounded up to whole rupees and capped at the product
    total, so the remaining balance is floor(product x (1 - pct)) for whole
    rupee totals and the two parts always add back to the grand total.
    """
    if payment_option not in PAYMENT_OPTIONS:
        raise ValidationError(f'Unknown payment option "{payment_option}"',
                              payload={'allowed': list(PAYMENT_OPTIONS)})

    product_total = money(product_total)
    shipping_total = money(shipping_total)
    advance_percent = Decimal(str(advance_percent))
    if advance_percent < 0 or advance_percent > 100:
        raise ValidationError('Advance percent must be between 0 and 100')

    if payment_option == FULL:
        return PaymentBreakdown(
            product_total=product_total,
            shipping_total=shipping_total,
            payable_now=product_total + shipping_total,
            remaining_balance=money(0),
            payment_option=FULL,
            advance_percent=advance_percent,
        )

    advance = (product_total * advance_percent / 100).to_integral_value(rounding=ROUND_CEILING)
    advance = money(min(advance, product_total))
    return PaymentBreakdown(
        product_total=product_total,
        shipping_total=shipping_total,
        payable_now=advance + shipping_total,
        remaining_balance=product_total - advance,
        payment_option=ADVANCE,
        advance_percent=advance_percent,
    )


def build_line_payload(summary: CartSummary, selections: Dict[int, CourierOption]) -> List[Dict[str, Any]]:
    """
    Build the outgoing line items with shipping attribution.

    The first line of each seller carries that seller's selected rate as
    ``ship_cost``; every other line of the same seller carries 0. All lines of
    a seller carry the courier they ship with.
    """
    missing = [g.label for sid, g in summary.groups.items() if sid not in selections]
    if missing:
        raise ValidationError(
            'Select a courier for every seller before paying: ' + ', '.join(missing),
            payload={'sellers_without_courier': missing},
        )

    charged = set()
    payload = []
    for line in summary.lines:
        option = selections[line.seller_id]
        if line.seller_id in charged:
            ship_cost = money(0)
        else:
            ship_cost = money(option.rate)
            charged.add(line.seller_id)

        item = line.to_dict()
        item.update({
            'ship_cost': str(ship_cost),
            'courier_company_id': option.courier_id,
            'courier_name': option.courier_name,
            'etd': option.etd,
        })
        payload.append(item)
    return payload


def normalize_shipping_address(data: Optional[Dict[str, Any]], fallback: Optional[AppUser] = None) -> Dict[str, str]:
    """Take the address from the request, or from the account when missing."""
    data = dict(data or {})
    if fallback is not None:
        for name in ADDRESS_FIELDS:
            if not data.get(name):
                data[name] = getattr(fallback, name, None)

    address = {name: str(data.get(name) or '').strip() for name in ADDRESS_FIELDS}
    if not address['address'] or not address['pincode']:
        raise ValidationError('Shipping address and pincode are required')
    return address


def create_payment_intent(
    session,
    gateway: PaymentGateway,
    user: AppUser,
    summary: CartSummary,
    selections: Dict[int, CourierOption],
    payment_option: str,
    shipping_address: Dict[str, str],
    advance_percent=Decimal('0'),
    currency: str = 'INR',
) -> PaymentIntent:
    """
    Open a gateway order and persist the attempt that anchors it.

    Raises:
        MinimumOrderError: a seller is below the minimum order value
        ValidationError: missing courier selection or nothing to pay
        GatewayError: the gateway refused the order or the attempt could not be saved
    """
    ensure_minimum_order(summary)
    if not summary.groups:
        raise ValidationError('Your cart is empty')

    lines = build_line_payload(summary, selections)
    shipping_total = sum((selections[sid].rate for sid in summary.groups), Decimal('0'))
    breakdown = compute_breakdown(summary.grand_total, shipping_total, payment_option, advance_percent)

    if breakdown.payable_now <= 0:
        raise ValidationError('Nothing to pay for this order')

    recovery_payload = {
        'user_id': user.id,
        'cart_lines': lines,
        'breakdown': breakdown.to_dict(),
        'shipping_address': shipping_address,
    }

    receipt = f"rcpt_{user.id}_{int(time.time())}"
    try:
        order = gateway.create_order(
            amount_paise=to_paise(breakdown.payable_now),
            currency=currency,
            receipt=receipt,
            notes={'user_id': str(user.id), 'payment_option': breakdown.payment_option},
        )
    except requests.RequestException as e:
        logger.error(f"Gateway order creation failed for user {user.id}: {e}")
        raise GatewayError('Payment processing failed. Please try again.')

    gateway_order_id = order.get('id')
    if not gateway_order_id:
        raise GatewayError('Payment gateway returned no order id')

    # No attempt row means no way to verify the payment later: refuse the intent.
    try:
        attempt = PaymentAttempt(
            gateway_order_id=gateway_order_id,
            user_id=user.id,
            amount=breakdown.payable_now,
            currency=currency,
            payment_option=breakdown.payment_option,
            recovery_payload=recovery_payload,
            status=AttemptStatus.CREATED,
        )
        session.add(attempt)
        session.commit()
    except SQLAlchemyError:
        session.rollback()
        logger.exception(f"Failed to save payment attempt for gateway order {gateway_order_id}")
        raise GatewayError('Order initialization failed. Please try again.')

    logger.info(
        f"Payment intent {gateway_order_id} opened: user={user.id} option={breakdown.payment_option} "
        f"payable={breakdown.payable_now} sellers={len(summary.groups)}"
    )

    return PaymentIntent(
        gateway_order_id=gateway_order_id,
        amount=breakdown.payable_now,
        currency=currency,
        breakdown=breakdown,
        recovery_payload=recovery_payload,
        attempt_id=attempt.id,
    )


def parse_payment_option(value: Optional[str]) -> str:
    option = str(value or FULL).strip().lower()
    if option not in PAYMENT_OPTIONS:
        raise ValidationError(f'Unknown payment option "{value}"', payload={'allowed': list(PAYMENT_OPTIONS)})
    return option
