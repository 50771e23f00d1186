"""
Payment verification and order materialization.

A verified payment turns the recovery payload of its attempt into one Order
row per cart line. Materialization happens at most once per gateway order id:
the check and the insert share one transaction and the unique constraint on
(gateway_order_id, line_no) decides any race.
"""
import hashlib
import hmac
import logging
import secrets
import string
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy.exc import IntegrityError

from checkout.exceptions import NotFoundError, OrderRejectedError, SignatureError, ValidationError
from checkout.models import AppUser, AttemptStatus, Order, OrderStatus, PaymentAttempt
from checkout.services.payment_service import PaymentBreakdown
from checkout.utils.number_format import money

logger = logging.getLogger(__name__)

ORDER_NUMBER_PREFIX = 'D2B'
_BASE36 = string.digits + string.ascii_uppercase


@dataclass
class VerificationResult:
    success: bool
    order_group_key: Optional[str] = None
    created: int = 0
    duplicate: bool = False
    order_numbers: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'order_group_key': self.order_group_key,
            'created': self.created,
            'duplicate': self.duplicate,
            'order_numbers': self.order_numbers,
        }


def compute_signature(order_id: str, payment_id: str, secret: str) -> str:
    """HMAC-SHA256 hex digest of ``order_id|payment_id``."""
    message = f"{order_id}|{payment_id}".encode('utf-8')
    return hmac.new(secret.encode('utf-8'), message, hashlib.sha256).hexdigest()


def verify_signature(order_id: str, payment_id: str, signature: str, secret: str) -> None:
    """
    Check the checkout callback signature.

    Raises:
        SignatureError: on any mismatch. Nothing is written.
    """
    if not secret:
        raise SignatureError('Payment verification is not configured')
    expected = compute_signature(order_id, payment_id, secret)
    if not isinstance(signature, str) or not hmac.compare_digest(expected.encode('utf-8'), signature.encode('utf-8')):
        logger.warning(f"Signature mismatch for gateway order {order_id} payment {payment_id}")
        raise SignatureError(payload={'gateway_order_id': order_id})


def compute_webhook_signature(body: bytes, secret: str) -> str:
    return hmac.new(secret.encode('utf-8'), body, hashlib.sha256).hexdigest()


def verify_webhook_signature(body: bytes, signature: Optional[str], secret: Optional[str]) -> bool:
    """Check the ``X-Razorpay-Signature`` header against the raw request body."""
    if not secret or not signature:
        return False
    return hmac.compare_digest(compute_webhook_signature(body, secret).encode('utf-8'), signature.encode('utf-8'))


def generate_order_number(now: Optional[float] = None) -> str:
    """Human order number ``D2B-<base36 millis>-<3 random chars>``."""
    millis = int((now if now is not None else time.time()) * 1000)
    encoded = ''
    while True:
        millis, rem = divmod(millis, 36)
        encoded = _BASE36[rem] + encoded
        if millis == 0:
            break
    suffix = ''.join(secrets.choice(_BASE36) for _ in range(3))
    return f"{ORDER_NUMBER_PREFIX}-{encoded}-{suffix}"


def split_payment(lines: List[Dict[str, Any]], breakdown: PaymentBreakdown) -> List[Tuple[Decimal, Decimal]]:
    """
    Split the breakdown across lines as (paid_amount, pending_amount).

    Pending is spread pro rata on the line totals and the last line takes the
    rounding remainder, so pending amounts add up to the remaining balance.
    Shipping is always paid up front.
    """
    totals = [money(Decimal(str(line['unit_price'])) * int(line['quantity'])) for line in lines]
    ship_costs = [money(line.get('ship_cost') or 0) for line in lines]
    product_total = sum(totals, Decimal('0'))
    remaining = money(breakdown.remaining_balance)

    result = []
    allocated = Decimal('0')
    for index, (total, ship_cost) in enumerate(zip(totals, ship_costs)):
        if index == len(totals) - 1:
            pending = remaining - allocated
        elif product_total > 0:
            pending = money(remaining * total / product_total)
        else:
            pending = Decimal('0.00')
        allocated += pending
        result.append((total + ship_cost - pending, pending))
    return result


def format_address(address: Optional[Dict[str, Any]]) -> Optional[str]:
    if not address:
        return None
    head = ', '.join(p for p in (address.get('address'), address.get('city'), address.get('state')) if p)
    pincode = address.get('pincode')
    return f"{head} - {pincode}" if pincode else head


def _existing_result(session, attempt: PaymentAttempt) -> Optional[VerificationResult]:
    orders = session.query(Order).filter_by(gateway_order_id=attempt.gateway_order_id).order_by(Order.line_no).all()
    if not orders:
        return None
    numbers = list(dict.fromkeys(o.order_number for o in orders))
    return VerificationResult(
        success=True,
        order_group_key=orders[0].order_group_key,
        created=0,
        duplicate=True,
        order_numbers=numbers,
    )


def _reject(session, attempt: PaymentAttempt, payment_id: str, reason: str):
    if attempt.status == AttemptStatus.CREATED:
        attempt.transition(AttemptStatus.VERIFYING)
    attempt.transition(AttemptStatus.REJECTED)
    attempt.payment_id = payment_id
    attempt.failure_reason = reason
    session.commit()
    logger.error(f"Payment attempt {attempt.gateway_order_id} rejected: {reason}")
    raise OrderRejectedError(reason, payload={'gateway_order_id': attempt.gateway_order_id})


def materialize_orders(session, attempt: PaymentAttempt, payment_id: str) -> VerificationResult:
    """
    Turn a verified attempt into Order rows, once.

    Returns:
        VerificationResult; ``duplicate`` is True when the rows already existed.

    Raises:
        OrderRejectedError: the attempt was rejected now or earlier
    """
    if attempt.status == AttemptStatus.REJECTED:
        raise OrderRejectedError(attempt.failure_reason or 'Payment attempt was rejected',
                                 payload={'gateway_order_id': attempt.gateway_order_id})

    existing = _existing_result(session, attempt)
    if existing:
        logger.info(f"Duplicate delivery for gateway order {attempt.gateway_order_id}")
        return existing

    payload = attempt.recovery_payload or {}
    lines = payload.get('cart_lines') or []
    if not lines or not payload.get('breakdown'):
        _reject(session, attempt, payment_id, 'Recovery payload is incomplete')

    user_id = payload.get('user_id')
    retailer = session.get(AppUser, user_id) if user_id is not None else None
    if retailer is None:
        _reject(session, attempt, payment_id, f'User {user_id} does not exist')

    seller_ids = {int(line['seller_id']) for line in lines}
    found = {row.id for row in session.query(AppUser.id).filter(AppUser.id.in_(seller_ids)).all()}
    missing = sorted(seller_ids - found)
    if missing:
        _reject(session, attempt, payment_id, f'Unknown sellers {missing}')

    breakdown = PaymentBreakdown.from_dict(payload['breakdown'])
    shipping_address = format_address(payload.get('shipping_address'))
    splits = split_payment(lines, breakdown)
    order_numbers = {sid: generate_order_number() for sid in dict.fromkeys(int(line['seller_id']) for line in lines)}
    paid_at = datetime.now(timezone.utc)

    orders = []
    for line_no, (line, (paid, pending)) in enumerate(zip(lines, splits), start=1):
        unit_price = Decimal(str(line['unit_price']))
        base_cost = Decimal(str(line.get('base_cost') or line['unit_price']))
        quantity = int(line['quantity'])
        seller_id = int(line['seller_id'])

        orders.append(Order(
            order_group_key=payment_id,
            gateway_order_id=attempt.gateway_order_id,
            line_no=line_no,
            order_number=order_numbers[seller_id],
            retailer_id=retailer.id,
            seller_id=seller_id,
            product_id=str(line['product_id']),
            product_name=line.get('product_name'),
            quantity=quantity,
            unit_price=money(unit_price),
            total_amount=money(unit_price * quantity),
            tax_rate_snapshot=Decimal(str(line.get('tax_rate') or '0')),
            ship_cost=money(line.get('ship_cost') or 0),
            courier_name=line.get('courier_name'),
            courier_company_id=str(line['courier_company_id']) if line.get('courier_company_id') else None,
            shipping_address=shipping_address,
            seller_payout=money(base_cost * quantity),
            platform_margin=money((unit_price - base_cost) * quantity),
            payment_type=breakdown.payment_option,
            paid_amount=paid,
            pending_amount=pending,
            status=OrderStatus.PAID,
            paid_at=paid_at,
        ))

    try:
        if attempt.status == AttemptStatus.CREATED:
            attempt.transition(AttemptStatus.VERIFYING)
        session.add_all(orders)
        session.flush()
        attempt.transition(AttemptStatus.MATERIALIZED)
        attempt.payment_id = payment_id
        session.commit()
    except IntegrityError:
        # A concurrent delivery inserted the same (gateway_order_id, line_no) first
        session.rollback()
        winner = _existing_result(session, attempt)
        if winner:
            logger.info(f"Lost materialization race for {attempt.gateway_order_id}; treating as duplicate")
            return winner
        raise

    logger.info(
        f"Materialized {len(orders)} orders for gateway order {attempt.gateway_order_id} "
        f"(payment {payment_id}, {len(order_numbers)} sellers)"
    )
    return VerificationResult(
        success=True,
        order_group_key=payment_id,
        created=len(orders),
        duplicate=False,
        order_numbers=list(order_numbers.values()),
    )


def verify_payment(session, gateway_order_id: str, payment_id: str, signature: str, secret: str) -> VerificationResult:
    """
    Verify a checkout callback and materialize its orders.

    Raises:
        ValidationError: a field is missing
        SignatureError: the signature does not match (no side effects)
        NotFoundError: no attempt exists for the gateway order id
        OrderRejectedError: the recovery payload cannot produce orders
    """
    if not gateway_order_id or not payment_id or not signature:
        raise ValidationError('gateway_order_id, payment_id and signature are required')

    verify_signature(gateway_order_id, payment_id, signature, secret)

    attempt = session.query(PaymentAttempt).filter_by(gateway_order_id=gateway_order_id).first()
    if attempt is None:
        logger.error(f"No payment attempt for verified gateway order {gateway_order_id}")
        raise NotFoundError('Payment attempt not found', payload={'gateway_order_id': gateway_order_id})

    return materialize_orders(session, attempt, payment_id)


def orders_grouped_for_user(session, user_id: int) -> List[Dict[str, Any]]:
    """Orders of a retailer grouped by payment, newest first."""
    orders = (
        session.query(Order)
        .filter(Order.retailer_id == user_id)
        .order_by(Order.created_at.desc(), Order.id.desc())
        .all()
    )

    groups: Dict[str, Dict[str, Any]] = {}
    for order in orders:
        group = groups.get(order.order_group_key)
        if group is None:
            group = {
                'order_group_key': order.order_group_key,
                'created_at': order.created_at.isoformat() if order.created_at else None,
                'payment_type': order.payment_type,
                'total_amount': Decimal('0'),
                'shipping_total': Decimal('0'),
                'paid_amount': Decimal('0'),
                'pending_amount': Decimal('0'),
                'orders': [],
            }
            groups[order.order_group_key] = group
        group['total_amount'] += order.total_amount
        group['shipping_total'] += order.ship_cost
        group['paid_amount'] += order.paid_amount
        group['pending_amount'] += order.pending_amount
        group['orders'].append(order.to_dict())

    result = []
    for group in groups.values():
        group['orders'].sort(key=lambda o: o['id'])
        for key in ('total_amount', 'shipping_total', 'paid_amount', 'pending_amount'):
            group[key] = str(money(group[key]))
        result.append(group)
    return result
