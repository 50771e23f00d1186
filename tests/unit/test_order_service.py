"""
Unit tests for signature checks and order materialization.
"""

import re
import pytest
from decimal import Decimal
from unittest import mock

from sqlalchemy.exc import IntegrityError

from checkout.exceptions import NotFoundError, OrderRejectedError, SignatureError
from checkout.models import AttemptStatus, Order, PaymentAttempt
from checkout.services import order_service
from checkout.services.order_service import (
    compute_signature, generate_order_number, materialize_orders, orders_grouped_for_user,
    split_payment, verify_payment, verify_signature, verify_webhook_signature, compute_webhook_signature
)
from checkout.services.payment_service import ADVANCE, FULL, compute_breakdown

SECRET = 'test_key_secret'


def payload_line(seller, product_id, unit_price, quantity, base_cost, ship_cost='0', courier_id='7'):
    return {
        'product_id': product_id,
        'seller_id': seller.id,
        'product_name': f'Product {product_id}',
        'unit_price': str(unit_price),
        'base_cost': str(base_cost),
        'quantity': quantity,
        'tax_rate': '18',
        'ship_cost': str(ship_cost),
        'courier_company_id': courier_id,
        'courier_name': 'Delhivery',
    }


def make_attempt(session, user_id, lines, option=ADVANCE, order_id='order_ABC'):
    product_total = sum(Decimal(l['unit_price']) * l['quantity'] for l in lines)
    shipping_total = sum(Decimal(l['ship_cost']) for l in lines)
    breakdown = compute_breakdown(product_total, shipping_total, option)
    attempt = PaymentAttempt(
        gateway_order_id=order_id,
        user_id=user_id,
        amount=breakdown.payable_now,
        currency='INR',
        payment_option=option,
        recovery_payload={
            'user_id': user_id,
            'cart_lines': lines,
            'breakdown': breakdown.to_dict(),
            'shipping_address': {'address': '12 MG Road', 'city': 'Bengaluru', 'state': 'KA', 'pincode': '560001'},
        },
        status=AttemptStatus.CREATED,
    )
    session.add(attempt)
    session.commit()
    return attempt


class TestSignatures:
    """HMAC checks."""

    def test_valid_signature_passes(self):
        signature = compute_signature('order_1', 'pay_1', SECRET)
        verify_signature('order_1', 'pay_1', signature, SECRET)

    def test_altered_signature_fails(self):
        signature = compute_signature('order_1', 'pay_1', SECRET)
        tampered = ('0' if signature[0] != '0' else '1') + signature[1:]

        with pytest.raises(SignatureError):
            verify_signature('order_1', 'pay_1', tampered, SECRET)

    def test_signature_bound_to_payment_id(self):
        signature = compute_signature('order_1', 'pay_1', SECRET)

        with pytest.raises(SignatureError):
            verify_signature('order_1', 'pay_2', signature, SECRET)

    def test_non_string_signature_fails(self):
        for signature in (12345, ['abc'], 'sigé'):
            with pytest.raises(SignatureError):
                verify_signature('order_1', 'pay_1', signature, SECRET)

    def test_webhook_signature(self):
        body = b'{"event":"order.paid"}'
        signature = compute_webhook_signature(body, 'whsec')

        assert verify_webhook_signature(body, signature, 'whsec') is True
        assert verify_webhook_signature(body + b' ', signature, 'whsec') is False
        assert verify_webhook_signature(body, signature, '') is False


def test_order_number_format():
    number = generate_order_number(now=1700000000.0)

    assert re.match(r'^D2B-[0-9A-Z]+-[0-9A-Z]{3}$', number)
    assert int(number.split('-')[1], 36) == 1700000000000


class TestSplitPayment:
    """Per-line paid and pending amounts."""

    def test_pending_sums_to_remaining_balance(self):
        lines = [
            {'unit_price': '333.33', 'quantity': 3, 'ship_cost': '120'},
            {'unit_price': '1000', 'quantity': 1, 'ship_cost': '0'},
            {'unit_price': '0.01', 'quantity': 7, 'ship_cost': '55'},
        ]
        breakdown = compute_breakdown(Decimal('2000.06'), Decimal('175'), ADVANCE, Decimal('10'))
        splits = split_payment(lines, breakdown)

        assert sum(pending for _, pending in splits) == breakdown.remaining_balance
        assert sum(paid for paid, _ in splits) == breakdown.payable_now

    def test_full_payment_has_no_pending(self):
        lines = [{'unit_price': '5000', 'quantity': 1, 'ship_cost': '90'}]
        splits = split_payment(lines, compute_breakdown(Decimal('5000'), Decimal('90'), FULL))

        assert splits == [(Decimal('5090.00'), Decimal('0.00'))]


class TestMaterializeOrders:
    """Turning a verified attempt into order rows."""

    def test_one_row_per_line_with_payout_split(self, session, retailer, seller_a, seller_b):
        lines = [
            payload_line(seller_a, 'a1', 3000, 1, 2500, ship_cost='150'),
            payload_line(seller_a, 'a2', 1000, 2, 800),
            payload_line(seller_b, 'b1', 4000, 1, 3600, ship_cost='120', courier_id='9'),
        ]
        attempt = make_attempt(session, retailer.id, lines)

        result = materialize_orders(session, attempt, 'pay_001')

        assert result.success is True
        assert result.created == 3
        assert result.duplicate is False
        assert result.order_group_key == 'pay_001'

        orders = session.query(Order).order_by(Order.line_no).all()
        assert [o.ship_cost for o in orders] == [Decimal('150.00'), Decimal('0.00'), Decimal('120.00')]
        assert orders[1].seller_payout == Decimal('1600.00')
        assert orders[1].platform_margin == Decimal('400.00')
        assert orders[0].order_number == orders[1].order_number
        assert orders[0].order_number != orders[2].order_number
        assert orders[2].courier_company_id == '9'
        assert orders[0].shipping_address == '12 MG Road, Bengaluru, KA - 560001'
        assert sum(o.pending_amount for o in orders) == Decimal('9000.00')

        session.refresh(attempt)
        assert attempt.status == AttemptStatus.MATERIALIZED
        assert attempt.payment_id == 'pay_001'

    def test_second_materialization_is_a_duplicate(self, session, retailer, seller_a):
        attempt = make_attempt(session, retailer.id, [payload_line(seller_a, 'a1', 4000, 1, 3000, ship_cost='90')])

        first = materialize_orders(session, attempt, 'pay_001')
        second = materialize_orders(session, attempt, 'pay_001')

        assert first.created == 1
        assert second.duplicate is True
        assert second.order_numbers == first.order_numbers
        assert session.query(Order).count() == 1

    def test_losing_the_insert_race_returns_the_winner(self, session, retailer, seller_a):
        lines = [payload_line(seller_a, 'a1', 3000, 1, 2500, ship_cost='90'), payload_line(seller_a, 'a2', 1000, 1, 800)]
        attempt = make_attempt(session, retailer.id, lines)
        winner = materialize_orders(session, attempt, 'pay_001')

        real_lookup = order_service._existing_result
        lookups = []

        def stale_first_lookup(sess, att):
            # The competing delivery had not committed when this one checked
            lookups.append(att.gateway_order_id)
            return None if len(lookups) == 1 else real_lookup(sess, att)

        with mock.patch.object(order_service, '_existing_result', side_effect=stale_first_lookup):
            result = materialize_orders(session, attempt, 'pay_001')

        assert len(lookups) == 2
        assert result.duplicate is True
        assert result.created == 0
        assert result.order_group_key == 'pay_001'
        assert result.order_numbers == winner.order_numbers
        assert session.query(Order).count() == 2

        session.refresh(attempt)
        assert attempt.status == AttemptStatus.MATERIALIZED

    def test_integrity_error_without_winner_propagates(self, session, retailer, seller_a):
        attempt = make_attempt(session, retailer.id, [payload_line(seller_a, 'a1', 4000, 1, 3000)])
        materialize_orders(session, attempt, 'pay_001')

        with mock.patch.object(order_service, '_existing_result', return_value=None):
            with pytest.raises(IntegrityError):
                materialize_orders(session, attempt, 'pay_001')

        assert session.query(Order).count() == 1

    def test_unknown_user_rejects_attempt(self, session, seller_a):
        attempt = make_attempt(session, 987654, [payload_line(seller_a, 'a1', 4000, 1, 3000)])

        with pytest.raises(OrderRejectedError):
            materialize_orders(session, attempt, 'pay_001')

        session.refresh(attempt)
        assert attempt.status == AttemptStatus.REJECTED
        assert session.query(Order).count() == 0

        with pytest.raises(OrderRejectedError):
            materialize_orders(session, attempt, 'pay_001')


class TestVerifyPayment:
    """Signature first, then the attempt."""

    def test_bad_signature_writes_nothing(self, session, retailer, seller_a):
        make_attempt(session, retailer.id, [payload_line(seller_a, 'a1', 4000, 1, 3000)])

        with pytest.raises(SignatureError):
            verify_payment(session, 'order_ABC', 'pay_001', 'forged', SECRET)

        attempt = session.query(PaymentAttempt).filter_by(gateway_order_id='order_ABC').one()
        assert attempt.status == AttemptStatus.CREATED
        assert session.query(Order).count() == 0

    def test_unknown_attempt(self, session):
        signature = compute_signature('order_missing', 'pay_001', SECRET)

        with pytest.raises(NotFoundError):
            verify_payment(session, 'order_missing', 'pay_001', signature, SECRET)

    def test_verified_payment_materializes(self, session, retailer, seller_a):
        make_attempt(session, retailer.id, [payload_line(seller_a, 'a1', 4000, 1, 3000, ship_cost='80')])
        signature = compute_signature('order_ABC', 'pay_001', SECRET)

        result = verify_payment(session, 'order_ABC', 'pay_001', signature, SECRET)

        assert result.created == 1
        groups = orders_grouped_for_user(session, retailer.id)
        assert len(groups) == 1
        assert groups[0]['order_group_key'] == 'pay_001'
        assert groups[0]['shipping_total'] == '80.00'
        assert groups[0]['pending_amount'] == '4000.00'
