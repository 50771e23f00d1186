"""
Integration tests for the Razorpay webhook recovery path.
"""

import json
import pytest
from decimal import Decimal

from checkout.models import AttemptStatus, Order, PaymentAttempt
from checkout.services.order_service import compute_signature, compute_webhook_signature
from checkout.services.payment_service import ADVANCE, compute_breakdown

WEBHOOK_SECRET = 'test_webhook_secret'


@pytest.fixture
def attempt(session, retailer, seller_a):
    breakdown = compute_breakdown(Decimal('4000'), Decimal('90'), ADVANCE)
    attempt = PaymentAttempt(
        gateway_order_id='order_WH1',
        user_id=retailer.id,
        amount=breakdown.payable_now,
        currency='INR',
        payment_option=ADVANCE,
        recovery_payload={
            'user_id': retailer.id,
            'cart_lines': [{
                'product_id': 'p1', 'seller_id': seller_a.id, 'unit_price': '4000', 'base_cost': '3500',
                'quantity': 1, 'ship_cost': '90', 'courier_company_id': '7', 'courier_name': 'Delhivery',
            }],
            'breakdown': breakdown.to_dict(),
            'shipping_address': {'address': '12 MG Road', 'pincode': '560001'},
        },
        status=AttemptStatus.CREATED,
    )
    session.add(attempt)
    session.commit()
    return attempt


def order_paid(order_id='order_WH1', payment_id='pay_WH1'):
    return {
        'event': 'order.paid',
        'payload': {
            'payment': {'entity': {'id': payment_id, 'order_id': order_id, 'status': 'captured'}},
            'order': {'entity': {'id': order_id, 'status': 'paid'}},
        },
    }


def post_webhook(client, payload, secret=WEBHOOK_SECRET):
    body = json.dumps(payload).encode('utf-8')
    return client.post(
        '/webhooks/razorpay',
        data=body,
        content_type='application/json',
        headers={'X-Razorpay-Signature': compute_webhook_signature(body, secret)},
    )


class TestRazorpayWebhook:

    def test_order_paid_materializes(self, client, session, attempt):
        response = post_webhook(client, order_paid())

        assert response.status_code == 200
        assert response.get_json()['created'] == 1
        assert session.query(Order).count() == 1

    def test_webhook_then_callback_creates_one_set(self, client, session, attempt):
        post_webhook(client, order_paid())
        response = client.post('/api/checkout/verify', json={
            'razorpay_order_id': 'order_WH1',
            'razorpay_payment_id': 'pay_WH1',
            'razorpay_signature': compute_signature('order_WH1', 'pay_WH1', 'test_key_secret'),
        })

        assert response.status_code == 200
        assert response.get_json()['duplicate'] is True
        assert session.query(Order).count() == 1

    def test_replayed_webhook_is_duplicate(self, client, session, attempt):
        post_webhook(client, order_paid())
        response = post_webhook(client, order_paid())

        assert response.status_code == 200
        assert response.get_json()['duplicate'] is True
        assert session.query(Order).count() == 1

    def test_invalid_signature(self, client, session, attempt):
        response = post_webhook(client, order_paid(), secret='wrong')

        assert response.status_code == 401
        assert session.query(Order).count() == 0

    def test_unknown_order_is_acknowledged(self, client, session):
        response = post_webhook(client, order_paid(order_id='order_NOPE'))

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ignored'

    def test_other_events_are_ignored(self, client, attempt):
        response = post_webhook(client, {'event': 'payment.failed', 'payload': {}})

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ignored'
