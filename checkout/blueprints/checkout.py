"""
Checkout blueprint - payment intents, verification and order history.
"""
import logging
from typing import Any, Dict

from flask import Blueprint, request, jsonify, current_app, g

from checkout.database import db_session
from checkout.exceptions import (
    CheckoutError, GatewayError, OrderRejectedError, ServiceabilityError, SignatureError, ValidationError
)
from checkout.blueprints.auth import login_with_credentials
from checkout.blueprints.metrics import checkout_intents_total, guest_registrations_total, order_materializations_total
from checkout.blueprints.shipping import quote_cart
from checkout.middleware import require_login
from checkout.models import AppUser
from checkout.services.cart_service import aggregate_cart, ensure_minimum_order, parse_cart_lines
from checkout.services.guest_service import provision_guest_account
from checkout.services.order_service import orders_grouped_for_user, verify_payment
from checkout.services.payment_service import (
    create_payment_intent, normalize_shipping_address, parse_payment_option
)
from checkout.services.razorpay_client import RazorpayClient
from checkout.services.shipping_service import select_courier

logger = logging.getLogger(__name__)

checkout_bp = Blueprint('checkout', __name__, url_prefix='/api')


def get_payment_gateway() -> RazorpayClient:
    try:
        return RazorpayClient.from_config(current_app.config)
    except ValueError as e:
        logger.error(f"Payment gateway not configured: {e}")
        raise GatewayError('Payments are not available right now')


def _apply_courier_choices(state, choices: Dict[str, Any]) -> None:
    for raw_seller, courier_id in (choices or {}).items():
        try:
            seller_id = int(raw_seller)
        except (TypeError, ValueError):
            raise ValidationError(f'Invalid seller id "{raw_seller}" in courier choices')
        select_courier(state, seller_id, str(courier_id))


@checkout_bp.route('/checkout/intent', methods=['POST'])
def create_intent():
    """
    Open a payment intent for the posted cart.

    Body::

        {
          "items": [...],
          "payment_option": "full" | "advance",
          "couriers": {"<seller_id>": "<courier_id>"},   # optional, cheapest otherwise
          "shipping_address": {"address", "city", "state", "pincode"},
          "guest": {"name", "phone", "address", "city", "state", "pincode"}  # when anonymous
        }

    Shipping is re-quoted here; only courier ids are taken from the client.
    """
    payload = request.get_json(silent=True) or {}
    config = current_app.config

    try:
        option = parse_payment_option(payload.get('payment_option'))
        lines = parse_cart_lines(payload.get('items'))
        cart = aggregate_cart(lines, config['MIN_ORDER_PER_SELLER'])
        ensure_minimum_order(cart)

        user = g.get('user')
        guest_form = payload.get('guest') or {}
        if user is None and not guest_form:
            raise ValidationError('Sign in or provide guest details to check out')

        address = normalize_shipping_address(payload.get('shipping_address') or guest_form, fallback=user)

        state = quote_cart(db_session, cart.groups, address['pincode'])
        _apply_courier_choices(state, payload.get('couriers'))
        blockers = state.blockers()
        if blockers:
            first = blockers[0]
            raise ServiceabilityError(first['seller_id'], first['reason'], payload={'blockers': blockers})

        guest = None
        if user is None:
            try:
                guest = provision_guest_account(
                    db_session, guest_form, login_with_credentials, config['GUEST_EMAIL_DOMAIN']
                )
            except CheckoutError as e:
                guest_registrations_total.labels(outcome='conflict' if e.status_code == 409 else 'invalid').inc()
                raise
            guest_registrations_total.labels(outcome='created').inc()
            user = db_session.get(AppUser, guest.user_id)

        try:
            intent = create_payment_intent(
                db_session,
                get_payment_gateway(),
                user,
                cart,
                state.selections(),
                option,
                address,
                advance_percent=config['ADVANCE_PAYMENT_PERCENT'],
                currency=config['CURRENCY'],
            )
        except CheckoutError as e:
            # The guest account already exists; a retry would get 409
            if guest is not None:
                e.payload = dict(e.payload or {}, guest=guest.to_dict())
            raise
    except CheckoutError as e:
        checkout_intents_total.labels(outcome=type(e).__name__).inc()
        raise

    checkout_intents_total.labels(outcome='created').inc()

    data = intent.to_dict()
    data['key_id'] = config['RAZORPAY_KEY_ID']
    data['shipping'] = state.to_dict()
    if guest is not None:
        data['guest'] = guest.to_dict()
    return jsonify(data), 201


@checkout_bp.route('/checkout/verify', methods=['POST'])
def verify():
    """
    Verify the gateway callback and create the orders.

    Accepts Razorpay's field names (``razorpay_order_id``, ``razorpay_payment_id``,
    ``razorpay_signature``) or the short ones. Cart data sent by the client is
    ignored: orders are built from the stored attempt.
    """
    payload = request.get_json(silent=True) or {}
    gateway_order_id = payload.get('razorpay_order_id') or payload.get('gateway_order_id')
    payment_id = payload.get('razorpay_payment_id') or payload.get('payment_id')
    signature = payload.get('razorpay_signature') or payload.get('signature')

    try:
        result = verify_payment(
            db_session, gateway_order_id, payment_id, signature,
            current_app.config['RAZORPAY_KEY_SECRET'],
        )
    except SignatureError:
        order_materializations_total.labels(result='bad_signature', source='callback').inc()
        raise
    except OrderRejectedError:
        order_materializations_total.labels(result='rejected', source='callback').inc()
        raise

    order_materializations_total.labels(
        result='duplicate' if result.duplicate else 'created', source='callback'
    ).inc()
    return jsonify(result.to_dict()), 200


@checkout_bp.route('/orders', methods=['GET'])
@require_login
def list_orders():
    """Orders of the signed-in retailer grouped by payment."""
    groups = orders_grouped_for_user(db_session, g.user.id)
    return jsonify({'groups': groups}), 200
