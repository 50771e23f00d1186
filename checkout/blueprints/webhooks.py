"""
Webhooks Blueprint for Razorpay notifications.

``order.paid`` recovers orders when the browser never reached the verify
call. It feeds the same idempotent materializer, so a webhook and a callback
for one payment produce one set of orders.
"""

import logging
from flask import Blueprint, request, jsonify, current_app
from checkout.database import get_session
from checkout.exceptions import OrderRejectedError
from checkout.blueprints.metrics import order_materializations_total
from checkout.models import PaymentAttempt
from checkout.services.order_service import materialize_orders, verify_webhook_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


@webhooks_bp.route('/razorpay', methods=['POST'])
def razorpay_webhook():
    """
    Handle Razorpay webhook notifications.

    Handled events:
    - order.paid

    Everything else is acknowledged and ignored.
    """
    signature = request.headers.get('X-Razorpay-Signature', '')
    if not verify_webhook_signature(request.get_data(), signature, current_app.config.get('RAZORPAY_WEBHOOK_SECRET')):
        logger.warning("Invalid Razorpay webhook signature")
        order_materializations_total.labels(result='bad_signature', source='webhook').inc()
        return jsonify({'error': 'Invalid signature'}), 401

    data = request.get_json(silent=True)
    if not data:
        logger.warning("Empty webhook payload")
        return jsonify({'error': 'Empty payload'}), 400

    event = data.get('event')
    logger.info(f"Received Razorpay webhook: event={event}")

    if event == 'order.paid':
        return handle_order_paid(data)

    logger.info(f"Unhandled webhook event: {event}")
    return jsonify({'status': 'ignored', 'event': event}), 200


def handle_order_paid(data: dict) -> tuple:
    """
    Materialize orders for a paid gateway order.

    Args:
        data: Webhook payload

    Returns:
        tuple: (response, status_code)
    """
    payment = ((data.get('payload') or {}).get('payment') or {}).get('entity') or {}
    order_entity = ((data.get('payload') or {}).get('order') or {}).get('entity') or {}
    gateway_order_id = payment.get('order_id') or order_entity.get('id')
    payment_id = payment.get('id')

    if not gateway_order_id or not payment_id:
        logger.warning("order.paid webhook without order or payment id")
        return jsonify({'error': 'Missing order_id or payment_id'}), 400

    session = get_session()
    try:
        attempt = session.query(PaymentAttempt).filter_by(gateway_order_id=gateway_order_id).first()
        if attempt is None:
            logger.warning(f"order.paid for unknown gateway order {gateway_order_id}")
            return jsonify({'status': 'ignored', 'reason': 'unknown order'}), 200

        result = materialize_orders(session, attempt, payment_id)

    except OrderRejectedError as e:
        # Retrying cannot fix a rejected payload; acknowledge so the gateway stops
        order_materializations_total.labels(result='rejected', source='webhook').inc()
        return jsonify({'status': 'rejected', 'message': e.message}), 200
    except Exception as e:
        logger.exception(f"Error handling order.paid for {gateway_order_id}: {e}")
        session.rollback()
        return jsonify({'error': 'Processing failed'}), 500

    order_materializations_total.labels(
        result='duplicate' if result.duplicate else 'created', source='webhook'
    ).inc()
    return jsonify({'status': 'processed', **result.to_dict()}), 200
