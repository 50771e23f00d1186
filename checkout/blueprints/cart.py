"""Cart blueprint - seller grouping and minimum order checks."""
import logging
from flask import Blueprint, request, jsonify, current_app
from checkout.exceptions import MinimumOrderError
from checkout.services.cart_service import aggregate_cart, parse_cart_lines

logger = logging.getLogger(__name__)

cart_bp = Blueprint('cart', __name__, url_prefix='/api/cart')


@cart_bp.route('/summary', methods=['POST'])
def summary():
    """
    Group the posted cart by seller.

    Body: ``{"items": [cart line, ...]}``. Minimum order violations are
    reported in the body (``can_checkout`` false), not as an error status.
    """
    payload = request.get_json(silent=True) or {}
    lines = parse_cart_lines(payload.get('items'))
    cart = aggregate_cart(lines, current_app.config['MIN_ORDER_PER_SELLER'])

    data = cart.to_dict()
    if cart.violations:
        data['message'] = MinimumOrderError(cart.violations).message
    return jsonify(data), 200
