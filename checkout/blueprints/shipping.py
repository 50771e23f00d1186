"""
Shipping blueprint - courier quotes per seller group.
"""
import logging
from typing import Dict, Iterable, Optional

from flask import Blueprint, request, jsonify, current_app

from checkout.database import db_session
from checkout.exceptions import GatewayError
from checkout.models import AppUser
from checkout.blueprints.metrics import shipping_quotes_total
from checkout.services.cart_service import aggregate_cart, parse_cart_lines
from checkout.services.shipping_service import ShippingState, resolve_shipping
from checkout.services.shiprocket_client import ShiprocketClient
from checkout.utils.number_format import money

logger = logging.getLogger(__name__)

shipping_bp = Blueprint('shipping', __name__, url_prefix='/api/shipping')


def pickup_pincodes_for(session, seller_ids: Iterable[int]) -> Dict[int, Optional[str]]:
    """Pickup pincode of every seller account (None when the seller has none)."""
    seller_ids = list(seller_ids)
    if not seller_ids:
        return {}
    rows = session.query(AppUser.id, AppUser.pincode).filter(AppUser.id.in_(seller_ids)).all()
    found = {row.id: (row.pincode or None) for row in rows}
    return {sid: found.get(sid) for sid in seller_ids}


def get_courier_client() -> ShiprocketClient:
    try:
        return ShiprocketClient.from_config(current_app.config)
    except ValueError as e:
        logger.error(f"Courier client not configured: {e}")
        raise GatewayError('Shipping rates are not available right now')


def quote_cart(session, groups, destination_pincode: str, cash_on_delivery: bool = False) -> ShippingState:
    """Resolve shipping for aggregated seller groups with the configured courier client."""
    config = current_app.config
    client = get_courier_client()
    state = resolve_shipping(
        groups,
        destination_pincode,
        quote_fn=client.get_quotes,
        pickup_pincodes=pickup_pincodes_for(session, groups.keys()),
        max_workers=config['SHIPPING_MAX_WORKERS'],
        max_options=config['SHIPPING_MAX_OPTIONS'],
        preferred=config.get('PREFERRED_COURIERS'),
        cash_on_delivery=cash_on_delivery,
    )
    for slot in state.sellers.values():
        shipping_quotes_total.labels(outcome=slot.error_kind or 'ok').inc()
    return state


@shipping_bp.route('/quotes', methods=['POST'])
def quotes():
    """
    Quote couriers for every seller in the cart.

    Body: ``{"items": [...], "pincode": "560001", "cod": false}``.
    A seller without options is reported in ``blockers``; other sellers
    keep their quotes.
    """
    payload = request.get_json(silent=True) or {}
    lines = parse_cart_lines(payload.get('items'))
    cart = aggregate_cart(lines, current_app.config['MIN_ORDER_PER_SELLER'])

    state = quote_cart(
        db_session,
        cart.groups,
        str(payload.get('pincode') or ''),
        cash_on_delivery=bool(payload.get('cod')),
    )

    data = state.to_dict()
    data['cart'] = cart.to_dict()
    data['grand_total'] = str(money(cart.grand_total + state.shipping_total))
    return jsonify(data), 200
