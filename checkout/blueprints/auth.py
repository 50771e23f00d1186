"""
Authentication blueprint.
Handles guest registration and the phone + password session used by checkout.
"""
import logging

from flask import Blueprint, request, jsonify, session, current_app, g

from checkout.database import db_session
from checkout.exceptions import ConflictError, UnauthorizedError
from checkout.blueprints.metrics import guest_registrations_total
from checkout.middleware import sign_in
from checkout.models import AppUser
from checkout.services.guest_service import clean_phone, register_guest, validate_guest_form

logger = logging.getLogger(__name__)

auth_bp = Blueprint('auth', __name__, url_prefix='/api/auth')


def authenticate(phone: str, password: str):
    """Return the active user matching phone and password, else None."""
    phone = clean_phone(phone)
    if not phone or not password:
        return None
    user = db_session.query(AppUser).filter_by(phone=phone, active=True).first()
    if user is None or not user.check_password(password):
        return None
    return user


def login_with_credentials(phone: str, password: str) -> bool:
    """Sign in by phone and password. Used by the guest checkout handshake."""
    user = authenticate(phone, password)
    if user is None:
        return False
    sign_in(user)
    return True


@auth_bp.route('/guest-register', methods=['POST'])
def guest_register():
    """
    Register a guest retailer.

    Returns 201 ``{user_id, ephemeral_credential}`` or 409 when the phone
    already has an account.
    """
    form = request.get_json(silent=True) or {}
    guest = validate_guest_form(form)
    try:
        registration = register_guest(db_session, guest, current_app.config['GUEST_EMAIL_DOMAIN'])
    except ConflictError:
        guest_registrations_total.labels(outcome='conflict').inc()
        raise

    guest_registrations_total.labels(outcome='created').inc()
    return jsonify(registration.to_dict()), 201


@auth_bp.route('/login', methods=['POST'])
def login():
    """Sign in with phone and password."""
    payload = request.get_json(silent=True) or {}
    user = authenticate(str(payload.get('phone') or ''), payload.get('password') or '')
    if user is None:
        logger.info("Failed login attempt")
        raise UnauthorizedError('Invalid phone or password')

    sign_in(user)
    logger.info(f"User {user.id} logged in")
    return jsonify({'user_id': user.id, 'name': user.display_name, 'is_guest': user.is_guest}), 200


@auth_bp.route('/logout', methods=['POST'])
def logout():
    """Clear the session."""
    user_id = g.get('user_id')
    session.clear()
    if user_id:
        logger.info(f"User {user_id} logged out")
    return jsonify({'status': 'ok'}), 200
