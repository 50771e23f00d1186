"""
Guest account provisioning for checkout without an account.

Creates a retailer account from the delivery form, identified by phone
number. An existing phone is never reused: the caller is sent to log in.
"""
import logging
import re
import secrets
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError

from checkout.exceptions import ConflictError, ValidationError
from checkout.models import AppUser, UserType

logger = logging.getLogger(__name__)

PINCODE_RE = re.compile(r'^\d{6}$')
MIN_PHONE_DIGITS = 10


@dataclass(frozen=True)
class GuestForm:
    name: str
    phone: str
    address: str
    pincode: str
    city: Optional[str] = None
    state: Optional[str] = None
    email: Optional[str] = None


@dataclass(frozen=True)
class GuestRegistration:
    user_id: int
    ephemeral_credential: str

    def to_dict(self) -> Dict[str, Any]:
        return {'user_id': self.user_id, 'ephemeral_credential': self.ephemeral_credential}


@dataclass(frozen=True)
class GuestProvisioning:
    """
    Outcome of provisioning: the account always exists, the session may not.

    Without a session the credential is the only way back into the account,
    so it is handed out whenever sign-in failed.
    """
    user_id: int
    signed_in: bool
    ephemeral_credential: str
    warning: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        data = {'user_id': self.user_id, 'signed_in': self.signed_in}
        if not self.signed_in:
            data['ephemeral_credential'] = self.ephemeral_credential
        if self.warning:
            data['warning'] = self.warning
        return data


def clean_phone(phone: Optional[str]) -> str:
    """Keep digits only."""
    return re.sub(r'\D', '', phone or '')


def validate_guest_form(form: Optional[Dict[str, Any]]) -> GuestForm:
    """
    Validate the guest delivery form.

    Raises:
        ValidationError: with every invalid field listed in ``payload['fields']``
    """
    form = form or {}
    errors = {}

    name = str(form.get('name') or '').strip()
    if not name:
        errors['name'] = 'Name is required'

    phone = clean_phone(str(form.get('phone') or ''))
    if len(phone) < MIN_PHONE_DIGITS:
        errors['phone'] = f'Phone must have at least {MIN_PHONE_DIGITS} digits'

    address = str(form.get('address') or '').strip()
    if not address:
        errors['address'] = 'Address is required'

    pincode = str(form.get('pincode') or '').strip()
    if not PINCODE_RE.match(pincode):
        errors['pincode'] = 'Pincode must be 6 digits'

    if errors:
        raise ValidationError('Please fill in all required fields', payload={'fields': errors})

    return GuestForm(
        name=name,
        phone=phone,
        address=address,
        pincode=pincode,
        city=str(form.get('city') or '').strip() or None,
        state=str(form.get('state') or '').strip() or None,
        email=str(form.get('email') or '').strip().lower() or None,
    )


def register_guest(session, form: GuestForm, email_domain: str = 'd2bcart.guest') -> GuestRegistration:
    """
    Create a guest retailer account.

    Raises:
        ConflictError: the phone (or e-mail) already belongs to an account
    """
    existing = session.query(AppUser).filter_by(phone=form.phone).first()
    if existing:
        logger.info(f"Guest registration refused: phone already registered (user {existing.id})")
        raise ConflictError(payload={'phone': form.phone})

    credential = secrets.token_urlsafe(16)
    user = AppUser(
        email=form.email or f"{form.phone}@{email_domain}",
        phone=form.phone,
        full_name=form.name,
        user_type=UserType.RETAILER,
        is_guest=True,
        address=form.address,
        city=form.city,
        state=form.state,
        pincode=form.pincode,
    )
    user.set_password(credential)

    try:
        session.add(user)
        session.commit()
    except IntegrityError:
        # Concurrent registration with the same phone won the unique index
        session.rollback()
        logger.info(f"Guest registration lost a race for phone {form.phone}")
        raise ConflictError(payload={'phone': form.phone})

    logger.info(f"Guest account {user.id} created")
    return GuestRegistration(user_id=user.id, ephemeral_credential=credential)


def provision_guest_account(
    session,
    form: Dict[str, Any],
    sign_in: Callable[[str, str], bool],
    email_domain: str = 'd2bcart.guest',
) -> GuestProvisioning:
    """
    Validate, register and sign in a guest.

    ``sign_in(phone, credential)`` establishes the session. Its failure does not
    undo the account: checkout continues with the returned user id.
    """
    guest = validate_guest_form(form)
    registration = register_guest(session, guest, email_domain)

    try:
        signed_in = bool(sign_in(guest.phone, registration.ephemeral_credential))
    except Exception as e:
        logger.warning(f"Guest sign-in raised for user {registration.user_id}: {e}")
        signed_in = False

    if not signed_in:
        return GuestProvisioning(
            user_id=registration.user_id,
            signed_in=False,
            ephemeral_credential=registration.ephemeral_credential,
            warning='Account created but automatic sign-in failed. Use this credential to sign in.',
        )
    return GuestProvisioning(
        user_id=registration.user_id,
        signed_in=True,
        ephemeral_credential=registration.ephemeral_credential,
    )
