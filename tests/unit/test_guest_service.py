"""
Unit tests for guest account provisioning.
"""

import pytest

from checkout.exceptions import ConflictError, ValidationError
from checkout.models import AppUser
from checkout.services.guest_service import (
    clean_phone, provision_guest_account, register_guest, validate_guest_form
)

FORM = {
    'name': 'Ravi Kumar',
    'phone': '+91 98765-43210',
    'address': '4 Park Street',
    'city': 'Kolkata',
    'state': 'West Bengal',
    'pincode': '700016',
}


class TestValidateGuestForm:

    def test_phone_is_cleaned_to_digits(self):
        guest = validate_guest_form(FORM)

        assert guest.phone == '919876543210'
        assert clean_phone('(987) 654-3210') == '9876543210'

    def test_reports_every_invalid_field(self):
        with pytest.raises(ValidationError) as exc:
            validate_guest_form({'name': '', 'phone': '12345', 'address': '', 'pincode': '7000'})

        assert set(exc.value.payload['fields']) == {'name', 'phone', 'address', 'pincode'}


class TestRegisterGuest:

    def test_creates_guest_retailer(self, session):
        registration = register_guest(session, validate_guest_form(FORM))

        user = session.get(AppUser, registration.user_id)
        assert user.is_guest is True
        assert user.email == '919876543210@d2bcart.guest'
        assert user.pincode == '700016'
        assert user.check_password(registration.ephemeral_credential) is True

    def test_existing_phone_is_a_conflict(self, session):
        register_guest(session, validate_guest_form(FORM))

        with pytest.raises(ConflictError) as exc:
            register_guest(session, validate_guest_form(dict(FORM, name='Someone Else')))

        assert exc.value.status_code == 409
        assert exc.value.message == 'account exists'
        assert session.query(AppUser).count() == 1


class TestProvisionGuestAccount:

    def test_signed_in(self, session):
        calls = []

        result = provision_guest_account(session, FORM, lambda phone, cred: calls.append((phone, cred)) or True)

        assert result.signed_in is True
        assert result.warning is None
        assert 'ephemeral_credential' not in result.to_dict()
        assert calls[0][0] == '919876543210'

    def test_sign_in_failure_is_not_fatal(self, session):
        def broken_sign_in(phone, credential):
            raise RuntimeError('session store down')

        result = provision_guest_account(session, FORM, broken_sign_in)

        assert result.signed_in is False
        assert result.warning
        user = session.get(AppUser, result.user_id)
        assert user is not None
        assert user.check_password(result.to_dict()['ephemeral_credential']) is True
