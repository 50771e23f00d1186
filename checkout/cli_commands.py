"""
Flask CLI commands.

Commands:
- flask init-db: Create all tables
- flask create-seller: Register a seller account with its pickup pincode
"""

import click
import re
from checkout.database import db_session, create_all
from checkout.models import AppUser, UserType
from checkout.services.guest_service import clean_phone, MIN_PHONE_DIGITS, PINCODE_RE


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create database tables."""
        create_all()
        click.echo(click.style('Tables created.', fg='green'))

    @app.cli.command('create-seller')
    @click.option('--email', prompt=True, help='Seller email address')
    @click.option('--phone', prompt=True, help='Seller phone number')
    @click.option('--name', prompt=True, help='Contact name')
    @click.option('--business-name', default=None, help='Business name shown to buyers')
    @click.option('--pincode', prompt=True, help='Pickup pincode used for courier quotes')
    @click.option('--password', prompt=True, hide_input=True, confirmation_prompt=True, help='Seller password')
    def create_seller(email, phone, name, business_name, pincode, password):
        """Create a seller account."""

        email_pattern = r'^[a-zA-Z0-9._%+-]+@[a-zA-Z0-9.-]+\.[a-zA-Z]{2,}$'
        if not re.match(email_pattern, email):
            click.echo(click.style('Invalid email. Use the format user@example.com', fg='red'))
            return

        phone = clean_phone(phone)
        if len(phone) < MIN_PHONE_DIGITS:
            click.echo(click.style(f'Phone must have at least {MIN_PHONE_DIGITS} digits.', fg='red'))
            return

        if not PINCODE_RE.match(pincode.strip()):
            click.echo(click.style('Pincode must be 6 digits.', fg='red'))
            return

        if len(password) < 6:
            click.echo(click.style('Password must be at least 6 characters.', fg='red'))
            return

        existing = db_session.query(AppUser).filter(
            (AppUser.email == email.lower()) | (AppUser.phone == phone)
        ).first()
        if existing:
            click.echo(click.style(f'An account already exists for {email} / {phone}', fg='red'))
            return

        try:
            seller = AppUser(
                email=email.lower(),
                phone=phone,
                full_name=name,
                business_name=business_name,
                user_type=UserType.SELLER,
                pincode=pincode.strip(),
            )
            seller.set_password(password)

            db_session.add(seller)
            db_session.commit()

            click.echo(click.style('\nSeller created.', fg='green', bold=True))
            click.echo(f'   Email: {seller.email}')
            click.echo(f'   ID: {seller.id}')
            click.echo(f'   Pickup pincode: {seller.pincode}')

        except Exception as e:
            db_session.rollback()
            click.echo(click.style(f'Error creating seller: {str(e)}', fg='red'))
