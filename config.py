"""Configuration module for Flask application."""
import os
from decimal import Decimal
from dotenv import load_dotenv

# Load environment variables from .env file
load_dotenv()


class Config:
    """Base configuration class."""

    # Flask
    SECRET_KEY = os.getenv('SECRET_KEY', 'dev-secret-key-change-in-production')
    DEBUG = os.getenv('FLASK_DEBUG', '1') == '1'
    ENV = os.getenv('FLASK_ENV', 'development')

    # Session Configuration (Production-safe defaults)
    SESSION_COOKIE_SECURE = os.getenv('SESSION_COOKIE_SECURE', 'false').lower() == 'true'
    SESSION_COOKIE_HTTPONLY = True
    SESSION_COOKIE_SAMESITE = os.getenv('SESSION_COOKIE_SAMESITE', 'Lax')
    PERMANENT_SESSION_LIFETIME = 86400  # 24 hours

    # Database - Support multiple environment variable naming conventions
    # Priority: DATABASE_URL > DB_* > POSTGRES_*
    DATABASE_URL = os.getenv('DATABASE_URL')

    if not DATABASE_URL:
        # Try DB_* variables (Docker style)
        DB_HOST = os.getenv('DB_HOST') or os.getenv('POSTGRES_HOST', 'localhost')
        DB_PORT = os.getenv('DB_PORT') or os.getenv('POSTGRES_PORT', '5432')
        DB_NAME = os.getenv('DB_NAME') or os.getenv('POSTGRES_DB', 'checkout')
        DB_USER = os.getenv('DB_USER') or os.getenv('POSTGRES_USER', 'checkout')
        DB_PASSWORD = os.getenv('DB_PASSWORD') or os.getenv('POSTGRES_PASSWORD', 'checkout')

        DATABASE_URL = (
            f"postgresql+psycopg://{DB_USER}:{DB_PASSWORD}"
            f"@{DB_HOST}:{DB_PORT}/{DB_NAME}"
        )

    # SQLAlchemy
    SQLALCHEMY_DATABASE_URI = DATABASE_URL
    SQLALCHEMY_ECHO = os.getenv('SQLALCHEMY_ECHO', 'false').lower() == 'true'

    # Checkout rules
    MIN_ORDER_PER_SELLER = Decimal(os.getenv('MIN_ORDER_PER_SELLER', '3999'))
    # Percentage of the product total collected upfront on the "advance" option.
    # 0 means the buyer pays shipping only and the rest on delivery.
    ADVANCE_PAYMENT_PERCENT = Decimal(os.getenv('ADVANCE_PAYMENT_PERCENT', '0'))
    CURRENCY = os.getenv('CURRENCY', 'INR')

    # Razorpay (payment gateway)
    RAZORPAY_KEY_ID = os.getenv('RAZORPAY_KEY_ID', '')
    RAZORPAY_KEY_SECRET = os.getenv('RAZORPAY_KEY_SECRET', '')
    RAZORPAY_WEBHOOK_SECRET = os.getenv('RAZORPAY_WEBHOOK_SECRET', '')

    # Shiprocket (courier rate quotes)
    SHIPROCKET_BASE_URL = os.getenv('SHIPROCKET_BASE_URL', 'https://apiv2.shiprocket.in/v1/external')
    SHIPROCKET_EMAIL = os.getenv('SHIPROCKET_EMAIL', '')
    SHIPROCKET_PASSWORD = os.getenv('SHIPROCKET_PASSWORD', '')
    SHIPPING_QUOTE_TIMEOUT = int(os.getenv('SHIPPING_QUOTE_TIMEOUT', '10'))  # seconds
    SHIPPING_MAX_WORKERS = int(os.getenv('SHIPPING_MAX_WORKERS', '8'))
    SHIPPING_MAX_OPTIONS = int(os.getenv('SHIPPING_MAX_OPTIONS', '3'))
    PREFERRED_COURIERS = [
        c.strip() for c in os.getenv(
            'PREFERRED_COURIERS',
            'Delhivery,Blue Dart,DTDC,Xpressbees,Ecom Express,Shadowfax'
        ).split(',') if c.strip()
    ]

    # Guest checkout
    GUEST_EMAIL_DOMAIN = os.getenv('GUEST_EMAIL_DOMAIN', 'd2bcart.guest')


class TestConfig(Config):
    """Configuration used by the test suite (in-memory SQLite, no external keys)."""

    TESTING = True
    DEBUG = False
    ENV = 'testing'
    SQLALCHEMY_DATABASE_URI = 'sqlite://'
    SQLALCHEMY_ECHO = False
    MIN_ORDER_PER_SELLER = Decimal('3999')
    ADVANCE_PAYMENT_PERCENT = Decimal('0')
    RAZORPAY_KEY_ID = 'rzp_test_key'
    RAZORPAY_KEY_SECRET = 'test_key_secret'
    RAZORPAY_WEBHOOK_SECRET = 'test_webhook_secret'
    SHIPROCKET_EMAIL = 'ops@example.com'
    SHIPROCKET_PASSWORD = 'secret'
