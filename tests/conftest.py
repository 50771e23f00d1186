import pytest
import uuid
from decimal import Decimal

from checkout import create_app
from checkout.database import create_all, drop_all, get_session
from checkout.models import AppUser, UserType
from checkout.services.shipping_service import CourierOption, NotServiceable, QuoteOk
from checkout.services.shiprocket_client import ShiprocketClient


def _persist(session, obj):
    """Commit ``obj`` and detach it with its columns loaded."""
    session.add(obj)
    session.commit()
    session.refresh(obj)
    session.expunge(obj)
    return obj


@pytest.fixture(scope='session')
def app():
    """Create application instance for testing."""
    app = create_app('config.TestConfig')
    app.config['TESTING'] = True
    return app


@pytest.fixture(scope='function', autouse=True)
def database(app):
    """Fresh schema for every test."""
    with app.app_context():
        create_all()
        yield
        get_session().remove()
        drop_all()
    ShiprocketClient.clear_token_cache()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def session():
    """Create database session for testing."""
    session = get_session()
    yield session
    session.rollback()
    session.close()


def make_user(session, user_type=UserType.RETAILER, pincode='560001', name=None, password='password123'):
    suffix = uuid.uuid4().hex[:8]
    phone = str(9000000000 + int(suffix, 16) % 999999999)
    user = AppUser(
        email=f'{user_type}-{suffix}@test.com',
        phone=phone,
        full_name=name or f'{user_type.title()} {suffix}',
        business_name=name,
        user_type=user_type,
        address='12 MG Road',
        city='Bengaluru',
        state='Karnataka',
        pincode=pincode,
    )
    user.set_password(password)
    return _persist(session, user)


@pytest.fixture(scope='function')
def seller_a(session):
    """Seller with a Delhi pickup pincode."""
    return make_user(session, UserType.SELLER, pincode='110001', name='Acme Textiles')


@pytest.fixture(scope='function')
def seller_b(session):
    """Seller with a Mumbai pickup pincode."""
    return make_user(session, UserType.SELLER, pincode='400001', name='Bombay Traders')


@pytest.fixture(scope='function')
def retailer(session):
    """Registered retailer."""
    return make_user(session, UserType.RETAILER, pincode='560001', name='Corner Store')


@pytest.fixture(scope='function')
def authenticated_client(client, retailer):
    """Client signed in as the retailer."""
    with client.session_transaction() as sess:
        sess['user_id'] = retailer.id
    return client


def cart_line(seller, product_id, unit_price, quantity, base_cost=None, moq=1, **extra):
    line = {
        'product_id': product_id,
        'seller_id': seller.id,
        'seller_name': seller.business_name,
        'product_name': f'Product {product_id}',
        'unit_price': str(unit_price),
        'base_cost': str(base_cost if base_cost is not None else Decimal(str(unit_price)) * Decimal('0.8')),
        'quantity': quantity,
        'moq': moq,
        'pack_dimensions': {'weight': '1', 'length': '20', 'breadth': '15', 'height': '10'},
    }
    line.update(extra)
    return line


@pytest.fixture
def make_line():
    return cart_line


def flat_quotes(rates):
    """
    Fake courier client: ``rates`` maps pickup pincode -> list of (id, name, rate).
    Unknown pickups are not serviceable.
    """
    def get_quotes(self, request):
        offered = rates.get(request.pickup_postcode)
        if not offered:
            return NotServiceable('No shipping available')
        return QuoteOk(couriers=[
            CourierOption(courier_id=str(cid), courier_name=name, rate=Decimal(str(rate)), etd='3 days')
            for cid, name, rate in offered
        ])
    return get_quotes


@pytest.fixture
def quote_rates():
    return flat_quotes
