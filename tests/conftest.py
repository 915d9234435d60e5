import os
import sys
from decimal import Decimal
import pytest

sys.path.insert(0, os.path.abspath(os.path.join(os.path.dirname(__file__), '..')))
os.environ.setdefault('APP_ENV', 'testing')

from models import db
from models.user import User
from models.store import Store, Product
from app.payments import set_gateway
from app.payments.fake_adapter import FakeGateway
from app.utils import create_access_token


ADDRESS = {
    "firstName": "Ada",
    "lastName": "Lovelace",
    "email": "ada@example.com",
    "address1": "12 Analytical Way",
    "city": "London",
    "state": "LDN",
    "zipCode": "N1 9GU",
    "country": "GB",
}


@pytest.fixture(scope='session')
def app_instance():
    # One app per session: the Prometheus exporter registers on the global registry.
    from app import create_app
    from app.config import TestingConfig
    return create_app(TestingConfig)


@pytest.fixture(scope='function')
def app(app_instance):
    with app_instance.app_context():
        db.drop_all()
        db.create_all()
        set_gateway(app_instance, FakeGateway(webhook_secret=app_instance.config["STRIPE_WEBHOOK_SECRET"]))
        yield app_instance
        db.session.remove()
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    return app.test_client()


@pytest.fixture
def gateway(app):
    return app.extensions["payment_gateway"]


@pytest.fixture
def address():
    return dict(ADDRESS)


@pytest.fixture
def make_user(app):
    def _make(email="buyer@example.com", role="consumer"):
        user = User(email=email, role=role, first_name="Test", last_name="User")
        db.session.add(user)
        db.session.commit()
        return user.id
    return _make


@pytest.fixture
def make_store(app, make_user):
    def _make(name="Store", owner_email=None):
        owner_id = make_user(owner_email or f"{name.lower().replace(' ', '')}@sellers.test", role="seller")
        store = Store(name=name, owner_id=owner_id)
        db.session.add(store)
        db.session.commit()
        return store.id
    return _make


@pytest.fixture
def make_product(app):
    def _make(store_id, price="10.00", inventory=10, track_inventory=True, name="Widget", sku=None):
        product = Product(
            store_id=store_id,
            name=name,
            sku=sku,
            base_price=Decimal(price),
            inventory=inventory,
            track_inventory=track_inventory,
        )
        db.session.add(product)
        db.session.commit()
        return product.id
    return _make


@pytest.fixture
def auth_headers(app):
    def _headers(user_id):
        user = db.session.get(User, user_id)
        return {"Authorization": f"Bearer {create_access_token(user.id, user.role)}"}
    return _headers


@pytest.fixture
def place_order(app):
    """Run a real checkout session for a guest and return the order ids."""
    from app.services.checkout import CheckoutSession
    from app.services.identity import GuestIdentity, Purchaser
    from app.services.inventory import Line

    def _place(lines, email="guest@example.com", shipping_address=None):
        resolved = [Line(db.session.get(Product, pid), qty) for pid, qty in lines]
        orders = CheckoutSession(
            Purchaser.for_guest(GuestIdentity.issue(email)),
            resolved,
            shipping_address or dict(ADDRESS),
        ).run()
        return [o.id for o in orders]
    return _place
