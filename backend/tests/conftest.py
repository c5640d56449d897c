"""
Pytest fixtures for storefront backend tests.

Provides the application on in-memory SQLite, a per-test clean database,
seed data (users, products with stock, carts) and a fake payment gateway
served through httpx.MockTransport.
"""

import json
from decimal import Decimal
from urllib.parse import parse_qs

import httpx
import pytest

from storefront import create_app
from storefront.extensions import db
from storefront.models import User, Product, Cart, CartItem
from storefront.services.inventory_service import receive_stock
from storefront.services.signature_service import CALLBACK_SIGNED_FIELDS, SignatureCodec
from storefront.services import settings_service
from storefront.services.payment_service import initiate_payment
from storefront.validation import CustomerInfo


PUBLIC_KEY = "i000000001"
PRIVATE_KEY = "test-private-key"
ADMIN_TOKEN = "admin-token"


class FakeGateway:
    """
    Scriptable stand-in for the payment gateway.

    Records every request (decoded payload included) and answers
    /api/1/request and /api/1/get-status from the configured fields.
    """

    def __init__(self):
        self.reset()

    def reset(self):
        self.requests = []
        self.next_transaction = "TX1"
        self.request_response = None
        self.status_response = {"status": "new"}
        self.raise_error = None
        self._counter = 0

    def handler(self, request: httpx.Request) -> httpx.Response:
        form = {k: v[0] for k, v in parse_qs(request.content.decode()).items()}
        payload = SignatureCodec.decode_data(form["data"]) if "data" in form else None
        self.requests.append({"path": request.url.path, "form": form, "payload": payload})

        if self.raise_error is not None:
            raise self.raise_error

        if request.url.path == "/api/1/request":
            if self.request_response is not None:
                status_code, body = self.request_response
                return httpx.Response(status_code, text=body if isinstance(body, str) else json.dumps(body))
            self._counter += 1
            transaction = self.next_transaction or f"TX{self._counter}"
            return httpx.Response(200, json={
                "status": "success",
                "transaction": transaction,
                "redirect_url": f"https://gateway.test/pay/{transaction}",
            })

        if request.url.path == "/api/1/get-status":
            return httpx.Response(200, json=self.status_response)

        return httpx.Response(404, text="not found")

    @property
    def last_payload(self):
        return self.requests[-1]["payload"] if self.requests else None


gateway = FakeGateway()


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    app = create_app(
        {
            'TESTING': True,
            'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
            'SQLALCHEMY_TRACK_MODIFICATIONS': False,
            'EPOINT_PUBLIC_KEY': PUBLIC_KEY,
            'EPOINT_PRIVATE_KEY': PRIVATE_KEY,
            'EPOINT_BASE_URL': 'https://gateway.test',
            'PUBLIC_BASE_URL': 'http://shop.test',
            'FRONTEND_BASE_URL': 'http://front.test',
            'ADMIN_API_TOKEN': ADMIN_TOKEN,
            'PAYMENT_REDIRECT_RECONCILE': True,
        },
        gateway_transport=httpx.MockTransport(gateway.handler),
    )

    with app.app_context():
        db.create_all()
        yield app
        db.drop_all()


@pytest.fixture(scope='function')
def client(app):
    """Create test client."""
    return app.test_client()


@pytest.fixture(scope='function')
def db_session(app):
    """Create fresh database for each test."""
    with app.app_context():
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture(scope='function')
def fake_gateway(app):
    gateway.reset()
    yield gateway
    gateway.reset()


@pytest.fixture(scope='function')
def user(db_session):
    user = User(username="aysel", email="aysel@example.com", full_name="Aysel M", phone="+994501112233")
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope='function')
def products(db_session):
    """Two active products with 10 units each."""
    cream = Product(sku="CRM-001", name="Face Cream", price_cents=5000)
    serum = Product(sku="SRM-001", name="Serum", price_cents=4500)
    db_session.add_all([cream, serum])
    db_session.commit()
    receive_stock(cream.id, 10)
    receive_stock(serum.id, 10)
    return cream, serum


@pytest.fixture(scope='function')
def cart(db_session, user, products):
    """User cart: 2 x cream + 1 x serum = 145.00."""
    cream, serum = products
    cart = Cart(user_id=user.id)
    cart.items.append(CartItem(product_id=cream.id, quantity=2, unit_price_cents=5000))
    cart.items.append(CartItem(product_id=serum.id, quantity=1, unit_price_cents=4500))
    db_session.add(cart)
    db_session.commit()
    return cart


@pytest.fixture(scope='function')
def guest_cart(db_session, products):
    cream, _ = products
    cart = Cart(guest_token="guest-abc")
    cart.items.append(CartItem(product_id=cream.id, quantity=1, unit_price_cents=5000))
    db_session.add(cart)
    db_session.commit()
    return cart


@pytest.fixture(scope='function')
def bonus_percentage(db_session):
    """Loyalty bonus of 2%."""
    return settings_service.set_bonus_percentage("2")


@pytest.fixture(scope='function')
def customer_payload():
    return {
        "customer_name": "Aysel Mammadova",
        "customer_email": "aysel@example.com",
        "customer_phone": "+994501112233",
        "shipping_address": "Baku, Nizami 10",
    }


def sign_callback(payload: dict, key: str = PRIVATE_KEY) -> dict:
    """Return payload with the gateway signature over the signed fields."""
    codec = SignatureCodec(key)
    signed = {field: payload.get(field) for field in CALLBACK_SIGNED_FIELDS}
    return dict(payload, signature=codec.sign(signed))


def callback(order_id: str, status: str = "success", transaction_id: str = "TX1",
             amount: str = "145.00", currency: str = "AZN", message: str | None = None,
             key: str = PRIVATE_KEY) -> dict:
    payload = {
        "transaction_id": transaction_id,
        "order_id": order_id,
        "status": status,
        "amount": Decimal(amount),
        "currency": currency,
    }
    if message is not None:
        payload["message"] = message
    return sign_callback(payload, key)


def callback_json(payload: dict) -> str:
    """Serialize a callback the way the gateway sends it (amount as a JSON number)."""
    parts = []
    for key, value in payload.items():
        if isinstance(value, Decimal):
            parts.append(f"{json.dumps(key)}:{format(value, 'f')}")
        else:
            parts.append(f"{json.dumps(key)}:{json.dumps(value)}")
    return "{" + ",".join(parts) + "}"


def admin_headers() -> dict:
    return {'Authorization': f'Bearer {ADMIN_TOKEN}'}


def user_headers(user) -> dict:
    return {'X-User-Id': str(user.id)}


def start_checkout(user_id=None, guest_token=None, installment_option_id=None):
    """Initiate payment for the shopper's cart with a fixed contact block."""
    customer = CustomerInfo(
        name="Aysel Mammadova",
        email="aysel@example.com",
        phone="+994501112233",
        shipping_address="Baku, Nizami 10",
    )
    return initiate_payment(user_id, guest_token, customer, installment_option_id=installment_option_id)
