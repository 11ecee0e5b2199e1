"""
Pytest fixtures for storecore backend tests.

Provides an in-memory application with a frozen clock, a recording
notifier and a payment gateway backed by httpx.MockTransport, plus
small factories for users, products, coupons and influencers.
"""

from datetime import datetime

import httpx
import pytest

from storecore import create_app
from storecore.extensions import db
from storecore.models import Coupon, Influencer, Product, ProductVariant, User
from storecore.services import order_service, session_service
from storecore.services.notification_service import RecordingNotifier
from storecore.services.payment_gateway import RazorpayGateway, compute_signature
from storecore.time_utils import FrozenClock

START = datetime(2025, 1, 1, 12, 0, 0)
GATEWAY_SECRET = "test-gateway-secret"
COURIER_SECRET = "test-courier-secret"

ADDRESS = {
    "name": "Asha Rao",
    "phone": "9876543210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "pincode": "560001",
}


class GatewayBackend:
    """In-memory stand-in for the gateway's refund endpoint."""

    def __init__(self):
        self.fail = False
        self.refunds = []

    def reset(self):
        self.fail = False
        self.refunds = []

    def handle(self, request: httpx.Request) -> httpx.Response:
        if self.fail:
            return httpx.Response(503, json={"error": "unavailable"})
        self.refunds.append(request)
        return httpx.Response(200, json={"id": f"rfnd_{len(self.refunds):04d}"})


_backend = GatewayBackend()
_clock = FrozenClock(START)
_notifier = RecordingNotifier()


@pytest.fixture(scope='session')
def app():
    """Create application for testing."""
    gateway = RazorpayGateway(
        key_id="rzp_test",
        key_secret=GATEWAY_SECRET,
        base_url="https://gateway.test/v1",
        retry_attempts=2,
        retry_backoff=0,
        transport=httpx.MockTransport(_backend.handle),
    )
    app = create_app({
        'TESTING': True,
        'SQLALCHEMY_DATABASE_URI': 'sqlite:///:memory:',
        'SQLALCHEMY_TRACK_MODIFICATIONS': False,
        'COURIER_WEBHOOK_SECRET': COURIER_SECRET,
        'DB_RETRY_BACKOFF_SECONDS': 0,
        'CLOCK': _clock,
        'PAYMENT_GATEWAY': gateway,
        'NOTIFIER': _notifier,
    })

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
        db.session.rollback()
        # Clear all data but keep schema
        meta = db.metadata
        for table in reversed(meta.sorted_tables):
            db.session.execute(table.delete())
        db.session.commit()
        db.session.expunge_all()

        _clock.set(START)
        _backend.reset()
        _notifier.sent.clear()

        yield db.session

        # Cleanup after test
        db.session.rollback()


@pytest.fixture
def clock(db_session):
    return _clock


@pytest.fixture
def gateway_backend(db_session):
    return _backend


@pytest.fixture
def notifier(db_session):
    return _notifier


@pytest.fixture
def make_user(db_session):
    counter = {"n": 0}

    def _make(name=None, *, is_admin=False, tier="bronze"):
        counter["n"] += 1
        n = counter["n"]
        user = User(
            name=name or f"User {n}",
            email=f"user{n}@example.com",
            is_admin=is_admin,
            tier=tier,
            referral_code=f"USER{n:04d}",
        )
        db_session.add(user)
        db_session.commit()
        return user

    return _make


@pytest.fixture
def customer(make_user):
    return make_user("Customer")


@pytest.fixture
def admin(make_user):
    return make_user("Admin", is_admin=True)


@pytest.fixture
def make_product(db_session):
    counter = {"n": 0}

    def _make(price_paise=100000, stock=10, category_id=1, with_variant=False):
        counter["n"] += 1
        product = Product(
            sku=f"SKU-{counter['n']:03d}",
            name=f"Product {counter['n']}",
            price_paise=price_paise,
            stock=stock,
            category_id=category_id,
        )
        db_session.add(product)
        db_session.flush()
        if with_variant:
            db_session.add(ProductVariant(
                product_id=product.id,
                sku=f"SKU-{counter['n']:03d}-M",
                size="M",
                color="Indigo",
                stock=stock,
            ))
        db_session.commit()
        return product

    return _make


@pytest.fixture
def make_coupon(db_session):
    def _make(code="SAVE20", **kwargs):
        values = {
            "name": f"{code} promo",
            "discount_type": "percentage",
            "discount_value": 2000,
            "used_count": 0,
            "per_user_limit": 1,
            "is_active": True,
        }
        values.update(kwargs)
        coupon = Coupon(code=code, **values)
        db_session.add(coupon)
        db_session.commit()
        return coupon

    return _make


@pytest.fixture
def make_influencer(db_session, make_user):
    def _make(*, approved=True, kyc=True, tier="bronze", code="INFLU01"):
        user = make_user("Influencer")
        influencer = Influencer(
            user_id=user.id,
            name=user.name,
            email=user.email,
            username=f"creator{user.id}",
            referral_code=code,
            status="approved" if approved else "pending",
            tier=tier,
            kyc_verified=kyc,
            preferred_payout_method="upi",
            upi_id="creator@okbank",
        )
        db_session.add(influencer)
        db_session.commit()
        return influencer

    return _make


def place(user, product, quantity=1, **kwargs):
    """Place a single-line order with a valid address."""
    kwargs.setdefault("payment_method", "cod")
    return order_service.place_order(
        user_id=user.id,
        items=[{"product_id": product.id, "quantity": quantity}],
        shipping_address=dict(ADDRESS),
        **kwargs,
    )


def deliver(order, *, actor_user_id=None):
    """Walk an order through fulfillment to delivered."""
    path = ["processing", "shipped", "delivered"]
    if order.order_status == "pending":
        path.insert(0, "confirmed")
    for status in path:
        order = order_service.advance_order(order.id, status, actor_user_id=actor_user_id)
    return order


def sign(order_number: str, payment_id: str) -> str:
    return compute_signature(GATEWAY_SECRET, order_number, payment_id)


def get_auth_token(user) -> str:
    """Mint a bearer session for a user (login happens upstream)."""
    _, token = session_service.create_session(user.id)
    return token


def auth_headers(token: str) -> dict:
    """Helper to create Authorization headers."""
    return {'Authorization': f'Bearer {token}'}
