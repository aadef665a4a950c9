import os

os.environ.setdefault("ENVIRONMENT", "test")
os.environ.setdefault("DATABASE_URL", "sqlite://")
os.environ.setdefault("MAIL_ENABLED", "false")
os.environ.setdefault("RAZORPAY_KEY_ID", "rzp_test_key")
os.environ.setdefault("RAZORPAY_KEY_SECRET", "rzp_test_secret")
os.environ.setdefault("RAZORPAY_WEBHOOK_SECRET", "whsec_test")

import hashlib
import hmac
from decimal import Decimal
from itertools import count

import pytest
from fastapi.testclient import TestClient
from sqlmodel import Session, SQLModel, create_engine
from sqlalchemy.pool import StaticPool

from agrimarket.db.session import create_db_and_tables, get_session
from agrimarket.main import app
from agrimarket.models.cart import CartItem
from agrimarket.models.product import Product
from agrimarket.models.user import User, UserRole
from agrimarket.services.auth import AuthService, pwd_context
from agrimarket.services.payment import PaymentGateway, get_payment_gateway

_ids = count(1)
PASSWORD = "secret123"
PASSWORD_HASH = pwd_context.hash(PASSWORD)


class FakeGateway(PaymentGateway):
    """Razorpay gateway that never calls the network to create orders."""

    def __init__(self):
        super().__init__(key_id="rzp_test_key", key_secret="rzp_test_secret", webhook_secret="whsec_test")
        self.created = []
        self.fail_next = False

    def create_order(self, amount, receipt, notes):
        if self.fail_next:
            from agrimarket.core.exceptions import PaymentGatewayError
            raise PaymentGatewayError("Could not create payment order: gateway down")
        order = {"id": f"order_rzp_{len(self.created) + 1}", "amount": int(amount * 100), "currency": "INR"}
        self.created.append({"amount": amount, "receipt": receipt, "notes": notes})
        return order


def sign(message: str, secret: str) -> str:
    return hmac.new(secret.encode(), message.encode(), hashlib.sha256).hexdigest()


@pytest.fixture()
def engine():
    engine = create_engine("sqlite://", connect_args={"check_same_thread": False}, poolclass=StaticPool)
    create_db_and_tables(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture()
def session(engine):
    with Session(engine) as session:
        yield session


@pytest.fixture()
def gateway():
    return FakeGateway()


@pytest.fixture()
def client(session, gateway):
    app.dependency_overrides[get_session] = lambda: session
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    yield TestClient(app)
    app.dependency_overrides.clear()


def make_user(session, role=UserRole.BUYER, name=None, email=None, address="12 Market Road, Springfield", is_active=True):
    n = next(_ids)
    user = User(
        name=name or f"{role.value.title()} {n}",
        email=email or f"{role.value}{n}@example.com",
        password_hash=PASSWORD_HASH,
        role=role,
        address=address,
        is_active=is_active,
    )
    session.add(user)
    session.commit()
    session.refresh(user)
    return user


def make_product(session, farmer, price="4.99", stock=10, title=None, category="vegetables", is_active=True, **fields):
    product = Product(
        farmer_id=farmer.id,
        title=title or f"Produce {next(_ids)}",
        category=category,
        price=Decimal(price),
        stock=stock,
        is_active=is_active,
        **fields,
    )
    session.add(product)
    session.commit()
    session.refresh(product)
    return product


def add_to_cart(session, buyer, product, quantity):
    item = CartItem(buyer_id=buyer.id, product_id=product.id, quantity=quantity)
    session.add(item)
    session.commit()
    return item


def auth_headers(session, user):
    token = AuthService(session).create_access_token(user)
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture()
def buyer(session):
    return make_user(session, UserRole.BUYER)


@pytest.fixture()
def farmer(session):
    return make_user(session, UserRole.FARMER)


@pytest.fixture()
def other_farmer(session):
    return make_user(session, UserRole.FARMER)


@pytest.fixture()
def admin(session):
    return make_user(session, UserRole.ADMIN)
