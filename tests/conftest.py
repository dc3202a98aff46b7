import os

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("MAIL_SUPPRESS_SEND", "true")
os.environ.setdefault("ADMIN_API_KEY", "test-admin-key")
os.environ.setdefault("PAYMOB_API_KEY", "test-api-key")
os.environ.setdefault("PAYMOB_INTEGRATION_ID_CARD", "1001")
os.environ.setdefault("PAYMOB_INTEGRATION_ID_WALLET", "1002")
os.environ.setdefault("PAYMOB_IFRAME_ID_CARD", "2001")
os.environ.setdefault("PAYMOB_HMAC_SECRET", "test-hmac-secret")

import asyncio
from datetime import timedelta
from decimal import Decimal

import httpx
import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from storefront import app
from storefront.core.dependencies import get_db
from storefront.db.base import Base
from storefront.enums import DiscountType, PaymentMethod
from storefront.exceptions import PaymentGatewayError
from storefront import models  # noqa: F401
from storefront.models import Discount, Product, ProductColor, ShippingCity
from storefront.models.base import utcnow
from storefront.schemas.payment import PaymobPaymentResult, TransactionVerification
from storefront.services.cart_service import CartService
from storefront.services.discount_service import DiscountService
from storefront.services.order_service import OrderService
from storefront.services.payment_service import PaymentService
from storefront.services.shipping_service import ShippingService


ADMIN_HEADERS = {"X-Admin-Key": "test-admin-key"}


class FakePaymentService(PaymentService):
    """Gateway stand-in; HMAC checks stay real, network calls are scripted"""

    def __init__(self, fail: bool = False, delay: float = 0, verification: TransactionVerification = None):
        super().__init__()
        self.fail = fail
        self.delay = delay
        self.verification = verification
        self.calls = []

    async def initiate_payment(self, order_number, amount, customer_name, customer_email, customer_phone, method):
        self.calls.append((order_number, amount, method))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.fail:
            raise PaymentGatewayError("gateway unavailable")

        result = PaymobPaymentResult(success=True, provider_order_id="po-1", payment_key="pk-1")
        if method == PaymentMethod.CARD:
            result.iframe_url = "https://accept.paymob.com/api/acceptance/iframes/2001?payment_token=pk-1"
        else:
            result.redirect_url = "https://wallet.example/redirect"
        return result

    async def verify_transaction(self, transaction_id):
        if self.verification is None:
            raise PaymentGatewayError("Unable to verify payment.")
        return self.verification


class FakeEmailService:
    def __init__(self):
        self.sent = []

    async def send_order_confirmation(self, order):
        self.sent.append(("confirmation", order.order_number))
        return True

    async def send_order_shipped(self, order):
        self.sent.append(("shipped", order.order_number))
        return True

    async def send_review_approved(self, review, product_name):
        self.sent.append(("review_approved", review.id))
        return True


@pytest.fixture
async def engine():
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(bind=engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
async def db(session_factory):
    async with session_factory() as session:
        yield session


@pytest.fixture
async def products(db):
    lamp = Product(name="Desk Lamp", price=Decimal("200.00"), discount_percent=Decimal("25"), stock_quantity=10)
    lamp.colors = [
        ProductColor(color_name="Black", color_hex_code="#000000"),
        ProductColor(color_name="White", color_hex_code="#FFFFFF"),
    ]
    mug = Product(name="Coffee Mug", price=Decimal("50.00"), stock_quantity=100)
    chair = Product(name="Office Chair", price=Decimal("500.00"), stock_quantity=2)
    retired = Product(name="Old Radio", price=Decimal("90.00"), stock_quantity=5, is_deleted=True)

    db.add_all([lamp, mug, chair, retired])
    await db.commit()
    return {"lamp": lamp, "mug": mug, "chair": chair, "retired": retired}


@pytest.fixture
async def cities(db):
    cairo = ShippingCity(city_name="Cairo", shipping_cost=Decimal("30.00"))
    giza = ShippingCity(city_name="Giza", shipping_cost=Decimal("45.00"))
    aswan = ShippingCity(city_name="Aswan", shipping_cost=Decimal("90.00"), is_active=False)

    db.add_all([cairo, giza, aswan])
    await db.commit()
    return {"cairo": cairo, "giza": giza, "aswan": aswan}


@pytest.fixture
async def discounts(db):
    now = utcnow()
    save10 = Discount(code="SAVE10", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("10"),
                      start_date=now - timedelta(days=1))
    once = Discount(code="ONCE", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("20"),
                    usage_limit_per_guest=1, start_date=now - timedelta(days=1))
    big = Discount(code="BIG100", discount_type=DiscountType.FIXED_AMOUNT, discount_value=Decimal("100"),
                   minimum_order_amount=Decimal("100.00"), start_date=now - timedelta(days=1))
    expired = Discount(code="OLD", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("15"),
                       start_date=now - timedelta(days=30), expiry_date=now - timedelta(days=1))
    off = Discount(code="PAUSED", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("5"),
                   start_date=now - timedelta(days=1), is_active=False)
    later = Discount(code="SOON", discount_type=DiscountType.PERCENTAGE, discount_value=Decimal("5"),
                     start_date=now + timedelta(days=3))

    db.add_all([save10, once, big, expired, off, later])
    await db.commit()
    return {d.code: d for d in (save10, once, big, expired, off, later)}


@pytest.fixture
def payment_service():
    return FakePaymentService()


@pytest.fixture
def email_service():
    return FakeEmailService()


@pytest.fixture
def discount_service():
    return DiscountService()


@pytest.fixture
def cart_service(discount_service):
    return CartService(discount_service)


@pytest.fixture
def order_service(cart_service, discount_service, payment_service, email_service):
    return OrderService(
        cart_service=cart_service,
        discount_service=discount_service,
        shipping_service=ShippingService(),
        payment_service=payment_service,
        email_service=email_service,
    )


@pytest.fixture
async def client(session_factory, payment_service, email_service, monkeypatch):
    from storefront.routers import checkout, reviews

    async def override_get_db():
        async with session_factory() as session:
            yield session

    monkeypatch.setattr(checkout.order_service, "payment_service", payment_service)
    monkeypatch.setattr(checkout.order_service, "email_service", email_service)
    monkeypatch.setattr(reviews.review_service, "email_service", email_service)
    app.dependency_overrides[get_db] = override_get_db

    transport = httpx.ASGITransport(app=app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as client:
        yield client

    app.dependency_overrides.clear()
