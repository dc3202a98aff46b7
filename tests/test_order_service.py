import hashlib
import hmac
from decimal import Decimal

import httpx
import pytest
from fastapi import BackgroundTasks
from sqlalchemy import func
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from storefront.core.config import Config
from storefront.enums import ErrorCode, OrderStatus, PaymentMethod, PaymentStatus
from storefront.models import Cart, DiscountUsage, Order, Product
from storefront.schemas.cart import AddToCartRequest
from storefront.schemas.order import PlaceOrderRequest
from storefront.schemas.payment import TransactionVerification
from storefront.services.cart_service import CartService
from storefront.services.discount_service import DiscountService
from storefront.services.order_service import OrderService, build_order_snapshot, generate_order_number
from storefront.services.payment_service import HMAC_FIELDS, PaymentService, _lookup
from storefront.services.pricing import CartTotals
from storefront.services.shipping_service import ShippingService

from .conftest import FakeEmailService, FakePaymentService


SESSION = "checkout-session"


def checkout_request(city, method=PaymentMethod.CASH_ON_DELIVERY, **overrides):
    values = dict(
        guest_name="Mona Hassan",
        guest_email="mona@example.com",
        guest_phone="+20 100 123 4567",
        shipping_address="12 Nile St",
        shipping_city_id=city.id,
        payment_method=method,
    )
    values.update(overrides)
    return PlaceOrderRequest(**values)


async def fill_cart(cart_service, db, product, quantity=1, code=None, session_id=SESSION):
    await cart_service.add_item(session_id, AddToCartRequest(product_id=product.id, quantity=quantity), db)
    if code:
        result = await cart_service.apply_discount_code(session_id, code, db)
        assert result.succeeded, result.error_message


async def load_order(db, order_number):
    query = (
        select(Order)
        .options(selectinload(Order.items), selectinload(Order.payment))
        .where(Order.order_number == order_number)
        .execution_options(populate_existing=True)
    )
    return (await db.execute(query)).scalars().first()


async def count_orders(db):
    return (await db.execute(select(func.count(Order.id)))).scalar()


def sign(data):
    message = "".join(_lookup(data, key) for key in HMAC_FIELDS)
    return hmac.new(Config.PAYMOB_HMAC_SECRET.encode(), message.encode(), hashlib.sha512).hexdigest()


def test_order_number_format():
    number = generate_order_number()
    prefix, day, suffix = number.split("-")

    assert prefix == "ORD"
    assert len(day) == 8 and day.isdigit()
    assert len(suffix) == 8 and suffix == suffix.upper()


async def test_snapshot_copies_item_values(db, cart_service, products, cities):
    await fill_cart(cart_service, db, products["lamp"], quantity=2)
    cart = await cart_service.load_cart(SESSION, db)

    snapshot = build_order_snapshot(
        SESSION, checkout_request(cities["cairo"]), cart.items,
        CartTotals(subtotal=Decimal("300.00"), total_original_price=Decimal("400.00"),
                   total_product_discount=Decimal("100.00"), item_count=2),
        None, cities["cairo"],
    )
    products["lamp"].name = "Renamed Lamp"

    assert snapshot.items[0].product_name == "Desk Lamp"
    assert snapshot.items[0].unit_price == Decimal("150.00")
    assert snapshot.total_amount == Decimal("330.00")
    with pytest.raises(Exception):
        snapshot.total_amount = Decimal("0")


async def test_place_cod_order(db, cart_service, order_service, email_service, products, cities, discounts):
    await fill_cart(cart_service, db, products["chair"], code="SAVE10")
    tasks = BackgroundTasks()

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db, tasks)

    assert result.succeeded, result.error_message
    response = result.data
    assert response.total_amount == Decimal("480.00")
    assert response.payment_status == PaymentStatus.PENDING
    assert response.payment_session is None
    assert len(tasks.tasks) == 1

    order = await load_order(db, response.order_number)
    assert order.status == OrderStatus.PENDING
    assert order.subtotal == Decimal("500.00")
    assert order.discount_amount == Decimal("50.00")
    assert order.shipping_cost == Decimal("30.00")
    assert order.discount_code == "SAVE10"
    assert order.shipping_city_name == "Cairo"
    assert order.guest_phone == "+201001234567"
    assert [(i.product_name, i.quantity, i.line_total) for i in order.items] == [("Office Chair", 1, Decimal("500.00"))]
    assert order.payment.amount == Decimal("480.00")

    await db.refresh(products["chair"])
    assert products["chair"].stock_quantity == 1

    cart = await cart_service.load_cart(SESSION, db)
    assert cart.items == []
    assert cart.discount_code is None

    usage = await order_service.discount_service.get_usage_count(discounts["SAVE10"].id, SESSION, db)
    assert usage == 1


async def test_empty_cart_cannot_checkout(db, order_service, cities):
    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db)
    assert result.error_code == ErrorCode.CART_EMPTY


async def test_inactive_city_keeps_cart(db, cart_service, order_service, products, cities):
    await fill_cart(cart_service, db, products["mug"], quantity=2)

    result = await order_service.place_order(SESSION, checkout_request(cities["aswan"]), db)

    assert result.error_code == ErrorCode.SHIPPING_CITY_INACTIVE
    assert await count_orders(db) == 0
    assert (await cart_service.get_item_count(SESSION, db)).data == 2


async def test_stock_checked_at_checkout(db, cart_service, order_service, products, cities):
    await fill_cart(cart_service, db, products["chair"], quantity=2)
    chair = await db.get(Product, products["chair"].id)
    chair.stock_quantity = 1
    await db.commit()

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db)
    assert result.error_code == ErrorCode.INSUFFICIENT_STOCK
    assert await count_orders(db) == 0


async def test_single_use_code_rejected_in_same_session(db, cart_service, order_service, products, cities, discounts):
    await fill_cart(cart_service, db, products["mug"], quantity=2, code="ONCE")
    first = await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db)
    assert first.succeeded

    await fill_cart(cart_service, db, products["mug"], quantity=2)
    second = await cart_service.apply_discount_code(SESSION, "ONCE", db)
    assert second.error_code == ErrorCode.USAGE_LIMIT_REACHED


class StaleLedgerDiscountService(DiscountService):
    """Answers the next ledger reads from before a competing redemption landed"""

    def __init__(self):
        self.stale_reads = 0
        self.stale_lookups = 0

    async def find_usage_id(self, discount_id, session_id, db):
        if self.stale_lookups:
            self.stale_lookups -= 1
            return None
        return await super().find_usage_id(discount_id, session_id, db)

    async def get_usage_count(self, discount_id, session_id, db):
        if self.stale_reads:
            self.stale_reads -= 1
            return 0
        return await super().get_usage_count(discount_id, session_id, db)


async def test_lost_redemption_race_reports_limit_reached(db, products, cities, discounts):
    discount_service = StaleLedgerDiscountService()
    cart_service = CartService(discount_service)
    order_service = OrderService(
        cart_service, discount_service, ShippingService(), FakePaymentService(), FakeEmailService()
    )
    await fill_cart(cart_service, db, products["mug"], quantity=2, code="ONCE")

    # a concurrent checkout in the same session redeemed the code first
    db.add(DiscountUsage(discount_id=discounts["ONCE"].id, session_id=SESSION, usage_count=1))
    await db.commit()
    discount_service.stale_reads = 1

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db)

    assert result.error_code == ErrorCode.USAGE_LIMIT_REACHED
    assert await count_orders(db) == 0

    usages = (await db.execute(select(DiscountUsage))).scalars().all()
    assert [(u.session_id, u.usage_count) for u in usages] == [(SESSION, 1)]

    stock = (await db.execute(select(Product.stock_quantity).where(Product.id == products["mug"].id))).scalar()
    assert stock == 100

    cart = (await db.execute(select(Cart).where(Cart.session_id == SESSION))).scalars().first()
    await db.refresh(cart)
    assert cart.discount_code is None


async def test_lost_first_redemption_insert_reports_limit_reached(db, products, cities, discounts):
    discount_service = StaleLedgerDiscountService()
    cart_service = CartService(discount_service)
    order_service = OrderService(
        cart_service, discount_service, ShippingService(), FakePaymentService(), FakeEmailService()
    )
    once_id = discounts["ONCE"].id
    await fill_cart(cart_service, db, products["mug"], code="ONCE")

    # the competing first redemption is committed between our ledger lookup and our insert
    db.add(DiscountUsage(discount_id=once_id, session_id=SESSION, usage_count=1))
    await db.commit()
    discount_service.stale_reads = 1
    discount_service.stale_lookups = 1

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db)

    assert result.error_code == ErrorCode.USAGE_LIMIT_REACHED
    assert discount_service.stale_lookups == 0
    assert await count_orders(db) == 0

    usages = (await db.execute(select(DiscountUsage).where(DiscountUsage.discount_id == once_id))).scalars().all()
    assert [(u.session_id, u.usage_count) for u in usages] == [(SESSION, 1)]


async def test_card_order_opens_payment_session(db, cart_service, order_service, payment_service, products, cities):
    await fill_cart(cart_service, db, products["lamp"])

    result = await order_service.place_order(SESSION, checkout_request(cities["giza"], PaymentMethod.CARD), db)

    session = result.data.payment_session
    assert session.iframe_url.endswith("payment_token=pk-1")
    assert result.data.retry_payment_path is None
    assert payment_service.calls == [(result.data.order_number, Decimal("195.00"), PaymentMethod.CARD)]

    order = await load_order(db, result.data.order_number)
    assert order.payment.provider_order_id == "po-1"
    assert order.payment.provider_payment_key == "pk-1"
    assert order.payment.status == PaymentStatus.PENDING


async def test_gateway_timeout_leaves_order_pending(db, cart_service, order_service, products, cities, monkeypatch):
    monkeypatch.setattr(Config, "PAYMOB_CHECKOUT_TIMEOUT_SECONDS", 0.05)
    order_service.payment_service = FakePaymentService(delay=1)
    await fill_cart(cart_service, db, products["mug"])

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"], PaymentMethod.WALLET), db)

    assert result.succeeded
    response = result.data
    assert response.payment_session is None
    assert response.retry_payment_path == f"/api/v1/checkout/orders/{response.order_number}/retry-payment"
    assert response.payment_error

    order = await load_order(db, response.order_number)
    assert order.status == OrderStatus.PENDING
    assert order.payment.status == PaymentStatus.PENDING
    assert (await cart_service.get_item_count(SESSION, db)).data == 0

    order_service.payment_service = FakePaymentService()
    retry = await order_service.retry_payment(response.order_number, SESSION, db, wallet_phone="01001234567")
    assert retry.succeeded
    assert retry.data.payment_session.redirect_url == "https://wallet.example/redirect"


async def test_gateway_error_offers_retry(db, cart_service, order_service, products, cities):
    order_service.payment_service = FakePaymentService(fail=True)
    await fill_cart(cart_service, db, products["mug"])

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"], PaymentMethod.CARD), db)
    assert result.data.retry_payment_path

    retry = await order_service.retry_payment(result.data.order_number, SESSION, db)
    assert retry.error_code == ErrorCode.PAYMENT_GATEWAY_ERROR

    stranger = await order_service.retry_payment(result.data.order_number, "someone-else", db)
    assert stranger.error_code == ErrorCode.ORDER_NOT_FOUND


async def test_unreadable_gateway_reply_keeps_order_pending(db, cart_service, order_service, products, cities):
    order_service.payment_service = PaymentService(
        transport=httpx.MockTransport(lambda request: httpx.Response(200, text="<html>maintenance</html>")),
        backoff_seconds=0,
    )
    await fill_cart(cart_service, db, products["mug"])

    result = await order_service.place_order(SESSION, checkout_request(cities["cairo"], PaymentMethod.CARD), db)

    assert result.succeeded
    assert result.data.payment_session is None
    assert result.data.retry_payment_path == f"/api/v1/checkout/orders/{result.data.order_number}/retry-payment"

    order = await load_order(db, result.data.order_number)
    assert order.status == OrderStatus.PENDING
    assert order.payment.status == PaymentStatus.PENDING
    assert await count_orders(db) == 1


async def test_checkout_total(db, cart_service, order_service, products, cities, discounts):
    await fill_cart(cart_service, db, products["chair"], code="SAVE10")

    total = (await order_service.compute_checkout_total(SESSION, cities["cairo"].id, db)).data
    assert total.subtotal == Decimal("500.00")
    assert total.discount_amount == Decimal("50.00")
    assert total.shipping_cost == Decimal("30.00")
    assert total.grand_total == Decimal("480.00")

    unknown = await order_service.compute_checkout_total(SESSION, 9999, db)
    assert unknown.error_code == ErrorCode.SHIPPING_CITY_NOT_FOUND


async def test_prepare_checkout_lists_active_cities(db, cart_service, order_service, products, cities):
    await fill_cart(cart_service, db, products["mug"])

    preparation = (await order_service.prepare_checkout(SESSION, db)).data
    assert [c.city_name for c in preparation.shipping_cities] == ["Cairo", "Giza"]
    assert preparation.cart.total_items == 1


async def test_order_confirmation_lookup(db, cart_service, order_service, products, cities):
    await fill_cart(cart_service, db, products["mug"])
    placed = (await order_service.place_order(SESSION, checkout_request(cities["cairo"]), db)).data

    by_email = await order_service.get_order_confirmation(placed.order_number, db, guest_email="MONA@example.com")
    assert by_email.data.grand_total == Decimal("80.00")

    wrong_email = await order_service.get_order_confirmation(placed.order_number, db, guest_email="x@example.com")
    assert wrong_email.error_code == ErrorCode.ORDER_NOT_FOUND

    wrong_session = await order_service.get_order_confirmation(placed.order_number, db, session_id="other")
    assert wrong_session.error_code == ErrorCode.ORDER_NOT_FOUND


class TestPaymentOutcome:
    async def place_card_order(self, db, cart_service, order_service, products, cities):
        await fill_cart(cart_service, db, products["mug"])
        result = await order_service.place_order(SESSION, checkout_request(cities["cairo"], PaymentMethod.CARD), db)
        return result.data.order_number

    def callback(self, order_number, success=True):
        data = {
            "id": 555,
            "amount_cents": 8000,
            "created_at": "2024-05-01T10:00:00",
            "currency": "EGP",
            "error_occured": False,
            "has_parent_transaction": False,
            "integration_id": 1001,
            "is_3d_secure": True,
            "is_auth": False,
            "is_capture": False,
            "is_refunded": False,
            "is_standalone_payment": True,
            "is_voided": False,
            "order": {"id": "po-1", "merchant_order_id": order_number},
            "owner": 42,
            "pending": False,
            "source_data": {"pan": "2346", "sub_type": "MasterCard", "type": "card"},
            "success": success,
            "data": {"message": "Declined"},
        }
        return data

    async def test_signed_success_callback(self, db, cart_service, order_service, email_service, products, cities):
        number = await self.place_card_order(db, cart_service, order_service, products, cities)
        data = self.callback(number)
        tasks = BackgroundTasks()

        result = await order_service.handle_payment_callback(data, db, sign(data), tasks)

        assert result.data.payment_status == PaymentStatus.SUCCEEDED
        order = await load_order(db, number)
        assert order.status == OrderStatus.PROCESSING
        assert order.payment.provider_transaction_id == "555"
        assert order.payment.completed_at is not None
        assert len(tasks.tasks) == 1

        # repeated callbacks leave a settled payment alone
        failed = self.callback(number, success=False)
        repeat = await order_service.handle_payment_callback(failed, db, sign(failed))
        assert repeat.data.payment_status == PaymentStatus.SUCCEEDED

    async def test_failed_callback(self, db, cart_service, order_service, products, cities):
        number = await self.place_card_order(db, cart_service, order_service, products, cities)
        data = self.callback(number, success=False)

        result = await order_service.handle_payment_callback(data, db, sign(data))

        assert result.data.payment_status == PaymentStatus.FAILED
        assert result.data.message == "Declined"
        order = await load_order(db, number)
        assert order.status == OrderStatus.PENDING

    async def test_bad_signature(self, db, cart_service, order_service, products, cities):
        number = await self.place_card_order(db, cart_service, order_service, products, cities)
        data = self.callback(number)

        result = await order_service.handle_payment_callback(data, db, "0" * 128)
        assert result.error_code == ErrorCode.INVALID_SIGNATURE

    async def test_verify_payment(self, db, cart_service, order_service, products, cities):
        number = await self.place_card_order(db, cart_service, order_service, products, cities)
        order_service.payment_service = FakePaymentService(verification=TransactionVerification(
            transaction_id="777", status=PaymentStatus.SUCCEEDED, merchant_order_id=number,
        ))

        result = await order_service.verify_payment(number, "777", db)
        assert result.data.payment_status == PaymentStatus.SUCCEEDED

        other = FakePaymentService(verification=TransactionVerification(
            transaction_id="778", status=PaymentStatus.SUCCEEDED, merchant_order_id="ORD-OTHER",
        ))
        order_service.payment_service = other
        mismatch = await order_service.verify_payment(number, "778", db)
        assert mismatch.error_code == ErrorCode.PAYMENT_NOT_FOUND


class TestAdminOrders:
    async def place(self, db, cart_service, order_service, products, cities, quantity=2, session_id=SESSION):
        await fill_cart(cart_service, db, products["mug"], quantity=quantity, session_id=session_id)
        placed = await order_service.place_order(session_id, checkout_request(cities["cairo"]), db)
        return await load_order(db, placed.data.order_number)

    async def mug_stock(self, db, products):
        query = select(Product.stock_quantity).where(Product.id == products["mug"].id)
        return (await db.execute(query)).scalar()

    async def test_lifecycle(self, db, cart_service, order_service, products, cities):
        order = await self.place(db, cart_service, order_service, products, cities)
        tasks = BackgroundTasks()

        shipped = await order_service.update_order_status(order.id, OrderStatus.SHIPPED, db, tasks)
        assert shipped.data.shipped_date is not None
        assert len(tasks.tasks) == 1

        delivered = await order_service.update_order_status(order.id, OrderStatus.DELIVERED, db)
        assert delivered.data.delivered_date is not None
        assert delivered.data.payment_status == PaymentStatus.SUCCEEDED

        backwards = await order_service.update_order_status(order.id, OrderStatus.PROCESSING, db)
        assert backwards.error_code == ErrorCode.INVALID_STATUS_TRANSITION

        refunded = await order_service.update_order_status(order.id, OrderStatus.REFUNDED, db)
        assert refunded.data.payment_status == PaymentStatus.REFUNDED
        assert await self.mug_stock(db, products) == 100

    async def test_cancel_restocks(self, db, cart_service, order_service, products, cities):
        order = await self.place(db, cart_service, order_service, products, cities)
        assert await self.mug_stock(db, products) == 98

        cancelled = await order_service.cancel_order(order.id, db, reason="Customer changed mind")

        assert cancelled.data.status == OrderStatus.CANCELLED
        assert cancelled.data.payment_status == PaymentStatus.CANCELLED
        assert "Customer changed mind" in cancelled.data.notes
        assert await self.mug_stock(db, products) == 100

        again = await order_service.cancel_order(order.id, db)
        assert again.error_code == ErrorCode.INVALID_STATUS_TRANSITION

    async def test_shipped_order_cannot_be_cancelled(self, db, cart_service, order_service, products, cities):
        order = await self.place(db, cart_service, order_service, products, cities)
        await order_service.update_order_status(order.id, OrderStatus.SHIPPED, db)

        result = await order_service.update_order_status(order.id, OrderStatus.CANCELLED, db)
        assert result.error_code == ErrorCode.INVALID_STATUS_TRANSITION

    async def test_list_orders(self, db, cart_service, order_service, products, cities):
        first = await self.place(db, cart_service, order_service, products, cities, session_id="s1")
        await self.place(db, cart_service, order_service, products, cities, session_id="s2")
        await order_service.update_order_status(first.id, OrderStatus.SHIPPED, db)

        everything = (await order_service.list_orders(db)).data
        assert everything.total == 2

        shipped = (await order_service.list_orders(db, status=OrderStatus.SHIPPED)).data
        assert [o.order_number for o in shipped.items] == [first.order_number]

        searched = (await order_service.list_orders(db, search=first.order_number.lower())).data
        assert searched.total == 1

        paged = (await order_service.list_orders(db, page=2, page_size=1)).data
        assert len(paged.items) == 1
        assert paged.total_pages == 2

    async def test_unknown_order(self, db, order_service):
        result = await order_service.get_order(9999, db)
        assert result.error_code == ErrorCode.ORDER_NOT_FOUND
