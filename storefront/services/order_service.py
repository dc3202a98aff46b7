import asyncio
import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional, Tuple

from fastapi import BackgroundTasks
from sqlalchemy import func, or_, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from ..core.config import Config
from ..enums import ErrorCode, OrderStatus, PaymentMethod, PaymentStatus
from ..exceptions import DuplicateDiscountUsage, InvalidQuantityError, PaymentGatewayError
from ..models import Cart, CartItem, Order, OrderItem, Payment, Product, ShippingCity
from ..models.base import utcnow
from ..schemas.common import Page, ServiceResult
from ..schemas.discount import DiscountValidationResult
from ..schemas.order import (
    AdminOrderResponse,
    CheckoutPreparation,
    CheckoutTotal,
    OrderConfirmation,
    OrderItemResponse,
    OrderItemSnapshot,
    OrderSnapshot,
    PaymentSession,
    PlaceOrderRequest,
    PlaceOrderResponse,
)
from ..schemas.payment import PaymentStatusResponse
from .cart_service import CartService, cart_to_response
from .discount_service import DiscountService
from .email_service import EmailService
from .payment_service import PaymentService, failure_reason
from .pricing import CartTotals, ZERO, aggregate_cart, checkout_total, price_line, to_money
from .shipping_service import ShippingService


logger = logging.getLogger(__name__)


# Allowed admin status changes; cancelled and refunded are final
STATUS_TRANSITIONS = {
    OrderStatus.PENDING: {OrderStatus.PROCESSING, OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED, OrderStatus.CANCELLED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: {OrderStatus.REFUNDED},
    OrderStatus.CANCELLED: set(),
    OrderStatus.REFUNDED: set(),
}

FINAL_PAYMENT_STATUSES = {PaymentStatus.SUCCEEDED, PaymentStatus.REFUNDED, PaymentStatus.CANCELLED}


def generate_order_number(now: Optional[datetime] = None) -> str:
    now = now or utcnow()
    return f"ORD-{now:%Y%m%d}-{uuid.uuid4().hex[:8].upper()}"


def retry_payment_path(order_number: str) -> str:
    return f"/api/v1/checkout/orders/{order_number}/retry-payment"


def build_order_snapshot(
    session_id: str,
    request: PlaceOrderRequest,
    cart_items: List[CartItem],
    totals: CartTotals,
    discount: Optional[DiscountValidationResult],
    city: ShippingCity,
    now: Optional[datetime] = None,
) -> OrderSnapshot:
    """
    Freezes a priced cart, the resolved discount and shipping into an order.

    Item data is copied by value so later catalog edits never change a placed
    order. Nothing is written to the database here.
    """
    now = now or utcnow()
    discount_amount = discount.discount_amount if discount and discount.is_valid else ZERO
    shipping_cost = to_money(city.shipping_cost)

    items = tuple(
        OrderItemSnapshot(
            product_id=item.product_id,
            product_name=item.product.name,
            selected_color=item.selected_color,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            original_price=to_money(item.original_price),
            discount_percent=item.product_discount_percent,
            line_total=to_money(item.line_total),
        )
        for item in cart_items
    )

    return OrderSnapshot(
        order_number=generate_order_number(now),
        order_date=now,
        session_id=session_id,
        guest_name=request.guest_name,
        guest_email=request.guest_email,
        guest_phone=request.guest_phone,
        payment_method=request.payment_method,
        shipping_address=request.shipping_address,
        shipping_city_id=city.id,
        shipping_city_name=city.city_name,
        shipping_postal_code=request.shipping_postal_code,
        shipping_country=Config.DEFAULT_COUNTRY,
        subtotal=totals.subtotal,
        original_total=totals.total_original_price,
        discount_amount=discount_amount,
        discount_code=discount.discount_code if discount and discount.is_valid else None,
        discount_id=discount.discount_id if discount and discount.is_valid else None,
        shipping_cost=shipping_cost,
        total_amount=checkout_total(totals.subtotal, discount_amount, shipping_cost),
        notes=request.notes,
        items=items,
    )


def order_from_snapshot(snapshot: OrderSnapshot) -> Order:
    order = Order(
        order_number=snapshot.order_number,
        session_id=snapshot.session_id,
        guest_name=snapshot.guest_name,
        guest_email=snapshot.guest_email,
        guest_phone=snapshot.guest_phone,
        status=OrderStatus.PENDING,
        payment_method=snapshot.payment_method,
        order_date=snapshot.order_date,
        shipping_address=snapshot.shipping_address,
        shipping_city_id=snapshot.shipping_city_id,
        shipping_city_name=snapshot.shipping_city_name,
        shipping_postal_code=snapshot.shipping_postal_code,
        shipping_country=snapshot.shipping_country,
        subtotal=snapshot.subtotal,
        original_total=snapshot.original_total,
        shipping_cost=snapshot.shipping_cost,
        discount_amount=snapshot.discount_amount,
        total_amount=snapshot.total_amount,
        discount_code=snapshot.discount_code,
        applied_discount_id=snapshot.discount_id,
        notes=snapshot.notes,
        items=[OrderItem(**item.model_dump()) for item in snapshot.items],
    )
    order.payment = Payment(
        amount=snapshot.total_amount,
        original_amount=snapshot.subtotal + snapshot.shipping_cost,
        discount_amount=snapshot.discount_amount,
        applied_discount_code=snapshot.discount_code,
        currency=Config.CURRENCY,
        status=PaymentStatus.PENDING,
        payment_method=snapshot.payment_method,
    )
    return order


def order_to_confirmation(order: Order) -> OrderConfirmation:
    return OrderConfirmation(
        order_number=order.order_number,
        order_date=order.order_date,
        status=order.status,
        customer_name=order.guest_name,
        customer_email=order.guest_email,
        customer_phone=order.guest_phone,
        shipping_address=order.shipping_address,
        shipping_city=order.shipping_city_name,
        shipping_postal_code=order.shipping_postal_code,
        shipping_country=order.shipping_country,
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        discount_code=order.discount_code,
        shipping_cost=order.shipping_cost,
        grand_total=order.total_amount,
        payment_method=order.payment_method,
        payment_status=order.payment.status if order.payment else None,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
    )


def order_to_admin_response(order: Order) -> AdminOrderResponse:
    return AdminOrderResponse(
        id=order.id,
        order_number=order.order_number,
        order_date=order.order_date,
        status=order.status,
        guest_name=order.guest_name,
        guest_email=order.guest_email,
        guest_phone=order.guest_phone,
        shipping_city_name=order.shipping_city_name,
        payment_method=order.payment_method,
        payment_status=order.payment.status if order.payment else None,
        subtotal=order.subtotal,
        discount_amount=order.discount_amount,
        discount_code=order.discount_code,
        shipping_cost=order.shipping_cost,
        total_amount=order.total_amount,
        shipped_date=order.shipped_date,
        delivered_date=order.delivered_date,
        notes=order.notes,
        items=[OrderItemResponse.model_validate(item) for item in order.items],
    )


def _is_true(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).lower() == "true"


def _append_note(order: Order, note: str) -> None:
    stamped = f"{note} ({utcnow():%Y-%m-%d %H:%M})"
    order.notes = f"{order.notes}\n{stamped}" if order.notes else stamped


class OrderService:
    def __init__(
        self,
        cart_service: Optional[CartService] = None,
        discount_service: Optional[DiscountService] = None,
        shipping_service: Optional[ShippingService] = None,
        payment_service: Optional[PaymentService] = None,
        email_service: Optional[EmailService] = None,
    ):
        self.discount_service = discount_service or DiscountService()
        self.cart_service = cart_service or CartService(self.discount_service)
        self.shipping_service = shipping_service or ShippingService()
        self.payment_service = payment_service or PaymentService()
        self.email_service = email_service or EmailService()

    async def _load_order(self, db: AsyncSession, order_id: int = None, order_number: str = None) -> Optional[Order]:
        query = select(Order).options(selectinload(Order.items), selectinload(Order.payment))
        if order_id is not None:
            query = query.where(Order.id == order_id)
        else:
            query = query.where(Order.order_number == order_number)
        result = await db.execute(query.execution_options(populate_existing=True))
        return result.scalars().first()

    async def _fail(self, db: AsyncSession, error_code: ErrorCode, message: str) -> ServiceResult:
        await db.rollback()
        return ServiceResult.failure(error_code, message)

    # Checkout

    async def prepare_checkout(self, session_id: str, db: AsyncSession) -> ServiceResult[CheckoutPreparation]:
        cart = await self.cart_service.load_cart(session_id, db)
        if not cart or not cart.items:
            return ServiceResult.failure(ErrorCode.CART_EMPTY, "Your cart is empty")

        cities = await self.shipping_service.list_cities(db, active_only=True)
        return ServiceResult.success(CheckoutPreparation(cart=cart_to_response(cart), shipping_cities=cities.data))

    async def compute_checkout_total(self, session_id: str, shipping_city_id: int, db: AsyncSession) -> ServiceResult[CheckoutTotal]:
        cart = await self.cart_service.load_cart(session_id, db)
        if not cart or not cart.items:
            return ServiceResult.failure(ErrorCode.CART_EMPTY, "Your cart is empty")

        totals = aggregate_cart(cart.items)
        discount_amount, discount_code = ZERO, None
        if cart.discount_code:
            validation = await self.discount_service.validate_code(cart.discount_code, totals.subtotal, session_id, db)
            if validation.is_valid:
                discount_amount, discount_code = validation.discount_amount, validation.discount_code

        city = await self.shipping_service.get_city(shipping_city_id, db)
        if not city.succeeded:
            return city

        shipping_cost = to_money(city.data.shipping_cost)
        return ServiceResult.success(CheckoutTotal(
            subtotal=totals.subtotal,
            discount_amount=discount_amount,
            discount_code=discount_code,
            shipping_city_id=city.data.id,
            shipping_city_name=city.data.city_name,
            shipping_cost=shipping_cost,
            grand_total=checkout_total(totals.subtotal, discount_amount, shipping_cost),
        ))

    async def place_order(
        self,
        session_id: str,
        request: PlaceOrderRequest,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ServiceResult[PlaceOrderResponse]:
        """
        Turns the session's cart into an order.

        Everything up to clearing the cart happens in one transaction. Losing the
        discount-usage race rolls it back and validates the code again: if that now
        fails the code is dropped from the cart and the failure returned, otherwise
        the order is attempted once more. Gateway orders then open a payment
        session; a gateway failure leaves the order pending with a retry path.
        """
        for attempt in (1, 2):
            try:
                result = await self._create_order(session_id, request, db)
                break
            except DuplicateDiscountUsage as e:
                await db.rollback()
                logger.info("Discount usage race lost for session %s on discount %s", session_id, e.discount_id)

                retry = await self._recheck_discount_after_race(session_id, db)
                if retry is not None:
                    return retry
                if attempt == 2:
                    return ServiceResult.failure(
                        ErrorCode.DUPLICATE_USAGE, "Your discount code was just used. Please try again."
                    )

        if not result.succeeded:
            return result

        order: Order = result.data
        logger.info("Order %s placed for session %s, total %s", order.order_number, session_id, order.total_amount)

        response = PlaceOrderResponse(
            order_number=order.order_number,
            payment_method=order.payment_method,
            payment_status=order.payment.status,
            total_amount=order.total_amount,
        )

        if order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            if background_tasks is not None:
                background_tasks.add_task(self.email_service.send_order_confirmation, order)
            return ServiceResult.success(response)

        session, error = await self._open_payment_session(order, db)
        response.payment_session = session
        if session is None:
            response.retry_payment_path = retry_payment_path(order.order_number)
            response.payment_error = error
        return ServiceResult.success(response)

    async def _recheck_discount_after_race(self, session_id: str, db: AsyncSession) -> Optional[ServiceResult]:
        cart = await self.cart_service.load_cart(session_id, db)
        if not cart or not cart.discount_code:
            return None

        subtotal = aggregate_cart(cart.items).subtotal
        validation = await self.discount_service.validate_code(cart.discount_code, subtotal, session_id, db)
        if validation.is_valid:
            return None

        cart.discount_code = None
        cart.discount_amount = ZERO
        await db.commit()
        return ServiceResult.failure(validation.error_code, validation.error_message)

    async def _create_order(self, session_id: str, request: PlaceOrderRequest, db: AsyncSession) -> ServiceResult[Order]:
        cart: Optional[Cart] = await self.cart_service.load_cart(session_id, db)
        if not cart or not cart.items:
            return ServiceResult.failure(ErrorCode.CART_EMPTY, "Your cart is empty")

        # re-price every line from the live catalog
        for item in cart.items:
            product = item.product
            if product.is_deleted:
                return await self._fail(db, ErrorCode.PRODUCT_NOT_FOUND, f"{product.name} is no longer available")
            try:
                line = price_line(product.price, product.discount_percent, item.quantity)
            except InvalidQuantityError as e:
                return await self._fail(db, ErrorCode.INVALID_QUANTITY, str(e))
            if product.stock_quantity < item.quantity:
                return await self._fail(
                    db,
                    ErrorCode.INSUFFICIENT_STOCK,
                    f"Insufficient stock for {product.name}. Available: {product.stock_quantity}, requested: {item.quantity}",
                )
            item.unit_price = line.unit_price
            item.original_price = line.original_price
            item.product_discount_percent = product.discount_percent

        totals = aggregate_cart(cart.items)

        discount = None
        if cart.discount_code:
            discount = await self.discount_service.validate_code(cart.discount_code, totals.subtotal, session_id, db)
            if not discount.is_valid:
                cart.discount_code = None
                cart.discount_amount = ZERO
                await db.commit()
                return ServiceResult.failure(discount.error_code, discount.error_message)

        city = await self.shipping_service.get_city(request.shipping_city_id, db)
        if not city.succeeded:
            return await self._fail(db, city.error_code, city.error_message)

        snapshot = build_order_snapshot(session_id, request, cart.items, totals, discount, city.data)
        order = order_from_snapshot(snapshot)
        db.add(order)
        await db.flush()

        for item in snapshot.items:
            stmt = (
                update(Product)
                .where(Product.id == item.product_id, Product.stock_quantity >= item.quantity)
                .values(stock_quantity=Product.stock_quantity - item.quantity)
                .execution_options(synchronize_session=False)
            )
            if (await db.execute(stmt)).rowcount == 0:
                return await self._fail(
                    db, ErrorCode.INSUFFICIENT_STOCK, f"{item.product_name} just sold out. Please update your cart."
                )

        if snapshot.discount_id is not None:
            await self.discount_service.record_usage(snapshot.discount_id, session_id, db, guest_email=request.guest_email)

        cart.items.clear()
        cart.discount_code = None
        cart.discount_amount = ZERO
        cart.touch()

        await db.commit()
        return ServiceResult.success(order)

    async def _open_payment_session(
        self,
        order: Order,
        db: AsyncSession,
        wallet_phone: Optional[str] = None,
    ) -> Tuple[Optional[PaymentSession], Optional[str]]:
        try:
            result = await asyncio.wait_for(
                self.payment_service.initiate_payment(
                    order.order_number,
                    order.total_amount,
                    order.guest_name,
                    order.guest_email,
                    wallet_phone or order.guest_phone,
                    order.payment_method,
                ),
                timeout=Config.PAYMOB_CHECKOUT_TIMEOUT_SECONDS,
            )
        except asyncio.TimeoutError:
            logger.error("Payment gateway timed out for order %s", order.order_number)
            return None, "The payment provider did not respond in time. Your order is saved, please retry the payment."
        except PaymentGatewayError as e:
            logger.error("Payment gateway failed for order %s: %s", order.order_number, e)
            return None, "We could not start the payment. Your order is saved, please retry the payment."

        payment = order.payment
        payment.provider_name = "Paymob"
        payment.provider_order_id = result.provider_order_id
        payment.provider_payment_key = result.payment_key
        payment.status = PaymentStatus.PENDING
        await db.commit()

        return PaymentSession(
            payment_key=result.payment_key,
            iframe_url=result.iframe_url,
            redirect_url=result.redirect_url,
            provider_order_id=result.provider_order_id,
        ), None

    async def get_order_confirmation(
        self,
        order_number: str,
        db: AsyncSession,
        guest_email: Optional[str] = None,
        session_id: Optional[str] = None,
    ) -> ServiceResult[OrderConfirmation]:
        """Looks up a placed order; a given email or session must match the order's"""
        order = await self._load_order(db, order_number=order_number)
        not_found = ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, f"Order {order_number} not found")
        if not order:
            return not_found
        if guest_email is not None:
            if guest_email.strip().lower() != order.guest_email.lower():
                return not_found
        elif session_id is not None and session_id != order.session_id:
            return not_found

        return ServiceResult.success(order_to_confirmation(order))

    async def retry_payment(
        self,
        order_number: str,
        session_id: str,
        db: AsyncSession,
        wallet_phone: Optional[str] = None,
    ) -> ServiceResult[PlaceOrderResponse]:
        order = await self._load_order(db, order_number=order_number)
        if not order or order.session_id != session_id:
            return ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, f"Order {order_number} not found")
        if order.payment_method == PaymentMethod.CASH_ON_DELIVERY:
            return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Cash on delivery orders are paid on delivery")
        if order.status != OrderStatus.PENDING or order.payment.status not in (PaymentStatus.PENDING, PaymentStatus.FAILED):
            return ServiceResult.failure(
                ErrorCode.INVALID_STATUS_TRANSITION, f"Order {order_number} can no longer be paid online"
            )

        session, error = await self._open_payment_session(order, db, wallet_phone)
        if session is None:
            return ServiceResult.failure(ErrorCode.PAYMENT_GATEWAY_ERROR, error)

        return ServiceResult.success(PlaceOrderResponse(
            order_number=order.order_number,
            payment_method=order.payment_method,
            payment_status=order.payment.status,
            total_amount=order.total_amount,
            payment_session=session,
        ))

    async def _apply_transaction_outcome(
        self,
        order: Order,
        status: PaymentStatus,
        transaction_id: Optional[str],
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None,
        reason: Optional[str] = None,
    ) -> PaymentStatusResponse:
        payment = order.payment
        if payment.status in FINAL_PAYMENT_STATUSES:
            # gateways repeat callbacks; a settled payment is never reopened
            return PaymentStatusResponse(order_number=order.order_number, payment_status=payment.status)

        if transaction_id:
            payment.provider_transaction_id = str(transaction_id)
        payment.status = status

        if status == PaymentStatus.SUCCEEDED:
            payment.completed_at = utcnow()
            if order.status == OrderStatus.PENDING:
                order.status = OrderStatus.PROCESSING
            logger.info("Payment succeeded for order %s", order.order_number)
        elif status == PaymentStatus.FAILED:
            logger.warning("Payment failed for order %s: %s", order.order_number, reason)

        await db.commit()

        if status == PaymentStatus.SUCCEEDED and background_tasks is not None:
            background_tasks.add_task(self.email_service.send_order_confirmation, order)

        return PaymentStatusResponse(order_number=order.order_number, payment_status=status, message=reason)

    async def handle_payment_callback(
        self,
        data: Dict[str, Any],
        db: AsyncSession,
        received_hmac: Optional[str] = None,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ServiceResult[PaymentStatusResponse]:
        """Applies a signed gateway transaction callback to its order's payment"""
        try:
            valid = self.payment_service.verify_hmac(data, received_hmac)
        except PaymentGatewayError as e:
            logger.error("Cannot verify payment callback: %s", e)
            return ServiceResult.failure(ErrorCode.PAYMENT_GATEWAY_ERROR, "Payment verification is not configured")
        if not valid:
            return ServiceResult.failure(ErrorCode.INVALID_SIGNATURE, "Invalid callback signature")

        gateway_order = data.get("order")
        merchant_order_id = data.get("merchant_order_id")
        gateway_order_id = gateway_order
        if isinstance(gateway_order, dict):
            merchant_order_id = merchant_order_id or gateway_order.get("merchant_order_id")
            gateway_order_id = gateway_order.get("id")

        order = None
        if merchant_order_id:
            order = await self._load_order(db, order_number=str(merchant_order_id))
        if order is None and gateway_order_id is not None:
            query = select(Payment.order_id).where(Payment.provider_order_id == str(gateway_order_id))
            order_id = (await db.execute(query)).scalar()
            if order_id is not None:
                order = await self._load_order(db, order_id=order_id)
        if order is None or order.payment is None:
            logger.warning("Payment callback for unknown order %s / %s", merchant_order_id, gateway_order_id)
            return ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, "Order not found for this transaction")

        if _is_true(data.get("success")) and not _is_true(data.get("pending")):
            status = PaymentStatus.SUCCEEDED
        elif _is_true(data.get("pending")):
            status = PaymentStatus.PENDING
        else:
            status = PaymentStatus.FAILED

        inner = data.get("data") if isinstance(data.get("data"), dict) else None
        reason = None
        if status == PaymentStatus.FAILED:
            reason = failure_reason(inner)

        outcome = await self._apply_transaction_outcome(order, status, data.get("id"), db, background_tasks, reason)
        return ServiceResult.success(outcome)

    async def verify_payment(
        self,
        order_number: str,
        transaction_id: str,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ServiceResult[PaymentStatusResponse]:
        """Asks the gateway for a transaction's outcome, used when the shopper returns from the payment page"""
        order = await self._load_order(db, order_number=order_number)
        if not order or order.payment is None:
            return ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, f"Order {order_number} not found")

        try:
            verification = await self.payment_service.verify_transaction(transaction_id)
        except PaymentGatewayError as e:
            logger.error("Could not verify transaction %s for order %s: %s", transaction_id, order_number, e)
            return ServiceResult.failure(ErrorCode.PAYMENT_GATEWAY_ERROR, "Unable to verify payment right now")

        if verification.merchant_order_id and verification.merchant_order_id != order.order_number:
            return ServiceResult.failure(ErrorCode.PAYMENT_NOT_FOUND, "This transaction belongs to another order")

        outcome = await self._apply_transaction_outcome(
            order, verification.status, verification.transaction_id, db, background_tasks, verification.failure_reason
        )
        return ServiceResult.success(outcome)

    # Admin back-office

    async def list_orders(
        self,
        db: AsyncSession,
        status: Optional[OrderStatus] = None,
        payment_method: Optional[PaymentMethod] = None,
        payment_status: Optional[PaymentStatus] = None,
        search: Optional[str] = None,
        page: int = 1,
        page_size: int = 20,
    ) -> ServiceResult[Page[AdminOrderResponse]]:
        filters = []
        if status is not None:
            filters.append(Order.status == status)
        if payment_method is not None:
            filters.append(Order.payment_method == payment_method)
        if payment_status is not None:
            filters.append(Order.payment.has(Payment.status == payment_status))
        if search:
            term = f"%{search.strip().lower()}%"
            filters.append(or_(
                func.lower(Order.order_number).like(term),
                func.lower(Order.guest_name).like(term),
                func.lower(Order.guest_email).like(term),
                Order.guest_phone.like(term),
            ))

        total = (await db.execute(select(func.count(Order.id)).where(*filters))).scalar()
        query = (
            select(Order)
            .options(selectinload(Order.items), selectinload(Order.payment))
            .where(*filters)
            .order_by(Order.order_date.desc(), Order.id.desc())
            .offset((page - 1) * page_size)
            .limit(page_size)
        )
        orders = (await db.execute(query)).scalars().all()

        return ServiceResult.success(Page[AdminOrderResponse](
            items=[order_to_admin_response(o) for o in orders],
            total=total,
            page=page,
            page_size=page_size,
        ))

    async def get_order(self, order_id: int, db: AsyncSession) -> ServiceResult[AdminOrderResponse]:
        order = await self._load_order(db, order_id=order_id)
        if not order:
            return ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, "Order not found")
        return ServiceResult.success(order_to_admin_response(order))

    async def _restock(self, order: Order, db: AsyncSession) -> None:
        for item in order.items:
            await db.execute(
                update(Product)
                .where(Product.id == item.product_id)
                .values(stock_quantity=Product.stock_quantity + item.quantity)
                .execution_options(synchronize_session=False)
            )

    async def update_order_status(
        self,
        order_id: int,
        new_status: OrderStatus,
        db: AsyncSession,
        background_tasks: Optional[BackgroundTasks] = None,
    ) -> ServiceResult[AdminOrderResponse]:
        order = await self._load_order(db, order_id=order_id)
        if not order:
            return ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, "Order not found")

        if new_status == OrderStatus.CANCELLED:
            return await self.cancel_order(order_id, db)

        if new_status not in STATUS_TRANSITIONS[order.status]:
            return ServiceResult.failure(
                ErrorCode.INVALID_STATUS_TRANSITION,
                f"Cannot change order status from {order.status.value} to {new_status.value}",
            )

        now = utcnow()
        payment = order.payment
        order.status = new_status

        if new_status == OrderStatus.SHIPPED:
            order.shipped_date = now
        elif new_status == OrderStatus.DELIVERED:
            order.delivered_date = now
            if order.payment_method == PaymentMethod.CASH_ON_DELIVERY and payment and payment.status == PaymentStatus.PENDING:
                payment.status = PaymentStatus.SUCCEEDED
                payment.completed_at = now
        elif new_status == OrderStatus.REFUNDED:
            await self._restock(order, db)
            if payment:
                payment.status = PaymentStatus.REFUNDED
                payment.completed_at = now
            _append_note(order, "Refunded")

        await db.commit()
        logger.info("Order %s moved to %s", order.order_number, new_status.value)

        if new_status == OrderStatus.SHIPPED and background_tasks is not None:
            background_tasks.add_task(self.email_service.send_order_shipped, order)

        return ServiceResult.success(order_to_admin_response(order))

    async def cancel_order(self, order_id: int, db: AsyncSession, reason: Optional[str] = None) -> ServiceResult[AdminOrderResponse]:
        """Cancels an order that has not shipped, returning its items to stock"""
        order = await self._load_order(db, order_id=order_id)
        if not order:
            return ServiceResult.failure(ErrorCode.ORDER_NOT_FOUND, "Order not found")

        if OrderStatus.CANCELLED not in STATUS_TRANSITIONS[order.status]:
            return ServiceResult.failure(
                ErrorCode.INVALID_STATUS_TRANSITION, f"Cannot cancel order with status: {order.status.value}"
            )

        order.status = OrderStatus.CANCELLED
        _append_note(order, f"Cancelled: {reason}" if reason else "Cancelled")
        await self._restock(order, db)

        payment = order.payment
        if payment:
            if payment.status == PaymentStatus.SUCCEEDED:
                payment.status = PaymentStatus.REFUNDED
            elif payment.status in (PaymentStatus.PENDING, PaymentStatus.FAILED):
                payment.status = PaymentStatus.CANCELLED
            payment.completed_at = utcnow()

        await db.commit()
        logger.info("Order %s cancelled", order.order_number)
        return ServiceResult.success(order_to_admin_response(order))
