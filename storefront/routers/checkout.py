from fastapi import APIRouter, BackgroundTasks, Depends, Query
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..core.dependencies import get_db, get_session_id
from ..exceptions import raise_for_result
from ..schemas.order import (
    CheckoutPreparation,
    CheckoutTotal,
    CheckoutTotalRequest,
    OrderConfirmation,
    PlaceOrderRequest,
    PlaceOrderResponse,
)
from ..services.order_service import OrderService

router = APIRouter()
order_service = OrderService()


@router.get("/", response_model=CheckoutPreparation)
async def prepare_checkout(
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Get the cart to check out together with the cities we currently ship to"""
    return raise_for_result(await order_service.prepare_checkout(session_id, db))


@router.post("/total", response_model=CheckoutTotal)
async def compute_checkout_total(
    data: CheckoutTotalRequest,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Grand total for the cart shipped to the chosen city"""
    return raise_for_result(await order_service.compute_checkout_total(session_id, data.shipping_city_id, db))


@router.post("/place-order", response_model=PlaceOrderResponse, status_code=201)
async def place_order(
    data: PlaceOrderRequest,
    background_tasks: BackgroundTasks,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """
    **Place Order**

    Turns the current cart into an order. Stock is reserved, the discount code is
    redeemed and the cart is emptied in one step.

    **Payment:**
    - **cash_on_delivery**: the order is confirmed straight away
    - **card**: the response carries the payment iframe URL
    - **wallet**: the response carries the wallet redirect URL

    If the payment provider cannot be reached the order is still saved as pending
    and the response includes `retry_payment_path`.
    """
    return raise_for_result(await order_service.place_order(session_id, data, db, background_tasks))


@router.get("/orders/{order_number}", response_model=OrderConfirmation)
async def get_order_confirmation(
    order_number: str,
    email: Optional[EmailStr] = Query(None, description="Email used at checkout"),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Get a placed order by its number, for the session that placed it or the matching email"""
    result = await order_service.get_order_confirmation(
        order_number, db, guest_email=email, session_id=None if email else session_id
    )
    return raise_for_result(result)


@router.post("/orders/{order_number}/retry-payment", response_model=PlaceOrderResponse)
async def retry_payment(
    order_number: str,
    wallet_phone: Optional[str] = Query(None, max_length=30),
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Open a new payment session for a pending card or wallet order"""
    return raise_for_result(await order_service.retry_payment(order_number, session_id, db, wallet_phone))
