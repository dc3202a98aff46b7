from fastapi import APIRouter, BackgroundTasks, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..core.dependencies import get_db, require_admin
from ..enums import OrderStatus, PaymentMethod, PaymentStatus
from ..exceptions import raise_for_result
from ..schemas.common import Page
from ..schemas.order import AdminOrderResponse, OrderCancelRequest, OrderStatusUpdate
from .checkout import order_service

router = APIRouter(dependencies=[Depends(require_admin)])


@router.get("/", response_model=Page[AdminOrderResponse])
async def list_orders(
    status: Optional[OrderStatus] = Query(None),
    payment_method: Optional[PaymentMethod] = Query(None),
    payment_status: Optional[PaymentStatus] = Query(None),
    search: Optional[str] = Query(None, max_length=100, description="Order number, name, email or phone"),
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    db: AsyncSession = Depends(get_db)
):
    """
    **List Orders - Admin Only**

    Newest orders first.

    **Query Parameters:**
    - **status**: Filter by order status
    - **payment_method**: Filter by payment method
    - **payment_status**: Filter by payment status
    - **search**: Match order number, guest name, email or phone
    - **page** / **page_size**: Pagination (default: 1 / 20)
    """
    result = await order_service.list_orders(db, status, payment_method, payment_status, search, page, page_size)
    return raise_for_result(result)


@router.get("/{order_id}", response_model=AdminOrderResponse)
async def get_order(order_id: int, db: AsyncSession = Depends(get_db)):
    return raise_for_result(await order_service.get_order(order_id, db))


@router.patch("/{order_id}/status", response_model=AdminOrderResponse)
async def update_order_status(
    order_id: int,
    data: OrderStatusUpdate,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    """Move an order along its lifecycle; shipping it emails the guest"""
    return raise_for_result(await order_service.update_order_status(order_id, data.status, db, background_tasks))


@router.post("/{order_id}/cancel", response_model=AdminOrderResponse)
async def cancel_order(order_id: int, data: OrderCancelRequest, db: AsyncSession = Depends(get_db)):
    """Cancel an order that has not shipped yet and return its items to stock"""
    return raise_for_result(await order_service.cancel_order(order_id, db, data.reason))
