import logging

from fastapi import APIRouter, BackgroundTasks, Depends, Query, Request
from sqlalchemy.ext.asyncio import AsyncSession
from typing import Optional

from ..core.dependencies import get_db
from ..exceptions import raise_for_result
from ..schemas.payment import PaymentCallback, PaymentStatusResponse
from .checkout import order_service

router = APIRouter()
logger = logging.getLogger(__name__)


@router.post("/paymob/callback", response_model=PaymentStatusResponse)
async def paymob_callback(
    callback: PaymentCallback,
    background_tasks: BackgroundTasks,
    hmac: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db)
):
    """
    **Paymob Transaction Callback**

    Server-to-server notification sent by Paymob once a transaction is processed.
    The HMAC query parameter is checked before the order's payment is updated;
    repeated callbacks for a settled payment leave it unchanged.
    """
    logger.info("Paymob callback received: type=%s id=%s", callback.type, callback.obj.get("id"))
    result = await order_service.handle_payment_callback(callback.obj, db, hmac, background_tasks)
    return raise_for_result(result)


@router.get("/paymob/callback", response_model=PaymentStatusResponse)
async def paymob_redirect_callback(
    request: Request,
    background_tasks: BackgroundTasks,
    db: AsyncSession = Depends(get_db)
):
    """Shopper's browser redirect back from Paymob; the transaction fields arrive as query parameters"""
    params = dict(request.query_params)
    received_hmac = params.pop("hmac", None)
    result = await order_service.handle_payment_callback(params, db, received_hmac, background_tasks)
    return raise_for_result(result)


@router.get("/orders/{order_number}/verify", response_model=PaymentStatusResponse)
async def verify_payment(
    order_number: str,
    background_tasks: BackgroundTasks,
    transaction_id: str = Query(..., min_length=1),
    db: AsyncSession = Depends(get_db)
):
    """Ask Paymob for the outcome of a transaction and apply it to the order"""
    result = await order_service.verify_payment(order_number, transaction_id, db, background_tasks)
    return raise_for_result(result)
