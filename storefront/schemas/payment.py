from pydantic import BaseModel
from typing import Optional, Dict, Any

from ..enums import PaymentStatus


class PaymobPaymentResult(BaseModel):
    """What the gateway handed back for one checkout attempt"""
    success: bool
    provider_order_id: Optional[str] = None
    payment_key: Optional[str] = None
    iframe_url: Optional[str] = None
    redirect_url: Optional[str] = None
    error_message: Optional[str] = None


class TransactionVerification(BaseModel):
    transaction_id: str
    status: PaymentStatus
    merchant_order_id: Optional[str] = None
    amount_cents: Optional[int] = None
    failure_reason: Optional[str] = None


class PaymentCallback(BaseModel):
    """Gateway transaction-processed callback; ``obj`` is the raw transaction"""
    type: Optional[str] = None
    obj: Dict[str, Any]


class PaymentStatusResponse(BaseModel):
    order_number: str
    payment_status: PaymentStatus
    message: Optional[str] = None
