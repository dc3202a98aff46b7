from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

from ..enums import OrderStatus, PaymentMethod, PaymentStatus
from .cart import CartResponse
from .shipping import ShippingCityResponse


# Checkout input
class PlaceOrderRequest(BaseModel):
    guest_name: str = Field(..., min_length=1, max_length=100)
    guest_email: EmailStr
    guest_phone: str = Field(..., min_length=6, max_length=30)
    shipping_address: str = Field(..., min_length=1, max_length=200)
    shipping_city_id: int
    shipping_postal_code: Optional[str] = Field(None, max_length=20)
    payment_method: PaymentMethod
    notes: Optional[str] = Field(None, max_length=500)

    @field_validator('guest_phone')
    @classmethod
    def validate_phone(cls, v):
        """Keep digits and a leading plus sign only"""
        phone = v.strip()
        digits = ''.join(filter(str.isdigit, phone))
        if len(digits) < 6:
            raise ValueError('Invalid phone number format')
        return ('+' if phone.startswith('+') else '') + digits

    @field_validator('guest_name', 'shipping_address')
    @classmethod
    def not_blank(cls, v):
        if not v.strip():
            raise ValueError('Field cannot be blank')
        return v.strip()


class CheckoutTotalRequest(BaseModel):
    shipping_city_id: int


class CheckoutTotal(BaseModel):
    subtotal: Decimal
    discount_amount: Decimal = Decimal("0.00")
    discount_code: Optional[str] = None
    shipping_city_id: int
    shipping_city_name: str
    shipping_cost: Decimal
    grand_total: Decimal


class CheckoutPreparation(BaseModel):
    cart: CartResponse
    shipping_cities: List[ShippingCityResponse] = []


# Frozen order snapshot, built before anything is written
class OrderItemSnapshot(BaseModel):
    product_id: int
    product_name: str
    selected_color: Optional[str] = None
    quantity: int
    unit_price: Decimal
    original_price: Decimal
    discount_percent: Optional[Decimal] = None
    line_total: Decimal

    class Config:
        frozen = True


class OrderSnapshot(BaseModel):
    order_number: str
    order_date: datetime
    session_id: str
    guest_name: str
    guest_email: str
    guest_phone: str
    payment_method: PaymentMethod
    shipping_address: str
    shipping_city_id: int
    shipping_city_name: str
    shipping_postal_code: Optional[str] = None
    shipping_country: str
    subtotal: Decimal
    original_total: Decimal
    discount_amount: Decimal
    discount_code: Optional[str] = None
    discount_id: Optional[int] = None
    shipping_cost: Decimal
    total_amount: Decimal
    notes: Optional[str] = None
    items: tuple[OrderItemSnapshot, ...] = ()

    class Config:
        frozen = True


# Checkout output
class PaymentSession(BaseModel):
    """Where the shopper goes next to pay for a gateway order"""
    payment_key: Optional[str] = None
    iframe_url: Optional[str] = None
    redirect_url: Optional[str] = None
    provider_order_id: Optional[str] = None


class PlaceOrderResponse(BaseModel):
    order_number: str
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    total_amount: Decimal
    payment_session: Optional[PaymentSession] = None
    retry_payment_path: Optional[str] = None
    payment_error: Optional[str] = None


class OrderItemResponse(BaseModel):
    product_id: int
    product_name: str
    selected_color: Optional[str] = None
    quantity: int
    unit_price: Decimal
    original_price: Decimal
    discount_percent: Optional[Decimal] = None
    line_total: Decimal

    class Config:
        from_attributes = True


class OrderConfirmation(BaseModel):
    order_number: str
    order_date: datetime
    status: OrderStatus
    customer_name: str
    customer_email: str
    customer_phone: str
    shipping_address: str
    shipping_city: str
    shipping_postal_code: Optional[str] = None
    shipping_country: str
    subtotal: Decimal
    discount_amount: Decimal
    discount_code: Optional[str] = None
    shipping_cost: Decimal
    grand_total: Decimal
    payment_method: PaymentMethod
    payment_status: Optional[PaymentStatus] = None
    items: List[OrderItemResponse] = []


# Admin back-office
class OrderStatusUpdate(BaseModel):
    status: OrderStatus


class OrderCancelRequest(BaseModel):
    reason: Optional[str] = Field(None, max_length=500)


class AdminOrderResponse(BaseModel):
    id: int
    order_number: str
    order_date: datetime
    status: OrderStatus
    guest_name: str
    guest_email: str
    guest_phone: str
    shipping_city_name: str
    payment_method: PaymentMethod
    payment_status: Optional[PaymentStatus] = None
    subtotal: Decimal
    discount_amount: Decimal
    discount_code: Optional[str] = None
    shipping_cost: Decimal
    total_amount: Decimal
    shipped_date: Optional[datetime] = None
    delivered_date: Optional[datetime] = None
    notes: Optional[str] = None
    items: List[OrderItemResponse] = []
