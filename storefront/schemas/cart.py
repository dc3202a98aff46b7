from pydantic import BaseModel, Field, computed_field
from typing import Optional, List
from decimal import Decimal
from datetime import datetime


class AddToCartRequest(BaseModel):
    """Schema for adding a product to the cart"""
    product_id: int
    quantity: int = Field(ge=1, le=100, default=1)
    selected_color: Optional[str] = Field(None, max_length=50)


class UpdateCartItemRequest(BaseModel):
    """Schema for changing the quantity of a cart line"""
    quantity: int = Field(ge=1, le=100)


class ApplyDiscountRequest(BaseModel):
    """Schema for submitting a discount code"""
    code: str = Field(min_length=1, max_length=50)


class MergeCartRequest(BaseModel):
    """Schema for moving one guest cart into another"""
    source_session_id: str = Field(min_length=1, max_length=200)
    target_session_id: str = Field(min_length=1, max_length=200)


class CartItemResponse(BaseModel):
    """Schema for cart item responses"""
    id: int
    product_id: int
    product_name: str
    selected_color: Optional[str] = None
    quantity: int
    unit_price: Decimal
    original_price: Decimal
    product_discount_percent: Optional[Decimal] = None
    line_total: Decimal
    original_line_total: Decimal

    @computed_field
    @property
    def line_discount(self) -> Decimal:
        return self.original_line_total - self.line_total

    @computed_field
    @property
    def has_product_discount(self) -> bool:
        return self.original_price > self.unit_price

    class Config:
        from_attributes = True


class CartResponse(BaseModel):
    """Schema for cart responses"""
    id: int
    session_id: str
    items: List[CartItemResponse] = []
    subtotal: Decimal
    total_original_price: Decimal
    total_product_discount: Decimal
    discount_code: Optional[str] = None
    discount_amount: Decimal = Decimal("0.00")
    total_amount: Decimal
    total_items: int
    created_at: datetime

    @computed_field
    @property
    def total_savings(self) -> Decimal:
        return self.total_product_discount + self.discount_amount

    @computed_field
    @property
    def discount_percentage(self) -> Decimal:
        """ Overall percentage off the undiscounted price. """
        if self.total_original_price <= 0:
            return Decimal("0.00")
        saved = self.total_original_price - self.total_amount
        return (saved / self.total_original_price * 100).quantize(Decimal("0.01"))

    @computed_field
    @property
    def coupon_discount_percentage(self) -> Decimal:
        if self.subtotal <= 0 or self.discount_amount <= 0:
            return Decimal("0.00")
        return (self.discount_amount / self.subtotal * 100).quantize(Decimal("0.01"))

    class Config:
        from_attributes = True


class CartSummary(BaseModel):
    """Schema for the compact cart badge"""
    total_items: int = 0
    subtotal: Decimal = Decimal("0.00")
    discount: Decimal = Decimal("0.00")
    total: Decimal = Decimal("0.00")
    is_empty: bool = True
