from pydantic import BaseModel, Field, model_validator
from typing import Optional
from decimal import Decimal
from datetime import datetime

from ..enums import DiscountType, ErrorCode


class DiscountValidationResult(BaseModel):
    """Outcome of checking a discount code against a cart"""
    is_valid: bool
    discount_amount: Decimal = Decimal("0.00")
    discount_percentage: Decimal = Decimal("0.00")
    discount_id: Optional[int] = None
    discount_code: Optional[str] = None
    error_code: Optional[ErrorCode] = None
    error_message: Optional[str] = None

    @classmethod
    def invalid(cls, error_code: ErrorCode, error_message: str) -> "DiscountValidationResult":
        return cls(is_valid=False, error_code=error_code, error_message=error_message)

    class Config:
        frozen = True


class DiscountBase(BaseModel):
    """Base schema for discounts"""
    code: str = Field(..., min_length=1, max_length=50, pattern=r"^[A-Za-z0-9]+$")
    description: str = Field("", max_length=200)
    discount_type: DiscountType = DiscountType.PERCENTAGE
    discount_value: Decimal = Field(..., gt=0, le=10000, description="Percentage or fixed amount")
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0, description="Minimum order amount required")
    usage_limit_per_guest: Optional[int] = Field(None, gt=0, description="Redemptions allowed per guest session")
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    is_active: bool = True

    @model_validator(mode="after")
    def check_values(self):
        if self.discount_type == DiscountType.PERCENTAGE and self.discount_value > 100:
            raise ValueError("Percentage discount cannot exceed 100")
        if self.start_date and self.expiry_date and self.expiry_date <= self.start_date:
            raise ValueError("Expiry date must be after start date")
        return self


class DiscountCreate(DiscountBase):
    """Schema for creating discounts"""
    pass


class DiscountUpdate(BaseModel):
    """Schema for updating discounts"""
    description: Optional[str] = Field(None, max_length=200)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(None, gt=0, le=10000)
    minimum_order_amount: Optional[Decimal] = Field(None, ge=0)
    usage_limit_per_guest: Optional[int] = Field(None, gt=0)
    start_date: Optional[datetime] = None
    expiry_date: Optional[datetime] = None
    is_active: Optional[bool] = None


class DiscountResponse(BaseModel):
    """Schema for discount responses"""
    id: int
    code: str
    description: str
    discount_type: DiscountType
    discount_value: Decimal
    minimum_order_amount: Optional[Decimal] = None
    usage_limit_per_guest: Optional[int] = None
    total_usage_count: int = 0
    start_date: datetime
    expiry_date: Optional[datetime] = None
    is_active: bool
    is_expired: bool
    is_currently_active: bool
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class DiscountStats(BaseModel):
    """Schema for discount dashboard counters"""
    total_discounts: int
    active_discounts: int
    expired_discounts: int
    scheduled_discounts: int
    total_redemptions: int
    total_discount_given: Decimal
