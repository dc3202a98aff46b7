from pydantic import BaseModel, Field
from typing import Optional
from decimal import Decimal
from datetime import datetime


class ShippingCityBase(BaseModel):
    """Base schema for shipping cities"""
    city_name: str = Field(..., min_length=1, max_length=100)
    shipping_cost: Decimal = Field(..., ge=0, le=10000)
    is_active: bool = True


class ShippingCityCreate(ShippingCityBase):
    """Schema for creating shipping cities"""
    pass


class ShippingCityUpdate(BaseModel):
    """Schema for updating shipping cities"""
    city_name: Optional[str] = Field(None, min_length=1, max_length=100)
    shipping_cost: Optional[Decimal] = Field(None, ge=0, le=10000)
    is_active: Optional[bool] = None


class ShippingCityResponse(ShippingCityBase):
    """Schema for shipping city responses"""
    id: int
    created_at: datetime
    updated_at: Optional[datetime] = None

    class Config:
        from_attributes = True
