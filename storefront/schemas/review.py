import bleach
from pydantic import BaseModel, EmailStr, Field, field_validator
from typing import Optional, List
from decimal import Decimal
from datetime import datetime

from ..enums import ReviewStatus


class ReviewCreate(BaseModel):
    """Schema for a guest submitting a review"""
    product_id: int
    guest_name: str = Field(..., min_length=1, max_length=100)
    guest_email: EmailStr
    rating: int = Field(..., ge=1, le=5)
    title: Optional[str] = Field(None, max_length=200)
    comment: Optional[str] = Field(None, max_length=1000)

    @field_validator('guest_name', 'title', 'comment', mode='before')
    @classmethod
    def strip_markup(cls, v):
        """Reviews are shown as plain text, so every tag is stripped"""
        if not v:
            return v
        return bleach.clean(str(v), tags=[], attributes={}, strip=True).strip()


class ReviewStatusUpdate(BaseModel):
    status: ReviewStatus


class ReviewResponse(BaseModel):
    """Schema for review responses"""
    id: int
    product_id: int
    guest_name: str
    rating: int
    title: Optional[str] = None
    comment: Optional[str] = None
    status: ReviewStatus
    created_at: datetime
    approved_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class ProductReviews(BaseModel):
    product_id: int
    average_rating: Decimal = Decimal("0.00")
    review_count: int = 0
    reviews: List[ReviewResponse] = []
