from sqlalchemy import Column, Integer, String, Text, DateTime, ForeignKey, Boolean, Enum
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import ReviewStatus
from .base import TimeStampMixin


class Review(Base, TimeStampMixin):
    __tablename__ = "reviews"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    guest_name = Column(String(100), nullable=False)
    guest_email = Column(String(255), nullable=False)
    rating = Column(Integer, nullable=False)  # 1-5 star rating
    title = Column(String(200), nullable=True)
    comment = Column(Text, nullable=True)
    status = Column(Enum(ReviewStatus), nullable=False, default=ReviewStatus.PENDING)  # For moderation
    approved_at = Column(DateTime, nullable=True)
    is_deleted = Column(Boolean, nullable=False, default=False)

    # Relationships
    product = relationship("Product", back_populates="reviews")
