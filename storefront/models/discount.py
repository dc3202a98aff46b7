from datetime import datetime
from typing import Optional
from sqlalchemy import Column, Integer, String, Numeric, DateTime, Boolean, Enum, ForeignKey, UniqueConstraint
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import DiscountType
from ..models.base import TimeStampMixin, utcnow


class Discount(Base, TimeStampMixin):
    __tablename__ = "discounts"

    id = Column(Integer, primary_key=True, index=True)
    code = Column(String(50), nullable=False, unique=True, index=True)  # always stored upper-case
    description = Column(String(200), nullable=False, default="")
    discount_type = Column(Enum(DiscountType), nullable=False, default=DiscountType.PERCENTAGE)
    discount_value = Column(Numeric(10, 2), nullable=False)
    minimum_order_amount = Column(Numeric(10, 2), nullable=True)
    usage_limit_per_guest = Column(Integer, nullable=True)
    total_usage_count = Column(Integer, nullable=False, default=0)
    start_date = Column(DateTime, nullable=False, default=utcnow)
    expiry_date = Column(DateTime, nullable=True)
    is_active = Column(Boolean, nullable=False, default=True)

    # Relationships
    usages = relationship("DiscountUsage", back_populates="discount", cascade="all, delete-orphan")

    def has_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.expiry_date is not None and self.expiry_date < now

    def has_started(self, now: Optional[datetime] = None) -> bool:
        now = now or utcnow()
        return self.start_date <= now

    @property
    def is_expired(self) -> bool:
        return self.has_expired()

    @property
    def is_currently_active(self) -> bool:
        now = utcnow()
        return bool(self.is_active) and self.has_started(now) and not self.has_expired(now)

    def is_usage_limit_reached(self, usage_count: int) -> bool:
        return self.usage_limit_per_guest is not None and usage_count >= self.usage_limit_per_guest


    def __repr__(self):
        return f"<Discount(id={self.id}, code={self.code}, type={self.discount_type}, value={self.discount_value})>"


class DiscountUsage(Base):
    __tablename__ = "discount_usages"

    id = Column(Integer, primary_key=True, index=True)
    discount_id = Column(Integer, ForeignKey("discounts.id", ondelete="CASCADE"), nullable=False)
    session_id = Column(String(100), nullable=False)
    guest_email = Column(String(255), nullable=True, index=True)
    usage_count = Column(Integer, nullable=False, default=1)
    first_used_at = Column(DateTime, nullable=False, default=utcnow)
    last_used_at = Column(DateTime, nullable=False, default=utcnow)

    # Relationships
    discount = relationship("Discount", back_populates="usages")

    # One ledger row per discount and guest session
    __table_args__ = (
        UniqueConstraint("discount_id", "session_id", name="uq_discount_usage_session"),
    )


    def __repr__(self):
        return f"<DiscountUsage(discount_id={self.discount_id}, session_id={self.session_id}, usage_count={self.usage_count})>"
