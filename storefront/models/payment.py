from sqlalchemy import Column, Integer, String, Numeric, DateTime, ForeignKey, Enum
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import PaymentMethod, PaymentStatus
from ..models.base import TimeStampMixin


class Payment(Base, TimeStampMixin):
    __tablename__ = "payments"

    id = Column(Integer, primary_key=True, index=True)
    order_id = Column(Integer, ForeignKey("orders.id", ondelete="CASCADE"), nullable=False, unique=True)
    provider_name = Column(String(100), nullable=True)
    provider_order_id = Column(String(100), nullable=True)
    provider_transaction_id = Column(String(100), nullable=True, index=True)
    provider_payment_key = Column(String(2000), nullable=True)
    amount = Column(Numeric(10, 2), nullable=False)
    original_amount = Column(Numeric(10, 2), nullable=False)  # before the cart discount
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    applied_discount_code = Column(String(50), nullable=True)
    currency = Column(String(10), nullable=False, default="EGP")
    status = Column(Enum(PaymentStatus), nullable=False, default=PaymentStatus.PENDING)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    completed_at = Column(DateTime, nullable=True)

    # Relationships
    order = relationship("Order", back_populates="payment")


    def __repr__(self):
        return f"<Payment(id={self.id}, order_id={self.order_id}, status={self.status}, amount={self.amount})>"
