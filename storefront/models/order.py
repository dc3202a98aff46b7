from sqlalchemy import Column, Integer, String, Numeric, ForeignKey, DateTime, Enum
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..enums import OrderStatus, PaymentMethod
from ..models.base import TimeStampMixin, utcnow


class Order(Base, TimeStampMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(50), nullable=False, unique=True, index=True)
    session_id = Column(String(200), nullable=False, index=True)
    guest_name = Column(String(100), nullable=False)
    guest_email = Column(String(255), nullable=False, index=True)
    guest_phone = Column(String(30), nullable=False)
    status = Column(Enum(OrderStatus), nullable=False, default=OrderStatus.PENDING)
    payment_method = Column(Enum(PaymentMethod), nullable=False)
    order_date = Column(DateTime, nullable=False, default=utcnow)
    shipped_date = Column(DateTime, nullable=True)
    delivered_date = Column(DateTime, nullable=True)

    # Shipping snapshot
    shipping_address = Column(String(200), nullable=False)
    shipping_city_id = Column(Integer, ForeignKey("shipping_cities.id"), nullable=True)
    shipping_city_name = Column(String(100), nullable=False)
    shipping_postal_code = Column(String(20), nullable=True)
    shipping_country = Column(String(100), nullable=False)

    # Totals
    subtotal = Column(Numeric(10, 2), nullable=False)
    original_total = Column(Numeric(10, 2), nullable=False)
    shipping_cost = Column(Numeric(10, 2), nullable=False, default=0)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    total_amount = Column(Numeric(10, 2), nullable=False)
    discount_code = Column(String(50), nullable=True)
    applied_discount_id = Column(Integer, ForeignKey("discounts.id"), nullable=True)
    notes = Column(String(500), nullable=True)

    # Relationships
    items = relationship("OrderItem", back_populates="order", cascade="all, delete-orphan", order_by="OrderItem.id")
    payment = relationship("Payment", back_populates="order", uselist=False, cascade="all, delete-orphan")
    shipping_city = relationship("ShippingCity")
    applied_discount = relationship("Discount")


    def __repr__(self):
        return f"<Order(id={self.id}, order_number={self.order_number}, status={self.status}, total_amount={self.total_amount})>"
