from sqlalchemy import Column, Integer, String, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..models.base import TimeStampMixin


class CartItem(Base, TimeStampMixin):
    __tablename__ = "cart_items"

    id = Column(Integer, primary_key=True, index=True)
    cart_id = Column(Integer, ForeignKey("carts.id", ondelete="CASCADE"), nullable=False)
    product_id = Column(Integer, ForeignKey("products.id"), nullable=False)
    quantity = Column(Integer, default=1, nullable=False)
    selected_color = Column(String(50), nullable=True)
    unit_price = Column(Numeric(10, 2), nullable=False)  # after product discount
    original_price = Column(Numeric(10, 2), nullable=False)
    product_discount_percent = Column(Numeric(5, 2), nullable=True)

    # Relationships
    cart = relationship("Cart", back_populates="items")
    product = relationship("Product")

    @property
    def line_total(self):
        return self.quantity * self.unit_price

    @property
    def original_line_total(self):
        return self.quantity * self.original_price


    def __repr__(self):
        return f'<CartItem(cart_id={self.cart_id}, product_id={self.product_id}, quantity={self.quantity})>'
