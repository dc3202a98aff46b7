from sqlalchemy import Column, Integer, String, Text, Boolean, Numeric, ForeignKey
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..models.base import TimeStampMixin


class Product(Base, TimeStampMixin):
    __tablename__ = "products"

    id = Column(Integer, primary_key=True, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=False, default="")
    price = Column(Numeric(10, 2), nullable=False)
    discount_percent = Column(Numeric(5, 2), nullable=True)  # 0-100, None when not on sale
    stock_quantity = Column(Integer, nullable=False, default=0)
    is_deleted = Column(Boolean, default=False, nullable=False)

    # Relationships
    colors = relationship("ProductColor", back_populates="product", cascade="all, delete-orphan")
    reviews = relationship("Review", back_populates="product")

    def __repr__(self):
        return f"<Product(id={self.id}, name={self.name}, price={self.price}, stock_quantity={self.stock_quantity})>"


class ProductColor(Base):
    __tablename__ = "product_colors"

    id = Column(Integer, primary_key=True, index=True)
    product_id = Column(Integer, ForeignKey("products.id", ondelete="CASCADE"), nullable=False)
    color_name = Column(String(50), nullable=False)
    color_hex_code = Column(String(7), nullable=False)

    # Relationships
    product = relationship("Product", back_populates="colors")
