from sqlalchemy import Column, Integer, String, Numeric, Boolean

from ..db.base import Base
from ..models.base import TimeStampMixin


class ShippingCity(Base, TimeStampMixin):
    __tablename__ = "shipping_cities"

    id = Column(Integer, primary_key=True, index=True)
    city_name = Column(String(100), nullable=False, unique=True)
    shipping_cost = Column(Numeric(10, 2), nullable=False)
    is_active = Column(Boolean, nullable=False, default=True)


    def __repr__(self):
        return f"<ShippingCity(id={self.id}, city_name={self.city_name}, shipping_cost={self.shipping_cost})>"
