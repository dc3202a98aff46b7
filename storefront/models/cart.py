from sqlalchemy import Column, Integer, String, Numeric, DateTime
from sqlalchemy.orm import relationship

from ..db.base import Base
from ..models.base import TimeStampMixin, utcnow


class Cart(Base, TimeStampMixin):
    __tablename__ = "carts"

    id = Column(Integer, primary_key=True, index=True)
    session_id = Column(String(200), nullable=False, unique=True, index=True)
    discount_code = Column(String(50), nullable=True)
    discount_amount = Column(Numeric(10, 2), nullable=False, default=0)
    last_activity_at = Column(DateTime, nullable=False, default=utcnow, index=True)

    # Relationships
    items = relationship(
        "CartItem",
        back_populates="cart",
        cascade="all, delete-orphan",
        order_by="CartItem.id",
    )

    def touch(self):
        self.last_activity_at = utcnow()


    def __repr__(self):
        return f'<Cart(id={self.id}, session_id={self.session_id}, discount_code={self.discount_code})>'
