from .product import Product, ProductColor
from .cart import Cart
from .cart_item import CartItem
from .discount import Discount, DiscountUsage
from .shipping_city import ShippingCity
from .order import Order
from .order_item import OrderItem
from .payment import Payment
from .review import Review


__all__ = [
    "Product",
    "ProductColor",
    "Cart",
    "CartItem",
    "Discount",
    "DiscountUsage",
    "ShippingCity",
    "Order",
    "OrderItem",
    "Payment",
    "Review",
]
