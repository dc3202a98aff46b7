"""
Pure money arithmetic for carts and checkout.

Nothing in this module touches the database. Every helper takes plain values
(or objects exposing ``quantity``, ``unit_price`` and ``original_price``) and
returns ``Decimal`` amounts rounded to two places with ROUND_HALF_UP.
"""
from decimal import Decimal, ROUND_HALF_UP
from typing import Iterable, Optional, Union

from pydantic import BaseModel

from ..core.config import Config
from ..enums import DiscountType
from ..exceptions import InvalidQuantityError


Number = Union[Decimal, int, float, str]

TWO_PLACES = Decimal("0.01")
ZERO = Decimal("0.00")
HUNDRED = Decimal("100")

# Upper bound accepted by any request schema; the configured per-line cap is lower.
HARD_MAX_QUANTITY = 100


def to_money(value: Optional[Number]) -> Decimal:
    if value is None:
        return ZERO
    if not isinstance(value, Decimal):
        value = Decimal(str(value))
    return value.quantize(TWO_PLACES, rounding=ROUND_HALF_UP)


class PricedLine(BaseModel):
    unit_price: Decimal
    original_price: Decimal
    quantity: int
    line_total: Decimal
    original_line_total: Decimal
    line_discount: Decimal

    class Config:
        frozen = True


class CartTotals(BaseModel):
    subtotal: Decimal = ZERO
    total_original_price: Decimal = ZERO
    total_product_discount: Decimal = ZERO
    item_count: int = 0

    class Config:
        frozen = True


def unit_price(base_price: Number, discount_percent: Optional[Number] = None) -> Decimal:
    """
    Effective unit price after the product's own percentage discount.

    A missing percentage leaves the base price untouched and 100 % yields a
    free item. Anything outside 0..100 is a programming error and raises ValueError.
    """
    base = Decimal(str(base_price))
    if base < 0:
        raise ValueError("Base price cannot be negative")
    if discount_percent is None:
        return to_money(base)

    percent = Decimal(str(discount_percent))
    if percent < 0 or percent > HUNDRED:
        raise ValueError(f"Discount percent must be between 0 and 100, got {percent}")

    return to_money(base * (1 - percent / HUNDRED))


def validate_quantity(quantity, max_quantity: Optional[int] = None) -> int:
    if max_quantity is None:
        max_quantity = Config.CART_MAX_QUANTITY_PER_ITEM

    max_quantity = min(max_quantity, HARD_MAX_QUANTITY)
    # bool is an int subclass but never a valid quantity
    if isinstance(quantity, bool) or not isinstance(quantity, int):
        raise InvalidQuantityError(quantity, max_quantity)
    if quantity < 1 or quantity > max_quantity:
        raise InvalidQuantityError(quantity, max_quantity)
    return quantity


def price_line(
    base_price: Number,
    discount_percent: Optional[Number],
    quantity: int,
    max_quantity: Optional[int] = None,
) -> PricedLine:
    quantity = validate_quantity(quantity, max_quantity)
    original = to_money(base_price)
    price = unit_price(base_price, discount_percent)

    line_total = to_money(price * quantity)
    original_line_total = to_money(original * quantity)
    return PricedLine(
        unit_price=price,
        original_price=original,
        quantity=quantity,
        line_total=line_total,
        original_line_total=original_line_total,
        line_discount=original_line_total - line_total,
    )


def aggregate_cart(lines: Iterable) -> CartTotals:
    subtotal = ZERO
    original_total = ZERO
    item_count = 0

    for line in lines:
        subtotal += line.quantity * to_money(line.unit_price)
        original_total += line.quantity * to_money(line.original_price)
        item_count += line.quantity

    subtotal = to_money(subtotal)
    original_total = to_money(original_total)
    return CartTotals(
        subtotal=subtotal,
        total_original_price=original_total,
        total_product_discount=original_total - subtotal,
        item_count=item_count,
    )


def cart_total_amount(subtotal: Number, discount_amount: Optional[Number]) -> Decimal:
    return to_money(max(ZERO, to_money(subtotal) - to_money(discount_amount)))


def compute_discount_amount(discount_type: DiscountType, value: Number, subtotal: Number) -> Decimal:
    """
    Cart-level reduction for a discount code.

    Percentage codes take ``value`` percent of the subtotal, fixed codes take
    ``value`` itself. Either way the amount is clamped into ``0..subtotal``.
    """
    subtotal = to_money(subtotal)
    value = Decimal(str(value))
    if subtotal <= 0 or value <= 0:
        return ZERO

    if discount_type == DiscountType.PERCENTAGE:
        amount = subtotal * value / HUNDRED
    else:
        amount = value

    return to_money(min(amount, subtotal))


def discount_percentage(discount_type: DiscountType, value: Number, amount: Number, subtotal: Number) -> Decimal:
    if discount_type == DiscountType.PERCENTAGE:
        return to_money(value)

    subtotal = to_money(subtotal)
    if subtotal <= 0:
        return ZERO
    return to_money(to_money(amount) / subtotal * HUNDRED)


def checkout_total(subtotal: Number, discount_amount: Optional[Number], shipping_cost: Optional[Number]) -> Decimal:
    """ Grand total: discounted subtotal (never below zero) plus shipping, rounded once. """
    shipping = Decimal(str(shipping_cost or 0))
    if shipping < 0:
        raise ValueError("Shipping cost cannot be negative")

    discounted = max(Decimal(str(subtotal)) - Decimal(str(discount_amount or 0)), Decimal(0))
    return to_money(discounted + shipping)
