import logging
from typing import Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select
from sqlalchemy.orm import selectinload

from ..core.config import Config
from ..enums import ErrorCode
from ..exceptions import InvalidQuantityError
from ..models import Cart, CartItem, Product
from ..schemas.cart import AddToCartRequest, CartItemResponse, CartResponse, CartSummary
from ..schemas.common import ServiceResult
from .discount_service import DiscountService
from .pricing import ZERO, aggregate_cart, cart_total_amount, price_line, to_money, validate_quantity


logger = logging.getLogger(__name__)


def cart_to_response(cart: Cart) -> CartResponse:
    """Builds the cart view, recomputing every total from the current lines"""
    totals = aggregate_cart(cart.items)
    discount_amount = ZERO
    if cart.discount_code:
        discount_amount = min(to_money(cart.discount_amount), totals.subtotal)

    items = [
        CartItemResponse(
            id=item.id,
            product_id=item.product_id,
            product_name=item.product.name,
            selected_color=item.selected_color,
            quantity=item.quantity,
            unit_price=to_money(item.unit_price),
            original_price=to_money(item.original_price),
            product_discount_percent=item.product_discount_percent,
            line_total=to_money(item.line_total),
            original_line_total=to_money(item.original_line_total),
        )
        for item in cart.items
    ]

    return CartResponse(
        id=cart.id,
        session_id=cart.session_id,
        items=items,
        subtotal=totals.subtotal,
        total_original_price=totals.total_original_price,
        total_product_discount=totals.total_product_discount,
        discount_code=cart.discount_code or None,
        discount_amount=discount_amount,
        total_amount=cart_total_amount(totals.subtotal, discount_amount),
        total_items=totals.item_count,
        created_at=cart.created_at,
    )


class CartService:
    def __init__(self, discount_service: Optional[DiscountService] = None):
        self.discount_service = discount_service or DiscountService()

    async def load_cart(self, session_id: str, db: AsyncSession) -> Optional[Cart]:
        """Get a session's cart with its lines and their products, or None"""
        query = (
            select(Cart)
            .options(selectinload(Cart.items).selectinload(CartItem.product))
            .where(Cart.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        return result.scalars().first()

    async def get_or_create_cart(self, session_id: str, db: AsyncSession) -> Cart:
        """Get a session's cart or create one if it doesn't exist"""
        cart = await self.load_cart(session_id, db)
        if cart:
            return cart

        db.add(Cart(session_id=session_id, items=[]))
        try:
            await db.commit()
        except IntegrityError:
            # another request for the same session created it first
            await db.rollback()

        return await self.load_cart(session_id, db)

    async def _sync_discount(self, cart: Cart, db: AsyncSession) -> None:
        """Re-checks an applied code after the lines change and drops it once it no longer applies"""
        if not cart.discount_code:
            cart.discount_amount = ZERO
            return

        subtotal = aggregate_cart(cart.items).subtotal
        result = await self.discount_service.validate_code(cart.discount_code, subtotal, cart.session_id, db)
        if result.is_valid:
            cart.discount_amount = result.discount_amount
        else:
            logger.info("Dropping discount %s from cart %s: %s", cart.discount_code, cart.id, result.error_code)
            cart.discount_code = None
            cart.discount_amount = ZERO

    async def _save(self, cart: Cart, db: AsyncSession) -> ServiceResult[CartResponse]:
        cart.touch()
        await self._sync_discount(cart, db)
        await db.commit()

        cart = await self.load_cart(cart.session_id, db)
        return ServiceResult.success(cart_to_response(cart))

    async def get_cart(self, session_id: str, db: AsyncSession) -> ServiceResult[CartResponse]:
        cart = await self.get_or_create_cart(session_id, db)
        return ServiceResult.success(cart_to_response(cart))

    async def add_item(self, session_id: str, request: AddToCartRequest, db: AsyncSession) -> ServiceResult[CartResponse]:
        """Add a product to the cart, merging with an existing line for the same colour"""
        try:
            validate_quantity(request.quantity)
        except InvalidQuantityError as e:
            return ServiceResult.failure(ErrorCode.INVALID_QUANTITY, str(e))

        query = select(Product).options(selectinload(Product.colors)).where(Product.id == request.product_id)
        product = (await db.execute(query)).scalars().first()
        if not product or product.is_deleted:
            return ServiceResult.failure(ErrorCode.PRODUCT_NOT_FOUND, f"Product with ID {request.product_id} not found")

        color = request.selected_color.strip() if request.selected_color else None
        if color:
            available = {c.color_name.lower(): c.color_name for c in product.colors}
            if color.lower() not in available:
                return ServiceResult.failure(
                    ErrorCode.COLOR_NOT_AVAILABLE, f"Color '{color}' is not available for {product.name}"
                )
            color = available[color.lower()]

        cart = await self.get_or_create_cart(session_id, db)
        existing = next(
            (i for i in cart.items if i.product_id == product.id and i.selected_color == color),
            None,
        )
        quantity = request.quantity + (existing.quantity if existing else 0)

        try:
            line = price_line(product.price, product.discount_percent, quantity)
        except InvalidQuantityError:
            return ServiceResult.failure(
                ErrorCode.INVALID_QUANTITY,
                f"You can add at most {Config.CART_MAX_QUANTITY_PER_ITEM} of {product.name} to your cart",
            )

        if quantity > product.stock_quantity:
            return ServiceResult.failure(
                ErrorCode.INSUFFICIENT_STOCK,
                f"Not enough stock available. Only {product.stock_quantity} left",
            )

        if existing:
            item = existing
        else:
            item = CartItem(product=product, selected_color=color)
            cart.items.append(item)

        item.quantity = line.quantity
        item.unit_price = line.unit_price
        item.original_price = line.original_price
        item.product_discount_percent = product.discount_percent

        return await self._save(cart, db)

    async def update_quantity(self, session_id: str, item_id: int, quantity: int, db: AsyncSession) -> ServiceResult[CartResponse]:
        try:
            validate_quantity(quantity)
        except InvalidQuantityError as e:
            return ServiceResult.failure(ErrorCode.INVALID_QUANTITY, str(e))

        cart = await self.load_cart(session_id, db)
        if not cart:
            return ServiceResult.failure(ErrorCode.CART_NOT_FOUND, "Cart not found")

        item = next((i for i in cart.items if i.id == item_id), None)
        if not item:
            return ServiceResult.failure(ErrorCode.CART_ITEM_NOT_FOUND, f"Cart item with ID {item_id} not found")

        product = item.product
        if product.is_deleted:
            return ServiceResult.failure(ErrorCode.PRODUCT_NOT_FOUND, f"{product.name} is no longer available")
        if quantity > product.stock_quantity:
            return ServiceResult.failure(
                ErrorCode.INSUFFICIENT_STOCK,
                f"Not enough stock available. Only {product.stock_quantity} left",
            )

        line = price_line(product.price, product.discount_percent, quantity)
        item.quantity = line.quantity
        item.unit_price = line.unit_price
        item.original_price = line.original_price
        item.product_discount_percent = product.discount_percent

        return await self._save(cart, db)

    async def remove_item(self, session_id: str, item_id: int, db: AsyncSession) -> ServiceResult[CartResponse]:
        cart = await self.load_cart(session_id, db)
        if not cart:
            return ServiceResult.failure(ErrorCode.CART_NOT_FOUND, "Cart not found")

        item = next((i for i in cart.items if i.id == item_id), None)
        if not item:
            return ServiceResult.failure(ErrorCode.CART_ITEM_NOT_FOUND, f"Cart item with ID {item_id} not found")

        cart.items.remove(item)
        return await self._save(cart, db)

    async def clear_cart(self, session_id: str, db: AsyncSession) -> ServiceResult[CartResponse]:
        cart = await self.load_cart(session_id, db)
        if not cart:
            return ServiceResult.failure(ErrorCode.CART_NOT_FOUND, "Cart not found")

        cart.items.clear()
        cart.discount_code = None
        cart.discount_amount = ZERO
        return await self._save(cart, db)

    async def apply_discount_code(self, session_id: str, code: str, db: AsyncSession) -> ServiceResult[CartResponse]:
        cart = await self.load_cart(session_id, db)
        if not cart or not cart.items:
            return ServiceResult.failure(ErrorCode.CART_EMPTY, "Add items to your cart before applying a discount code")

        subtotal = aggregate_cart(cart.items).subtotal
        result = await self.discount_service.validate_code(code, subtotal, session_id, db)
        if not result.is_valid:
            return ServiceResult.failure(result.error_code, result.error_message)

        cart.discount_code = result.discount_code
        cart.discount_amount = result.discount_amount
        logger.info("Applied discount %s (%s off) to cart %s", result.discount_code, result.discount_amount, cart.id)
        return await self._save(cart, db)

    async def remove_discount_code(self, session_id: str, db: AsyncSession) -> ServiceResult[CartResponse]:
        cart = await self.load_cart(session_id, db)
        if not cart:
            return ServiceResult.failure(ErrorCode.CART_NOT_FOUND, "Cart not found")

        cart.discount_code = None
        cart.discount_amount = ZERO
        return await self._save(cart, db)

    async def get_summary(self, session_id: str, db: AsyncSession) -> ServiceResult[CartSummary]:
        cart = await self.load_cart(session_id, db)
        if not cart or not cart.items:
            return ServiceResult.success(CartSummary())

        view = cart_to_response(cart)
        return ServiceResult.success(CartSummary(
            total_items=view.total_items,
            subtotal=view.subtotal,
            discount=view.discount_amount,
            total=view.total_amount,
            is_empty=False,
        ))

    async def get_item_count(self, session_id: str, db: AsyncSession) -> ServiceResult[int]:
        cart = await self.load_cart(session_id, db)
        if not cart:
            return ServiceResult.success(0)
        return ServiceResult.success(sum(i.quantity for i in cart.items))

    async def merge_carts(self, source_session_id: str, target_session_id: str, db: AsyncSession) -> ServiceResult[CartResponse]:
        """
        Moves every line of the source session's cart into the target session's cart.

        Lines for a product and colour already in the target are combined when the
        sum stays within stock and the per-line cap; otherwise the target line is kept
        as it is. The source cart is left empty.
        """
        source = await self.load_cart(source_session_id, db)
        if not source:
            return ServiceResult.failure(ErrorCode.CART_NOT_FOUND, "Cart not found")

        target = await self.get_or_create_cart(target_session_id, db)
        if source.id == target.id:
            return ServiceResult.success(cart_to_response(target))

        for source_item in list(source.items):
            product = source_item.product
            existing = next(
                (i for i in target.items
                 if i.product_id == source_item.product_id and i.selected_color == source_item.selected_color),
                None,
            )

            if existing:
                quantity = existing.quantity + source_item.quantity
                if quantity <= product.stock_quantity and quantity <= Config.CART_MAX_QUANTITY_PER_ITEM:
                    existing.quantity = quantity
            elif not product.is_deleted:
                line = price_line(product.price, product.discount_percent, source_item.quantity)
                target.items.append(CartItem(
                    product=product,
                    selected_color=source_item.selected_color,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    original_price=line.original_price,
                    product_discount_percent=product.discount_percent,
                ))

            source.items.remove(source_item)

        source.discount_code = None
        source.discount_amount = ZERO
        source.touch()
        logger.info("Merged cart %s into cart %s", source.id, target.id)
        return await self._save(target, db)
