from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession

from ..core.dependencies import get_db, get_session_id, require_admin
from ..exceptions import raise_for_result
from ..schemas.cart import (
    AddToCartRequest,
    ApplyDiscountRequest,
    CartResponse,
    CartSummary,
    MergeCartRequest,
    UpdateCartItemRequest,
)
from ..services.cart_service import CartService

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])
cart_service = CartService()


@router.get("/", response_model=CartResponse)
async def get_cart(
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Get the current guest's cart, totals recomputed from its lines"""
    return raise_for_result(await cart_service.get_cart(session_id, db))


@router.post("/items", response_model=CartResponse)
async def add_item_to_cart(
    item: AddToCartRequest,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """
    **Add Product To Cart**

    Adds a product in an optional colour. Adding a product and colour already in
    the cart increases that line's quantity instead of creating a new line.

    **Request Body:**
    - **product_id**: ID of the product (required)
    - **quantity**: How many to add (default: 1)
    - **selected_color**: One of the product's colours (optional)
    """
    return raise_for_result(await cart_service.add_item(session_id, item, db))


@router.put("/items/{item_id}", response_model=CartResponse)
async def update_cart_item_quantity(
    item_id: int,
    data: UpdateCartItemRequest,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Update quantity of a cart item"""
    return raise_for_result(await cart_service.update_quantity(session_id, item_id, data.quantity, db))


@router.delete("/items/{item_id}", response_model=CartResponse)
async def remove_cart_item(
    item_id: int,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Remove an item from the cart"""
    return raise_for_result(await cart_service.remove_item(session_id, item_id, db))


@router.delete("/", response_model=CartResponse)
async def clear_cart(
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Clear all items and the discount code from the cart"""
    return raise_for_result(await cart_service.clear_cart(session_id, db))


@router.post("/discount", response_model=CartResponse)
async def apply_discount_code(
    data: ApplyDiscountRequest,
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Apply a discount code to the cart"""
    return raise_for_result(await cart_service.apply_discount_code(session_id, data.code, db))


@router.delete("/discount", response_model=CartResponse)
async def remove_discount_code(
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    """Remove discount code from cart"""
    return raise_for_result(await cart_service.remove_discount_code(session_id, db))


@router.get("/summary", response_model=CartSummary)
async def get_cart_summary(
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    return raise_for_result(await cart_service.get_summary(session_id, db))


@router.get("/count")
async def get_cart_item_count(
    session_id: str = Depends(get_session_id),
    db: AsyncSession = Depends(get_db)
):
    count = raise_for_result(await cart_service.get_item_count(session_id, db))
    return {"count": count}


@admin_router.post("/merge", response_model=CartResponse)
async def merge_carts(
    data: MergeCartRequest,
    db: AsyncSession = Depends(get_db)
):
    """Move every line of one guest cart into another, leaving the source empty"""
    return raise_for_result(await cart_service.merge_carts(data.source_session_id, data.target_session_id, db))
