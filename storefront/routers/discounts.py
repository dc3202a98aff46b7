from fastapi import APIRouter, Depends, Query
from pydantic import EmailStr
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ..core.dependencies import get_db, require_admin
from ..exceptions import raise_for_result
from ..schemas.discount import DiscountCreate, DiscountResponse, DiscountStats, DiscountUpdate
from ..services.discount_service import DiscountService

router = APIRouter(dependencies=[Depends(require_admin)])
discount_service = DiscountService()


@router.get("/", response_model=List[DiscountResponse])
async def list_discounts(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    """List discount codes, newest first"""
    return raise_for_result(await discount_service.list_discounts(db, active_only))


@router.get("/stats", response_model=DiscountStats)
async def get_discount_stats(db: AsyncSession = Depends(get_db)):
    return raise_for_result(await discount_service.get_discount_stats(db))


@router.get("/{discount_id}", response_model=DiscountResponse)
async def get_discount(discount_id: int, db: AsyncSession = Depends(get_db)):
    return raise_for_result(await discount_service.get_discount(discount_id, db))


@router.post("/", response_model=DiscountResponse, status_code=201)
async def create_discount(data: DiscountCreate, db: AsyncSession = Depends(get_db)):
    """
    **Create Discount Code**

    Codes are stored upper-case and must be unique.

    **Request Body:**
    - **code**: Letters and digits only (required)
    - **discount_type**: percentage or fixed_amount
    - **discount_value**: Percentage (at most 100) or fixed amount (required)
    - **minimum_order_amount**: Smallest cart subtotal the code applies to (optional)
    - **usage_limit_per_guest**: Redemptions allowed per guest session (optional)
    - **start_date** / **expiry_date**: Validity window (optional)
    """
    return raise_for_result(await discount_service.create_discount(data, db))


@router.patch("/{discount_id}", response_model=DiscountResponse)
async def update_discount(discount_id: int, data: DiscountUpdate, db: AsyncSession = Depends(get_db)):
    return raise_for_result(await discount_service.update_discount(discount_id, data, db))


@router.patch("/{discount_id}/toggle", response_model=DiscountResponse)
async def toggle_discount(discount_id: int, db: AsyncSession = Depends(get_db)):
    """Switch a discount code between active and inactive"""
    return raise_for_result(await discount_service.toggle_discount(discount_id, db))


@router.delete("/{discount_id}")
async def delete_discount(discount_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a discount code, or deactivate it when orders already used it"""
    return raise_for_result(await discount_service.delete_discount(discount_id, db))


@router.get("/{discount_id}/usage")
async def get_discount_usage_by_email(
    discount_id: int,
    email: EmailStr = Query(...),
    db: AsyncSession = Depends(get_db)
):
    """How many times orders placed with this email redeemed the code"""
    raise_for_result(await discount_service.get_discount(discount_id, db))
    count = await discount_service.count_usages_by_email(discount_id, email, db)
    return {"discount_id": discount_id, "email": email, "usage_count": count}
