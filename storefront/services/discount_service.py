import logging
from datetime import datetime
from typing import List, Optional

from sqlalchemy import func, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..core.config import Config
from ..enums import DiscountType, ErrorCode
from ..exceptions import DuplicateDiscountUsage
from ..models import Discount, DiscountUsage, Order
from ..models.base import utcnow
from ..schemas.common import ServiceResult
from ..schemas.discount import (
    DiscountCreate,
    DiscountResponse,
    DiscountStats,
    DiscountUpdate,
    DiscountValidationResult,
)
from .pricing import ZERO, compute_discount_amount, discount_percentage, to_money


logger = logging.getLogger(__name__)


def normalize_code(code: Optional[str]) -> str:
    return (code or "").strip().upper()


def format_money(amount) -> str:
    return f"{Config.CURRENCY} {to_money(amount):,.2f}"


def evaluate_discount(
    discount: Optional[Discount],
    subtotal,
    usage_count: int = 0,
    now: Optional[datetime] = None,
) -> DiscountValidationResult:
    """
    Decide whether a discount applies to a cart subtotal and how much it takes off.

    ``usage_count`` is the number of earlier redemptions by the same guest session.
    The checks run in a fixed order and the first failing one wins: unknown code,
    expired, switched off, not started yet, minimum order, then per-guest limit.
    """
    now = now or utcnow()
    subtotal = to_money(subtotal)

    if discount is None:
        return DiscountValidationResult.invalid(
            ErrorCode.DISCOUNT_NOT_FOUND, "Invalid discount code. Please check and try again."
        )

    if discount.has_expired(now):
        return DiscountValidationResult.invalid(
            ErrorCode.DISCOUNT_EXPIRED,
            f"This discount code expired on {discount.expiry_date:%b %d, %Y}.",
        )

    if not discount.is_active:
        return DiscountValidationResult.invalid(
            ErrorCode.DISCOUNT_INACTIVE, "This discount code is currently inactive."
        )

    if not discount.has_started(now):
        return DiscountValidationResult.invalid(
            ErrorCode.DISCOUNT_NOT_YET_STARTED,
            f"This discount code is not valid until {discount.start_date:%b %d, %Y}.",
        )

    if discount.minimum_order_amount is not None and subtotal < to_money(discount.minimum_order_amount):
        return DiscountValidationResult.invalid(
            ErrorCode.MINIMUM_ORDER_NOT_MET,
            f"Minimum order amount of {format_money(discount.minimum_order_amount)} required. "
            f"Your subtotal is {format_money(subtotal)}.",
        )

    if discount.is_usage_limit_reached(usage_count):
        limit = discount.usage_limit_per_guest
        message = (
            "You have already used this discount code."
            if limit == 1
            else f"You have already used this discount code {limit} times."
        )
        return DiscountValidationResult.invalid(ErrorCode.USAGE_LIMIT_REACHED, message)

    amount = compute_discount_amount(discount.discount_type, discount.discount_value, subtotal)
    return DiscountValidationResult(
        is_valid=True,
        discount_amount=amount,
        discount_percentage=discount_percentage(discount.discount_type, discount.discount_value, amount, subtotal),
        discount_id=discount.id,
        discount_code=discount.code,
    )


class DiscountService:
    async def get_by_code(self, code: str, db: AsyncSession) -> Optional[Discount]:
        query = select(Discount).where(Discount.code == normalize_code(code))
        result = await db.execute(query)
        return result.scalars().first()

    async def get_usage_count(self, discount_id: int, session_id: str, db: AsyncSession) -> int:
        query = select(DiscountUsage.usage_count).where(
            DiscountUsage.discount_id == discount_id,
            DiscountUsage.session_id == session_id,
        )
        result = await db.execute(query)
        return result.scalar() or 0

    async def count_usages_by_email(self, discount_id: int, guest_email: str, db: AsyncSession) -> int:
        """Redemptions across every session that checked out with this email"""
        query = select(func.coalesce(func.sum(DiscountUsage.usage_count), 0)).where(
            DiscountUsage.discount_id == discount_id,
            func.lower(DiscountUsage.guest_email) == guest_email.strip().lower(),
        )
        result = await db.execute(query)
        return int(result.scalar() or 0)

    async def validate_code(
        self,
        code: Optional[str],
        subtotal,
        session_id: str,
        db: AsyncSession,
        now: Optional[datetime] = None,
    ) -> DiscountValidationResult:
        if not normalize_code(code):
            return DiscountValidationResult.invalid(ErrorCode.INVALID_INPUT, "Please enter a discount code.")

        discount = await self.get_by_code(code, db)
        usage_count = 0
        if discount is not None and discount.usage_limit_per_guest is not None:
            usage_count = await self.get_usage_count(discount.id, session_id, db)

        result = evaluate_discount(discount, subtotal, usage_count, now)
        if not result.is_valid:
            logger.debug("Discount code %s rejected for session %s: %s", normalize_code(code), session_id, result.error_code)
        return result

    async def find_usage_id(self, discount_id: int, session_id: str, db: AsyncSession) -> Optional[int]:
        query = select(DiscountUsage.id).where(
            DiscountUsage.discount_id == discount_id,
            DiscountUsage.session_id == session_id,
        )
        return (await db.execute(query)).scalar()

    async def record_usage(
        self,
        discount_id: int,
        session_id: str,
        db: AsyncSession,
        guest_email: Optional[str] = None,
    ) -> None:
        """
        Charge one redemption to the usage ledger inside the caller's transaction.

        The (discount, session) unique constraint is the source of truth: losing an
        insert race, or finding the per-guest limit already used up when the
        conditional increment runs, raises DuplicateDiscountUsage. The caller owns
        the rollback.
        """
        discount = await db.get(Discount, discount_id)
        if discount is None:
            raise DuplicateDiscountUsage(discount_id, session_id)

        now = utcnow()
        usage_id = await self.find_usage_id(discount_id, session_id, db)

        if usage_id is None:
            db.add(DiscountUsage(
                discount_id=discount_id,
                session_id=session_id,
                guest_email=guest_email,
                usage_count=1,
                first_used_at=now,
                last_used_at=now,
            ))
            try:
                await db.flush()
            except IntegrityError as e:
                raise DuplicateDiscountUsage(discount_id, session_id) from e
        else:
            stmt = update(DiscountUsage).where(DiscountUsage.id == usage_id)
            if discount.usage_limit_per_guest is not None:
                stmt = stmt.where(DiscountUsage.usage_count < discount.usage_limit_per_guest)
            stmt = stmt.values(
                usage_count=DiscountUsage.usage_count + 1,
                last_used_at=now,
                guest_email=func.coalesce(guest_email, DiscountUsage.guest_email),
            ).execution_options(synchronize_session=False)

            result = await db.execute(stmt)
            if result.rowcount == 0:
                raise DuplicateDiscountUsage(discount_id, session_id)

        await db.execute(
            update(Discount)
            .where(Discount.id == discount_id)
            .values(total_usage_count=Discount.total_usage_count + 1)
            .execution_options(synchronize_session=False)
        )

    # Admin back-office

    async def list_discounts(self, db: AsyncSession, active_only: bool = False) -> ServiceResult[List[DiscountResponse]]:
        query = select(Discount).order_by(Discount.created_at.desc(), Discount.id.desc())
        if active_only:
            now = utcnow()
            query = query.where(
                Discount.is_active.is_(True),
                Discount.start_date <= now,
                (Discount.expiry_date.is_(None)) | (Discount.expiry_date > now),
            )
        result = await db.execute(query)
        discounts = result.scalars().all()
        return ServiceResult.success([DiscountResponse.model_validate(d) for d in discounts])

    async def get_discount(self, discount_id: int, db: AsyncSession) -> ServiceResult[DiscountResponse]:
        discount = await db.get(Discount, discount_id)
        if not discount:
            return ServiceResult.failure(ErrorCode.DISCOUNT_NOT_FOUND, f"Discount with ID {discount_id} not found")
        return ServiceResult.success(DiscountResponse.model_validate(discount))

    async def create_discount(self, data: DiscountCreate, db: AsyncSession) -> ServiceResult[DiscountResponse]:
        code = normalize_code(data.code)
        if await self.get_by_code(code, db):
            return ServiceResult.failure(ErrorCode.DISCOUNT_CODE_EXISTS, f"Discount code '{code}' already exists")

        start_date = data.start_date or utcnow()
        if data.expiry_date and data.expiry_date <= start_date:
            return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Expiry date must be after start date")

        discount = Discount(
            code=code,
            description=data.description,
            discount_type=data.discount_type,
            discount_value=data.discount_value,
            minimum_order_amount=data.minimum_order_amount,
            usage_limit_per_guest=data.usage_limit_per_guest,
            start_date=start_date,
            expiry_date=data.expiry_date,
            is_active=data.is_active,
        )
        db.add(discount)
        try:
            await db.commit()
        except IntegrityError:
            await db.rollback()
            return ServiceResult.failure(ErrorCode.DISCOUNT_CODE_EXISTS, f"Discount code '{code}' already exists")

        await db.refresh(discount)
        logger.info("Created discount %s (%s %s)", discount.code, discount.discount_type.value, discount.discount_value)
        return ServiceResult.success(DiscountResponse.model_validate(discount))

    async def update_discount(self, discount_id: int, data: DiscountUpdate, db: AsyncSession) -> ServiceResult[DiscountResponse]:
        discount = await db.get(Discount, discount_id)
        if not discount:
            return ServiceResult.failure(ErrorCode.DISCOUNT_NOT_FOUND, f"Discount with ID {discount_id} not found")

        changes = data.model_dump(exclude_unset=True)
        discount_type = changes.get("discount_type", discount.discount_type)
        discount_value = changes.get("discount_value", discount.discount_value)
        start_date = changes.get("start_date") or discount.start_date
        expiry_date = changes["expiry_date"] if "expiry_date" in changes else discount.expiry_date

        if discount_type == DiscountType.PERCENTAGE and discount_value > 100:
            return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Percentage discount cannot exceed 100")
        if expiry_date and expiry_date <= start_date:
            return ServiceResult.failure(ErrorCode.INVALID_INPUT, "Expiry date must be after start date")

        for field, value in changes.items():
            if field == "start_date" and value is None:
                continue
            setattr(discount, field, value)

        await db.commit()
        await db.refresh(discount)
        return ServiceResult.success(DiscountResponse.model_validate(discount))

    async def toggle_discount(self, discount_id: int, db: AsyncSession) -> ServiceResult[DiscountResponse]:
        discount = await db.get(Discount, discount_id)
        if not discount:
            return ServiceResult.failure(ErrorCode.DISCOUNT_NOT_FOUND, f"Discount with ID {discount_id} not found")

        discount.is_active = not discount.is_active
        await db.commit()
        await db.refresh(discount)
        logger.info("Discount %s is now %s", discount.code, "active" if discount.is_active else "inactive")
        return ServiceResult.success(DiscountResponse.model_validate(discount))

    async def delete_discount(self, discount_id: int, db: AsyncSession) -> ServiceResult[dict]:
        """Deletes an unused discount; one referenced by orders is only deactivated"""
        discount = await db.get(Discount, discount_id)
        if not discount:
            return ServiceResult.failure(ErrorCode.DISCOUNT_NOT_FOUND, f"Discount with ID {discount_id} not found")

        query = select(func.count(Order.id)).where(Order.applied_discount_id == discount_id)
        in_use = (await db.execute(query)).scalar() > 0

        if in_use:
            discount.is_active = False
        else:
            await db.delete(discount)
        await db.commit()

        return ServiceResult.success({"id": discount_id, "deleted": not in_use, "deactivated": in_use})

    async def get_discount_stats(self, db: AsyncSession) -> ServiceResult[DiscountStats]:
        discounts = (await db.execute(select(Discount))).scalars().all()
        now = utcnow()

        given = await db.execute(
            select(func.coalesce(func.sum(Order.discount_amount), 0)).where(Order.applied_discount_id.is_not(None))
        )

        return ServiceResult.success(DiscountStats(
            total_discounts=len(discounts),
            active_discounts=sum(1 for d in discounts if d.is_active and d.has_started(now) and not d.has_expired(now)),
            expired_discounts=sum(1 for d in discounts if d.has_expired(now)),
            scheduled_discounts=sum(1 for d in discounts if not d.has_started(now)),
            total_redemptions=sum(d.total_usage_count or 0 for d in discounts),
            total_discount_given=to_money(given.scalar() or ZERO),
        ))
