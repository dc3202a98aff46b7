import logging
from decimal import Decimal
from typing import List

from sqlalchemy import func
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from ..enums import ErrorCode
from ..models import Order, ShippingCity
from ..schemas.common import ServiceResult
from ..schemas.shipping import ShippingCityCreate, ShippingCityResponse, ShippingCityUpdate
from .pricing import to_money


logger = logging.getLogger(__name__)


class ShippingService:
    async def get_city(self, city_id: int, db: AsyncSession) -> ServiceResult[ShippingCity]:
        """Resolve a city for checkout; inactive cities cannot be shipped to"""
        city = await db.get(ShippingCity, city_id)
        if not city:
            return ServiceResult.failure(ErrorCode.SHIPPING_CITY_NOT_FOUND, f"Shipping city with ID {city_id} not found")
        if not city.is_active:
            return ServiceResult.failure(
                ErrorCode.SHIPPING_CITY_INACTIVE,
                f"We are not shipping to {city.city_name} at the moment. Please choose another city.",
            )
        return ServiceResult.success(city)

    async def get_shipping_cost(self, city_id: int, db: AsyncSession) -> ServiceResult[Decimal]:
        result = await self.get_city(city_id, db)
        if not result.succeeded:
            return result
        return ServiceResult.success(to_money(result.data.shipping_cost))

    async def list_cities(self, db: AsyncSession, active_only: bool = False) -> ServiceResult[List[ShippingCityResponse]]:
        query = select(ShippingCity).order_by(ShippingCity.city_name)
        if active_only:
            query = query.where(ShippingCity.is_active.is_(True))
        result = await db.execute(query)
        return ServiceResult.success([ShippingCityResponse.model_validate(c) for c in result.scalars().all()])

    async def get_city_details(self, city_id: int, db: AsyncSession) -> ServiceResult[ShippingCityResponse]:
        city = await db.get(ShippingCity, city_id)
        if not city:
            return ServiceResult.failure(ErrorCode.SHIPPING_CITY_NOT_FOUND, f"Shipping city with ID {city_id} not found")
        return ServiceResult.success(ShippingCityResponse.model_validate(city))

    async def _name_taken(self, city_name: str, db: AsyncSession, exclude_id: int = None) -> bool:
        query = select(ShippingCity.id).where(func.lower(ShippingCity.city_name) == city_name.strip().lower())
        if exclude_id is not None:
            query = query.where(ShippingCity.id != exclude_id)
        result = await db.execute(query)
        return result.first() is not None

    async def create_city(self, data: ShippingCityCreate, db: AsyncSession) -> ServiceResult[ShippingCityResponse]:
        city_name = data.city_name.strip()
        if await self._name_taken(city_name, db):
            return ServiceResult.failure(
                ErrorCode.SHIPPING_CITY_EXISTS, f"A shipping city with name '{city_name}' already exists"
            )

        city = ShippingCity(city_name=city_name, shipping_cost=data.shipping_cost, is_active=data.is_active)
        db.add(city)
        await db.commit()
        await db.refresh(city)
        logger.info("Created shipping city %s (%s)", city.city_name, city.shipping_cost)
        return ServiceResult.success(ShippingCityResponse.model_validate(city))

    async def update_city(self, city_id: int, data: ShippingCityUpdate, db: AsyncSession) -> ServiceResult[ShippingCityResponse]:
        city = await db.get(ShippingCity, city_id)
        if not city:
            return ServiceResult.failure(ErrorCode.SHIPPING_CITY_NOT_FOUND, f"Shipping city with ID {city_id} not found")

        changes = data.model_dump(exclude_unset=True, exclude_none=True)
        if "city_name" in changes:
            changes["city_name"] = changes["city_name"].strip()
            if await self._name_taken(changes["city_name"], db, exclude_id=city_id):
                return ServiceResult.failure(
                    ErrorCode.SHIPPING_CITY_EXISTS,
                    f"Another shipping city with name '{changes['city_name']}' already exists",
                )

        for field, value in changes.items():
            setattr(city, field, value)

        await db.commit()
        await db.refresh(city)
        return ServiceResult.success(ShippingCityResponse.model_validate(city))

    async def toggle_city(self, city_id: int, db: AsyncSession) -> ServiceResult[ShippingCityResponse]:
        city = await db.get(ShippingCity, city_id)
        if not city:
            return ServiceResult.failure(ErrorCode.SHIPPING_CITY_NOT_FOUND, f"Shipping city with ID {city_id} not found")

        city.is_active = not city.is_active
        await db.commit()
        await db.refresh(city)
        return ServiceResult.success(ShippingCityResponse.model_validate(city))

    async def delete_city(self, city_id: int, db: AsyncSession) -> ServiceResult[None]:
        city = await db.get(ShippingCity, city_id)
        if not city:
            return ServiceResult.failure(ErrorCode.SHIPPING_CITY_NOT_FOUND, f"Shipping city with ID {city_id} not found")

        query = select(func.count(Order.id)).where(Order.shipping_city_id == city_id)
        if (await db.execute(query)).scalar() > 0:
            return ServiceResult.failure(
                ErrorCode.SHIPPING_CITY_IN_USE,
                f"Cannot delete '{city.city_name}' because it has associated orders. You can deactivate it instead.",
            )

        await db.delete(city)
        await db.commit()
        return ServiceResult.success()
