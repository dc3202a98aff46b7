from fastapi import APIRouter, Depends, Query
from sqlalchemy.ext.asyncio import AsyncSession
from typing import List

from ..core.dependencies import get_db, require_admin
from ..exceptions import raise_for_result
from ..schemas.shipping import ShippingCityCreate, ShippingCityResponse, ShippingCityUpdate
from ..services.shipping_service import ShippingService

router = APIRouter()
admin_router = APIRouter(dependencies=[Depends(require_admin)])
shipping_service = ShippingService()


@router.get("/cities", response_model=List[ShippingCityResponse])
async def list_active_cities(db: AsyncSession = Depends(get_db)):
    """Cities we currently ship to, by name"""
    return raise_for_result(await shipping_service.list_cities(db, active_only=True))


@router.get("/cities/{city_id}/cost")
async def get_shipping_cost(city_id: int, db: AsyncSession = Depends(get_db)):
    """Shipping cost to an active city, shown when the shopper picks it at checkout"""
    cost = raise_for_result(await shipping_service.get_shipping_cost(city_id, db))
    return {"city_id": city_id, "shipping_cost": cost}


@admin_router.get("/cities", response_model=List[ShippingCityResponse])
async def list_cities(
    active_only: bool = Query(False),
    db: AsyncSession = Depends(get_db)
):
    return raise_for_result(await shipping_service.list_cities(db, active_only))


@admin_router.get("/cities/{city_id}", response_model=ShippingCityResponse)
async def get_city(city_id: int, db: AsyncSession = Depends(get_db)):
    return raise_for_result(await shipping_service.get_city_details(city_id, db))


@admin_router.post("/cities", response_model=ShippingCityResponse, status_code=201)
async def create_city(data: ShippingCityCreate, db: AsyncSession = Depends(get_db)):
    """Add a shipping city; names are unique regardless of case"""
    return raise_for_result(await shipping_service.create_city(data, db))


@admin_router.patch("/cities/{city_id}", response_model=ShippingCityResponse)
async def update_city(city_id: int, data: ShippingCityUpdate, db: AsyncSession = Depends(get_db)):
    return raise_for_result(await shipping_service.update_city(city_id, data, db))


@admin_router.patch("/cities/{city_id}/toggle", response_model=ShippingCityResponse)
async def toggle_city(city_id: int, db: AsyncSession = Depends(get_db)):
    return raise_for_result(await shipping_service.toggle_city(city_id, db))


@admin_router.delete("/cities/{city_id}", status_code=204)
async def delete_city(city_id: int, db: AsyncSession = Depends(get_db)):
    """Delete a city that no order ships to"""
    raise_for_result(await shipping_service.delete_city(city_id, db))
