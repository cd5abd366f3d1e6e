"""
services/catalog/router.py
Read-only reference data: packages, add-ons, custom features, panchayaths.
Public and cached in Redis; catalog edits happen outside this service.
"""

from typing import Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from config.database import get_db
from config.redis_client import RedisCache, get_redis
from shared.models.models import AddonService, CustomFeature, Package, Panchayath
from shared.schemas.schemas import CatalogItemResponse, PackageResponse, PanchayathResponse

router = APIRouter(prefix="/catalog", tags=["Catalog"])


async def _cached_list(redis, key: str, schema, loader) -> list:
    async def load_json():
        return [schema.model_validate(row).model_dump(mode="json") for row in await loader()]

    items = await RedisCache(redis).get_or_load(key, load_json)
    return [schema(**item) for item in items]


@router.get("/packages", response_model=list[PackageResponse])
async def list_packages(
    category_id: Optional[UUID] = Query(None),
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Active packages with their category, in display order. Cached."""
    async def load():
        query = select(Package).where(Package.is_active == True)
        if category_id:
            query = query.where(Package.category_id == category_id)
        result = await db.execute(query.order_by(Package.display_order, Package.name))
        return result.scalars().unique().all()

    key = f"catalog:packages:{category_id or 'all'}"
    return await _cached_list(redis, key, PackageResponse, load)


@router.get("/addons", response_model=list[CatalogItemResponse])
async def list_addons(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    async def load():
        result = await db.execute(
            select(AddonService)
            .where(AddonService.is_active == True)
            .order_by(AddonService.display_order, AddonService.name)
        )
        return result.scalars().all()

    return await _cached_list(redis, "catalog:addons", CatalogItemResponse, load)


@router.get("/custom-features", response_model=list[CatalogItemResponse])
async def list_custom_features(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    async def load():
        result = await db.execute(
            select(CustomFeature)
            .where(CustomFeature.is_active == True)
            .order_by(CustomFeature.display_order, CustomFeature.name)
        )
        return result.scalars().all()

    return await _cached_list(redis, "catalog:custom_features", CatalogItemResponse, load)


@router.get("/panchayaths", response_model=list[PanchayathResponse])
async def list_panchayaths(
    db: AsyncSession = Depends(get_db),
    redis=Depends(get_redis),
):
    """Active panchayaths with ward counts, used by registration and booking confirmation."""
    async def load():
        result = await db.execute(
            select(Panchayath).where(Panchayath.is_active == True).order_by(Panchayath.name)
        )
        return result.scalars().all()

    return await _cached_list(redis, "catalog:panchayaths", PanchayathResponse, load)
