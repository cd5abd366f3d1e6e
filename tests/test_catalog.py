"""
tests/test_catalog.py
Public catalog listings and their Redis cache.
"""

import json
from decimal import Decimal

import pytest
from httpx import AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession

from shared.models.models import AddonService, CustomFeature, Package, Panchayath


@pytest.mark.asyncio
async def test_list_packages_includes_category(client: AsyncClient, package: Package):
    response = await client.get("/catalog/packages")
    assert response.status_code == 200
    data = response.json()
    assert len(data) == 1
    assert data[0]["name"] == "Deep Clean"
    assert data[0]["category"]["slug"] == "home-cleaning"
    assert Decimal(data[0]["price"]) == Decimal("2499.00")


@pytest.mark.asyncio
async def test_inactive_items_are_hidden(
    client: AsyncClient, db: AsyncSession, addon: AddonService, feature: CustomFeature
):
    db.add(AddonService(name="Retired Addon", price=Decimal("99.00"), is_active=False))
    db.add(CustomFeature(name="Retired Feature", price=Decimal("49.00"), is_active=False))
    await db.commit()

    addons = (await client.get("/catalog/addons")).json()
    assert [a["name"] for a in addons] == ["Sofa Shampoo"]
    assert addons[0]["icon"] == "wrench"

    features = (await client.get("/catalog/custom-features")).json()
    assert [f["name"] for f in features] == ["Eco Products"]


@pytest.mark.asyncio
async def test_panchayaths_listing_is_cached(
    client: AsyncClient, db: AsyncSession, redis, panchayath: Panchayath, other_panchayath: Panchayath
):
    first = await client.get("/catalog/panchayaths")
    assert first.status_code == 200
    assert [p["name"] for p in first.json()] == ["Aymanam", "Kumarakom"]
    assert first.json()[1]["ward_count"] == 16

    cached = json.loads(await redis.get("catalog:panchayaths"))
    assert len(cached) == 2

    # Served from cache until the key expires or is invalidated
    db.add(Panchayath(name="Vaikom", district="Kottayam", ward_count=26))
    await db.commit()
    second = await client.get("/catalog/panchayaths")
    assert len(second.json()) == 2

    await redis.delete("catalog:panchayaths")
    third = await client.get("/catalog/panchayaths")
    assert len(third.json()) == 3
