"""
Locations Router: read-only lookup used by the ad forms and the feed.
"""

from typing import Optional
from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.database import get_db
from marketplace.models import Location

router = APIRouter()


@router.get("")
async def list_locations(
    country: Optional[str] = Query(None),
    city: Optional[str] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """All locations, optionally narrowed to one country and/or city."""
    query = select(Location).order_by(Location.country, Location.city, Location.district)
    if country:
        query = query.where(Location.country == country)
    if city:
        query = query.where(Location.city == city)

    result = await db.execute(query)
    return {
        "data": [
            {
                "id": str(loc.id),
                "country": loc.country,
                "city": loc.city,
                "district": loc.district,
            }
            for loc in result.scalars().all()
        ]
    }
