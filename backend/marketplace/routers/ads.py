"""
Ads Router: listing reads plus the lifecycle endpoints.
Writes go through AdLifecycleService; LifecycleError is rendered by the app-level handler.
"""

import uuid
from typing import Optional
from fastapi import APIRouter, Depends, Query
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from marketplace.auth import get_current_user, get_optional_user
from marketplace.config import get_settings
from marketplace.database import get_db, get_session_factory
from marketplace.errors import bad_request, not_found
from marketplace.models import Ad, AdPhoto, AdStatus, Location, User
from marketplace.services.ad_lifecycle import AdLifecycleService, ForkResult
from marketplace.services.ad_mappers import serialize_ad, serialize_photo
from marketplace.services.ad_queries import get_ad_by_id, list_ad_photos
from marketplace.services.ad_versions import get_ad_versions
from marketplace.utils import clamp_page, parse_uuid

router = APIRouter()


def get_lifecycle_service(
    session_factory: async_sessionmaker = Depends(get_session_factory),
) -> AdLifecycleService:
    return AdLifecycleService(session_factory)


# ── Request Models ────────────────────────────────────────────────────

class CreateAdRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    location_id: uuid.UUID = Field(alias="locationId")
    title: str
    description: str
    price_cents: Optional[int] = Field(None, alias="priceCents")


class EditAdRequest(BaseModel):
    """Any subset of fields; omitted keys stay as they are, priceCents=null clears the price."""
    model_config = ConfigDict(populate_by_name=True)

    location_id: Optional[uuid.UUID] = Field(None, alias="locationId")
    title: Optional[str] = None
    description: Optional[str] = None
    price_cents: Optional[int] = Field(None, alias="priceCents")


class AddPhotoRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    file_path: str = Field(alias="filePath")
    sort_order: int = Field(0, alias="sortOrder")


class ReorderItem(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    photo_id: uuid.UUID = Field(alias="photoId")
    sort_order: int = Field(alias="sortOrder")


class ReorderPhotosRequest(BaseModel):
    items: list[ReorderItem]


# ── Helpers ───────────────────────────────────────────────────────────

def _page(limit: Optional[int], offset: Optional[int]) -> tuple[int, int]:
    settings = get_settings()
    return clamp_page(limit, offset, default_limit=settings.page_size_default, max_limit=settings.page_size_max)


def _photos_body(ad_id: uuid.UUID, photos) -> dict:
    return {"data": {"adId": str(ad_id), "photos": [serialize_photo(p) for p in photos]}}


def _serialize_fork(result: ForkResult) -> dict:
    return {
        "newAdId": str(result.ad.id),
        "newStatus": result.ad.status,
        "oldAdId": str(result.source_ad_id),
        "oldStatus": result.source_status,
        "ad": serialize_ad(result.ad),
        "notice": {"code": result.notice.code, "message": result.notice.message},
    }


async def _photo_stats(db: AsyncSession, ad_ids: list[uuid.UUID]) -> tuple[dict, dict]:
    """Photo counts and first photo path per ad, for list views."""
    if not ad_ids:
        return {}, {}
    counts_result = await db.execute(
        select(AdPhoto.ad_id, func.count(AdPhoto.id))
        .where(AdPhoto.ad_id.in_(ad_ids))
        .group_by(AdPhoto.ad_id)
    )
    counts = dict(counts_result.all())

    photos_result = await db.execute(
        select(AdPhoto.ad_id, AdPhoto.file_path)
        .where(AdPhoto.ad_id.in_(ad_ids))
        .order_by(AdPhoto.ad_id, AdPhoto.sort_order.asc(), AdPhoto.created_at.asc())
    )
    previews = {}
    for ad_id, file_path in photos_result.all():
        previews.setdefault(ad_id, file_path)
    return counts, previews


def _serialize_list_item(ad: Ad, location: Location, counts: dict, previews: dict) -> dict:
    item = serialize_ad(ad)
    item.update(
        country=location.country,
        city=location.city,
        district=location.district,
        photosCount=counts.get(ad.id, 0),
        previewPhoto=previews.get(ad.id),
    )
    return item


# ── Reads ─────────────────────────────────────────────────────────────

@router.get("")
async def list_feed(
    location_id: Optional[str] = Query(None, alias="locationId"),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """Active ads for one location, newest published first, with preview photo and photo count."""
    if not location_id:
        raise bad_request("locationId (UUID) is required")
    loc_id = parse_uuid(location_id, "locationId")
    limit, offset = _page(limit, offset)

    result = await db.execute(
        select(Ad, Location)
        .join(Location, Location.id == Ad.location_id)
        .where(Ad.location_id == loc_id, Ad.status == AdStatus.ACTIVE.value)
        .order_by(Ad.published_at.desc(), Ad.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    rows = result.all()
    counts, previews = await _photo_stats(db, [ad.id for ad, _ in rows])
    return {
        "data": [_serialize_list_item(ad, loc, counts, previews) for ad, loc in rows],
        "limit": limit,
        "offset": offset,
    }


@router.get("/my")
async def list_my_ads(
    status: Optional[str] = Query(None),
    limit: Optional[int] = Query(None),
    offset: Optional[int] = Query(None),
    user: User = Depends(get_current_user),
    db: AsyncSession = Depends(get_db),
):
    """The caller's ads in every status, newest first."""
    limit, offset = _page(limit, offset)
    query = (
        select(Ad, Location)
        .join(Location, Location.id == Ad.location_id)
        .where(Ad.user_id == user.id)
        .order_by(Ad.created_at.desc())
        .limit(limit)
        .offset(offset)
    )
    if status:
        if status not in {s.value for s in AdStatus}:
            raise bad_request("invalid status filter")
        query = query.where(Ad.status == status)

    rows = (await db.execute(query)).all()
    counts, previews = await _photo_stats(db, [ad.id for ad, _ in rows])
    return {
        "data": [_serialize_list_item(ad, loc, counts, previews) for ad, loc in rows],
        "limit": limit,
        "offset": offset,
    }


@router.get("/{ad_id}/versions")
async def ad_versions(
    ad_id: str,
    user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Version chain for any ad in a lineage. Non-owners only see active versions."""
    data = await get_ad_versions(db, parse_uuid(ad_id, "ad id"), user.id if user else None)
    return {"data": data}


@router.get("/{ad_id}")
async def get_ad(
    ad_id: str,
    user: Optional[User] = Depends(get_optional_user),
    db: AsyncSession = Depends(get_db),
):
    """Single ad with photos. Owners see every status; others only active ads."""
    ad = await get_ad_by_id(db, parse_uuid(ad_id, "ad id"))
    if ad is None:
        raise not_found()
    is_owner = user is not None and ad.user_id == user.id
    if not is_owner and ad.status != AdStatus.ACTIVE.value:
        raise not_found()

    location = await db.get(Location, ad.location_id)
    photos = await list_ad_photos(db, ad.id)
    data = serialize_ad(ad)
    if location is not None:
        data.update(country=location.country, city=location.city, district=location.district)
    data["isOwner"] = is_owner
    data["photos"] = [serialize_photo(p) for p in photos]
    return {"data": data}


# ── Lifecycle ─────────────────────────────────────────────────────────

@router.post("", status_code=201)
async def create_draft(
    payload: CreateAdRequest,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad = await service.create_draft(
        user.id,
        location_id=payload.location_id,
        title=payload.title,
        description=payload.description,
        price_cents=payload.price_cents,
    )
    return {"data": serialize_ad(ad)}


@router.patch("/{ad_id}")
async def edit_ad(
    ad_id: str,
    payload: EditAdRequest,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    """Drafts are updated in place; active or stopped ads are forked into a new version."""
    result = await service.edit(user.id, parse_uuid(ad_id, "ad id"), payload.model_dump(exclude_unset=True))
    if isinstance(result, ForkResult):
        return {"data": _serialize_fork(result)}
    return {"data": serialize_ad(result)}


@router.post("/{ad_id}/publish")
async def publish_ad(
    ad_id: str,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad = await service.publish(user.id, parse_uuid(ad_id, "ad id"))
    return {"data": serialize_ad(ad)}


@router.post("/{ad_id}/stop")
async def stop_ad(
    ad_id: str,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad = await service.stop(user.id, parse_uuid(ad_id, "ad id"))
    return {"data": serialize_ad(ad)}


@router.post("/{ad_id}/restart")
async def restart_ad(
    ad_id: str,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad = await service.restart(user.id, parse_uuid(ad_id, "ad id"))
    return {
        "data": {
            "ad": serialize_ad(ad),
            "notice": {"code": "AD_RESTARTED", "message": "Ad restarted and is now active"},
        }
    }


# ── Draft photos ──────────────────────────────────────────────────────

@router.post("/{ad_id}/photos", status_code=201)
async def add_photo(
    ad_id: str,
    payload: AddPhotoRequest,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad_uuid = parse_uuid(ad_id, "ad id")
    photos = await service.add_photo(user.id, ad_uuid, payload.file_path, payload.sort_order)
    return _photos_body(ad_uuid, photos)


@router.delete("/{ad_id}/photos/{photo_id}")
async def delete_photo(
    ad_id: str,
    photo_id: str,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad_uuid = parse_uuid(ad_id, "ad id")
    photos = await service.delete_photo(user.id, ad_uuid, parse_uuid(photo_id, "photo id"))
    return _photos_body(ad_uuid, photos)


@router.put("/{ad_id}/photos/reorder")
async def reorder_photos(
    ad_id: str,
    payload: ReorderPhotosRequest,
    user: User = Depends(get_current_user),
    service: AdLifecycleService = Depends(get_lifecycle_service),
):
    ad_uuid = parse_uuid(ad_id, "ad id")
    items = [{"photo_id": it.photo_id, "sort_order": it.sort_order} for it in payload.items]
    photos = await service.reorder_photos(user.id, ad_uuid, items)
    return _photos_body(ad_uuid, photos)
