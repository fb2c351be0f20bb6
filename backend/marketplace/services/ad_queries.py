"""
Ad Queries: parameterized reads/writes for ads, photos and version snapshots.

No validation and no transaction control here: every function takes the caller's
``LifecycleTx`` (or a plain session for reads) and returns rows, a row count, or None.
A None / zero result means the WHERE clause precondition did not hold.
"""

import uuid
from datetime import datetime
from typing import Optional, Sequence
from sqlalchemy import delete, func, insert, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.models import Ad, AdPhoto, AdStatus, AdVersion
from marketplace.services.ad_guard import LifecycleTx, ensure_update_allowed
from marketplace.utils import iso_or_none, str_or_none

EDITABLE_FIELDS = ("location_id", "title", "description", "price_cents")


# ── Reads ─────────────────────────────────────────────────────────────

async def get_ad_by_id(session: AsyncSession, ad_id: uuid.UUID) -> Optional[Ad]:
    result = await session.execute(
        select(Ad).where(Ad.id == ad_id).execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def lock_ad_by_id(tx: LifecycleTx, ad_id: uuid.UUID) -> Optional[Ad]:
    """SELECT ... FOR UPDATE; serializes transitions on the same ad."""
    result = await tx.session.execute(
        select(Ad)
        .where(Ad.id == ad_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def count_ad_photos(session: AsyncSession, ad_id: uuid.UUID) -> int:
    result = await session.execute(
        select(func.count(AdPhoto.id)).where(AdPhoto.ad_id == ad_id)
    )
    return result.scalar() or 0


async def list_ad_photos(session: AsyncSession, ad_id: uuid.UUID) -> Sequence[AdPhoto]:
    result = await session.execute(
        select(AdPhoto)
        .where(AdPhoto.ad_id == ad_id)
        .order_by(AdPhoto.sort_order.asc(), AdPhoto.created_at.asc())
        .execution_options(populate_existing=True)
    )
    return result.scalars().all()


# ── Guarded UPDATE ────────────────────────────────────────────────────

async def _update_ad(tx: LifecycleTx, ad_id: uuid.UUID, values: dict, *conditions) -> Optional[Ad]:
    """
    UPDATE ads SET <values> WHERE id = :ad_id AND <conditions>.

    Every matched row passes through the guard first, exactly like a
    row-level BEFORE UPDATE trigger would see it.
    """
    criteria = (Ad.id == ad_id, *conditions)
    matched = await tx.session.execute(select(Ad.id, Ad.status).where(*criteria))
    for row_id, status in matched.all():
        ensure_update_allowed(tx, row_id, status)

    result = await tx.session.execute(
        update(Ad)
        .where(*criteria)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    if not result.rowcount:
        return None
    return await get_ad_by_id(tx.session, ad_id)


# ── Writes ────────────────────────────────────────────────────────────

async def insert_draft_ad(tx: LifecycleTx, user_id: uuid.UUID, payload: dict) -> Ad:
    ad = Ad(
        user_id=user_id,
        location_id=payload["location_id"],
        title=payload["title"],
        description=payload["description"],
        price_cents=payload.get("price_cents"),
        status=AdStatus.DRAFT.value,
    )
    tx.session.add(ad)
    await tx.session.flush()
    return ad


async def update_draft_ad(tx: LifecycleTx, ad_id: uuid.UUID, user_id: uuid.UUID, patch: dict) -> Optional[Ad]:
    """Apply any subset of the editable fields; only matches the owner's draft."""
    values = {k: v for k, v in patch.items() if k in EDITABLE_FIELDS}
    if not values:
        return await get_ad_by_id(tx.session, ad_id)
    return await _update_ad(
        tx, ad_id, values,
        Ad.user_id == user_id,
        Ad.status == AdStatus.DRAFT.value,
    )


async def set_ad_status(
    tx: LifecycleTx,
    ad_id: uuid.UUID,
    user_id: uuid.UUID,
    status: AdStatus,
    expected_status: AdStatus,
    **timestamps,
) -> Optional[Ad]:
    """Move an ad from expected_status to status, optionally setting published_at/stopped_at."""
    values = {"status": status.value}
    values.update({k: v for k, v in timestamps.items() if k in ("published_at", "stopped_at")})
    return await _update_ad(
        tx, ad_id, values,
        Ad.user_id == user_id,
        Ad.status == expected_status.value,
    )


async def fork_ad_from_source(
    tx: LifecycleTx,
    source: Ad,
    actor_user_id: uuid.UUID,
    fields: dict,
    status: AdStatus,
    now: datetime,
) -> Ad:
    """INSERT a new ad for the lineage; fields omitted from `fields` come from the source."""
    ad = Ad(
        user_id=actor_user_id,
        location_id=fields.get("location_id", source.location_id),
        title=fields.get("title", source.title),
        description=fields.get("description", source.description),
        price_cents=fields["price_cents"] if "price_cents" in fields else source.price_cents,
        status=status.value,
        published_at=now if status == AdStatus.ACTIVE else None,
        stopped_at=None,
        parent_ad_id=source.id,
    )
    tx.session.add(ad)
    await tx.session.flush()
    return ad


async def copy_ad_photos(tx: LifecycleTx, source_ad_id: uuid.UUID, target_ad_id: uuid.UUID) -> int:
    """Copy photo references in order, renumbering sort_order from 0."""
    photos = await list_ad_photos(tx.session, source_ad_id)
    if not photos:
        return 0
    await tx.session.execute(
        insert(AdPhoto),
        [
            {
                "id": uuid.uuid4(),
                "ad_id": target_ad_id,
                "file_path": photo.file_path,
                "sort_order": position,
            }
            for position, photo in enumerate(photos)
        ],
    )
    return len(photos)


async def link_replacement(
    tx: LifecycleTx,
    source_ad_id: uuid.UUID,
    user_id: uuid.UUID,
    new_ad_id: uuid.UUID,
    source_status: AdStatus,
    now: datetime,
) -> bool:
    """
    Point the source at its successor. An active source is stopped at the same time.
    Returns False when the source was already replaced or changed status underneath us.
    """
    values = {"replaced_by_ad_id": new_ad_id}
    if source_status == AdStatus.ACTIVE:
        values.update(status=AdStatus.STOPPED.value, stopped_at=now)
    linked = await _update_ad(
        tx, source_ad_id, values,
        Ad.user_id == user_id,
        Ad.status == source_status.value,
        Ad.replaced_by_ad_id.is_(None),
    )
    return linked is not None


async def insert_ad_version_snapshot(
    tx: LifecycleTx,
    ad: Ad,
    action: str,
    actor_user_id: Optional[uuid.UUID],
) -> None:
    tx.session.add(AdVersion(
        ad_id=ad.id,
        status=ad.status,
        snapshot=ad_snapshot(ad),
        action=action,
        actor_user_id=actor_user_id,
    ))
    await tx.session.flush()


def ad_snapshot(ad: Ad) -> dict:
    """JSON-safe copy of an ad row."""
    return {
        "id": str(ad.id),
        "user_id": str_or_none(ad.user_id),
        "location_id": str_or_none(ad.location_id),
        "title": ad.title,
        "description": ad.description,
        "price_cents": ad.price_cents,
        "status": ad.status,
        "created_at": iso_or_none(ad.created_at),
        "published_at": iso_or_none(ad.published_at),
        "stopped_at": iso_or_none(ad.stopped_at),
        "parent_ad_id": str_or_none(ad.parent_ad_id),
        "replaced_by_ad_id": str_or_none(ad.replaced_by_ad_id),
    }


# ── Photos ────────────────────────────────────────────────────────────

async def insert_ad_photo(tx: LifecycleTx, ad_id: uuid.UUID, file_path: str, sort_order: int) -> AdPhoto:
    photo = AdPhoto(ad_id=ad_id, file_path=file_path, sort_order=sort_order)
    tx.session.add(photo)
    await tx.session.flush()
    return photo


async def photo_sort_order_taken(tx: LifecycleTx, ad_id: uuid.UUID, sort_order: int) -> bool:
    result = await tx.session.execute(
        select(AdPhoto.id).where(AdPhoto.ad_id == ad_id, AdPhoto.sort_order == sort_order)
    )
    return result.first() is not None


async def delete_ad_photo(tx: LifecycleTx, ad_id: uuid.UUID, photo_id: uuid.UUID) -> int:
    result = await tx.session.execute(
        delete(AdPhoto)
        .where(AdPhoto.id == photo_id, AdPhoto.ad_id == ad_id)
        .execution_options(synchronize_session=False)
    )
    return result.rowcount


async def count_photos_among(tx: LifecycleTx, ad_id: uuid.UUID, photo_ids: list[uuid.UUID]) -> int:
    result = await tx.session.execute(
        select(func.count(AdPhoto.id)).where(AdPhoto.ad_id == ad_id, AdPhoto.id.in_(photo_ids))
    )
    return result.scalar() or 0


async def shift_photo_sort_orders(tx: LifecycleTx, ad_id: uuid.UUID, offset: int) -> None:
    await tx.session.execute(
        update(AdPhoto)
        .where(AdPhoto.ad_id == ad_id)
        .values(sort_order=AdPhoto.sort_order + offset)
        .execution_options(synchronize_session=False)
    )


async def set_photo_sort_order(tx: LifecycleTx, ad_id: uuid.UUID, photo_id: uuid.UUID, sort_order: int) -> None:
    await tx.session.execute(
        update(AdPhoto)
        .where(AdPhoto.id == photo_id, AdPhoto.ad_id == ad_id)
        .values(sort_order=sort_order)
        .execution_options(synchronize_session=False)
    )
