"""
Ad Versions: materializes the lineage of an ad for the versions timeline.

Starting from any ad in a lineage, walk parent_ad_id back to the root and
replaced_by_ad_id forward to the newest version. Owners see the whole chain;
everyone else sees active entries only, and may only start from an active ad.
"""

import logging
import uuid
from collections import defaultdict
from typing import Optional
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from marketplace.errors import not_found
from marketplace.models import Ad, AdStatus, AdVersion
from marketplace.services.ad_mappers import serialize_version_event
from marketplace.services.ad_queries import get_ad_by_id
from marketplace.utils import iso_or_none, str_or_none

logger = logging.getLogger(__name__)


async def load_lineage(session: AsyncSession, ad: Ad) -> list[Ad]:
    """Return the chain containing `ad`, oldest first."""
    seen = {ad.id}

    older = []
    cursor = ad
    while cursor.parent_ad_id and cursor.parent_ad_id not in seen:
        parent = await get_ad_by_id(session, cursor.parent_ad_id)
        if parent is None:
            break
        seen.add(parent.id)
        older.append(parent)
        cursor = parent

    newer = []
    cursor = ad
    while cursor.replaced_by_ad_id and cursor.replaced_by_ad_id not in seen:
        successor = await get_ad_by_id(session, cursor.replaced_by_ad_id)
        if successor is None:
            break
        seen.add(successor.id)
        newer.append(successor)
        cursor = successor

    return list(reversed(older)) + [ad] + newer


def _pick_latest_published(chain: list[Ad]) -> Optional[Ad]:
    """Newest active entry; if nothing is active, the newest entry that was ever published."""
    for ad in reversed(chain):
        if ad.status == AdStatus.ACTIVE.value:
            return ad
    for ad in reversed(chain):
        if ad.published_at is not None:
            return ad
    return None


async def _load_events(session: AsyncSession, ad_ids: list[uuid.UUID]) -> dict:
    result = await session.execute(
        select(AdVersion)
        .where(AdVersion.ad_id.in_(ad_ids))
        .order_by(AdVersion.id.asc())
    )
    events = defaultdict(list)
    for version in result.scalars().all():
        events[version.ad_id].append(serialize_version_event(version))
    return events


async def get_ad_versions(
    session: AsyncSession,
    ad_id: uuid.UUID,
    requester_id: Optional[uuid.UUID],
) -> dict:
    ad = await get_ad_by_id(session, ad_id)
    if ad is None:
        raise not_found()

    is_owner = requester_id is not None and ad.user_id == requester_id
    if not is_owner and ad.status != AdStatus.ACTIVE.value:
        raise not_found()

    chain = await load_lineage(session, ad)
    if not is_owner:
        chain = [entry for entry in chain if entry.status == AdStatus.ACTIVE.value]

    current_published = next(
        (entry for entry in reversed(chain) if entry.status == AdStatus.ACTIVE.value), None
    )
    latest_published = _pick_latest_published(chain)
    events = await _load_events(session, [entry.id for entry in chain]) if is_owner else {}
    logger.debug(f"Timeline for ad {ad.id}: {len(chain)} version(s), owner={is_owner}")

    timeline = []
    for position, entry in enumerate(chain, start=1):
        item = {
            "id": str(entry.id),
            "version": position,
            "status": entry.status,
            "title": entry.title,
            "priceCents": entry.price_cents,
            "createdAt": iso_or_none(entry.created_at),
            "publishedAt": iso_or_none(entry.published_at),
            "stoppedAt": iso_or_none(entry.stopped_at),
            "parentAdId": str_or_none(entry.parent_ad_id),
            "replacedByAdId": str_or_none(entry.replaced_by_ad_id),
            "isCurrent": entry.id == ad.id,
            "isLatestPublished": latest_published is not None and entry.id == latest_published.id,
            "isCurrentPublished": current_published is not None and entry.id == current_published.id,
        }
        if is_owner:
            item["events"] = events.get(entry.id, [])
        timeline.append(item)

    return {
        "currentAdId": str(ad.id),
        "latestPublishedAdId": str(latest_published.id) if latest_published else None,
        "currentPublishedAdId": str(current_published.id) if current_published else None,
        "isOwner": is_owner,
        "timeline": timeline,
    }
