"""
Row -> API shape. camelCase keys, ISO timestamps, string ids.
"""

from typing import Optional

from marketplace.models import Ad, AdPhoto, AdVersion
from marketplace.utils import iso_or_none, str_or_none


def serialize_ad(ad: Ad) -> Optional[dict]:
    if ad is None:
        return None
    return {
        "id": str(ad.id),
        "userId": str_or_none(ad.user_id),
        "locationId": str_or_none(ad.location_id),
        "title": ad.title,
        "description": ad.description,
        "priceCents": ad.price_cents,
        "status": ad.status,
        "createdAt": iso_or_none(ad.created_at),
        "publishedAt": iso_or_none(ad.published_at),
        "stoppedAt": iso_or_none(ad.stopped_at),
        "parentAdId": str_or_none(ad.parent_ad_id),
        "replacedByAdId": str_or_none(ad.replaced_by_ad_id),
    }


def serialize_photo(photo: AdPhoto) -> dict:
    return {
        "id": str(photo.id),
        "filePath": photo.file_path,
        "sortOrder": photo.sort_order,
        "createdAt": iso_or_none(photo.created_at),
    }


def serialize_version_event(version: AdVersion) -> dict:
    return {
        "action": version.action,
        "status": version.status,
        "actorUserId": str_or_none(version.actor_user_id),
        "createdAt": iso_or_none(version.created_at),
    }
