"""
Tests for the shared helpers and the snapshot written for each lifecycle action.
"""

import uuid
from datetime import datetime

import pytest

from marketplace.errors import ErrorCode, LifecycleError
from marketplace.services.ad_mappers import serialize_ad
from marketplace.services.ad_queries import ad_snapshot
from marketplace.utils import clamp_page, iso_or_none, parse_uuid, str_or_none


def test_iso_and_str_helpers_pass_none_through():
    moment = datetime(2024, 5, 1, 12, 30)
    ad_id = uuid.uuid4()
    assert iso_or_none(moment) == "2024-05-01T12:30:00"
    assert iso_or_none(None) is None
    assert str_or_none(ad_id) == str(ad_id)
    assert str_or_none(None) is None


def test_parse_uuid_rejects_garbage():
    with pytest.raises(LifecycleError) as exc:
        parse_uuid("not-a-uuid", "ad id")
    assert exc.value.code == ErrorCode.BAD_REQUEST
    assert "ad id" in exc.value.message


def test_clamp_page_bounds():
    assert clamp_page(None, None) == (20, 0)
    assert clamp_page(500, -3, max_limit=50) == (50, 0)
    assert clamp_page(0, 7) == (1, 7)


@pytest.mark.anyio
async def test_snapshot_and_api_shape_agree(service, seeded, make_active):
    source = await make_active()
    fork = await service.edit(seeded.alice.id, source.id, {"title": "Second version"})

    snapshot = ad_snapshot(fork.ad)
    api = serialize_ad(fork.ad)
    assert snapshot["id"] == api["id"]
    assert snapshot["parent_ad_id"] == api["parentAdId"] == str(source.id)
    assert snapshot["replaced_by_ad_id"] is None and api["replacedByAdId"] is None
    assert snapshot["created_at"] == api["createdAt"]
    assert snapshot["published_at"] == api["publishedAt"]
