"""
Tests for the versions timeline built from an ad lineage.
"""

import logging
import uuid

import pytest

from marketplace.errors import ErrorCode, LifecycleError
from marketplace.services.ad_versions import get_ad_versions


async def _three_versions(service, seeded, make_active):
    """v1 (stopped, replaced) -> v2 (stopped, replaced) -> v3 (draft)."""
    v1 = await make_active(title="Version one")
    v2 = (await service.edit(seeded.alice.id, v1.id, {"title": "Version two"})).ad
    await service.stop(seeded.alice.id, v2.id)
    v3 = (await service.edit(seeded.alice.id, v2.id, {"title": "Version three"})).ad
    return v1, v2, v3


@pytest.mark.anyio
async def test_owner_sees_whole_chain_from_any_member(service, seeded, make_active, session_factory):
    v1, v2, v3 = await _three_versions(service, seeded, make_active)

    async with session_factory() as session:
        for start in (v1, v2, v3):
            data = await get_ad_versions(session, start.id, seeded.alice.id)
            assert data["isOwner"] is True
            assert data["currentAdId"] == str(start.id)
            assert [entry["id"] for entry in data["timeline"]] == [str(v1.id), str(v2.id), str(v3.id)]
            assert [entry["version"] for entry in data["timeline"]] == [1, 2, 3]
            assert [entry["isCurrent"] for entry in data["timeline"]] == [
                start.id == v1.id, start.id == v2.id, start.id == v3.id,
            ]


@pytest.mark.anyio
async def test_owner_timeline_markers_and_events(service, seeded, make_active, session_factory):
    v1, v2, v3 = await _three_versions(service, seeded, make_active)

    async with session_factory() as session:
        data = await get_ad_versions(session, v3.id, seeded.alice.id)

    statuses = [entry["status"] for entry in data["timeline"]]
    assert statuses == ["stopped", "stopped", "draft"]
    # Nothing is live; the newest ever-published entry is v2.
    assert data["currentPublishedAdId"] is None
    assert data["latestPublishedAdId"] == str(v2.id)
    assert [entry["isLatestPublished"] for entry in data["timeline"]] == [False, True, False]

    first, second, third = data["timeline"]
    assert first["replacedByAdId"] == str(v2.id)
    assert second["parentAdId"] == str(v1.id)
    assert [e["action"] for e in first["events"]] == ["draft_create", "publish"]
    assert [e["action"] for e in second["events"]] == ["fork", "stop"]
    assert [e["action"] for e in third["events"]] == ["fork"]


@pytest.mark.anyio
async def test_non_owner_sees_active_entries_only(service, seeded, make_active, session_factory):
    v1 = await make_active(title="Version one")
    v2 = (await service.edit(seeded.alice.id, v1.id, {"title": "Version two"})).ad

    async with session_factory() as session:
        data = await get_ad_versions(session, v2.id, seeded.bob.id)

    assert data["isOwner"] is False
    assert [entry["id"] for entry in data["timeline"]] == [str(v2.id)]
    assert all(entry["status"] == "active" for entry in data["timeline"])
    assert "events" not in data["timeline"][0]
    assert data["currentPublishedAdId"] == str(v2.id)
    assert data["latestPublishedAdId"] == str(v2.id)


@pytest.mark.anyio
async def test_non_owner_cannot_start_from_inactive_ad(service, seeded, make_active, session_factory):
    v1 = await make_active()
    await service.edit(seeded.alice.id, v1.id, {"title": "Version two"})

    async with session_factory() as session:
        for requester in (seeded.bob.id, None):
            with pytest.raises(LifecycleError) as exc:
                await get_ad_versions(session, v1.id, requester)
            assert exc.value.code == ErrorCode.NOT_FOUND


@pytest.mark.anyio
async def test_unknown_ad_is_not_found(session_factory, seeded):
    async with session_factory() as session:
        with pytest.raises(LifecycleError) as exc:
            await get_ad_versions(session, uuid.uuid4(), seeded.alice.id)
    assert exc.value.code == ErrorCode.NOT_FOUND


@pytest.mark.anyio
async def test_single_draft_timeline(session_factory, seeded, make_draft):
    ad = await make_draft()
    async with session_factory() as session:
        data = await get_ad_versions(session, ad.id, seeded.alice.id)
    assert len(data["timeline"]) == 1
    assert data["latestPublishedAdId"] is None
    assert data["currentPublishedAdId"] is None


@pytest.mark.anyio
async def test_timeline_read_logs_lineage_length(service, seeded, make_active, session_factory, caplog):
    v1, v2, v3 = await _three_versions(service, seeded, make_active)
    caplog.set_level(logging.DEBUG, logger="marketplace.services.ad_versions")

    async with session_factory() as session:
        await get_ad_versions(session, v3.id, seeded.alice.id)

    messages = [r.getMessage() for r in caplog.records if r.name == "marketplace.services.ad_versions"]
    assert f"Timeline for ad {v3.id}: 3 version(s), owner=True" in messages
