"""
Tests for the non-draft update guard and its per-transaction bypass.
"""

import pytest
from sqlalchemy.exc import DBAPIError

from marketplace.errors import ErrorCode, LifecycleError
from marketplace.models import AdStatus
from marketplace.services import ad_queries
from marketplace.services.ad_guard import (
    GUARD_MESSAGE,
    GUARD_TRIGGER_DDL,
    LifecycleTx,
    NonDraftUpdateBlocked,
    ensure_update_allowed,
    is_guard_violation,
)


def test_drafts_pass_without_bypass():
    tx = LifecycleTx(session=None)
    ensure_update_allowed(tx, "ad-1", AdStatus.DRAFT.value)


@pytest.mark.parametrize("status", [AdStatus.ACTIVE.value, AdStatus.STOPPED.value])
def test_non_drafts_blocked_without_bypass(status):
    tx = LifecycleTx(session=None)
    with pytest.raises(NonDraftUpdateBlocked) as exc:
        ensure_update_allowed(tx, "ad-1", status)
    assert exc.value.status == status
    assert str(exc.value) == GUARD_MESSAGE

    tx.allow_non_draft_update = True
    ensure_update_allowed(tx, "ad-1", status)


def test_is_guard_violation_recognizes_trigger_error():
    class _PgError(Exception):
        sqlstate = "45000"

    wrapped = DBAPIError("UPDATE ads ...", {}, _PgError("Only draft ads can be updated"))
    assert is_guard_violation(wrapped)
    assert is_guard_violation(NonDraftUpdateBlocked())
    assert not is_guard_violation(ValueError("nope"))


@pytest.mark.anyio
async def test_status_update_on_active_ad_needs_bypass(session_factory, seeded, make_active):
    ad = await make_active()

    async with session_factory() as session:
        async with session.begin():
            tx = LifecycleTx(session)
            with pytest.raises(NonDraftUpdateBlocked):
                await ad_queries.set_ad_status(
                    tx, ad.id, seeded.alice.id, AdStatus.STOPPED, expected_status=AdStatus.ACTIVE,
                )

    async with session_factory() as session:
        async with session.begin():
            tx = LifecycleTx(session)
            await tx.allow_non_draft_updates()
            assert tx.allow_non_draft_update is True
            stopped = await ad_queries.set_ad_status(
                tx, ad.id, seeded.alice.id, AdStatus.STOPPED, expected_status=AdStatus.ACTIVE,
            )
    assert stopped.status == "stopped"


@pytest.mark.anyio
async def test_bypass_does_not_outlive_its_transaction(session_factory, seeded, make_active):
    ad = await make_active()

    async with session_factory() as session:
        async with session.begin():
            tx = LifecycleTx(session)
            await tx.allow_non_draft_updates()

    async with session_factory() as session:
        async with session.begin():
            fresh = LifecycleTx(session)
            assert fresh.allow_non_draft_update is False
            with pytest.raises(NonDraftUpdateBlocked):
                await ad_queries.set_ad_status(
                    fresh, ad.id, seeded.alice.id, AdStatus.STOPPED, expected_status=AdStatus.ACTIVE,
                )


@pytest.mark.anyio
async def test_draft_update_query_never_touches_active_rows(session_factory, seeded, make_active):
    """Even with the bypass engaged, the draft-only WHERE clause keeps active rows out."""
    ad = await make_active()

    async with session_factory() as session:
        async with session.begin():
            tx = LifecycleTx(session)
            await tx.allow_non_draft_updates()
            result = await ad_queries.update_draft_ad(tx, ad.id, seeded.alice.id, {"title": "Sneaky"})
    assert result is None

    async with session_factory() as session:
        reloaded = await ad_queries.get_ad_by_id(session, ad.id)
    assert reloaded.title == ad.title


@pytest.mark.anyio
async def test_service_without_bypass_fails_as_db_error(service, seeded, make_active, monkeypatch):
    ad = await make_active()

    async def _no_bypass(self):
        return None

    monkeypatch.setattr(LifecycleTx, "allow_non_draft_updates", _no_bypass)

    with pytest.raises(LifecycleError) as exc:
        await service.stop(seeded.alice.id, ad.id)
    assert exc.value.code == ErrorCode.DB_ERROR

    async with service.session_factory() as session:
        reloaded = await ad_queries.get_ad_by_id(session, ad.id)
    assert reloaded.status == "active"


def test_ad_versions_trigger_blocks_updates_but_not_cascade_deletes():
    statement = next(s for s in GUARD_TRIGGER_DDL if "CREATE TRIGGER ad_versions_append_only" in s)
    normalized = " ".join(statement.split())
    assert "BEFORE UPDATE ON ad_versions" in normalized
    assert "DELETE" not in normalized
