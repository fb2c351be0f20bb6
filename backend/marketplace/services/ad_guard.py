"""
Ads Guard: blocks UPDATEs on non-draft ads unless the current transaction opted in.

The opt-in lives on ``LifecycleTx``, the transaction handle every ad query receives,
so the bypass is visible at each call site and dies with the transaction.
On Postgres the same flag is mirrored into a transaction-local setting
(``set_config(..., true)``) that the ``ads_prevent_update_non_draft`` trigger reads.
"""

import logging
from dataclasses import dataclass
from sqlalchemy import text
from sqlalchemy.exc import DBAPIError
from sqlalchemy.ext.asyncio import AsyncConnection, AsyncSession

from marketplace.models import AdStatus

logger = logging.getLogger(__name__)

BYPASS_SETTING = "app.allow_non_draft_update"
GUARD_MESSAGE = "Only draft ads can be updated"
GUARD_ERRCODE = "45000"


class NonDraftUpdateBlocked(Exception):
    """Raised when an UPDATE would touch a non-draft ad without the bypass."""

    def __init__(self, ad_id=None, status: str = None):
        super().__init__(GUARD_MESSAGE)
        self.ad_id = ad_id
        self.status = status


@dataclass
class LifecycleTx:
    """One open transaction plus its guard bypass flag."""
    session: AsyncSession
    allow_non_draft_update: bool = False

    async def allow_non_draft_updates(self) -> None:
        if self.allow_non_draft_update:
            return
        self.allow_non_draft_update = True
        conn = await self.session.connection()
        if conn.dialect.name == "postgresql":
            await conn.execute(
                text("SELECT set_config(:name, '1', true)"),
                {"name": BYPASS_SETTING},
            )


def ensure_update_allowed(tx: LifecycleTx, ad_id, current_status: str) -> None:
    if current_status == AdStatus.DRAFT.value:
        return
    if tx.allow_non_draft_update:
        return
    raise NonDraftUpdateBlocked(ad_id=ad_id, status=current_status)


def is_guard_violation(exc: BaseException) -> bool:
    """True for the Python guard or the database trigger rejecting an update."""
    if isinstance(exc, NonDraftUpdateBlocked):
        return True
    if isinstance(exc, DBAPIError):
        orig = exc.orig
        if getattr(orig, "sqlstate", None) == GUARD_ERRCODE:
            return True
        return GUARD_MESSAGE.lower() in str(orig).lower()
    return False


# ── Postgres DDL ─────────────────────────────────────────────────────

GUARD_TRIGGER_DDL = [
    f"""
    CREATE OR REPLACE FUNCTION ads_prevent_update_non_draft() RETURNS trigger AS $$
    BEGIN
        IF OLD.status <> 'draft'
           AND coalesce(current_setting('{BYPASS_SETTING}', true), '') <> '1' THEN
            RAISE EXCEPTION '{GUARD_MESSAGE}' USING ERRCODE = '{GUARD_ERRCODE}';
        END IF;
        RETURN NEW;
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS ads_prevent_update_non_draft ON ads",
    """
    CREATE TRIGGER ads_prevent_update_non_draft
        BEFORE UPDATE ON ads
        FOR EACH ROW EXECUTE FUNCTION ads_prevent_update_non_draft()
    """,
    """
    CREATE OR REPLACE FUNCTION ad_versions_append_only() RETURNS trigger AS $$
    BEGIN
        RAISE EXCEPTION 'ad_versions is append-only';
    END;
    $$ LANGUAGE plpgsql
    """,
    "DROP TRIGGER IF EXISTS ad_versions_append_only ON ad_versions",
    # UPDATE only: snapshots still go away through ON DELETE CASCADE when their ad is deleted.
    """
    CREATE TRIGGER ad_versions_append_only
        BEFORE UPDATE ON ad_versions
        FOR EACH ROW EXECUTE FUNCTION ad_versions_append_only()
    """,
]

DROP_GUARD_TRIGGER_DDL = [
    "DROP TRIGGER IF EXISTS ad_versions_append_only ON ad_versions",
    "DROP FUNCTION IF EXISTS ad_versions_append_only()",
    "DROP TRIGGER IF EXISTS ads_prevent_update_non_draft ON ads",
    "DROP FUNCTION IF EXISTS ads_prevent_update_non_draft()",
]


async def install_guard_triggers(conn: AsyncConnection) -> None:
    """Install the Postgres triggers. No-op on other dialects."""
    if conn.dialect.name != "postgresql":
        logger.info(f"Guard triggers skipped for dialect {conn.dialect.name}; Python guard only.")
        return
    for statement in GUARD_TRIGGER_DDL:
        await conn.execute(text(statement))
    logger.info("Guard triggers installed on ads and ad_versions.")
