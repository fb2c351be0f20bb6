"""
Ad Lifecycle Service: state transitions and version forking for ads.

    draft ──publish──▶ active ──stop──▶ stopped ──restart──▶ active ...
                         │                 │
                         └──── edit ───────┴──▶ fork: new ad, old one linked via replaced_by_ad_id

Every public method runs in its own transaction: lock the target row, validate,
write, append one ad_versions snapshot, commit. Any failure rolls the whole
transaction back before the LifecycleError reaches the caller.
"""

import logging
import uuid
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional, Union
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import async_sessionmaker

from marketplace.errors import ErrorCode, LifecycleError, bad_request, not_allowed, not_found
from marketplace.models import (
    Ad, AdAction, AdPhoto, AdStatus,
    TITLE_MIN, TITLE_MAX, DESCRIPTION_MIN, DESCRIPTION_MAX,
)
from marketplace.services import ad_queries as q
from marketplace.services.ad_guard import LifecycleTx, is_guard_violation
from marketplace.utils import utcnow

logger = logging.getLogger(__name__)

PHOTO_PATH_MIN, PHOTO_PATH_MAX = 3, 500
PHOTO_SORT_MAX = 50
_PHOTO_SHIFT = 100

ConflictCheck = Callable[[LifecycleTx, Ad], Awaitable[Optional[dict]]]


@dataclass
class Notice:
    code: str
    message: str


@dataclass
class ForkResult:
    ad: Ad
    source_ad_id: uuid.UUID
    source_status: str
    notice: Notice


FORKED_FROM_ACTIVE = Notice(
    code="AD_FORKED_FROM_ACTIVE",
    message="This ad was published. A new version has been created and published; the old one has been stopped.",
)
FORKED_FROM_STOPPED = Notice(
    code="AD_FORKED_FROM_STOPPED",
    message="This ad was stopped. A new draft version has been created; the old one remains stopped.",
)


# ── Field validation ─────────────────────────────────────────────────

def validate_ad_fields(fields: dict, partial: bool = False) -> dict:
    """
    Normalize title/description/price_cents/location_id.
    With partial=True only the keys present are checked; otherwise all are required.
    """
    clean = {}

    if "title" in fields or not partial:
        title = str(fields.get("title") or "").strip()
        if not TITLE_MIN <= len(title) <= TITLE_MAX:
            raise bad_request(f"title must be {TITLE_MIN}..{TITLE_MAX} chars")
        clean["title"] = title

    if "description" in fields or not partial:
        description = str(fields.get("description") or "").strip()
        if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
            raise bad_request(f"description must be {DESCRIPTION_MIN}..{DESCRIPTION_MAX} chars")
        clean["description"] = description

    if "price_cents" in fields:
        price = fields["price_cents"]
        if price is not None and (isinstance(price, bool) or not isinstance(price, int) or price < 0):
            raise bad_request("priceCents must be a non-negative integer or null")
        clean["price_cents"] = price
    elif not partial:
        clean["price_cents"] = None

    if "location_id" in fields or not partial:
        location_id = fields.get("location_id")
        if not isinstance(location_id, uuid.UUID):
            try:
                location_id = uuid.UUID(str(location_id))
            except (TypeError, ValueError):
                raise bad_request("locationId must be a UUID")
        clean["location_id"] = location_id

    return clean


def _is_foreign_key_violation(exc: IntegrityError) -> bool:
    orig = exc.orig
    if getattr(orig, "sqlstate", None) == "23503" or getattr(orig, "pgcode", None) == "23503":
        return True
    return "foreign key" in str(orig).lower()


class AdLifecycleService:
    def __init__(self, session_factory: async_sessionmaker):
        self.session_factory = session_factory

    # ── Transaction plumbing ──────────────────────────────────────────

    @asynccontextmanager
    async def _transaction(self, operation: str):
        """Open one transaction, hand out its LifecycleTx, translate store failures."""
        try:
            async with self.session_factory() as session:
                async with session.begin():
                    yield LifecycleTx(session)
        except LifecycleError as e:
            logger.info(f"{operation} rejected: {e.code.value} {e.message}")
            raise
        except IntegrityError as e:
            if _is_foreign_key_violation(e):
                raise bad_request("locationId does not exist") from e
            logger.error(f"{operation} failed on integrity error: {e}", exc_info=True)
            raise LifecycleError(ErrorCode.DB_ERROR, "database error") from e
        except Exception as e:
            if is_guard_violation(e):
                # The engine touched a non-draft row without engaging the bypass.
                logger.error(f"{operation} hit the non-draft update guard: {e}", exc_info=True)
                raise LifecycleError(ErrorCode.DB_ERROR, "database error") from e
            if isinstance(e, SQLAlchemyError):
                logger.error(f"{operation} failed: {e}", exc_info=True)
                raise LifecycleError(ErrorCode.DB_ERROR, "database error") from e
            raise

    async def _lock_owned(self, tx: LifecycleTx, user_id: uuid.UUID, ad_id: uuid.UUID) -> Ad:
        """Lock the ad; a missing ad and someone else's ad look the same."""
        ad = await q.lock_ad_by_id(tx, ad_id)
        if ad is None or user_id is None or ad.user_id != user_id:
            raise not_found()
        return ad

    # ── Draft creation and in-place edits ─────────────────────────────

    async def create_draft(
        self,
        user_id: uuid.UUID,
        location_id: uuid.UUID,
        title: str,
        description: str,
        price_cents: Optional[int] = None,
    ) -> Ad:
        fields = validate_ad_fields({
            "location_id": location_id,
            "title": title,
            "description": description,
            "price_cents": price_cents,
        })
        async with self._transaction("create_draft") as tx:
            ad = await q.insert_draft_ad(tx, user_id, fields)
            await q.insert_ad_version_snapshot(tx, ad, AdAction.DRAFT_CREATE.value, user_id)
        logger.info(f"Draft ad {ad.id} created by user {user_id}")
        return ad

    async def update_draft(self, user_id: uuid.UUID, ad_id: uuid.UUID, patch: dict) -> Ad:
        fields = self._validate_patch(patch)
        async with self._transaction("update_draft") as tx:
            current = await self._lock_owned(tx, user_id, ad_id)
            ad = await self._update_draft_locked(tx, user_id, current, fields)
        return ad

    async def edit(self, user_id: uuid.UUID, ad_id: uuid.UUID, patch: dict) -> Union[Ad, ForkResult]:
        """Edit entry point: drafts change in place, published or stopped ads fork."""
        fields = self._validate_patch(patch)
        async with self._transaction("edit") as tx:
            current = await self._lock_owned(tx, user_id, ad_id)
            if current.status == AdStatus.DRAFT.value:
                result = await self._update_draft_locked(tx, user_id, current, fields)
            else:
                result = await self._fork_locked(tx, user_id, current, fields)
        return result

    @staticmethod
    def _validate_patch(patch: dict) -> dict:
        fields = validate_ad_fields(patch or {}, partial=True)
        if not fields:
            raise bad_request("no fields to update")
        return fields

    async def _update_draft_locked(self, tx: LifecycleTx, user_id: uuid.UUID, current: Ad, fields: dict) -> Ad:
        if current.status != AdStatus.DRAFT.value:
            raise not_allowed("only draft ads can be edited in place")
        ad = await q.update_draft_ad(tx, current.id, user_id, fields)
        if ad is None:
            raise not_allowed("only own draft ads can be edited")
        await q.insert_ad_version_snapshot(tx, ad, AdAction.DRAFT_UPDATE.value, user_id)
        logger.info(f"Draft ad {ad.id} updated ({', '.join(sorted(fields))})")
        return ad

    # ── Status transitions ────────────────────────────────────────────

    async def publish(self, user_id: uuid.UUID, ad_id: uuid.UUID) -> Ad:
        async with self._transaction("publish") as tx:
            current = await self._lock_owned(tx, user_id, ad_id)
            if current.status != AdStatus.DRAFT.value:
                raise not_allowed("only draft ads can be published")

            title = (current.title or "").strip()
            description = (current.description or "").strip()
            if not TITLE_MIN <= len(title) <= TITLE_MAX:
                raise not_allowed(f"cannot publish: title must be {TITLE_MIN}..{TITLE_MAX} chars")
            if not DESCRIPTION_MIN <= len(description) <= DESCRIPTION_MAX:
                raise not_allowed(
                    f"cannot publish: description must be {DESCRIPTION_MIN}..{DESCRIPTION_MAX} chars"
                )
            if await q.count_ad_photos(tx.session, ad_id) == 0:
                raise not_allowed("cannot publish: at least one photo is required")

            # The row is still a draft here, so the guard needs no bypass.
            ad = await q.set_ad_status(
                tx, ad_id, user_id,
                AdStatus.ACTIVE, expected_status=AdStatus.DRAFT,
                published_at=utcnow(), stopped_at=None,
            )
            if ad is None:
                raise not_allowed("cannot publish this ad")
            await q.insert_ad_version_snapshot(tx, ad, AdAction.PUBLISH.value, user_id)
        logger.info(f"Ad {ad_id} published by user {user_id}")
        return ad

    async def stop(self, user_id: uuid.UUID, ad_id: uuid.UUID) -> Ad:
        async with self._transaction("stop") as tx:
            current = await self._lock_owned(tx, user_id, ad_id)
            if current.status != AdStatus.ACTIVE.value:
                raise not_allowed("only active ads can be stopped")

            await tx.allow_non_draft_updates()
            ad = await q.set_ad_status(
                tx, ad_id, user_id,
                AdStatus.STOPPED, expected_status=AdStatus.ACTIVE,
                stopped_at=utcnow(),
            )
            if ad is None:
                raise not_allowed("cannot stop this ad")
            await q.insert_ad_version_snapshot(tx, ad, AdAction.STOP.value, user_id)
        logger.info(f"Ad {ad_id} stopped by user {user_id}")
        return ad

    async def restart(
        self,
        user_id: uuid.UUID,
        ad_id: uuid.UUID,
        check_conflict: Optional[ConflictCheck] = None,
    ) -> Ad:
        """
        stopped -> active. Rejected for drafts, active ads and ads already
        superseded by a fork. `check_conflict` may veto with a dict of details.
        """
        async with self._transaction("restart") as tx:
            current = await self._lock_owned(tx, user_id, ad_id)
            if current.status == AdStatus.DRAFT.value:
                raise not_allowed("cannot restart draft")
            if current.status == AdStatus.ACTIVE.value:
                raise not_allowed("cannot restart active ad")
            if current.status != AdStatus.STOPPED.value:
                raise not_allowed("cannot restart in this state")
            if current.replaced_by_ad_id is not None:
                raise not_allowed("cannot restart replaced ad")

            if check_conflict is not None:
                conflict = await check_conflict(tx, current)
                if conflict:
                    raise LifecycleError(ErrorCode.CONFLICT, "restart conflict", {"details": conflict})

            await tx.allow_non_draft_updates()
            ad = await q.set_ad_status(
                tx, ad_id, user_id,
                AdStatus.ACTIVE, expected_status=AdStatus.STOPPED,
                stopped_at=None,
            )
            if ad is None:
                raise not_allowed("cannot restart this ad")
            await q.insert_ad_version_snapshot(tx, ad, AdAction.RESTART.value, user_id)
        logger.info(f"Ad {ad_id} restarted by user {user_id}")
        return ad

    # ── Fork ──────────────────────────────────────────────────────────

    async def fork(self, user_id: uuid.UUID, ad_id: uuid.UUID, patch: Optional[dict] = None) -> ForkResult:
        fields = validate_ad_fields(patch or {}, partial=True)
        async with self._transaction("fork") as tx:
            source = await self._lock_owned(tx, user_id, ad_id)
            result = await self._fork_locked(tx, user_id, source, fields)
        return result

    async def _fork_locked(self, tx: LifecycleTx, user_id: uuid.UUID, source: Ad, fields: dict) -> ForkResult:
        if source.status not in (AdStatus.ACTIVE.value, AdStatus.STOPPED.value):
            raise not_allowed("only active or stopped ads can be forked")
        if source.replaced_by_ad_id is not None:
            raise not_allowed("ad already replaced by a newer version")

        source_status = AdStatus(source.status)
        target_status = AdStatus.ACTIVE if source_status == AdStatus.ACTIVE else AdStatus.DRAFT

        if target_status == AdStatus.ACTIVE and await q.count_ad_photos(tx.session, source.id) == 0:
            raise not_allowed("cannot edit published ad: at least one photo is required")

        await tx.allow_non_draft_updates()

        now = utcnow()
        new_ad = await q.fork_ad_from_source(tx, source, user_id, fields, target_status, now)
        copied = await q.copy_ad_photos(tx, source.id, new_ad.id)

        linked = await q.link_replacement(tx, source.id, user_id, new_ad.id, source_status, now)
        if not linked:
            # A concurrent fork or stop won; the new row goes away with the rollback.
            raise not_allowed("cannot replace this ad")

        await q.insert_ad_version_snapshot(tx, new_ad, AdAction.FORK.value, user_id)
        logger.info(
            f"Ad {source.id} ({source_status.value}) forked into {new_ad.id} "
            f"({target_status.value}) with {copied} photo(s)"
        )
        notice = FORKED_FROM_ACTIVE if source_status == AdStatus.ACTIVE else FORKED_FROM_STOPPED
        return ForkResult(
            ad=new_ad,
            source_ad_id=source.id,
            source_status=source_status.value,
            notice=notice,
        )

    # ── Draft photos ──────────────────────────────────────────────────

    async def _lock_own_draft(self, tx: LifecycleTx, user_id: uuid.UUID, ad_id: uuid.UUID) -> Ad:
        ad = await q.lock_ad_by_id(tx, ad_id)
        if ad is None or ad.user_id != user_id or ad.status != AdStatus.DRAFT.value:
            raise not_allowed("only own draft ads can be edited")
        return ad

    async def add_photo(
        self, user_id: uuid.UUID, ad_id: uuid.UUID, file_path: str, sort_order: int = 0,
    ) -> list[AdPhoto]:
        file_path = str(file_path or "").strip()
        if not PHOTO_PATH_MIN <= len(file_path) <= PHOTO_PATH_MAX:
            raise bad_request(f"filePath must be {PHOTO_PATH_MIN}..{PHOTO_PATH_MAX} chars")
        _check_sort_order(sort_order, "sortOrder")

        async with self._transaction("add_photo") as tx:
            await self._lock_own_draft(tx, user_id, ad_id)
            if await q.photo_sort_order_taken(tx, ad_id, sort_order):
                raise LifecycleError(ErrorCode.CONFLICT, "photo with this sortOrder already exists")
            await q.insert_ad_photo(tx, ad_id, file_path, sort_order)
            photos = await q.list_ad_photos(tx.session, ad_id)
        logger.info(f"Photo added to draft ad {ad_id} at position {sort_order}")
        return list(photos)

    async def delete_photo(self, user_id: uuid.UUID, ad_id: uuid.UUID, photo_id: uuid.UUID) -> list[AdPhoto]:
        async with self._transaction("delete_photo") as tx:
            await self._lock_own_draft(tx, user_id, ad_id)
            if not await q.delete_ad_photo(tx, ad_id, photo_id):
                raise not_found("photo not found")
            photos = await q.list_ad_photos(tx.session, ad_id)
        return list(photos)

    async def reorder_photos(self, user_id: uuid.UUID, ad_id: uuid.UUID, items: list[dict]) -> list[AdPhoto]:
        """items: [{"photo_id": UUID, "sort_order": int}, ...]"""
        if not items:
            raise bad_request("items must be a non-empty array")
        for item in items:
            if not isinstance(item.get("photo_id"), uuid.UUID):
                raise bad_request("each item.photoId must be UUID")
            _check_sort_order(item.get("sort_order"), "each item.sortOrder")
        photo_ids = [item["photo_id"] for item in items]
        if len(set(photo_ids)) != len(photo_ids):
            raise bad_request("photoIds must be unique")
        if len({item["sort_order"] for item in items}) != len(items):
            raise bad_request("sortOrder values must be unique")

        async with self._transaction("reorder_photos") as tx:
            await self._lock_own_draft(tx, user_id, ad_id)
            if await q.count_photos_among(tx, ad_id, photo_ids) != len(photo_ids):
                raise bad_request("some photoIds do not belong to this ad")
            if await q.count_ad_photos(tx.session, ad_id) != len(photo_ids):
                raise bad_request("items must list every photo of this ad")

            # Park every photo out of range first so UNIQUE(ad_id, sort_order) holds mid-way.
            await q.shift_photo_sort_orders(tx, ad_id, _PHOTO_SHIFT)
            for item in items:
                await q.set_photo_sort_order(tx, ad_id, item["photo_id"], item["sort_order"])
            photos = await q.list_ad_photos(tx.session, ad_id)
        return list(photos)


def _check_sort_order(value, label: str) -> None:
    if isinstance(value, bool) or not isinstance(value, int) or not 0 <= value <= PHOTO_SORT_MAX:
        raise bad_request(f"{label} must be integer 0..{PHOTO_SORT_MAX}")
