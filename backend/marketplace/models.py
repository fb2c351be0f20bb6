"""
Marketplace: Database Models
Users, locations, ads with their version lineage, photos and append-only snapshots.
"""

import uuid
import enum
from datetime import datetime, timezone
from sqlalchemy import (
    String, Text, Integer, BigInteger, Boolean, DateTime,
    JSON, ForeignKey, Index, UniqueConstraint, CheckConstraint, Uuid,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship
from marketplace.database import Base


def _utcnow() -> datetime:
    """Naive UTC now, matching DB columns (TIMESTAMP WITHOUT TIME ZONE)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


# ══════════════════════════════════════════════════════════════════════
#  ENUMS
# ══════════════════════════════════════════════════════════════════════

class AdStatus(str, enum.Enum):
    DRAFT = "draft"
    ACTIVE = "active"
    STOPPED = "stopped"


class AdAction(str, enum.Enum):
    DRAFT_CREATE = "draft_create"
    DRAFT_UPDATE = "draft_update"
    PUBLISH = "publish"
    STOP = "stop"
    RESTART = "restart"
    FORK = "fork"


TITLE_MIN, TITLE_MAX = 3, 120
DESCRIPTION_MIN, DESCRIPTION_MAX = 10, 5000


# ══════════════════════════════════════════════════════════════════════
#  USERS
# ══════════════════════════════════════════════════════════════════════

class User(Base):
    """App user; owns ads."""
    __tablename__ = "users"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    email: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    name: Mapped[str] = mapped_column(String(255), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    ads: Mapped[list["Ad"]] = relationship("Ad", back_populates="user", lazy="raise")


# ══════════════════════════════════════════════════════════════════════
#  LOCATIONS: lookup table, seeded by scripts/seed_locations.py
# ══════════════════════════════════════════════════════════════════════

class Location(Base):
    __tablename__ = "locations"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    country: Mapped[str] = mapped_column(String(100), nullable=False)
    city: Mapped[str] = mapped_column(String(100), nullable=False)
    district: Mapped[str] = mapped_column(String(100), nullable=True)

    __table_args__ = (
        UniqueConstraint("country", "city", "district", name="uq_location"),
    )


# ══════════════════════════════════════════════════════════════════════
#  ADS: lineage store
#  parent_ad_id points back to the ad this one was forked from,
#  replaced_by_ad_id points forward to the ad that superseded it.
# ══════════════════════════════════════════════════════════════════════

class Ad(Base):
    """A classified listing. Only drafts are edited in place; published ads are forked."""
    __tablename__ = "ads"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    location_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("locations.id"), nullable=False)
    title: Mapped[str] = mapped_column(String(TITLE_MAX), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False)
    price_cents: Mapped[int] = mapped_column(BigInteger, nullable=True)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default=AdStatus.DRAFT.value)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)
    published_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    stopped_at: Mapped[datetime] = mapped_column(DateTime, nullable=True)
    parent_ad_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("ads.id", ondelete="SET NULL"), nullable=True)
    replaced_by_ad_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("ads.id", ondelete="SET NULL"), nullable=True)

    # Relationships
    user: Mapped["User"] = relationship("User", back_populates="ads", lazy="raise")
    photos: Mapped[list["AdPhoto"]] = relationship(
        "AdPhoto", back_populates="ad", order_by="AdPhoto.sort_order",
        cascade="all, delete-orphan", lazy="raise",
    )

    __table_args__ = (
        CheckConstraint(f"length(title) BETWEEN {TITLE_MIN} AND {TITLE_MAX}", name="ads_title_check"),
        CheckConstraint(
            f"length(description) BETWEEN {DESCRIPTION_MIN} AND {DESCRIPTION_MAX}",
            name="ads_description_check",
        ),
        CheckConstraint("price_cents IS NULL OR price_cents >= 0", name="ads_price_check"),
        CheckConstraint("status IN ('draft', 'active', 'stopped')", name="ads_status_check"),
        UniqueConstraint("replaced_by_ad_id", name="uq_ads_replaced_by_ad_id"),
        Index("ix_ads_user_id", "user_id"),
        Index("ix_ads_location_status", "location_id", "status"),
        Index("ix_ads_parent_ad_id", "parent_ad_id"),
    )


class AdPhoto(Base):
    """Ordered photo reference; the file bytes live in external storage."""
    __tablename__ = "ad_photos"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True, default=uuid.uuid4)
    ad_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("ads.id", ondelete="CASCADE"), nullable=False)
    file_path: Mapped[str] = mapped_column(String(500), nullable=False)
    sort_order: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    ad: Mapped["Ad"] = relationship("Ad", back_populates="photos", lazy="raise")

    __table_args__ = (
        UniqueConstraint("ad_id", "sort_order", name="uq_ad_photos_sort_order"),
        Index("ix_ad_photos_ad_id", "ad_id"),
    )


# ══════════════════════════════════════════════════════════════════════
#  AD VERSIONS: append-only snapshots, one per lifecycle action
# ══════════════════════════════════════════════════════════════════════

class AdVersion(Base):
    __tablename__ = "ad_versions"

    # SQLite only autoincrements INTEGER PRIMARY KEY
    id: Mapped[int] = mapped_column(BigInteger().with_variant(Integer, "sqlite"), primary_key=True, autoincrement=True)
    ad_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("ads.id", ondelete="CASCADE"), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    snapshot: Mapped[dict] = mapped_column(JSON, nullable=False)
    action: Mapped[str] = mapped_column(String(32), nullable=False)
    actor_user_id: Mapped[uuid.UUID] = mapped_column(Uuid, ForeignKey("users.id"), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=_utcnow)

    __table_args__ = (
        Index("ix_ad_versions_ad_id", "ad_id"),
        Index("ix_ad_versions_created_at", "created_at"),
    )
