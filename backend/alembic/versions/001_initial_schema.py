"""Initial schema: users, locations, ads lineage, photos, version snapshots, guard triggers.

Revision ID: 001
Revises:
Create Date: 2026-01-12

"""
from typing import Sequence, Union

from alembic import op
import sqlalchemy as sa

from marketplace.services.ad_guard import DROP_GUARD_TRIGGER_DDL, GUARD_TRIGGER_DDL

# revision identifiers, used by Alembic.
revision: str = "001"
down_revision: Union[str, None] = None
branch_labels: Union[str, Sequence[str], None] = None
depends_on: Union[str, Sequence[str], None] = None


def upgrade() -> None:
    conn = op.get_bind()
    insp = sa.inspect(conn)
    if "ads" in insp.get_table_names():
        return  # Already applied (e.g. from create_all)

    op.create_table(
        "users",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("email", sa.String(255), nullable=False),
        sa.Column("password_hash", sa.String(255), nullable=False),
        sa.Column("name", sa.String(255), nullable=True),
        sa.Column("is_active", sa.Boolean(), nullable=True, server_default=sa.true()),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("email"),
    )

    op.create_table(
        "locations",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("country", sa.String(100), nullable=False),
        sa.Column("city", sa.String(100), nullable=False),
        sa.Column("district", sa.String(100), nullable=True),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("country", "city", "district", name="uq_location"),
    )

    op.create_table(
        "ads",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("user_id", sa.Uuid(), nullable=False),
        sa.Column("location_id", sa.Uuid(), nullable=False),
        sa.Column("title", sa.String(120), nullable=False),
        sa.Column("description", sa.Text(), nullable=False),
        sa.Column("price_cents", sa.BigInteger(), nullable=True),
        sa.Column("status", sa.String(20), nullable=False, server_default="draft"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.Column("published_at", sa.DateTime(), nullable=True),
        sa.Column("stopped_at", sa.DateTime(), nullable=True),
        sa.Column("parent_ad_id", sa.Uuid(), nullable=True),
        sa.Column("replaced_by_ad_id", sa.Uuid(), nullable=True),
        sa.CheckConstraint("length(title) BETWEEN 3 AND 120", name="ads_title_check"),
        sa.CheckConstraint("length(description) BETWEEN 10 AND 5000", name="ads_description_check"),
        sa.CheckConstraint("price_cents IS NULL OR price_cents >= 0", name="ads_price_check"),
        sa.CheckConstraint("status IN ('draft', 'active', 'stopped')", name="ads_status_check"),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["location_id"], ["locations.id"]),
        sa.ForeignKeyConstraint(["parent_ad_id"], ["ads.id"], ondelete="SET NULL"),
        sa.ForeignKeyConstraint(["replaced_by_ad_id"], ["ads.id"], ondelete="SET NULL"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("replaced_by_ad_id", name="uq_ads_replaced_by_ad_id"),
    )
    op.create_index("ix_ads_user_id", "ads", ["user_id"], unique=False)
    op.create_index("ix_ads_location_status", "ads", ["location_id", "status"], unique=False)
    op.create_index("ix_ads_parent_ad_id", "ads", ["parent_ad_id"], unique=False)

    op.create_table(
        "ad_photos",
        sa.Column("id", sa.Uuid(), nullable=False),
        sa.Column("ad_id", sa.Uuid(), nullable=False),
        sa.Column("file_path", sa.String(500), nullable=False),
        sa.Column("sort_order", sa.Integer(), nullable=False, server_default="0"),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["ad_id"], ["ads.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("ad_id", "sort_order", name="uq_ad_photos_sort_order"),
    )
    op.create_index("ix_ad_photos_ad_id", "ad_photos", ["ad_id"], unique=False)

    op.create_table(
        "ad_versions",
        sa.Column("id", sa.BigInteger().with_variant(sa.Integer(), "sqlite"), autoincrement=True, nullable=False),
        sa.Column("ad_id", sa.Uuid(), nullable=False),
        sa.Column("status", sa.String(20), nullable=False),
        sa.Column("snapshot", sa.JSON(), nullable=False),
        sa.Column("action", sa.String(32), nullable=False),
        sa.Column("actor_user_id", sa.Uuid(), nullable=True),
        sa.Column("created_at", sa.DateTime(), nullable=True, server_default=sa.func.now()),
        sa.ForeignKeyConstraint(["ad_id"], ["ads.id"], ondelete="CASCADE"),
        sa.ForeignKeyConstraint(["actor_user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_ad_versions_ad_id", "ad_versions", ["ad_id"], unique=False)
    op.create_index("ix_ad_versions_created_at", "ad_versions", ["created_at"], unique=False)

    if conn.dialect.name == "postgresql":
        for statement in GUARD_TRIGGER_DDL:
            op.execute(statement)


def downgrade() -> None:
    conn = op.get_bind()
    if conn.dialect.name == "postgresql":
        for statement in DROP_GUARD_TRIGGER_DDL:
            op.execute(statement)

    op.drop_index("ix_ad_versions_created_at", table_name="ad_versions")
    op.drop_index("ix_ad_versions_ad_id", table_name="ad_versions")
    op.drop_table("ad_versions")
    op.drop_index("ix_ad_photos_ad_id", table_name="ad_photos")
    op.drop_table("ad_photos")
    op.drop_index("ix_ads_parent_ad_id", table_name="ads")
    op.drop_index("ix_ads_location_status", table_name="ads")
    op.drop_index("ix_ads_user_id", table_name="ads")
    op.drop_table("ads")
    op.drop_table("locations")
    op.drop_table("users")
