"""initial_schema

Revision ID: 3c1f9a2b7e40
Revises:
Create Date: 2026-10-19 00:00:00.000000

Creates the plant registry, stage catalog, soil readings, delivered alert
audit trail and the auth tables.  ``gen_random_uuid()`` is built into
PostgreSQL 13+.
"""

from collections.abc import Sequence

import sqlalchemy as sa
from alembic import op
from sqlalchemy.dialects import postgresql

# revision identifiers, used by Alembic.
revision: str = "3c1f9a2b7e40"
down_revision: str | None = None
branch_labels: str | Sequence[str] | None = None
depends_on: str | Sequence[str] | None = None

ENUM_USER_ROLE = postgresql.ENUM(
    "admin", "farmer", "finance", "viewer", name="user_role", create_type=False
)


def _uuid_pk() -> sa.Column:
    return sa.Column(
        "id",
        postgresql.UUID(as_uuid=True),
        server_default=sa.text("gen_random_uuid()"),
        nullable=False,
    )


def _timestamps() -> list[sa.Column]:
    return [
        sa.Column(
            "created_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column(
            "updated_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
    ]


def upgrade() -> None:
    ENUM_USER_ROLE.create(op.get_bind(), checkfirst=True)

    # ── Auth ────────────────────────────────────────────────────────────
    op.create_table(
        "users",
        _uuid_pk(),
        sa.Column("email", sa.String(320), nullable=False),
        sa.Column("hashed_password", sa.String(128), nullable=False),
        sa.Column("display_name", sa.String(255), nullable=True),
        sa.Column("mobile", sa.String(32), nullable=True),
        sa.Column(
            "role", ENUM_USER_ROLE, server_default="viewer", nullable=False
        ),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_users_email", "users", ["email"], unique=True)

    op.create_table(
        "api_keys",
        _uuid_pk(),
        sa.Column("user_id", postgresql.UUID(as_uuid=True), nullable=False),
        sa.Column("key_hash", sa.String(128), nullable=False),
        sa.Column("name", sa.String(100), nullable=False),
        sa.Column("scopes", postgresql.JSONB(), nullable=True),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column(
            "is_active", sa.Boolean(), server_default=sa.text("true"), nullable=False
        ),
        *_timestamps(),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"], ondelete="CASCADE"),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("key_hash"),
    )
    op.create_index("ix_api_keys_user_id", "api_keys", ["user_id"])

    # ── Plant registry & catalog ────────────────────────────────────────
    op.create_table(
        "plants",
        _uuid_pk(),
        sa.Column("sensor_id", sa.String(128), nullable=True),
        sa.Column("plant_type", sa.String(100), nullable=True),
        sa.Column("plant_name", sa.String(255), nullable=True),
        sa.Column("status", sa.String(100), nullable=True),
        sa.Column("plot_number", sa.String(32), nullable=True),
        sa.Column("location_zone", sa.String(100), nullable=True),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_plants_sensor_id", "plants", ["sensor_id"], unique=True)

    op.create_table(
        "plant_catalog",
        _uuid_pk(),
        sa.Column("plant_key", sa.String(100), nullable=False),
        sa.Column("name", sa.String(255), nullable=False),
        sa.Column("scientific_name", sa.String(255), nullable=True),
        sa.Column("stages", postgresql.JSONB(), nullable=False),
        *_timestamps(),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("plant_key"),
    )

    # ── Time-series ─────────────────────────────────────────────────────
    op.create_table(
        "soil_readings",
        sa.Column("id", sa.BigInteger(), autoincrement=True, nullable=False),
        sa.Column(
            "ingested_at",
            sa.DateTime(timezone=True),
            server_default=sa.text("now()"),
            nullable=False,
        ),
        sa.Column("sensor_id", sa.String(128), nullable=False),
        sa.Column("timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("parameters", postgresql.JSONB(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index(
        "ix_soil_readings_sensor_ts", "soil_readings", ["sensor_id", "timestamp"]
    )

    # ── Alert audit ─────────────────────────────────────────────────────
    op.create_table(
        "delivered_alerts",
        _uuid_pk(),
        sa.Column("record_key", sa.String(160), nullable=False),
        sa.Column("identity", sa.String(64), nullable=False),
        sa.Column("plant_id", sa.String(64), nullable=False),
        sa.Column("plant_name", sa.String(255), nullable=True),
        sa.Column("plot_number", sa.String(32), nullable=True),
        sa.Column("stage", sa.String(100), nullable=True),
        sa.Column("sensor_id", sa.String(128), nullable=False),
        sa.Column("reading_timestamp", sa.DateTime(timezone=True), nullable=False),
        sa.Column("violations", postgresql.JSONB(), nullable=False),
        sa.Column("recipients", postgresql.JSONB(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.UniqueConstraint("record_key"),
    )
    op.create_index(
        "ix_delivered_alerts_identity_sent",
        "delivered_alerts",
        ["identity", "sent_at"],
    )
    op.create_index("ix_delivered_alerts_sent_at", "delivered_alerts", ["sent_at"])


def downgrade() -> None:
    op.drop_table("delivered_alerts")
    op.drop_table("soil_readings")
    op.drop_table("plant_catalog")
    op.drop_table("plants")
    op.drop_table("api_keys")
    op.drop_table("users")
    ENUM_USER_ROLE.drop(op.get_bind(), checkfirst=True)
