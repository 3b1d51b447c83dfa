"""Delivered alert ORM model — idempotency and audit trail for notifications.

``identity`` is the deduplication key (plant + violation shape).  The same
identity legitimately recurs once its suppression window has passed, so
uniqueness is enforced on ``record_key`` (identity + reading timestamp)
instead, which makes a replayed write of the same delivery a no-op.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from soilwatch.models.base import Base, UUIDPrimaryKeyMixin


class DeliveredAlert(Base, UUIDPrimaryKeyMixin):
    """One notification fan-out for one violation set."""

    __tablename__ = "delivered_alerts"
    __table_args__ = (
        Index("ix_delivered_alerts_identity_sent", "identity", "sent_at"),
        Index("ix_delivered_alerts_sent_at", "sent_at"),
    )

    record_key: Mapped[str] = mapped_column(
        String(160), unique=True, nullable=False
    )
    identity: Mapped[str] = mapped_column(String(64), nullable=False)
    plant_id: Mapped[str] = mapped_column(String(64), nullable=False)
    plant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    plot_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    stage: Mapped[str | None] = mapped_column(String(100), nullable=True)
    sensor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    reading_timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    violations: Mapped[list] = mapped_column(JSONB, nullable=False)
    recipients: Mapped[list] = mapped_column(JSONB, nullable=False)
    sent_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )

    def __repr__(self) -> str:
        return (
            f"<DeliveredAlert id={self.id} identity={self.identity[:12]} "
            f"plant={self.plant_id} sent_at={self.sent_at}>"
        )
