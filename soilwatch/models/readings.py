"""Soil sensor reading ORM model.

Readings are append-only time series, so the table uses ``TimeSeriesMixin``
(BIGSERIAL key) with a composite (sensor_id, timestamp) index that serves
the "latest reading for a sensor" lookup used by manual re-checks.
"""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import DateTime, Index, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from soilwatch.models.base import Base, TimeSeriesMixin


class SoilReading(Base, TimeSeriesMixin):
    """Raw soil sensor reading — parameter name to numeric value."""

    __tablename__ = "soil_readings"
    __table_args__ = (
        Index("ix_soil_readings_sensor_ts", "sensor_id", "timestamp"),
    )

    sensor_id: Mapped[str] = mapped_column(String(128), nullable=False)
    timestamp: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), nullable=False
    )
    parameters: Mapped[dict] = mapped_column(JSONB, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<SoilReading id={self.id} sensor={self.sensor_id} "
            f"ts={self.timestamp}>"
        )
