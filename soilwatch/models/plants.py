"""Plant registry ORM model — binds a soil sensor to a planted crop.

``status`` holds the plant's current lifecycle stage name (e.g. "Seedling"),
matched case-insensitively against the stage catalog.
"""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.orm import Mapped, mapped_column

from soilwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class Plant(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """A planted crop on a plot, monitored by exactly one soil sensor."""

    __tablename__ = "plants"

    sensor_id: Mapped[str | None] = mapped_column(
        String(128), unique=True, nullable=True, index=True
    )
    plant_type: Mapped[str | None] = mapped_column(String(100), nullable=True)
    plant_name: Mapped[str | None] = mapped_column(String(255), nullable=True)
    status: Mapped[str | None] = mapped_column(String(100), nullable=True)
    plot_number: Mapped[str | None] = mapped_column(String(32), nullable=True)
    location_zone: Mapped[str | None] = mapped_column(
        String(100), nullable=True
    )

    def __repr__(self) -> str:
        return (
            f"<Plant id={self.id} sensor={self.sensor_id!r} "
            f"type={self.plant_type!r} stage={self.status!r}>"
        )
