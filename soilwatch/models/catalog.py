"""PlantCatalogEntry ORM model — per-plant-type stage definitions.

``stages`` (JSONB) holds the acceptable soil ranges per lifecycle stage.
Bounds are stored as the catalog authors entered them, usually numeric
strings:

    [
        {
            "stage": "Seedling",
            "lowN": "10", "highN": "25",
            "lowP": "10", "highP": "25",
            "lowK": "80", "highK": "150",
            "lowpH": "5.5", "highpH": "6.8",
            "lowTemp": "18", "highTemp": "30",
            "lowHum": "40", "highHum": "70"
        },
        ...
    ]
"""

from __future__ import annotations

from sqlalchemy import String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from soilwatch.models.base import Base, TimestampMixin, UUIDPrimaryKeyMixin


class PlantCatalogEntry(Base, UUIDPrimaryKeyMixin, TimestampMixin):
    """Reference data: plant type + stage threshold definitions."""

    __tablename__ = "plant_catalog"

    plant_key: Mapped[str] = mapped_column(
        String(100), unique=True, nullable=False
    )
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    scientific_name: Mapped[str | None] = mapped_column(
        String(255), nullable=True
    )
    stages: Mapped[list] = mapped_column(JSONB, nullable=False)

    def __repr__(self) -> str:
        return f"<PlantCatalogEntry id={self.id} key={self.plant_key!r}>"
