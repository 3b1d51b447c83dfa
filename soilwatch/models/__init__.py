"""ORM model registry: importing this module registers the domain tables on Base.metadata.

``User`` and ``APIKey`` live in ``soilwatch.auth.models``, which itself builds
on ``soilwatch.models.base``; Alembic ``env.py`` imports both modules so that
autogenerate sees every table.  Application code can also do::

    from soilwatch.models import Plant, PlantCatalogEntry, DeliveredAlert, ...
"""

# ── Base & Mixins ───────────────────────────────────────────────────────────
from soilwatch.models.base import (
    Base,
    TimeSeriesMixin,
    TimestampMixin,
    UUIDPrimaryKeyMixin,
)

# ── Alert audit ─────────────────────────────────────────────────────────────
from soilwatch.models.alerts import DeliveredAlert

# ── Reference data ──────────────────────────────────────────────────────────
from soilwatch.models.catalog import PlantCatalogEntry

# ── Enums ───────────────────────────────────────────────────────────────────
from soilwatch.models.enums import UserRoleEnum, ViolationDirectionEnum

# ── Plant registry ──────────────────────────────────────────────────────────
from soilwatch.models.plants import Plant

# ── Time-series ─────────────────────────────────────────────────────────────
from soilwatch.models.readings import SoilReading

__all__ = [
    # Base & mixins
    "Base",
    "TimeSeriesMixin",
    "TimestampMixin",
    "UUIDPrimaryKeyMixin",
    # Domain tables
    "DeliveredAlert",
    "Plant",
    "PlantCatalogEntry",
    "SoilReading",
    # Enums
    "UserRoleEnum",
    "ViolationDirectionEnum",
]
