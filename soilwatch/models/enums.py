"""PostgreSQL-backed enum types for the ORM models.

Each StrEnum maps 1:1 to a PostgreSQL CREATE TYPE ... AS ENUM, except
``ViolationDirectionEnum`` which only travels inside JSONB alert payloads.
"""

from enum import StrEnum


class UserRoleEnum(StrEnum):
    """User authorization roles; ``admin`` and ``farmer`` receive alerts by default."""

    admin = "admin"
    farmer = "farmer"
    finance = "finance"
    viewer = "viewer"


class ViolationDirectionEnum(StrEnum):
    """Which side of the acceptable range a reading fell on."""

    BELOW = "BELOW"
    ABOVE = "ABOVE"
