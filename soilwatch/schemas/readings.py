"""Pydantic schemas for reading submission and operator endpoints."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import AliasChoices, BaseModel, Field

from soilwatch.schemas.alerts import ParameterBounds


class ReadingSubmission(BaseModel):
	"""Inbound reading; ``sensorId`` is accepted for gateways that send camelCase."""

	sensor_id: str = Field(min_length=1, validation_alias=AliasChoices("sensor_id", "sensorId"))
	parameters: dict[str, Any] = Field(min_length=1)
	timestamp: datetime | None = None


class ThresholdsResponse(BaseModel):
	sensor_id: str
	plant_id: str
	plant_type: str
	stage: str
	bounds: dict[str, ParameterBounds]


class RecipientOut(BaseModel):
	id: str
	name: str
	role: str
	mobile: str


class RecipientListResponse(BaseModel):
	count: int
	recipients: list[RecipientOut]


class CleanupResponse(BaseModel):
	deleted_count: int
	cutoff: datetime
