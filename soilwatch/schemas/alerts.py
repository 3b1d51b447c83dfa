"""Pydantic value objects flowing through the threshold-alerting pipeline."""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from soilwatch.models.enums import ViolationDirectionEnum


class SensorReading(BaseModel):
	"""One soil sensor sample; immutable once received."""

	model_config = ConfigDict(frozen=True)

	sensor_id: str
	parameters: dict[str, Any]
	timestamp: datetime


class PlantContext(BaseModel):
	"""Read-only snapshot of the plant bound to a sensor."""

	model_config = ConfigDict(frozen=True)

	id: str
	sensor_id: str | None = None
	plant_type: str | None = None
	plant_name: str | None = None
	status: str | None = None
	plot_number: str | None = None
	location_zone: str | None = None

	@property
	def display_name(self) -> str:
		return self.plant_name or self.plant_type or self.id


class CatalogEntry(BaseModel):
	"""Stage-definition catalog document for one normalized plant type."""

	plant_key: str
	name: str
	scientific_name: str | None = None
	stages: list[dict[str, Any]] = Field(default_factory=list)


class ParameterBounds(BaseModel):
	model_config = ConfigDict(frozen=True)

	min: float
	max: float
	unit: str = ""


class StageThresholds(BaseModel):
	"""Acceptable ranges for one (plant type, stage) pair."""

	model_config = ConfigDict(frozen=True)

	plant_key: str
	plant_name: str
	stage: str
	bounds: dict[str, ParameterBounds]


class Violation(BaseModel):
	model_config = ConfigDict(frozen=True)

	parameter: str
	value: float
	direction: ViolationDirectionEnum
	bound: float
	unit: str = ""
	message: str

	@property
	def token(self) -> str:
		return f"{self.parameter}:{self.direction.value}"


class ViolationSet(BaseModel):
	"""Non-empty, ordered violations for one (plant, reading) pair."""

	model_config = ConfigDict(frozen=True)

	plant_id: str
	sensor_id: str
	stage: str
	reading_timestamp: datetime
	violations: list[Violation] = Field(min_length=1)


class Recipient(BaseModel):
	model_config = ConfigDict(frozen=True)

	id: str
	name: str
	role: str
	mobile: str | None = None


class SendResult(BaseModel):
	success: bool
	provider_response: Any | None = None
	error: str | None = None


class RecipientOutcome(BaseModel):
	recipient_id: str
	name: str
	mobile: str
	success: bool
	provider_response: Any | None = None
	error: str | None = None


class DeliveryReport(BaseModel):
	outcomes: list[RecipientOutcome] = Field(default_factory=list)
	sent_count: int = 0
	failed_count: int = 0

	@classmethod
	def from_outcomes(cls, outcomes: list[RecipientOutcome]) -> DeliveryReport:
		sent = sum(1 for outcome in outcomes if outcome.success)
		return cls(outcomes=outcomes, sent_count=sent, failed_count=len(outcomes) - sent)


class DeliveredAlertRecord(BaseModel):
	"""Audit + idempotency record written once per delivered alert."""

	model_config = ConfigDict(frozen=True)

	identity: str
	plant_id: str
	plant_name: str | None = None
	plot_number: str | None = None
	stage: str | None = None
	sensor_id: str
	reading_timestamp: datetime
	violations: list[Violation]
	recipients: list[RecipientOutcome]
	sent_at: datetime

	@property
	def record_key(self) -> str:
		return f"{self.identity}:{self.reading_timestamp.isoformat()}"


class DedupDecision(BaseModel):
	proceed: bool
	identity: str
	reason: str


class AlertStatus(StrEnum):
	skipped_no_plant = "skipped_no_plant"
	skipped_no_thresholds = "skipped_no_thresholds"
	context_unavailable = "context_unavailable"
	within_range = "within_range"
	suppressed = "suppressed"
	no_recipients = "no_recipients"
	dispatched = "dispatched"


class AlertOutcome(BaseModel):
	"""Result of running one reading through the pipeline."""

	status: AlertStatus
	sensor_id: str
	reading_timestamp: datetime
	plant_id: str | None = None
	identity: str | None = None
	violations: list[Violation] = Field(default_factory=list)
	message: str | None = None
	report: DeliveryReport | None = None
	record_persisted: bool = False
