"""Storage collaborators of the alerting pipeline and their SQLAlchemy implementations.

The pipeline depends only on the protocols; each SQL store opens a short
session per call from a shared ``async_sessionmaker`` so that one store
instance can serve concurrent sensor pipelines.
"""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime
from typing import Protocol

from sqlalchemy import delete, desc, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from soilwatch.auth.models import User
from soilwatch.models.alerts import DeliveredAlert
from soilwatch.models.catalog import PlantCatalogEntry
from soilwatch.models.enums import UserRoleEnum
from soilwatch.models.plants import Plant
from soilwatch.models.readings import SoilReading
from soilwatch.schemas.alerts import (
	CatalogEntry,
	DeliveredAlertRecord,
	PlantContext,
	Recipient,
	RecipientOutcome,
	SensorReading,
	Violation,
)

SessionFactory = async_sessionmaker[AsyncSession]


class PlantDirectory(Protocol):
	async def get_plant_for_sensor(self, sensor_id: str) -> PlantContext | None: ...


class StageCatalog(Protocol):
	async def get_catalog_entry(self, plant_key: str) -> CatalogEntry | None: ...


class RecipientDirectory(Protocol):
	async def list_recipients(self, roles: Sequence[str]) -> list[Recipient]: ...


class AlertStore(Protocol):
	async def latest_for_identity(self, identity: str) -> DeliveredAlertRecord | None: ...

	async def save(self, record: DeliveredAlertRecord) -> bool: ...

	async def delete_before(self, cutoff: datetime) -> int: ...


class ReadingStore(Protocol):
	async def save_reading(self, reading: SensorReading) -> None: ...

	async def latest_reading(self, sensor_id: str) -> SensorReading | None: ...


class SqlPlantDirectory:
	def __init__(self, session_factory: SessionFactory):
		self.session_factory = session_factory

	async def get_plant_for_sensor(self, sensor_id: str) -> PlantContext | None:
		async with self.session_factory() as session:
			row = await session.execute(select(Plant).where(Plant.sensor_id == sensor_id))
			plant = row.scalar_one_or_none()
		if plant is None:
			return None
		return PlantContext(
			id=str(plant.id),
			sensor_id=plant.sensor_id,
			plant_type=plant.plant_type,
			plant_name=plant.plant_name,
			status=plant.status,
			plot_number=plant.plot_number,
			location_zone=plant.location_zone,
		)


class SqlStageCatalog:
	def __init__(self, session_factory: SessionFactory):
		self.session_factory = session_factory

	async def get_catalog_entry(self, plant_key: str) -> CatalogEntry | None:
		async with self.session_factory() as session:
			row = await session.execute(
				select(PlantCatalogEntry).where(PlantCatalogEntry.plant_key == plant_key)
			)
			entry = row.scalar_one_or_none()
		if entry is None:
			return None
		return CatalogEntry(
			plant_key=entry.plant_key,
			name=entry.name,
			scientific_name=entry.scientific_name,
			stages=list(entry.stages or []),
		)


class SqlRecipientDirectory:
	def __init__(self, session_factory: SessionFactory):
		self.session_factory = session_factory

	async def list_recipients(self, roles: Sequence[str]) -> list[Recipient]:
		role_values = [UserRoleEnum(role) for role in roles if role in UserRoleEnum.__members__]
		if not role_values:
			return []
		stmt = (
			select(User)
			.where(
				User.role.in_(role_values),
				User.is_active.is_(True),
				User.mobile.is_not(None),
				User.mobile != "",
			)
			.order_by(User.created_at.asc())
		)
		async with self.session_factory() as session:
			rows = await session.execute(stmt)
			users = list(rows.scalars().all())
		return [
			Recipient(
				id=str(user.id),
				name=user.display_name or user.email or "Unknown",
				role=user.role.value,
				mobile=user.mobile,
			)
			for user in users
		]


class SqlAlertStore:
	def __init__(self, session_factory: SessionFactory):
		self.session_factory = session_factory

	async def latest_for_identity(self, identity: str) -> DeliveredAlertRecord | None:
		stmt = (
			select(DeliveredAlert)
			.where(DeliveredAlert.identity == identity)
			.order_by(desc(DeliveredAlert.sent_at))
			.limit(1)
		)
		async with self.session_factory() as session:
			row = await session.execute(stmt)
			alert = row.scalar_one_or_none()
		if alert is None:
			return None
		return DeliveredAlertRecord(
			identity=alert.identity,
			plant_id=alert.plant_id,
			plant_name=alert.plant_name,
			plot_number=alert.plot_number,
			stage=alert.stage,
			sensor_id=alert.sensor_id,
			reading_timestamp=alert.reading_timestamp,
			violations=[Violation.model_validate(item) for item in alert.violations],
			recipients=[RecipientOutcome.model_validate(item) for item in alert.recipients],
			sent_at=alert.sent_at,
		)

	async def save(self, record: DeliveredAlertRecord) -> bool:
		"""Insert the record; returns False when ``record_key`` already exists."""
		stmt = (
			insert(DeliveredAlert)
			.values(
				record_key=record.record_key,
				identity=record.identity,
				plant_id=record.plant_id,
				plant_name=record.plant_name,
				plot_number=record.plot_number,
				stage=record.stage,
				sensor_id=record.sensor_id,
				reading_timestamp=record.reading_timestamp,
				violations=[item.model_dump(mode="json") for item in record.violations],
				recipients=[item.model_dump(mode="json") for item in record.recipients],
				sent_at=record.sent_at,
			)
			.on_conflict_do_nothing(index_elements=[DeliveredAlert.record_key])
			.returning(DeliveredAlert.id)
		)
		async with self.session_factory() as session:
			async with session.begin():
				result = await session.execute(stmt)
				return result.scalar_one_or_none() is not None

	async def delete_before(self, cutoff: datetime) -> int:
		async with self.session_factory() as session:
			async with session.begin():
				result = await session.execute(
					delete(DeliveredAlert).where(DeliveredAlert.sent_at < cutoff)
				)
				return int(result.rowcount or 0)


class SqlReadingStore:
	def __init__(self, session_factory: SessionFactory):
		self.session_factory = session_factory

	async def save_reading(self, reading: SensorReading) -> None:
		async with self.session_factory() as session:
			async with session.begin():
				session.add(
					SoilReading(
						sensor_id=reading.sensor_id,
						timestamp=reading.timestamp,
						parameters=dict(reading.parameters),
					)
				)

	async def latest_reading(self, sensor_id: str) -> SensorReading | None:
		stmt = (
			select(SoilReading)
			.where(SoilReading.sensor_id == sensor_id)
			.order_by(desc(SoilReading.timestamp), desc(SoilReading.id))
			.limit(1)
		)
		async with self.session_factory() as session:
			row = await session.execute(stmt)
			reading = row.scalar_one_or_none()
		if reading is None:
			return None
		return SensorReading(
			sensor_id=reading.sensor_id,
			parameters=dict(reading.parameters),
			timestamp=reading.timestamp,
		)
