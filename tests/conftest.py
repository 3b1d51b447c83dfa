"""Shared pytest fixtures: in-memory stores, fake SMS gateway, async test client."""

from __future__ import annotations

import asyncio
import uuid
from collections.abc import AsyncGenerator, Sequence
from contextlib import asynccontextmanager
from datetime import UTC, datetime, timedelta
from typing import Any
from unittest.mock import AsyncMock

import pytest
from httpx import ASGITransport, AsyncClient

from soilwatch.auth.dependencies import AuthPrincipal, get_auth_principal, get_current_user
from soilwatch.auth.jwt import create_access_token
from soilwatch.database import get_db
from soilwatch.main import app
from soilwatch.models.enums import UserRoleEnum
from soilwatch.routes.readings import get_alert_pipeline
from soilwatch.schemas.alerts import (
	CatalogEntry,
	DeliveredAlertRecord,
	PlantContext,
	Recipient,
	SendResult,
	SensorReading,
)
from soilwatch.services.alert_service import AlertPipeline
from soilwatch.services.dedup_service import AlertDeduplicator
from soilwatch.services.dispatch_service import NotificationDispatcher
from soilwatch.services.requirement_service import RequirementResolver, TTLCache

BASE_TIME = datetime(2026, 5, 4, 8, 0, tzinfo=UTC)

SEEDLING_STAGE: dict[str, Any] = {
	"stage": "Seedling",
	"lowN": "10",
	"highN": "25",
	"lowP": "10",
	"highP": "25",
	"lowK": "80",
	"highK": "150",
	"lowpH": "5.5",
	"highpH": "6.8",
	"lowTemp": "18",
	"highTemp": "30",
	"lowHum": "40",
	"highHum": "70",
}


class FakeClock:
	"""Mutable wall clock shared by the deduplicator and the pipeline."""

	def __init__(self, start: datetime = BASE_TIME) -> None:
		self.now = start

	def __call__(self) -> datetime:
		return self.now

	def advance(self, **kwargs: float) -> None:
		self.now = self.now + timedelta(**kwargs)


class FakeMonotonic:
	def __init__(self) -> None:
		self.value = 0.0

	def __call__(self) -> float:
		return self.value


class InMemoryPlantDirectory:
	def __init__(self, plants: Sequence[PlantContext] = ()) -> None:
		self.plants = {plant.sensor_id: plant for plant in plants}
		self.fail = False

	async def get_plant_for_sensor(self, sensor_id: str) -> PlantContext | None:
		if self.fail:
			raise ConnectionError("plant store offline")
		return self.plants.get(sensor_id)


class InMemoryStageCatalog:
	def __init__(self, entries: Sequence[CatalogEntry] = ()) -> None:
		self.entries = {entry.plant_key: entry for entry in entries}
		self.calls = 0
		self.fail = False

	async def get_catalog_entry(self, plant_key: str) -> CatalogEntry | None:
		self.calls += 1
		if self.fail:
			raise ConnectionError("catalog offline")
		return self.entries.get(plant_key)


class InMemoryRecipientDirectory:
	def __init__(self, recipients: Sequence[Recipient] = ()) -> None:
		self.recipients = list(recipients)
		self.fail = False

	async def list_recipients(self, roles: Sequence[str]) -> list[Recipient]:
		if self.fail:
			raise ConnectionError("user store offline")
		return [recipient for recipient in self.recipients if recipient.role in roles]


class InMemoryAlertStore:
	def __init__(self) -> None:
		self.records: dict[str, DeliveredAlertRecord] = {}
		self.fail_lookup = False
		self.fail_save = False

	async def latest_for_identity(self, identity: str) -> DeliveredAlertRecord | None:
		if self.fail_lookup:
			raise ConnectionError("alert store offline")
		matches = [record for record in self.records.values() if record.identity == identity]
		return max(matches, key=lambda record: record.sent_at, default=None)

	async def save(self, record: DeliveredAlertRecord) -> bool:
		if self.fail_save:
			raise ConnectionError("alert store offline")
		if record.record_key in self.records:
			return False
		self.records[record.record_key] = record
		return True

	async def delete_before(self, cutoff: datetime) -> int:
		stale = [key for key, record in self.records.items() if record.sent_at < cutoff]
		for key in stale:
			del self.records[key]
		return len(stale)


class InMemoryReadingStore:
	def __init__(self) -> None:
		self.readings: list[SensorReading] = []
		self.fail_lookup = False

	async def save_reading(self, reading: SensorReading) -> None:
		self.readings.append(reading)

	async def latest_reading(self, sensor_id: str) -> SensorReading | None:
		if self.fail_lookup:
			raise ConnectionError("reading store offline")
		matches = [reading for reading in self.readings if reading.sensor_id == sensor_id]
		return max(matches, key=lambda reading: reading.timestamp, default=None)


class FakeSmsGateway:
	def __init__(self) -> None:
		self.sent: list[tuple[str, str]] = []
		self.failing: set[str] = set()
		self.stalled: set[str] = set()

	async def send(self, address: str, text: str) -> SendResult:
		if address in self.stalled:
			await asyncio.sleep(60)
		self.sent.append((address, text))
		if address in self.failing:
			return SendResult(success=False, error="rejected by provider")
		return SendResult(success=True, provider_response={"status": "Queued"})


class FakePubSub:
	def __init__(self, payloads: list[dict[str, Any]]) -> None:
		self.payloads = payloads
		self.index = 0
		self.subscribed_channel: str | None = None
		self.unsubscribed_channel: str | None = None
		self.closed = False

	async def subscribe(self, channel: str) -> None:
		self.subscribed_channel = channel

	async def get_message(self, ignore_subscribe_messages: bool, timeout: float) -> dict[str, Any] | None:
		if self.index >= len(self.payloads):
			return None
		message = self.payloads[self.index]
		self.index += 1
		return message

	async def unsubscribe(self, channel: str) -> None:
		self.unsubscribed_channel = channel

	async def close(self) -> None:
		self.closed = True


class FakeRedis:
	def __init__(self, payloads: list[dict[str, Any]] | None = None) -> None:
		self.payloads = payloads or []
		self.publish = AsyncMock(return_value=1)
		self.ping = AsyncMock(return_value=True)
		self._counter: dict[str, int] = {}
		self.incr = AsyncMock(side_effect=self._incr)
		self.expire = AsyncMock(return_value=True)
		self.last_pubsub: FakePubSub | None = None

	async def _incr(self, key: str) -> int:
		value = self._counter.get(key, 0) + 1
		self._counter[key] = value
		return value

	def pubsub(self) -> FakePubSub:
		self.last_pubsub = FakePubSub(self.payloads)
		return self.last_pubsub


class FakeAsyncSession:
	def __init__(self) -> None:
		self.commit = AsyncMock()
		self.rollback = AsyncMock()
		self.close = AsyncMock()
		self.execute = AsyncMock()


def make_reading(
	parameters: dict[str, Any],
	*,
	sensor_id: str = "sensor-1",
	timestamp: datetime = BASE_TIME,
) -> SensorReading:
	return SensorReading(sensor_id=sensor_id, parameters=parameters, timestamp=timestamp)


@pytest.fixture
def clock() -> FakeClock:
	return FakeClock()


@pytest.fixture
def tomato_plant() -> PlantContext:
	return PlantContext(
		id="plant-1",
		sensor_id="sensor-1",
		plant_type="Tomato",
		plant_name="Tomato Bed A",
		status="Seedling",
		plot_number="3",
		location_zone="North",
	)


@pytest.fixture
def tomato_entry() -> CatalogEntry:
	return CatalogEntry(
		plant_key="tomato",
		name="Tomato",
		scientific_name="Solanum lycopersicum",
		stages=[SEEDLING_STAGE, {**SEEDLING_STAGE, "stage": "Fruiting", "lowK": "150", "highK": "250"}],
	)


@pytest.fixture
def plants(tomato_plant: PlantContext) -> InMemoryPlantDirectory:
	return InMemoryPlantDirectory([tomato_plant])


@pytest.fixture
def catalog(tomato_entry: CatalogEntry) -> InMemoryStageCatalog:
	return InMemoryStageCatalog([tomato_entry])


@pytest.fixture
def recipients() -> InMemoryRecipientDirectory:
	return InMemoryRecipientDirectory(
		[
			Recipient(id="u-1", name="Ana Admin", role="admin", mobile="09170000001"),
			Recipient(id="u-2", name="Fe Farmer", role="farmer", mobile="09170000002"),
			Recipient(id="u-3", name="No Phone", role="farmer", mobile=""),
			Recipient(id="u-4", name="Fin Ance", role="finance", mobile="09170000004"),
		]
	)


@pytest.fixture
def alert_store() -> InMemoryAlertStore:
	return InMemoryAlertStore()


@pytest.fixture
def reading_store() -> InMemoryReadingStore:
	return InMemoryReadingStore()


@pytest.fixture
def gateway() -> FakeSmsGateway:
	return FakeSmsGateway()


@pytest.fixture
def fake_redis() -> FakeRedis:
	return FakeRedis()


@pytest.fixture
def pipeline(
	plants: InMemoryPlantDirectory,
	catalog: InMemoryStageCatalog,
	recipients: InMemoryRecipientDirectory,
	alert_store: InMemoryAlertStore,
	reading_store: InMemoryReadingStore,
	gateway: FakeSmsGateway,
	fake_redis: FakeRedis,
	clock: FakeClock,
) -> AlertPipeline:
	return AlertPipeline(
		plants=plants,
		resolver=RequirementResolver(catalog, TTLCache(300.0)),
		deduplicator=AlertDeduplicator(alert_store, window=timedelta(hours=1), clock=clock),
		dispatcher=NotificationDispatcher(gateway, send_timeout_seconds=0.5),
		recipients=recipients,
		readings=reading_store,
		redis_client=fake_redis,
		clock=clock,
	)


def _user_stub(role: UserRoleEnum) -> Any:
	return type(
		"UserStub",
		(),
		{
			"id": uuid.uuid4(),
			"role": role,
			"is_active": True,
			"email": f"{role.value}@test.local",
		},
	)()


@asynccontextmanager
async def _noop_lifespan(_: Any) -> AsyncGenerator[None, None]:
	yield


@pytest.fixture
async def client(pipeline: AlertPipeline) -> AsyncGenerator[AsyncClient, None]:
	"""HTTPX async client with lifespan disabled, admin auth and the in-memory pipeline."""
	session = FakeAsyncSession()

	async def override_get_db() -> AsyncGenerator[Any, None]:
		yield session

	async def override_current_user() -> Any:
		return _user_stub(UserRoleEnum.admin)

	async def override_auth_principal() -> AuthPrincipal:
		return AuthPrincipal(
			auth_type="jwt",
			subject_id=uuid.uuid4(),
			role=UserRoleEnum.admin,
			scopes=set(),
		)

	app.dependency_overrides[get_db] = override_get_db
	app.dependency_overrides[get_current_user] = override_current_user
	app.dependency_overrides[get_auth_principal] = override_auth_principal
	app.dependency_overrides[get_alert_pipeline] = lambda: pipeline
	original_lifespan = app.router.lifespan_context
	app.router.lifespan_context = _noop_lifespan
	app.state.redis = None

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as test_client:
		yield test_client

	app.router.lifespan_context = original_lifespan
	app.dependency_overrides.clear()
	app.state.redis = None


@pytest.fixture
async def auth_client() -> AsyncGenerator[AsyncClient, None]:
	"""HTTPX async client with DB override only (real auth dependencies active)."""
	session = FakeAsyncSession()

	async def override_get_db() -> AsyncGenerator[Any, None]:
		yield session

	app.dependency_overrides[get_db] = override_get_db
	original_lifespan = app.router.lifespan_context
	app.router.lifespan_context = _noop_lifespan
	app.state.redis = None

	transport = ASGITransport(app=app)
	async with AsyncClient(transport=transport, base_url="http://test") as test_client:
		yield test_client

	app.router.lifespan_context = original_lifespan
	app.dependency_overrides.clear()


@pytest.fixture
def user_stub_factory():
	return _user_stub


@pytest.fixture
def auth_user_id() -> uuid.UUID:
	return uuid.UUID("11111111-1111-1111-1111-111111111111")


@pytest.fixture
def access_token(auth_user_id: uuid.UUID) -> str:
	return create_access_token(str(auth_user_id), expires_minutes=30)
