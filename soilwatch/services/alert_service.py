"""Threshold-alert orchestration: resolve → evaluate → dedupe → format → dispatch → persist.

Every trigger (HTTP submission, manual re-check, Redis reading subscription)
ends in ``AlertPipeline.on_reading`` so that alerting behaves the same way
regardless of where a reading came from.  Nothing here raises to the caller;
each short-circuit returns an ``AlertOutcome`` describing why it stopped.
"""

from __future__ import annotations

import asyncio
import json
from collections.abc import AsyncIterator, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta

import structlog
from redis.asyncio import Redis

from soilwatch.config import Settings
from soilwatch.schemas.alerts import (
	AlertOutcome,
	AlertStatus,
	DeliveredAlertRecord,
	PlantContext,
	Recipient,
	SensorReading,
	ViolationSet,
)
from soilwatch.services.dedup_service import AlertDeduplicator
from soilwatch.services.dispatch_service import NotificationDispatcher, eligible_recipients
from soilwatch.services.evaluator import evaluate
from soilwatch.services.formatter import DEFAULT_MAX_LENGTH, format_alert_message
from soilwatch.services.requirement_service import RequirementResolver, ResolveResult, ResolveStatus, TTLCache
from soilwatch.services.sms_gateway import SemaphoreSmsGateway, SmsGateway
from soilwatch.services.stores import (
	PlantDirectory,
	ReadingStore,
	RecipientDirectory,
	SessionFactory,
	SqlAlertStore,
	SqlPlantDirectory,
	SqlReadingStore,
	SqlRecipientDirectory,
	SqlStageCatalog,
)

logger = structlog.get_logger("soilwatch.alerts")

DEFAULT_RECIPIENT_ROLES: tuple[str, ...] = ("admin", "farmer")


def _utcnow() -> datetime:
	return datetime.now(UTC)


@dataclass(slots=True)
class _SensorSlot:
	lock: asyncio.Lock = field(default_factory=asyncio.Lock)
	users: int = 0


class AlertPipeline:
	def __init__(
		self,
		*,
		plants: PlantDirectory,
		resolver: RequirementResolver,
		deduplicator: AlertDeduplicator,
		dispatcher: NotificationDispatcher,
		recipients: RecipientDirectory,
		readings: ReadingStore,
		recipient_roles: Sequence[str] = DEFAULT_RECIPIENT_ROLES,
		max_message_length: int = DEFAULT_MAX_LENGTH,
		redis_client: Redis | None = None,
		events_channel: str = "alerts:live",
		clock: Callable[[], datetime] = _utcnow,
	):
		self.plants = plants
		self.resolver = resolver
		self.deduplicator = deduplicator
		self.dispatcher = dispatcher
		self.recipients = recipients
		self.readings = readings
		self.recipient_roles = tuple(recipient_roles)
		self.max_message_length = max_message_length
		self.redis_client = redis_client
		self.events_channel = events_channel
		self.clock = clock
		self._sensor_slots: dict[str, _SensorSlot] = {}

	async def ingest(self, reading: SensorReading) -> AlertOutcome:
		"""Store a newly received reading, then run it through the pipeline."""
		async with self._sensor_turn(reading.sensor_id):
			try:
				await self.readings.save_reading(reading)
			except Exception as exc:
				logger.warning("reading_store_failed", sensor_id=reading.sensor_id, error=str(exc))
			return await self._process(reading.sensor_id, reading)

	async def check_latest(self, sensor_id: str) -> AlertOutcome | None:
		"""Re-run the pipeline on the sensor's latest stored reading; None if it has none."""
		try:
			reading = await self.readings.latest_reading(sensor_id)
		except Exception as exc:
			logger.warning("reading_lookup_failed", sensor_id=sensor_id, error=str(exc))
			return AlertOutcome(
				status=AlertStatus.context_unavailable,
				sensor_id=sensor_id,
				reading_timestamp=self.clock(),
				message=str(exc),
			)
		if reading is None:
			return None
		return await self.on_reading(sensor_id, reading)

	async def on_reading(self, sensor_id: str, reading: SensorReading) -> AlertOutcome:
		async with self._sensor_turn(sensor_id):
			return await self._process(sensor_id, reading)

	@asynccontextmanager
	async def _sensor_turn(self, sensor_id: str) -> AsyncIterator[None]:
		# one lock per sensor keeps its readings in arrival order; dropped once nobody holds or waits on it
		slot = self._sensor_slots.get(sensor_id)
		if slot is None:
			slot = self._sensor_slots[sensor_id] = _SensorSlot()
		slot.users += 1
		try:
			async with slot.lock:
				yield
		finally:
			slot.users -= 1
			if slot.users == 0:
				self._sensor_slots.pop(sensor_id, None)

	async def resolve_for_sensor(self, sensor_id: str) -> tuple[PlantContext | None, ResolveResult | None]:
		plant = await self.plants.get_plant_for_sensor(sensor_id)
		if plant is None:
			return None, None
		return plant, await self.resolver.resolve(plant)

	async def list_recipients(self) -> list[Recipient]:
		return eligible_recipients(await self.recipients.list_recipients(self.recipient_roles))

	async def cleanup_old_alerts(self, days: int) -> tuple[int, datetime]:
		cutoff = self.clock() - timedelta(days=days)
		deleted = await self.deduplicator.purge_before(cutoff)
		logger.info("alert_records_purged", deleted_count=deleted, cutoff=cutoff.isoformat())
		return deleted, cutoff

	async def _process(self, sensor_id: str, reading: SensorReading) -> AlertOutcome:
		log = logger.bind(sensor_id=sensor_id, reading_timestamp=reading.timestamp.isoformat())

		def outcome(status: AlertStatus, **fields: object) -> AlertOutcome:
			return AlertOutcome(
				status=status,
				sensor_id=sensor_id,
				reading_timestamp=reading.timestamp,
				**fields,
			)

		try:
			plant = await self.plants.get_plant_for_sensor(sensor_id)
		except Exception as exc:
			log.warning("plant_lookup_failed", error=str(exc))
			return outcome(AlertStatus.context_unavailable, message=str(exc))
		if plant is None:
			log.info("reading_skipped", reason="no plant bound to sensor")
			return outcome(AlertStatus.skipped_no_plant)

		resolved = await self.resolver.resolve(plant)
		if resolved.status == ResolveStatus.unavailable:
			log.warning("thresholds_unavailable", plant_id=plant.id, error=resolved.detail)
			return outcome(AlertStatus.context_unavailable, plant_id=plant.id, message=resolved.detail)
		if resolved.thresholds is None:
			log.info("reading_skipped", plant_id=plant.id, reason=resolved.detail)
			return outcome(AlertStatus.skipped_no_thresholds, plant_id=plant.id, message=resolved.detail)
		thresholds = resolved.thresholds

		violations = evaluate(reading, thresholds)
		if not violations:
			log.debug("reading_within_range", plant_id=plant.id)
			return outcome(AlertStatus.within_range, plant_id=plant.id)

		violation_set = ViolationSet(
			plant_id=plant.id,
			sensor_id=sensor_id,
			stage=thresholds.stage,
			reading_timestamp=reading.timestamp,
			violations=violations,
		)
		decision = await self.deduplicator.should_notify(plant.id, violation_set.violations, reading.timestamp)
		if not decision.proceed:
			log.info("alert_suppressed", plant_id=plant.id, identity=decision.identity, reason=decision.reason)
			return outcome(
				AlertStatus.suppressed,
				plant_id=plant.id,
				identity=decision.identity,
				violations=violations,
				message=decision.reason,
			)

		text = format_alert_message(
			plant,
			thresholds,
			violation_set.violations,
			max_length=self.max_message_length,
			timestamp=reading.timestamp,
		)

		try:
			directory = await self.recipients.list_recipients(self.recipient_roles)
		except Exception as exc:
			log.error("recipient_lookup_failed", plant_id=plant.id, error=str(exc))
			directory = []
		targets = eligible_recipients(directory)
		if not targets:
			log.warning("alert_not_sent", plant_id=plant.id, identity=decision.identity, reason="no eligible recipients")
			return outcome(
				AlertStatus.no_recipients,
				plant_id=plant.id,
				identity=decision.identity,
				violations=violations,
				message=text,
			)

		report = await self.dispatcher.dispatch(text, targets)
		record = DeliveredAlertRecord(
			identity=decision.identity,
			plant_id=plant.id,
			plant_name=plant.display_name,
			plot_number=plant.plot_number,
			stage=thresholds.stage,
			sensor_id=sensor_id,
			reading_timestamp=reading.timestamp,
			violations=violation_set.violations,
			recipients=report.outcomes,
			sent_at=self.clock(),
		)
		persisted = await self.deduplicator.record_delivery(record)
		await self._publish_event(record, report.sent_count, report.failed_count)

		log.info(
			"alert_dispatched",
			plant_id=plant.id,
			identity=decision.identity,
			violation_count=len(violations),
			sent_count=report.sent_count,
			failed_count=report.failed_count,
			record_persisted=persisted,
		)
		return outcome(
			AlertStatus.dispatched,
			plant_id=plant.id,
			identity=decision.identity,
			violations=violations,
			message=text,
			report=report,
			record_persisted=persisted,
		)

	async def _publish_event(self, record: DeliveredAlertRecord, sent_count: int, failed_count: int) -> None:
		if self.redis_client is None:
			return
		payload = {
			"event_type": "alert_dispatched",
			"identity": record.identity,
			"plant_id": record.plant_id,
			"plant_name": record.plant_name,
			"plot_number": record.plot_number,
			"stage": record.stage,
			"sensor_id": record.sensor_id,
			"violations": [violation.model_dump(mode="json") for violation in record.violations],
			"sent_count": sent_count,
			"failed_count": failed_count,
			"sent_at": record.sent_at.isoformat(),
		}
		try:
			await self.redis_client.publish(self.events_channel, json.dumps(payload))
		except Exception as exc:
			logger.warning("alert_event_publish_failed", identity=record.identity, error=str(exc))


def build_alert_pipeline(
	settings: Settings,
	session_factory: SessionFactory,
	*,
	redis_client: Redis | None = None,
	gateway: SmsGateway | None = None,
) -> AlertPipeline:
	"""Wire the SQL stores, catalog cache and SMS gateway from settings."""
	sms_gateway = gateway or SemaphoreSmsGateway(
		settings.sms_api_key,
		settings.sms_api_url,
		sender_name=settings.sms_sender_name,
		timeout_seconds=settings.sms_timeout_seconds,
	)
	return AlertPipeline(
		plants=SqlPlantDirectory(session_factory),
		resolver=RequirementResolver(
			SqlStageCatalog(session_factory),
			TTLCache(settings.threshold_cache_ttl_seconds),
		),
		deduplicator=AlertDeduplicator(
			SqlAlertStore(session_factory),
			window=timedelta(minutes=settings.alert_suppression_window_minutes),
		),
		dispatcher=NotificationDispatcher(sms_gateway, settings.sms_timeout_seconds),
		recipients=SqlRecipientDirectory(session_factory),
		readings=SqlReadingStore(session_factory),
		recipient_roles=settings.alert_recipient_roles,
		max_message_length=settings.alert_max_message_length,
		redis_client=redis_client,
		events_channel=settings.alert_events_channel,
	)
