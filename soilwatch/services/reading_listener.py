"""Redis pub/sub subscription feeding sensor readings into the alert pipeline."""

from __future__ import annotations

import asyncio
import json
import math
from datetime import UTC, datetime
from typing import Any

import structlog
from redis.asyncio import Redis

from soilwatch.schemas.alerts import SensorReading
from soilwatch.services.alert_service import AlertPipeline

logger = structlog.get_logger("soilwatch.subscriber")

_ENVELOPE_KEYS = frozenset({"sensorId", "sensor_id", "timestamp", "parameters"})


def _parse_timestamp(raw: Any) -> datetime | None:
	if raw is None or raw == "":
		return None
	if isinstance(raw, bool):
		raise ValueError(f"unsupported timestamp: {raw!r}")
	if isinstance(raw, (int, float)) or (isinstance(raw, str) and raw.isdigit()):
		# gateways that key readings by Date.now() send epoch milliseconds
		millis = float(raw)
		if not math.isfinite(millis):
			raise ValueError(f"timestamp is not finite: {raw!r}")
		try:
			return datetime.fromtimestamp(millis / 1000.0, tz=UTC)
		except (OverflowError, OSError, ValueError) as exc:
			raise ValueError(f"timestamp out of range: {raw!r}") from exc
	if isinstance(raw, str):
		parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
		return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=UTC)
	raise ValueError(f"unsupported timestamp: {raw!r}")


def parse_reading_message(data: Any, received_at: datetime | None = None) -> SensorReading:
	"""Decode a ``{sensorId, parameters, timestamp?}`` message.

	Flat messages with the parameters at the top level are accepted as well.
	Raises ValueError on anything that cannot become a reading.
	"""
	if isinstance(data, bytes):
		data = data.decode("utf-8")
	payload = json.loads(data) if isinstance(data, str) else data
	if not isinstance(payload, dict):
		raise ValueError("reading message must be a JSON object")

	sensor_id = payload.get("sensorId") or payload.get("sensor_id")
	if not isinstance(sensor_id, str) or not sensor_id.strip():
		raise ValueError("reading message has no sensorId")

	parameters = payload.get("parameters")
	if parameters is None:
		parameters = {key: value for key, value in payload.items() if key not in _ENVELOPE_KEYS}
	if not isinstance(parameters, dict) or not parameters:
		raise ValueError("reading message has no parameters")

	timestamp = _parse_timestamp(payload.get("timestamp")) or received_at or datetime.now(UTC)
	return SensorReading(sensor_id=sensor_id.strip(), parameters=parameters, timestamp=timestamp)


class ReadingSubscriber:
	"""Consume the reading channel; each reading runs as its own task."""

	def __init__(
		self,
		redis_client: Redis,
		channel: str,
		pipeline: AlertPipeline,
		poll_timeout: float = 1.0,
	):
		self.redis_client = redis_client
		self.channel = channel
		self.pipeline = pipeline
		self.poll_timeout = poll_timeout
		self._tasks: set[asyncio.Task[Any]] = set()
		self._runner: asyncio.Task[None] | None = None
		self._stopping = asyncio.Event()

	def start(self) -> asyncio.Task[None]:
		self._runner = asyncio.create_task(self.run(), name="reading-subscriber")
		return self._runner

	async def stop(self) -> None:
		self._stopping.set()
		if self._runner is not None:
			try:
				await self._runner
			except Exception as exc:
				logger.error("reading_subscription_failed", channel=self.channel, error=str(exc))
		if self._tasks:
			await asyncio.gather(*self._tasks, return_exceptions=True)

	async def run(self) -> None:
		pubsub = self.redis_client.pubsub()
		await pubsub.subscribe(self.channel)
		logger.info("reading_subscription_started", channel=self.channel)
		try:
			while not self._stopping.is_set():
				try:
					message = await pubsub.get_message(ignore_subscribe_messages=True, timeout=self.poll_timeout)
				except Exception as exc:
					logger.warning("reading_subscription_poll_failed", channel=self.channel, error=str(exc))
					await asyncio.sleep(self.poll_timeout)
					continue
				if message is None:
					await asyncio.sleep(0.05)
					continue
				if message.get("type") != "message":
					continue
				try:
					self.handle_message(message.get("data"))
				except Exception as exc:
					logger.exception("reading_message_failed", channel=self.channel, error=str(exc))
		finally:
			await pubsub.unsubscribe(self.channel)
			await pubsub.close()
			logger.info("reading_subscription_stopped", channel=self.channel)

	def handle_message(self, data: Any) -> asyncio.Task[Any] | None:
		try:
			reading = parse_reading_message(data)
		except (ValueError, TypeError) as exc:
			logger.warning("reading_message_dropped", channel=self.channel, error=str(exc))
			return None
		task = asyncio.create_task(self.pipeline.ingest(reading))
		self._tasks.add(task)
		task.add_done_callback(self._on_task_done)
		return task

	def _on_task_done(self, task: asyncio.Task[Any]) -> None:
		self._tasks.discard(task)
		if not task.cancelled() and task.exception() is not None:
			logger.error("reading_task_failed", error=str(task.exception()))
