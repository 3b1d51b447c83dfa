"""Alert identity and suppression-window deduplication.

The delivered-alert store is the authority.  The local ``_recent`` map only
answers when the store cannot: a lookup failure falls back to it (still
sending unless this process delivered the same alert inside the window),
and a failed record write is remembered there so the same process does not
immediately re-alert.
"""

from __future__ import annotations

import hashlib
from collections.abc import Callable, Sequence
from datetime import UTC, datetime, timedelta

import structlog

from soilwatch.schemas.alerts import DedupDecision, DeliveredAlertRecord, Violation
from soilwatch.services.stores import AlertStore

logger = structlog.get_logger("soilwatch.dedup")

DEFAULT_SUPPRESSION_WINDOW = timedelta(hours=1)


def _utcnow() -> datetime:
	return datetime.now(UTC)


def compute_alert_identity(plant_id: str, violations: Sequence[Violation]) -> str:
	"""sha256 over the plant id and the sorted ``parameter:direction`` tokens.

	Values and timestamps do not enter the identity, so the same kind of
	violation on the same plant stays one alert while values drift.
	"""
	tokens = sorted({violation.token for violation in violations})
	material = f"{plant_id}|{','.join(tokens)}"
	return hashlib.sha256(material.encode("utf-8")).hexdigest()


class AlertDeduplicator:
	def __init__(
		self,
		store: AlertStore,
		window: timedelta = DEFAULT_SUPPRESSION_WINDOW,
		clock: Callable[[], datetime] = _utcnow,
	):
		self.store = store
		self.window = window
		self.clock = clock
		self._recent: dict[str, datetime] = {}

	async def should_notify(
		self,
		plant_id: str,
		violations: Sequence[Violation],
		reading_timestamp: datetime,
	) -> DedupDecision:
		identity = compute_alert_identity(plant_id, violations)
		now = self.clock()
		try:
			record = await self.store.latest_for_identity(identity)
		except Exception as exc:
			logger.warning(
				"dedup_lookup_failed",
				identity=identity,
				plant_id=plant_id,
				error=str(exc),
			)
			if self._seen_locally(identity, now):
				return DedupDecision(proceed=False, identity=identity, reason="delivered recently by this process")
			return DedupDecision(proceed=True, identity=identity, reason="store unavailable; failing open")

		if record is not None and now - record.sent_at < self.window:
			return DedupDecision(
				proceed=False,
				identity=identity,
				reason=f"already delivered at {record.sent_at.isoformat()}",
			)
		return DedupDecision(proceed=True, identity=identity, reason="not delivered within window")

	async def record_delivery(self, record: DeliveredAlertRecord) -> bool:
		"""Persist ``record``; returns False when the store write failed."""
		self._remember(record.identity, record.sent_at)
		try:
			inserted = await self.store.save(record)
		except Exception as exc:
			logger.error(
				"alert_record_write_failed",
				identity=record.identity,
				plant_id=record.plant_id,
				error=str(exc),
			)
			return False
		if not inserted:
			logger.info("alert_record_exists", identity=record.identity, record_key=record.record_key)
		return True

	async def purge_before(self, cutoff: datetime) -> int:
		return await self.store.delete_before(cutoff)

	def _seen_locally(self, identity: str, now: datetime) -> bool:
		sent_at = self._recent.get(identity)
		return sent_at is not None and now - sent_at < self.window

	def _remember(self, identity: str, sent_at: datetime) -> None:
		cutoff = sent_at - self.window
		for key in [key for key, value in self._recent.items() if value <= cutoff]:
			self._recent.pop(key, None)
		self._recent[identity] = sent_at
