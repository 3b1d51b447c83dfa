"""Stage requirement resolution with a time-bounded cache over the plant catalog."""

from __future__ import annotations

import time
from collections.abc import Callable, Hashable
from enum import StrEnum
from typing import Any, Generic, TypeVar

import structlog
from pydantic import BaseModel

from soilwatch.schemas.alerts import CatalogEntry, ParameterBounds, PlantContext, StageThresholds
from soilwatch.services.evaluator import coerce_numeric
from soilwatch.services.stores import StageCatalog

logger = structlog.get_logger("soilwatch.requirements")

DEFAULT_CACHE_TTL_SECONDS = 300.0

# threshold parameter -> (catalog low field, catalog high field, unit)
STAGE_BOUND_FIELDS: dict[str, tuple[str, str, str]] = {
	"nitrogen": ("lowN", "highN", "ppm"),
	"phosphorus": ("lowP", "highP", "ppm"),
	"potassium": ("lowK", "highK", "ppm"),
	"ph": ("lowpH", "highpH", ""),
	"temperature": ("lowTemp", "highTemp", "°C"),
	"humidity": ("lowHum", "highHum", "%"),
}

K = TypeVar("K", bound=Hashable)
V = TypeVar("V")


class TTLCache(Generic[K, V]):
	"""Map with a per-entry expiry; ``clock`` is injectable for tests.

	Reads and writes never await, so concurrent pipelines on one event loop
	see consistent entries without a lock.
	"""

	def __init__(self, ttl_seconds: float, clock: Callable[[], float] = time.monotonic):
		self.ttl_seconds = ttl_seconds
		self.clock = clock
		self._entries: dict[K, tuple[float, V]] = {}

	def get(self, key: K) -> V | None:
		entry = self._entries.get(key)
		if entry is None:
			return None
		expires_at, value = entry
		if self.clock() >= expires_at:
			self._entries.pop(key, None)
			return None
		return value

	def set(self, key: K, value: V) -> None:
		self._entries[key] = (self.clock() + self.ttl_seconds, value)

	def invalidate(self, key: K | None = None) -> None:
		if key is None:
			self._entries.clear()
		else:
			self._entries.pop(key, None)

	def __len__(self) -> int:
		return len(self._entries)


class ResolveStatus(StrEnum):
	resolved = "resolved"
	missing_context = "missing_context"
	not_found = "not_found"
	unavailable = "unavailable"


class ResolveResult(BaseModel):
	status: ResolveStatus
	thresholds: StageThresholds | None = None
	detail: str | None = None


def normalize_plant_key(plant_type: str) -> str:
	return plant_type.strip().lower()


def parse_stage_bounds(stage: dict[str, Any]) -> dict[str, ParameterBounds]:
	"""Convert catalog bound fields; a parameter with a non-numeric bound is left out."""
	bounds: dict[str, ParameterBounds] = {}
	for parameter, (low_field, high_field, unit) in STAGE_BOUND_FIELDS.items():
		low = coerce_numeric(stage.get(low_field))
		high = coerce_numeric(stage.get(high_field))
		if low is None or high is None:
			continue
		bounds[parameter] = ParameterBounds(min=low, max=high, unit=unit)
	return bounds


def match_stage(entry: CatalogEntry, stage_name: str) -> dict[str, Any] | None:
	wanted = stage_name.strip().lower()
	for stage in entry.stages:
		name = stage.get("stage")
		if isinstance(name, str) and name.strip().lower() == wanted:
			return stage
	return None


class RequirementResolver:
	"""Resolve a plant's current-stage thresholds, caching per (plant type, stage)."""

	def __init__(
		self,
		catalog: StageCatalog,
		cache: TTLCache[tuple[str, str], StageThresholds] | None = None,
	):
		self.catalog = catalog
		self.cache = cache if cache is not None else TTLCache(DEFAULT_CACHE_TTL_SECONDS)

	async def resolve(self, plant: PlantContext) -> ResolveResult:
		plant_type = (plant.plant_type or "").strip()
		stage_name = (plant.status or "").strip()
		if not plant_type or not stage_name:
			return ResolveResult(
				status=ResolveStatus.missing_context,
				detail="plant type or current stage is not set",
			)

		plant_key = normalize_plant_key(plant_type)
		cache_key = (plant_key, stage_name.lower())
		cached = self.cache.get(cache_key)
		if cached is not None:
			return ResolveResult(status=ResolveStatus.resolved, thresholds=cached)

		try:
			entry = await self.catalog.get_catalog_entry(plant_key)
		except Exception as exc:
			logger.warning("catalog_read_failed", plant_key=plant_key, error=str(exc))
			return ResolveResult(status=ResolveStatus.unavailable, detail=str(exc))

		if entry is None:
			return ResolveResult(
				status=ResolveStatus.not_found,
				detail=f"no catalog entry for plant type '{plant_key}'",
			)

		stage = match_stage(entry, stage_name)
		if stage is None:
			return ResolveResult(
				status=ResolveStatus.not_found,
				detail=f"stage '{stage_name}' not defined for plant type '{plant_key}'",
			)

		thresholds = StageThresholds(
			plant_key=plant_key,
			plant_name=entry.name,
			stage=str(stage.get("stage")),
			bounds=parse_stage_bounds(stage),
		)
		self.cache.set(cache_key, thresholds)
		return ResolveResult(status=ResolveStatus.resolved, thresholds=thresholds)
