"""Threshold evaluation — pure comparison of a reading against stage bounds."""

from __future__ import annotations

import math
from typing import Any

from soilwatch.models.enums import ViolationDirectionEnum
from soilwatch.schemas.alerts import ParameterBounds, SensorReading, StageThresholds, Violation

# Fixed evaluation order; violation order (and so the alert identity) never
# depends on the order a gateway serialized its parameters in.
PARAMETER_ORDER: tuple[str, ...] = (
	"nitrogen",
	"phosphorus",
	"potassium",
	"ph",
	"temperature",
	"humidity",
	"moisture",
	"conductivity",
)

# reading parameter -> threshold parameter used when the reading's own name has no bound
PARAMETER_ALIASES: dict[str, str] = {
	"moisture": "humidity",
}

_IGNORED_KEYS = frozenset({"timestamp", "createdat", "sensorid", "sensor_id"})


def normalize_parameter(name: str) -> str:
	return name.strip().lower()


def coerce_numeric(value: Any) -> float | None:
	"""Return ``value`` as a finite float, or None when it is not numeric."""
	if value is None or isinstance(value, bool):
		return None
	try:
		number = float(value)
	except (TypeError, ValueError):
		return None
	if math.isnan(number) or math.isinf(number):
		return None
	return number


def _order_key(parameter: str) -> tuple[int, str]:
	try:
		return (PARAMETER_ORDER.index(parameter), parameter)
	except ValueError:
		return (len(PARAMETER_ORDER), parameter)


def _format_number(value: float) -> str:
	return f"{value:g}"


def _resolve_bounds(
	parameter: str,
	readings: dict[str, float],
	bounds: dict[str, ParameterBounds],
) -> ParameterBounds | None:
	direct = bounds.get(parameter)
	if direct is not None:
		return direct
	target = PARAMETER_ALIASES.get(parameter)
	if target is None or target in readings:
		# the reading carries the target parameter itself; it is checked on its own
		return None
	return bounds.get(target)


def _check(parameter: str, value: float, bound: ParameterBounds) -> Violation | None:
	if value < bound.min:
		direction, limit, word = ViolationDirectionEnum.BELOW, bound.min, "below"
	elif value > bound.max:
		direction, limit, word = ViolationDirectionEnum.ABOVE, bound.max, "above"
	else:
		return None
	unit = bound.unit
	return Violation(
		parameter=parameter,
		value=value,
		direction=direction,
		bound=limit,
		unit=unit,
		message=f"{parameter}: {_format_number(value)}{unit} ({word} {_format_number(limit)}{unit})",
	)


def evaluate(reading: SensorReading, thresholds: StageThresholds) -> list[Violation]:
	"""Return the out-of-range parameters of ``reading`` in fixed parameter order.

	Bounds are inclusive.  Parameters without a bound, and values that are not
	numeric, are skipped.  An empty list means the reading is within range.
	"""
	numeric: dict[str, float] = {}
	for raw_name, raw_value in reading.parameters.items():
		name = normalize_parameter(raw_name)
		if name in _IGNORED_KEYS:
			continue
		value = coerce_numeric(raw_value)
		if value is None:
			continue
		numeric[name] = value

	violations: list[Violation] = []
	for parameter in sorted(numeric, key=_order_key):
		bound = _resolve_bounds(parameter, numeric, thresholds.bounds)
		if bound is None:
			continue
		violation = _check(parameter, numeric[parameter], bound)
		if violation is not None:
			violations.append(violation)
	return violations
