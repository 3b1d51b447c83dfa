"""SMS text rendering for a violation set."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import UTC, datetime

from soilwatch.schemas.alerts import PlantContext, StageThresholds, Violation

DEFAULT_MAX_LENGTH = 320  # two SMS segments
ELLIPSIS = "..."
CLOSING_LINE = "Please check your farm immediately."


def _location(plant: PlantContext) -> str | None:
	if plant.plot_number and plant.location_zone:
		return f"Plot {plant.plot_number} ({plant.location_zone})"
	if plant.plot_number:
		return f"Plot {plant.plot_number}"
	return plant.location_zone


def format_alert_message(
	plant: PlantContext,
	thresholds: StageThresholds,
	violations: Sequence[Violation],
	*,
	max_length: int = DEFAULT_MAX_LENGTH,
	timestamp: datetime | None = None,
) -> str:
	"""Render the alert; ``timestamp`` is when the reading was taken."""
	stamp = (timestamp or datetime.now(UTC)).astimezone(UTC).strftime("%Y-%m-%d %H:%M UTC")
	lines = ["SOIL SENSOR ALERT", f"Plant: {plant.display_name}"]
	location = _location(plant)
	if location:
		lines.append(location)
	lines.append(f"Stage: {thresholds.stage}")
	lines.append(f"Time: {stamp}")
	lines.append("")
	lines.extend(f"{index}. {violation.message}" for index, violation in enumerate(violations, start=1))
	lines.append("")
	lines.append(CLOSING_LINE)

	message = "\n".join(lines)
	if len(message) > max_length:
		message = (message[: max(0, max_length - len(ELLIPSIS))] + ELLIPSIS)[: max(0, max_length)]
	return message
