"""Sensor reading submission and manual re-check routes."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import APIRouter, Depends, HTTPException, Request, status

from soilwatch.auth.dependencies import AuthPrincipal, require_machine_scope, require_role
from soilwatch.auth.models import User
from soilwatch.models.enums import UserRoleEnum
from soilwatch.schemas.alerts import AlertOutcome, SensorReading
from soilwatch.schemas.readings import ReadingSubmission
from soilwatch.services.alert_service import AlertPipeline

router = APIRouter(prefix="/readings", tags=["readings"])


def get_alert_pipeline(request: Request) -> AlertPipeline:
	pipeline = getattr(request.app.state, "alert_pipeline", None)
	if pipeline is None:
		raise HTTPException(
			status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
			detail="alert pipeline is not ready",
		)
	return pipeline


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, LookupError):
		return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
	if isinstance(exc, ValueError):
		return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
	return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="reading failure")


@router.post("", response_model=AlertOutcome)
async def submit_reading(
	payload: ReadingSubmission,
	_principal: AuthPrincipal = Depends(require_machine_scope("ingest")),
	pipeline: AlertPipeline = Depends(get_alert_pipeline),
) -> AlertOutcome:
	timestamp = payload.timestamp or datetime.now(UTC)
	if timestamp.tzinfo is None:
		timestamp = timestamp.replace(tzinfo=UTC)
	reading = SensorReading(
		sensor_id=payload.sensor_id,
		parameters=payload.parameters,
		timestamp=timestamp,
	)
	try:
		return await pipeline.ingest(reading)
	except Exception as exc:
		raise _map_error(exc) from exc


@router.post("/{sensor_id}/check", response_model=AlertOutcome)
async def check_sensor(
	sensor_id: str,
	_user: User = Depends(require_role(UserRoleEnum.admin, UserRoleEnum.farmer)),
	pipeline: AlertPipeline = Depends(get_alert_pipeline),
) -> AlertOutcome:
	try:
		outcome = await pipeline.check_latest(sensor_id)
	except Exception as exc:
		raise _map_error(exc) from exc
	if outcome is None:
		raise HTTPException(
			status_code=status.HTTP_404_NOT_FOUND,
			detail=f"No readings found for sensor {sensor_id}",
		)
	return outcome
