"""Operator routes around the alerting core: thresholds, recipients, retention."""

from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, Query, status

from soilwatch.auth.dependencies import require_role
from soilwatch.auth.models import User
from soilwatch.config import get_settings
from soilwatch.models.enums import UserRoleEnum
from soilwatch.routes.readings import get_alert_pipeline
from soilwatch.schemas.readings import (
	CleanupResponse,
	RecipientListResponse,
	RecipientOut,
	ThresholdsResponse,
)
from soilwatch.services.alert_service import AlertPipeline
from soilwatch.services.requirement_service import ResolveStatus

router = APIRouter(prefix="/alerts", tags=["alerts"])


def _map_error(exc: Exception) -> HTTPException:
	if isinstance(exc, LookupError):
		return HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc))
	if isinstance(exc, ValueError):
		return HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
	return HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="alert service failure")


@router.get("/thresholds/{sensor_id}", response_model=ThresholdsResponse)
async def get_sensor_thresholds(
	sensor_id: str,
	_user: User = Depends(require_role(UserRoleEnum.admin, UserRoleEnum.farmer, UserRoleEnum.viewer)),
	pipeline: AlertPipeline = Depends(get_alert_pipeline),
) -> ThresholdsResponse:
	try:
		plant, resolved = await pipeline.resolve_for_sensor(sensor_id)
	except Exception as exc:
		raise _map_error(exc) from exc
	if plant is None or resolved is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No plant bound to sensor {sensor_id}")
	if resolved.status == ResolveStatus.unavailable:
		raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="plant catalog unavailable")
	if resolved.thresholds is None:
		raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=resolved.detail or "thresholds not found")

	return ThresholdsResponse(
		sensor_id=sensor_id,
		plant_id=plant.id,
		plant_type=resolved.thresholds.plant_key,
		stage=resolved.thresholds.stage,
		bounds=resolved.thresholds.bounds,
	)


@router.get("/recipients", response_model=RecipientListResponse)
async def list_alert_recipients(
	_user: User = Depends(require_role(UserRoleEnum.admin)),
	pipeline: AlertPipeline = Depends(get_alert_pipeline),
) -> RecipientListResponse:
	try:
		recipients = await pipeline.list_recipients()
	except Exception as exc:
		raise _map_error(exc) from exc
	return RecipientListResponse(
		count=len(recipients),
		recipients=[
			RecipientOut(id=item.id, name=item.name, role=item.role, mobile=item.mobile or "")
			for item in recipients
		],
	)


@router.post("/cleanup", response_model=CleanupResponse)
async def cleanup_alert_records(
	days: int | None = Query(default=None, ge=1, le=3650),
	_user: User = Depends(require_role(UserRoleEnum.admin)),
	pipeline: AlertPipeline = Depends(get_alert_pipeline),
) -> CleanupResponse:
	retention_days = days or get_settings().alert_retention_days
	try:
		deleted, cutoff = await pipeline.cleanup_old_alerts(retention_days)
	except Exception as exc:
		raise _map_error(exc) from exc
	return CleanupResponse(deleted_count=deleted, cutoff=cutoff)
