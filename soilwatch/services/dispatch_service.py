"""Concurrent notification fan-out with per-recipient timeouts."""

from __future__ import annotations

import asyncio
from collections.abc import Sequence

import structlog

from soilwatch.schemas.alerts import DeliveryReport, Recipient, RecipientOutcome
from soilwatch.services.sms_gateway import SmsGateway

logger = structlog.get_logger("soilwatch.dispatch")


def eligible_recipients(recipients: Sequence[Recipient]) -> list[Recipient]:
	"""Drop recipients without a contact number; they are not delivery failures."""
	return [recipient for recipient in recipients if recipient.mobile and recipient.mobile.strip()]


class NotificationDispatcher:
	def __init__(self, gateway: SmsGateway, send_timeout_seconds: float = 10.0):
		self.gateway = gateway
		self.send_timeout_seconds = send_timeout_seconds

	async def dispatch(self, message: str, recipients: Sequence[Recipient]) -> DeliveryReport:
		targets = eligible_recipients(recipients)
		if not targets:
			return DeliveryReport.from_outcomes([])
		outcomes = await asyncio.gather(*(self._send_one(message, recipient) for recipient in targets))
		return DeliveryReport.from_outcomes(list(outcomes))

	async def _send_one(self, message: str, recipient: Recipient) -> RecipientOutcome:
		mobile = (recipient.mobile or "").strip()
		try:
			result = await asyncio.wait_for(
				self.gateway.send(mobile, message),
				timeout=self.send_timeout_seconds,
			)
		except TimeoutError:
			error = f"send timed out after {self.send_timeout_seconds:g}s"
			logger.warning("sms_send_failed", recipient_id=recipient.id, error=error)
			return RecipientOutcome(
				recipient_id=recipient.id,
				name=recipient.name,
				mobile=mobile,
				success=False,
				error=error,
			)
		except Exception as exc:
			logger.warning("sms_send_failed", recipient_id=recipient.id, error=str(exc))
			return RecipientOutcome(
				recipient_id=recipient.id,
				name=recipient.name,
				mobile=mobile,
				success=False,
				error=str(exc) or exc.__class__.__name__,
			)

		if not result.success:
			logger.warning("sms_send_failed", recipient_id=recipient.id, error=result.error)
		return RecipientOutcome(
			recipient_id=recipient.id,
			name=recipient.name,
			mobile=mobile,
			success=result.success,
			provider_response=result.provider_response,
			error=result.error,
		)
