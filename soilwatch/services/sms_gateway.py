"""Outbound SMS transport: Semaphore HTTP API client."""

from __future__ import annotations

from typing import Protocol

import httpx

from soilwatch.schemas.alerts import SendResult


class SmsGateway(Protocol):
	async def send(self, address: str, text: str) -> SendResult: ...


class SemaphoreSmsGateway:
	"""Sends one message per call; transport and provider errors become failed results."""

	def __init__(
		self,
		api_key: str,
		api_url: str,
		*,
		sender_name: str = "",
		timeout_seconds: float = 10.0,
		client: httpx.AsyncClient | None = None,
	):
		self.api_key = api_key
		self.api_url = api_url
		self.sender_name = sender_name
		self._client = client or httpx.AsyncClient(timeout=timeout_seconds)

	async def send(self, address: str, text: str) -> SendResult:
		if not self.api_key:
			return SendResult(success=False, error="sms api key is not configured")

		body: dict[str, str] = {
			"apikey": self.api_key,
			"number": address,
			"message": text,
		}
		if self.sender_name:
			body["sendername"] = self.sender_name

		try:
			response = await self._client.post(self.api_url, json=body)
			response.raise_for_status()
		except httpx.HTTPStatusError as exc:
			detail = exc.response.text[:200]
			return SendResult(success=False, error=f"gateway returned {exc.response.status_code}: {detail}")
		except httpx.HTTPError as exc:
			return SendResult(success=False, error=str(exc) or exc.__class__.__name__)

		try:
			payload = response.json()
		except ValueError:
			payload = response.text
		return SendResult(success=True, provider_response=payload)

	async def aclose(self) -> None:
		await self._client.aclose()
