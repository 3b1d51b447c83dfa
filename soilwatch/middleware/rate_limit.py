"""Redis-backed rate limiting middleware."""

from __future__ import annotations

from datetime import UTC, datetime

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from soilwatch.auth.dependencies import extract_identity_hint, extract_rate_limit_subject
from soilwatch.config import get_settings


class RateLimitMiddleware(BaseHTTPMiddleware):
	"""Per-minute quota per sensor (or client) on the /api surface."""

	async def dispatch(self, request: Request, call_next):  # type: ignore[override]
		if not request.url.path.startswith("/api/"):
			return await call_next(request)

		redis_client = getattr(request.app.state, "redis", None)
		if redis_client is None:
			return await call_next(request)

		settings = get_settings()
		identity = extract_identity_hint(request)
		quota = (
			settings.rate_limit_api_key_per_minute
			if identity == "api_key"
			else settings.rate_limit_user_per_minute
		)

		subject = extract_rate_limit_subject(request)
		minute_bucket = datetime.now(UTC).strftime("%Y%m%d%H%M")
		key = f"ratelimit:{subject}:{identity}:{minute_bucket}"
		current = await redis_client.incr(key)
		if current == 1:
			await redis_client.expire(key, 65)

		if current > quota:
			return JSONResponse(
				status_code=429,
				content={
					"detail": {
						"error": "rate_limited",
						"message": "Request quota exceeded",
						"subject": subject,
						"quota": quota,
					}
				},
			)

		return await call_next(request)
