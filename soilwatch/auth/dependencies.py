"""Authentication dependencies — operator JWTs, sensor-gateway API keys, role checks."""

from __future__ import annotations

import hashlib
import hmac
import re
import uuid
from dataclasses import dataclass
from datetime import UTC, datetime
from typing import Any, Callable

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from passlib.context import CryptContext
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from soilwatch.auth.jwt import AuthError, decode_access_token
from soilwatch.auth.models import APIKey, User
from soilwatch.config import get_settings
from soilwatch.database import get_db
from soilwatch.models.enums import UserRoleEnum

bearer_scheme = HTTPBearer(auto_error=False)
pwd_context = CryptContext(schemes=["bcrypt"], deprecated="auto")

MACHINE_SCOPES = frozenset({"ingest"})


@dataclass(slots=True)
class AuthPrincipal:
	auth_type: str
	subject_id: uuid.UUID
	role: UserRoleEnum
	scopes: set[str]
	api_key_id: uuid.UUID | None = None


def _raise_auth(exc: AuthError) -> HTTPException:
	return HTTPException(
		status_code=exc.status_code,
		detail={"error": exc.code, "message": exc.detail},
	)


def api_key_digest(plaintext: str) -> str:
	return hashlib.sha256(plaintext.encode("utf-8")).hexdigest()


def _coerce_scopes(raw: dict[str, Any] | None) -> set[str]:
	if raw is None:
		return set()
	scopes: set[str] = set()
	for key, value in raw.items():
		if isinstance(value, bool):
			if value:
				scopes.add(str(key))
			continue
		if isinstance(value, str) and value.strip().lower() in {"1", "true", "yes", "allow"}:
			scopes.add(str(key))
	return scopes


def extract_rate_limit_subject(request: Request) -> str:
	"""Sensor id when the path names one, otherwise the client address."""
	sensor_id = request.path_params.get("sensor_id")
	if not sensor_id:
		match = re.search(r"/api/v1/(?:readings|alerts/thresholds)/([^/]+)(?:/|$)", request.url.path)
		sensor_id = match.group(1) if match is not None else None
	if sensor_id:
		return f"sensor:{sensor_id}"
	host = request.client.host if request.client is not None else "unknown"
	return f"client:{host}"


def extract_identity_hint(request: Request) -> str:
	settings = get_settings()
	if request.headers.get(settings.api_key_header_name):
		return "api_key"
	if request.headers.get("authorization", "").lower().startswith("bearer "):
		return "jwt"
	return "anonymous"


async def _resolve_user_from_token(
	db: AsyncSession,
	credentials: HTTPAuthorizationCredentials | None,
) -> User:
	if credentials is None or credentials.scheme.lower() != "bearer":
		raise _raise_auth(AuthError(code="auth_required", detail="Bearer token is required"))

	try:
		payload = decode_access_token(credentials.credentials)
		user_id = uuid.UUID(str(payload["sub"]))
	except AuthError as exc:
		raise _raise_auth(exc) from exc
	except (ValueError, KeyError) as exc:
		raise _raise_auth(AuthError(code="token_invalid", detail="Token subject is invalid")) from exc

	row = await db.execute(select(User).where(User.id == user_id))
	user = row.scalar_one_or_none()
	if user is None or not user.is_active:
		raise _raise_auth(AuthError(code="user_invalid", detail="User is not active"))
	return user


async def get_current_user(
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> User:
	credentials = await bearer_scheme(request)
	return await _resolve_user_from_token(db, credentials)


def require_role(*allowed: UserRoleEnum) -> Callable[[User], User]:
	allowed_set = set(allowed)

	async def dependency(current_user: User = Depends(get_current_user)) -> User:
		if current_user.role not in allowed_set:
			raise HTTPException(
				status_code=status.HTTP_403_FORBIDDEN,
				detail={"error": "forbidden", "message": "Insufficient role"},
			)
		return current_user

	return dependency


async def _resolve_api_key(db: AsyncSession, plaintext_key: str) -> APIKey:
	digest = api_key_digest(plaintext_key)
	rows = await db.execute(select(APIKey).where(APIKey.is_active.is_(True)))
	for api_key in rows.scalars().all():
		stored_hash = api_key.key_hash
		hash_match = hmac.compare_digest(digest, stored_hash)
		bcrypt_match = False
		if not hash_match:
			try:
				bcrypt_match = pwd_context.verify(plaintext_key, stored_hash)
			except ValueError:
				bcrypt_match = False
		if not (hash_match or bcrypt_match):
			continue
		if api_key.expires_at is not None and api_key.expires_at <= datetime.now(UTC):
			raise _raise_auth(AuthError(code="api_key_expired", detail="API key expired"))
		return api_key
	raise _raise_auth(AuthError(code="api_key_invalid", detail="Invalid API key"))


async def get_auth_principal(
	request: Request,
	db: AsyncSession = Depends(get_db),
) -> AuthPrincipal:
	settings = get_settings()
	plaintext = request.headers.get(settings.api_key_header_name)

	if plaintext and plaintext.strip():
		api_key = await _resolve_api_key(db, plaintext.strip())
		row = await db.execute(select(User).where(User.id == api_key.user_id))
		owner = row.scalar_one_or_none()
		if owner is None or not owner.is_active:
			raise _raise_auth(AuthError(code="user_invalid", detail="API key owner is inactive"))
		return AuthPrincipal(
			auth_type="api_key",
			subject_id=owner.id,
			role=owner.role,
			scopes=_coerce_scopes(api_key.scopes),
			api_key_id=api_key.id,
		)

	credentials = await bearer_scheme(request)
	user = await _resolve_user_from_token(db, credentials)
	return AuthPrincipal(
		auth_type="jwt",
		subject_id=user.id,
		role=user.role,
		scopes=set(),
	)


def require_machine_scope(scope: str) -> Callable[[AuthPrincipal], AuthPrincipal]:
	"""API-key callers must carry ``scope``; JWT operators pass through."""
	if scope not in MACHINE_SCOPES:
		raise ValueError(f"unknown machine scope: {scope}")

	async def dependency(principal: AuthPrincipal = Depends(get_auth_principal)) -> AuthPrincipal:
		if principal.auth_type != "api_key":
			return principal
		if scope not in principal.scopes:
			raise HTTPException(
				status_code=status.HTTP_403_FORBIDDEN,
				detail={"error": "scope_missing", "message": f"Missing scope: {scope}"},
			)
		return principal

	return dependency
