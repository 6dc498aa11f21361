from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Mapping
from uuid import uuid4

from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from backoffice.errors import ApiError
from backoffice.settings import get_settings

bearer_scheme = HTTPBearer(auto_error=False)

TOKEN_TYPE_ACCESS = "access"

PERMISSION_ACTIONS: dict[str, tuple[str, ...]] = {
    "payroll": ("view", "approve", "send"),
    "table_bookings": ("view", "edit"),
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def empty_permissions() -> dict[str, dict[str, bool]]:
    return {module: {action: False for action in actions} for module, actions in PERMISSION_ACTIONS.items()}


def full_permissions() -> dict[str, dict[str, bool]]:
    return {module: {action: True for action in actions} for module, actions in PERMISSION_ACTIONS.items()}


def normalize_permissions(raw: Mapping[str, Any] | None) -> dict[str, dict[str, bool]]:
    normalized = empty_permissions()
    if not isinstance(raw, Mapping):
        return normalized

    for module, value in raw.items():
        if module not in normalized:
            continue
        actions = PERMISSION_ACTIONS[module]
        if isinstance(value, Mapping):
            granted = {action: bool(value.get(action)) for action in actions}
        else:
            granted = {action: bool(value) for action in actions}
        # Any mutating grant implies the module can be viewed.
        if any(granted[action] for action in actions if action != "view"):
            granted["view"] = True
        normalized[module] = granted
    return normalized


def has_permission(claims: Mapping[str, Any], module: str, action: str) -> bool:
    if action not in PERMISSION_ACTIONS.get(module, ()):
        return False
    if bool(claims.get("is_super_admin")):
        return True
    permissions = normalize_permissions(claims.get("permissions"))  # type: ignore[arg-type]
    return bool(permissions[module].get(action))


def create_access_token(
    *,
    sub: str,
    username: str,
    permissions: Mapping[str, Any] | None = None,
    is_super_admin: bool = False,
    expires_delta: timedelta | None = None,
) -> str:
    settings = get_settings()
    now = _utcnow()
    claims = {
        "sub": sub,
        "username": username,
        "is_super_admin": is_super_admin,
        "permissions": normalize_permissions(permissions),
        "iss": settings.jwt_issuer,
        "aud": settings.jwt_audience,
        "iat": int(now.timestamp()),
        "exp": int((now + (expires_delta or timedelta(minutes=settings.access_token_minutes))).timestamp()),
        "jti": str(uuid4()),
        "typ": TOKEN_TYPE_ACCESS,
    }
    return jwt.encode(claims, settings.jwt_secret, algorithm="HS256")


def decode_token(token: str) -> dict[str, Any]:
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=["HS256"],
            audience=settings.jwt_audience,
            issuer=settings.jwt_issuer,
            options={"require_sub": True, "require_iat": True, "require_exp": True},
        )
    except JWTError as exc:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token is invalid.") from exc

    if payload.get("typ") != TOKEN_TYPE_ACCESS:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token type is invalid.")
    subject = payload.get("sub")
    if not isinstance(subject, str) or not subject:
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Token subject is invalid.")
    return payload


def require_staff(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> dict[str, Any]:
    if credentials is None or credentials.scheme.lower() != "bearer":
        raise ApiError(status_code=401, code="INVALID_TOKEN", message="Missing bearer token.")

    payload = decode_token(credentials.credentials)
    request.state.actor_id = str(payload.get("username") or payload.get("sub"))
    return payload


def require_permission(module: str, action: str) -> Callable[..., dict[str, Any]]:
    if action not in PERMISSION_ACTIONS.get(module, ()):
        raise ValueError(f"Unknown permission: {module}.{action}")

    def _dependency(claims: dict[str, Any] = Depends(require_staff)) -> dict[str, Any]:
        if not has_permission(claims, module, action):
            raise ApiError(status_code=403, code="FORBIDDEN", message="Insufficient permissions.")
        return claims

    return _dependency


def actor_from_claims(claims: Mapping[str, Any]) -> str:
    return str(claims.get("username") or claims.get("sub") or "unknown")
