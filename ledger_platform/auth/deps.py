from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional, Tuple

from fastapi import Depends, Request

from ledger_platform.api.errors import ApiError
from ledger_platform.db import Store

from .crud import get_user_by_id, is_token_revoked
from .security import TokenCodec, extract_from_header


ROLE_RANK = {"user": 0, "admin": 1}


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    username: str
    role: str
    token_id: str
    claims: Dict[str, Any]

    @property
    def is_admin(self) -> bool:
        return self.role == "admin"

    @property
    def expires_at(self) -> int:
        return int(self.claims["exp"])


def _unauthorized(reason: str, message: str) -> ApiError:
    return ApiError(401, message, error=reason, headers={"WWW-Authenticate": "Bearer"})


def _components(request: Request) -> Tuple[TokenCodec, Store]:
    codec = getattr(request.app.state, "codec", None)
    store = getattr(request.app.state, "store", None)
    if codec is None or store is None:
        # Misconfiguration, not an auth failure.
        raise ApiError(500, "server_config_missing", error="server_config_missing")
    return codec, store


def _authenticate(request: Request) -> CurrentUser:
    """Run the token pipeline for one request.

    missing header -> 401 missing
    unusable header -> 401 malformed
    bad/expired/revoked token or unknown/inactive account -> 401 invalid_or_expired
    """
    codec, store = _components(request)

    header = request.headers.get("authorization")
    if not (header or "").strip():
        raise _unauthorized("missing", "Authorization header is required")

    token = extract_from_header(header)
    if not token:
        raise _unauthorized("malformed", "Invalid authorization format")

    claims = codec.verify(token)
    if claims is None:
        raise _unauthorized("invalid_or_expired", "Invalid or expired token")

    user_id = str(claims["sub"])
    jti = str(claims["jti"])

    def _lookup(conn: Any) -> Tuple[bool, Optional[Dict[str, Any]]]:
        if is_token_revoked(conn, jti):
            return True, None
        row = get_user_by_id(conn, user_id)
        return False, (dict(row) if row is not None else None)

    revoked, row = store.run(_lookup)
    if revoked:
        _debug("Rejected revoked token")
        raise _unauthorized("invalid_or_expired", "Invalid or expired token")
    if row is None or int(row.get("is_active") or 0) != 1:
        _debug("Rejected token for unknown or inactive account")
        raise _unauthorized("invalid_or_expired", "Invalid or expired token")

    # The account row is authoritative for role so demotions apply immediately.
    return CurrentUser(
        user_id=user_id,
        username=str(row["username"]),
        role=str(row["role"]),
        token_id=jti,
        claims=claims,
    )


def get_current_user(request: Request) -> CurrentUser:
    """Mandatory gate: reject the request unless it carries a valid token."""
    user = _authenticate(request)
    request.state.user = user
    return user


def get_optional_user(request: Request) -> Optional[CurrentUser]:
    """Optional gate: same pipeline, but any auth failure means anonymous.

    Configuration and store faults still surface as 500s.
    """
    try:
        user = _authenticate(request)
    except ApiError as e:
        if e.status_code != 401:
            raise
        request.state.user = None
        return None
    request.state.user = user
    return user


def require_role(min_role: str) -> Callable[..., CurrentUser]:
    """Role gate factory; runs after the mandatory gate."""
    if min_role not in ROLE_RANK:
        raise ValueError(f"unknown role: {min_role}")
    needed = ROLE_RANK[min_role]

    def _dep(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if ROLE_RANK.get(user.role, -1) < needed:
            raise ApiError(403, f"{min_role} role required", error="insufficient_role")
        return user

    return _dep


require_admin = require_role("admin")
