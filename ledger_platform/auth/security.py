from __future__ import annotations

import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, Optional

import jwt
from passlib.context import CryptContext


_pwd = CryptContext(schemes=["pbkdf2_sha256"], deprecated="auto")
_JWT_ALG = "HS256"
DEFAULT_TOKEN_TTL = timedelta(hours=24)


def _debug(msg: str) -> None:
    print(f"[auth] {msg}")


def hash_password(password: str) -> str:
    if not password:
        raise ValueError("password_blank")
    return _pwd.hash(password)


def verify_password(password: str, password_hash: str) -> bool:
    if not password or not password_hash:
        return False
    try:
        return _pwd.verify(password, password_hash)
    except ValueError:
        # Unrecognized / corrupt hash
        return False


def extract_from_header(header_value: Optional[str]) -> Optional[str]:
    """Pull the token out of an Authorization header value.

    Accepts `Bearer <token>` and, for older clients, a bare token. Returns None for
    an absent/blank header or a value that is neither of those shapes.
    """
    raw = (header_value or "").strip()
    if not raw:
        return None

    parts = raw.split()
    if parts[0].lower() == "bearer":
        if len(parts) != 2:
            return None
        return parts[1]

    if len(parts) == 1:
        return parts[0]
    return None


class TokenCodec:
    """Signs and verifies session assertions (HS256 JWTs).

    Claims always carry `sub`, `iat`, `exp` and a random `jti`, the latter being the
    key of the server-side revocation set. `verify` never raises: any malformed,
    tampered or expired token comes back as None.
    """

    def __init__(
        self,
        secret: str,
        *,
        algorithm: str = _JWT_ALG,
        default_ttl: timedelta = DEFAULT_TOKEN_TTL,
    ):
        if not secret:
            raise ValueError("jwt_secret_blank")
        self._secret = secret
        self.algorithm = algorithm
        self.default_ttl = default_ttl

    def issue(self, claims: Dict[str, Any], ttl: Optional[timedelta] = None) -> str:
        if not claims.get("sub"):
            raise ValueError("token_missing_sub")

        now = datetime.now(timezone.utc)
        exp = now + (ttl if ttl is not None else self.default_ttl)

        payload: Dict[str, Any] = dict(claims)
        payload["sub"] = str(payload["sub"])
        payload["iat"] = int(now.timestamp())
        payload["exp"] = int(exp.timestamp())
        payload.setdefault("jti", uuid.uuid4().hex)
        return jwt.encode(payload, self._secret, algorithm=self.algorithm)

    def verify(self, token: Optional[str]) -> Optional[Dict[str, Any]]:
        if not token:
            return None
        try:
            payload = jwt.decode(
                token,
                self._secret,
                algorithms=[self.algorithm],
                options={"require": ["sub", "iat", "exp", "jti"]},
            )
        except jwt.ExpiredSignatureError:
            _debug("Token verification failed: expired")
            return None
        except jwt.InvalidSignatureError:
            _debug("Token verification failed: bad_signature")
            return None
        except jwt.InvalidTokenError as e:
            _debug(f"Token verification failed: {type(e).__name__}")
            return None

        if not str(payload.get("sub") or "").strip():
            _debug("Token verification failed: blank_sub")
            return None
        return payload

    def issue_for_user(self, user: Dict[str, Any], ttl: Optional[timedelta] = None) -> str:
        return self.issue(
            {
                "sub": str(user["user_id"]),
                "username": str(user["username"]),
                "role": str(user["role"]),
            },
            ttl=ttl,
        )
