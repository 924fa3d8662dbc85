"""Bearer credential handling.

Credentials are issued elsewhere; this module only verifies the signature
and reads the subject (user id) plus optional profile claims.
"""

from __future__ import annotations

import time
from dataclasses import dataclass
from typing import Any, Dict, Optional

import jwt

from .config import Settings
from .errors import AuthenticationError


@dataclass(frozen=True, slots=True)
class Principal:
    user_id: str
    display_name: str | None = None
    cohort: str | None = None
    avatar_ref: str | None = None


def decode_token(token: str, settings: Settings) -> Principal:
    if not token:
        raise AuthenticationError("missing credential")
    try:
        claims = jwt.decode(
            token,
            settings.jwt_secret,
            algorithms=[settings.jwt_algorithm],
            options={"require": ["sub"]},
        )
    except jwt.ExpiredSignatureError as exc:
        raise AuthenticationError("credential expired") from exc
    except jwt.PyJWTError as exc:
        raise AuthenticationError("invalid credential") from exc

    user_id = claims.get("sub")
    if not isinstance(user_id, str) or not user_id:
        raise AuthenticationError("invalid credential")
    return Principal(
        user_id=user_id,
        display_name=claims.get("name"),
        cohort=claims.get("cohort"),
        avatar_ref=claims.get("avatar"),
    )


def bearer_token(authorization: Optional[str]) -> str:
    """Extract the token from an `Authorization: Bearer <token>` header."""
    if not authorization:
        raise AuthenticationError("missing credential")
    scheme, _, token = authorization.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthenticationError("missing credential")
    return token.strip()


def issue_token(
    user_id: str,
    settings: Settings,
    *,
    ttl_seconds: int = 3600,
    **claims: Any,
) -> str:
    """Mint a credential; used by tests and local tooling."""
    now = int(time.time())
    payload: Dict[str, Any] = {"sub": user_id, "iat": now, "exp": now + ttl_seconds}
    payload.update({key: value for key, value in claims.items() if value is not None})
    return jwt.encode(payload, settings.jwt_secret, algorithm=settings.jwt_algorithm)


__all__ = ["Principal", "decode_token", "bearer_token", "issue_token"]
