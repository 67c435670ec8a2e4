from datetime import datetime, timedelta, timezone
from typing import Any

import jwt

from app.core.config import settings

BLOB_TOKEN_TYPE = "blob_read"


def create_access_token(
    subject: str | Any,
    expires_delta: timedelta | None = None,
    roles: list[str] | None = None,
) -> str:
    """Mint a bearer token shaped like the identity provider's.

    Used by tests and local tooling; production tokens come from the
    provider and only need to be verifiable with the shared key.
    """
    if expires_delta is None:
        expires_delta = timedelta(minutes=settings.ACCESS_TOKEN_EXPIRE_MINUTES)
    expire = datetime.now(timezone.utc) + expires_delta
    to_encode: dict[str, Any] = {"exp": expire, "sub": str(subject)}
    if roles is not None:
        to_encode[settings.ROLE_CLAIM] = roles
    encoded_jwt = jwt.encode(to_encode, settings.SECRET_KEY, algorithm=settings.ALGORITHM)
    return encoded_jwt


def decode_access_token(token: str) -> dict[str, Any]:
    """Decode and verify a bearer token. Raises ``jwt.InvalidTokenError``."""
    return jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])


def create_blob_token(key: str, ttl_seconds: int) -> str:
    expire = datetime.now(timezone.utc) + timedelta(seconds=ttl_seconds)
    return jwt.encode(
        {"exp": expire, "key": key, "typ": BLOB_TOKEN_TYPE},
        settings.SECRET_KEY,
        algorithm=settings.ALGORITHM,
    )


def decode_blob_token(token: str) -> str:
    """Return the blob key a read token grants. Raises ``jwt.InvalidTokenError``."""
    payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
    if payload.get("typ") != BLOB_TOKEN_TYPE or not payload.get("key"):
        raise jwt.InvalidTokenError("Not a blob read token")
    return str(payload["key"])
