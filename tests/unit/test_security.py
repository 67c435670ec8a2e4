"""Unit tests for the core security module (bearer and blob read tokens)."""

import uuid
from datetime import datetime, timedelta, timezone

import jwt
import pytest

from app.core.config import settings
from app.core.security import (
    create_access_token,
    create_blob_token,
    decode_access_token,
    decode_blob_token,
)


class TestAccessToken:
    def test_create_token_returns_string(self) -> None:
        token = create_access_token(subject="user-123", expires_delta=timedelta(hours=1))
        assert isinstance(token, str)

    def test_token_contains_subject(self) -> None:
        token = create_access_token(subject="user-abc", expires_delta=timedelta(hours=1))
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        assert payload["sub"] == "user-abc"

    def test_token_contains_expiration(self) -> None:
        token = create_access_token(subject="user-1", expires_delta=timedelta(minutes=30))
        payload = jwt.decode(token, settings.SECRET_KEY, algorithms=[settings.ALGORITHM])
        assert "exp" in payload

    def test_default_lifetime_comes_from_settings(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "ACCESS_TOKEN_EXPIRE_MINUTES", 5)
        before = datetime.now(timezone.utc)
        payload = decode_access_token(create_access_token(subject="user-1"))
        lifetime = payload["exp"] - before.timestamp()
        assert 4 * 60 <= lifetime <= 5 * 60 + 1

    def test_token_uses_configured_algorithm(
        self, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        monkeypatch.setattr(settings, "ALGORITHM", "HS512")
        token = create_access_token(subject="user-1")
        assert jwt.get_unverified_header(token)["alg"] == "HS512"
        assert decode_access_token(token)["sub"] == "user-1"

    def test_roles_go_into_the_role_claim(self) -> None:
        token = create_access_token(
            subject="officer-1", expires_delta=timedelta(hours=1), roles=["DICT_OFFICER"]
        )
        payload = decode_access_token(token)
        assert payload[settings.ROLE_CLAIM] == ["DICT_OFFICER"]

    def test_no_role_claim_without_roles(self) -> None:
        token = create_access_token(subject="user-1", expires_delta=timedelta(hours=1))
        assert settings.ROLE_CLAIM not in decode_access_token(token)

    def test_token_invalid_signature_raises(self) -> None:
        token = create_access_token(subject="user-1", expires_delta=timedelta(hours=1))
        with pytest.raises(jwt.InvalidSignatureError):
            jwt.decode(token, "wrong-secret-key", algorithms=[settings.ALGORITHM])

    def test_expired_token_raises(self) -> None:
        token = create_access_token(subject="user-1", expires_delta=timedelta(seconds=-1))
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_access_token(token)

    def test_subject_coerced_to_string(self) -> None:
        """create_access_token calls str(subject) on the input."""
        uid = uuid.uuid4()
        token = create_access_token(subject=uid, expires_delta=timedelta(hours=1))
        payload = decode_access_token(token)
        assert payload["sub"] == str(uid)


class TestBlobToken:
    def test_round_trip_returns_key(self) -> None:
        token = create_blob_token("private/u1/selfie/abc.png", ttl_seconds=60)
        assert decode_blob_token(token) == "private/u1/selfie/abc.png"

    def test_expired_blob_token_raises(self) -> None:
        token = create_blob_token("private/u1/selfie/abc.png", ttl_seconds=-1)
        with pytest.raises(jwt.ExpiredSignatureError):
            decode_blob_token(token)

    def test_access_token_is_not_a_blob_token(self) -> None:
        token = create_access_token(subject="user-1", expires_delta=timedelta(hours=1))
        with pytest.raises(jwt.InvalidTokenError):
            decode_blob_token(token)
