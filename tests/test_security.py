"""Tests for password hashing, tokens and revocation."""

from datetime import datetime, timedelta, timezone

import jwt
import pytest

import security
import settings
from errors import AuthenticationError
from schemas import Role


class TestPasswords:
    def test_hash_round_trip(self):
        hashed = security.hash_password("s3cret-pass")
        assert hashed != "s3cret-pass"
        assert security.check_password("s3cret-pass", hashed)
        assert not security.check_password("wrong", hashed)

    def test_missing_hash_never_matches(self):
        assert not security.check_password("anything", "")


class TestTokens:
    def test_authenticate_returns_principal(self, db):
        token = security.create_access_token("abc", Role.SELLER)
        assert security.authenticate(db, token) == security.Principal(id="abc", role=Role.SELLER)

    def test_role_case_is_normalized(self, db):
        token = security.create_access_token("abc", "Admin")
        assert security.authenticate(db, token).role == Role.ADMIN

    def test_expired_token(self, db, monkeypatch):
        monkeypatch.setattr(settings, "JWT_EXPIRES_MINUTES", -1)
        token = security.create_access_token("abc", Role.BUYER)
        with pytest.raises(AuthenticationError, match="expired"):
            security.authenticate(db, token)

    def test_foreign_signature(self, db):
        token = jwt.encode({"sub": "abc", "role": "admin", "jti": "x", "exp": 4102444800}, "other-secret",
                           algorithm="HS256")
        with pytest.raises(AuthenticationError):
            security.authenticate(db, token)

    def test_unknown_role_claim(self, db):
        token = jwt.encode({"sub": "abc", "role": "root", "jti": "x", "exp": 4102444800},
                           settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)
        with pytest.raises(AuthenticationError):
            security.authenticate(db, token)


class TestRevocation:
    def test_revoked_token_is_rejected(self, db):
        token = security.create_access_token("abc", Role.BUYER)
        security.revoke_token(db, token)

        with pytest.raises(AuthenticationError, match="revoked"):
            security.authenticate(db, token)

    def test_revoking_twice_is_harmless(self, db):
        token = security.create_access_token("abc", Role.BUYER)
        security.revoke_token(db, token)
        security.revoke_token(db, token)
        assert db["revoked_token"].count_documents({}) == 1

    def test_sweep_drops_only_expired_records(self, db):
        past = datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0) - timedelta(hours=1)
        future = past + timedelta(hours=3)
        db["revoked_token"].insert_many([
            {"jti": "old", "expires_at": past},
            {"jti": "live", "expires_at": future},
        ])

        security.sweep_revoked_tokens(db)

        assert [r["jti"] for r in db["revoked_token"].find()] == ["live"]
