"""Password hashing, access tokens and token revocation."""

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Any, Dict

import bcrypt
import jwt
from pymongo.errors import DuplicateKeyError

import settings
from database import now
from errors import AuthenticationError, InvalidRoleError
from schemas import Role

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Principal:
    """The authenticated caller as seen by the services."""

    id: str
    role: Role


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def check_password(password: str, password_hash: str) -> bool:
    if not password_hash:
        return False
    return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))


def create_access_token(user_id: str, role: Role) -> str:
    issued = now()
    payload = {
        "sub": user_id,
        "role": Role.parse(role).value,
        "jti": uuid.uuid4().hex,
        "iat": issued,
        "exp": issued + timedelta(minutes=settings.JWT_EXPIRES_MINUTES),
    }
    return jwt.encode(payload, settings.JWT_SECRET, algorithm=settings.JWT_ALGORITHM)


def decode_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(
            token,
            settings.JWT_SECRET,
            algorithms=[settings.JWT_ALGORITHM],
            options={"require": ["sub", "role", "jti", "exp"]},
        )
    except jwt.ExpiredSignatureError:
        raise AuthenticationError("Token has expired")
    except jwt.InvalidTokenError:
        raise AuthenticationError("Invalid token")


def authenticate(db, token: str) -> Principal:
    """Resolve a bearer token to a Principal, rejecting revoked tokens."""
    claims = decode_token(token)
    if is_revoked(db, claims["jti"]):
        raise AuthenticationError("Token has been revoked")
    try:
        role = Role.parse(claims["role"])
    except InvalidRoleError:
        raise AuthenticationError("Invalid token")
    return Principal(id=str(claims["sub"]), role=role)


# --- Revocation ---


def revoke_token(db, token: str) -> None:
    claims = decode_token(token)
    expires_at = _naive_utc(datetime.fromtimestamp(claims["exp"], tz=timezone.utc))
    try:
        db["revoked_token"].insert_one({"jti": claims["jti"], "expires_at": expires_at})
    except DuplicateKeyError:
        pass  # already revoked
    logger.info("Revoked token %s for user %s", claims["jti"], claims["sub"])
    sweep_revoked_tokens(db)


def is_revoked(db, jti: str) -> bool:
    return db["revoked_token"].find_one({"jti": jti}) is not None


def sweep_revoked_tokens(db) -> int:
    """Delete revocation records whose token has expired anyway."""
    result = db["revoked_token"].delete_many({"expires_at": {"$lte": _naive_utc(now())}})
    if result.deleted_count:
        logger.info("Swept %d expired revocation records", result.deleted_count)
    return result.deleted_count


def _naive_utc(value: datetime) -> datetime:
    # Stored naive so comparisons never mix aware and naive values
    return value.astimezone(timezone.utc).replace(tzinfo=None)
