import logging
from typing import Any, Dict, List

from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import security
from database import create_document, get_documents, now, to_object_id
from errors import AuthenticationError, EmailTakenError, ForbiddenError, UserNotFoundError
from schemas import LoginRequest, RegisterRequest, Role, User

logger = logging.getLogger(__name__)


def display_name(user: Dict[str, Any]) -> str:
    return f"{user.get('first_name', '')} {user.get('last_name', '')}".strip()


def register(db, payload: RegisterRequest) -> Dict[str, Any]:
    if payload.role == Role.ADMIN:
        raise ForbiddenError("Admin accounts cannot self-register")
    email = payload.email.lower()
    if db["user"].find_one({"email": email}):
        raise EmailTakenError()
    user = User(
        first_name=payload.first_name,
        last_name=payload.last_name,
        email=email,
        password_hash=security.hash_password(payload.password),
        role=payload.role,
    )
    try:
        user_id = create_document(db, "user", user)
    except DuplicateKeyError:
        raise EmailTakenError()
    logger.info("Registered %s user %s", user.role.value, user_id)
    return db["user"].find_one({"_id": to_object_id(user_id)})


def login(db, payload: LoginRequest):
    """Return (token, user) for valid credentials."""
    user = db["user"].find_one({"email": payload.email.lower()})
    if not user or not security.check_password(payload.password, user.get("password_hash", "")):
        raise AuthenticationError("Invalid email or password")
    token = security.create_access_token(str(user["_id"]), user.get("role", Role.BUYER))
    return token, user


def get_user(db, user_id: str) -> Dict[str, Any]:
    user = db["user"].find_one({"_id": to_object_id(user_id, "user id")})
    if not user:
        raise UserNotFoundError(user_id)
    return user


def list_users(db) -> List[Dict[str, Any]]:
    return get_documents(db, "user")


def set_role(db, user_id: str, role: Role) -> Dict[str, Any]:
    user = db["user"].find_one_and_update(
        {"_id": to_object_id(user_id, "user id")},
        {"$set": {"role": Role.parse(role).value, "updated_at": now()}},
        return_document=ReturnDocument.AFTER,
    )
    if not user:
        raise UserNotFoundError(user_id)
    logger.info("User %s role set to %s", user_id, user["role"])
    return user
