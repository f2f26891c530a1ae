from typing import Optional

from fastapi import Depends
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

import database
import security
from errors import AuthenticationError, ForbiddenError, InternalError
from schemas import Role
from security import Principal

bearer_scheme = HTTPBearer(auto_error=False)


def get_db():
    if database.db is None:
        raise InternalError("DATABASE_URL / DATABASE_NAME are not configured")
    return database.db


def get_token(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme)) -> str:
    if credentials is None:
        raise AuthenticationError("Authentication required")
    return credentials.credentials


def get_current_user(token: str = Depends(get_token), db=Depends(get_db)) -> Principal:
    return security.authenticate(db, token)


def get_optional_user(credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
                      db=Depends(get_db)) -> Optional[Principal]:
    if credentials is None:
        return None
    return security.authenticate(db, credentials.credentials)


def require_roles(*roles: Role):
    def check_role(principal: Principal = Depends(get_current_user)) -> Principal:
        if principal.role not in roles:
            raise ForbiddenError("Access denied")
        return principal

    return check_role
