"""Authentication helpers and FastAPI security dependency.

This module decodes JWT bearer tokens and exposes `get_current_owner`,
the dependency that resolves the caller identity threaded through every
service operation. When no token is sent and single-tenant mode is
enabled (`ALLOW_DEFAULT_OWNER`), the configured default owner is used.

Token verification raises HTTPExceptions on failure so it can be used
directly inside route dependencies.
"""

import uuid
from typing import Optional

from fastapi import Depends, HTTPException, Request, Security
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
import jwt
from sqlmodel import Session

from .config import settings
from .database import get_session
from . import models, repositories, services

bearer_scheme = HTTPBearer(auto_error=False)


def decode_token(token: str):
    """Decode and verify a JWT token.

    Returns the decoded payload on success or raises an HTTPException
    with status 401 on failure.
    """
    try:
        return jwt.decode(token, settings.JWT_SECRET, algorithms=[settings.JWT_ALGORITHM])
    except jwt.ExpiredSignatureError:
        raise HTTPException(status_code=401, detail='token expired')
    except jwt.InvalidTokenError:
        raise HTTPException(status_code=401, detail='invalid token')


def get_current_owner(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Security(bearer_scheme),
    db: Session = Depends(get_session),
) -> models.User:
    """FastAPI dependency that returns the calling user.

    A bearer token always wins. Without one, the default owner is
    returned in single-tenant mode and a 401 is raised otherwise.
    The resolved id is kept on `request.state.owner_id` for request logs.
    """
    if credentials is None:
        if not settings.ALLOW_DEFAULT_OWNER:
            raise HTTPException(status_code=401, detail='authentication required')
        owner = services.AuthService(db).get_or_create_default_owner()
        request.state.owner_id = str(owner.id)
        return owner
    payload = decode_token(credentials.credentials)
    try:
        user_id = uuid.UUID(str(payload.get('user_id')))
    except ValueError:
        raise HTTPException(status_code=401, detail='invalid token payload')
    user = repositories.UserRepository(db).get(user_id)
    if not user:
        raise HTTPException(status_code=401, detail='user not found')
    request.state.owner_id = str(user.id)
    return user
