"""Authentication dependencies for FastAPI."""
from __future__ import annotations

from dataclasses import dataclass

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.orm import Session

from ilyzlist.core import models
from ilyzlist.core.security import decode_token
from ilyzlist.services.profiles import ProfileStore

from .database import get_db


bearer_scheme = HTTPBearer(auto_error=False)
profile_store = ProfileStore()


@dataclass(frozen=True, slots=True)
class AuthenticatedUser:
    user_id: str
    email: str | None = None


def get_current_user(
    credentials: HTTPAuthorizationCredentials | None = Depends(bearer_scheme),
) -> AuthenticatedUser:
    if credentials is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing token")
    try:
        payload = decode_token(credentials.credentials)
    except jwt.PyJWTError:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token") from None

    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Missing subject")
    return AuthenticatedUser(user_id=str(user_id), email=payload.get("email"))


def get_current_profile(
    user: AuthenticatedUser = Depends(get_current_user),
    db: Session = Depends(get_db),
) -> models.BillingProfile:
    return profile_store.get_or_create(db, user.user_id, user.email)


__all__ = ["AuthenticatedUser", "bearer_scheme", "get_current_profile", "get_current_user"]
