"""FastAPI dependency helpers."""
from .database import get_db
from .auth import AuthenticatedUser, get_current_user, get_current_profile

__all__ = ["AuthenticatedUser", "get_db", "get_current_user", "get_current_profile"]
