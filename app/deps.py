"""Shared FastAPI dependencies for database access, authentication and collaborators."""

from typing import Optional

from fastapi import Depends, HTTPException, Request
from sqlmodel import Session

from app.database import get_session
from app.models import User
from app.services.ctfd import CTFdClient, get_ctfd_client
from app.services.repository import ExamRepository, SQLModelExamRepository


def get_current_user(request: Request, session: Session = Depends(get_session)) -> Optional[User]:
    """Return the currently logged-in user based on the session cookie, if any."""
    user_id = request.session.get("user_id")
    if not user_id:
        return None

    user = session.get(User, user_id)
    if not user or not user.is_active:
        # Clear any stale session
        request.session.clear()
        return None
    return user


def require_login(current_user: Optional[User] = Depends(get_current_user)) -> User:
    if current_user is None:
        raise HTTPException(status_code=401, detail="Not authenticated")
    return current_user


def require_role(required_roles: list[str]):
    """Dependency factory that enforces one of the given roles."""

    def wrapper(current_user: User = Depends(require_login)) -> User:
        if current_user.role not in required_roles:
            raise HTTPException(status_code=403, detail="Forbidden")
        return current_user

    return wrapper


def get_repository(session: Session = Depends(get_session)) -> ExamRepository:
    return SQLModelExamRepository(session)


def get_verifier() -> CTFdClient:
    """External verification adapter; overridden in tests."""
    return get_ctfd_client()
