"""Session-cookie login boundary."""

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlmodel import Session, select

from app.auth_utils import verify_password
from app.database import get_session
from app.deps import require_login
from app.models import User
from app.schemas import LoginIn, UserOut

router = APIRouter()


def _user_out(user: User) -> UserOut:
    return UserOut(id=user.id, name=user.name, email=user.email, role=user.role)


@router.post("/login", response_model=UserOut)
def login(payload: LoginIn, request: Request, session: Session = Depends(get_session)):
    email_clean = payload.email.strip().lower()
    user = session.exec(select(User).where(User.email == email_clean)).first()
    if not user or not verify_password(payload.password, user.password_hash):
        raise HTTPException(status_code=400, detail="Invalid email or password.")
    if not user.is_active:
        raise HTTPException(status_code=400, detail="Your account is inactive. Please contact an administrator.")

    # Clear any existing session first to avoid conflicts
    request.session.clear()
    request.session["user_id"] = user.id
    return _user_out(user)


@router.post("/logout")
def logout(request: Request):
    request.session.clear()
    return {"ok": True}


@router.get("/me", response_model=UserOut)
def me(current_user: User = Depends(require_login)):
    return _user_out(current_user)
