"""FastAPI entrypoint for the exam attempt & grading engine."""

import logging

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse
from sqlmodel import Session, select
from starlette.middleware.sessions import SessionMiddleware

from app.auth_utils import hash_password
from app.config import settings
from app.database import create_db_and_tables, engine
from app.errors import ExamEngineError
from app.models import ROLE_ADMIN, User
from app.routers import attempts as attempts_router_module
from app.routers import auth as auth_router_module
from app.routers import exams as exams_router_module
from app.routers import tasks as tasks_router_module

logging.basicConfig(
    level=settings.LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

app = FastAPI(title="Exam Attempt & Grading Engine")


@app.exception_handler(ExamEngineError)
async def exam_engine_exception_handler(request: Request, exc: ExamEngineError):
    """Render service errors as `{"detail": ...}` with their status code."""
    logger.info("%s %s -> %s: %s", request.method, request.url.path, exc.status_code, exc.detail)
    return JSONResponse(status_code=exc.status_code, content={"detail": exc.detail})


# Session middleware for simple cookie-based authentication
app.add_middleware(SessionMiddleware, secret_key=settings.SECRET_KEY)

# Routers
app.include_router(auth_router_module.router, prefix="/auth", tags=["auth"])
app.include_router(tasks_router_module.router, prefix="/tasks", tags=["tasks"])
app.include_router(exams_router_module.router, prefix="/exams", tags=["exams"])
app.include_router(exams_router_module.text_router, prefix="/texts", tags=["texts"])
app.include_router(attempts_router_module.router, prefix="/exams", tags=["attempts"])


@app.on_event("startup")
def on_startup():
    """Initialize database schema and seed the configured admin."""
    create_db_and_tables()
    if not (settings.SEED_ADMIN_EMAIL and settings.SEED_ADMIN_PASSWORD):
        return

    with Session(engine) as session:
        existing_admin = session.exec(select(User).where(User.role == ROLE_ADMIN)).first()
        if not existing_admin:
            admin_user = User(
                name="System Admin",
                email=settings.SEED_ADMIN_EMAIL.strip().lower(),
                password_hash=hash_password(settings.SEED_ADMIN_PASSWORD),
                role=ROLE_ADMIN,
            )
            session.add(admin_user)
            session.commit()
            logger.info("Seeded default admin user: %s", admin_user.email)
