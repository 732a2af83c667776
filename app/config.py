"""Runtime configuration read from the environment (and an optional .env file)."""

import os

from dotenv import load_dotenv

load_dotenv()


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


class Settings:
    """Process-wide settings, resolved once at import time."""

    def __init__(self) -> None:
        self.DATABASE_URL = os.getenv("DATABASE_URL", "sqlite:///./exam_engine.db")
        self.DB_ECHO = _env_bool("DB_ECHO")
        self.SECRET_KEY = os.getenv("SECRET_KEY", "CHANGE_ME_TO_A_RANDOM_SECRET")
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()

        # External challenge platform (CTFd)
        self.CTFD_API_URL = os.getenv("CTFD_API_URL", "http://localhost:8000/api/v1").rstrip("/")
        self.CTFD_TOKEN = os.getenv("CTFD_TOKEN", "")
        self.CTFD_TIMEOUT_SECONDS = float(os.getenv("CTFD_TIMEOUT_SECONDS", "10"))

        # Optional admin account created on startup when no admin exists
        self.SEED_ADMIN_EMAIL = os.getenv("SEED_ADMIN_EMAIL")
        self.SEED_ADMIN_PASSWORD = os.getenv("SEED_ADMIN_PASSWORD")


settings = Settings()
