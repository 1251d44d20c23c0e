"""Application settings and validation."""

import os
from pathlib import Path

BASE = Path(__file__).resolve().parent.parent


class Settings:
    ENV: str
    DATABASE_URL: str
    JWT_SECRET: str
    JWT_ALGORITHM: str
    JWT_EXPIRE_HOURS: int
    ALLOW_INSECURE_JWT: bool
    ALLOW_DEV_CORS: bool
    ALLOW_DEFAULT_OWNER: bool
    DEFAULT_OWNER_USERNAME: str
    OPENAI_MODEL: str
    LLM_TIMEOUT_SECONDS: float
    GENERATION_RATE_LIMIT_PER_MIN: int
    GENERATION_RATE_LIMIT_WINDOW_SECONDS: int
    LOG_LEVEL: str

    def __init__(self):
        self.ENV = os.getenv("ENV", "dev").lower()
        self.DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{BASE / 'planner.db'}")
        self.JWT_SECRET = os.getenv("JWT_SECRET", "change_me_for_prod")
        self.JWT_ALGORITHM = os.getenv("JWT_ALGORITHM", "HS256")
        self.JWT_EXPIRE_HOURS = int(os.getenv("JWT_EXPIRE_HOURS", "24"))
        self.ALLOW_INSECURE_JWT = os.getenv("ALLOW_INSECURE_JWT", "false").lower() == "true"
        self.ALLOW_DEV_CORS = os.getenv("ALLOW_DEV_CORS", "true").lower() == "true"
        # single-tenant mode: requests without a bearer token act as this user
        self.ALLOW_DEFAULT_OWNER = os.getenv("ALLOW_DEFAULT_OWNER", "true").lower() == "true"
        self.DEFAULT_OWNER_USERNAME = os.getenv("DEFAULT_OWNER_USERNAME", "test-user")
        self.OPENAI_MODEL = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
        self.LLM_TIMEOUT_SECONDS = float(os.getenv("LLM_TIMEOUT_SECONDS", "60"))
        self.GENERATION_RATE_LIMIT_PER_MIN = int(os.getenv("GENERATION_RATE_LIMIT_PER_MIN", "30"))
        self.GENERATION_RATE_LIMIT_WINDOW_SECONDS = int(os.getenv("GENERATION_RATE_LIMIT_WINDOW_SECONDS", "60"))
        self.LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
        self._validate()

    def _validate(self):
        if self.ENV != "dev" and not self.ALLOW_INSECURE_JWT and self.JWT_SECRET == "change_me_for_prod":
            raise RuntimeError("JWT_SECRET must be set to a non-default value in non-dev environments")
        if self.GENERATION_RATE_LIMIT_PER_MIN < 1:
            raise RuntimeError("GENERATION_RATE_LIMIT_PER_MIN must be >= 1")


settings = Settings()
