# type: ignore
# pyright: reportMissingImports=false, reportGeneralTypeErrors=false
"""
Core configuration: all env-driven, zero hardcode.
Single source of truth for every tunable parameter.
"""

import os


class Settings:
    """Application settings loaded from environment variables."""

    SERVICE_NAME: str = os.getenv("SERVICE_NAME", "ledenbeheer")
    SERVICE_VERSION: str = os.getenv("SERVICE_VERSION", "1.0.0")
    SERVICE_PORT: int = int(os.getenv("SERVICE_PORT", "8000"))

    # Key/value store
    FIREBASE_DATABASE_URL: str = os.getenv("FIREBASE_DATABASE_URL", "").rstrip("/")
    FIREBASE_AUTH_TOKEN: str = os.getenv("FIREBASE_AUTH_TOKEN", "")
    STORE_BACKEND: str = os.getenv(
        "STORE_BACKEND", "firebase" if FIREBASE_DATABASE_URL else "memory"
    ).lower()
    STORE_TIMEOUT: float = float(os.getenv("STORE_TIMEOUT", "10.0"))
    STORE_CAS_MAX_ATTEMPTS: int = int(os.getenv("STORE_CAS_MAX_ATTEMPTS", "10"))

    # Member numbers
    ALLOCATION_MAX_ATTEMPTS: int = int(os.getenv("ALLOCATION_MAX_ATTEMPTS", "10"))
    MEMBER_NUMBER_WIDTH: int = int(os.getenv("MEMBER_NUMBER_WIDTH", "4"))

    # Approval saga
    APPROVE_MAX_RECOVERY_ATTEMPTS: int = int(os.getenv("APPROVE_MAX_RECOVERY_ATTEMPTS", "3"))
    APPROVE_BACKOFF_BASE: float = float(os.getenv("APPROVE_BACKOFF_BASE", "1.0"))

    DEFAULT_AUDIT_LIMIT: int = int(os.getenv("DEFAULT_AUDIT_LIMIT", "100"))

    CORS_ORIGINS: list[str] = os.getenv("CORS_ORIGINS", "*").split(",")
    LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO")


settings = Settings()
