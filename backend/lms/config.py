"""Application configuration."""
from pydantic_settings import BaseSettings
from functools import lru_cache


class Settings(BaseSettings):
    """Application settings."""

    # App
    APP_NAME: str = "LMS_Training_Core"
    ENV: str = "development"
    DEBUG: bool = True
    LOG_LEVEL: str = "INFO"

    # Database
    DATABASE_URL: str
    DATABASE_POOL_SIZE: int = 20
    DATABASE_MAX_OVERFLOW: int = 10

    # Celery
    CELERY_BROKER_URL: str = "redis://localhost:6379/1"
    CELERY_RESULT_BACKEND: str = "redis://localhost:6379/2"

    # Enrollment
    DEFAULT_PASSING_GRADE: int = 70

    # Compliance escalation chain (level -> target label). Levels are clamped to 0..3.
    COMPLIANCE_ESCALATION_TARGETS: dict[int, str] = {
        0: "none",
        1: "manager",
        2: "department_head",
        3: "executive",
    }
    COMPLIANCE_AT_RISK_DAYS: int = 7

    # Certificate generation job
    CERTIFICATE_MAX_ATTEMPTS: int = 3
    CERTIFICATE_RETRY_BACKOFF_SECONDS: str = "60,120,180"

    # Role permission sync history
    ROLE_PERMISSION_HISTORY_LIMIT: int = 50

    class Config:
        env_file = ".env"
        case_sensitive = True

    @property
    def certificate_backoff_schedule(self) -> tuple[int, ...]:
        """Get certificate retry backoff schedule as tuple of seconds."""
        return tuple(
            int(item.strip())
            for item in self.CERTIFICATE_RETRY_BACKOFF_SECONDS.split(",")
            if item.strip()
        )


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


settings = get_settings()
