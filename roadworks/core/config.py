from pydantic_settings import BaseSettings
from pydantic import field_validator


class Settings(BaseSettings):
    APP_NAME: str = "Roadworks Lifecycle API"

    # REQUIRED in .env
    JWT_SECRET: str
    JWT_ALG: str = "HS256"
    JWT_EXPIRE_MINUTES: int = 60 * 24  # 1 day

    DATABASE_URL: str = "sqlite:///./roadworks.db"

    # Evidence uploads
    MAX_UPLOAD_MB: int = 8
    UPLOAD_DIR: str = "uploads"

    # Lifecycle engine
    STALE_RETRY_LIMIT: int = 1

    # Notification bus
    SSE_HEARTBEAT_SECONDS: float = 15.0
    SUBSCRIBER_IDLE_TIMEOUT_SECONDS: float = 120.0
    SUBSCRIBER_MAX_PENDING: int = 1000
    RECENT_EDITS_MAX_LIMIT: int = 200

    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "text"  # text | json

    class Config:
        env_file = ".env"

    @field_validator("JWT_SECRET")
    @classmethod
    def validate_secret(cls, v: str) -> str:
        if not v or len(v.strip()) < 32:
            raise ValueError("JWT_SECRET must be set and at least 32 characters.")
        if "CHANGE_ME" in v.upper():
            raise ValueError("JWT_SECRET looks like a placeholder. Set a real secret.")
        return v.strip()

    @field_validator("STALE_RETRY_LIMIT", "SUBSCRIBER_MAX_PENDING", "RECENT_EDITS_MAX_LIMIT")
    @classmethod
    def validate_non_negative(cls, v: int) -> int:
        if v < 0:
            raise ValueError("must be >= 0")
        return v


settings = Settings()
