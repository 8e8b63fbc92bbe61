from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Service settings loaded from environment variables.
    The .env file is only a fallback; real env vars take precedence.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Database holding the message records and the delivery timeline
    DATABASE_URL: str

    LOG_LEVEL: str

    # HMAC key shared with the transport bridge that posts events to us
    WEBHOOK_SECRET: str

    # Separator between addresses in a fan-out message's recipient field
    RECIPIENT_DELIMITER: str = ","

    # Max events reconciled concurrently by each listener
    LISTENER_CONCURRENCY: int = 8

    # 0 means unbounded
    EVENT_QUEUE_MAXSIZE: int = 10000


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    """
    return Settings()


settings = get_settings()
