from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    Follows 12-factor app configuration principles.
    """

    # env_file is only used as fallback, env vars take precedence
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        env_ignore_empty=True,
    )

    # Webhook subscription handshake
    VERIFY_TOKEN: str

    # WhatsApp Cloud API (Graph)
    WHATSAPP_TOKEN: str
    PHONE_NUMBER_ID: str
    API_VERSION: str = "v22.0"
    GRAPH_API_HOST: str = "graph.facebook.com"
    SEND_TIMEOUT_SECONDS: float = 15.0

    # Database - either a full URL or the MySQL coordinates
    DATABASE_URL: Optional[str] = None
    HOST_DATABASE: Optional[str] = None
    USER_DATABASE: Optional[str] = None
    PWD_DATABASE: Optional[str] = None
    NAME_DATABASE: Optional[str] = None

    # Connection pool: at most DB_POOL_SIZE + DB_MAX_OVERFLOW connections,
    # at most DB_MAX_WAITING callers queued for one
    DB_POOL_SIZE: int = 5
    DB_MAX_OVERFLOW: int = 5
    DB_POOL_TIMEOUT: float = 10.0
    DB_MAX_WAITING: int = 20

    PORT: int = 3000
    LOG_LEVEL: str = "INFO"

    @property
    def database_url(self) -> str:
        """Resolve the SQLAlchemy URL, preferring DATABASE_URL."""
        if self.DATABASE_URL:
            return self.DATABASE_URL
        if not (self.HOST_DATABASE and self.USER_DATABASE and self.NAME_DATABASE):
            raise ValueError(
                "Database not configured: set DATABASE_URL or "
                "HOST_DATABASE/USER_DATABASE/NAME_DATABASE"
            )
        password = self.PWD_DATABASE or ""
        return (
            f"mysql+pymysql://{self.USER_DATABASE}:{password}"
            f"@{self.HOST_DATABASE}/{self.NAME_DATABASE}"
        )


@lru_cache()
def get_settings() -> Settings:
    """
    Get cached settings instance.
    Uses lru_cache to avoid reading .env file on every request.
    """
    return Settings()


# Global settings instance
settings = get_settings()
