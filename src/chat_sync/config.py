from __future__ import annotations

from pydantic import ConfigDict
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    TENANT_ID: str = "default"

    REDIS_URL: str = "redis://localhost:6379/0"
    REDIS_ACL_AUTH: bool = False
    TOPIC_PREFIX: str = "chat"
    PUSH_TYPING_DESTINATION: str = "chat.typing"
    PUSH_POLL_INTERVAL_SECONDS: float = 1.0
    PUSH_CONNECT_TIMEOUT_SECONDS: float = 10.0

    CHAT_API_BASE_URL: str = "http://localhost:8080"
    HTTP_TIMEOUT_SECONDS: float = 10.0

    JWT_SECRET: str = "change-me"
    JWT_ALGORITHM: str = "HS256"

    CORS_ORIGINS: list[str] = ["*"]

    OPTIMISTIC_MATCH_WINDOW_SECONDS: float = 60.0
    TYPING_IDLE_SECONDS: float = 1.0

    RECONNECT_BASE_DELAY_SECONDS: float = 1.0
    RECONNECT_MAX_DELAY_SECONDS: float = 30.0

    WS_HEARTBEAT_SECONDS: int = 30

    SESSION_IDLE_SECONDS: float = 900.0
    SESSION_REAP_INTERVAL_SECONDS: float = 60.0

    HOST: str = "0.0.0.0"
    PORT: int = 8000
    LOG_LEVEL: str = "INFO"

    model_config = ConfigDict(
        env_file=".env",
        extra="ignore",
    )


settings = Settings()
