# schoolchat/config.py
from pydantic_settings import BaseSettings, SettingsConfigDict


class AppConfig(BaseSettings):
    PROJECT_NAME: str = "SchoolChat API"
    PROJECT_VERSION: str = "1.0.0"
    PROJECT_DESCRIPTION: str = "Moderated real-time chat for school communities"
    API_V1_STR: str = "/api/v1"
    LOG_LEVEL: str = "INFO"

    SECRET_KEY: str
    ALGORITHM: str = "HS256"
    ACCESS_TOKEN_EXPIRE_MINUTES: int = 30

    DATABASE_URL: str = "sqlite+aiosqlite:///:memory:"
    REDIS_HOST: str = "localhost"
    REDIS_PORT: int = 6379

    # Roles allowed to approve or reject messages and run duplicate repair
    MODERATOR_ROLES: list[str] = ["admin", "principal"]
    # Roles allowed to publish domain notifications
    STAFF_ROLES: list[str] = ["admin", "principal", "teacher"]
    # (sender_role, recipient_role) pairs whose messages wait for a moderator
    MODERATED_ROLE_PAIRS: list[tuple[str, str]] = [("teacher", "parent")]

    FIREBASE_CREDENTIALS_FILE: str | None = None
    PUSH_ANDROID_CHANNEL_ID: str = "school_notifications"
    DELIVERY_TIMEOUT_SECONDS: float = 10.0

    model_config = SettingsConfigDict(env_file=".env", extra="allow")
