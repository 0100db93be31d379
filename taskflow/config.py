"""Configuration management using pydantic-settings."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Database settings (the task store is read-only from the sync core)
    database_url: str = "sqlite+aiosqlite:///./taskflow.db"
    sql_echo: bool = False
    db_create_tables: bool = False  # Create missing tables on startup (local development)

    # JWT settings
    jwt_secret: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_expiration_minutes: int = 1440

    # Server settings
    host: str = "0.0.0.0"
    port: int = 8000
    log_level: str = "INFO"

    # WebSocket settings (DDoS protection)
    ws_max_connections_per_user: int = 50
    ws_max_message_size: int = 65536  # 64KB
    ws_outbound_queue_size: int = 256  # Pending messages per connection

    # Heartbeat: clients ping every interval, silent connections are dropped after timeout
    heartbeat_interval: float = 30.0
    heartbeat_timeout: float = 45.0

    # Upper bound on the task store read that gates joins and privileged publishes
    access_check_timeout: float = 5.0


# Global settings instance
settings = Settings()
