from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Database
    database_url: str

    # Redis
    redis_url: str

    # API
    api_port: int = 8000

    # Security
    gateway_secret: str  # HMAC secret for gateway->API authentication

    # Admin
    admin_user: str = "admin"
    admin_pass: str = "changeme"

    # Match lifecycle
    challenge_expiry_seconds: int = 86400  # 24h for the receiver to accept
    join_window_seconds: int = 300  # 5 min for both players to confirm
    turn_timeout_seconds: int = 900  # rolling in-progress deadline, 0 disables

    # Workers
    sweep_interval_seconds: int = 60
    feed_poll_interval_seconds: float = 1.0
    feed_batch_size: int = 100
    feed_stream_maxlen: int = 1000

    # Environment
    environment: str = "development"
    log_level: str = "INFO"

    @property
    def is_production(self) -> bool:
        return self.environment == "production"

    @property
    def is_development(self) -> bool:
        return self.environment == "development"


settings = Settings()
