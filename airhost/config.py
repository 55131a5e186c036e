from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from functools import lru_cache
from typing import List


class Settings(BaseSettings):
    # Environment
    environment: str = Field(default="development", alias="ENVIRONMENT")

    # Database - PostgreSQL for production, SQLite for development
    database_url: str = Field(
        default="sqlite:///./airhost.db",
        alias="DATABASE_URL"
    )

    # CORS - Frontend URLs from environment (comma-separated)
    allowed_origins: str = Field(
        default="http://localhost:5173,http://127.0.0.1:5173,http://localhost:3000",
        alias="ALLOWED_ORIGINS"
    )

    # Public URL of this service, used to build webhook target URLs
    public_base_url: str = Field(default="http://localhost:8000", alias="PUBLIC_BASE_URL")

    # Frontend URL, used for deep links in push notifications
    app_url: str = Field(default="http://localhost:5173", alias="APP_URL")

    # ==============================================
    # Auth
    # ==============================================
    # Privileged key for internal callers (scheduler, other services)
    service_role_key: str = Field(default="", alias="SERVICE_ROLE_KEY")

    # Identity provider JWT verification
    auth_jwt_secret: str = Field(default="", alias="AUTH_JWT_SECRET")
    auth_jwt_algorithm: str = Field(default="HS256", alias="AUTH_JWT_ALGORITHM")
    auth_jwt_audience: str = Field(default="", alias="AUTH_JWT_AUDIENCE")

    # ==============================================
    # Lodgify Integration
    # ==============================================
    lodgify_base_url: str = Field(
        default="https://api.lodgify.com",
        alias="LODGIFY_BASE_URL"
    )
    lodgify_timeout_seconds: int = Field(default=15, alias="LODGIFY_TIMEOUT_SECONDS")

    # Hard cap on the subscribe step during configuration save
    lodgify_provisioning_timeout_seconds: float = Field(
        default=30.0,
        alias="LODGIFY_PROVISIONING_TIMEOUT_SECONDS"
    )

    # ==============================================
    # Push Notifications (FCM HTTP v1)
    # ==============================================
    # Service account JSON, either inline or as a file path. NEVER commit to git.
    fcm_service_account_json: str = Field(default="", alias="FCM_SERVICE_ACCOUNT_JSON")
    fcm_service_account_file: str = Field(default="", alias="FCM_SERVICE_ACCOUNT_FILE")
    fcm_timeout_seconds: int = Field(default=10, alias="FCM_TIMEOUT_SECONDS")

    push_fanout_timeout_seconds: float = Field(default=15.0, alias="PUSH_FANOUT_TIMEOUT_SECONDS")
    push_fanout_max_workers: int = Field(default=8, alias="PUSH_FANOUT_MAX_WORKERS")

    # ==============================================
    # Notification queue + device sweeps
    # ==============================================
    notification_max_attempts: int = Field(default=3, alias="NOTIFICATION_MAX_ATTEMPTS")
    notification_batch_size: int = Field(default=50, alias="NOTIFICATION_BATCH_SIZE")
    notification_sweep_interval_seconds: int = Field(
        default=60,
        alias="NOTIFICATION_SWEEP_INTERVAL_SECONDS"
    )
    device_inactive_days: int = Field(default=30, alias="DEVICE_INACTIVE_DAYS")
    scheduler_enabled: bool = Field(default=True, alias="SCHEDULER_ENABLED")

    # ==============================================
    # Emergency analysis (OpenAI-compatible API)
    # ==============================================
    openai_api_key: str = Field(default="", alias="OPENAI_API_KEY")
    openai_base_url: str = Field(default="https://api.openai.com/v1", alias="OPENAI_BASE_URL")
    openai_model: str = Field(default="gpt-4o-mini", alias="OPENAI_MODEL")
    openai_timeout_seconds: int = Field(default=20, alias="OPENAI_TIMEOUT_SECONDS")
    emergency_analysis_enabled: bool = Field(default=True, alias="EMERGENCY_ANALYSIS_ENABLED")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_json: bool = Field(default=False, alias="LOG_JSON")

    @field_validator('notification_max_attempts', 'notification_batch_size', 'device_inactive_days')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("must be at least 1")
        return v

    @property
    def is_production(self) -> bool:
        return self.environment.lower() == "production"

    @property
    def cors_origins(self) -> List[str]:
        """Parse allowed origins from comma-separated string."""
        origins = []
        for origin in self.allowed_origins.split(","):
            origin = origin.strip().rstrip("/")
            if origin and origin not in origins:
                origins.append(origin)
        return origins or ["http://localhost:5173"]

    @property
    def has_push_credentials(self) -> bool:
        return bool(self.fcm_service_account_json or self.fcm_service_account_file)

    class Config:
        env_file = ".env"
        extra = "ignore"
        populate_by_name = True


@lru_cache()
def get_settings() -> Settings:
    """Get cached settings instance"""
    return Settings()


# Initialize settings on module load
settings = get_settings()
