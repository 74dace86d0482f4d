from pydantic_settings import BaseSettings, SettingsConfigDict

QBO_PRODUCTION_API_URL = "https://quickbooks.api.intuit.com"
QBO_SANDBOX_API_URL = "https://sandbox-quickbooks.api.intuit.com"


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    DATABASE_URL: str | None = None
    JWT_SECRET: str | None = None
    LOG_LEVEL: str = "INFO"

    # Application URLs
    APP_BASE_URL: str = "http://localhost:8001"  # Default for development
    FRONTEND_URL: str = "http://localhost:5173"

    # QuickBooks OAuth configuration
    QBO_CLIENT_ID: str | None = None
    QBO_CLIENT_SECRET: str | None = None
    QBO_REDIRECT_URI: str | None = None
    QBO_ENVIRONMENT: str = "sandbox"  # sandbox | production
    QBO_SCOPES: str = "com.intuit.quickbooks.accounting openid profile email"
    QBO_AUTH_URL: str = "https://appcenter.intuit.com/connect/oauth2"
    QBO_TOKEN_URL: str = "https://oauth.platform.intuit.com/oauth2/v1/tokens/bearer"
    QBO_REVOKE_URL: str = "https://developer.api.intuit.com/v2/oauth2/tokens/revoke"
    QBO_MINOR_VERSION: int = 65
    QBO_REQUEST_TIMEOUT: float = 30.0

    # Token lifecycle
    TOKEN_REFRESH_THRESHOLD_MINUTES: int = 10
    DEFAULT_ACCESS_TOKEN_LIFETIME_SECONDS: int = 3600
    DEFAULT_REFRESH_TOKEN_LIFETIME_DAYS: int = 100
    OAUTH_STATE_TTL_MINUTES: int = 10

    # Push sync pacing
    SYNC_BATCH_SIZE: int = 10
    SYNC_MAX_CONCURRENCY: int = 3
    SYNC_BATCH_DELAY_SECONDS: float = 2.0
    SYNC_MAX_RETRIES: int = 3
    SYNC_RETRY_BACKOFF_SECONDS: int = 60

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )

    @property
    def qbo_api_base_url(self) -> str:
        if self.QBO_ENVIRONMENT == "production":
            return QBO_PRODUCTION_API_URL
        return QBO_SANDBOX_API_URL


settings = Settings()
