"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "0.01.00"

    # Database
    DATABASE_URL: str

    # Public base URL (used to build provider callback URLs)
    APP_URL: str = "http://localhost:8000"

    # CORS
    CORS_ORIGINS: str = "http://localhost:3000"

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 4

    # Token Encryption (provider access/refresh tokens at rest)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Google OAuth (Gmail)
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/integrations/google/callback"

    # ClickUp OAuth
    CLICKUP_CLIENT_ID: str = ""
    CLICKUP_CLIENT_SECRET: str = ""

    # Gmail push notifications
    GMAIL_PUBSUB_TOPIC: str = "projects/your-project/topics/gmail-automations"
    GMAIL_WATCH_RENEW_LOOKAHEAD_HOURS: int = 24

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Outbound calls
    PROVIDER_TIMEOUT_SECONDS: float = 30.0
    DISPATCH_TIMEOUT_SECONDS: float = 60.0

    # Delivery dedupe retention
    WEBHOOK_DEDUPE_TTL_HOURS: int = 48

    # Reject unknown ClickUp trigger types instead of falling back to taskUpdated
    STRICT_CLICKUP_EVENT_MAPPING: bool = False

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""

    # Rate Limiting (requests per minute); REDIS_URL shares counters across workers
    REDIS_URL: str = ""
    TESTING: bool = False
    RATE_LIMIT_WEBHOOK: int = 300
    RATE_LIMIT_API: int = 60

    @property
    def cors_origins_list(self) -> list[str]:
        """Parse CORS_ORIGINS into a list."""
        return [o.strip() for o in self.CORS_ORIGINS.split(",") if o.strip()]

    @property
    def jwt_secrets(self) -> list[str]:
        """Returns list of valid secrets (current first, then previous if set)."""
        secrets = [self.JWT_SECRET]
        if self.JWT_SECRET_PREVIOUS:
            secrets.append(self.JWT_SECRET_PREVIOUS)
        return secrets

    @property
    def app_base_url(self) -> str:
        return self.APP_URL.rstrip("/")


settings = Settings()
