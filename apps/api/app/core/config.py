"""Application configuration with environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    # Environment
    ENV: str = "dev"

    # App Version (format: a.bc.de - major.feature.patch)
    VERSION: str = "1.04.00"

    # Proxy/Load Balancer Settings
    # Set to True when running behind nginx/Cloudflare to trust X-Forwarded-For
    TRUST_PROXY_HEADERS: bool = False

    # Database
    DATABASE_URL: str

    # Session Token (supports key rotation)
    JWT_SECRET: str = "change-this-in-production"
    JWT_SECRET_PREVIOUS: str = ""  # Set during rotation, clear after
    JWT_EXPIRES_HOURS: int = 8

    # Google Login OAuth
    GOOGLE_CLIENT_ID: str = ""
    GOOGLE_CLIENT_SECRET: str = ""
    GOOGLE_REDIRECT_URI: str = "http://localhost:8000/auth/google/callback"

    # CORS
    CORS_ORIGINS: str = "http://localhost:5173"

    # Frontend (for safe redirects and email links)
    FRONTEND_URL: str = "http://localhost:5173"

    # Public base URL of this API (OAuth redirect URIs are built from it)
    API_BASE_URL: str = "http://localhost:8000"

    # Internal scheduled endpoints (cron jobs)
    INTERNAL_SECRET: str = ""  # Secret for /internal/scheduled/* endpoints

    # Token Encryption (for storing OAuth tokens)
    FERNET_KEY: str = ""  # Generate with: python -c "from cryptography.fernet import Fernet; print(Fernet.generate_key().decode())"

    # Per-user integrations (OAuth apps)
    ZOOM_CLIENT_ID: str = ""
    ZOOM_CLIENT_SECRET: str = ""
    ZOOM_WEBHOOK_SECRET: str = ""  # Secret token from the Zoom app "Event Subscriptions" page
    SLACK_CLIENT_ID: str = ""
    SLACK_CLIENT_SECRET: str = ""
    GITHUB_CLIENT_ID: str = ""
    GITHUB_CLIENT_SECRET: str = ""
    GOOGLE_INTEGRATION_CLIENT_ID: str = ""  # Falls back to GOOGLE_CLIENT_ID if empty
    GOOGLE_INTEGRATION_CLIENT_SECRET: str = ""

    # AI providers (OpenAI primary, Anthropic fallback)
    OPENAI_API_KEY: str = ""
    OPENAI_MODEL: str = "gpt-4o-mini"
    ANTHROPIC_API_KEY: str = ""
    ANTHROPIC_MODEL: str = "claude-3-5-sonnet-20241022"
    AI_REQUEST_TIMEOUT_SECONDS: float = 120.0

    # Email (Resend)
    RESEND_API_KEY: str = ""
    EMAIL_FROM: str = "Sales Whisperer <noreply@saleswhisperer.net>"
    ADMIN_ALERT_EMAIL: str = "admin@saleswhisperer.net"

    # Zapier outbound webhooks
    ZAPIER_WEBHOOK_MAX_ATTEMPTS: int = 5
    ZAPIER_WEBHOOK_TIMEOUT_SECONDS: float = 30.0

    # Invites
    INVITE_EXPIRES_DAYS: int = 7

    # Error Tracking (optional, set in production)
    SENTRY_DSN: str = ""  # Get from https://sentry.io

    # Rate Limiting (requests per minute)
    RATE_LIMIT_AUTH: int = 5  # Login attempts
    RATE_LIMIT_WEBHOOK: int = 100  # Inbound webhooks
    RATE_LIMIT_UPLOAD: int = 20  # Transcript uploads
    RATE_LIMIT_API: int = 60  # General API

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
    def cookie_secure(self) -> bool:
        """Secure cookies only in production."""
        return self.ENV != "dev"

    @property
    def google_integration_client_id(self) -> str:
        return self.GOOGLE_INTEGRATION_CLIENT_ID or self.GOOGLE_CLIENT_ID

    @property
    def google_integration_client_secret(self) -> str:
        return self.GOOGLE_INTEGRATION_CLIENT_SECRET or self.GOOGLE_CLIENT_SECRET


settings = Settings()
