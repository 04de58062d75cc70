from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    # Database
    DATABASE_URL: str | None = None

    # Supabase configuration
    SUPABASE_URL: str | None = None
    SUPABASE_ANON_KEY: str | None = None
    SUPABASE_SERVICE_ROLE_KEY: str | None = None
    JWT_SECRET: str | None = None

    # Application URLs
    CLIENT_URL: str = "http://localhost:3000"  # Password reset redirect target
    CORS_ORIGINS: list[str] = ["*"]

    # Broker hierarchy and invitations
    BROKER_HIERARCHY_MAX_DEPTH: int = 10
    INVITATION_EXPIRY_DAYS: int = 7

    LOG_LEVEL: str = "INFO"

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=True,
    )


settings = Settings()
