"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables or .env file."""
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    # Application
    app_name: str = "Intentive"
    debug: bool = False
    log_dir: str = "~/.logs/intentive"

    # Server
    host: str = "0.0.0.0"
    port: int = 8000
    allowed_origins: str = "*"  # Comma-separated origins, or "*" for all

    # Database
    database_url: str = "sqlite:///./intentive.db"

    # Google OAuth (public client, PKCE - no client secret)
    google_client_id: str = ""
    google_redirect_uri: str = ""
    google_authorization_endpoint: str = "https://accounts.google.com/o/oauth2/v2/auth"
    google_token_endpoint: str = "https://oauth2.googleapis.com/token"

    # Backend identity service
    identity_url: str = ""
    identity_anon_key: str = ""

    # Backend sync proxy
    backend_url: str = ""

    # Timeouts and lifetimes
    http_timeout_seconds: float = 10.0
    sign_in_timeout_seconds: float = 300.0
    default_token_lifetime_seconds: int = 3600

    # Session refresh
    session_refresh_interval_minutes: int = 5
    session_refresh_margin_seconds: int = 300

    # Redirect replay guard
    processed_codes_limit: int = 256


settings = Settings()
