from pydantic_settings import BaseSettings, SettingsConfigDict

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    database_url: str
    migrations_path: str = "sql/001_init.sql"

    # Dashboard cache (milliseconds)
    max_cache_size: int = 50
    default_ttl_ms: int = 5 * 60 * 1000
    dashboard_cache_ttl_ms: int = 5 * 60 * 1000

    # Sliding window rate limit per client IP
    rate_limit_window_ms: int = 15 * 60 * 1000
    rate_limit_max_requests: int = 100

    cleanup_interval_ms: int = 10 * 60 * 1000
    admin_refresh_token: str | None = None  # when set, required to force a refresh

settings = Settings()
