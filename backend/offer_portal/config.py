from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # Storage backend: "memory" or "sql"
    storage_mode: str = "memory"
    database_url: str = "sqlite+aiosqlite:///./data/offer-portal.db"
    storage_path: str = "./data/pdfs"

    # Publish auth
    publish_api_key: str = ""
    require_publish_api_key: bool = True

    # Server
    public_base_url: str = ""
    host: str = "127.0.0.1"
    port: int = 3001
    cors_origins: list[str] = []

    # Document lifetimes
    offer_default_expiry_days: int = 30
    invoice_default_expiry_days: int = 365
    access_link_default_ttl_days: int = 90

    # Rate limiting
    read_rate_limit: int = 180
    read_rate_window_seconds: int = 60
    decision_rate_limit: int = 30
    decision_rate_window_seconds: int = 60
    rate_limit_max_buckets: int = 10_000
    trusted_ip_header: str = "cf-connecting-ip"

    # Decision form
    csrf_cookie_max_age_seconds: int = 2 * 60 * 60

    @property
    def is_sqlite(self) -> bool:
        return "sqlite" in self.database_url

    @property
    def uses_sql(self) -> bool:
        return self.storage_mode == "sql"

    @property
    def normalized_publish_key(self) -> str:
        return self.publish_api_key.strip()

    @property
    def normalized_base_url(self) -> str:
        return self.public_base_url.strip().rstrip("/")
