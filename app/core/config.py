from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Electronic Contract Signature Tracker"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours

    # ─────────── CONTRACT WORKFLOW ───────────
    signing_link_ttl_hours: int = 168  # 7 days
    contract_number_max_attempts: int = 5
    link_expiry_notice_hours: int = 24

    # ─────────── PAYMENTS ───────────
    payment_due_notice_days: int = 3

    # ─────────── PUBLIC SIGNING RATE LIMIT ───────────
    signing_rate_limit_capacity: int = 20
    signing_rate_limit_per_minute: float = 20.0

    # ─────────── SEED ───────────
    seed_admin_email: str = "admin@injazak.com"
    seed_admin_password: str = "admin123"  # change on first login


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
