from functools import lru_cache
from typing import Optional

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "PMO Contracts & E-Signature API"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"
    public_base_url: str = "http://localhost:3000"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours

    # ─────────── SIGNING ───────────
    sign_token_valid_days: int = 30
    enforce_signing_order: bool = False
    max_signature_image_bytes: int = 512 * 1024
    conflict_retries: int = 3

    # ─────────── SHARE LINKS ───────────
    share_default_expires_days: int = 30
    share_max_expires_days: int = 365
    share_password_bcrypt_rounds: int = 12
    share_max_failed_attempts: int = 5
    share_lockout_minutes: int = 15

    # ─────────── AUDIT ───────────
    audit_query_default_limit: int = 200
    audit_query_max_limit: int = 1000

    # ─────────── DOCUMENT GENERATION ───────────
    generation_endpoint: Optional[str] = None
    generation_api_key: Optional[str] = None
    generation_model: str = "contract-drafter"
    generation_timeout_seconds: float = 90.0
    generation_max_tokens: int = 5000
    generation_temperature: float = 0.2

    # ─────────── NOTIFICATIONS ───────────
    smtp_host: Optional[str] = None
    smtp_port: int = 587
    smtp_user: Optional[str] = None
    smtp_password: Optional[str] = None
    email_sender: str = "noreply@example.com"
    email_sender_name: str = "Contract Signing"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
