from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "SignalTrue"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 1440  # 24 hours

    # ─────────── ATTACHMENTS ───────────
    storage_backend: str = "local"  # local | s3
    storage_root: str = "./var/attachments"
    attachment_max_bytes: int = 5 * 1024 * 1024
    attachment_chunk_bytes: int = 64 * 1024
    staging_max_age_seconds: int = 3600
    s3_bucket: str = ""
    s3_prefix: str = ""
    s3_endpoint_url: str = ""
    s3_region: str = ""

    # ─────────── SCANNER ───────────
    scanner_backend: str = "simulated"  # simulated | clamav
    scan_timeout_seconds: float = 10.0
    scan_simulate_infected: bool = False
    scanner_simulation_api_enabled: bool = False
    clamav_host: str = "127.0.0.1"
    clamav_port: int = 3310


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
