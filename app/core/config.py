from functools import lru_cache
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        extra="ignore",
    )

    # ─────────── APP ───────────
    app_name: str = "Lease Contract Lifecycle Core"
    environment: str = "dev"
    log_level: str = "INFO"

    # ─────────── API ───────────
    api_prefix: str = "/api/v1"
    request_id_header: str = "X-Request-Id"

    # ─────────── DATABASE ───────────
    database_url: str = "sqlite+pysqlite:///./lease_contracts.db"

    # ─────────── JWT / AUTH ───────────
    jwt_secret_key: str = "change-me"
    jwt_algorithm: str = "HS256"
    jwt_access_token_minutes: int = 60

    # ─────────── CONTRACTS ───────────
    contract_token_prefix: str = "MR3X"
    document_storage_dir: str = "./storage/contracts"
    default_currency: str = "BRL"


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
