"""Application configuration loaded from environment variables."""

from functools import lru_cache

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """All configuration is loaded from ``GENIE_*`` environment variables (or .env file)."""

    # --- App ---
    app_name: str = "Health Genie"
    app_version: str = "0.1.0"
    debug: bool = False
    log_level: str = "INFO"
    environment: str = "development"  # development | staging | production

    # --- Local store ---
    database_path: str = "data/healthgenie.db"  # ":memory:" for an ephemeral store
    sample_capacity: int = 5760  # 24 h at one sample every 15 s
    retry_ceiling: int = 3
    score_retention_days: int = 90

    # --- Sync ---
    sync_enabled: bool = True
    sync_interval_seconds: int = 900
    sync_batch_limit: int = 100
    request_timeout_seconds: float = 30.0
    history_days: int = 30
    network_class: str = "unmetered"  # unmetered | metered | offline

    # --- Remote backend ---
    backend_kind: str = "postgrest"  # postgrest | postgres
    supabase_url: str = ""
    supabase_anon_key: str = ""
    supabase_access_token: str = ""
    supabase_db_url: str = ""  # direct postgres connection string for asyncpg

    # --- Identity ---
    user_id: str = ""
    device_id: str = ""

    # --- Scoring ---
    scoring_config_path: str = ""  # empty = bundled scoring_config.yaml

    model_config = SettingsConfigDict(
        env_prefix="GENIE_", env_file=".env", env_file_encoding="utf-8"
    )


@lru_cache
def get_settings() -> Settings:
    return Settings()
