import dataclasses

import dotenv
import httpx

from media_intake.utils import as_bool
from media_intake.utils import env


dotenv.load_dotenv()


def _csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


@dataclasses.dataclass
class Config:
    """Application configuration settings."""

    # Database Configuration
    database_url: str = env("DATABASE_URL:", convert=str)

    # Redis (chunk store backend when CHUNK_STORE_BACKEND=redis)
    redis_url: str = env("REDIS_URL:redis://127.0.0.1:6379/0")

    # Logging
    log_level: str = env("LOG_LEVEL:INFO")
    loki_url: str = env("LOKI_URL:", convert=str)
    loki_enabled: bool = env("LOKI_ENABLED:false", convert=as_bool)

    # Server Configuration
    host: str = env("HOST:0.0.0.0")
    port: int = env("PORT:8000", convert=int)
    environment: str = env("ENVIRONMENT:development")
    debug: bool = env("DEBUG:false", convert=as_bool)
    enable_api_docs: bool = env("ENABLE_API_DOCS:false", convert=as_bool)

    # Chunked upload buffering
    chunk_store_backend: str = env("CHUNK_STORE_BACKEND:postgres")
    chunk_retention_hours: int = env("CHUNK_RETENTION_HOURS:24", convert=int)
    chunk_cleanup_interval_seconds: int = env("CHUNK_CLEANUP_INTERVAL_SECONDS:900", convert=int)
    reconstruct_max_bytes: int = env("RECONSTRUCT_MAX_BYTES:104857600", convert=int)  # 100 MB

    # Cold storage (Drive v3 compatible API)
    storage_api_url: str = env("STORAGE_API_URL:https://www.googleapis.com/drive/v3")
    storage_upload_url: str = env("STORAGE_UPLOAD_URL:https://www.googleapis.com/upload/drive/v3")
    storage_token_uri: str = env("STORAGE_TOKEN_URI:https://oauth2.googleapis.com/token")
    storage_scope: str = env("STORAGE_SCOPE:https://www.googleapis.com/auth/drive")
    storage_root_folder_id: str = env("STORAGE_ROOT_FOLDER_ID:", convert=str)

    # Credentials, tried in this order: static token, refresh-token exchange, service account
    storage_access_token: str = env("STORAGE_ACCESS_TOKEN:", convert=str)
    storage_client_id: str = env("STORAGE_CLIENT_ID:", convert=str)
    storage_client_secret: str = env("STORAGE_CLIENT_SECRET:", convert=str)
    storage_refresh_token: str = env("STORAGE_REFRESH_TOKEN:", convert=str)
    storage_service_account_json: str = env("STORAGE_SERVICE_ACCOUNT_JSON:", convert=str)

    # Resumable transfer retry policy
    resumable_max_attempts: int = env("RESUMABLE_MAX_ATTEMPTS:5", convert=int)
    resumable_backoff_base_ms: int = env("RESUMABLE_BACKOFF_BASE_MS:2000", convert=int)
    resumable_backoff_max_ms: int = env("RESUMABLE_BACKOFF_MAX_MS:15000", convert=int)
    resumable_range_size_bytes: int = env("RESUMABLE_RANGE_SIZE_BYTES:8388608", convert=int)  # 8 MiB

    # Upload limits and slots
    max_upload_mb: int = env("MAX_UPLOAD_MB:2048", convert=int)
    slot_names: list[str] = env("SLOT_NAMES:Photos,Videos,Facility Photos,Facility Videos", convert=_csv)

    httpx_storage_timeout = httpx.Timeout(30.0, connect=10.0)
    # ranged PUTs carry whole ranges of large media files
    httpx_transfer_timeout = httpx.Timeout(300.0, connect=10.0)


def get_config() -> Config:
    """Get application configuration."""
    cfg = Config()

    env_value = getattr(cfg, "environment", None)
    if not env_value or not env_value.strip():
        raise ValueError("ENVIRONMENT variable is required but not set or empty")

    backend = (cfg.chunk_store_backend or "postgres").strip().lower()
    if backend not in {"postgres", "redis"}:
        raise ValueError(f"CHUNK_STORE_BACKEND must be 'postgres' or 'redis', got {cfg.chunk_store_backend!r}")
    object.__setattr__(cfg, "chunk_store_backend", backend)

    # Drive's resumable protocol requires ranges in multiples of 256 KiB
    quantum = 256 * 1024
    range_size = max(quantum, (int(cfg.resumable_range_size_bytes) // quantum) * quantum)
    object.__setattr__(cfg, "resumable_range_size_bytes", range_size)

    if not cfg.slot_names:
        raise ValueError("SLOT_NAMES must list at least one slot")

    return cfg
