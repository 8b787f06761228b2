"""
Application Configuration using Pydantic Settings

Loads configuration from environment variables with sensible defaults.
"""

from typing import List, Optional
from pydantic import field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Application settings loaded from environment variables.
    """

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", case_sensitive=False, extra="ignore"
    )

    # ========================================================================
    # Application Settings
    # ========================================================================
    # "production" raises the default pool ceiling.
    APP_ENV: str = "development"
    APP_HOST: str = "127.0.0.1"
    APP_PORT: int = 8000
    APP_DEBUG: bool = True
    APP_RELOAD: bool = True

    # ========================================================================
    # Postgres Connection Settings
    # ========================================================================
    POSTGRES_HOST: str = "localhost"
    POSTGRES_PORT: int = 5432
    POSTGRES_DATABASE: str = "perf"
    POSTGRES_USER: str = "postgres"
    POSTGRES_PASSWORD: str = ""

    # If True, attempt to connect/init the Postgres pool during FastAPI startup.
    # Default is False so local development doesn't error/hang when Postgres isn't running.
    POSTGRES_CONNECT_ON_STARTUP: bool = False

    # ========================================================================
    # Connection Pool Settings
    # ========================================================================
    POSTGRES_POOL_MIN_SIZE: int = 1
    # Unset means 20, or 50 when APP_ENV=production.
    POSTGRES_POOL_MAX_SIZE: Optional[int] = None
    # Idle connections are closed after this many seconds.
    POSTGRES_POOL_IDLE_TIMEOUT_SECONDS: float = 30.0
    POSTGRES_CONNECT_TIMEOUT_SECONDS: float = 10.0
    # Applies to every dashboard query; a stalled fetch surfaces as a timeout error.
    POSTGRES_QUERY_TIMEOUT_SECONDS: float = 30.0

    # ========================================================================
    # Dashboard Settings
    # ========================================================================
    DEFAULT_BASELINE_CLUSTER_VERSION: str = "7.1.1-3175-enterprise"
    DEFAULT_TRIMMING_SECONDS: int = 20
    # Upper bound on sub-queries a single request runs in parallel.
    DASHBOARD_MAX_PARALLEL_QUERIES: int = 4
    # Metrics are sampled at the bucket offset or up to this many seconds after it.
    METRIC_ALIGNMENT_TOLERANCE_SECS: int = 1

    # ========================================================================
    # Security Settings
    # ========================================================================
    CORS_ORIGINS: List[str] = []

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _build_cors_origins(cls, v, info):
        if v:
            if isinstance(v, str):
                import json

                return json.loads(v)
            return v
        host = info.data.get("APP_HOST", "127.0.0.1")
        port = info.data.get("APP_PORT", 8000)
        origins = [f"http://{host}:{port}"]
        if host == "127.0.0.1":
            origins.append(f"http://localhost:{port}")
        elif host == "localhost":
            origins.append(f"http://127.0.0.1:{port}")
        return origins

    # ========================================================================
    # Logging Settings
    # ========================================================================
    LOG_LEVEL: str = "INFO"
    LOG_FORMAT: str = "%(levelprefix)s %(asctime)s - %(name)s - %(message)s"
    # Periodically log pool size/idle counts.
    LOG_POOL_STATS: bool = False
    POOL_STATS_INTERVAL_SECONDS: float = 30.0

    @property
    def is_production(self) -> bool:
        return self.APP_ENV.strip().lower() == "production"

    @property
    def pool_max_size(self) -> int:
        if self.POSTGRES_POOL_MAX_SIZE:
            return self.POSTGRES_POOL_MAX_SIZE
        return 50 if self.is_production else 20


# Create global settings instance
settings = Settings()
