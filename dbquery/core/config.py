"""
Runtime settings for the query engine.

Values come from the environment (``DBQUERY_`` prefix) or a ``.env`` file.
"""

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="DBQUERY_",
        env_file=".env",
        env_ignore_empty=True,
        extra="ignore",
    )

    # SQL generation
    DEFAULT_DIALECT: str = "standard"
    DEFAULT_PAGE_SIZE: int = 50
    MAX_PAGE_SIZE: int = 1000

    # External DB
    EXTERNAL_DB_CONNECT_TIMEOUT: int = 10
    EXTERNAL_DB_STATEMENT_TIMEOUT: float | None = None  # seconds; None = no limit
    EXTERNAL_DB_POOL_SIZE: int = 5
    EXTERNAL_DB_POOL_MAX_AGE_SEC: float = 600.0

    # Metadata cache
    METADATA_PREWARM: bool = True
    ALLOW_MISSING_METADATA_CACHE: bool = False
    METADATA_RETRY_INTERVAL_SEC: float = 300.0  # wait before rebuilding a cache that failed at execution

    # Async execution
    ASYNC_MAX_WORKERS: int = 4

    # Logging
    LOG_LEVEL: str = "INFO"
    LOG_STRUCTURED: bool = False


settings = Settings()
