"""
Process settings for eventsink.

Uses Pydantic Settings to load environment variables for the database
connection, the schema file location, logging, pool sizing and ingestion
limits. The table/app schema itself lives in a YAML file (see
``eventsink.domain.schema``); these settings only say where to find it.
"""
from __future__ import annotations

from functools import lru_cache
from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    # Database
    database_url: Optional[str] = Field(None, alias="DATABASE_URL")
    db_host: str = Field("localhost", alias="DB_HOST")
    db_port: int = Field(5432, alias="DB_PORT")
    db_user: str = Field("postgres", alias="DB_USER")
    db_password: str = Field("postgres", alias="DB_PASSWORD")
    db_name: str = Field("eventsink", alias="DB_NAME")

    # Connection pool
    pool_min_size: int = Field(1, alias="POOL_MIN_SIZE", ge=0)
    pool_max_size: int = Field(10, alias="POOL_MAX_SIZE", ge=1)
    pool_timeout_seconds: float = Field(5.0, alias="POOL_TIMEOUT_SECONDS", gt=0)

    # Schema
    schema_file: str = Field("./schema.conf.yaml", alias="SCHEMA_FILE")

    # Application
    log_level: str = Field("INFO", alias="LOG_LEVEL")
    log_json: bool = Field(False, alias="LOG_JSON")

    # Ingestion
    ingest_concurrency: int = Field(1, alias="INGEST_CONCURRENCY", ge=1)
    max_events_per_batch: int = Field(1000, alias="MAX_EVENTS_PER_BATCH", ge=1)

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    def dsn(self, fallback: Optional[str] = None) -> str:
        """
        Effective connection string.

        ``DATABASE_URL`` wins; otherwise ``fallback`` (typically the schema
        document's ``database_url``); otherwise a DSN composed from the
        ``DB_*`` fields.
        """
        if self.database_url:
            return self.database_url
        if fallback:
            return fallback
        return (
            f"postgresql://{self.db_user}:{self.db_password}"
            f"@{self.db_host}:{self.db_port}/{self.db_name}"
        )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """
    Retrieve a cached instance of Settings to avoid repeated env parsing.
    """
    return Settings()


__all__ = ["Settings", "get_settings"]
