from __future__ import annotations

from functools import lru_cache

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="CRUDABLE_",
        env_file=".env",
        extra="ignore",
    )

    # Runtime
    ENVIRONMENT: str = Field(default="dev", description="Environment name")
    LOG_LEVEL: str = Field(default="INFO", description="Root log level for the CLI")

    # Database
    DATABASE_URL: str = Field(default="sqlite:///crudable.db")
    SQL_ECHO: bool = Field(default=False, description="Log every SQL statement")

    # Schema document (YAML or JSON)
    SCHEMA_PATH: str = Field(
        default="schema.yaml", description="Path of the declarative schema document"
    )

    # Listing
    DEFAULT_PAGE_SIZE: int = Field(
        default=0, description="Rows returned by fetch_many without an explicit limit (0 = all)"
    )
    MAX_PAGE_SIZE: int = Field(default=1000, description="Upper bound for a requested limit")

    # Search
    SEARCH_MIN_LENGTH: int = Field(
        default=2, description="Minimum length of a simple search term"
    )
    SEARCH_ALL_LIMIT: int = Field(
        default=10, description="Per-table row cap for multi-table search"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
