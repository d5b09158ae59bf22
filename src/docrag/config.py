"""
Configuration management using Pydantic Settings.

Configuration is read, in priority order, from constructor arguments,
environment variables, a .env file, and an optional YAML file
(DOCRAG_CONFIG_FILE, default configs/config.yaml).

Environment Variables:
    CHUNK_SIZE: Chunk size in characters (0 falls back to 1000)
    CHUNK_OVERLAP: Overlap between chunks in characters (0 falls back to 500)
    MAX_RESULTS: Number of chunks retrieved per query
    EMBED_PROVIDER: "ollama" or "openai"
    EMBED_LLM_BASE_URL / EMBED_LLM_MODEL / EMBED_LLM_KEY: Embedding service
    QUERY_LLM_BASE_URL / QUERY_LLM_MODEL / QUERY_LLM_KEY: Chat completion service
    DATABASE_HOST / DATABASE_PORT / DATABASE_USER / DATABASE_PASSWORD / DATABASE_NAME
    LOCAL_STORE_PATH / COLLECTION_NAME / ENCRYPTION_KEY: Local vector store
    LOG_LEVEL: Logging level (DEBUG, INFO, WARNING, ERROR)
"""

import os
from functools import lru_cache
from pathlib import Path
from typing import Literal, Optional

from pydantic import Field, SecretStr, field_validator
from pydantic_settings import (
    BaseSettings,
    PydanticBaseSettingsSource,
    SettingsConfigDict,
    YamlConfigSettingsSource,
)

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 500
DEFAULT_MAX_RESULTS = 5


class Settings(BaseSettings):
    """Application settings loaded from environment variables and config files."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        yaml_file=os.getenv("DOCRAG_CONFIG_FILE", "configs/config.yaml"),
        case_sensitive=False,
        extra="ignore",
    )

    # ==========================================================================
    # Chunking / Retrieval
    # ==========================================================================
    chunk_size: int = Field(
        default=DEFAULT_CHUNK_SIZE,
        ge=0,
        description="Maximum chunk size in characters",
    )
    chunk_overlap: int = Field(
        default=DEFAULT_CHUNK_OVERLAP,
        ge=0,
        description="Characters shared between consecutive chunks",
    )
    max_results: int = Field(
        default=DEFAULT_MAX_RESULTS,
        ge=0,
        description="Number of chunks retrieved per query (0 uses the default)",
    )

    # ==========================================================================
    # Embedding service
    # ==========================================================================
    embed_provider: Literal["ollama", "openai"] = Field(
        default="ollama",
        description="Embedding API flavour",
    )
    embed_llm_base_url: str = Field(
        default="http://localhost:11434",
        description="Base URL of the embedding service",
    )
    embed_llm_model: str = Field(
        default="nomic-embed-text",
        description="Embedding model name",
    )
    embed_llm_key: Optional[SecretStr] = Field(
        default=None,
        description="API key for the embedding service (OpenAI-compatible only)",
    )
    embedding_dimension: int = Field(
        default=768,
        ge=1,
        description="Dimension of embedding vectors (must match model)",
    )
    embedding_timeout: float = Field(
        default=60.0,
        gt=0,
        description="Embedding request timeout in seconds",
    )
    embedding_workers: int = Field(
        default=0,
        ge=0,
        description="Parallel embedding requests during ingestion (0 = CPU count)",
    )

    # ==========================================================================
    # Chat completion service
    # ==========================================================================
    query_llm_base_url: str = Field(
        default="https://openrouter.ai/api",
        description="Base URL of the OpenAI-compatible completion service",
    )
    query_llm_model: str = Field(
        default="deepseek/deepseek-r1-distill-llama-70b",
        description="Completion model name",
    )
    query_llm_key: Optional[SecretStr] = Field(
        default=None,
        description="API key for the completion service",
    )
    llm_stream: bool = Field(
        default=False,
        description="Request server-sent-event streaming completions",
    )
    llm_temperature: float = Field(
        default=0.1,
        ge=0.0,
        le=2.0,
        description="Sampling temperature",
    )
    llm_max_tokens: int = Field(
        default=1024,
        ge=1,
        description="Maximum tokens for a completion",
    )
    llm_timeout: int = Field(
        default=60,
        ge=1,
        description="Completion request timeout in seconds",
    )
    llm_max_retries: int = Field(
        default=1,
        ge=1,
        le=10,
        description="Attempts per completion request (1 disables retries)",
    )

    # ==========================================================================
    # Relational store (PostgreSQL + pgvector)
    # ==========================================================================
    database_host: str = Field(default="localhost")
    database_port: int = Field(default=5432, ge=1, le=65535)
    database_user: str = Field(default="postgres")
    database_password: Optional[SecretStr] = Field(default=None)
    database_name: str = Field(default="postgres")
    database_debug: bool = Field(
        default=False,
        description="Echo SQL statements to the log",
    )

    # ==========================================================================
    # Local store
    # ==========================================================================
    local_store_path: Path = Field(
        default=Path("data/vectorstore"),
        description="Directory holding the local vector store",
    )
    collection_name: str = Field(
        default="bg_collection",
        description="Local store collection name",
    )
    encryption_key: Optional[SecretStr] = Field(
        default=None,
        description="32-character key for encrypted export/import",
    )

    # ==========================================================================
    # Observability
    # ==========================================================================
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = Field(
        default="INFO",
        description="Logging level",
    )

    # ==========================================================================
    # Sources
    # ==========================================================================
    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        """Insert the YAML file below env and .env in priority."""
        return (
            init_settings,
            env_settings,
            dotenv_settings,
            YamlConfigSettingsSource(settings_cls),
            file_secret_settings,
        )

    # ==========================================================================
    # Validators
    # ==========================================================================
    @field_validator("chunk_overlap")
    @classmethod
    def validate_chunk_overlap(cls, v: int, info) -> int:
        """Ensure overlap is less than chunk size when both are set."""
        chunk_size = info.data.get("chunk_size", DEFAULT_CHUNK_SIZE)
        if chunk_size and v and v >= chunk_size:
            raise ValueError(f"chunk_overlap ({v}) must be less than chunk_size ({chunk_size})")
        return v

    @field_validator("local_store_path")
    @classmethod
    def resolve_path(cls, v: Path) -> Path:
        """Resolve paths to absolute paths."""
        return v.resolve()

    # ==========================================================================
    # Computed Properties
    # ==========================================================================
    @property
    def effective_max_results(self) -> int:
        """Configured result count, or the default when unset."""
        return self.max_results if self.max_results > 0 else DEFAULT_MAX_RESULTS

    @property
    def query_llm_key_value(self) -> Optional[str]:
        """Get the actual completion API key (use sparingly)."""
        if self.query_llm_key:
            return self.query_llm_key.get_secret_value()
        return None

    @property
    def embed_llm_key_value(self) -> Optional[str]:
        """Get the actual embedding API key (use sparingly)."""
        if self.embed_llm_key:
            return self.embed_llm_key.get_secret_value()
        return None

    @property
    def encryption_key_value(self) -> Optional[str]:
        """Get the actual store encryption key (use sparingly)."""
        if self.encryption_key:
            return self.encryption_key.get_secret_value()
        return None


@lru_cache
def get_settings() -> Settings:
    """
    Get cached settings instance.

    Call `get_settings.cache_clear()` to reload settings.

    Returns:
        Settings: Application settings instance
    """
    return Settings()


# Convenience alias
settings = get_settings()
