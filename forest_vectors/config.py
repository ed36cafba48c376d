"""Application configuration using Pydantic Settings.

All configuration is loaded from environment variables.
No secrets are hardcoded.
"""

from enum import Enum
from functools import lru_cache
from pathlib import Path

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings, SettingsConfigDict


class Environment(str, Enum):
    """Application environment."""

    DEVELOPMENT = "development"
    STAGING = "staging"
    PRODUCTION = "production"


class ProviderName(str, Enum):
    """Closed set of vector storage backends."""

    QDRANT = "qdrant"
    CHROMA = "chroma"
    SQLITEVEC = "sqlitevec"
    LOCALJSON = "localjson"


DEFAULT_CORRUPTION_SIGNATURES = [
    "chromadb_corruption",
    "tolist",
    "status: 500",
    "internal server error",
    "attributeerror",
    "iteration over a 0-d array",
]


class VectorStoreSettings(BaseSettings):
    """Provider selection and startup behaviour."""

    model_config = SettingsConfigDict(env_prefix="FOREST_VECTOR_")

    provider: ProviderName = Field(
        default=ProviderName.SQLITEVEC,
        description="Primary vector provider",
    )
    fallback_provider: ProviderName = Field(
        default=ProviderName.LOCALJSON,
        description="Provider tried when the primary fails to initialize",
    )
    self_test: bool = Field(
        default=True,
        description="Run a synthetic round trip before declaring the store healthy",
    )
    self_test_dimension: int = Field(
        default=384,
        description="Dimension of the synthetic self-test vector",
    )


class QdrantSettings(BaseSettings):
    """Qdrant vector database configuration."""

    model_config = SettingsConfigDict(env_prefix="QDRANT_")

    url: str = Field(
        default="http://localhost:6333",
        description="Qdrant server URL",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="Qdrant API key (optional for local)",
    )
    collection: str = Field(
        default="forest_vectors",
        description="Collection name",
    )
    dimension: int = Field(
        default=1536,
        description="Declared collection dimension",
    )


class ChromaSettings(BaseSettings):
    """ChromaDB configuration.

    An empty URL, or one containing ``embedded``, selects the embedded
    persistent client. Any other URL selects server mode.
    """

    model_config = SettingsConfigDict(env_prefix="CHROMA_")

    url: str = Field(default="", description="Chroma server URL")
    path: str = Field(default=".chromadb", description="Embedded persistence directory")
    collection: str = Field(default="forest_vectors", description="Collection name")
    dimension: int = Field(default=1536, description="Declared collection dimension")


class SQLiteVecSettings(BaseSettings):
    """SQLite + sqlite-vec configuration."""

    model_config = SettingsConfigDict(env_prefix="SQLITEVEC_")

    path: Path | None = Field(
        default=None,
        description="Database file (defaults to <data_dir>/forest_vectors.sqlite)",
    )
    collection: str = Field(default="forest_vectors", description="Table name")
    dimension: int = Field(default=1536, description="Declared collection dimension")


class LocalJSONSettings(BaseSettings):
    """Flat-file fallback provider configuration."""

    model_config = SettingsConfigDict(env_prefix="LOCALJSON_")

    base_dir: Path | None = Field(
        default=None,
        description="Directory for vector files (defaults to <data_dir>/vectors)",
    )
    collection: str = Field(default="forest_vectors", description="Collection file stem")
    dimension: int = Field(default=1536, description="Declared collection dimension")


class EmbeddingSettings(BaseSettings):
    """Embedding service configuration."""

    model_config = SettingsConfigDict(env_prefix="EMBEDDING_")

    provider: str = Field(
        default="http",
        description="Embedding backend: 'http' or 'hash'",
    )
    base_url: str = Field(
        default="https://api.openai.com/v1",
        description="OpenAI-compatible embedding API base URL",
    )
    model: str = Field(
        default="text-embedding-3-small",
        description="Embedding model name",
    )
    api_key: SecretStr | None = Field(
        default=None,
        description="API key for the embedding service",
    )
    timeout: float = Field(
        default=60.0,
        description="Request timeout in seconds",
    )


class CacheSettings(BaseSettings):
    """Operation cache configuration."""

    model_config = SettingsConfigDict(env_prefix="FOREST_CACHE_")

    max_size: int = Field(default=1000, ge=1, description="Maximum cached results")


class CorruptionSettings(BaseSettings):
    """Corruption signature configuration."""

    model_config = SettingsConfigDict(env_prefix="FOREST_CORRUPTION_")

    signatures: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORRUPTION_SIGNATURES),
        description="Lowercase substrings identifying backend corruption",
    )


class Settings(BaseSettings):
    """Main application settings.

    Aggregates all configuration sections.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
        populate_by_name=True,
    )

    # Application settings
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment",
    )
    log_level: str = Field(
        default="INFO",
        description="Logging level",
    )
    debug: bool = Field(
        default=False,
        description="Enable debug mode",
    )
    data_dir: Path = Field(
        default=Path(".forest-data"),
        validation_alias="FOREST_DATA_DIR",
        description="Root directory for sidecar metadata and local vector files",
    )

    # API settings
    api_host: str = Field(
        default="0.0.0.0",
        description="API server host",
    )
    api_port: int = Field(
        default=8000,
        description="API server port",
    )

    # Nested settings
    vector_store: VectorStoreSettings = Field(default_factory=VectorStoreSettings)
    qdrant: QdrantSettings = Field(default_factory=QdrantSettings)
    chroma: ChromaSettings = Field(default_factory=ChromaSettings)
    sqlitevec: SQLiteVecSettings = Field(default_factory=SQLiteVecSettings)
    localjson: LocalJSONSettings = Field(default_factory=LocalJSONSettings)
    embedding: EmbeddingSettings = Field(default_factory=EmbeddingSettings)
    cache: CacheSettings = Field(default_factory=CacheSettings)
    corruption: CorruptionSettings = Field(default_factory=CorruptionSettings)


@lru_cache
def get_settings() -> Settings:
    """Get cached application settings.

    Returns:
        Settings instance loaded from environment.
    """
    return Settings()
