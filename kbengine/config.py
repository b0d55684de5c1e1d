from functools import lru_cache
from typing import Literal

from pydantic import (
    Field,
    field_validator,  # v2 validator
)
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """
    Central configuration for the knowledge-base engine (Pydantic v2).
    Loads from environment variables and a .env file (if present).
    """

    # --- Runtime / env ---
    env: Literal["dev", "prod", "test"] = "dev"
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # --- Storage ---
    sqlite_path: str = Field("kb_local.db", alias="KB_SQLITE_PATH")
    sqlite_busy_timeout_ms: int = Field(5000, ge=0)
    append_batch_size: int = Field(200, ge=1, le=10_000)
    delete_batch_size: int = Field(500, ge=1, le=10_000)

    # --- Chunking ---
    chunk_size: int = Field(800, ge=1, alias="KB_CHUNK_SIZE")
    chunk_overlap: int = Field(100, ge=0, alias="KB_CHUNK_OVERLAP")

    # --- Retrieval ---
    top_k: int = Field(5, ge=1, le=50)
    bm25_k1: float = Field(1.5, gt=0.0)
    bm25_b: float = Field(0.75, ge=0.0, le=1.0)

    # --- Embeddings ---
    openai_api_key: str | None = Field(default=None, alias="OPENAI_API_KEY")
    aliyun_api_key: str | None = Field(default=None, alias="DASHSCOPE_API_KEY")
    openai_embed_model: str = Field("text-embedding-3-small", alias="OPENAI_EMBED_MODEL")
    aliyun_embed_model: str = Field("text-embedding-v2", alias="ALIYUN_EMBED_MODEL")
    embed_timeout: float | None = Field(default=None, alias="EMBED_TIMEOUT")  # None = wait forever

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
        populate_by_name=True,
    )

    @field_validator("chunk_overlap")
    @classmethod
    def _overlap_below_size(cls, v, info):
        data = info.data if hasattr(info, "data") else {}
        size = data.get("chunk_size", 800)
        if v >= size:
            raise ValueError(f"chunk_overlap ({v}) must be smaller than chunk_size ({size})")
        return v


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings instance so every import doesn't re-parse the env."""
    return Settings()
