"""
Configuration management for the Adventure Engine
"""

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings loaded from environment variables"""

    # Server Configuration
    host: str = Field(default="0.0.0.0")
    port: int = Field(default=8000)
    debug: bool = Field(default=False)
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(
        default="INFO"
    )
    log_file: str = Field(default="")

    # Choice evaluation
    evaluation_cache_size: int = Field(
        default=1000, description="Maximum memoised choice evaluations"
    )

    # Content cache and preloading
    content_cache_max_entries: int = Field(default=100)
    content_cache_memory_threshold: int = Field(
        default=50 * 1024 * 1024, description="Cache memory cap in bytes"
    )
    preload_distance: int = Field(default=2)
    unload_distance: int = Field(default=5)
    cleanup_interval_seconds: float = Field(default=300.0)
    compression_enabled: bool = Field(default=True)
    compression_threshold_bytes: int = Field(default=10_000)
    unload_priority_threshold: int = Field(default=5)
    unload_idle_seconds: float = Field(default=300.0)
    prefetch_probability_threshold: float = Field(default=0.3)

    # Adventure file ingestion
    max_file_size_bytes: int = Field(default=50 * 1024 * 1024)
    read_chunk_size: int = Field(default=64 * 1024)
    streaming_threshold_bytes: int = Field(
        default=1024 * 1024,
        description="Files above this size are read in chunks",
    )
    read_timeout_seconds: float = Field(
        default=30.0, description="Per-chunk read timeout"
    )
    max_scenes: int = Field(default=10_000)
    optimize_memory_threshold_bytes: int = Field(
        default=512 * 1024,
        description="Loaded files above this size get scene content packed",
    )
    scene_content_compression_chars: int = Field(default=1000)
    save_chunk_threshold: int = Field(default=100)
    save_chunk_size: int = Field(default=50)
    save_compression_threshold_bytes: int = Field(default=1024 * 1024)
    batch_concurrency: int = Field(default=2)
    memory_warning_bytes: int = Field(
        default=1024 * 1024 * 1024,
        description="Resident memory above which batch loads warn and collect",
    )

    class Config:
        env_file = ".env"
        case_sensitive = False


# Global settings instance
settings = Settings()
