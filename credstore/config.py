"""
Configuration for credstore.

Uses pydantic-settings for environment variable loading. Every
setting reads from ``CREDSTORE_<NAME>``.

Invariants:
    - All settings have defaults that work for local development
    - The remote API key is a SecretStr and is never logged
"""

from __future__ import annotations

import logging
from enum import Enum
from typing import Optional

from pydantic import Field, SecretStr
from pydantic_settings import BaseSettings

from .allocator import AllocationMode

logger = logging.getLogger(__name__)


class BackendKind(Enum):
    """Supported entry backends."""

    MEMORY = "memory"
    REMOTE = "remote"


class Settings(BaseSettings):
    """Entry store configuration loaded from environment."""

    # Backend selection
    backend: BackendKind = Field(default=BackendKind.MEMORY, description="Entry backend")
    serial_allocation: AllocationMode = Field(
        default=AllocationMode.ATOMIC, description="Serial allocation mode"
    )

    # In-memory backend
    memory_latency_ms: int = Field(default=0, ge=0, description="Simulated latency per call")
    seed_sample_entries: int = Field(default=0, ge=0, description="Demo entries to preload")

    # Remote backend
    remote_url: str = Field(
        default="http://localhost:8080/app/data/endpoint/data/v1",
        description="Document-store proxy endpoint",
    )
    remote_api_key: SecretStr = Field(default=SecretStr(""), description="Proxy bearer token")
    data_source: Optional[str] = Field(default=None, description="Proxy data source name")
    database: str = Field(default="credstore", description="Database name")
    collection: str = Field(default="entries", description="Entry collection")
    counters_collection: str = Field(default="counters", description="Serial counter collection")
    request_timeout: float = Field(default=10.0, gt=0, description="Request timeout seconds")
    allocation_retries: int = Field(default=5, ge=1, description="Atomic allocation attempts")

    # Uniqueness validator
    debounce_ms: int = Field(default=500, ge=0, description="Validator quiescence window")

    # Logging
    log_level: str = Field(default="INFO", description="Logging level")
    log_format: str = Field(default="text", description="Log format (text, json)")

    model_config = {"env_prefix": "CREDSTORE_"}

    @property
    def debounce_seconds(self) -> float:
        return self.debounce_ms / 1000

    def validate_backend(self) -> None:
        """Validate backend-specific settings.

        Raises:
            ValueError: If the selected backend is missing required settings
        """
        if self.backend == BackendKind.REMOTE:
            if not self.remote_url:
                raise ValueError("CREDSTORE_REMOTE_URL is required when CREDSTORE_BACKEND=remote")
            if not self.collection:
                raise ValueError("CREDSTORE_COLLECTION is required when CREDSTORE_BACKEND=remote")
            if not self.remote_api_key.get_secret_value():
                logger.warning("CREDSTORE_REMOTE_API_KEY is empty; proxy calls are unauthenticated")

    def log_settings(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Entry store configuration loaded",
            extra={
                "backend": self.backend.value,
                "serial_allocation": self.serial_allocation.value,
                "remote_url": self.remote_url if self.backend == BackendKind.REMOTE else None,
                "database": self.database if self.backend == BackendKind.REMOTE else None,
                "collection": self.collection if self.backend == BackendKind.REMOTE else None,
                "api_key_set": bool(self.remote_api_key.get_secret_value()),
                "debounce_ms": self.debounce_ms,
                "log_level": self.log_level,
            },
        )
