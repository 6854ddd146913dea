"""Configuration for vaultcue.

Pydantic models with the defaults the plugin ships with. ``Settings()``
reads ``VAULTCUE_*`` environment variables (and a ``.env`` file), with
sections separated by ``__``, e.g. ``VAULTCUE_QUEUE__MAX_CONCURRENT=5``.
Mapping keys may be snake_case or camelCase.
"""

from __future__ import annotations

import logging
from typing import Any, Mapping

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    ValidationError,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel
from pydantic_settings import BaseSettings, SettingsConfigDict

LOG_LEVELS = ("debug", "info", "warn", "warning", "error")


class _Section(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        validate_assignment=True,
        extra="ignore",
    )


class ChunkSettings(_Section):
    """Text chunking settings, sizes in characters.

    Field combinations are checked by ``Settings`` and by ``TextSplitter``,
    which raises ``ChunkingError`` for unusable values.
    """

    chunk_size: int = 1000
    chunk_overlap: int = 200
    min_chunk_size: int = 100


class QueueSettings(_Section):
    """Scheduler settings. Delays are in seconds."""

    max_concurrent: int = 3
    max_retries: int = 3
    retry_delay: float = 1.0
    retry_backoff_base: float = 1.0  # Exponential backoff base for store failures
    capacity: int = 1000
    tick_interval: float = 1.0
    history_size: int = 1000

    @field_validator("max_concurrent")
    @classmethod
    def _check_max_concurrent(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Maximum concurrent tasks must be at least 1")
        return v

    @field_validator("max_retries")
    @classmethod
    def _check_max_retries(cls, v: int) -> int:
        if v < 0:
            raise ValueError("Retry attempts cannot be negative")
        return v

    @field_validator("retry_delay", "retry_backoff_base")
    @classmethod
    def _check_delay(cls, v: float) -> float:
        if v < 0:
            raise ValueError("Retry delay cannot be negative")
        return v

    @field_validator("capacity")
    @classmethod
    def _check_capacity(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Queue capacity must be at least 1")
        return v

    @field_validator("tick_interval")
    @classmethod
    def _check_tick(cls, v: float) -> float:
        if v <= 0:
            raise ValueError("Tick interval must be positive")
        return v


class StoreSettings(_Section):
    """Chunk store settings."""

    db_path: str = ":memory:"
    max_attempts: int = 3
    backoff_base: float = 1.0

    @field_validator("max_attempts")
    @classmethod
    def _check_attempts(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Store attempts must be at least 1")
        return v


class DebugSettings(_Section):
    log_level: str = "info"

    @field_validator("log_level")
    @classmethod
    def _check_level(cls, v: str) -> str:
        v = v.strip().lower()
        if v not in LOG_LEVELS:
            raise ValueError(f"Unknown log level: {v}")
        return v

    @property
    def level(self) -> int:
        """The ``logging`` level number."""
        if self.log_level.startswith("warn"):
            return logging.WARNING
        return getattr(logging, self.log_level.upper())


class Settings(BaseSettings):
    """
    All vaultcue settings.

    Example:
        settings = Settings()  # defaults + VAULTCUE_* environment
        settings = Settings.from_mapping({"queue": {"maxConcurrent": 5}})
    """

    model_config = SettingsConfigDict(
        env_prefix="VAULTCUE_",
        env_nested_delimiter="__",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    chunking: ChunkSettings = Field(default_factory=ChunkSettings)
    queue: QueueSettings = Field(default_factory=QueueSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    debug: DebugSettings = Field(default_factory=DebugSettings)

    @model_validator(mode="after")
    def _check_chunking(self) -> Settings:
        problems = chunking_problems(self.chunking)
        if problems:
            raise ValueError("; ".join(problems))
        return self

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> Settings:
        """
        Build settings from nested dicts, ignoring the environment.

        Unknown keys are ignored.

        Raises:
            pydantic.ValidationError: If a value is invalid.
        """
        return cls.model_validate(dict(data or {}))


def chunking_problems(chunking: ChunkSettings) -> list[str]:
    problems = []
    if chunking.chunk_size <= 0:
        problems.append("Chunk size must be greater than 0")
    if chunking.chunk_size < chunking.min_chunk_size:
        problems.append("Chunk size must be greater than minimum chunk size")
    if chunking.chunk_overlap >= chunking.chunk_size:
        problems.append("Chunk overlap must be less than chunk size")
    if chunking.chunk_overlap < 0:
        problems.append("Chunk overlap cannot be negative")
    return problems


def validate_settings(data: Mapping[str, Any] | None) -> list[str]:
    """Return human-readable problems with ``data``; empty when it is usable."""
    try:
        Settings.from_mapping(data)
    except ValidationError as e:
        problems = []
        for error in e.errors():
            cause = error.get("ctx", {}).get("error")
            if cause is not None:
                problems.extend(str(cause).split("; "))
            else:
                location = ".".join(str(part) for part in error["loc"])
                problems.append(f"{location}: {error['msg']}")
        return problems
    return []
