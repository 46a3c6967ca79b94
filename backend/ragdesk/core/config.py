"""Application configuration handling."""

from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Literal, Mapping

import yaml
from pydantic import BaseModel, Field, ValidationInfo, field_validator

ENV_PREFIX = "RAGDESK_"
DEFAULT_CONFIG_PATH = Path("~/.config/ragdesk/config.yaml")

_YAML_KEY_MAP: Mapping[tuple[str, ...], str] = {
    ("storage", "db_path"): "db_path",
    ("storage", "blob_root"): "blob_root",
    ("storage", "max_file_size_mb"): "max_file_size_mb",
    ("embeddings", "provider"): "embedding_provider",
    ("embeddings", "model"): "embedding_model",
    ("embeddings", "dim"): "embedding_dim",
    ("embeddings", "api_key"): "embedding_api_key",
    ("embeddings", "base_url"): "embedding_base_url",
    ("embeddings", "batch_size"): "embedding_batch_size",
    ("completions", "api_key"): "completion_api_key",
    ("completions", "base_url"): "completion_base_url",
    ("completions", "default_model"): "default_model",
    ("providers", "timeout_seconds"): "provider_timeout_seconds",
    ("chunking", "chunk_size"): "chunk_size",
    ("chunking", "chunk_overlap"): "chunk_overlap",
    ("chunking", "tokenizer_model"): "tokenizer_model",
    ("retrieval", "top_k"): "retrieval_top_k",
    ("chat", "history_limit"): "history_limit",
    ("jobs", "mode"): "job_mode",
    ("jobs", "workers"): "worker_count",
    ("jobs", "stuck_after_minutes"): "stuck_after_minutes",
    ("jobs", "queue_url"): "queue_url",
    ("jobs", "queue_token"): "queue_token",
    ("jobs", "queue_retries"): "queue_retries",
    ("jobs", "worker_url"): "worker_url",
    ("jobs", "signing_key"): "signing_key",
    ("jobs", "next_signing_key"): "next_signing_key",
}


class Settings(BaseModel):
    """Runtime configuration loaded from YAML file and environment variables."""

    db_path: Path = Field(default=Path.home() / ".ragdesk" / "ragdesk.db")
    blob_root: Path = Field(default=Path.home() / ".ragdesk" / "blobs")
    max_file_size_mb: int = 50

    embedding_provider: Literal["openai", "hashed"] = "openai"
    embedding_model: str = "text-embedding-3-small"
    embedding_dim: int = 1536
    embedding_api_key: str | None = None
    embedding_base_url: str | None = None
    embedding_batch_size: int = Field(default=16, ge=1)

    completion_api_key: str | None = None
    completion_base_url: str = "https://openrouter.ai/api/v1"
    default_model: str = "meta-llama/llama-3.3-70b-instruct"
    provider_timeout_seconds: float = 60.0

    chunk_size: int = Field(default=1000, ge=1)
    chunk_overlap: int = Field(default=200, ge=0)
    tokenizer_model: str = "gpt-4o-mini"

    retrieval_top_k: int = Field(default=5, ge=1)
    history_limit: int = Field(default=10, ge=0)

    job_mode: Literal["inline", "webhook"] = "inline"
    worker_count: int = Field(default=2, ge=1)
    stuck_after_minutes: int = 30
    queue_url: str = "https://qstash.upstash.io"
    queue_token: str | None = None
    queue_retries: int = 3
    worker_url: str | None = None
    signing_key: str | None = None
    next_signing_key: str | None = None

    model_config = {
        "validate_assignment": True,
        "extra": "ignore",
    }

    @field_validator("db_path", "blob_root", mode="before")
    @classmethod
    def _expand_path(cls, value: Any) -> Path:
        if isinstance(value, Path):
            return value.expanduser()
        if isinstance(value, str):
            return Path(value).expanduser()
        raise TypeError("storage paths must be a path or string")

    @field_validator("chunk_overlap")
    @classmethod
    def _overlap_below_size(cls, value: int, info: ValidationInfo) -> int:
        chunk_size = info.data.get("chunk_size")
        if chunk_size is not None and value >= chunk_size:
            raise ValueError("chunk_overlap must be smaller than chunk_size")
        return value

    @property
    def max_file_size_bytes(self) -> int:
        return self.max_file_size_mb * 1024 * 1024

    @property
    def stuck_after_ms(self) -> int:
        return self.stuck_after_minutes * 60 * 1000

    @classmethod
    def from_yaml(cls, path: Path | None = None) -> "Settings":
        """Load YAML config and overlay env vars; fall back to defaults."""
        config_path = cls._resolve_config_path(path)
        data: dict[str, Any] = {}
        if config_path and config_path.exists():
            with config_path.open("r", encoding="utf-8") as fh:
                raw = yaml.safe_load(fh) or {}
            data.update(_flatten_yaml(raw))
        data.update(_load_provider_keys())
        data.update(_load_env_overrides())
        return cls(**data)

    @staticmethod
    def _resolve_config_path(path: Path | None) -> Path | None:
        if path is not None:
            return path.expanduser()
        env_path = os.environ.get(f"{ENV_PREFIX}CONFIG")
        if env_path:
            return Path(env_path).expanduser()
        resolved_default = DEFAULT_CONFIG_PATH.expanduser()
        return resolved_default if resolved_default.exists() else None


def _flatten_yaml(raw: Mapping[str, Any], prefix: tuple[str, ...] = ()) -> dict[str, Any]:
    """Flatten nested YAML configuration to Settings field names."""
    flat: dict[str, Any] = {}
    for key, value in raw.items():
        next_prefix = prefix + (key,)
        if isinstance(value, Mapping):
            flat.update(_flatten_yaml(value, prefix=next_prefix))
        else:
            mapped_key = _YAML_KEY_MAP.get(next_prefix)
            if mapped_key:
                flat[mapped_key] = value
            elif key in Settings.model_fields:
                flat[key] = value
    return flat


def _load_provider_keys() -> dict[str, Any]:
    """Pick up the conventional provider key variables."""
    keys: dict[str, Any] = {}
    if os.environ.get("OPENAI_API_KEY"):
        keys["embedding_api_key"] = os.environ["OPENAI_API_KEY"]
    if os.environ.get("OPENROUTER_API_KEY"):
        keys["completion_api_key"] = os.environ["OPENROUTER_API_KEY"]
    return keys


def _load_env_overrides() -> dict[str, Any]:
    """Map environment variables with RAGDESK_ prefix into Settings fields."""
    overrides: dict[str, Any] = {}
    for key, value in os.environ.items():
        if not key.startswith(ENV_PREFIX):
            continue
        field_name = key[len(ENV_PREFIX) :].lower()
        if field_name in Settings.model_fields:
            overrides[field_name] = value
    return overrides


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Cached settings accessor for dependency injection."""
    return Settings.from_yaml()


__all__ = ["Settings", "get_settings"]
