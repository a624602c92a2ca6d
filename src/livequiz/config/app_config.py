"""Application configuration loader.

Loads centralized configuration from data/config/livequiz.yaml (or the
path in LIVEQUIZ_CONFIG) with built-in defaults for every section.

Usage:
    from livequiz.config.app_config import load_app_config

    config = load_app_config()
    interval = config.ingestion.poll_interval
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import structlog
import yaml

logger = structlog.get_logger(__name__)

# Config file path (relative to project root)
CONFIG_FILE = Path("data/config/livequiz.yaml")
CONFIG_ENV_VAR = "LIVEQUIZ_CONFIG"

# Hard ceiling on quiz items per generation call
MAX_QUIZ_COUNT = 50


@dataclass
class ProviderConfig:
    """Configuration for a single OpenAI-compatible provider."""

    base_url: str | None
    default_model: str
    api_key_env: str | None = None

    def get_api_key(self) -> str | None:
        """Get API key from environment variable."""
        if self.api_key_env:
            return os.environ.get(self.api_key_env)
        return None


@dataclass
class IngestionConfig:
    """Configuration for background material ingestion."""

    poll_interval: float = 1.0
    max_poll_attempts: int = 60
    snapshot_chars: int = 1000
    max_concurrent_jobs: int = 4
    max_pending_jobs: int = 64
    shutdown_timeout: float = 10.0


@dataclass
class GenerationConfig:
    """Configuration for quiz generation."""

    provider: str = "openai"
    extraction_provider: str = "openai"
    max_count: int = MAX_QUIZ_COUNT
    default_count: int = 10
    timeout: float = 120.0
    max_context_chars: int = 200_000


@dataclass
class BroadcastConfig:
    """Configuration for the live quiz broadcast channel."""

    heartbeat_interval: float = 30.0
    send_timeout: float = 5.0
    queue_size: int = 32
    latest_window_seconds: int = 300


@dataclass
class AppConfig:
    """Application-wide configuration."""

    providers: dict[str, ProviderConfig] = field(default_factory=dict)
    ingestion: IngestionConfig = field(default_factory=IngestionConfig)
    generation: GenerationConfig = field(default_factory=GenerationConfig)
    broadcast: BroadcastConfig = field(default_factory=BroadcastConfig)
    db_path: str = "db/livequiz.db"


# Module-level cache
_cached_config: AppConfig | None = None


def _get_defaults() -> dict[str, Any]:
    """Get default configuration values."""
    return {
        "providers": {
            "lmstudio": {
                "base_url": "http://localhost:1234/v1",
                "default_model": "llama-3.2-3b-instruct",
                "api_key_env": None,
            },
            "openai": {
                "base_url": None,
                "default_model": "gpt-4o-mini",
                "api_key_env": "OPENAI_API_KEY",
            },
        },
        "ingestion": {},
        "generation": {},
        "broadcast": {},
        "db_path": "db/livequiz.db",
    }


def _section(data: dict[str, Any], name: str, cls: type) -> Any:
    """Build a section dataclass, ignoring unknown keys."""
    raw = data.get(name) or {}
    known = {k: v for k, v in raw.items() if k in cls.__dataclass_fields__}
    unknown = sorted(set(raw) - set(known))
    if unknown:
        logger.warning("config.unknown_keys", section=name, keys=unknown)
    return cls(**known)


def _parse_config(data: dict[str, Any]) -> AppConfig:
    """Parse configuration dictionary into AppConfig object."""
    defaults = _get_defaults()

    providers = {}
    for name, pconfig in (data.get("providers") or defaults["providers"]).items():
        providers[name] = ProviderConfig(
            base_url=pconfig.get("base_url"),
            default_model=pconfig.get("default_model", "default"),
            api_key_env=pconfig.get("api_key_env"),
        )

    generation = _section(data, "generation", GenerationConfig)
    if generation.max_count > MAX_QUIZ_COUNT:
        logger.warning(
            "config.max_count_clamped",
            configured=generation.max_count,
            ceiling=MAX_QUIZ_COUNT,
        )
        generation.max_count = MAX_QUIZ_COUNT

    return AppConfig(
        providers=providers,
        ingestion=_section(data, "ingestion", IngestionConfig),
        generation=generation,
        broadcast=_section(data, "broadcast", BroadcastConfig),
        db_path=data.get("db_path", defaults["db_path"]),
    )


def _config_path() -> Path:
    override = os.environ.get(CONFIG_ENV_VAR)
    return Path(override) if override else CONFIG_FILE


def load_app_config(force_reload: bool = False) -> AppConfig:
    """Load application config, falling back to defaults.

    Args:
        force_reload: If True, ignore cached config and reload from file.

    Returns:
        AppConfig object with all settings.
    """
    global _cached_config

    if _cached_config is not None and not force_reload:
        return _cached_config

    path = _config_path()
    if path.exists():
        logger.debug("loading_app_config", source=str(path))
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    else:
        logger.info("using_default_config")
        data = _get_defaults()

    _cached_config = _parse_config(data)
    return _cached_config


def get_provider_config(provider: str) -> ProviderConfig | None:
    """Get configuration for a specific provider.

    Args:
        provider: Provider name (e.g., "lmstudio", "openai")

    Returns:
        ProviderConfig or None if provider not found.
    """
    config = load_app_config()
    return config.providers.get(provider)


def clear_config_cache() -> None:
    """Clear the configuration cache.

    Useful for testing or when config is modified at runtime.
    """
    global _cached_config
    _cached_config = None
