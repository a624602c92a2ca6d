"""Configuration package for livequiz."""

from livequiz.config.app_config import (
    MAX_QUIZ_COUNT,
    AppConfig,
    BroadcastConfig,
    GenerationConfig,
    IngestionConfig,
    ProviderConfig,
    clear_config_cache,
    get_provider_config,
    load_app_config,
)

__all__ = [
    "MAX_QUIZ_COUNT",
    "AppConfig",
    "BroadcastConfig",
    "GenerationConfig",
    "IngestionConfig",
    "ProviderConfig",
    "clear_config_cache",
    "get_provider_config",
    "load_app_config",
]
