"""Utility helpers for the Dolphin STEM solver."""

from .config_loader import (
    AppConfig,
    ConfigError,
    load_app_config,
    load_prompts_registry,
    render_prompt,
)
from .latex import normalize_latex_delimiters
from .logger import configure_logging, get_logger
from .preferences import PreferenceStore, SearchHistory

__all__ = [
    "AppConfig",
    "ConfigError",
    "load_app_config",
    "load_prompts_registry",
    "render_prompt",
    "normalize_latex_delimiters",
    "configure_logging",
    "get_logger",
    "PreferenceStore",
    "SearchHistory",
]
