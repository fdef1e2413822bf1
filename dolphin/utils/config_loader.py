"""Configuration loaders for YAML-based runtime settings and prompt registry."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml


@dataclass
class RuntimeSettings:
    job_queue_size: int = 8
    job_retention_seconds: int = 1800
    job_worker_count: int = 1
    max_sessions: int = 64


@dataclass
class VideoSettings:
    number_of_videos: int = 1
    resolution: str = "720p"
    aspect_ratio: str = "16:9"
    poll_interval_seconds: float = 10.0
    max_poll_attempts: Optional[int] = 90
    backoff_factor: float = 1.0
    max_poll_interval_seconds: float = 60.0


@dataclass
class HistorySettings:
    path: str = ".dolphin/preferences.json"
    key: str = "dolphin_search_history"
    limit: int = 5


@dataclass
class TranslationSettings:
    source_language: str = "English"
    languages: List[str] = field(default_factory=lambda: ["English", "Hindi"])


@dataclass
class AppConfig:
    version: str = "1.0.0"
    runtime: RuntimeSettings = field(default_factory=RuntimeSettings)
    video: VideoSettings = field(default_factory=VideoSettings)
    history: HistorySettings = field(default_factory=HistorySettings)
    translation: TranslationSettings = field(default_factory=TranslationSettings)
    llm: Dict[str, Any] = field(default_factory=dict)
    logging: Dict[str, Any] = field(default_factory=dict)


class ConfigError(RuntimeError):
    """Raised when configuration files cannot be loaded or validated."""


def _load_yaml(path: Path) -> Dict[str, Any]:
    if not path.exists():
        raise ConfigError("Configuration file not found: {}".format(path))
    with path.open("r", encoding="utf-8") as handle:
        loaded = yaml.safe_load(handle) or {}
    if not isinstance(loaded, dict):
        raise ConfigError("Configuration root must be a mapping in {}".format(path))
    return loaded


def _optional_int(value: Any) -> Optional[int]:
    if value is None:
        return None
    return int(value)


def load_app_config(path: str = "configs/app_config.yml") -> AppConfig:
    data = _load_yaml(Path(path))
    runtime_data = data.get("runtime", {}) or {}
    video_data = data.get("video", {}) or {}
    history_data = data.get("history", {}) or {}
    translation_data = data.get("translation", {}) or {}

    runtime = RuntimeSettings(
        job_queue_size=int(runtime_data.get("job_queue_size", 8)),
        job_retention_seconds=int(runtime_data.get("job_retention_seconds", 1800)),
        job_worker_count=int(runtime_data.get("job_worker_count", 1)),
        max_sessions=int(runtime_data.get("max_sessions", 64)),
    )
    video = VideoSettings(
        number_of_videos=int(video_data.get("number_of_videos", 1)),
        resolution=str(video_data.get("resolution", "720p")),
        aspect_ratio=str(video_data.get("aspect_ratio", "16:9")),
        poll_interval_seconds=float(video_data.get("poll_interval_seconds", 10.0)),
        max_poll_attempts=_optional_int(video_data.get("max_poll_attempts", 90)),
        backoff_factor=float(video_data.get("backoff_factor", 1.0)),
        max_poll_interval_seconds=float(video_data.get("max_poll_interval_seconds", 60.0)),
    )
    history = HistorySettings(
        path=str(history_data.get("path", ".dolphin/preferences.json")),
        key=str(history_data.get("key", "dolphin_search_history")),
        limit=int(history_data.get("limit", 5)),
    )
    languages = translation_data.get("languages", ["English", "Hindi"])
    if not isinstance(languages, list):
        raise ConfigError("'translation.languages' must be a list in {}".format(path))
    translation = TranslationSettings(
        source_language=str(translation_data.get("source_language", "English")),
        languages=[str(item) for item in languages],
    )

    return AppConfig(
        version=str(data.get("version", "1.0.0")),
        runtime=runtime,
        video=video,
        history=history,
        translation=translation,
        llm=dict(data.get("llm", {}) or {}),
        logging=dict(data.get("logging", {}) or {}),
    )


def _resolve_prompt(name: str, prompts: Dict[str, Any], seen: Optional[set] = None) -> Dict[str, str]:
    seen = seen or set()
    if name in seen:
        raise ConfigError("Cyclic prompt inheritance detected at '{}'".format(name))
    seen.add(name)

    registry = prompts.get("registry", {})
    node = registry.get(name)
    if not isinstance(node, dict):
        raise ConfigError("Prompt '{}' not found in registry".format(name))

    base: Dict[str, str] = {}
    parent = node.get("extends")
    if parent:
        base = _resolve_prompt(str(parent), prompts, seen)

    merged = dict(base)
    for key in ("system", "user"):
        if key in node:
            merged[key] = str(node[key])
    return merged


def load_prompts_registry(path: str = "configs/prompts.yml") -> Dict[str, Dict[str, str]]:
    data = _load_yaml(Path(path))
    registry = data.get("registry", {})
    if not isinstance(registry, dict):
        raise ConfigError("'registry' must be a mapping in prompts configuration")

    resolved: Dict[str, Dict[str, str]] = {}
    for name in registry:
        resolved[name] = _resolve_prompt(str(name), data)
    return resolved


_PLACEHOLDER = re.compile(r"\{\{\s*([A-Za-z_][A-Za-z0-9_]*)\s*\}\}")


def render_prompt(template: str, context: Dict[str, Any]) -> str:
    """Fills `{{name}}` placeholders from `context`.

    Non-string values are serialized as JSON. Unknown placeholders are left
    untouched so literal braces in math survive rendering.
    """

    def _substitute(match: "re.Match[str]") -> str:
        key = match.group(1)
        if key not in context:
            return match.group(0)
        value = context[key]
        if isinstance(value, str):
            return value
        return json.dumps(value, ensure_ascii=False)

    return _PLACEHOLDER.sub(_substitute, template)
