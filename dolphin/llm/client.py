"""Generative AI client facade shared by the solve, search, translate and video stages."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from dotenv import load_dotenv
from google import genai

from dolphin.llm.errors import ConfigurationError, TransportError, translate_exception
from dolphin.utils.logger import get_logger


T = TypeVar("T")

logger = get_logger("dolphin.llm")

FALLBACK_KEY_ENVS = ("GEMINI_API_KEY", "GOOGLE_API_KEY", "API_KEY")

DEFAULT_MODELS: Dict[str, str] = {
    "solver": "gemini-3-pro-preview",
    "search": "gemini-2.5-flash",
    "verifier": "gemini-3-pro-preview",
    "translator": "gemini-2.5-flash",
    "video": "veo-3.1-fast-generate-preview",
}


@dataclass
class LLMRuntimeConfig:
    """Runtime configuration for the generative client.

    Attributes:
        enabled: Enables or disables the client bootstrap.
        provider: Provider name supported by this client facade.
        api_key_env: Preferred environment variable for the API key.
        models: Model identifier per pipeline stage.
        thinking_budget: Reasoning token budget requested for the solve stage.
        request_timeout_seconds: Upper bound for a single remote call.
        max_image_bytes: Maximum image payload accepted by the media encoder.
        require_available: Refuse to serve when no provider client can be built.
    """

    enabled: bool = True
    provider: str = "google"
    api_key_env: str = "GEMINI_API_KEY"
    models: Dict[str, str] = field(default_factory=lambda: dict(DEFAULT_MODELS))
    thinking_budget: int = 4096
    request_timeout_seconds: float = 120.0
    max_image_bytes: int = 20971520
    require_available: bool = False


class GenerativeClient:
    """Facade over `google-genai` with credential and timeout safeguards.

    This class centralizes:
    - provider bootstrap and key resolution;
    - content generation and video-job calls on the async SDK surface;
    - translation of SDK/transport failures into the local error taxonomy.

    The SDK client is cached until :meth:`refresh` is called, so a newly
    selected credential takes effect on the next call.
    """

    def __init__(self, config: Optional[Dict[str, Any]] = None) -> None:
        """Builds a client from runtime config and bootstraps provider access.

        Args:
            config: Optional runtime settings overriding defaults.
        """
        raw = config or {}
        models = dict(DEFAULT_MODELS)
        models.update({str(k): str(v) for k, v in dict(raw.get("models", {}) or {}).items()})
        self.config = LLMRuntimeConfig(
            enabled=bool(raw.get("enabled", True)),
            provider=str(raw.get("provider", "google")),
            api_key_env=str(raw.get("api_key_env", "GEMINI_API_KEY")),
            models=models,
            thinking_budget=int(raw.get("thinking_budget", 4096)),
            request_timeout_seconds=float(raw.get("request_timeout_seconds", 120.0)),
            max_image_bytes=int(raw.get("max_image_bytes", 20971520)),
            require_available=bool(raw.get("require_available", False)),
        )

        self._client: Optional[Any] = None
        self._client_key: Optional[str] = None
        self._unavailable_reason: Optional[str] = None
        self._bootstrap()

    @property
    def is_available(self) -> bool:
        """Indicates whether the provider client is ready for inference."""
        return self._client is not None

    @property
    def api_key(self) -> Optional[str]:
        """Returns the key currently visible in the environment."""
        return resolve_api_key(self._key_candidates())

    def model_for(self, stage: str) -> str:
        return self.config.models.get(stage) or DEFAULT_MODELS[stage]

    def describe(self) -> Dict[str, Any]:
        """Returns diagnostics about provider and key availability.

        Returns:
            A serializable dictionary with provider/runtime metadata.
        """
        return {
            "enabled": self.config.enabled,
            "provider": self.config.provider,
            "models": dict(self.config.models),
            "available": self.is_available,
            "reason": self._unavailable_reason,
            "api_key_env": self.config.api_key_env,
            "api_key_present": bool(self.api_key),
            "require_available": self.config.require_available,
        }

    def refresh(self) -> None:
        """Drops the cached SDK client and bootstraps again from the environment."""
        self._client = None
        self._client_key = None
        self._unavailable_reason = None
        self._bootstrap()

    def _bootstrap(self) -> None:
        if not self.config.enabled:
            self._unavailable_reason = "disabled_by_config"
            return
        if self.config.provider != "google":
            self._unavailable_reason = "unsupported_provider"
            return
        _load_environment_variables()

        api_key = self.api_key
        if not api_key:
            self._unavailable_reason = "missing_api_key"
            return

        self._client = genai.Client(api_key=api_key)
        self._client_key = api_key
        self._unavailable_reason = None

    def _key_candidates(self) -> List[str]:
        return api_key_candidates(self.config.api_key_env)

    def _require_client(self) -> Any:
        if self._client is None or self._client_key != self.api_key:
            self.refresh()
        if self._client is None:
            if self._unavailable_reason == "missing_api_key":
                raise ConfigurationError("API Key not found")
            raise ConfigurationError("Inference client unavailable: {}".format(self._unavailable_reason))
        return self._client

    async def _call(self, operation: str, factory: Callable[[Any], Awaitable[T]]) -> T:
        client = self._require_client()
        timeout = self.config.request_timeout_seconds
        try:
            return await asyncio.wait_for(factory(client), timeout=timeout)
        except asyncio.TimeoutError as exc:
            logger.warning("inference_timeout operation=%s timeout_s=%.1f", operation, timeout)
            raise TransportError(
                "{} exceeded call timeout of {:.1f}s".format(operation, timeout),
                timed_out=True,
            ) from exc
        except Exception as exc:
            translated = translate_exception(exc)
            if translated is exc:
                raise
            raise translated from exc

    async def generate_content(self, model: str, contents: Any, config: Optional[Any] = None) -> Any:
        """Runs one `generate_content` request.

        Args:
            model: Model identifier.
            contents: Text, parts, or a list of both.
            config: Optional `GenerateContentConfig`.

        Returns:
            The SDK `GenerateContentResponse`.
        """
        return await self._call(
            "generate_content",
            lambda client: client.aio.models.generate_content(model=model, contents=contents, config=config),
        )

    async def generate_videos(self, model: str, prompt: str, config: Optional[Any] = None) -> Any:
        """Creates a video generation job and returns its operation handle."""
        return await self._call(
            "generate_videos",
            lambda client: client.aio.models.generate_videos(model=model, prompt=prompt, config=config),
        )

    async def get_video_operation(self, operation: Any) -> Any:
        """Fetches the refreshed state of a video generation operation."""
        return await self._call(
            "get_video_operation",
            lambda client: client.aio.operations.get(operation),
        )


def _load_environment_variables() -> None:
    """Loads environment variables from candidate `.env` files."""
    env_candidates = [
        Path.cwd() / ".env",
        Path(__file__).resolve().parents[2] / ".env",
    ]
    for env_path in env_candidates:
        if env_path.exists():
            load_dotenv(dotenv_path=env_path, override=False)


def api_key_candidates(preferred: str) -> List[str]:
    """Returns `preferred` followed by the fallback key variables."""
    return [preferred] + [name for name in FALLBACK_KEY_ENVS if name != preferred]


def resolve_api_key(candidates: List[str]) -> Optional[str]:
    """Finds the first non-empty API key among candidate env vars.

    Args:
        candidates: Environment variable names ordered by preference.

    Returns:
        First non-empty key value, or None when no candidate is set.
    """
    for name in candidates:
        if not name:
            continue
        value = (os.getenv(name) or "").strip()
        if value:
            return value
    return None
