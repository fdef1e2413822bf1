"""Inference client facade and error taxonomy."""

from .client import DEFAULT_MODELS, GenerativeClient, LLMRuntimeConfig
from .errors import (
    AuthorizationError,
    ConfigurationError,
    EmptyResultError,
    InferenceError,
    NoResponseError,
    NoVideoError,
    PollTimeoutError,
    SchemaViolationError,
    TransportError,
)

__all__ = [
    "DEFAULT_MODELS",
    "GenerativeClient",
    "LLMRuntimeConfig",
    "AuthorizationError",
    "ConfigurationError",
    "EmptyResultError",
    "InferenceError",
    "NoResponseError",
    "NoVideoError",
    "PollTimeoutError",
    "SchemaViolationError",
    "TransportError",
]
