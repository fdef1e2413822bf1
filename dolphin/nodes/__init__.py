"""Pipeline stages calling the inference service."""

from .search import NO_RESULTS_TEXT, VERIFICATION_FALLBACK, SearchAndVerifyPipeline, dedupe_sources
from .solver import StructuredSolveClient, parse_solution
from .translator import TranslationCache, TranslationCacheManager, TranslationKey, TranslationOutcome
from .video import VideoJobPoller, VideoResult, poll_until

__all__ = [
    "NO_RESULTS_TEXT",
    "VERIFICATION_FALLBACK",
    "SearchAndVerifyPipeline",
    "dedupe_sources",
    "StructuredSolveClient",
    "parse_solution",
    "TranslationCache",
    "TranslationCacheManager",
    "TranslationKey",
    "TranslationOutcome",
    "VideoJobPoller",
    "VideoResult",
    "poll_until",
]
