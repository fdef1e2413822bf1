"""Video generation: job submission and polling until the operation finishes."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Optional, TypeVar
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from google.genai import types

from dolphin.llm.errors import ConfigurationError, NoVideoError, PollTimeoutError, TransportError
from dolphin.utils.config_loader import VideoSettings
from dolphin.utils.logger import get_logger


T = TypeVar("T")

logger = get_logger("dolphin.video")

SleepFn = Callable[[float], Awaitable[Any]]


@dataclass
class PollOutcome:
    value: Any
    cycles: int


async def poll_until(
    initial: T,
    refresh: Callable[[T], Awaitable[T]],
    is_done: Callable[[T], bool],
    interval_seconds: float,
    max_attempts: Optional[int] = None,
    backoff_factor: float = 1.0,
    max_interval_seconds: Optional[float] = None,
    sleep: SleepFn = asyncio.sleep,
) -> PollOutcome:
    """Waits and refreshes `initial` until `is_done` holds.

    Each cycle sleeps for the current interval and replaces the value with the
    refreshed one. The interval grows by `backoff_factor` per cycle, capped by
    `max_interval_seconds`.

    Args:
        initial: First observed value.
        refresh: Coroutine returning the refreshed value.
        is_done: Completion predicate.
        interval_seconds: Initial wait between checks.
        max_attempts: Maximum wait-and-recheck cycles; None polls indefinitely.
        backoff_factor: Multiplier applied to the interval after each cycle.
        max_interval_seconds: Upper bound for the interval.
        sleep: Awaitable sleep function.

    Returns:
        The final value and the number of cycles performed.

    Raises:
        PollTimeoutError: If `max_attempts` cycles pass without completion.
    """
    current = initial
    cycles = 0
    interval = max(0.0, float(interval_seconds))
    factor = max(1.0, float(backoff_factor))
    while not is_done(current):
        if max_attempts is not None and cycles >= max_attempts:
            raise PollTimeoutError("Job did not finish after {} checks.".format(cycles), attempts=cycles)
        await sleep(interval)
        current = await refresh(current)
        cycles += 1
        interval = interval * factor
        if max_interval_seconds is not None:
            interval = min(interval, float(max_interval_seconds))
    return PollOutcome(value=current, cycles=cycles)


def append_query_param(uri: str, name: str, value: str) -> str:
    """Appends one query parameter, keeping any existing query string."""
    parts = urlsplit(uri)
    query = parse_qsl(parts.query, keep_blank_values=True)
    query.append((name, value))
    return urlunsplit(parts._replace(query=urlencode(query)))


def extract_video_uri(operation: Any) -> Optional[str]:
    """Returns the first generated video URI of a finished operation."""
    response = getattr(operation, "response", None) or getattr(operation, "result", None)
    videos = getattr(response, "generated_videos", None) or []
    if not videos:
        return None
    video = getattr(videos[0], "video", None)
    uri = str(getattr(video, "uri", "") or "").strip()
    return uri or None


@dataclass
class VideoResult:
    uri: str
    poll_cycles: int


class VideoJobPoller:
    """Submits a prompt to the video model and polls the job to completion."""

    def __init__(
        self,
        llm_client: Any,
        settings: Optional[VideoSettings] = None,
        model: Optional[str] = None,
        sleep: SleepFn = asyncio.sleep,
    ) -> None:
        self.llm_client = llm_client
        self.settings = settings or VideoSettings()
        self.model = model or llm_client.model_for("video")
        self._sleep = sleep

    def build_config(self) -> types.GenerateVideosConfig:
        return types.GenerateVideosConfig(
            number_of_videos=self.settings.number_of_videos,
            resolution=self.settings.resolution,
            aspect_ratio=self.settings.aspect_ratio,
        )

    async def generate(self, prompt: str) -> VideoResult:
        """Runs one video job for `prompt`.

        Args:
            prompt: Visualization prompt.

        Returns:
            Playable URI with the access key appended, and the poll cycle count.

        Raises:
            ValueError: If `prompt` is blank.
            NoVideoError: If the finished job carries no video.
            TransportError: If the job finished with an error or polling timed out.
        """
        clean_prompt = str(prompt or "").strip()
        if not clean_prompt:
            raise ValueError("prompt must not be blank")

        started = time.perf_counter()
        logger.info("video_submit model=%s prompt_chars=%d", self.model, len(clean_prompt))
        operation = await self.llm_client.generate_videos(
            model=self.model,
            prompt=clean_prompt,
            config=self.build_config(),
        )

        async def _refresh(current: Any) -> Any:
            refreshed = await self.llm_client.get_video_operation(current)
            logger.info("video_status name=%s done=%s", getattr(refreshed, "name", None), bool(getattr(refreshed, "done", False)))
            return refreshed

        outcome = await poll_until(
            initial=operation,
            refresh=_refresh,
            is_done=lambda op: bool(getattr(op, "done", False)),
            interval_seconds=self.settings.poll_interval_seconds,
            max_attempts=self.settings.max_poll_attempts,
            backoff_factor=self.settings.backoff_factor,
            max_interval_seconds=self.settings.max_poll_interval_seconds,
            sleep=self._sleep,
        )
        finished = outcome.value

        error = getattr(finished, "error", None)
        if error:
            raise TransportError("Video generation failed: {}".format(error))

        uri = extract_video_uri(finished)
        if not uri:
            raise NoVideoError("Video generation failed or returned no URI")

        api_key = self.llm_client.api_key
        if not api_key:
            raise ConfigurationError("API Key not found")

        logger.info(
            "video_done model=%s cycles=%d elapsed_ms=%.1f",
            self.model,
            outcome.cycles,
            (time.perf_counter() - started) * 1000.0,
        )
        return VideoResult(uri=append_query_param(uri, "key", api_key), poll_cycles=outcome.cycles)
