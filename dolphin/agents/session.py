"""Session orchestrator driving solve, video, search and translation."""

from __future__ import annotations

import asyncio
import uuid
from pathlib import Path
from typing import Any, Awaitable, Callable, Dict, Optional, Union

from dolphin.agents.auth import AuthRetryCoordinator, CredentialProvider
from dolphin.agents.state import (
    AppStatus,
    SearchResult,
    SearchStatus,
    SessionState,
    VideoJobInFlightError,
    VideoJobState,
    VideoStatus,
    append_trace,
)
from dolphin.llm import GenerativeClient
from dolphin.llm.errors import (
    AuthorizationError,
    ConfigurationError,
    NoResponseError,
    NoVideoError,
    SchemaViolationError,
    TransportError,
)
from dolphin.nodes.search import SearchAndVerifyPipeline
from dolphin.nodes.solver import StructuredSolveClient
from dolphin.nodes.translator import TranslationCacheManager, TranslationOutcome
from dolphin.nodes.video import VideoJobPoller
from dolphin.tools.media import DEFAULT_MAX_BYTES, EncodingError, InlineMedia, encode_bytes, encode_file
from dolphin.utils.config_loader import AppConfig
from dolphin.utils.logger import get_logger
from dolphin.utils.preferences import PreferenceStore, SearchHistory


logger = get_logger("dolphin.session")

ImageSource = Union[str, Path, bytes, InlineMedia]

ANALYZE_FAILED_MESSAGE = "Failed to analyze image. Please try again."
SEARCH_FAILED_MESSAGE = "Search failed. Please try again."
VIDEO_FAILED_MESSAGE = "Video generation failed."


def classify_error(exc: BaseException) -> str:
    """Maps an exception onto a stable, user-facing error kind."""
    if isinstance(exc, EncodingError):
        return "encoding"
    if isinstance(exc, ConfigurationError):
        return "configuration"
    if isinstance(exc, AuthorizationError):
        return "authorization"
    if isinstance(exc, TransportError):
        return "timeout" if exc.timed_out else "transport"
    if isinstance(exc, SchemaViolationError):
        return "schema"
    if isinstance(exc, NoResponseError):
        return "no_response"
    if isinstance(exc, NoVideoError):
        return "no_video"
    if isinstance(exc, ValueError):
        return "invalid_input"
    return "internal"


class SolverSession:
    """Owns one user's session state and runs every action against it.

    Args:
        config: Application config; defaults are used when omitted.
        client: Inference client facade. Built from `config.llm` when omitted.
        credentials: Credential provider. Selection is skipped when None.
        history: Recent-query history shared across sessions.
        prompts: Resolved prompt registry (`solver`, `search`, `verifier`,
            `translator`).
        session_id: Explicit session id; a random one is generated otherwise.
        sleep: Awaitable sleep used by the video poller.
    """

    def __init__(
        self,
        config: Optional[AppConfig] = None,
        client: Optional[Any] = None,
        credentials: Optional[CredentialProvider] = None,
        history: Optional[SearchHistory] = None,
        prompts: Optional[Dict[str, Dict[str, str]]] = None,
        session_id: Optional[str] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.config = config or AppConfig()
        self.client = client if client is not None else GenerativeClient(self.config.llm)
        self.prompts = dict(prompts or {})
        if history is None:
            history = SearchHistory(
                store=PreferenceStore(self.config.history.path),
                key=self.config.history.key,
                limit=self.config.history.limit,
            )
        self.history = history
        self.state = SessionState(session_id=session_id or uuid.uuid4().hex)
        self.auth = AuthRetryCoordinator(credentials, on_selected=getattr(self.client, "refresh", None))

        self.solver = StructuredSolveClient(self.client, prompt_pack=self.prompts.get("solver"))
        self.search_pipeline = SearchAndVerifyPipeline(
            self.client,
            search_prompt_pack=self.prompts.get("search"),
            verifier_prompt_pack=self.prompts.get("verifier"),
        )
        self.video_poller = VideoJobPoller(self.client, settings=self.config.video, sleep=sleep)
        source_language = self.config.translation.source_language
        self.solution_translator = TranslationCacheManager(
            self.client,
            source_language=source_language,
            prompt_pack=self.prompts.get("translator"),
        )
        self.search_translator = TranslationCacheManager(
            self.client,
            source_language=source_language,
            prompt_pack=self.prompts.get("translator"),
        )

        self._last_media: Optional[InlineMedia] = None
        self._epoch = 0
        self._search_token = 0

    @property
    def session_id(self) -> str:
        return self.state.session_id

    @property
    def max_image_bytes(self) -> int:
        return int(getattr(getattr(self.client, "config", None), "max_image_bytes", DEFAULT_MAX_BYTES))

    async def initialize(self) -> Dict[str, Any]:
        """Reads the credential provider once and returns the initial snapshot."""
        selected = await self.auth.initialize(self.state.auth)
        append_trace(self.state, "session", "initialized credential_selected={}".format(selected))
        return self.snapshot()

    async def select_credential(self) -> Dict[str, Any]:
        """Runs credential selection explicitly and clears credential errors."""
        await self.auth.select(self.state.auth)
        if self.state.error_kind in {"configuration", "authorization"}:
            self._clear_error()
        append_trace(self.state, "auth", "credential selected")
        return self.snapshot()

    async def encode(
        self,
        source: ImageSource,
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> InlineMedia:
        if isinstance(source, InlineMedia):
            return source
        if isinstance(source, (bytes, bytearray)):
            return encode_bytes(bytes(source), mime_type=mime_type, filename=filename, max_bytes=self.max_image_bytes)
        return await encode_file(source, mime_type=mime_type, max_bytes=self.max_image_bytes)

    async def analyze(
        self,
        source: ImageSource,
        mime_type: Optional[str] = None,
        filename: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Encodes and solves a problem image.

        Any previous solution and video are discarded first. Failures are
        recorded on the session (status `error`, dismissible message) and then
        re-raised.

        Args:
            source: Local path, raw bytes, or already encoded media.
            mime_type: Declared media type.
            filename: Original name used for type inference of raw bytes.

        Returns:
            Session snapshot after the solve.

        Raises:
            VideoJobInFlightError: If the current solution's video is still
                generating.
        """
        if self.video_generating:
            raise VideoJobInFlightError(
                "A video is still being generated for this session; wait for it before analyzing a new image."
            )
        epoch = self._epoch
        self.state.status = AppStatus.ANALYZING
        self.state.solution = None
        self.state.video = VideoJobState()
        self._clear_error()
        self.solution_translator.language = self.solution_translator.source_language
        append_trace(self.state, "analyze", "started")

        try:
            media = await self.encode(source, mime_type=mime_type, filename=filename)
            self._last_media = media
            await self.auth.ensure_credential(self.state.auth)
            artifact = await self.solver.solve(media)
        except Exception as exc:
            if epoch != self._epoch:
                logger.info("analyze_result_discarded session_id=%s", self.session_id)
                return self.snapshot()
            self.auth.invalidate_on(self.state.auth, exc)
            self.state.status = AppStatus.ERROR
            self.state.error_kind = classify_error(exc)
            self.state.error_message = str(exc) or ANALYZE_FAILED_MESSAGE
            logger.error("analyze_failed session_id=%s kind=%s error=%s", self.session_id, self.state.error_kind, exc)
            append_trace(self.state, "analyze", "failed kind={}".format(self.state.error_kind))
            raise

        if epoch != self._epoch:
            logger.info("analyze_result_discarded session_id=%s", self.session_id)
            return self.snapshot()

        self.state.solution = artifact
        self.state.status = AppStatus.SOLVED
        append_trace(self.state, "analyze", "solved confidence={}".format(artifact.confidence.value))
        return self.snapshot()

    async def retry_analysis(self) -> Dict[str, Any]:
        """Re-runs the solve with the last encoded image."""
        if self._last_media is None:
            raise ValueError("No previous image to retry; analyze an image first.")
        return await self.analyze(self._last_media)

    def dismiss_error(self) -> Dict[str, Any]:
        self._clear_error()
        if self.state.search_status == SearchStatus.ERROR:
            self.state.search_status = SearchStatus.IDLE
        if self.state.status == AppStatus.ERROR:
            self.state.status = AppStatus.SOLVED if self.state.solution is not None else AppStatus.IDLE
        return self.snapshot()

    async def generate_video(self) -> VideoJobState:
        """Renders the current visualization prompt into a video.

        An entity-not-found failure re-selects the credential and retries once.

        Returns:
            The session's video job state.

        Raises:
            ValueError: If there is no solution with a visualization prompt.
            VideoJobInFlightError: If a video is already generating.
        """
        solution = self.state.solution
        prompt = solution.visual_prompt.strip() if solution is not None else ""
        if not prompt:
            raise ValueError("No visualization prompt available; analyze an image first.")

        job = self.state.video
        job.start()
        epoch = self._epoch
        append_trace(self.state, "video", "generating")

        try:
            result = await self.auth.run_with_reprompt(self.state, lambda: self.video_poller.generate(prompt))
        except Exception as exc:
            if epoch != self._epoch:
                logger.info("video_result_discarded session_id=%s", self.session_id)
                return self.state.video
            job.fail(str(exc) or VIDEO_FAILED_MESSAGE)
            logger.error("video_failed session_id=%s kind=%s error=%s", self.session_id, classify_error(exc), exc)
            append_trace(self.state, "video", "failed kind={}".format(classify_error(exc)))
            raise

        if epoch != self._epoch:
            logger.info("video_result_discarded session_id=%s", self.session_id)
            return self.state.video

        job.complete(result.uri, poll_cycles=result.poll_cycles)
        append_trace(self.state, "video", "completed cycles={}".format(result.poll_cycles))
        return job

    async def search(self, query: str) -> SearchResult:
        """Runs grounded search plus verification and records the query.

        Raises:
            ValueError: If `query` is blank.
        """
        clean_query = str(query or "").strip()
        if not clean_query:
            raise ValueError("query must not be blank")

        await self.auth.ensure_credential(self.state.auth)
        self.history.add(clean_query)
        self._search_token += 1
        token = self._search_token
        self.state.search_query = clean_query
        self.state.search_status = SearchStatus.SEARCHING
        self.state.search_result = None
        self.search_translator.language = self.search_translator.source_language
        append_trace(self.state, "search", "started")

        try:
            result = await self.search_pipeline.search(clean_query)
        except Exception as exc:
            self.auth.invalidate_on(self.state.auth, exc)
            if token == self._search_token:
                self.state.search_status = SearchStatus.ERROR
                self.state.error_kind = classify_error(exc)
                self.state.error_message = SEARCH_FAILED_MESSAGE
            logger.error("search_failed session_id=%s kind=%s error=%s", self.session_id, classify_error(exc), exc)
            append_trace(self.state, "search", "failed kind={}".format(classify_error(exc)))
            raise

        if token != self._search_token:
            logger.info("search_result_superseded session_id=%s", self.session_id)
            return result

        self.state.search_result = result
        self.state.search_status = SearchStatus.COMPLETED
        append_trace(self.state, "search", "completed sources={}".format(len(result.web_sources)))
        return result

    def close_search(self) -> Dict[str, Any]:
        self._search_token += 1
        self.state.search_query = ""
        self.state.search_result = None
        self.state.search_status = SearchStatus.IDLE
        return self.snapshot()

    async def translate_solution(self, language: str) -> TranslationOutcome:
        """Translates the current solution text; failures revert to the source language."""
        solution = self.state.solution
        if solution is None:
            raise ValueError("No solution to translate.")
        self._check_language(language)
        if language != self.solution_translator.source_language:
            await self.auth.ensure_credential(self.state.auth)
        return await self.solution_translator.translate_fields({"solution": solution.solution_markdown}, language)

    async def translate_search(self, language: str) -> TranslationOutcome:
        """Translates the search answer and its verification together."""
        result = self.state.search_result
        if result is None:
            raise ValueError("No search result to translate.")
        self._check_language(language)
        fields = {"text": result.text}
        if result.verification:
            fields["verification"] = result.verification
        if language != self.search_translator.source_language:
            await self.auth.ensure_credential(self.state.auth)
        return await self.search_translator.translate_fields(fields, language)

    def reset(self) -> Dict[str, Any]:
        """Discards the solve and video state.

        A video job still running remotely is not stopped; its late result is
        ignored.
        """
        self._epoch += 1
        self.state.status = AppStatus.IDLE
        self.state.solution = None
        self.state.video = VideoJobState()
        self._clear_error()
        self._last_media = None
        self.solution_translator.language = self.solution_translator.source_language
        append_trace(self.state, "session", "reset")
        return self.snapshot()

    def snapshot(self) -> Dict[str, Any]:
        """Returns a JSON-serializable view of the session."""
        state = self.state
        return {
            "session_id": state.session_id,
            "status": state.status.value,
            "solution": state.solution.model_dump(by_alias=True, mode="json") if state.solution else None,
            "error_message": state.error_message,
            "error_kind": state.error_kind,
            "video": state.video.to_dict(),
            "search": {
                "status": state.search_status.value,
                "query": state.search_query,
                "result": state.search_result.model_dump(by_alias=True, mode="json") if state.search_result else None,
            },
            "languages": {
                "solution": self.solution_translator.language,
                "search": self.search_translator.language,
            },
            "credential_selected": state.auth.credential_selected,
            "history": self.history.items,
            "decision_trace": list(state.decision_trace),
            "created_at": state.created_at,
            "updated_at": state.updated_at,
        }

    @property
    def video_generating(self) -> bool:
        return self.state.video.status == VideoStatus.GENERATING

    def _check_language(self, language: str) -> None:
        offered = self.config.translation.languages
        if offered and language not in offered:
            raise ValueError("Unsupported language '{}'; expected one of {}".format(language, offered))

    def _clear_error(self) -> None:
        self.state.error_message = ""
        self.state.error_kind = None
