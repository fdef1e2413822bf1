"""REST interface for the Dolphin STEM solver."""

from __future__ import annotations

import asyncio
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from dolphin.agents.auth import EnvironmentCredentialProvider
from dolphin.agents.session import SolverSession
from dolphin.agents.state import VideoJobInFlightError, VideoStatus
from dolphin.api.runtime import (
    JobNotFoundError,
    JobQueueFullError,
    SessionNotFoundError,
    SessionRegistry,
    VideoJobStore,
)
from dolphin.llm import GenerativeClient
from dolphin.llm.errors import (
    AuthorizationError,
    ConfigurationError,
    EmptyResultError,
    PollTimeoutError,
    TransportError,
)
from dolphin.tools.media import EncodingError, decode_data_url
from dolphin.utils.config_loader import AppConfig, load_app_config, load_prompts_registry
from dolphin.utils.logger import get_logger
from dolphin.utils.preferences import PreferenceStore, SearchHistory


logger = get_logger("dolphin.api")

DISCARDED_MESSAGE = "Video result discarded because the session was reset."


class AnalyzeRequest(BaseModel):
    image_base64: str = Field(min_length=1, description="Base64 image payload or data URL")
    image_media_type: Optional[str] = Field(default=None, description="Media type; taken from the data URL when omitted")


class SearchRequest(BaseModel):
    query: str = Field(min_length=1, description="Free-text search query")


class TranslateRequest(BaseModel):
    target: str = Field(default="solution", pattern="^(solution|search)$")
    language: str = Field(min_length=1)


class TranslationResponse(BaseModel):
    ok: bool
    language: str
    texts: Dict[str, str]
    cached: bool
    error: Optional[str]


class JobSubmitResponse(BaseModel):
    job_id: str
    session_id: str
    status: str
    queue_position: Optional[int]
    submitted_at: str


class JobStatusResponse(BaseModel):
    job_id: str
    kind: str
    session_id: Optional[str]
    status: str
    queue_position: Optional[int]
    submitted_at: Optional[str]
    started_at: Optional[str]
    finished_at: Optional[str]
    error: Optional[str]
    result: Optional[Dict[str, Any]]
    cancel_requested: bool


class HistoryResponse(BaseModel):
    items: list[str]


def to_http_exception(exc: Exception) -> HTTPException:
    """Maps a session failure onto an HTTP error.

    Args:
        exc: Exception raised by a session action.

    Returns:
        HTTPException with the matching status code.
    """
    if isinstance(exc, VideoJobInFlightError):
        return HTTPException(status_code=409, detail=str(exc))
    if isinstance(exc, (EncodingError, ValueError)):
        return HTTPException(status_code=422, detail=str(exc))
    if isinstance(exc, AuthorizationError):
        return HTTPException(status_code=401, detail=str(exc))
    if isinstance(exc, ConfigurationError):
        return HTTPException(status_code=503, detail=str(exc))
    if isinstance(exc, TransportError):
        return HTTPException(status_code=504 if exc.timed_out else 502, detail=str(exc))
    if isinstance(exc, EmptyResultError):
        return HTTPException(status_code=502, detail=str(exc))
    return HTTPException(status_code=500, detail="Internal error: {}".format(exc))


def create_app(
    config: Optional[AppConfig] = None,
    prompts: Optional[Dict[str, Dict[str, str]]] = None,
    history: Optional[SearchHistory] = None,
    config_path: str = "configs/app_config.yml",
    prompts_path: str = "configs/prompts.yml",
) -> FastAPI:
    """Builds and configures the FastAPI application.

    Args:
        config: Application config; loaded from `config_path` when omitted.
        prompts: Resolved prompt registry; loaded from `prompts_path` when
            omitted and the file exists.
        history: Shared recent-query history.
        config_path: YAML config path.
        prompts_path: YAML prompt registry path.

    Returns:
        Configured FastAPI app instance.

    Raises:
        ConfigurationError: If `llm.require_available` is set and no provider
            client can be built.
    """
    if config is None:
        config = load_app_config(config_path)
    if prompts is None:
        prompts = load_prompts_registry(prompts_path) if Path(prompts_path).exists() else {}
    if history is None:
        history = SearchHistory(
            store=PreferenceStore(config.history.path),
            key=config.history.key,
            limit=config.history.limit,
        )

    app = FastAPI(title="Dolphin API", version=config.version)
    client = GenerativeClient(config.llm)
    if client.config.require_available and not client.is_available:
        raise ConfigurationError(
            "Inference provider required but unavailable: {}".format(client.describe().get("reason"))
        )
    credentials = EnvironmentCredentialProvider(api_key_env=client.config.api_key_env)

    def _new_session(session_id: str) -> Any:
        return SolverSession(
            config=config,
            client=client,
            credentials=credentials,
            history=history,
            prompts=prompts,
            session_id=session_id,
        )

    registry = SessionRegistry(factory=_new_session, max_sessions=config.runtime.max_sessions)
    job_store = VideoJobStore(
        max_queue_size=config.runtime.job_queue_size,
        retention_seconds=config.runtime.job_retention_seconds,
    )
    job_workers: list[asyncio.Task[Any]] = []

    async def _session_or_404(session_id: str) -> Any:
        try:
            return await registry.get(session_id)
        except SessionNotFoundError as exc:
            raise HTTPException(status_code=404, detail="session not found") from exc

    async def _job_worker(worker_id: int) -> None:
        while True:
            try:
                record = await job_store.pop_next()
                job_id = str(record.get("job_id"))
                session_id = str(record.get("session_id"))
                try:
                    session = await registry.get(session_id)
                    job = await session.generate_video()
                    if job.status == VideoStatus.COMPLETED:
                        await job_store.set_terminal(job_id=job_id, status="succeeded", result=job.to_dict())
                        logger.info("video_job_done worker_id=%s job_id=%s session_id=%s", worker_id, job_id, session_id)
                    else:
                        # the session was reset while the job ran; its result was dropped
                        await job_store.set_terminal(job_id=job_id, status="canceled", error=DISCARDED_MESSAGE)
                        logger.info("video_job_discarded worker_id=%s job_id=%s session_id=%s", worker_id, job_id, session_id)
                except SessionNotFoundError:
                    await job_store.set_terminal(job_id=job_id, status="failed", error="session not found")
                except PollTimeoutError as exc:
                    logger.warning("video_job_timeout worker_id=%s job_id=%s error=%s", worker_id, job_id, exc)
                    await job_store.set_terminal(job_id=job_id, status="timeout", error=str(exc))
                except Exception as exc:
                    logger.error("video_job_failed worker_id=%s job_id=%s error=%s", worker_id, job_id, exc)
                    await job_store.set_terminal(job_id=job_id, status="failed", error=str(exc))
            except asyncio.CancelledError:  # pragma: no cover - shutdown path
                break

    @app.on_event("startup")
    async def on_startup() -> None:
        if job_workers:
            return
        for index in range(max(1, config.runtime.job_worker_count)):
            job_workers.append(asyncio.create_task(_job_worker(index)))

    @app.on_event("shutdown")
    async def on_shutdown() -> None:
        for task in job_workers:
            task.cancel()
        if job_workers:
            await asyncio.gather(*job_workers, return_exceptions=True)
            job_workers.clear()

    @app.get("/health")
    async def health() -> Dict[str, Any]:
        return {"status": "ok", "llm": client.describe()}

    @app.post("/v1/sessions")
    async def create_session() -> Dict[str, Any]:
        session = await registry.create()
        return await session.initialize()

    @app.get("/v1/sessions/{session_id}")
    async def get_session(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        return session.snapshot()

    @app.delete("/v1/sessions/{session_id}")
    async def reset_session(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        return session.reset()

    @app.post("/v1/sessions/{session_id}/analyze")
    async def analyze(session_id: str, payload: AnalyzeRequest, request: Request) -> Dict[str, Any]:
        request_id = request.headers.get("X-Request-ID", "-")
        session = await _session_or_404(session_id)
        logger.info("analyze_start request_id=%s session_id=%s", request_id, session_id)
        try:
            media = decode_data_url(
                payload.image_base64,
                mime_type=payload.image_media_type,
                max_bytes=session.max_image_bytes,
            )
            return await session.analyze(media)
        except Exception as exc:
            raise to_http_exception(exc) from exc

    @app.post("/v1/sessions/{session_id}/retry")
    async def retry_analysis(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        try:
            return await session.retry_analysis()
        except Exception as exc:
            raise to_http_exception(exc) from exc

    @app.post("/v1/sessions/{session_id}/dismiss")
    async def dismiss_error(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        return session.dismiss_error()

    @app.post("/v1/sessions/{session_id}/credential")
    async def select_credential(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        return await session.select_credential()

    @app.post("/v1/sessions/{session_id}/video", response_model=JobSubmitResponse)
    async def submit_video(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        if session.state.solution is None:
            raise HTTPException(status_code=422, detail="No visualization prompt available; analyze an image first.")
        if session.video_generating or await job_store.active_for_session(session_id):
            raise HTTPException(status_code=409, detail="A video is already being generated for this session.")
        try:
            job = await job_store.submit(session_id=session_id, kind="video")
        except JobQueueFullError as exc:
            raise HTTPException(status_code=429, detail=str(exc), headers={"Retry-After": "10"}) from exc
        logger.info("video_job_submitted job_id=%s session_id=%s", job.get("job_id"), session_id)
        return {
            "job_id": job.get("job_id"),
            "session_id": session_id,
            "status": job.get("status"),
            "queue_position": job.get("queue_position"),
            "submitted_at": job.get("submitted_at"),
        }

    @app.get("/v1/jobs/{job_id}", response_model=JobStatusResponse)
    async def jobs_status(job_id: str) -> Dict[str, Any]:
        try:
            return await job_store.get(job_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="job not found") from exc

    @app.delete("/v1/jobs/{job_id}", response_model=JobStatusResponse)
    async def jobs_cancel(job_id: str) -> Dict[str, Any]:
        try:
            return await job_store.cancel(job_id)
        except JobNotFoundError as exc:
            raise HTTPException(status_code=404, detail="job not found") from exc

    @app.post("/v1/sessions/{session_id}/search")
    async def search(session_id: str, payload: SearchRequest) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        try:
            await session.search(payload.query)
        except Exception as exc:
            raise to_http_exception(exc) from exc
        return session.snapshot()

    @app.delete("/v1/sessions/{session_id}/search")
    async def close_search(session_id: str) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        return session.close_search()

    @app.post("/v1/sessions/{session_id}/translate", response_model=TranslationResponse)
    async def translate(session_id: str, payload: TranslateRequest) -> Dict[str, Any]:
        session = await _session_or_404(session_id)
        try:
            if payload.target == "search":
                outcome = await session.translate_search(payload.language)
            else:
                outcome = await session.translate_solution(payload.language)
        except Exception as exc:
            raise to_http_exception(exc) from exc
        return outcome.to_dict()

    @app.get("/v1/history", response_model=HistoryResponse)
    async def get_history() -> Dict[str, Any]:
        return {"items": history.items}

    @app.delete("/v1/history", response_model=HistoryResponse)
    async def clear_history() -> Dict[str, Any]:
        history.clear()
        return {"items": history.items}

    return app
