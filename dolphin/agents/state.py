"""Typed state contracts for the Dolphin session orchestrator."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, TypedDict

from pydantic import BaseModel, ConfigDict, Field


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class Confidence(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class AppStatus(str, Enum):
    IDLE = "idle"
    ANALYZING = "analyzing"
    SOLVED = "solved"
    ERROR = "error"


class VideoStatus(str, Enum):
    IDLE = "idle"
    GENERATING = "generating"
    COMPLETED = "completed"
    ERROR = "error"


class SearchStatus(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    COMPLETED = "completed"
    ERROR = "error"


class SolutionArtifact(BaseModel):
    """Parsed solve response; immutable once created."""

    model_config = ConfigDict(frozen=True, populate_by_name=True, extra="ignore")

    solution_markdown: str = Field(alias="solutionMarkdown", min_length=1)
    visual_prompt: str = Field(alias="visualPrompt")
    confidence: Confidence


class WebSource(BaseModel):
    model_config = ConfigDict(frozen=True)

    uri: str
    title: str


class SearchResult(BaseModel):
    """Grounded search answer, its unique sources, and best-effort verification."""

    model_config = ConfigDict(frozen=True, populate_by_name=True)

    text: str
    web_sources: List[WebSource] = Field(default_factory=list, alias="webSources")
    verification: Optional[str] = None


class VideoJobInFlightError(RuntimeError):
    """Raised when a video job is requested while another one is generating."""


@dataclass
class VideoJobState:
    """Single video job tracked by a session."""

    status: VideoStatus = VideoStatus.IDLE
    video_uri: Optional[str] = None
    error: Optional[str] = None
    poll_cycles: int = 0

    def start(self) -> None:
        if self.status == VideoStatus.GENERATING:
            raise VideoJobInFlightError("A video is already being generated for this session.")
        self.status = VideoStatus.GENERATING
        self.video_uri = None
        self.error = None
        self.poll_cycles = 0

    def complete(self, video_uri: str, poll_cycles: int = 0) -> None:
        self.status = VideoStatus.COMPLETED
        self.video_uri = video_uri
        self.error = None
        self.poll_cycles = int(poll_cycles)

    def fail(self, error: str) -> None:
        self.status = VideoStatus.ERROR
        self.video_uri = None
        self.error = error

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "video_uri": self.video_uri,
            "error": self.error,
            "poll_cycles": self.poll_cycles,
        }


@dataclass
class AuthState:
    """Whether a credential has been selected for outbound calls."""

    credential_selected: bool = False


class DecisionTrace(TypedDict, total=False):
    stage: str
    summary: str
    timestamp: str


@dataclass
class SessionState:
    session_id: str
    status: AppStatus = AppStatus.IDLE
    solution: Optional[SolutionArtifact] = None
    error_message: str = ""
    error_kind: Optional[str] = None
    video: VideoJobState = field(default_factory=VideoJobState)
    search_status: SearchStatus = SearchStatus.IDLE
    search_query: str = ""
    search_result: Optional[SearchResult] = None
    auth: AuthState = field(default_factory=AuthState)
    decision_trace: List[DecisionTrace] = field(default_factory=list)
    created_at: str = field(default_factory=_utc_now_iso)
    updated_at: str = field(default_factory=_utc_now_iso)


def append_trace(state: SessionState, stage: str, summary: str) -> None:
    """Appends a decision-trace entry to the session state.

    Args:
        state: Mutable session state.
        stage: Stage producing the trace.
        summary: Short event summary.
    """
    now = _utc_now_iso()
    state.decision_trace.append(DecisionTrace(stage=stage, summary=summary, timestamp=now))
    state.updated_at = now
