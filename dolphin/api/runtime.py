"""Runtime controls for the API: session registry and video job lifecycle."""

from __future__ import annotations

import asyncio
import time
import uuid
from collections import OrderedDict, deque
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Deque, Dict, Optional


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat().replace("+00:00", "Z")


class SessionNotFoundError(KeyError):
    """Raised when requested session id does not exist."""


class SessionRegistry:
    """Bounded in-memory session map; the least recently used entry is evicted."""

    def __init__(self, factory: Callable[[str], Any], max_sessions: int = 64) -> None:
        self.factory = factory
        self.max_sessions = max(1, int(max_sessions))
        self._lock = asyncio.Lock()
        self._sessions: "OrderedDict[str, Any]" = OrderedDict()

    async def create(self) -> Any:
        async with self._lock:
            session_id = uuid.uuid4().hex
            session = self.factory(session_id)
            self._sessions[session_id] = session
            while len(self._sessions) > self.max_sessions:
                self._sessions.popitem(last=False)
            return session

    async def get(self, session_id: str) -> Any:
        async with self._lock:
            session = self._sessions.get(str(session_id))
            if session is None:
                raise SessionNotFoundError(session_id)
            self._sessions.move_to_end(str(session_id))
            return session

    async def remove(self, session_id: str) -> None:
        async with self._lock:
            if self._sessions.pop(str(session_id), None) is None:
                raise SessionNotFoundError(session_id)

    async def count(self) -> int:
        async with self._lock:
            return len(self._sessions)



class JobQueueFullError(RuntimeError):
    """Raised when the video job queue has reached capacity."""


class JobNotFoundError(KeyError):
    """Raised when requested job id does not exist."""


class JobStatus(str, Enum):
    QUEUED = "queued"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    TIMEOUT = "timeout"
    CANCELED = "canceled"

    @property
    def terminal(self) -> bool:
        return self not in (JobStatus.QUEUED, JobStatus.RUNNING)


CANCELED_MESSAGE = "Job canceled by user."


@dataclass
class VideoJobRecord:
    """One queued render of a session's visualization prompt."""

    session_id: str
    job_id: str = field(default_factory=lambda: uuid.uuid4().hex)
    kind: str = "video"
    status: JobStatus = JobStatus.QUEUED
    submitted_at: str = field(default_factory=_utc_now_iso)
    started_at: Optional[str] = None
    finished_at: Optional[str] = None
    finished_monotonic: Optional[float] = None
    error: Optional[str] = None
    result: Optional[Dict[str, Any]] = None
    cancel_requested: bool = False

    def finish(self, status: JobStatus, result: Optional[Dict[str, Any]] = None, error: Optional[str] = None) -> None:
        self.status = status
        self.result = result
        self.error = error
        self.finished_at = _utc_now_iso()
        self.finished_monotonic = time.monotonic()

    def expired(self, retention_seconds: float, now: float) -> bool:
        if not self.status.terminal or self.finished_monotonic is None:
            return False
        return now - self.finished_monotonic > retention_seconds

    def to_dict(self, queue_position: Optional[int] = None) -> Dict[str, Any]:
        return {
            "job_id": self.job_id,
            "kind": self.kind,
            "session_id": self.session_id,
            "status": self.status.value,
            "queue_position": queue_position,
            "submitted_at": self.submitted_at,
            "started_at": self.started_at,
            "finished_at": self.finished_at,
            "error": self.error,
            "result": self.result,
            "cancel_requested": self.cancel_requested,
        }


class VideoJobStore:
    """Bounded FIFO of video jobs consumed by the API worker tasks.

    Finished jobs are kept for `retention_seconds` so clients can read their
    result. Canceling a running job only marks it; the worker records it as
    canceled when it finishes, and the remote generation keeps running.
    """

    def __init__(self, max_queue_size: int = 8, retention_seconds: int = 1800) -> None:
        self.max_queue_size = max(1, int(max_queue_size))
        self.retention_seconds = max(60, int(retention_seconds))

        self._condition = asyncio.Condition()
        self._jobs: Dict[str, VideoJobRecord] = {}
        self._queue: Deque[str] = deque()

    def _expire_locked(self) -> None:
        now = time.monotonic()
        for job_id in [key for key, job in self._jobs.items() if job.expired(self.retention_seconds, now)]:
            del self._jobs[job_id]

    def _lookup_locked(self, job_id: str) -> VideoJobRecord:
        self._expire_locked()
        job = self._jobs.get(str(job_id))
        if job is None:
            raise JobNotFoundError(job_id)
        return job

    def _view_locked(self, job: VideoJobRecord) -> Dict[str, Any]:
        position = None
        if job.status == JobStatus.QUEUED and job.job_id in self._queue:
            position = self._queue.index(job.job_id) + 1
        return job.to_dict(queue_position=position)

    async def submit(self, session_id: str, kind: str = "video") -> Dict[str, Any]:
        async with self._condition:
            self._expire_locked()
            if len(self._queue) >= self.max_queue_size:
                raise JobQueueFullError("Job queue capacity reached.")
            job = VideoJobRecord(session_id=str(session_id), kind=kind)
            self._jobs[job.job_id] = job
            self._queue.append(job.job_id)
            self._condition.notify_all()
            return self._view_locked(job)

    async def pop_next(self) -> Dict[str, Any]:
        """Waits for the next queued job and marks it running."""
        async with self._condition:
            while True:
                await self._condition.wait_for(lambda: bool(self._queue))
                job = self._jobs.get(self._queue.popleft())
                if job is None or job.status != JobStatus.QUEUED:
                    continue
                job.status = JobStatus.RUNNING
                job.started_at = _utc_now_iso()
                return self._view_locked(job)

    async def get(self, job_id: str) -> Dict[str, Any]:
        async with self._condition:
            return self._view_locked(self._lookup_locked(job_id))

    async def set_terminal(
        self,
        job_id: str,
        status: str,
        result: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Records the outcome of a running job.

        Unknown or non-terminal statuses are recorded as `failed`; a job whose
        cancellation was requested is recorded as `canceled` without a result.
        """
        try:
            final = JobStatus(str(status or "").strip().lower())
        except ValueError:
            final = JobStatus.FAILED
        if not final.terminal:
            final = JobStatus.FAILED
        async with self._condition:
            job = self._lookup_locked(job_id)
            if job.cancel_requested:
                job.finish(JobStatus.CANCELED, error=error or CANCELED_MESSAGE)
            else:
                job.finish(final, result=result, error=error)
            return self._view_locked(job)

    async def cancel(self, job_id: str) -> Dict[str, Any]:
        async with self._condition:
            job = self._lookup_locked(job_id)
            if job.status == JobStatus.QUEUED:
                if job.job_id in self._queue:
                    self._queue.remove(job.job_id)
                job.finish(JobStatus.CANCELED, error=CANCELED_MESSAGE)
            elif job.status == JobStatus.RUNNING:
                job.cancel_requested = True
            return self._view_locked(job)

    async def active_for_session(self, session_id: str) -> Optional[Dict[str, Any]]:
        """Returns the queued or running job of `session_id`, if any."""
        async with self._condition:
            self._expire_locked()
            for job in self._jobs.values():
                if job.session_id == str(session_id) and not job.status.terminal:
                    return self._view_locked(job)
            return None

    async def queue_depth(self) -> int:
        async with self._condition:
            return len(self._queue)
