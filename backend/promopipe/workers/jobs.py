"""Registry for recording post-processing jobs and the status-polling contract.

Cursor detection ("cv") and video compositing ("video") jobs run in the
background; their progress lives in a ``JobRegistry`` owned by the
application (created in the API lifespan, shut down with it) instead of a
module-level dict. ``recording_status`` merges both jobs for a recording and
falls back to the durable ``ScreenRecording`` row when neither is in memory,
e.g. after a restart.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from promopipe.db.models import ScreenRecording

logger = logging.getLogger(__name__)

JOB_KINDS = ("cv", "video")

# Finished jobs stay pollable this long before they are dropped from memory
DEFAULT_RETENTION = timedelta(hours=1)

ProgressFn = Callable[[int], Awaitable[None]]
JobWork = Callable[[ProgressFn], Awaitable[dict[str, Any]]]


@dataclass(frozen=True)
class JobStatus:
    """Snapshot of one job. ``result`` holds the worker's output on completion."""

    job_id: str
    kind: str
    status: str = "pending"
    progress: int = 0
    error: Optional[str] = None
    started_at: datetime = field(default_factory=datetime.utcnow)
    completed_at: Optional[datetime] = None
    result: dict[str, Any] = field(default_factory=dict)


class RegistryClosed(RuntimeError):
    """The registry has been shut down."""


class JobRegistry:
    """Mutex-guarded map of (kind, job id) -> JobStatus, plus the tasks running them.

    Recording processors write through ``submit`` (or ``update`` when they
    drive progress themselves). Finished jobs older than ``retention`` are
    pruned on every write; by then the processor has persisted its outcome
    on the ``ScreenRecording`` row, which ``recording_status`` falls back to.
    """

    def __init__(self, retention: timedelta = DEFAULT_RETENTION) -> None:
        self._retention = retention
        self._jobs: dict[tuple[str, str], JobStatus] = {}
        self._tasks: dict[tuple[str, str], asyncio.Task] = {}
        self._lock = asyncio.Lock()
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    async def get(self, kind: str, job_id: str) -> Optional[JobStatus]:
        async with self._lock:
            return self._jobs.get((kind, job_id))

    async def update(self, kind: str, job_id: str, **changes: Any) -> JobStatus:
        """Replace fields of a job, creating it if needed."""
        if kind not in JOB_KINDS:
            raise ValueError(f"Unknown job kind: {kind}")
        async with self._lock:
            if self._closed:
                raise RegistryClosed("Job registry is shut down")
            current = self._jobs.get((kind, job_id)) or JobStatus(job_id=job_id, kind=kind)
            updated = replace(current, **changes)
            self._jobs[(kind, job_id)] = updated
            self._prune(datetime.utcnow())
            return updated

    async def prune(self, now: Optional[datetime] = None) -> int:
        """Drop finished jobs past retention. Returns how many were dropped."""
        async with self._lock:
            return self._prune(now or datetime.utcnow())

    def _prune(self, now: datetime) -> int:
        # Caller holds the lock
        expired = [
            key for key, job in self._jobs.items()
            if job.completed_at is not None
            and key not in self._tasks
            and now - job.completed_at > self._retention
        ]
        for key in expired:
            del self._jobs[key]
        if expired:
            logger.debug(f"Pruned {len(expired)} finished job(s)")
        return len(expired)

    async def submit(self, kind: str, job_id: str, work: JobWork) -> asyncio.Task:
        """Run ``work`` in the background and track it.

        ``work`` receives a progress callback (0-100) and returns its result
        dict. Failures are recorded on the job, not raised.
        """
        await self.update(kind, job_id, status="processing", progress=0, error=None)

        async def _progress(value: int) -> None:
            await self.update(kind, job_id, progress=max(0, min(100, int(value))))

        async def _runner() -> None:
            try:
                result = await work(_progress)
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error(f"{kind} job {job_id} failed: {e}", exc_info=True)
                if not self._closed:
                    await self.update(
                        kind, job_id, status="error", error=str(e),
                        completed_at=datetime.utcnow(),
                    )
                return
            await self.update(
                kind, job_id, status="complete", progress=100,
                completed_at=datetime.utcnow(), result=result or {},
            )
            logger.info(f"{kind} job {job_id} complete")

        task = asyncio.create_task(_runner(), name=f"{kind}-{job_id}")
        self._tasks[(kind, job_id)] = task
        task.add_done_callback(lambda _t, key=(kind, job_id): self._tasks.pop(key, None))
        return task

    async def shutdown(self) -> None:
        """Cancel running jobs and refuse further updates."""
        async with self._lock:
            self._closed = True
            tasks = list(self._tasks.values())
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)
        logger.info(f"Job registry shut down ({len(tasks)} job(s) cancelled)")


async def recording_status(
    registry: JobRegistry,
    session: AsyncSession,
    recording_id: str,
) -> dict[str, Any]:
    """Processing status for a recording, from memory first, then the database.

    Overall progress weights detection 40% and compositing 60%.
    """
    cv_job = await registry.get("cv", recording_id)
    video_job = await registry.get("video", recording_id)
    processed_url = video_job.result.get("processed_video_url") if video_job else None

    if cv_job or video_job:
        cv_progress = cv_job.progress if cv_job else 100
        if video_job and video_job.status == "complete":
            overall = "complete"
        else:
            overall = (video_job and video_job.status) or (cv_job and cv_job.status) or "pending"
        if video_job:
            progress = round(cv_progress * 0.4 + video_job.progress * 0.6)
        else:
            progress = cv_progress
        completed = (video_job and video_job.completed_at) or (cv_job and cv_job.completed_at)
        return {
            "recordingId": recording_id,
            "cvStatus": cv_job.status if cv_job else "complete",
            "cvProgress": cv_progress,
            "cursorCount": len(cv_job.result.get("cursor_data", [])) if cv_job else 0,
            "zoomPointCount": len(cv_job.result.get("zoom_points", [])) if cv_job else 0,
            "videoStatus": video_job.status if video_job else "not_started",
            "videoProgress": video_job.progress if video_job else 0,
            "processedVideoUrl": processed_url,
            "status": overall,
            "progress": progress,
            "error": (video_job and video_job.error) or (cv_job and cv_job.error) or None,
            "startedAt": cv_job.started_at.isoformat() if cv_job else None,
            "completedAt": completed.isoformat() if completed else None,
        }

    try:
        recording = await session.get(ScreenRecording, uuid.UUID(recording_id))
    except ValueError:
        recording = None

    if recording is not None:
        if recording.processed_video_url:
            return {
                "recordingId": recording_id,
                "status": "complete",
                "progress": 100,
                "processedVideoUrl": recording.processed_video_url,
            }
        if recording.processing_status == "complete":
            return {
                "recordingId": recording_id,
                "status": "complete",
                "progress": 100,
                "processedVideoUrl": None,
            }

    return {
        "recordingId": recording_id,
        "status": "not_found",
        "message": "Recording not found in processing queue",
    }
