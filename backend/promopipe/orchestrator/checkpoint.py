"""Checkpoint writer: durable snapshots of run progress on the project record.

One writer is created per persisted run. Each method corresponds to a stage
boundary and writes only the fields that boundary produced:

    start            status GENERATING
    after_analysis   source_url, product_data          GENERATING
    after_script     script                            DRAFT
    after_translate  composition                       GENERATING
    after_render     video_url                         READY
    after_repair     composition                       (unchanged)
    rollback         status DRAFT, best-effort

Writes to one project are serialized through ``ProjectLocks``. The lock is
in-process only; separate processes writing the same project race and the
last write wins.
"""

import asyncio
import json
import logging
import uuid
from collections import defaultdict
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, AsyncIterator, Callable, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from promopipe.db import async_session
from promopipe.db.models import PipelineRun, Project
from promopipe.errors import ProjectNotFoundError
from promopipe.orchestrator.state import PipelineState, ProjectStatus

logger = logging.getLogger(__name__)

SessionFactory = Callable[[], AsyncSession]


class ProjectLocks:
    """Per-project ``asyncio.Lock`` registry.

    Constructed once per process (API lifespan, CLI run) and shared by every
    writer that touches project records.
    """

    def __init__(self) -> None:
        self._locks: defaultdict[str, asyncio.Lock] = defaultdict(asyncio.Lock)

    def lock_for(self, project_id: str) -> asyncio.Lock:
        return self._locks[str(project_id)]

    @asynccontextmanager
    async def hold(self, project_id: str) -> AsyncIterator[None]:
        async with self.lock_for(project_id):
            yield

    def __len__(self) -> int:
        return len(self._locks)


def _project_uuid(project_id: str | uuid.UUID) -> uuid.UUID:
    if isinstance(project_id, uuid.UUID):
        return project_id
    try:
        return uuid.UUID(str(project_id))
    except ValueError as exc:
        raise ProjectNotFoundError(f"Project {project_id} not found") from exc


async def update_project(
    project_id: str | uuid.UUID,
    values: dict[str, Any],
    *,
    locks: ProjectLocks,
    session_factory: SessionFactory = async_session,
) -> Project:
    """Apply ``values`` to a project under its lock and commit.

    Also used by the edit endpoints, so edits and checkpoints of the same
    project never interleave within a process.

    Raises:
        ProjectNotFoundError: If the project does not exist.
    """
    pid = _project_uuid(project_id)
    async with locks.hold(str(pid)):
        async with session_factory() as session:
            project = await session.get(Project, pid)
            if project is None:
                raise ProjectNotFoundError(f"Project {pid} not found")
            for key, value in values.items():
                setattr(project, key, value)
            await session.commit()
            # updated_at is server-generated; load it before the session closes
            await session.refresh(project)
            return project


class CheckpointWriter:
    """Writes stage checkpoints for one persisted run."""

    def __init__(
        self,
        project_id: str,
        *,
        locks: ProjectLocks,
        session_factory: SessionFactory = async_session,
    ) -> None:
        self.project_id = project_id
        self._locks = locks
        self._session_factory = session_factory

    async def _write(self, label: str, **values: Any) -> None:
        await update_project(
            self.project_id,
            values,
            locks=self._locks,
            session_factory=self._session_factory,
        )
        logger.info(f"Checkpoint [{label}] project {self.project_id}: {sorted(values)}")

    async def start(self) -> None:
        await self._write("start", status=ProjectStatus.GENERATING.value)

    async def after_analysis(self, state: PipelineState) -> None:
        await self._write(
            "analysis",
            source_url=state.source_url,
            product_data=json.dumps(state.product_data),
            status=ProjectStatus.GENERATING.value,
        )

    async def after_script(self, state: PipelineState) -> None:
        # The script is a reviewable draft until rendering proceeds
        await self._write(
            "script",
            script=json.dumps(state.video_script.to_wire()) if state.video_script else None,
            status=ProjectStatus.DRAFT.value,
        )

    async def after_translate(self, state: PipelineState) -> None:
        await self._write(
            "translate",
            composition=state.composition_code,
            status=ProjectStatus.GENERATING.value,
        )

    async def after_render(self, state: PipelineState) -> None:
        await self._write(
            "render",
            video_url=state.video_url,
            status=ProjectStatus.READY.value,
        )

    async def after_repair(self, state: PipelineState) -> None:
        await self._write("repair", composition=state.composition_code)

    async def rollback(self) -> bool:
        """Set the project back to DRAFT after a terminal failure.

        Best-effort: a failed write is logged and never retried. Returns
        whether the write succeeded.
        """
        try:
            await self._write("rollback", status=ProjectStatus.DRAFT.value)
            return True
        except Exception as e:
            logger.error(
                f"Failed to roll back project {self.project_id} to DRAFT: "
                f"{type(e).__name__}: {e}"
            )
            return False

    async def record_run(
        self,
        *,
        kind: str,
        outcome: str,
        render_attempts: int,
        started_at: datetime,
        duration_seconds: float,
        step_log: dict[str, float],
        errors: Optional[list[str]] = None,
    ) -> None:
        """Persist a PipelineRun row for this run (best-effort)."""
        log: dict[str, Any] = {"steps": step_log}
        if errors:
            log["errors"] = errors
        try:
            async with self._session_factory() as session:
                run = PipelineRun(
                    project_id=_project_uuid(self.project_id),
                    kind=kind,
                    outcome=outcome,
                    render_attempts=render_attempts,
                    started_at=started_at,
                    completed_at=datetime.utcnow(),
                    total_duration_seconds=duration_seconds,
                    log=log,
                )
                session.add(run)
                await session.commit()
        except Exception as e:
            logger.warning(f"Failed to record pipeline run for {self.project_id}: {e}")
