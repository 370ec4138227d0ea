"""API route handlers and Pydantic request/response schemas.

Streaming endpoints (generate, continue, edit-video) validate input, resolve
the caller, look up the project and deduct credits before the stream opens;
every failure up to that point is a plain JSON 4xx response. Once the stream
is open, every outcome arrives as NDJSON events ending in ``complete``.
"""

import asyncio
import json
import logging
import uuid
from typing import Any, Coroutine, Optional

from fastapi import APIRouter, Depends, Header, Request
from fastapi.responses import JSONResponse, StreamingResponse
from pydantic import BaseModel, ConfigDict, Field
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from promopipe import __version__
from promopipe.config import settings
from promopipe.db import async_session
from promopipe.db.models import Project, User
from promopipe.errors import PipelineInputError, ProjectNotFoundError
from promopipe.orchestrator.checkpoint import ProjectLocks, update_project
from promopipe.orchestrator.editing import stream_composition_edit
from promopipe.orchestrator.events import NDJSON_MEDIA_TYPE, EventChannel
from promopipe.orchestrator.pipeline import (
    PipelineOrchestrator,
    build_continue_state,
    build_generate_state,
)
from promopipe.orchestrator.stages import EditCollaborators, StageSet
from promopipe.orchestrator.state import Preferences, ProjectStatus
from promopipe.pipeline.defaults import default_editors, default_stages
from promopipe.schemas.script import VideoScript
from promopipe.services.billing import check_and_deduct_credits, resolve_user
from promopipe.workers.jobs import JobRegistry, recording_status

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api")

STREAM_HEADERS = {"Cache-Control": "no-cache", "X-Accel-Buffering": "no"}


# ============================================================================
# Pydantic Schemas
# ============================================================================

class _CamelRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class GenerateRequest(_CamelRequest):
    """Request schema for POST /api/generate."""
    url: Optional[str] = None
    description: Optional[str] = None
    preferences: Preferences = Field(default_factory=Preferences)
    project_id: Optional[str] = Field(default=None, alias="projectId")


class ContinueRequest(_CamelRequest):
    """Request schema for POST /api/continue."""
    video_script: Optional[VideoScript] = Field(default=None, alias="videoScript")
    product_data: Optional[dict[str, Any]] = Field(default=None, alias="productData")
    preferences: Preferences = Field(default_factory=Preferences)
    project_id: Optional[str] = Field(default=None, alias="projectId")


class EditScriptRequest(_CamelRequest):
    """Request schema for POST /api/edit-script."""
    message: Optional[str] = None
    video_script: Optional[VideoScript] = Field(default=None, alias="videoScript")
    product_data: Optional[dict[str, Any]] = Field(default=None, alias="productData")
    project_id: Optional[str] = Field(default=None, alias="projectId")


class EditVideoRequest(_CamelRequest):
    """Request schema for POST /api/edit-video."""
    message: Optional[str] = None
    code: Optional[str] = None
    project_id: Optional[str] = Field(default=None, alias="projectId")


class CreateProjectRequest(BaseModel):
    """Request schema for POST /api/projects."""
    name: Optional[str] = None
    source_url: Optional[str] = None
    description: Optional[str] = None


class UpdateProjectRequest(BaseModel):
    """Request schema for PATCH /api/projects/{id}. Unset fields are left alone."""
    name: Optional[str] = None
    description: Optional[str] = None
    product_data: Optional[dict[str, Any]] = None
    script: Optional[VideoScript] = None
    composition: Optional[str] = None


class ProjectListItem(BaseModel):
    """Item in list response for GET /api/projects."""
    project_id: str
    name: str
    status: str
    video_url: Optional[str] = None
    created_at: str
    updated_at: str


class ProjectDetail(BaseModel):
    """Response schema for GET /api/projects/{id}."""
    project_id: str
    name: str
    status: str
    source_url: Optional[str] = None
    description: Optional[str] = None
    product_data: Optional[dict[str, Any]] = None
    script: Optional[dict[str, Any]] = None
    composition: Optional[str] = None
    video_url: Optional[str] = None
    created_at: str
    updated_at: str


# ============================================================================
# Dependencies
# ============================================================================

def get_stages() -> StageSet:
    return default_stages()


def get_editors() -> EditCollaborators:
    return default_editors()


def get_project_locks(request: Request) -> ProjectLocks:
    return request.app.state.project_locks


def get_job_registry(request: Request) -> JobRegistry:
    return request.app.state.jobs


def _spawn_run(request: Request, coro: Coroutine) -> asyncio.Task:
    """Start a run as its own task so it outlives a disconnected consumer."""
    task = asyncio.create_task(coro)
    run_tasks: set = request.app.state.run_tasks
    run_tasks.add(task)
    task.add_done_callback(run_tasks.discard)
    return task


def _stream(channel: EventChannel) -> StreamingResponse:
    return StreamingResponse(
        channel.lines(), media_type=NDJSON_MEDIA_TYPE, headers=STREAM_HEADERS
    )


# ============================================================================
# Helpers
# ============================================================================

def _parse_project_id(project_id: str | uuid.UUID) -> uuid.UUID:
    try:
        return project_id if isinstance(project_id, uuid.UUID) else uuid.UUID(str(project_id))
    except ValueError as exc:
        raise ProjectNotFoundError(f"Project {project_id} not found") from exc


async def _get_owned_project(
    session: AsyncSession, project_id: str | uuid.UUID, user: User
) -> Project:
    """Load a project owned by ``user``.

    Raises:
        ProjectNotFoundError: If missing or owned by someone else.
    """
    pid = _parse_project_id(project_id)
    project = await session.get(Project, pid)
    if project is None or project.user_id != user.id:
        raise ProjectNotFoundError(f"Project {project_id} not found")
    return project


async def _authorize(
    x_user_id: Optional[str], cost: int, project_id: Optional[str] = None
) -> User:
    """Resolve caller (401), check project ownership (404), deduct credits (402)."""
    async with async_session() as session:
        user = await resolve_user(session, x_user_id)
        if project_id:
            await _get_owned_project(session, project_id, user)
        await check_and_deduct_credits(session, user, cost)
        return user


def _loads(text: Optional[str]) -> Optional[dict[str, Any]]:
    if not text:
        return None
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        logger.warning("Stored JSON field could not be parsed")
        return None


def _project_detail(p: Project) -> ProjectDetail:
    """Convert Project ORM model to ProjectDetail response."""
    return ProjectDetail(
        project_id=str(p.id),
        name=p.name,
        status=p.status,
        source_url=p.source_url,
        description=p.description,
        product_data=_loads(p.product_data),
        script=_loads(p.script),
        composition=p.composition,
        video_url=p.video_url,
        created_at=p.created_at.isoformat(),
        updated_at=p.updated_at.isoformat(),
    )


# ============================================================================
# Pipeline endpoints
# ============================================================================

GENERATE_DOC = {
    "endpoint": "POST /api/generate",
    "description": "Generate a promo video from a product URL or description",
    "body": {
        "url": "string (optional)",
        "description": "string (required when url is absent)",
        "preferences": {
            "style": "professional | playful | minimal | bold",
            "videoType": "demo | creative | fast-paced | cinematic (optional)",
            "duration": "seconds (optional)",
            "audio": {"url": "string", "bpm": "number", "duration": "number"},
        },
        "projectId": "string (optional; enables checkpointing)",
    },
    "headers": {"X-User-Id": "caller id (required)"},
    "cost": settings.billing.generate_cost,
    "returns": "application/x-ndjson stream of {type, data} events",
    "events": {
        "status": "{step, message, attempts?}",
        "productData": "analyzed product",
        "videoScript": "generated script",
        "reactPageCode": "generated page code",
        "remotionCode": "composition code (re-emitted after each repair)",
        "videoUrl": "rendered video URL",
        "error": "{errors: string[]}",
        "complete": "{success, message?} - always the last event",
    },
}

CONTINUE_DOC = {
    "endpoint": "POST /api/continue",
    "description": "Render a video from an approved script, skipping analysis and scripting",
    "body": {
        "videoScript": "VideoScript (required)",
        "productData": "object (required)",
        "preferences": "same as /api/generate",
        "projectId": "string (optional; enables checkpointing)",
    },
    "headers": {"X-User-Id": "caller id (required)"},
    "cost": settings.billing.continue_cost,
    "returns": "application/x-ndjson stream of {type, data} events",
    "events": {
        k: v for k, v in GENERATE_DOC["events"].items()
        if k not in ("productData", "videoScript")
    },
}


@router.get("/generate")
async def generate_doc():
    """Static documentation for POST /api/generate."""
    return GENERATE_DOC


@router.post("/generate")
async def generate_video(
    body: GenerateRequest,
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    stages: StageSet = Depends(get_stages),
    locks: ProjectLocks = Depends(get_project_locks),
):
    """Start a full generation run and stream its events."""
    state = build_generate_state(
        url=body.url,
        description=body.description,
        preferences=body.preferences,
        project_id=body.project_id,
    )
    user = await _authorize(x_user_id, settings.billing.generate_cost, body.project_id)
    logger.info(
        f"Generate run for user {user.id} "
        f"(url={state.source_url}, project={state.project_id or 'ephemeral'})"
    )

    channel = EventChannel()
    orchestrator = PipelineOrchestrator(stages, locks=locks)
    _spawn_run(request, orchestrator.run_generate(state, channel))
    return _stream(channel)


@router.get("/continue")
async def continue_doc():
    """Static documentation for POST /api/continue."""
    return CONTINUE_DOC


@router.post("/continue")
async def continue_video(
    body: ContinueRequest,
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    stages: StageSet = Depends(get_stages),
    locks: ProjectLocks = Depends(get_project_locks),
):
    """Resume from an approved script and stream the render phase."""
    state = build_continue_state(
        video_script=body.video_script,
        product_data=body.product_data,
        preferences=body.preferences,
        project_id=body.project_id,
    )
    user = await _authorize(x_user_id, settings.billing.continue_cost, body.project_id)
    logger.info(f"Continue run for user {user.id} (project={state.project_id or 'ephemeral'})")

    channel = EventChannel()
    orchestrator = PipelineOrchestrator(stages, locks=locks)
    _spawn_run(request, orchestrator.run_continue(state, channel))
    return _stream(channel)


# ============================================================================
# Edit endpoints
# ============================================================================

@router.post("/edit-script")
async def edit_script_endpoint(
    body: EditScriptRequest,
    x_user_id: Optional[str] = Header(default=None),
    editors: EditCollaborators = Depends(get_editors),
    locks: ProjectLocks = Depends(get_project_locks),
):
    """Apply a chat instruction to a script. Frames are recomputed."""
    if not body.message or body.video_script is None:
        raise PipelineInputError("message and videoScript are required")
    await _authorize(x_user_id, settings.billing.edit_script_cost, body.project_id)

    logger.info(f"Editing script: {body.message!r}")
    try:
        edited = await editors.edit_script(body.video_script, body.message, body.product_data)
    except Exception as e:
        logger.error(f"Script edit failed: {type(e).__name__}: {e}")
        return JSONResponse(status_code=500, content={"error": "Failed to edit script"})

    edited = edited.recompute_frames()
    if body.project_id:
        await update_project(
            body.project_id, {"script": json.dumps(edited.to_wire())}, locks=locks
        )
    return {"success": True, "videoScript": edited.to_wire()}


@router.post("/edit-video")
async def edit_video_endpoint(
    body: EditVideoRequest,
    request: Request,
    x_user_id: Optional[str] = Header(default=None),
    editors: EditCollaborators = Depends(get_editors),
    locks: ProjectLocks = Depends(get_project_locks),
):
    """Apply a chat instruction to composition code and stream the result."""
    if not body.message or not body.code:
        raise PipelineInputError("message and code are required")
    await _authorize(x_user_id, settings.billing.edit_video_cost, body.project_id)

    async def persist(result) -> None:
        if body.project_id:
            await update_project(body.project_id, {"composition": result.code}, locks=locks)

    channel = EventChannel()
    _spawn_run(
        request,
        stream_composition_edit(body.code, body.message, editors, channel, on_success=persist),
    )
    return _stream(channel)


# ============================================================================
# Projects
# ============================================================================

@router.get("/projects", response_model=list[ProjectListItem])
async def list_projects(x_user_id: Optional[str] = Header(default=None)):
    """List the caller's projects, newest first."""
    async with async_session() as session:
        user = await resolve_user(session, x_user_id)
        result = await session.execute(
            select(Project)
            .where(Project.user_id == user.id)
            .order_by(Project.created_at.desc())
        )
        return [
            ProjectListItem(
                project_id=str(p.id),
                name=p.name,
                status=p.status,
                video_url=p.video_url,
                created_at=p.created_at.isoformat(),
                updated_at=p.updated_at.isoformat(),
            )
            for p in result.scalars().all()
        ]


@router.post("/projects", status_code=201, response_model=ProjectDetail)
async def create_project(
    body: CreateProjectRequest, x_user_id: Optional[str] = Header(default=None)
):
    """Create an empty DRAFT project to checkpoint runs into."""
    async with async_session() as session:
        user = await resolve_user(session, x_user_id)
        project = Project(
            user_id=user.id,
            name=body.name or (body.source_url or body.description or "Untitled project")[:200],
            source_url=body.source_url,
            description=body.description,
            status=ProjectStatus.DRAFT.value,
        )
        session.add(project)
        await session.commit()
        await session.refresh(project)
        logger.info(f"Created project {project.id} for user {user.id}")
        return _project_detail(project)


@router.get("/projects/{project_id}", response_model=ProjectDetail)
async def get_project(project_id: str, x_user_id: Optional[str] = Header(default=None)):
    """Project detail with product data and script parsed back to JSON."""
    async with async_session() as session:
        user = await resolve_user(session, x_user_id)
        project = await _get_owned_project(session, project_id, user)
        return _project_detail(project)


@router.patch("/projects/{project_id}", response_model=ProjectDetail)
async def update_project_endpoint(
    project_id: str,
    body: UpdateProjectRequest,
    x_user_id: Optional[str] = Header(default=None),
    locks: ProjectLocks = Depends(get_project_locks),
):
    """Manual edits. A script is stored with its frames recomputed."""
    async with async_session() as session:
        user = await resolve_user(session, x_user_id)
        await _get_owned_project(session, project_id, user)

    values: dict[str, Any] = {}
    fields = body.model_fields_set
    if "name" in fields and body.name:
        values["name"] = body.name
    if "description" in fields:
        values["description"] = body.description
    if "product_data" in fields:
        values["product_data"] = json.dumps(body.product_data) if body.product_data else None
    if "script" in fields:
        values["script"] = (
            json.dumps(body.script.recompute_frames().to_wire()) if body.script else None
        )
    if "composition" in fields:
        values["composition"] = body.composition

    project = await update_project(project_id, values, locks=locks)
    return _project_detail(project)


@router.delete("/projects/{project_id}")
async def delete_project(project_id: str, x_user_id: Optional[str] = Header(default=None)):
    """Delete a project and its runs."""
    async with async_session() as session:
        user = await resolve_user(session, x_user_id)
        project = await _get_owned_project(session, project_id, user)
        await session.delete(project)
        await session.commit()
        logger.info(f"Deleted project {project_id}")
    return {"project_id": project_id, "deleted": True}


# ============================================================================
# Recordings
# ============================================================================

@router.get("/recordings/{recording_id}/status")
async def get_recording_status(
    recording_id: str, jobs: JobRegistry = Depends(get_job_registry)
):
    """Processing status of a screen recording (in-memory jobs, then database)."""
    async with async_session() as session:
        return await recording_status(jobs, session, recording_id)


@router.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "ok",
        "version": __version__,
    }
