"""Render stage: POST the composition to the render service.

The render service accepts ``{code, durationInFrames, fps, audioUrl?}`` and
answers ``{success, videoUrl?, error?}``. A compile or runtime failure of the
composition is recoverable (``current_step=FIXING`` with
``last_render_error``) so the orchestrator can route it through repair. An
unreachable service is not something a code repair can fix, so it is
reported as a stage error.
"""

import logging

import httpx

from promopipe.config import settings
from promopipe.orchestrator.state import PipelineState, PipelineStep, StatePatch

logger = logging.getLogger(__name__)


def _recoverable(error: str) -> StatePatch:
    return StatePatch(current_step=PipelineStep.FIXING, last_render_error=error)


def _render_payload(state: PipelineState) -> dict:
    script = state.video_script
    payload = {
        "code": state.composition_code,
        "durationInFrames": script.total_duration_frames if script else None,
        "fps": settings.pipeline.default_fps,
    }
    if state.preferences.audio:
        payload["audioUrl"] = state.preferences.audio.url
    return payload


async def render_composition(state: PipelineState) -> StatePatch:
    """Stage collaborator: produce ``video_url`` or a recoverable render error."""
    if not state.composition_code:
        return StatePatch.failure("No composition code available for rendering")

    headers = {}
    if settings.services.render_api_key:
        headers["Authorization"] = f"Bearer {settings.services.render_api_key}"

    try:
        async with httpx.AsyncClient(timeout=settings.services.render_timeout_seconds) as client:
            response = await client.post(
                settings.services.render_url, json=_render_payload(state), headers=headers
            )
    except httpx.TransportError as e:
        logger.error(f"Render service unreachable at {settings.services.render_url}: {e}")
        return StatePatch.failure(f"Render service unavailable: {e}")

    try:
        body = response.json()
    except ValueError:
        body = {}
    if not isinstance(body, dict):
        body = {}

    if response.status_code >= 500 and not body.get("error"):
        return StatePatch.failure(f"Render service error: HTTP {response.status_code}")

    if response.is_success and body.get("success") and body.get("videoUrl"):
        logger.info(f"Render succeeded: {body['videoUrl']}")
        return StatePatch(video_url=body["videoUrl"])

    error = body.get("error") or f"Render failed with HTTP {response.status_code}"
    logger.warning(f"Render failed: {error}")
    return _recoverable(str(error))
