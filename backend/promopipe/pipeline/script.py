"""Script stage: ProductData -> VideoScript, plus instruction-driven edits.

Scripts from the model are normalized (sorted, frames recomputed) before
they leave this module. Edited scripts keep the model's scene order and only
have their frames recomputed.
"""

import json
import logging
from typing import Any, Optional

from promopipe.config import settings
from promopipe.orchestrator.state import PipelineState, StatePatch
from promopipe.schemas.script import VideoScript
from promopipe.services.llm import get_adapter

logger = logging.getLogger(__name__)

SCRIPT_SYSTEM_PROMPT = """You are a video script writer for short product promos.
Write a scene-by-scene script at {fps} frames per second, about {seconds} seconds long.

Rules:
- Scene types: intro, feature, tagline, value-prop, screenshot, testimonial, recording, cta
- Open with an intro, close with a cta
- Scenes are laid out back to back starting at frame 0; each scene's endFrame is greater than its startFrame
- totalDurationFrames equals the last scene's endFrame
- Keep on-screen text short: headlines under 8 words
- Visual style: {style}"""

EDIT_SCRIPT_SYSTEM_PROMPT = """You are a video script editor. You receive a video script (JSON) \
and an edit instruction. Apply the requested change and return the complete updated script.

Rules:
- Keep scene ids stable for scenes you modify; new scenes get new unique ids
- Scene durations are in frames at {fps} fps
- To reorder, move scenes in the list; frames are recalculated afterwards
- To shorten or lengthen a scene, change endFrame - startFrame for that scene
- Preserve every field you do not need to change"""


def _product_context(product_data: Optional[dict[str, Any]]) -> str:
    if not product_data:
        return ""
    features = ", ".join(
        f.get("title", "") for f in product_data.get("features", []) if isinstance(f, dict)
    )
    return (
        f"Product: {product_data.get('name', '')} - {product_data.get('tagline', '')}\n"
        f"Features: {features or 'N/A'}"
    )


async def write_script(state: PipelineState) -> StatePatch:
    """Stage collaborator: produce ``video_script``."""
    if not state.product_data:
        return StatePatch.failure("No product data to write a script from")

    prefs = state.preferences
    fps = settings.pipeline.default_fps
    seconds = prefs.duration or (prefs.audio.duration if prefs.audio else 30)
    system_prompt = SCRIPT_SYSTEM_PROMPT.format(fps=fps, seconds=int(seconds), style=prefs.style)
    prompt = f"Product data:\n{json.dumps(state.product_data, indent=2)}"
    if prefs.video_type:
        prompt += f"\n\nVideo type: {prefs.video_type}"
    if prefs.audio:
        prompt += f"\n\nSoundtrack tempo: {prefs.audio.bpm} BPM; cut on the beat where possible."

    adapter = get_adapter(settings.models.script_llm)
    try:
        script = await adapter.generate_text(
            prompt=prompt,
            schema=VideoScript,
            temperature=0.7,
            system_prompt=system_prompt,
        )
    except Exception as e:
        logger.error(f"Script generation failed: {type(e).__name__}: {e}")
        return StatePatch.failure(f"Failed to write script: {e}")

    if not script.scenes:
        return StatePatch.failure("Script writer returned no scenes")

    script = script.normalized()
    logger.info(
        f"Wrote script: {len(script.scenes)} scenes, {script.total_duration_frames} frames"
    )
    return StatePatch(video_script=script)


async def edit_script(
    script: VideoScript,
    instruction: str,
    product_data: Optional[dict[str, Any]] = None,
) -> VideoScript:
    """Apply an edit instruction to a script and restore frame contiguity.

    Raises:
        ValueError: If the edited script has no scenes.
    """
    prompt = (
        f"Current script:\n{json.dumps(script.to_wire(), indent=2)}\n\n"
        f"{_product_context(product_data)}\n\n"
        f'Edit request: "{instruction}"'
    )
    adapter = get_adapter(settings.models.edit_llm)
    edited = await adapter.generate_text(
        prompt=prompt,
        schema=VideoScript,
        temperature=0.3,
        system_prompt=EDIT_SCRIPT_SYSTEM_PROMPT.format(fps=settings.pipeline.default_fps),
    )
    if not edited.scenes:
        raise ValueError("Edited script has no scenes")

    edited = edited.recompute_frames()
    logger.info(
        f"Edited script: {len(edited.scenes)} scenes, {edited.total_duration_frames} frames"
    )
    return edited
