"""Code stages: page code, composition translation, render repair and edits.

All four ask the code model for a single source file wrapped in a
``GeneratedCode`` object and strip any markdown fence the model adds anyway.
"""

import json
import logging
from typing import Optional

from pydantic import BaseModel, Field

from promopipe.config import settings
from promopipe.orchestrator.state import PipelineState, StatePatch
from promopipe.pipeline.code_checks import auto_fix, extract_code
from promopipe.services.llm import get_adapter

logger = logging.getLogger(__name__)


class GeneratedCode(BaseModel):
    """Structured wrapper for a generated source file."""

    code: str = Field(description="Complete TSX source file, no markdown fences")
    notes: Optional[str] = Field(default=None, description="Optional one-line summary of changes")


PAGE_CODE_PROMPT = """You are a senior React developer. Write a single self-contained \
React component (TSX, Tailwind classes allowed, no external imports besides React) \
that presents the product below as a polished landing page. Use the script's scenes \
as the page's sections, in order. Export the component as default."""

TRANSLATE_PROMPT = """You convert React landing-page code into a Remotion video \
composition. Keep the visual design; lay sections out on the script's frame timeline \
using <Sequence from={{startFrame}} durationInFrames={{endFrame - startFrame}}>. \
Use useCurrentFrame, interpolate and spring from "remotion" for the enter/exit \
animations named in the script. Export a component named GeneratedVideo. \
The composition runs at {fps} fps for {frames} frames."""

REPAIR_PROMPT = """You fix Remotion compositions that failed to render. You receive \
the composition source and the renderer's error. Return the complete corrected file. \
Change only what is needed to fix the error."""

EDIT_PROMPT = """You edit Remotion compositions. Apply the user's instruction to \
the composition and return the complete updated file. Preserve everything the \
instruction does not ask to change."""

FIX_SYNTAX_PROMPT = """You fix syntax errors in TSX files. You receive a file and a \
list of problems found by a syntax check. Return the complete corrected file. Do not \
change behaviour."""


async def _generate_code(model_id: str, system_prompt: str, prompt: str, temperature: float) -> str:
    adapter = get_adapter(model_id)
    result = await adapter.generate_text(
        prompt=prompt,
        schema=GeneratedCode,
        temperature=temperature,
        system_prompt=system_prompt,
    )
    return extract_code(result.code)


def _script_json(state: PipelineState) -> str:
    if state.video_script is None:
        return "{}"
    return json.dumps(state.video_script.to_wire(), indent=2)


async def generate_page_code(state: PipelineState) -> StatePatch:
    """Stage collaborator: produce ``page_code``."""
    if state.video_script is None:
        return StatePatch.failure("No script to generate page code from")
    prompt = (
        f"Product data:\n{json.dumps(state.product_data or {}, indent=2)}\n\n"
        f"Script:\n{_script_json(state)}\n\n"
        f"Style: {state.preferences.style}"
    )
    try:
        code = await _generate_code(settings.models.code_llm, PAGE_CODE_PROMPT, prompt, 0.7)
    except Exception as e:
        logger.error(f"Page code generation failed: {type(e).__name__}: {e}")
        return StatePatch.failure(f"Failed to generate page code: {e}")
    if not code:
        return StatePatch.failure("Page code generation returned empty code")
    logger.info(f"Generated page code ({len(code)} chars)")
    return StatePatch(page_code=code)


async def translate_to_composition(state: PipelineState) -> StatePatch:
    """Stage collaborator: produce ``composition_code`` from ``page_code``."""
    if not state.page_code:
        return StatePatch.failure("No page code to translate")
    frames = state.video_script.total_duration_frames if state.video_script else 900
    system_prompt = TRANSLATE_PROMPT.format(fps=settings.pipeline.default_fps, frames=frames)
    prompt = f"Script:\n{_script_json(state)}\n\nReact page code:\n{state.page_code}"
    try:
        code = await _generate_code(settings.models.code_llm, system_prompt, prompt, 0.4)
    except Exception as e:
        logger.error(f"Translation failed: {type(e).__name__}: {e}")
        return StatePatch.failure(f"Failed to translate page code: {e}")

    code, fixes = auto_fix(code)
    if fixes:
        logger.info(f"Auto-fixed translated composition: {fixes}")
    if not code:
        return StatePatch.failure("Translation returned empty code")
    return StatePatch(composition_code=code)


async def repair_render_error(state: PipelineState) -> StatePatch:
    """Stage collaborator: fix ``composition_code`` given ``last_render_error``."""
    if not state.composition_code:
        return StatePatch.failure("No composition code to repair")
    prompt = (
        f"Render error:\n{state.last_render_error or 'unknown error'}\n\n"
        f"Composition source:\n{state.composition_code}"
    )
    try:
        code = await _generate_code(settings.models.code_llm, REPAIR_PROMPT, prompt, 0.2)
    except Exception as e:
        logger.error(f"Render repair failed: {type(e).__name__}: {e}")
        return StatePatch.failure(f"Failed to repair render error: {e}")
    code, _ = auto_fix(code)
    if not code:
        return StatePatch.failure("Render repair returned empty code")
    logger.info(f"Repaired composition after render error ({len(code)} chars)")
    return StatePatch(composition_code=code)


async def edit_composition_code(code: str, instruction: str) -> str:
    """Edit collaborator: apply an instruction to composition code."""
    prompt = f"Instruction: {instruction}\n\nComposition source:\n{code}"
    return await _generate_code(settings.models.edit_llm, EDIT_PROMPT, prompt, 0.4)


async def fix_composition_syntax(code: str, issues: list[str]) -> str:
    """Edit collaborator: repair syntax problems reported by the local check."""
    problems = "\n".join(f"- {issue}" for issue in issues)
    prompt = f"Problems:\n{problems}\n\nSource:\n{code}"
    return await _generate_code(settings.models.edit_llm, FIX_SYNTAX_PROMPT, prompt, 0.1)
