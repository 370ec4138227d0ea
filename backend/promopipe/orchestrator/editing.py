"""Chat-driven composition edits: generate, validate, repair once.

Uses the same ``run_repair_loop`` as the render loop, with two attempts:
attempt 1 validates the freshly generated code, the single repair call is
fed its diagnostics, attempt 2 validates the repaired code. Exhaustion is
not an error here; the repaired code is accepted as-is.
"""

import logging
from dataclasses import dataclass, field

from promopipe.orchestrator.events import EventChannel, GenerationEvent, error_event, status_event
from promopipe.orchestrator.repair import AttemptResult, RepairOutcome, run_repair_loop
from promopipe.orchestrator.stages import EditCollaborators
from promopipe.pipeline.code_checks import auto_fix, find_syntax_issues

logger = logging.getLogger(__name__)


@dataclass
class EditResult:
    code: str
    repaired: bool = False
    remaining_issues: list[str] = field(default_factory=list)
    auto_fixes: list[str] = field(default_factory=list)


async def edit_composition(
    code: str,
    instruction: str,
    editors: EditCollaborators,
    channel: EventChannel,
) -> EditResult:
    """Apply an edit instruction to composition code, streaming progress.

    Emits status(editing), status(generating), status(validating) for each
    check, status(fixing) when a repair runs, then the final remotionCode.
    Does not emit ``complete``; the caller owns the channel lifecycle.
    """
    await channel.emit(status_event("editing", "Applying your edit"))
    await channel.emit(status_event("generating", "Generating updated composition"))

    result = EditResult(code="")
    generated = await editors.edit_code(code, instruction)
    result.code, result.auto_fixes = auto_fix(generated)
    if result.auto_fixes:
        logger.info(f"Auto-fixed edited code: {result.auto_fixes}")

    async def validate(n: int) -> AttemptResult:
        await channel.emit(status_event("validating", "Checking syntax", attempts=n))
        issues = find_syntax_issues(result.code)
        result.remaining_issues = issues
        if not issues:
            return AttemptResult.ok()
        return AttemptResult.retry("\n".join(issues))

    async def repair(n: int, diagnostics: str) -> AttemptResult:
        await channel.emit(status_event("fixing", "Fixing syntax issues", attempts=n))
        fixed = await editors.fix_code(result.code, diagnostics.split("\n"))
        result.code, more_fixes = auto_fix(fixed)
        result.auto_fixes.extend(more_fixes)
        result.repaired = True
        return AttemptResult.ok()

    report = await run_repair_loop(validate, repair, max_attempts=2, label="edit validation")
    if report.outcome == RepairOutcome.EXHAUSTED:
        # Accepted regardless; a render will surface anything real
        logger.warning(f"Accepting edited code with unresolved issues: {result.remaining_issues}")

    await channel.emit(GenerationEvent(type="remotionCode", data=result.code))
    return result


async def stream_composition_edit(
    code: str,
    instruction: str,
    editors: EditCollaborators,
    channel: EventChannel,
    on_success=None,
) -> None:
    """Run ``edit_composition`` as a complete stream.

    ``on_success`` (async, receives the EditResult) runs before the terminal
    event, e.g. to persist the new composition. Always finishes the channel.
    """
    success = False
    try:
        result = await edit_composition(code, instruction, editors, channel)
        if on_success is not None:
            await on_success(result)
        success = True
    except Exception as e:
        logger.error(f"Composition edit failed: {type(e).__name__}: {e}", exc_info=True)
        await channel.emit(error_event([f"Edit failed: {e}"]))
    finally:
        await channel.finish(success, "Edit applied" if success else "Edit failed")
        channel.close()
