"""Pipeline orchestrator.

Threads one ``PipelineState`` through the stage collaborators, streams events
onto the run's ``EventChannel`` and checkpoints progress into the project
record. Two entry points share the render phase:

    generate:  scraping -> scripting -> generating -> translating -> render loop
    continue:  generating -> translating -> render loop (from an approved script)

The render loop makes at most ``pipeline.max_render_attempts`` render calls,
each after the first preceded by exactly one repair call.

Whatever happens inside a run, the channel receives exactly one ``complete``
event as its last event and is closed from a ``finally`` block. Stage
reported errors and unexpected exceptions both end in the same
``error`` + ``complete{success: false}`` pair, with the project rolled back to
DRAFT when the run is persisted.
"""

import asyncio
import logging
import time
from datetime import datetime
from typing import Any, Awaitable, Callable, Optional

from promopipe.config import settings
from promopipe.errors import PipelineInputError
from promopipe.orchestrator.checkpoint import CheckpointWriter, ProjectLocks
from promopipe.orchestrator.events import EventChannel, GenerationEvent, error_event, status_event
from promopipe.orchestrator.repair import (
    AttemptResult,
    RepairOutcome,
    run_repair_loop,
)
from promopipe.orchestrator.stages import StageSet
from promopipe.orchestrator.state import (
    PIPELINE_STATES,
    PipelineState,
    PipelineStep,
    Preferences,
    StatePatch,
)
from promopipe.schemas.script import VideoScript

logger = logging.getLogger(__name__)


class RunAborted(Exception):
    """Raised at a stage boundary when the consumer disconnected and
    ``abort_on_disconnect`` is enabled."""


# ---------------------------------------------------------------------------
# INIT: input validation and initial state
# ---------------------------------------------------------------------------

def build_generate_state(
    *,
    url: Optional[str],
    description: Optional[str],
    preferences: Optional[Preferences] = None,
    project_id: Optional[str] = None,
) -> PipelineState:
    """Validate generate inputs and build the initial state.

    Raises:
        PipelineInputError: If neither a URL nor a description is given.
    """
    url = (url or "").strip() or None
    description = (description or "").strip() or None
    if not url and not description:
        raise PipelineInputError("Either URL or description is required")
    return PipelineState(
        source_url=url,
        description=description,
        preferences=preferences or Preferences(),
        project_id=project_id,
    )


def build_continue_state(
    *,
    video_script: Optional[VideoScript],
    product_data: Optional[dict[str, Any]],
    preferences: Optional[Preferences] = None,
    project_id: Optional[str] = None,
) -> PipelineState:
    """Validate continue inputs and build the initial state.

    Raises:
        PipelineInputError: If the approved script or product data is
            missing, or the script has no scenes.
    """
    if video_script is None:
        raise PipelineInputError("videoScript is required")
    if not video_script.scenes:
        raise PipelineInputError("videoScript must contain at least one scene")
    if not product_data:
        raise PipelineInputError("productData is required")
    return PipelineState(
        product_data=product_data,
        video_script=video_script.normalized(),
        preferences=preferences or Preferences(),
        project_id=project_id,
    )


# ---------------------------------------------------------------------------
# Orchestrator
# ---------------------------------------------------------------------------

class PipelineOrchestrator:
    """Runs pipeline state machines. Holds no per-run state.

    Args:
        stages: Stage collaborators.
        locks: Per-project lock registry shared with other project writers.
        session_factory: Async session factory for checkpoints (defaults to
            the application session factory).
        max_render_attempts: Render bound, defaults to settings.
        abort_on_disconnect: Stop at the next stage boundary once the
            consumer has gone away, defaults to settings.
    """

    def __init__(
        self,
        stages: StageSet,
        *,
        locks: Optional[ProjectLocks] = None,
        session_factory: Optional[Callable] = None,
        max_render_attempts: Optional[int] = None,
        abort_on_disconnect: Optional[bool] = None,
    ) -> None:
        self.stages = stages
        self.locks = locks or ProjectLocks()
        self.session_factory = session_factory
        self.max_render_attempts = max_render_attempts or settings.pipeline.max_render_attempts
        self.abort_on_disconnect = (
            settings.pipeline.abort_on_disconnect
            if abort_on_disconnect is None
            else abort_on_disconnect
        )

    # -- public entry points ------------------------------------------------

    async def run_generate(self, state: PipelineState, channel: EventChannel) -> PipelineState:
        """Full run from a URL or description."""
        return await self._run("generate", self._generate_body, state, channel)

    async def run_continue(self, state: PipelineState, channel: EventChannel) -> PipelineState:
        """Run from an approved script, skipping analysis and scripting."""
        return await self._run("continue", self._render_phase, state, channel)

    # -- run envelope -------------------------------------------------------

    def _writer_for(self, state: PipelineState) -> Optional[CheckpointWriter]:
        if not state.persisted:
            return None
        kwargs = {"locks": self.locks}
        if self.session_factory is not None:
            kwargs["session_factory"] = self.session_factory
        return CheckpointWriter(state.project_id, **kwargs)

    async def _run(
        self,
        kind: str,
        body: Callable[["_Run"], Awaitable[None]],
        state: PipelineState,
        channel: EventChannel,
    ) -> PipelineState:
        run = _Run(state, channel, self._writer_for(state))
        logger.info(
            f"Starting {kind} run (project={state.project_id or 'ephemeral'}, "
            f"max_render_attempts={self.max_render_attempts})"
        )
        try:
            if run.writer:
                await run.writer.start()
            await body(run)

        except RunAborted:
            logger.warning(f"{kind} run aborted at {state.current_step.value}: consumer disconnected")
            await self._fail(run, "Run aborted: client disconnected")

        except asyncio.CancelledError:
            logger.warning(f"{kind} run cancelled at {state.current_step.value}")
            await self._fail(run, "Run cancelled")
            raise

        except Exception as e:
            logger.error(
                f"{kind} run failed at {state.current_step.value}: {type(e).__name__}: {e}",
                exc_info=True,
            )
            await self._fail(run, f"Unexpected error: {e}" if str(e) else type(e).__name__)

        finally:
            run.mark(None)
            success = state.current_step == PipelineStep.COMPLETE
            await channel.finish(
                success,
                "Video generated successfully" if success else "Pipeline could not finish",
            )
            channel.close()
            if run.writer:
                await run.writer.record_run(
                    kind=kind,
                    outcome=state.current_step.value,
                    render_attempts=state.render_attempts,
                    started_at=run.started_at,
                    duration_seconds=time.monotonic() - run.started,
                    step_log=run.step_log,
                    errors=state.errors,
                )
            logger.info(
                f"{kind} run finished: {state.current_step.value} after "
                f"{time.monotonic() - run.started:.2f}s, {state.render_attempts} render attempt(s)"
            )
        return state

    async def _fail(self, run: "_Run", *messages: str) -> None:
        """Enter ERROR, emit the error event and roll the project back."""
        if run.state.current_step == PipelineStep.ERROR:
            return
        run.state.fail(*messages)
        await run.emit(error_event(run.state.errors))
        if run.writer:
            await run.writer.rollback()

    # -- stage plumbing -----------------------------------------------------

    async def _enter(self, run: "_Run", step: PipelineStep, attempts: Optional[int] = None) -> None:
        if self.abort_on_disconnect and run.channel.closed:
            raise RunAborted()
        run.state.move_to(step)
        run.mark(step.value)
        await run.emit(status_event(step.value, PIPELINE_STATES[step], attempts))

    async def _invoke(self, run: "_Run", stage: str) -> StatePatch:
        start = time.monotonic()
        patch = await self.stages.get(stage)(run.state.snapshot())
        run.state.apply(patch, stage)
        logger.info(f"Stage {stage} returned {sorted(patch.model_fields_set)} in {time.monotonic() - start:.2f}s")
        return patch

    # -- bodies -------------------------------------------------------------

    async def _generate_body(self, run: "_Run") -> None:
        state = run.state

        await self._enter(run, PipelineStep.SCRAPING)
        patch = await self._invoke(run, "analyze_source")
        if patch.reports_error() or state.product_data is None:
            return await self._fail(run, "" if patch.reports_error() else "Source analysis returned no product data")
        if run.writer:
            await run.writer.after_analysis(state)
        await run.emit(GenerationEvent(type="productData", data=state.product_data))

        await self._enter(run, PipelineStep.SCRIPTING)
        patch = await self._invoke(run, "write_script")
        if patch.reports_error() or state.video_script is None:
            return await self._fail(run, "" if patch.reports_error() else "Script stage returned no script")
        if run.writer:
            await run.writer.after_script(state)
        await run.emit(GenerationEvent(type="videoScript", data=state.video_script.to_wire()))

        await self._render_phase(run)

    async def _render_phase(self, run: "_Run") -> None:
        state = run.state

        await self._enter(run, PipelineStep.CODE_GENERATING)
        patch = await self._invoke(run, "generate_page_code")
        if patch.reports_error() or not state.page_code:
            return await self._fail(run, "" if patch.reports_error() else "Page code generation returned no code")
        await run.emit(GenerationEvent(type="reactPageCode", data=state.page_code))

        await self._enter(run, PipelineStep.TRANSLATING)
        patch = await self._invoke(run, "translate")
        if patch.reports_error() or not state.composition_code:
            return await self._fail(run, "" if patch.reports_error() else "Translation returned no composition code")
        if run.writer:
            await run.writer.after_translate(state)
        await run.emit(GenerationEvent(type="remotionCode", data=state.composition_code))

        await self._render_loop(run)

    async def _render_loop(self, run: "_Run") -> None:
        state = run.state

        async def attempt(n: int) -> AttemptResult:
            # Attempts count render entries, not repairs
            state.render_attempts = n
            await self._enter(run, PipelineStep.RENDERING, attempts=n)
            patch = await self._invoke(run, "render")
            if patch.reports_error():
                return AttemptResult.fatal()
            if state.video_url:
                return AttemptResult.ok()
            if patch.current_step == PipelineStep.FIXING:
                return AttemptResult.retry(state.last_render_error or "Render failed")
            return AttemptResult.fatal("Render returned neither a video URL nor a render error")

        async def repair(n: int, error: str) -> AttemptResult:
            await self._enter(run, PipelineStep.FIXING, attempts=n)
            before = state.composition_code
            patch = await self._invoke(run, "repair")
            if patch.reports_error():
                return AttemptResult.fatal()
            if not state.composition_code:
                return AttemptResult.fatal("Repair returned no composition code")
            if state.composition_code == before:
                logger.warning("Repair returned unchanged composition code")
            if run.writer:
                await run.writer.after_repair(state)
            await run.emit(GenerationEvent(type="remotionCode", data=state.composition_code))
            return AttemptResult.ok()

        report = await run_repair_loop(
            attempt, repair, max_attempts=self.max_render_attempts, label="render"
        )

        if report.outcome == RepairOutcome.SUCCEEDED:
            state.complete(state.video_url)
            if run.writer:
                await run.writer.after_render(state)
            await run.emit(GenerationEvent(type="videoUrl", data=state.video_url))
            return

        if report.outcome == RepairOutcome.EXHAUSTED:
            await self._fail(
                run,
                f"Render failed after {report.attempts} attempts: {report.last_error}",
            )
        else:
            await self._fail(run, report.last_error or "")


class _Run:
    """Per-run bookkeeping: state, channel, writer and step timings."""

    def __init__(
        self,
        state: PipelineState,
        channel: EventChannel,
        writer: Optional[CheckpointWriter],
    ) -> None:
        self.state = state
        self.channel = channel
        self.writer = writer
        self.started = time.monotonic()
        self.started_at = datetime.utcnow()
        self.step_log: dict[str, float] = {}
        self._current: Optional[str] = None
        self._current_start = self.started

    def mark(self, step: Optional[str]) -> None:
        """Close the timing of the previous step and start ``step`` (None stops timing)."""
        now = time.monotonic()
        if self._current is not None:
            self.step_log[self._current] = self.step_log.get(self._current, 0.0) + (
                now - self._current_start
            )
        self._current = step
        self._current_start = now

    async def emit(self, event: GenerationEvent) -> None:
        if not await self.channel.emit(event):
            logger.debug(f"Consumer gone; {event.type} event not delivered")
