"""State machine constants, run state and typed stage patches.

Defines the ordered state machine that governs a single pipeline run, the
state record threaded through the stages, and the patch type every stage
returns. Stages only ever see a copy of the state; the orchestrator merges
their patches and is the only writer of ``current_step``.
"""

from enum import Enum
from typing import Any, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from promopipe.errors import StagePatchError
from promopipe.schemas.script import VideoScript


class PipelineStep(str, Enum):
    """Run states. Values are the step names used on the wire."""

    INIT = "init"
    SCRAPING = "scraping"
    SCRIPTING = "scripting"
    CODE_GENERATING = "generating"
    TRANSLATING = "translating"
    RENDERING = "rendering"
    FIXING = "fixing"
    COMPLETE = "complete"
    ERROR = "error"


# Pipeline states in execution order
PIPELINE_STATES = {
    PipelineStep.INIT: "Request received, inputs validated",
    PipelineStep.SCRAPING: "Analyzing the product source",
    PipelineStep.SCRIPTING: "Writing the video script",
    PipelineStep.CODE_GENERATING: "Generating the product page code",
    PipelineStep.TRANSLATING: "Translating page code into a video composition",
    PipelineStep.RENDERING: "Rendering the composition",
    PipelineStep.FIXING: "Repairing a failed render",
    PipelineStep.COMPLETE: "Video rendered successfully",
    PipelineStep.ERROR: "Run stopped on an error",
}

# Legal transitions; ERROR is reachable from every non-terminal state
ALLOWED_TRANSITIONS: dict[PipelineStep, frozenset[PipelineStep]] = {
    PipelineStep.INIT: frozenset({PipelineStep.SCRAPING, PipelineStep.CODE_GENERATING}),
    PipelineStep.SCRAPING: frozenset({PipelineStep.SCRIPTING}),
    PipelineStep.SCRIPTING: frozenset({PipelineStep.CODE_GENERATING}),
    PipelineStep.CODE_GENERATING: frozenset({PipelineStep.TRANSLATING}),
    PipelineStep.TRANSLATING: frozenset({PipelineStep.RENDERING}),
    PipelineStep.RENDERING: frozenset({PipelineStep.FIXING, PipelineStep.COMPLETE}),
    PipelineStep.FIXING: frozenset({PipelineStep.RENDERING}),
    PipelineStep.COMPLETE: frozenset(),
    PipelineStep.ERROR: frozenset(),
}

TERMINAL_STEPS = frozenset({PipelineStep.COMPLETE, PipelineStep.ERROR})


def can_transition(current: PipelineStep, target: PipelineStep) -> bool:
    """Check whether the state machine allows ``current -> target``."""
    if current in TERMINAL_STEPS:
        return False
    if target == PipelineStep.ERROR:
        return True
    return target in ALLOWED_TRANSITIONS[current]


class ProjectStatus(str, Enum):
    """Durable project status stored on the project record."""

    DRAFT = "DRAFT"
    GENERATING = "GENERATING"
    READY = "READY"


class AudioPreference(BaseModel):
    """Soundtrack selection passed through to the script and render stages."""

    model_config = ConfigDict(frozen=True)

    url: str
    bpm: int = 120
    duration: float = 30.0


class Preferences(BaseModel):
    """User preferences for a run. Immutable once the run starts."""

    model_config = ConfigDict(
        frozen=True, alias_generator=to_camel, populate_by_name=True
    )

    style: Literal["professional", "playful", "minimal", "bold"] = "professional"
    video_type: Optional[Literal["demo", "creative", "fast-paced", "cinematic"]] = None
    duration: Optional[int] = Field(default=None, ge=5, le=180, description="Seconds")
    audio: Optional[AudioPreference] = None


class StatePatch(BaseModel):
    """Partial update returned by a stage.

    Every field is optional and only fields explicitly set are merged.
    ``current_step`` is a signal to the orchestrator ("error" or "fixing"),
    never written into the state directly. ``errors`` are appended.
    """

    model_config = ConfigDict(extra="forbid")

    product_data: Optional[dict[str, Any]] = None
    video_script: Optional[VideoScript] = None
    page_code: Optional[str] = None
    composition_code: Optional[str] = None
    current_step: Optional[PipelineStep] = None
    errors: Optional[list[str]] = None
    last_render_error: Optional[str] = None
    video_url: Optional[str] = None

    @classmethod
    def failure(cls, *messages: str) -> "StatePatch":
        """Patch reporting an expected, terminal stage failure."""
        return cls(current_step=PipelineStep.ERROR, errors=list(messages))

    def reports_error(self) -> bool:
        return self.current_step == PipelineStep.ERROR or bool(self.errors)


# Fields each stage may write. A patch outside its stage's set is a
# programming fault, not a stage-reported error.
_SIGNALS = frozenset({"current_step", "errors"})

STAGE_OUTPUTS: dict[str, frozenset[str]] = {
    "analyze_source": _SIGNALS | {"product_data"},
    "write_script": _SIGNALS | {"video_script"},
    "generate_page_code": _SIGNALS | {"page_code"},
    "translate": _SIGNALS | {"composition_code"},
    "render": _SIGNALS | {"video_url", "last_render_error"},
    "repair": _SIGNALS | {"composition_code", "last_render_error"},
}


class PipelineState(BaseModel):
    """Record threaded through one run. Never shared across runs."""

    source_url: Optional[str] = None
    description: Optional[str] = None
    preferences: Preferences = Field(default_factory=Preferences)
    product_data: Optional[dict[str, Any]] = None
    video_script: Optional[VideoScript] = None
    page_code: Optional[str] = None
    composition_code: Optional[str] = None
    current_step: PipelineStep = PipelineStep.INIT
    errors: list[str] = Field(default_factory=list)
    render_attempts: int = 0
    last_render_error: Optional[str] = None
    video_url: Optional[str] = None
    project_id: Optional[str] = None

    @property
    def persisted(self) -> bool:
        return self.project_id is not None

    def snapshot(self) -> "PipelineState":
        """Deep copy handed to a stage so it cannot mutate the live state."""
        return self.model_copy(deep=True)

    def apply(self, patch: StatePatch, stage: str) -> None:
        """Merge a stage patch into the state.

        Raises:
            StagePatchError: If the patch sets fields outside the stage's
                declared outputs.
        """
        allowed = STAGE_OUTPUTS[stage]
        touched = patch.model_fields_set
        undeclared = touched - allowed
        if undeclared:
            raise StagePatchError(
                f"Stage '{stage}' wrote undeclared fields: {sorted(undeclared)}"
            )

        for field in touched - {"current_step"}:
            if field == "errors":
                self.errors.extend(patch.errors or [])
            else:
                setattr(self, field, getattr(patch, field))

    def move_to(self, step: PipelineStep) -> None:
        """Advance the state machine. COMPLETE and ERROR go through
        ``complete()`` and ``fail()`` so their invariants hold."""
        if step in TERMINAL_STEPS:
            raise ValueError(f"Use complete()/fail() to enter {step.value}")
        if not can_transition(self.current_step, step):
            raise ValueError(
                f"Illegal transition {self.current_step.value} -> {step.value}"
            )
        self.current_step = step

    def complete(self, video_url: str) -> None:
        if not video_url:
            raise ValueError("A completed run needs a video URL")
        if not can_transition(self.current_step, PipelineStep.COMPLETE):
            raise ValueError(f"Cannot complete from {self.current_step.value}")
        self.video_url = video_url
        self.current_step = PipelineStep.COMPLETE

    def fail(self, *messages: str) -> None:
        """Enter ERROR, guaranteeing ``errors`` is non-empty."""
        self.errors.extend(m for m in messages if m)
        if not self.errors:
            self.errors.append(f"Pipeline failed during {self.current_step.value}")
        self.video_url = None
        self.current_step = PipelineStep.ERROR
