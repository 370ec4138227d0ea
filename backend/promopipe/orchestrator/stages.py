"""Stage collaborator contract.

A stage is an async callable taking a read-only snapshot of the run state and
returning a ``StatePatch``. Expected failures are reported in the patch
(``StatePatch.failure(...)`` or, for render, ``current_step=FIXING``); only
unexpected faults raise.

The orchestrator receives its stages as a ``StageSet`` so tests and
alternative deployments can swap any of them without touching the run logic.
"""

from dataclasses import dataclass
from typing import Awaitable, Callable

from promopipe.orchestrator.state import PipelineState, StatePatch
from promopipe.schemas.script import VideoScript

StageFn = Callable[[PipelineState], Awaitable[StatePatch]]


@dataclass(frozen=True)
class StageSet:
    """The six stage collaborators of a pipeline run.

    Attribute names match the keys of ``STAGE_OUTPUTS``.
    """

    analyze_source: StageFn
    write_script: StageFn
    generate_page_code: StageFn
    translate: StageFn
    render: StageFn
    repair: StageFn

    def get(self, name: str) -> StageFn:
        return getattr(self, name)


# Content-edit collaborators (outside a pipeline run)
EditCodeFn = Callable[[str, str], Awaitable[str]]
FixCodeFn = Callable[[str, list[str]], Awaitable[str]]
EditScriptFn = Callable[[VideoScript, str, dict | None], Awaitable[VideoScript]]


@dataclass(frozen=True)
class EditCollaborators:
    """Collaborators for chat-driven edits.

    edit_code(code, instruction) -> new code
    fix_code(code, issues) -> repaired code
    edit_script(script, instruction, product_data) -> edited script
    """

    edit_code: EditCodeFn
    fix_code: FixCodeFn
    edit_script: EditScriptFn
