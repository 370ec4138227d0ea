"""PipelineState transitions and patch merging."""

import pytest

from promopipe.errors import StagePatchError
from promopipe.orchestrator.state import (
    PipelineState,
    PipelineStep,
    StatePatch,
    can_transition,
)


def test_apply_merges_declared_fields_and_appends_errors():
    state = PipelineState(description="A note-taking app", errors=["earlier"])
    state.apply(StatePatch(product_data={"name": "Notely"}), "analyze_source")
    state.apply(StatePatch.failure("scrape blocked"), "analyze_source")

    assert state.product_data == {"name": "Notely"}
    assert state.errors == ["earlier", "scrape blocked"]
    # current_step is a signal, never merged
    assert state.current_step == PipelineStep.INIT


def test_apply_rejects_undeclared_fields():
    state = PipelineState(description="x")
    with pytest.raises(StagePatchError):
        state.apply(StatePatch(video_url="https://cdn.example.com/v.mp4"), "translate")
    assert state.video_url is None


def test_patch_rejects_unknown_keys():
    with pytest.raises(ValueError):
        StatePatch(render_attempts=3)


def test_snapshot_is_independent():
    state = PipelineState(product_data={"name": "Notely", "features": []})
    copy = state.snapshot()
    copy.product_data["features"].append("leak")

    assert state.product_data["features"] == []


def test_legal_and_illegal_transitions():
    assert can_transition(PipelineStep.INIT, PipelineStep.SCRAPING)
    assert can_transition(PipelineStep.INIT, PipelineStep.CODE_GENERATING)
    assert can_transition(PipelineStep.FIXING, PipelineStep.RENDERING)
    assert can_transition(PipelineStep.TRANSLATING, PipelineStep.ERROR)
    assert not can_transition(PipelineStep.SCRAPING, PipelineStep.RENDERING)
    assert not can_transition(PipelineStep.COMPLETE, PipelineStep.ERROR)

    state = PipelineState()
    with pytest.raises(ValueError):
        state.move_to(PipelineStep.RENDERING)


def test_complete_requires_video_url():
    state = PipelineState(current_step=PipelineStep.RENDERING)
    with pytest.raises(ValueError):
        state.complete("")

    state.complete("https://cdn.example.com/v.mp4")
    assert state.current_step == PipelineStep.COMPLETE


def test_fail_guarantees_an_error_and_clears_video():
    state = PipelineState(current_step=PipelineStep.RENDERING, video_url="stale")
    state.fail()

    assert state.current_step == PipelineStep.ERROR
    assert state.errors == ["Pipeline failed during rendering"]
    assert state.video_url is None
