"""Composition edits: generate, validate, repair once, accept."""

import pytest

from promopipe.orchestrator.editing import edit_composition, stream_composition_edit
from promopipe.orchestrator.events import EventChannel
from promopipe.orchestrator.stages import EditCollaborators

from conftest import GOOD_CODE, drain, sample_script

BROKEN_CODE = "export const GeneratedVideo = () => { return <div />;"


class FakeEditors:
    def __init__(self, edited, fixed=GOOD_CODE, fail=False):
        self.edited = edited
        self.fixed = fixed
        self.fail = fail
        self.fix_calls = []

    async def edit_code(self, code, instruction):
        if self.fail:
            raise RuntimeError("model unavailable")
        return self.edited

    async def fix_code(self, code, issues):
        self.fix_calls.append(issues)
        return self.fixed

    async def edit_script(self, script, instruction, product_data):
        return sample_script()

    def collaborators(self):
        return EditCollaborators(
            edit_code=self.edit_code, fix_code=self.fix_code, edit_script=self.edit_script
        )


def _steps(events):
    return [e.data["step"] for e in events if e.type == "status"]


@pytest.mark.asyncio
async def test_clean_edit_needs_no_repair():
    editors = FakeEditors(edited=GOOD_CODE)
    channel = EventChannel()
    result = await edit_composition("old", "make it blue", editors.collaborators(), channel)
    channel.close()
    events = await drain(channel)

    assert result.code == GOOD_CODE
    assert not result.repaired
    assert editors.fix_calls == []
    assert _steps(events) == ["editing", "generating", "validating"]
    assert events[-1].type == "remotionCode"
    assert events[-1].data == GOOD_CODE


@pytest.mark.asyncio
async def test_broken_edit_is_repaired_once():
    editors = FakeEditors(edited=BROKEN_CODE)
    channel = EventChannel()
    result = await edit_composition("old", "add a title", editors.collaborators(), channel)
    channel.close()
    events = await drain(channel)

    assert result.repaired
    assert result.code == GOOD_CODE
    assert result.remaining_issues == []
    assert editors.fix_calls == [["Unbalanced curly braces: 1 extra {"]]
    assert _steps(events) == ["editing", "generating", "validating", "fixing", "validating"]


@pytest.mark.asyncio
async def test_unfixable_edit_is_accepted_after_one_repair():
    editors = FakeEditors(edited=BROKEN_CODE, fixed=BROKEN_CODE)
    channel = EventChannel()
    result = await edit_composition("old", "add a title", editors.collaborators(), channel)

    assert len(editors.fix_calls) == 1
    assert result.code == BROKEN_CODE
    assert result.remaining_issues == ["Unbalanced curly braces: 1 extra {"]


@pytest.mark.asyncio
async def test_stream_edit_finishes_with_complete():
    saved = []

    async def persist(result):
        saved.append(result.code)

    channel = EventChannel()
    await stream_composition_edit(
        "old", "make it blue", FakeEditors(edited=GOOD_CODE).collaborators(), channel,
        on_success=persist,
    )
    events = await drain(channel)

    assert saved == [GOOD_CODE]
    assert [e.type for e in events][-2:] == ["remotionCode", "complete"]
    assert events[-1].data["success"] is True


@pytest.mark.asyncio
async def test_stream_edit_failure_emits_error_then_complete():
    channel = EventChannel()
    await stream_composition_edit(
        "old", "make it blue", FakeEditors(edited=GOOD_CODE, fail=True).collaborators(), channel
    )
    events = await drain(channel)

    assert [e.type for e in events][-2:] == ["error", "complete"]
    assert "model unavailable" in events[-2].data["errors"][0]
    assert events[-1].data["success"] is False
