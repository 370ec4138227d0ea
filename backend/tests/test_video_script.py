"""VideoScript frame invariants across edits."""

import pytest

from promopipe.schemas.script import VideoScene, VideoScript

from conftest import sample_script


def _frames(script: VideoScript):
    return [(s.id, s.start_frame, s.end_frame) for s in script.scenes]


def test_sample_script_is_contiguous():
    assert sample_script().is_contiguous()


def test_reorder_keeps_durations_and_tiles_timeline():
    script = sample_script().reorder(["cta", "intro", "feature-1"])

    assert _frames(script) == [
        ("cta", 0, 60),
        ("intro", 60, 150),
        ("feature-1", 150, 240),
    ]
    assert script.total_duration_frames == 240
    assert script.is_contiguous()


def test_reorder_requires_every_scene_once():
    with pytest.raises(ValueError):
        sample_script().reorder(["cta", "intro"])


def test_resize_shifts_later_scenes():
    script = sample_script().resize_scene("intro", 30)

    assert _frames(script) == [
        ("intro", 0, 30),
        ("feature-1", 30, 120),
        ("cta", 120, 180),
    ]
    assert script.total_duration_frames == 180
    assert script.is_contiguous()


def test_resize_rejects_empty_scene():
    with pytest.raises(ValueError):
        sample_script().resize_scene("intro", 0)


def test_insert_scene_preserves_its_duration():
    extra = VideoScene(id="feature-2", start_frame=500, end_frame=545, type="feature")
    script = sample_script().insert_scene(2, extra)

    assert _frames(script)[2] == ("feature-2", 180, 225)
    assert _frames(script)[3] == ("cta", 225, 285)
    assert script.total_duration_frames == 285
    assert script.is_contiguous()


def test_insert_rejects_duplicate_id():
    dup = VideoScene(id="intro", start_frame=0, end_frame=10, type="intro")
    with pytest.raises(ValueError):
        sample_script().insert_scene(0, dup)


def test_remove_scene_closes_gap():
    script = sample_script().remove_scene("feature-1")

    assert _frames(script) == [("intro", 0, 90), ("cta", 90, 150)]
    assert script.total_duration_frames == 150
    assert script.is_contiguous()


def test_remove_unknown_scene():
    with pytest.raises(KeyError):
        sample_script().remove_scene("nope")


def test_normalized_sorts_and_fills_gaps():
    raw = VideoScript.model_validate({
        "totalDuration": 999,
        "scenes": [
            {"id": "b", "startFrame": 200, "endFrame": 260, "type": "feature"},
            {"id": "a", "startFrame": 10, "endFrame": 100, "type": "intro"},
        ],
    })
    assert not raw.is_contiguous()

    script = raw.normalized()
    assert _frames(script) == [("a", 0, 90), ("b", 90, 150)]
    assert script.total_duration_frames == 150


def test_scene_end_must_follow_start():
    with pytest.raises(ValueError):
        VideoScene(id="bad", start_frame=30, end_frame=30, type="intro")


def test_wire_format_is_camel_case():
    wire = sample_script().to_wire()

    assert wire["totalDurationFrames"] == 240
    assert wire["scenes"][0]["startFrame"] == 0
    assert wire["scenes"][0]["endFrame"] == 90
    assert "start_frame" not in wire["scenes"][0]
