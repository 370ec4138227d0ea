"""Pydantic schemas for the video script authored by the script stage.

The script is the reviewable plan for the output video: an ordered list of
scenes laid out on a frame timeline. Scenes are contiguous, starting at
frame 0, and the total duration equals the last scene's end frame. Every
edit helper below returns a new script with frames recomputed left to right,
so callers never hold a script with gaps or overlaps.

Wire form uses camelCase keys (startFrame, totalDurationFrames, ...);
``to_wire()`` produces it and ``VideoScript.model_validate`` accepts either
casing.
"""

from typing import Any, Literal, Optional

from pydantic import AliasChoices, BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

SceneType = Literal[
    "intro",
    "feature",
    "tagline",
    "value-prop",
    "screenshot",
    "testimonial",
    "recording",
    "cta",
]


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class SceneFeature(_CamelModel):
    """Feature bullet rendered inside a scene."""

    title: str
    description: str = ""
    icon: Optional[str] = None


class SceneStat(_CamelModel):
    """Animated statistic rendered inside a scene."""

    value: float
    label: str
    suffix: Optional[str] = None


class SceneContent(_CamelModel):
    """Per-type payload of a scene.

    Only the keys relevant to the scene type are set; unknown keys are kept
    so hand-edited scripts round-trip unchanged.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    headline: Optional[str] = None
    subtext: Optional[str] = None
    image: Optional[str] = None
    icon: Optional[str] = None
    features: Optional[list[SceneFeature]] = None
    stats: Optional[list[SceneStat]] = None
    recording_id: Optional[str] = None
    recording_video_url: Optional[str] = None
    screenshot_url: Optional[str] = None


class SceneAnimation(_CamelModel):
    """Enter/exit transition names for a scene."""

    enter: str = "fade"
    exit: str = "fade"
    stagger_delay: Optional[int] = None


class SceneStyle(_CamelModel):
    """Visual style of a scene."""

    background: str = "#000000"
    text_color: str = "#ffffff"
    font_size: Literal["large", "medium", "small"] = "medium"
    accent_color: Optional[str] = None
    layout: Optional[str] = None


class VideoScene(_CamelModel):
    """One scene on the frame timeline."""

    id: str
    start_frame: int = Field(ge=0)
    end_frame: int
    type: SceneType
    content: SceneContent = Field(default_factory=SceneContent)
    animation: SceneAnimation = Field(default_factory=SceneAnimation)
    style: SceneStyle = Field(default_factory=SceneStyle)

    @model_validator(mode="after")
    def _check_frame_order(self) -> "VideoScene":
        if self.end_frame <= self.start_frame:
            raise ValueError(
                f"scene {self.id}: endFrame ({self.end_frame}) must be greater "
                f"than startFrame ({self.start_frame})"
            )
        return self

    @property
    def duration(self) -> int:
        return self.end_frame - self.start_frame


class SceneTransition(_CamelModel):
    """Transition played after a scene."""

    after_scene: str
    type: str = "cut"
    duration: int = 0
    direction: Optional[str] = None


class MusicDirection(_CamelModel):
    """Tempo and mood hint for the soundtrack."""

    tempo: int = 120
    mood: str = "upbeat"


class VideoScript(_CamelModel):
    """Authored plan for the output video.

    Use ``normalized()`` on scripts that come from an LLM or a client, and
    the edit helpers for any change to scene order or duration.
    """

    total_duration_frames: int = Field(
        default=0,
        alias="totalDurationFrames",
        validation_alias=AliasChoices(
            "totalDurationFrames", "totalDuration", "total_duration_frames"
        ),
    )
    scenes: list[VideoScene] = Field(default_factory=list)
    transitions: list[SceneTransition] = Field(default_factory=list)
    music: Optional[MusicDirection] = None

    # ------------------------------------------------------------------
    # Invariants
    # ------------------------------------------------------------------

    def is_contiguous(self) -> bool:
        """True when scenes tile the timeline from frame 0 without gaps."""
        expected = 0
        for scene in self.scenes:
            if scene.start_frame != expected:
                return False
            expected = scene.end_frame
        return self.total_duration_frames == expected

    def recompute_frames(self) -> "VideoScript":
        """Lay scenes out left to right, keeping each scene's duration."""
        frame = 0
        scenes = []
        for scene in self.scenes:
            duration = scene.duration
            scenes.append(
                scene.model_copy(update={"start_frame": frame, "end_frame": frame + duration})
            )
            frame += duration
        return self.model_copy(update={"scenes": scenes, "total_duration_frames": frame})

    def normalized(self) -> "VideoScript":
        """Sort scenes by start frame, then recompute contiguous frames."""
        ordered = sorted(self.scenes, key=lambda s: s.start_frame)
        return self.model_copy(update={"scenes": ordered}).recompute_frames()

    # ------------------------------------------------------------------
    # Edit helpers (all return a recomputed copy)
    # ------------------------------------------------------------------

    def _index_of(self, scene_id: str) -> int:
        for i, scene in enumerate(self.scenes):
            if scene.id == scene_id:
                return i
        raise KeyError(f"Scene {scene_id} not found")

    def with_scenes(self, scenes: list[VideoScene]) -> "VideoScript":
        """Replace the scene list (in the given order) and recompute frames."""
        return self.model_copy(update={"scenes": list(scenes)}).recompute_frames()

    def reorder(self, scene_ids: list[str]) -> "VideoScript":
        """Reorder scenes to match ``scene_ids`` (must name every scene once)."""
        if sorted(scene_ids) != sorted(s.id for s in self.scenes):
            raise ValueError("reorder must list every scene id exactly once")
        by_id = {s.id: s for s in self.scenes}
        return self.with_scenes([by_id[sid] for sid in scene_ids])

    def resize_scene(self, scene_id: str, duration_frames: int) -> "VideoScript":
        """Set a scene's duration in frames."""
        if duration_frames < 1:
            raise ValueError("scene duration must be at least one frame")
        idx = self._index_of(scene_id)
        scene = self.scenes[idx]
        scenes = list(self.scenes)
        scenes[idx] = scene.model_copy(
            update={"end_frame": scene.start_frame + duration_frames}
        )
        return self.with_scenes(scenes)

    def insert_scene(self, index: int, scene: VideoScene) -> "VideoScript":
        """Insert a scene at ``index``; its own duration is preserved."""
        if any(s.id == scene.id for s in self.scenes):
            raise ValueError(f"Scene id {scene.id} already exists")
        scenes = list(self.scenes)
        scenes.insert(index, scene)
        return self.with_scenes(scenes)

    def remove_scene(self, scene_id: str) -> "VideoScript":
        """Remove a scene and close the gap it leaves."""
        idx = self._index_of(scene_id)
        scenes = list(self.scenes)
        del scenes[idx]
        transitions = [t for t in self.transitions if t.after_scene != scene_id]
        return self.model_copy(update={"transitions": transitions}).with_scenes(scenes)

    def to_wire(self) -> dict[str, Any]:
        """camelCase JSON-ready dict."""
        return self.model_dump(by_alias=True, mode="json", exclude_none=True)
