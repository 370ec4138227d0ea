"""Shared fixtures: a throwaway SQLite database and scripted stage collaborators.

The database URL must be set before anything imports promopipe.config, so it
happens at module import time here.
"""

import os
import tempfile
from pathlib import Path

_TMP_DIR = Path(tempfile.mkdtemp(prefix="promopipe-tests-"))
os.environ["PROMOPIPE_STORAGE__DATABASE_URL"] = f"sqlite+aiosqlite:///{_TMP_DIR / 'test.db'}"
os.environ.setdefault("PROMOPIPE_PIPELINE__MAX_RENDER_ATTEMPTS", "3")

from typing import Awaitable, Callable, Optional  # noqa: E402

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402

from promopipe.db import Base, async_session, engine, init_database  # noqa: E402
from promopipe.db.models import Project, User  # noqa: E402
from promopipe.orchestrator.events import EventChannel, GenerationEvent  # noqa: E402
from promopipe.orchestrator.stages import StageSet  # noqa: E402
from promopipe.orchestrator.state import PipelineState, PipelineStep, StatePatch  # noqa: E402
from promopipe.schemas.script import VideoScene, VideoScript  # noqa: E402

SAMPLE_PRODUCT = {
    "name": "Notely",
    "tagline": "Notes, minus the noise",
    "description": "A note-taking app.",
    "features": [{"title": "Instant search", "description": "Find any note fast"}],
}

GOOD_CODE = "export const GeneratedVideo = () => { return <div>{'Notely'}</div>; };"


def sample_script() -> VideoScript:
    return VideoScript(
        total_duration_frames=240,
        scenes=[
            VideoScene(id="intro", start_frame=0, end_frame=90, type="intro"),
            VideoScene(id="feature-1", start_frame=90, end_frame=180, type="feature"),
            VideoScene(id="cta", start_frame=180, end_frame=240, type="cta"),
        ],
    )


class ScriptedStages:
    """Deterministic stage collaborators with call recording.

    Args:
        render_outcomes: Per-attempt "ok" or "fail"; the last entry repeats.
        fail_at: Stage name that reports an expected failure.
        raise_at: Stage name that raises an unexpected exception.
        hooks: Stage name -> async callable run before the stage returns.
    """

    def __init__(
        self,
        render_outcomes: Optional[list[str]] = None,
        fail_at: Optional[str] = None,
        raise_at: Optional[str] = None,
        hooks: Optional[dict[str, Callable[[], Awaitable[None]]]] = None,
    ) -> None:
        self.render_outcomes = render_outcomes or ["ok"]
        self.fail_at = fail_at
        self.raise_at = raise_at
        self.hooks = hooks or {}
        self.calls: list[str] = []
        self.render_calls = 0
        self.repair_calls = 0
        self.repair_inputs: list[Optional[str]] = []
        self.seen_states: dict[str, PipelineState] = {}

    async def _enter(self, name: str, state: PipelineState) -> Optional[StatePatch]:
        self.calls.append(name)
        self.seen_states[name] = state
        if name in self.hooks:
            await self.hooks[name]()
        if self.raise_at == name:
            raise RuntimeError(f"{name} exploded")
        if self.fail_at == name:
            return StatePatch.failure(f"{name} could not proceed")
        return None

    async def analyze_source(self, state):
        return await self._enter("analyze_source", state) or StatePatch(product_data=dict(SAMPLE_PRODUCT))

    async def write_script(self, state):
        return await self._enter("write_script", state) or StatePatch(video_script=sample_script())

    async def generate_page_code(self, state):
        return await self._enter("generate_page_code", state) or StatePatch(
            page_code="export default function Page() { return <main />; }"
        )

    async def translate(self, state):
        return await self._enter("translate", state) or StatePatch(composition_code=GOOD_CODE)

    async def render(self, state):
        early = await self._enter("render", state)
        if early:
            return early
        self.render_calls += 1
        outcome = self.render_outcomes[min(self.render_calls, len(self.render_outcomes)) - 1]
        if outcome == "ok":
            return StatePatch(video_url=f"https://cdn.example.com/videos/{self.render_calls}.mp4")
        return StatePatch(
            current_step=PipelineStep.FIXING,
            last_render_error=f"TypeError: cannot read 'x' (attempt {self.render_calls})",
        )

    async def repair(self, state):
        early = await self._enter("repair", state)
        if early:
            return early
        self.repair_calls += 1
        self.repair_inputs.append(state.last_render_error)
        return StatePatch(composition_code=f"{GOOD_CODE} // fix {self.repair_calls}")

    def stage_set(self) -> StageSet:
        return StageSet(
            analyze_source=self.analyze_source,
            write_script=self.write_script,
            generate_page_code=self.generate_page_code,
            translate=self.translate,
            render=self.render,
            repair=self.repair,
        )


async def drain(channel: EventChannel) -> list[GenerationEvent]:
    return [event async for event in channel.events()]


@pytest_asyncio.fixture
async def db():
    """Fresh schema per test; connections disposed so each test loop gets its own."""
    await init_database()
    yield
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest_asyncio.fixture
async def user(db) -> User:
    async with async_session() as session:
        u = User(email="owner@example.com", name="Owner", credit_balance=50)
        session.add(u)
        await session.commit()
        await session.refresh(u)
        return u


@pytest_asyncio.fixture
async def project(user) -> Project:
    async with async_session() as session:
        p = Project(user_id=user.id, name="Notely promo", status="DRAFT")
        session.add(p)
        await session.commit()
        await session.refresh(p)
        return p


async def load_project(project_id) -> Project:
    async with async_session() as session:
        return await session.get(Project, project_id)


@pytest.fixture
def stages() -> ScriptedStages:
    return ScriptedStages()
