"""Job registry and recording status polling."""

import asyncio
import uuid
from datetime import datetime, timedelta

import pytest

from promopipe.db import async_session
from promopipe.db.models import ScreenRecording
from promopipe.workers.jobs import JobRegistry, RegistryClosed, recording_status


@pytest.mark.asyncio
async def test_submit_records_progress_and_result():
    registry = JobRegistry()
    gate = asyncio.Event()

    async def work(progress):
        await progress(50)
        await gate.wait()
        return {"cursor_data": [1, 2, 3], "zoom_points": [1]}

    task = await registry.submit("cv", "rec-1", work)
    await asyncio.sleep(0)
    await asyncio.sleep(0)
    running = await registry.get("cv", "rec-1")
    assert running.status == "processing"
    assert running.progress == 50

    gate.set()
    await task
    done = await registry.get("cv", "rec-1")
    assert done.status == "complete"
    assert done.progress == 100
    assert done.completed_at is not None
    assert done.result["zoom_points"] == [1]


@pytest.mark.asyncio
async def test_failed_job_is_recorded_not_raised():
    registry = JobRegistry()

    async def work(progress):
        raise RuntimeError("ffmpeg exited 1")

    task = await registry.submit("video", "rec-2", work)
    await task

    job = await registry.get("video", "rec-2")
    assert job.status == "error"
    assert job.error == "ffmpeg exited 1"


@pytest.mark.asyncio
async def test_unknown_kind_rejected():
    with pytest.raises(ValueError):
        await JobRegistry().update("audio", "rec", status="processing")


@pytest.mark.asyncio
async def test_shutdown_cancels_and_closes():
    registry = JobRegistry()

    async def work(progress):
        await asyncio.sleep(60)
        return {}

    task = await registry.submit("cv", "rec-3", work)
    await registry.shutdown()

    assert task.cancelled()
    assert registry.closed
    with pytest.raises(RegistryClosed):
        await registry.update("cv", "rec-3", progress=10)


@pytest.mark.asyncio
async def test_status_merges_cv_and_video_progress(db):
    registry = JobRegistry()
    await registry.update("cv", "rec-4", status="complete", progress=100,
                          result={"cursor_data": [1, 2], "zoom_points": []})
    await registry.update("video", "rec-4", status="processing", progress=50)

    async with async_session() as session:
        status = await recording_status(registry, session, "rec-4")

    assert status["status"] == "processing"
    assert status["progress"] == 70  # 100 * 0.4 + 50 * 0.6
    assert status["cursorCount"] == 2
    assert status["videoStatus"] == "processing"


@pytest.mark.asyncio
async def test_status_falls_back_to_database(db):
    async with async_session() as session:
        recording = ScreenRecording(
            video_url="https://cdn.example.com/raw.webm",
            processed_video_url="https://cdn.example.com/final.mp4",
            processing_status="complete",
        )
        session.add(recording)
        await session.commit()
        recording_id = str(recording.id)

    async with async_session() as session:
        status = await recording_status(JobRegistry(), session, recording_id)

    assert status == {
        "recordingId": recording_id,
        "status": "complete",
        "progress": 100,
        "processedVideoUrl": "https://cdn.example.com/final.mp4",
    }


@pytest.mark.asyncio
async def test_unknown_recording_is_not_found(db):
    async with async_session() as session:
        status = await recording_status(JobRegistry(), session, str(uuid.uuid4()))
        malformed = await recording_status(JobRegistry(), session, "not-a-uuid")

    assert status["status"] == "not_found"
    assert malformed["status"] == "not_found"


@pytest.mark.asyncio
async def test_finished_jobs_are_pruned_after_retention():
    registry = JobRegistry(retention=timedelta(minutes=10))
    await registry.update("cv", "rec-5", status="complete", progress=100,
                          completed_at=datetime.utcnow())
    await registry.update("video", "rec-5", status="processing", progress=20)

    assert await registry.prune() == 0
    assert await registry.get("cv", "rec-5") is not None

    later = datetime.utcnow() + timedelta(minutes=11)
    assert await registry.prune(now=later) == 1
    assert await registry.get("cv", "rec-5") is None
    # Still running, so kept
    assert (await registry.get("video", "rec-5")).progress == 20


@pytest.mark.asyncio
async def test_writes_drop_stale_finished_jobs():
    registry = JobRegistry(retention=timedelta(minutes=10))
    await registry.update("cv", "rec-6", status="complete",
                          completed_at=datetime.utcnow() - timedelta(hours=1))
    await registry.update("cv", "rec-7", status="processing")

    assert await registry.get("cv", "rec-6") is None
    assert await registry.get("cv", "rec-7") is not None
