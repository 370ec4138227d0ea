"""Bounded attempt/repair loop."""

import pytest

from promopipe.orchestrator.repair import AttemptResult, RepairOutcome, run_repair_loop


class Recorder:
    def __init__(self, results):
        self.results = list(results)
        self.trace = []

    async def attempt(self, n):
        self.trace.append(("attempt", n))
        return self.results.pop(0)

    async def repair(self, n, error):
        self.trace.append(("repair", n, error))
        return AttemptResult.ok()


@pytest.mark.asyncio
async def test_first_attempt_succeeds_without_repair():
    rec = Recorder([AttemptResult.ok()])
    report = await run_repair_loop(rec.attempt, rec.repair, max_attempts=3)

    assert report.outcome == RepairOutcome.SUCCEEDED
    assert report.attempts == 1
    assert report.repairs == 0
    assert rec.trace == [("attempt", 1)]


@pytest.mark.asyncio
async def test_one_repair_between_attempts():
    rec = Recorder([AttemptResult.retry("e1"), AttemptResult.retry("e2"), AttemptResult.ok()])
    report = await run_repair_loop(rec.attempt, rec.repair, max_attempts=3)

    assert report.outcome == RepairOutcome.SUCCEEDED
    assert rec.trace == [
        ("attempt", 1),
        ("repair", 1, "e1"),
        ("attempt", 2),
        ("repair", 2, "e2"),
        ("attempt", 3),
    ]


@pytest.mark.asyncio
async def test_exhaustion_reports_last_error():
    rec = Recorder([AttemptResult.retry(f"e{i}") for i in range(1, 4)])
    report = await run_repair_loop(rec.attempt, rec.repair, max_attempts=3)

    assert report.outcome == RepairOutcome.EXHAUSTED
    assert report.attempts == 3
    assert report.repairs == 2
    assert report.last_error == "e3"


@pytest.mark.asyncio
async def test_fatal_attempt_stops_immediately():
    rec = Recorder([AttemptResult.fatal("service down")])
    report = await run_repair_loop(rec.attempt, rec.repair, max_attempts=3)

    assert report.outcome == RepairOutcome.FAILED
    assert report.last_error == "service down"
    assert rec.trace == [("attempt", 1)]


@pytest.mark.asyncio
async def test_failed_repair_stops_the_loop():
    attempts = []

    async def attempt(n):
        attempts.append(n)
        return AttemptResult.retry("broken")

    async def repair(n, error):
        return AttemptResult.fatal()

    report = await run_repair_loop(attempt, repair, max_attempts=3)

    assert report.outcome == RepairOutcome.FAILED
    assert attempts == [1]
    assert report.last_error == "broken"


@pytest.mark.asyncio
async def test_max_attempts_must_be_positive():
    rec = Recorder([])
    with pytest.raises(ValueError):
        await run_repair_loop(rec.attempt, rec.repair, max_attempts=0)
