"""Bounded attempt/verify/repair loop.

Shared by the render loop (attempt = render, repair = fix the composition,
exhaustion is terminal) and by composition edits (attempt = local syntax
check, one repair, exhaustion accepts the repaired code best-effort).

Callers supply two coroutines:

    attempt(n)           -> AttemptResult
    repair(n, error)     -> AttemptResult   (ok = repaired, fatal = give up)

The loop runs attempt 1, and for every later attempt runs exactly one repair
fed the previous failure first. There is no backoff.
"""

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Optional

logger = logging.getLogger(__name__)


class AttemptStatus(str, Enum):
    OK = "ok"
    RETRY = "retry"
    FATAL = "fatal"


@dataclass(frozen=True)
class AttemptResult:
    status: AttemptStatus
    error: Optional[str] = None

    @classmethod
    def ok(cls) -> "AttemptResult":
        return cls(AttemptStatus.OK)

    @classmethod
    def retry(cls, error: str) -> "AttemptResult":
        return cls(AttemptStatus.RETRY, error)

    @classmethod
    def fatal(cls, error: Optional[str] = None) -> "AttemptResult":
        return cls(AttemptStatus.FATAL, error)


class RepairOutcome(str, Enum):
    SUCCEEDED = "succeeded"
    FAILED = "failed"  # an attempt or repair reported a fatal error
    EXHAUSTED = "exhausted"


@dataclass(frozen=True)
class RepairReport:
    outcome: RepairOutcome
    attempts: int
    repairs: int
    last_error: Optional[str] = None


AttemptFn = Callable[[int], Awaitable[AttemptResult]]
RepairFn = Callable[[int, str], Awaitable[AttemptResult]]


async def run_repair_loop(
    attempt: AttemptFn,
    repair: RepairFn,
    *,
    max_attempts: int,
    label: str = "attempt",
) -> RepairReport:
    """Run ``attempt`` up to ``max_attempts`` times, repairing in between."""
    if max_attempts < 1:
        raise ValueError("max_attempts must be at least 1")

    repairs = 0
    last_error: Optional[str] = None

    for n in range(1, max_attempts + 1):
        if n > 1:
            repairs += 1
            logger.info(f"{label}: repair {repairs} after failure: {last_error}")
            repaired = await repair(n - 1, last_error or "")
            if repaired.status != AttemptStatus.OK:
                return RepairReport(
                    RepairOutcome.FAILED, n - 1, repairs, repaired.error or last_error
                )

        result = await attempt(n)
        if result.status == AttemptStatus.OK:
            return RepairReport(RepairOutcome.SUCCEEDED, n, repairs)
        if result.status == AttemptStatus.FATAL:
            return RepairReport(RepairOutcome.FAILED, n, repairs, result.error)

        last_error = result.error
        logger.warning(f"{label} {n}/{max_attempts} failed: {last_error}")

    return RepairReport(RepairOutcome.EXHAUSTED, max_attempts, repairs, last_error)
