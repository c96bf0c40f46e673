from __future__ import annotations

import asyncio

import pytest

from review_harvester.jobs.errors import JobCancelled
from review_harvester.jobs.retry import RetryExecutor, is_fatal_driver_error
from review_harvester.services.error_log import ErrorLogAccumulator
from review_harvester.services.progress import ProgressReporter
from review_harvester.services.store import InMemoryRepository
from tests.fakes import FakeDriverSession, RecordingSleep


class FlakyExtraction:
    def __init__(self, failures: list[BaseException], result: str = "ok") -> None:
        self.failures = list(failures)
        self.result = result
        self.calls = 0

    async def __call__(self) -> str:
        self.calls += 1
        if self.failures:
            raise self.failures.pop(0)
        return self.result


def build_executor(
    session: FakeDriverSession,
    *,
    ensure_not_cancelled=lambda: None,
) -> tuple[RetryExecutor, InMemoryRepository, ProgressReporter, RecordingSleep, int]:
    repository = InMemoryRepository()

    async def seed_job() -> int:
        job = await repository.create_job()
        await repository.mark_job_running(job["id"])
        return job["id"]

    job_id = asyncio.run(seed_job())
    progress = ProgressReporter()
    sleep = RecordingSleep()
    executor = RetryExecutor(
        session,
        job_id=job_id,
        progress=progress,
        error_log=ErrorLogAccumulator(repository),
        ensure_not_cancelled=ensure_not_cancelled,
        sleep=sleep,
    )
    return executor, repository, progress, sleep, job_id


@pytest.mark.parametrize(
    "message",
    [
        "Target closed",
        "Target page, context or browser has been closed",
        "Protocol error (Runtime.callFunctionOn): Session closed.",
        "Execution context was destroyed, most likely because of a navigation",
        "Browser has disconnected!",
    ],
)
def test_fatal_driver_signatures(message: str) -> None:
    assert is_fatal_driver_error(RuntimeError(message)) is True


def test_ordinary_failures_are_transient() -> None:
    assert is_fatal_driver_error(TimeoutError("Timeout 30000ms exceeded")) is False
    assert is_fatal_driver_error(ValueError("review list selector not found")) is False


def test_fatal_failures_restart_the_session_then_succeed() -> None:
    session = FakeDriverSession()
    executor, _, progress, sleep, _ = build_executor(session)
    extraction = FlakyExtraction([RuntimeError("Target closed"), RuntimeError("Browser has disconnected")])

    result = asyncio.run(executor.attempt("Hotel A", "naver", extraction))

    assert result == "ok"
    assert extraction.calls == 3
    assert session.closes == 2
    assert session.starts == 2
    assert sleep.calls == [2.0, 5.0]
    snapshot = progress.snapshot()
    assert snapshot is not None
    assert snapshot.attempt == 3
    assert snapshot.phase == "running"


def test_transient_failures_exhaust_attempts_and_reraise() -> None:
    session = FakeDriverSession()
    executor, _, progress, sleep, _ = build_executor(session)
    extraction = FlakyExtraction([TimeoutError("t1"), TimeoutError("t2"), TimeoutError("t3")])

    with pytest.raises(TimeoutError, match="t3"):
        asyncio.run(executor.attempt("Hotel A", "kakao", extraction))

    assert extraction.calls == 3
    assert session.starts == 0
    assert sleep.calls == [2.0, 5.0]
    assert progress.snapshot().phase == "failed"


def test_failed_restart_is_logged_and_retries_continue() -> None:
    session = FakeDriverSession(fail_start=True)
    executor, repository, _, _, job_id = build_executor(session)
    extraction = FlakyExtraction([RuntimeError("page has been closed")])

    result = asyncio.run(executor.attempt("Hotel A", "yanolja", extraction))

    assert result == "ok"
    assert session.starts == 1
    assert "browser restart failed" in repository.jobs[job_id]["error_message"]


def test_cancellation_is_checked_before_each_attempt() -> None:
    cancelled = {"flag": False}

    def ensure_not_cancelled() -> None:
        if cancelled["flag"]:
            raise JobCancelled("job stopped by user request")

    session = FakeDriverSession()
    executor, _, _, sleep, _ = build_executor(session, ensure_not_cancelled=ensure_not_cancelled)

    async def extraction() -> str:
        cancelled["flag"] = True
        raise TimeoutError("slow page")

    with pytest.raises(JobCancelled):
        asyncio.run(executor.attempt("Hotel A", "google", extraction))

    assert sleep.calls == [2.0]


def test_cancellation_inside_extraction_is_not_retried() -> None:
    session = FakeDriverSession()
    executor, _, _, sleep, _ = build_executor(session)
    extraction = FlakyExtraction([JobCancelled("stopped")])

    with pytest.raises(JobCancelled):
        asyncio.run(executor.attempt("Hotel A", "naver", extraction))

    assert extraction.calls == 1
    assert sleep.calls == []


def test_backoff_schedule_reuses_last_delay() -> None:
    executor, *_ = build_executor(FakeDriverSession())

    assert [executor.backoff_for(attempt) for attempt in (1, 2, 3)] == [2.0, 5.0, 5.0]
