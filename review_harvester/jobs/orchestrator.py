from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import date, datetime, timezone
from functools import lru_cache
import logging
import threading
from typing import Any

from opentelemetry import trace

from review_harvester.core.config import Settings, get_settings
from review_harvester.core.dates import DATE_FILTER_WINDOWS, cutoff_date, today_in
from review_harvester.core.telemetry import job_log_context
from review_harvester.jobs.errors import (
    AlreadyRunning,
    InvalidDateFilter,
    JobCancelled,
    NoActiveJob,
    TargetNotFound,
)
from review_harvester.jobs.retry import RetryExecutor
from review_harvester.schemas.reviews import ReviewCandidate
from review_harvester.services.browser import BrowserSession, DriverSession
from review_harvester.services.error_log import ErrorLogAccumulator
from review_harvester.services.persistence import ReviewGateway, SaveOutcome
from review_harvester.services.progress import ProgressReporter
from review_harvester.services.repository import CompanyRecord, HarvestRepository, get_repository
from review_harvester.sources.base import SourceAdapter
from review_harvester.sources.registry import SourceRegistry, load_registry

logger = logging.getLogger(__name__)
tracer = trace.get_tracer(__name__)


class JobSlot:
    """Single-slot registry of the running job, claimed by check-and-set."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._held = False
        self._job_id: int | None = None

    def try_acquire(self) -> bool:
        with self._lock:
            if self._held:
                return False
            self._held = True
            self._job_id = None
            return True

    def attach(self, job_id: int) -> None:
        with self._lock:
            self._job_id = job_id

    def release(self) -> None:
        with self._lock:
            self._held = False
            self._job_id = None

    @property
    def held(self) -> bool:
        return self._held

    @property
    def job_id(self) -> int | None:
        return self._job_id


@dataclass(slots=True)
class JobCounters:
    total_reviews: int = 0
    success_count: int = 0
    error_count: int = 0


class JobOrchestrator:
    def __init__(
        self,
        repository: HarvestRepository,
        registry: SourceRegistry,
        *,
        session_factory: Callable[[], DriverSession],
        settings: Settings | None = None,
        clock: Callable[[], datetime] | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.settings = settings or get_settings()
        self.repository = repository
        self.registry = registry
        self.progress = ProgressReporter()
        self.error_log = ErrorLogAccumulator(repository, max_chars=self.settings.job_error_log_max_chars)
        self.gateway = ReviewGateway(repository)
        self._session_factory = session_factory
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._sleep = sleep
        self._slot = JobSlot()
        self._cancel_requested = False
        self._task: asyncio.Task[dict[str, Any] | None] | None = None

    @property
    def is_running(self) -> bool:
        return self._slot.held

    def ensure_not_cancelled(self) -> None:
        if self._cancel_requested:
            raise JobCancelled("job stopped by user request")

    async def start(self, date_filter: str = "week", company_name: str | None = None) -> dict[str, Any]:
        """Create a job and run it in the background.

        Returns as soon as the job is running. Raises InvalidDateFilter or
        AlreadyRunning without touching any state, and TargetNotFound after
        recording the job as failed.
        """
        if date_filter not in DATE_FILTER_WINDOWS:
            raise InvalidDateFilter(f"date_filter must be one of: {', '.join(DATE_FILTER_WINDOWS)}")
        if not self._slot.try_acquire():
            raise AlreadyRunning("a scraping job is already running")

        self._cancel_requested = False
        target_name = company_name.strip() if company_name and company_name.strip() else None
        try:
            job = await self.repository.create_job()
            job_id = job["id"]
            self._slot.attach(job_id)
            await self.repository.mark_job_running(job_id)
        except Exception:
            self._reset()
            raise
        if self._cancel_requested:
            await self.error_log.append(job_id, "stop requested; the job will end at the next safe point")

        try:
            companies = await self._resolve_companies(target_name)
        except Exception as exc:
            await self.error_log.append(job_id, f"job failed: {exc}")
            await self._finish(job_id, "failed", JobCounters())
            raise

        today = today_in(self.settings.timezone, now=self._clock())
        cutoff = cutoff_date(date_filter, today=today)
        logger.info(
            "scraping job started id=%s date_filter=%s cutoff=%s companies=%s portals=%s",
            job_id,
            date_filter,
            cutoff.isoformat() if cutoff else None,
            len(companies),
            [adapter.portal for adapter in self.registry.ordered()],
        )
        self._task = asyncio.create_task(
            self._run(job_id, companies, today=today, cutoff=cutoff, date_filter=date_filter)
        )
        return {"message": "scraping job started", "job_id": job_id}

    async def wait(self) -> dict[str, Any] | None:
        if self._task is None:
            return None
        return await self._task

    async def run(self, date_filter: str = "week", company_name: str | None = None) -> dict[str, Any] | None:
        await self.start(date_filter, company_name)
        return await self.wait()

    async def stop(self) -> dict[str, Any]:
        if not self._slot.held:
            raise NoActiveJob("no scraping job is running")
        self._cancel_requested = True
        job_id = self._slot.job_id
        if job_id is None:
            logger.info("stop requested while the job is still being created")
            return {"message": "stop requested", "job_id": None}
        await self.error_log.append(job_id, "stop requested; the job will end at the next safe point")
        logger.info("stop requested for job id=%s", job_id)
        return {"message": "stop requested", "job_id": job_id}

    async def status(self) -> dict[str, Any]:
        job_id = self._slot.job_id
        if job_id is not None:
            current_job = await self.repository.get_job(job_id)
        else:
            current_job = await self.repository.get_running_job()
        return {
            "is_running": self.is_running,
            "current_job": current_job,
            "progress": self.progress.snapshot(),
        }

    async def recent(self, limit: int = 10) -> list[dict[str, Any]]:
        return await self.repository.list_recent_jobs(limit)

    async def get(self, job_id: int) -> dict[str, Any]:
        return await self.repository.get_job(job_id)

    async def _resolve_companies(self, company_name: str | None) -> list[CompanyRecord]:
        companies = await self.repository.list_companies(company_name)
        if company_name is not None and not companies:
            raise TargetNotFound(f"company {company_name!r} not found")
        return companies

    async def _run(
        self,
        job_id: int,
        companies: list[CompanyRecord],
        *,
        today: date,
        cutoff: date | None,
        date_filter: str,
    ) -> dict[str, Any] | None:
        counters = JobCounters()
        session: DriverSession | None = None
        final_status = "completed"

        with job_log_context(job_id), tracer.start_as_current_span("harvest.job") as span:
            span.set_attribute("job.id", job_id)
            span.set_attribute("job.date_filter", date_filter)
            try:
                session = self._session_factory()
                await session.start()
                executor = RetryExecutor(
                    session,
                    job_id=job_id,
                    progress=self.progress,
                    error_log=self.error_log,
                    ensure_not_cancelled=self.ensure_not_cancelled,
                    max_attempts=self.settings.retry_max_attempts,
                    backoff_seconds=self.settings.backoff_schedule(),
                    sleep=self._sleep,
                )
                for company in companies:
                    self.ensure_not_cancelled()
                    for adapter in self.registry.ordered():
                        self.ensure_not_cancelled()
                        if not adapter.is_applicable(company):
                            logger.info(
                                "portal skipped reason=missing_url portal=%s company=%s",
                                adapter.portal,
                                company.company_name,
                            )
                            continue
                        await self._run_pair(
                            job_id,
                            executor,
                            session,
                            adapter,
                            company,
                            counters,
                            today=today,
                            cutoff=cutoff,
                        )
            except JobCancelled as exc:
                final_status = "stopped"
                await self.error_log.append(job_id, f"job stopped: {exc}")
            except asyncio.CancelledError:
                final_status = "stopped"
                logger.warning("scraping job task cancelled id=%s", job_id)
                await self.error_log.append(job_id, "job stopped: run task was cancelled")
                raise
            except Exception as exc:
                final_status = "failed"
                logger.exception("scraping job failed id=%s", job_id)
                await self.error_log.append(job_id, f"job failed: {exc}")
            finally:
                if session is not None:
                    try:
                        await session.close()
                    except Exception as exc:
                        logger.warning("browser session close failed for job id=%s: %s", job_id, exc)
                span.set_attribute("job.status", final_status)
                job = await self._finish(job_id, final_status, counters)

        return job

    async def _run_pair(
        self,
        job_id: int,
        executor: RetryExecutor,
        session: DriverSession,
        adapter: SourceAdapter,
        company: CompanyRecord,
        counters: JobCounters,
        *,
        today: date,
        cutoff: date | None,
    ) -> None:
        portal = adapter.portal
        name = company.company_name

        async def on_record(candidate: ReviewCandidate) -> SaveOutcome:
            counters.total_reviews += 1
            outcome = await self.gateway.save(candidate, company_name=name, portal=portal)
            if outcome is SaveOutcome.INSERTED:
                counters.success_count += 1
            return outcome

        async def extract() -> Any:
            return await adapter.extract(session, company, cutoff=cutoff, today=today, on_record=on_record)

        with tracer.start_as_current_span("harvest.pair") as span:
            span.set_attribute("harvest.portal", portal)
            span.set_attribute("harvest.company", name)
            self.progress.set(company_name=name, portal=portal, attempt=1, phase="starting")
            try:
                summary = await executor.attempt(name, portal, extract)
            except JobCancelled:
                raise
            except Exception as exc:
                counters.error_count += 1
                span.record_exception(exc)
                logger.error("portal failed portal=%s company=%s error=%s", portal, name, exc)
                await self.error_log.append(job_id, f"{portal} failed (company={name!r}): {exc}")
            else:
                span.set_attribute("harvest.inserted", summary.inserted)
                span.set_attribute("harvest.in_scope", summary.in_scope)
                self.progress.set(company_name=name, portal=portal, attempt=None, phase="done")

            await self.repository.update_job_counters(
                job_id,
                total_reviews=counters.total_reviews,
                success_count=counters.success_count,
                error_count=counters.error_count,
            )

    async def _finish(self, job_id: int, status: str, counters: JobCounters) -> dict[str, Any] | None:
        job: dict[str, Any] | None = None
        try:
            await self.repository.update_job_counters(
                job_id,
                total_reviews=counters.total_reviews,
                success_count=counters.success_count,
                error_count=counters.error_count,
            )
            job = await self.repository.finish_job(job_id, status)
            logger.info(
                "scraping job finished id=%s status=%s total=%s success=%s errors=%s",
                job_id,
                status,
                counters.total_reviews,
                counters.success_count,
                counters.error_count,
            )
        except Exception:
            logger.exception("job finalization failed for id=%s", job_id)
        finally:
            self._reset()
        return job

    def _reset(self) -> None:
        self._cancel_requested = False
        self.progress.clear()
        self._slot.release()


@lru_cache
def get_orchestrator() -> JobOrchestrator:
    settings = get_settings()
    return JobOrchestrator(
        get_repository(),
        load_registry(settings.source_adapters_json),
        session_factory=lambda: BrowserSession.from_settings(settings),
        settings=settings,
    )
