from __future__ import annotations

from collections.abc import AsyncGenerator, Awaitable, Callable, Sequence
from datetime import datetime, timezone

from review_harvester.core.config import Settings
from review_harvester.jobs.orchestrator import JobOrchestrator
from review_harvester.schemas.reviews import ReviewCandidate
from review_harvester.services.repository import CompanyRecord
from review_harvester.services.store import InMemoryRepository
from review_harvester.sources.base import SourceAdapter
from review_harvester.sources.registry import SourceRegistry

# 2026-01-16 12:00 in Asia/Seoul
FIXED_NOW = datetime(2026, 1, 16, 3, 0, tzinfo=timezone.utc)


class FakeDriverSession:
    def __init__(self, *, fail_start: bool = False) -> None:
        self.fail_start = fail_start
        self.starts = 0
        self.closes = 0

    async def start(self) -> None:
        self.starts += 1
        if self.fail_start:
            raise RuntimeError("browser launch failed")

    async def close(self) -> None:
        self.closes += 1


class ScriptedAdapter(SourceAdapter):
    """Yields a fixed review list; call N raises ``failures[N]`` when set."""

    def __init__(
        self,
        portal: str,
        reviews: Sequence[ReviewCandidate] = (),
        *,
        failures: Sequence[BaseException | None] = (),
        fail_after: int = 0,
        requires_url: bool = False,
        before_yield: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        self.portal = portal
        self.requires_url = requires_url
        self.reviews = list(reviews)
        self.failures = list(failures)
        self.fail_after = fail_after
        self.before_yield = before_yield
        self.calls = 0
        self.pulled = 0
        self.companies_seen: list[str] = []

    async def iter_reviews(self, session, company: CompanyRecord) -> AsyncGenerator[ReviewCandidate, None]:
        self.calls += 1
        self.companies_seen.append(company.company_name)
        failure = self.failures[self.calls - 1] if self.calls <= len(self.failures) else None
        for index, review in enumerate(self.reviews):
            if failure is not None and index >= self.fail_after:
                raise failure
            if self.before_yield is not None:
                await self.before_yield()
            self.pulled += 1
            yield review
        if failure is not None:
            raise failure


class RecordingSleep:
    def __init__(self) -> None:
        self.calls: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


def review(day: str, nickname: str, *, content: str = "clean room", rating: float | None = 4.0) -> ReviewCandidate:
    return ReviewCandidate(review_date=day, nickname=nickname, content=content, rating=rating)


def company(company_id: int, name: str, **portal_urls: str) -> CompanyRecord:
    return CompanyRecord(id=company_id, company_name=name, type="hotel", portal_urls=dict(portal_urls))


def build_orchestrator(
    adapters: Sequence[SourceAdapter],
    *,
    companies: Sequence[CompanyRecord] = (),
    session: FakeDriverSession | None = None,
    repository: InMemoryRepository | None = None,
    settings: Settings | None = None,
) -> tuple[JobOrchestrator, InMemoryRepository, FakeDriverSession, RecordingSleep]:
    repository = repository or InMemoryRepository(list(companies))
    session = session or FakeDriverSession()
    sleep = RecordingSleep()
    orchestrator = JobOrchestrator(
        repository,
        SourceRegistry(adapters),
        session_factory=lambda: session,
        settings=settings or Settings(database_url=None, otel_enabled=False),
        clock=lambda: FIXED_NOW,
        sleep=sleep,
    )
    return orchestrator, repository, session, sleep


naver_stub = ScriptedAdapter("naver")
