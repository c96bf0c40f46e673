from __future__ import annotations

from datetime import date, datetime, timezone
from typing import Any

from review_harvester.schemas.jobs import TERMINAL_JOB_STATUSES
from review_harvester.schemas.reviews import ReviewRecord
from review_harvester.services.repository import CompanyRecord, RepositoryNotFoundError


class InMemoryRepository:
    """Process-local store for development runs without a database.

    Mirrors the Postgres repository contract, including the review dedup
    constraint and immutability of finished jobs.
    """

    def __init__(self, companies: list[CompanyRecord] | None = None) -> None:
        self.companies: list[CompanyRecord] = list(companies or [])
        self.jobs: dict[int, dict[str, Any]] = {}
        self.reviews: dict[tuple[str, date, str, str], dict[str, Any]] = {}
        self._next_job_id = 1

    async def close(self) -> None:
        return None

    async def create_job(self) -> dict[str, Any]:
        job_id = self._next_job_id
        self._next_job_id += 1
        job = {
            "id": job_id,
            "status": "pending",
            "started_at": None,
            "completed_at": None,
            "total_reviews": 0,
            "success_count": 0,
            "error_count": 0,
            "error_message": None,
            "created_at": datetime.now(timezone.utc),
        }
        self.jobs[job_id] = job
        return dict(job)

    async def mark_job_running(self, job_id: int) -> dict[str, Any]:
        job = self.jobs.get(job_id)
        if not job or job["status"] != "pending":
            raise RepositoryNotFoundError("pending job not found")
        job["status"] = "running"
        job["started_at"] = datetime.now(timezone.utc)
        return dict(job)

    async def update_job_counters(
        self,
        job_id: int,
        *,
        total_reviews: int,
        success_count: int,
        error_count: int,
    ) -> None:
        job = self._mutable_job(job_id)
        if job is None:
            return
        job["total_reviews"] = max(job["total_reviews"], total_reviews)
        job["success_count"] = max(job["success_count"], success_count)
        job["error_count"] = max(job["error_count"], error_count)

    async def append_job_log(self, job_id: int, line: str, *, max_chars: int) -> None:
        job = self._mutable_job(job_id)
        if job is None:
            return
        combined = (job["error_message"] or "") + line
        job["error_message"] = combined[-max_chars:] if max_chars > 0 else ""

    async def finish_job(self, job_id: int, status: str) -> dict[str, Any]:
        job = self.jobs.get(job_id)
        if not job:
            raise RepositoryNotFoundError("job not found")
        if job["status"] not in TERMINAL_JOB_STATUSES:
            job["status"] = status
            job["completed_at"] = datetime.now(timezone.utc)
        return dict(job)

    async def get_job(self, job_id: int) -> dict[str, Any]:
        job = self.jobs.get(job_id)
        if not job:
            raise RepositoryNotFoundError("job not found")
        return dict(job)

    async def list_recent_jobs(self, limit: int) -> list[dict[str, Any]]:
        bounded_limit = max(1, min(limit, 200))
        ordered = sorted(self.jobs.values(), key=lambda job: (job["created_at"], job["id"]), reverse=True)
        return [dict(job) for job in ordered[:bounded_limit]]

    async def get_running_job(self) -> dict[str, Any] | None:
        running = [job for job in self.jobs.values() if job["status"] == "running"]
        if not running:
            return None
        return dict(max(running, key=lambda job: job["started_at"]))

    async def list_companies(self, company_name: str | None = None) -> list[CompanyRecord]:
        if company_name is None:
            return list(self.companies)
        return [company for company in self.companies if company.company_name == company_name]

    async def insert_review(self, record: ReviewRecord) -> bool:
        key = record.dedup_key()
        if key in self.reviews:
            return False
        self.reviews[key] = record.model_dump()
        return True

    def _mutable_job(self, job_id: int) -> dict[str, Any] | None:
        job = self.jobs.get(job_id)
        if not job or job["status"] in TERMINAL_JOB_STATUSES:
            return None
        return job
