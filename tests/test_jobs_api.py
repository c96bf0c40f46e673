from __future__ import annotations

from datetime import datetime, timezone
from typing import Any

from fastapi.testclient import TestClient

from review_harvester.jobs.errors import AlreadyRunning, InvalidDateFilter, NoActiveJob, TargetNotFound
from review_harvester.jobs.orchestrator import get_orchestrator
from review_harvester.main import app
from review_harvester.schemas.jobs import ExtractionProgress
from review_harvester.services.repository import RepositoryNotFoundError


class FakeOrchestrator:
    def __init__(self, *, running: bool = False) -> None:
        now = datetime.now(timezone.utc)
        self.running = running
        self.started: list[tuple[str, str | None]] = []
        self.job: dict[str, Any] = {
            "id": 7,
            "status": "running" if running else "completed",
            "started_at": now,
            "completed_at": None if running else now,
            "total_reviews": 12,
            "success_count": 10,
            "error_count": 1,
            "error_message": "\n[2026-01-16T03:00:00+00:00] kakao failed",
            "created_at": now,
        }

    async def start(self, date_filter: str, company_name: str | None) -> dict[str, Any]:
        if date_filter not in {"all", "week", "twoWeeks"}:
            raise InvalidDateFilter("date_filter must be one of: all, week, twoWeeks")
        if self.running:
            raise AlreadyRunning("a scraping job is already running")
        if company_name == "Hotel Z":
            raise TargetNotFound("company 'Hotel Z' not found")
        self.started.append((date_filter, company_name))
        self.running = True
        return {"message": "scraping job started", "job_id": 7}

    async def stop(self) -> dict[str, Any]:
        if not self.running:
            raise NoActiveJob("no scraping job is running")
        return {"message": "stop requested", "job_id": 7}

    async def status(self) -> dict[str, Any]:
        progress = ExtractionProgress(company_name="Hotel A", portal="kakao", attempt=2, phase="running")
        return {
            "is_running": self.running,
            "current_job": self.job if self.running else None,
            "progress": progress if self.running else None,
        }

    async def recent(self, limit: int) -> list[dict[str, Any]]:
        return [self.job][:limit]

    async def get(self, job_id: int) -> dict[str, Any]:
        if job_id != 7:
            raise RepositoryNotFoundError("job not found")
        return self.job


def client_for(orchestrator: FakeOrchestrator) -> TestClient:
    app.dependency_overrides[get_orchestrator] = lambda: orchestrator
    return TestClient(app)


def test_healthz() -> None:
    client = TestClient(app)
    response = client.get("/healthz")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_start_job() -> None:
    orchestrator = FakeOrchestrator()
    client = client_for(orchestrator)
    try:
        response = client.post("/jobs/start", json={"date_filter": "twoWeeks", "company_name": "Hotel A"})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json() == {"message": "scraping job started", "job_id": 7}
    assert orchestrator.started == [("twoWeeks", "Hotel A")]


def test_start_defaults_to_week() -> None:
    orchestrator = FakeOrchestrator()
    client = client_for(orchestrator)
    try:
        response = client.post("/jobs/start", json={})
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert orchestrator.started == [("week", None)]


def test_start_error_mapping() -> None:
    client = client_for(FakeOrchestrator(running=True))
    try:
        already_running = client.post("/jobs/start", json={"date_filter": "week"})
    finally:
        app.dependency_overrides.clear()

    client = client_for(FakeOrchestrator())
    try:
        bad_filter = client.post("/jobs/start", json={"date_filter": "month"})
        missing_company = client.post("/jobs/start", json={"company_name": "Hotel Z"})
    finally:
        app.dependency_overrides.clear()

    assert already_running.status_code == 400
    assert bad_filter.status_code == 400
    assert missing_company.status_code == 404


def test_stop_job() -> None:
    client = client_for(FakeOrchestrator(running=True))
    try:
        response = client.post("/jobs/stop")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    assert response.json()["message"] == "stop requested"

    client = client_for(FakeOrchestrator())
    try:
        idle = client.post("/jobs/stop")
    finally:
        app.dependency_overrides.clear()

    assert idle.status_code == 400


def test_status_reports_progress() -> None:
    client = client_for(FakeOrchestrator(running=True))
    try:
        response = client.get("/jobs/status")
    finally:
        app.dependency_overrides.clear()

    assert response.status_code == 200
    payload = response.json()
    assert payload["is_running"] is True
    assert payload["current_job"]["id"] == 7
    assert payload["progress"] == {"company_name": "Hotel A", "portal": "kakao", "attempt": 2, "phase": "running"}


def test_list_and_get_jobs() -> None:
    client = client_for(FakeOrchestrator())
    try:
        listed = client.get("/jobs", params={"limit": 5})
        too_many = client.get("/jobs", params={"limit": 500})
        found = client.get("/jobs/7")
        missing = client.get("/jobs/99")
    finally:
        app.dependency_overrides.clear()

    assert listed.status_code == 200
    assert [job["id"] for job in listed.json()] == [7]
    assert too_many.status_code == 422
    assert found.status_code == 200
    assert found.json()["success_count"] == 10
    assert missing.status_code == 404
