from datetime import datetime
from typing import Literal

from pydantic import BaseModel, Field

JobStatus = Literal["pending", "running", "completed", "failed", "stopped"]
ProgressPhase = Literal["starting", "running", "retrying", "failed", "done"]

TERMINAL_JOB_STATUSES = frozenset({"completed", "failed", "stopped"})


class JobOut(BaseModel):
    id: int
    status: JobStatus
    started_at: datetime | None = None
    completed_at: datetime | None = None
    total_reviews: int = 0
    success_count: int = 0
    error_count: int = 0
    error_message: str | None = None
    created_at: datetime


class ExtractionProgress(BaseModel):
    company_name: str | None = None
    portal: str | None = None
    attempt: int | None = None
    phase: ProgressPhase


class StartJobRequest(BaseModel):
    date_filter: str = "week"
    company_name: str | None = Field(default=None, max_length=255)


class MessageOut(BaseModel):
    message: str
    job_id: int | None = None


class JobStatusOut(BaseModel):
    is_running: bool
    current_job: JobOut | None = None
    progress: ExtractionProgress | None = None
