from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from functools import lru_cache
from typing import Any, Protocol

import asyncpg  # type: ignore[import-untyped]
from asyncpg import exceptions as pg_exc

from review_harvester.core.config import get_settings
from review_harvester.schemas.reviews import ReviewRecord


class RepositoryError(Exception):
    """Base repository error."""


class RepositoryUnavailableError(RepositoryError):
    """Raised when the database is unavailable or not configured."""


class RepositoryNotFoundError(RepositoryError):
    """Raised when the requested entity does not exist."""


class RepositoryValidationError(RepositoryError):
    """Raised when a row is rejected by the database for its values."""


PORTAL_URL_COLUMNS = (
    "naver_url",
    "kakao_url",
    "yanolja_url",
    "goodchoice_url",
    "google_url",
    "tripadvisor_url",
    "agoda_url",
)

JOB_COLUMNS = """
  id,
  status,
  started_at,
  completed_at,
  total_reviews,
  success_count,
  error_count,
  error_message,
  created_at
"""


@dataclass(slots=True)
class CompanyRecord:
    id: int
    company_name: str
    type: str | None = None
    is_member: bool = False
    address: str | None = None
    email: str | None = None
    phone: str | None = None
    manager: str | None = None
    portal_urls: dict[str, str] = field(default_factory=dict)

    def portal_url(self, portal: str) -> str | None:
        return self.portal_urls.get(portal)


class HarvestRepository(Protocol):
    async def close(self) -> None: ...

    async def create_job(self) -> dict[str, Any]: ...

    async def mark_job_running(self, job_id: int) -> dict[str, Any]: ...

    async def update_job_counters(
        self, job_id: int, *, total_reviews: int, success_count: int, error_count: int
    ) -> None: ...

    async def append_job_log(self, job_id: int, line: str, *, max_chars: int) -> None: ...

    async def finish_job(self, job_id: int, status: str) -> dict[str, Any]: ...

    async def get_job(self, job_id: int) -> dict[str, Any]: ...

    async def list_recent_jobs(self, limit: int) -> list[dict[str, Any]]: ...

    async def get_running_job(self) -> dict[str, Any] | None: ...

    async def list_companies(self, company_name: str | None = None) -> list[CompanyRecord]: ...

    async def insert_review(self, record: ReviewRecord) -> bool: ...


class PostgresRepository:
    def __init__(self, database_url: str | None, min_pool_size: int, max_pool_size: int) -> None:
        self.database_url = database_url
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self._pool: asyncpg.Pool | None = None

    async def close(self) -> None:
        if self._pool is not None:
            await self._pool.close()
            self._pool = None

    async def create_job(self) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            insert into scraping_jobs (status)
            values ('pending')
            returning {JOB_COLUMNS}
            """
        )
        return self._job_row_to_dict(row)

    async def mark_job_running(self, job_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            update scraping_jobs
            set status = 'running', started_at = now()
            where id = $1 and status = 'pending'
            returning {JOB_COLUMNS}
            """,
            job_id,
        )
        if not row:
            raise RepositoryNotFoundError("pending job not found")
        return self._job_row_to_dict(row)

    async def update_job_counters(
        self,
        job_id: int,
        *,
        total_reviews: int,
        success_count: int,
        error_count: int,
    ) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update scraping_jobs
            set
              total_reviews = greatest(total_reviews, $2),
              success_count = greatest(success_count, $3),
              error_count = greatest(error_count, $4)
            where id = $1 and status in ('pending', 'running')
            """,
            job_id,
            total_reviews,
            success_count,
            error_count,
        )

    async def append_job_log(self, job_id: int, line: str, *, max_chars: int) -> None:
        pool = await self._get_pool()
        await pool.execute(
            """
            update scraping_jobs
            set error_message = right(coalesce(error_message, '') || $2, $3)
            where id = $1 and status in ('pending', 'running')
            """,
            job_id,
            line,
            max_chars,
        )

    async def finish_job(self, job_id: int, status: str) -> dict[str, Any]:
        pool = await self._get_pool()
        async with pool.acquire() as conn:
            async with conn.transaction():
                row = await conn.fetchrow(
                    f"""
                    update scraping_jobs
                    set status = $2, completed_at = now()
                    where id = $1 and status in ('pending', 'running')
                    returning {JOB_COLUMNS}
                    """,
                    job_id,
                    status,
                )
                if row:
                    return self._job_row_to_dict(row)
                existing = await conn.fetchrow(f"select {JOB_COLUMNS} from scraping_jobs where id = $1", job_id)
                if not existing:
                    raise RepositoryNotFoundError("job not found")
                return self._job_row_to_dict(existing)

    async def get_job(self, job_id: int) -> dict[str, Any]:
        pool = await self._get_pool()
        row = await pool.fetchrow(f"select {JOB_COLUMNS} from scraping_jobs where id = $1", job_id)
        if not row:
            raise RepositoryNotFoundError("job not found")
        return self._job_row_to_dict(row)

    async def list_recent_jobs(self, limit: int) -> list[dict[str, Any]]:
        pool = await self._get_pool()
        bounded_limit = max(1, min(limit, 200))
        rows = await pool.fetch(
            f"""
            select {JOB_COLUMNS}
            from scraping_jobs
            order by created_at desc, id desc
            limit $1
            """,
            bounded_limit,
        )
        return [self._job_row_to_dict(row) for row in rows]

    async def get_running_job(self) -> dict[str, Any] | None:
        pool = await self._get_pool()
        row = await pool.fetchrow(
            f"""
            select {JOB_COLUMNS}
            from scraping_jobs
            where status = 'running'
            order by started_at desc
            limit 1
            """
        )
        return self._job_row_to_dict(row) if row else None

    async def list_companies(self, company_name: str | None = None) -> list[CompanyRecord]:
        pool = await self._get_pool()
        url_columns = ", ".join(PORTAL_URL_COLUMNS)
        rows = await pool.fetch(
            f"""
            select
              id,
              company_name,
              type,
              is_member,
              address,
              email,
              phone,
              manager,
              {url_columns}
            from companies
            where ($1::text is null or company_name = $1::text)
            order by id asc
            """,
            company_name,
        )
        return [self._company_row_to_record(row) for row in rows]

    async def insert_review(self, record: ReviewRecord) -> bool:
        pool = await self._get_pool()
        try:
            inserted_id = await pool.fetchval(
                """
                insert into reviews (
                  portal,
                  company_name,
                  review_date,
                  content,
                  rating,
                  nickname,
                  visit_keyword,
                  review_keyword,
                  visit_type,
                  emotion,
                  revisit_flag,
                  n_rating,
                  n_emotion,
                  n_char_count,
                  title,
                  additional_info
                )
                values ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10, $11, $12, $13, $14, $15, $16)
                on conflict (company_name, review_date, nickname, portal) do nothing
                returning id
                """,
                record.portal,
                record.company_name,
                record.review_date,
                record.content,
                self._to_decimal(record.rating),
                record.nickname,
                record.visit_keyword,
                record.review_keyword,
                record.visit_type,
                record.emotion,
                record.revisit_flag,
                self._to_decimal(record.n_rating),
                record.n_emotion,
                record.n_char_count,
                record.title,
                record.additional_info,
            )
        except (pg_exc.StringDataRightTruncationError, pg_exc.NumericValueOutOfRangeError, asyncpg.DataError) as exc:
            raise RepositoryValidationError(str(exc)) from exc
        return inserted_id is not None

    async def _get_pool(self) -> asyncpg.Pool:
        if not self.database_url:
            raise RepositoryUnavailableError("RH_DATABASE_URL is required")

        if self._pool is not None:
            return self._pool

        try:
            self._pool = await asyncpg.create_pool(
                dsn=self.database_url,
                min_size=self.min_pool_size,
                max_size=self.max_pool_size,
                command_timeout=15,
            )
            return self._pool
        except Exception as exc:  # pragma: no cover - depends on environment
            raise RepositoryUnavailableError("database unavailable") from exc

    @staticmethod
    def _job_row_to_dict(row: asyncpg.Record) -> dict[str, Any]:
        return {
            "id": row["id"],
            "status": row["status"],
            "started_at": row["started_at"],
            "completed_at": row["completed_at"],
            "total_reviews": row["total_reviews"] or 0,
            "success_count": row["success_count"] or 0,
            "error_count": row["error_count"] or 0,
            "error_message": row["error_message"],
            "created_at": row["created_at"],
        }

    @staticmethod
    def _company_row_to_record(row: asyncpg.Record) -> CompanyRecord:
        portal_urls: dict[str, str] = {}
        for column in PORTAL_URL_COLUMNS:
            value = row[column]
            if isinstance(value, str) and value.strip():
                portal_urls[column.removesuffix("_url")] = value.strip()
        return CompanyRecord(
            id=row["id"],
            company_name=row["company_name"],
            type=row["type"],
            is_member=(row["is_member"] or "N") == "Y",
            address=row["address"],
            email=row["email"],
            phone=row["phone"],
            manager=row["manager"],
            portal_urls=portal_urls,
        )

    @staticmethod
    def _to_decimal(value: float | None) -> Decimal | None:
        if value is None:
            return None
        return Decimal(f"{value:.2f}")


@lru_cache
def get_repository() -> HarvestRepository:
    settings = get_settings()
    if not settings.database_url:
        from review_harvester.services.store import InMemoryRepository

        return InMemoryRepository()
    return PostgresRepository(
        database_url=settings.database_url,
        min_pool_size=settings.database_pool_min_size,
        max_pool_size=settings.database_pool_max_size,
    )
