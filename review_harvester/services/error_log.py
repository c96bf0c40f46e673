from __future__ import annotations

from collections.abc import Callable
from datetime import datetime, timezone
import logging

from review_harvester.services.repository import HarvestRepository

logger = logging.getLogger(__name__)


class ErrorLogAccumulator:
    """Appends timestamped lines to a job's bounded ``error_message`` log.

    The store keeps only the newest ``max_chars`` characters. Write failures
    are logged and swallowed so that log bookkeeping never fails a job.
    """

    def __init__(
        self,
        repository: HarvestRepository,
        *,
        max_chars: int = 8000,
        clock: Callable[[], datetime] | None = None,
    ) -> None:
        self.repository = repository
        self.max_chars = max(1, max_chars)
        self._clock = clock or (lambda: datetime.now(timezone.utc))

    def format_line(self, message: str) -> str:
        return f"\n[{self._clock().isoformat()}] {message}"

    async def append(self, job_id: int, message: str) -> None:
        try:
            await self.repository.append_job_log(job_id, self.format_line(message), max_chars=self.max_chars)
        except Exception:
            logger.exception("job log append failed for id=%s", job_id)
