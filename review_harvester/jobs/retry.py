from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable, Sequence
import logging
from typing import TypeVar

from review_harvester.jobs.errors import JobCancelled
from review_harvester.services.browser import DriverSession
from review_harvester.services.error_log import ErrorLogAccumulator
from review_harvester.services.progress import ProgressReporter

logger = logging.getLogger(__name__)

T = TypeVar("T")

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BACKOFF_SECONDS = (2.0, 5.0)

FATAL_DRIVER_ERROR_SIGNATURES = (
    "target closed",
    "target page, context or browser has been closed",
    "browser has been closed",
    "page has been closed",
    "context has been closed",
    "protocol error",
    "execution context was destroyed",
    "cannot find context",
    "browser has disconnected",
    "connection closed",
)


def is_fatal_driver_error(exc: BaseException) -> bool:
    """True when the error means the browser session itself is unusable."""
    if type(exc).__name__ == "TargetClosedError":
        return True
    message = str(exc).lower()
    return any(signature in message for signature in FATAL_DRIVER_ERROR_SIGNATURES)


class RetryExecutor:
    """Runs one (company, portal) extraction with bounded retries.

    Fatal driver errors close and restart the shared session before the
    next attempt; restarts count against the same attempt budget. The last
    failure is re-raised to the caller.
    """

    def __init__(
        self,
        session: DriverSession,
        *,
        job_id: int,
        progress: ProgressReporter,
        error_log: ErrorLogAccumulator,
        ensure_not_cancelled: Callable[[], None],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        backoff_seconds: Sequence[float] = DEFAULT_BACKOFF_SECONDS,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        self.session = session
        self.job_id = job_id
        self.progress = progress
        self.error_log = error_log
        self.max_attempts = max(1, max_attempts)
        self.backoff_seconds = tuple(backoff_seconds)
        self._ensure_not_cancelled = ensure_not_cancelled
        self._sleep = sleep

    async def attempt(self, company_name: str, portal: str, extract_fn: Callable[[], Awaitable[T]]) -> T:
        for attempt in range(1, self.max_attempts + 1):
            self._ensure_not_cancelled()
            self.progress.set(company_name=company_name, portal=portal, attempt=attempt, phase="running")
            try:
                return await extract_fn()
            except JobCancelled:
                raise
            except Exception as exc:
                is_last = attempt == self.max_attempts
                logger.warning(
                    "extraction attempt failed portal=%s company=%s attempt=%s/%s error=%s",
                    portal,
                    company_name,
                    attempt,
                    self.max_attempts,
                    exc,
                )
                self.progress.set(
                    company_name=company_name,
                    portal=portal,
                    attempt=attempt,
                    phase="failed" if is_last else "retrying",
                )

                if is_fatal_driver_error(exc):
                    await self._restart_session(company_name, portal, exc)

                if is_last:
                    raise

                await self._sleep(self.backoff_for(attempt))

        raise AssertionError("unreachable")  # pragma: no cover

    def backoff_for(self, attempt: int) -> float:
        if not self.backoff_seconds:
            return 0.0
        return self.backoff_seconds[min(attempt, len(self.backoff_seconds)) - 1]

    async def _restart_session(self, company_name: str, portal: str, cause: BaseException) -> None:
        logger.warning("restarting browser session portal=%s company=%s cause=%s", portal, company_name, cause)
        try:
            await self.session.close()
        except Exception as exc:
            logger.warning("browser session close failed during restart: %s", exc)
        try:
            await self.session.start()
        except Exception as exc:
            logger.exception("browser session restart failed portal=%s company=%s", portal, company_name)
            await self.error_log.append(
                self.job_id,
                f"{portal} browser restart failed (company={company_name!r}): {exc}",
            )
