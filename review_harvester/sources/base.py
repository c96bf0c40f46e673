from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import AsyncGenerator, Awaitable, Callable
from contextlib import aclosing
from datetime import date
import logging
from typing import Any, ClassVar

from review_harvester.core.dates import parse_portal_date
from review_harvester.schemas.reviews import ExtractionSummary, ReviewCandidate
from review_harvester.services.browser import DriverSession
from review_harvester.services.persistence import InvalidRecord, SaveOutcome
from review_harvester.services.repository import CompanyRecord

logger = logging.getLogger(__name__)

RecordSink = Callable[[ReviewCandidate], Awaitable[SaveOutcome]]

# per-pair cap on individual skip log lines
_SKIP_LOG_LIMIT = 10


class SourceAdapter(ABC):
    """Contract every review portal implementation satisfies.

    Subclasses only enumerate raw candidates, newest first, in
    ``iter_reviews``. ``extract`` owns everything shared across portals:
    date parsing, the cutoff early exit, skipping undated reviews and
    handing each in-scope review to the persistence callback as soon as it
    is seen.
    """

    portal: ClassVar[str]
    requires_url: ClassVar[bool] = False

    @abstractmethod
    def iter_reviews(self, session: DriverSession, company: CompanyRecord) -> AsyncGenerator[ReviewCandidate, None]:
        """Yield review candidates for ``company`` in newest-first order."""

    def parse_date(self, raw: Any, *, today: date) -> date | None:
        return parse_portal_date(raw, today=today)

    def is_applicable(self, company: CompanyRecord) -> bool:
        return not self.requires_url or bool(company.portal_url(self.portal))

    async def extract(
        self,
        session: DriverSession,
        company: CompanyRecord,
        *,
        cutoff: date | None,
        today: date,
        on_record: RecordSink,
    ) -> ExtractionSummary:
        summary = ExtractionSummary(portal=self.portal, company_name=company.company_name)

        async with aclosing(self.iter_reviews(session, company)) as candidates:
            async for candidate in candidates:
                summary.extracted += 1
                review_day = self.parse_date(candidate.review_date, today=today)
                if review_day is None:
                    summary.skipped_no_date += 1
                    if summary.skipped_no_date <= _SKIP_LOG_LIMIT:
                        logger.info(
                            "review skipped reason=unparseable_date portal=%s company=%s nickname=%s raw_date=%r",
                            self.portal,
                            company.company_name,
                            candidate.nickname,
                            candidate.review_date,
                        )
                    continue

                if cutoff is not None and review_day < cutoff:
                    summary.stopped_at_cutoff = True
                    logger.info(
                        "cutoff reached portal=%s company=%s review_date=%s cutoff=%s",
                        self.portal,
                        company.company_name,
                        review_day.isoformat(),
                        cutoff.isoformat(),
                    )
                    break

                try:
                    outcome = await on_record(candidate.model_copy(update={"review_date": review_day}))
                except InvalidRecord as exc:
                    summary.rejected += 1
                    if summary.rejected <= _SKIP_LOG_LIMIT:
                        logger.info(
                            "review skipped reason=%s portal=%s company=%s",
                            exc,
                            self.portal,
                            company.company_name,
                        )
                    continue

                if outcome is SaveOutcome.INSERTED:
                    summary.inserted += 1
                elif outcome is SaveOutcome.DUPLICATE:
                    summary.duplicates += 1
                else:
                    summary.rejected += 1

        logger.info(
            "extraction finished portal=%s company=%s extracted=%s inserted=%s duplicates=%s rejected=%s "
            "skipped_no_date=%s stopped_at_cutoff=%s",
            self.portal,
            company.company_name,
            summary.extracted,
            summary.inserted,
            summary.duplicates,
            summary.rejected,
            summary.skipped_no_date,
            summary.stopped_at_cutoff,
        )
        return summary
