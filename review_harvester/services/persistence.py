from __future__ import annotations

from enum import Enum
import logging

from review_harvester.schemas.reviews import ReviewCandidate, ReviewRecord
from review_harvester.services.normalizer import (
    clamp_rating,
    coerce_text,
    derive_emotion,
    normalize_review_date,
)
from review_harvester.services.repository import HarvestRepository, RepositoryValidationError

logger = logging.getLogger(__name__)

ANONYMOUS_NICKNAME = "anonymous"


class InvalidRecord(ValueError):
    """Raised when a candidate carries no content, rating or nickname."""


class SaveOutcome(str, Enum):
    INSERTED = "inserted"
    DUPLICATE = "duplicate"
    REJECTED = "rejected"


def build_review_record(candidate: ReviewCandidate, *, company_name: str, portal: str) -> ReviewRecord | None:
    """Normalize a candidate into a storable row.

    Returns None when the review date is not a strict calendar day. Raises
    InvalidRecord when nothing about the review is usable.
    """
    content = coerce_text(candidate.content) or ""
    rating = clamp_rating(candidate.rating)
    nickname = coerce_text(candidate.nickname, max_length=100)
    if not content and rating is None and (nickname is None or nickname == ANONYMOUS_NICKNAME):
        raise InvalidRecord("review has no content, rating or nickname")

    review_date = normalize_review_date(candidate.review_date)
    if review_date is None:
        return None

    return ReviewRecord(
        portal=portal,
        company_name=company_name,
        review_date=review_date,
        content=content,
        rating=rating,
        nickname=nickname or ANONYMOUS_NICKNAME,
        visit_keyword=coerce_text(candidate.visit_keyword, max_length=255),
        review_keyword=coerce_text(candidate.review_keyword, max_length=255),
        visit_type=coerce_text(candidate.visit_type, max_length=50),
        emotion=coerce_text(candidate.emotion, max_length=50),
        revisit_flag=bool(candidate.revisit_flag),
        n_rating=rating,
        n_emotion=derive_emotion(rating),
        n_char_count=len(content),
        title=coerce_text(candidate.title, max_length=255),
        additional_info=coerce_text(candidate.additional_info),
    )


class ReviewGateway:
    def __init__(self, repository: HarvestRepository) -> None:
        self.repository = repository

    async def save(self, candidate: ReviewCandidate, *, company_name: str, portal: str) -> SaveOutcome:
        record = build_review_record(candidate, company_name=company_name, portal=portal)
        if record is None:
            logger.warning(
                "review rejected reason=invalid_review_date portal=%s company=%s nickname=%s raw_date=%r",
                portal,
                company_name,
                candidate.nickname,
                candidate.review_date,
            )
            return SaveOutcome.REJECTED

        try:
            inserted = await self.repository.insert_review(record)
        except RepositoryValidationError as exc:
            logger.warning(
                "review rejected reason=storage_validation portal=%s company=%s nickname=%s error=%s",
                portal,
                company_name,
                record.nickname,
                exc,
            )
            return SaveOutcome.REJECTED

        return SaveOutcome.INSERTED if inserted else SaveOutcome.DUPLICATE
