from datetime import date
from typing import Any

from pydantic import BaseModel


class ReviewCandidate(BaseModel):
    """Raw review as a source adapter found it, before normalization."""

    review_date: Any = None
    content: str | None = None
    rating: Any = None
    nickname: str | None = None
    visit_keyword: Any = None
    review_keyword: Any = None
    visit_type: Any = None
    emotion: Any = None
    revisit_flag: bool = False
    title: str | None = None
    additional_info: Any = None


class ReviewRecord(BaseModel):
    portal: str
    company_name: str
    review_date: date
    content: str = ""
    rating: float | None = None
    nickname: str
    visit_keyword: str | None = None
    review_keyword: str | None = None
    visit_type: str | None = None
    emotion: str | None = None
    revisit_flag: bool = False
    n_rating: float | None = None
    n_emotion: str = "neutral"
    n_char_count: int = 0
    title: str | None = None
    additional_info: str | None = None

    def dedup_key(self) -> tuple[str, date, str, str]:
        return (self.company_name, self.review_date, self.nickname, self.portal)


class ExtractionSummary(BaseModel):
    portal: str
    company_name: str
    extracted: int = 0
    inserted: int = 0
    duplicates: int = 0
    rejected: int = 0
    skipped_no_date: int = 0
    stopped_at_cutoff: bool = False

    @property
    def in_scope(self) -> int:
        return self.inserted + self.duplicates + self.rejected
