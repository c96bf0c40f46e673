from __future__ import annotations

from review_harvester.schemas.jobs import ExtractionProgress, ProgressPhase


class ProgressReporter:
    """Latest extraction step of the running job. No history is kept."""

    def __init__(self) -> None:
        self._current: ExtractionProgress | None = None

    def set(
        self,
        *,
        company_name: str | None,
        portal: str | None,
        attempt: int | None,
        phase: ProgressPhase,
    ) -> None:
        self._current = ExtractionProgress(
            company_name=company_name,
            portal=portal,
            attempt=attempt,
            phase=phase,
        )

    def snapshot(self) -> ExtractionProgress | None:
        return self._current

    def clear(self) -> None:
        self._current = None
