"""Per-category analysis progress, persisted on every transition.

The snapshot lives in ``assessments.analysis_progress`` and is rewritten in
full after each state change, so a crash between categories loses nothing
and the front end always polls an accurate view.

A category counts as completed when at least one finding row exists for it;
that is what lets an interrupted run resume without repeating provider
calls for categories already stored.
"""

import logging
from typing import Optional

from app.models.assessment import AnalysisProgress, CategoryStatus
from app.services.category_extractor import CategoryDefinition

logger = logging.getLogger(__name__)


class ProgressTracker:
    def __init__(
        self,
        repository,
        assessment_id: str,
        categories: list[CategoryDefinition],
    ) -> None:
        self.repository = repository
        self.assessment_id = assessment_id
        self.progress = AnalysisProgress.initial([(c.id, c.name) for c in categories])
        self._by_id = {c.id: c for c in self.progress.categories}

    async def load_completed(self) -> set[str]:
        """Mark categories that already have findings as completed."""
        existing = await self.repository.list_finding_category_ids(self.assessment_id)
        completed = {cid for cid in existing if cid in self._by_id}
        for cid in completed:
            self._by_id[cid].status = CategoryStatus.COMPLETED
        if completed:
            logger.info(
                f"Assessment {self.assessment_id}: resuming, {len(completed)} "
                f"categories already have findings"
            )
        await self._persist()
        return completed

    async def record_category_start(self, category_id: str, count: int = 0) -> None:
        entry = self._by_id[category_id]
        entry.status = CategoryStatus.PROCESSING
        entry.count = count
        self.progress.current = category_id
        await self._persist()

    async def record_category_done(self, category_id: str) -> None:
        self._by_id[category_id].status = CategoryStatus.COMPLETED
        self.progress.current = None
        await self._persist()

    async def record_category_error(self, category_id: str, message: str) -> None:
        entry = self._by_id[category_id]
        # completed is terminal within a run
        if entry.status != CategoryStatus.COMPLETED:
            entry.status = CategoryStatus.FAILED
        self.progress.current = None
        self.progress.last_error = f"{entry.name}: {message}"
        await self._persist()

    async def record_category_skipped(self, category_id: str) -> None:
        entry = self._by_id[category_id]
        if entry.status != CategoryStatus.COMPLETED:
            entry.status = CategoryStatus.SKIPPED
        await self._persist()

    async def record_run_error(self, message: str) -> None:
        self.progress.current = None
        self.progress.last_error = message
        await self._persist()

    async def finish(self) -> AnalysisProgress:
        self.progress.current = None
        await self._persist()
        return self.progress

    def status_of(self, category_id: str) -> Optional[CategoryStatus]:
        entry = self._by_id.get(category_id)
        return entry.status if entry else None

    @property
    def failed_ids(self) -> list[str]:
        return [c.id for c in self.progress.categories if c.status == CategoryStatus.FAILED]

    async def _persist(self) -> None:
        self.progress.completed = len(self.progress.completed_ids())
        await self.repository.update_assessment(
            self.assessment_id,
            {"analysis_progress": self.progress.model_dump(mode="json")},
        )
