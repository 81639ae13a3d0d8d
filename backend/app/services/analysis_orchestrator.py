"""
Analysis Orchestrator - drives one assessment through the AI pipeline.

For each category, in declared order:
1. Skip it if findings already exist (resume) or the document has no data
2. Sample/aggregate oversized record sets and fit them to the size ceiling
3. Dispatch chunks with bounded concurrency, each call wrapped in retries
4. Merge chunk findings and insert them before moving on

A failing category is recorded in the progress snapshot and the run moves
on. Only errors outside a category (no document, no API key, store
unreachable, nothing to analyze) mark the assessment as failed.
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Awaitable, Callable, Optional

from app.config import Settings, get_settings
from app.db.repository import get_repository
from app.models.assessment import AnalysisProgress, AssessmentStatus
from app.services.ai_config_service import AIConfigService
from app.services.ai_providers import AIClient, create_provider
from app.services.category_extractor import (
    ANALYSIS_CATEGORIES,
    CategoryDefinition,
    extract_category,
)
from app.services.chunk_scheduler import ChunkScheduler
from app.services.errors import AnalysisError, DocumentChangedError
from app.services.finding_writer import FindingWriter
from app.services.progress_tracker import ProgressTracker
from app.services.prompt_builder import build_prompt
from app.services.retry import retry_async
from app.services.sampler import SamplingLimits, fit_to_size, sample_records
from app.services.upload_service import decompress_document

logger = logging.getLogger(__name__)

# Singleton instance
_orchestrator: "AnalysisOrchestrator | None" = None

_LOG_LEVELS = {"info": logging.INFO, "warn": logging.WARNING, "error": logging.ERROR}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class AnalysisOrchestrator:
    """Sequential category analysis for one assessment at a time."""

    def __init__(
        self,
        repository,
        settings: Settings,
        config_service: Optional[AIConfigService] = None,
        provider_factory=create_provider,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], datetime] = _utcnow,
        categories: Optional[list[CategoryDefinition]] = None,
    ) -> None:
        self.repository = repository
        self.settings = settings
        self.config_service = config_service or AIConfigService(repository, settings)
        self.provider_factory = provider_factory
        self.sleep = sleep
        self.clock = clock
        self.categories = categories or ANALYSIS_CATEGORIES
        self.writer = FindingWriter(repository)
        self.limits = SamplingLimits.from_settings(settings)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    async def run_analysis(self, assessment_id: str) -> Optional[AnalysisProgress]:
        """Analyze every category of the stored document.

        Never raises; background tasks have nobody to report to. Returns the
        final progress snapshot, or ``None`` when the run did not finish.
        """
        tracker: Optional[ProgressTracker] = None
        try:
            assessment = await self.repository.get_assessment(assessment_id)
            if assessment is None:
                raise AnalysisError(f"Assessment {assessment_id} not found")

            stored = await self.repository.load_document(assessment_id)
            if stored is None:
                raise AnalysisError("No data uploaded for this assessment")
            document = decompress_document(stored.compressed)

            provider_config = await self.config_service.get_provider_config()
            provider = self.provider_factory(provider_config, self.settings)

            tracker = ProgressTracker(self.repository, assessment_id, self.categories)
            await self.repository.update_assessment(
                assessment_id,
                {"status": AssessmentStatus.ANALYZING.value, "completed_at": None},
            )
            completed = await tracker.load_completed()
            await self._log(
                assessment_id,
                "info",
                f"Starting analysis with {provider_config.provider.value} "
                f"({provider_config.model})",
            )

            try:
                analyzed = await self._analyze_categories(
                    assessment_id,
                    document,
                    stored.generation,
                    AIClient(provider),
                    tracker,
                    completed,
                )
            finally:
                await provider.aclose()

            if analyzed == 0 and not completed:
                raise AnalysisError("No analyzable categories found in the document")

            progress = await tracker.finish()
            await self.repository.update_assessment(
                assessment_id,
                {
                    "status": AssessmentStatus.COMPLETED.value,
                    "completed_at": self.clock().isoformat(),
                },
            )
            failed = tracker.failed_ids
            summary = f"Analysis finished: {progress.completed}/{progress.total} categories completed"
            if failed:
                summary += f", failed: {', '.join(failed)}"
            await self._log(assessment_id, "warn" if failed else "info", summary)
            return progress

        except DocumentChangedError as e:
            # a newer upload scheduled its own run; leave status to it
            await self._log(assessment_id, "warn", f"Analysis stopped: {e}")
            if tracker is not None:
                await tracker.record_run_error(str(e))
            return None

        except Exception as e:
            logger.exception(f"Analysis of {assessment_id} failed")
            await self._mark_failed(assessment_id, tracker, str(e))
            return None

    async def reset_assessment(self, assessment_id: str) -> Optional[dict]:
        """Delete findings and put every category back to pending."""
        await self.repository.delete_findings(assessment_id)
        initial = AnalysisProgress.initial([(c.id, c.name) for c in self.categories])
        updated = await self.repository.update_assessment(
            assessment_id,
            {
                "status": AssessmentStatus.PENDING.value,
                "analysis_progress": initial.model_dump(mode="json"),
                "completed_at": None,
            },
        )
        await self._log(assessment_id, "info", "Assessment reset: findings deleted")
        return updated

    # ------------------------------------------------------------------
    # Category loop
    # ------------------------------------------------------------------

    async def _analyze_categories(
        self,
        assessment_id: str,
        document: dict,
        generation: int,
        client: AIClient,
        tracker: ProgressTracker,
        completed: set[str],
    ) -> int:
        analyzed = 0
        for category in self.categories:
            if category.id in completed:
                await self._log(
                    assessment_id, "info", "Already analyzed, skipping", category.id
                )
                continue

            records = extract_category(document, category.name)
            if records is None:
                await tracker.record_category_skipped(category.id)
                logger.info(f"{category.name}: no data, skipping")
                continue

            if analyzed and self.settings.category_delay_seconds > 0:
                await self.sleep(self.settings.category_delay_seconds)
            analyzed += 1

            await self._analyze_category(
                assessment_id, category, records, generation, client, tracker
            )
        return analyzed

    async def _analyze_category(
        self,
        assessment_id: str,
        category: CategoryDefinition,
        records: list[dict],
        generation: int,
        client: AIClient,
        tracker: ProgressTracker,
    ) -> None:
        await tracker.record_category_start(category.id, len(records))
        await self._log(
            assessment_id, "info", f"Analyzing {len(records)} records", category.id
        )
        try:
            now = self.clock()
            sample = sample_records(records, category.id, self.limits, now)
            if sample.note:
                await self._log(assessment_id, "info", sample.note, category.id)

            fit = fit_to_size(
                sample.records, self.settings.max_category_data_chars, category.name
            )
            for step in fit.steps:
                await self._log(
                    assessment_id, "warn", f"Data too large, {step}", category.id
                )

            async def call(prompt: str) -> list[dict]:
                return await retry_async(
                    lambda: client.call(prompt),
                    max_attempts=self.settings.ai_max_retries,
                    base_delay=self.settings.ai_retry_base_delay,
                    sleep=self.sleep,
                    label=category.name,
                )

            async def on_chunk_done(index: int, total: int, found: int) -> None:
                await self._log(
                    assessment_id,
                    "info",
                    f"Chunk {index}/{total} done: {found} findings",
                    category.id,
                )

            scheduler = ChunkScheduler(
                call,
                chunk_size=self.settings.analysis_chunk_size,
                max_parallel_chunks=self.settings.max_parallel_chunks,
                on_chunk_done=on_chunk_done,
            )
            findings = await scheduler.run(
                fit.records,
                lambda chunk: build_prompt(
                    category,
                    chunk,
                    statistics=sample.statistics,
                    note=sample.note,
                    max_data_chars=self.settings.prompt_max_data_chars,
                    now=now,
                ),
            )

            await self._check_generation(assessment_id, generation)
            written = await self.writer.write(assessment_id, category.id, findings)
            await tracker.record_category_done(category.id)
            await self._log(
                assessment_id, "info", f"Completed: {written} findings saved", category.id
            )

        except DocumentChangedError:
            raise
        except AnalysisError as e:
            logger.error(f"{category.name} failed: {e}")
            await tracker.record_category_error(category.id, str(e))
            await self._log(assessment_id, "error", f"Analysis error: {e}", category.id)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _check_generation(self, assessment_id: str, generation: int) -> None:
        current = await self.repository.get_document_generation(assessment_id)
        if current != generation:
            raise DocumentChangedError(
                f"Document was re-uploaded during analysis "
                f"(generation {generation} -> {current})"
            )

    async def _mark_failed(
        self, assessment_id: str, tracker: Optional[ProgressTracker], message: str
    ) -> None:
        try:
            fields: dict = {"status": AssessmentStatus.FAILED.value}
            if tracker is not None:
                tracker.progress.current = None
                tracker.progress.last_error = message
                fields["analysis_progress"] = tracker.progress.model_dump(mode="json")
            await self.repository.update_assessment(assessment_id, fields)
        except Exception as e:
            logger.error(f"Could not mark {assessment_id} as failed: {e}")
        await self._log(assessment_id, "error", f"Analysis failed: {message}")

    async def _log(
        self,
        assessment_id: str,
        level: str,
        message: str,
        category_id: Optional[str] = None,
    ) -> None:
        """Log locally and persist to assessment_logs; persistence errors are logged only."""
        prefix = f"[{assessment_id}]" + (f"[{category_id}]" if category_id else "")
        logger.log(_LOG_LEVELS.get(level, logging.INFO), f"{prefix} {message}")
        try:
            await self.repository.add_log(assessment_id, level, message, category_id)
        except Exception as e:
            logger.warning(f"Failed to persist log line for {assessment_id}: {e}")


async def get_orchestrator() -> AnalysisOrchestrator:
    """Get singleton orchestrator instance (FastAPI dependency)."""
    global _orchestrator
    if _orchestrator is None:
        repository = await get_repository()
        _orchestrator = AnalysisOrchestrator(repository, get_settings())
    return _orchestrator


def reset_orchestrator() -> None:
    """Reset orchestrator for testing."""
    global _orchestrator
    _orchestrator = None
