"""Tests for persisted per-category progress."""

import pytest
import pytest_asyncio

from app.services.category_extractor import ANALYSIS_CATEGORIES
from app.services.progress_tracker import ProgressTracker

CATEGORIES = ANALYSIS_CATEGORIES[:3]  # users, gpos, computers


@pytest_asyncio.fixture
async def tracked(repository):
    assessment = await repository.create_assessment("corp.local")
    return assessment["id"], ProgressTracker(repository, assessment["id"], CATEGORIES)


def _snapshot(repository, assessment_id):
    return repository.assessments[assessment_id]["analysis_progress"]


def _statuses(repository, assessment_id):
    return {c["id"]: c["status"] for c in _snapshot(repository, assessment_id)["categories"]}


class TestProgressTracker:
    @pytest.mark.asyncio
    async def test_load_completed_from_existing_findings(self, repository, tracked):
        assessment_id, tracker = tracked
        await repository.insert_findings(
            [{"assessment_id": assessment_id, "category_id": "gpos", "title": "t"}]
        )
        assert await tracker.load_completed() == {"gpos"}
        assert _statuses(repository, assessment_id) == {
            "users": "pending",
            "gpos": "completed",
            "computers": "pending",
        }
        assert _snapshot(repository, assessment_id)["completed"] == 1

    @pytest.mark.asyncio
    async def test_every_transition_is_persisted(self, repository, tracked):
        assessment_id, tracker = tracked
        await tracker.load_completed()

        await tracker.record_category_start("users", 12)
        snapshot = _snapshot(repository, assessment_id)
        assert snapshot["current"] == "users"
        assert snapshot["categories"][0] == {
            "id": "users",
            "name": "Users",
            "status": "processing",
            "count": 12,
        }

        await tracker.record_category_done("users")
        assert _snapshot(repository, assessment_id)["completed"] == 1

        await tracker.record_category_start("gpos", 3)
        await tracker.record_category_error("gpos", "API error 403")
        snapshot = _snapshot(repository, assessment_id)
        assert snapshot["last_error"] == "GPOs: API error 403"
        assert snapshot["current"] is None

        await tracker.record_category_skipped("computers")
        assert _statuses(repository, assessment_id) == {
            "users": "completed",
            "gpos": "failed",
            "computers": "skipped",
        }

    @pytest.mark.asyncio
    async def test_completed_is_not_downgraded(self, repository, tracked):
        assessment_id, tracker = tracked
        await tracker.record_category_done("users")
        await tracker.record_category_error("users", "late error")
        await tracker.record_category_skipped("users")
        assert _statuses(repository, assessment_id)["users"] == "completed"
        assert tracker.failed_ids == []
