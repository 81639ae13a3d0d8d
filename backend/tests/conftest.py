"""Shared fixtures: in-memory repository, scripted AI provider, settings."""

import asyncio
import itertools
import os
import uuid
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional, Union

import pytest

# app.main reads settings at import time
os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_KEY", "test-anon-key")
os.environ.setdefault("SUPABASE_SERVICE_KEY", "test-service-key")

from app.config import Settings  # noqa: E402
from app.db.repository import StoredDocument, severity_rank  # noqa: E402

_BASE_TIME = datetime(2025, 1, 1, tzinfo=timezone.utc)


class InMemoryRepository:
    """Dict-backed stand-in for SupabaseRepository."""

    def __init__(self) -> None:
        self.assessments: dict[str, dict] = {}
        self.documents: dict[str, StoredDocument] = {}
        self.findings: list[dict] = []
        self.logs: list[dict] = []
        self.config: dict[str, str] = {}
        self.fail_insert = False
        self.insert_calls = 0
        self._clock = itertools.count()

    def _timestamp(self) -> str:
        return (_BASE_TIME + timedelta(seconds=next(self._clock))).isoformat()

    async def create_assessment(self, domain, client_id=None, assessment_id=None, status="pending"):
        row = {
            "id": assessment_id or str(uuid.uuid4()),
            "domain": domain,
            "client_id": client_id,
            "status": status,
            "analysis_progress": None,
            "created_at": self._timestamp(),
            "updated_at": None,
            "completed_at": None,
        }
        self.assessments[row["id"]] = row
        return dict(row)

    async def list_assessments(self, client_id=None):
        rows = [
            dict(r)
            for r in self.assessments.values()
            if client_id is None or r["client_id"] == client_id
        ]
        return sorted(rows, key=lambda r: r["created_at"], reverse=True)

    async def get_assessment(self, assessment_id):
        row = self.assessments.get(assessment_id)
        return dict(row) if row else None

    async def update_assessment(self, assessment_id, fields):
        row = self.assessments.get(assessment_id)
        if row is None:
            return None
        row.update(fields, updated_at=self._timestamp())
        return dict(row)

    async def delete_assessment(self, assessment_id):
        if self.assessments.pop(assessment_id, None) is None:
            return False
        self.documents.pop(assessment_id, None)
        self.findings = [f for f in self.findings if f["assessment_id"] != assessment_id]
        self.logs = [log for log in self.logs if log["assessment_id"] != assessment_id]
        return True

    async def save_document(self, assessment_id, compressed):
        current = self.documents.get(assessment_id)
        generation = (current.generation if current else 0) + 1
        self.documents[assessment_id] = StoredDocument(compressed, generation)
        return generation

    async def load_document(self, assessment_id):
        return self.documents.get(assessment_id)

    async def get_document_generation(self, assessment_id):
        stored = self.documents.get(assessment_id)
        return stored.generation if stored else None

    async def insert_findings(self, rows):
        self.insert_calls += 1
        if self.fail_insert:
            raise RuntimeError("insert failed: connection reset")
        for row in rows:
            self.findings.append({"id": str(uuid.uuid4()), "created_at": self._timestamp(), **row})

    async def list_findings(self, assessment_id):
        rows = [f for f in self.findings if f["assessment_id"] == assessment_id]
        return sorted(rows, key=severity_rank)

    async def list_finding_category_ids(self, assessment_id):
        return {
            f["category_id"]
            for f in self.findings
            if f["assessment_id"] == assessment_id and f.get("category_id")
        }

    async def delete_findings(self, assessment_id):
        self.findings = [f for f in self.findings if f["assessment_id"] != assessment_id]

    async def add_log(self, assessment_id, level, message, category_id=None):
        self.logs.append(
            {
                "assessment_id": assessment_id,
                "level": level,
                "message": message,
                "category_id": category_id,
                "created_at": self._timestamp(),
            }
        )

    async def list_logs(self, assessment_id):
        return [log for log in self.logs if log["assessment_id"] == assessment_id]

    async def get_config(self, key):
        return self.config.get(key)

    async def set_config(self, key, value):
        self.config[key] = value

    async def ping(self):
        return None


Response = Union[str, Exception]


class FakeProvider:
    """Scripted AIProvider: answers come from a callable or a queue.

    Tracks every prompt, the peak number of concurrent ``complete`` calls and
    the number of bursts (calls started while nothing else was in flight).
    """

    def __init__(
        self,
        responder: Optional[Callable[[str], Response]] = None,
        responses: Optional[list[Response]] = None,
    ) -> None:
        self.responder = responder
        self.responses = list(responses or [])
        self.prompts: list[str] = []
        self.in_flight = 0
        self.max_in_flight = 0
        self.bursts = 0
        self.closed = False

    async def complete(self, prompt: str) -> str:
        self.prompts.append(prompt)
        if self.in_flight == 0:
            self.bursts += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            await asyncio.sleep(0)
            await asyncio.sleep(0)
            if self.responder is not None:
                answer = self.responder(prompt)
            elif self.responses:
                answer = self.responses.pop(0)
            else:
                answer = '{"findings": []}'
        finally:
            self.in_flight -= 1
        if isinstance(answer, Exception):
            raise answer
        return answer

    async def aclose(self) -> None:
        self.closed = True


class SleepRecorder:
    """Drop-in for asyncio.sleep that records requested delays."""

    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)


def make_settings(**overrides) -> Settings:
    values = {
        "supabase_url": "http://localhost:54321",
        "supabase_key": "test-anon-key",
        "supabase_service_key": "test-service-key",
        "ai_provider": "gemini",
        "ai_model": None,
        "gemini_api_key": "test-gemini-key-123456",
        "openai_api_key": None,
        "deepseek_api_key": None,
        "anthropic_api_key": None,
        "lovable_api_key": None,
        "ai_retry_base_delay": 5.0,
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch):
    """Keep exported provider keys and tuning variables out of Settings."""
    for name in Settings.model_fields:
        if not name.startswith("supabase_"):
            monkeypatch.delenv(name.upper(), raising=False)


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def repository():
    return InMemoryRepository()


@pytest.fixture
def sleeper():
    return SleepRecorder()
