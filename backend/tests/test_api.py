"""Tests for the REST endpoints."""

import asyncio
import io
import json
import zipfile

import pytest
from fastapi.testclient import TestClient

from app.db.repository import get_repository
from app.main import app
from app.routers.ai_config import get_ai_config_service
from app.services.ai_config_service import AIConfigService
from app.services.analysis_orchestrator import AnalysisOrchestrator, get_orchestrator
from app.services.upload_service import compress_document

from conftest import FakeProvider, InMemoryRepository, SleepRecorder, make_settings


def run(coro):
    return asyncio.run(coro)


DOC = {"Users": [{"SamAccountName": "a1", "Enabled": True, "PasswordNeverExpires": True}]}


@pytest.fixture
def repo():
    return InMemoryRepository()


@pytest.fixture
def provider():
    return FakeProvider(
        lambda prompt: json.dumps(
            {"findings": [{"title": "1 users with passwords that never expire", "severity": "high"}]}
        )
    )


@pytest.fixture
def client(repo, provider):
    """Test client backed by the in-memory repository and a fake provider."""
    settings = make_settings()
    orchestrator = AnalysisOrchestrator(
        repo,
        settings,
        provider_factory=lambda config, s: provider,
        sleep=SleepRecorder(),
    )

    async def override_repository():
        return repo

    async def override_orchestrator():
        return orchestrator

    async def override_config_service():
        return AIConfigService(repo, settings)

    app.dependency_overrides[get_repository] = override_repository
    app.dependency_overrides[get_orchestrator] = override_orchestrator
    app.dependency_overrides[get_ai_config_service] = override_config_service
    yield TestClient(app)
    app.dependency_overrides.clear()


def _create(client, domain="corp.local", client_id=None):
    body = {"domain": domain}
    if client_id:
        body["client_id"] = client_id
    response = client.post("/api/assessments", json=body)
    assert response.status_code == 201
    return response.json()


class TestHealthEndpoint:
    def test_health_check(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"


class TestAssessmentCrud:
    def test_create_and_get(self, client):
        created = _create(client)
        assert created["status"] == "pending"

        response = client.get(f"/api/assessments/{created['id']}")
        assert response.status_code == 200
        assert response.json()["domain"] == "corp.local"

    def test_get_missing_is_404(self, client):
        assert client.get("/api/assessments/nope").status_code == 404

    def test_create_requires_domain(self, client):
        assert client.post("/api/assessments", json={"domain": ""}).status_code == 422

    def test_list_filtered_by_client(self, client):
        _create(client, "a.local", client_id="c1")
        _create(client, "b.local", client_id="c2")
        assert len(client.get("/api/assessments").json()) == 2
        filtered = client.get("/api/assessments", params={"clientId": "c1"}).json()
        assert [a["domain"] for a in filtered] == ["a.local"]

    def test_delete(self, client, repo):
        created = _create(client)
        assert client.delete(f"/api/assessments/{created['id']}").status_code == 200
        assert created["id"] not in repo.assessments
        assert client.delete(f"/api/assessments/{created['id']}").status_code == 404

    def test_reset(self, client, repo):
        created = _create(client)
        run(repo.insert_findings(
            [
                {"assessment_id": created["id"], "category_id": cid, "title": "t"}
                for cid in ("users", "gpos", "domains")
            ]
        ))
        response = client.post(f"/api/assessments/{created['id']}/reset")
        assert response.status_code == 200
        body = response.json()
        assert body["status"] == "pending"
        assert {c["status"] for c in body["analysis_progress"]["categories"]} == {"pending"}
        assert client.get(f"/api/assessments/{created['id']}/findings").json() == []


class TestResults:
    def test_findings_ordered_by_severity(self, client, repo):
        created = _create(client)
        run(repo.insert_findings(
            [
                {"assessment_id": created["id"], "category_id": "dns", "title": t, "severity": s}
                for t, s in [("l", "low"), ("x", "info"), ("c", "critical"), ("m", "medium"), ("h", "high")]
            ]
        ))
        titles = [f["title"] for f in client.get(f"/api/assessments/{created['id']}/findings").json()]
        assert titles == ["c", "h", "m", "l", "x"]

    def test_logs_chronological(self, client, repo):
        created = _create(client)
        run(repo.add_log(created["id"], "info", "first"))
        run(repo.add_log(created["id"], "error", "second", "users"))
        logs = client.get(f"/api/assessments/{created['id']}/logs").json()
        assert [log["message"] for log in logs] == ["first", "second"]

    def test_data_is_served_gzip(self, client, repo):
        created = _create(client)
        run(repo.save_document(created["id"], compress_document(DOC)))
        response = client.get(f"/api/assessments/{created['id']}/data")
        assert response.status_code == 200
        assert response.headers["content-encoding"] == "gzip"
        # the HTTP client decompresses transparently
        assert response.json() == DOC

    def test_data_missing_is_404(self, client):
        created = _create(client)
        assert client.get(f"/api/assessments/{created['id']}/data").status_code == 404


class TestUpload:
    def test_upload_json_runs_analysis(self, client, repo, provider):
        created = _create(client)
        content = b"\xef\xbb\xbf" + json.dumps(DOC).encode()
        response = client.post(
            "/api/upload-large-file",
            data={"assessmentId": created["id"]},
            files={"file": ("dump.json", content, "application/json")},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["success"] is True
        assert body["assessmentId"] == created["id"]
        assert body["fileType"] == "json"
        assert body["originalSize"] == len(content)
        assert body["status"] == "analyzing"

        # background analysis ran after the response
        assert len(provider.prompts) == 1
        assert repo.assessments[created["id"]]["status"] == "completed"
        assert len(repo.findings) == 1

    def test_upload_zip(self, client, repo):
        created = _create(client)
        buffer = io.BytesIO()
        with zipfile.ZipFile(buffer, "w") as archive:
            archive.writestr("dump.json", json.dumps(DOC))
        response = client.post(
            "/api/upload-large-file",
            data={"assessmentId": created["id"]},
            files={"file": ("dump.zip", buffer.getvalue(), "application/zip")},
        )
        assert response.status_code == 200
        assert response.json()["fileType"] == "zip"
        assert repo.documents[created["id"]].generation == 1

    def test_upload_rejects_bad_file(self, client, repo):
        created = _create(client)
        response = client.post(
            "/api/upload-large-file",
            data={"assessmentId": created["id"]},
            files={"file": ("dump.json", b"{oops", "application/json")},
        )
        assert response.status_code == 400
        assert "Invalid JSON" in response.json()["detail"]
        assert created["id"] not in repo.documents

    def test_upload_unknown_assessment(self, client):
        response = client.post(
            "/api/upload-large-file",
            data={"assessmentId": "missing"},
            files={"file": ("dump.json", b"{}", "application/json")},
        )
        assert response.status_code == 404

    def test_process_assessment_creates_assessment(self, client, repo):
        response = client.post(
            "/api/process-assessment",
            json={"assessmentId": "a-123", "jsonData": DOC, "domainName": "corp.local"},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["assessmentId"] == "a-123"
        assert repo.assessments["a-123"]["domain"] == "corp.local"
        assert repo.assessments["a-123"]["status"] == "completed"

    def test_analyze_requires_document(self, client):
        created = _create(client)
        assert client.post(f"/api/assessments/{created['id']}/analyze").status_code == 400

    def test_analyze_resumes(self, client, repo, provider):
        created = _create(client)
        run(repo.save_document(created["id"], compress_document(DOC)))
        response = client.post(f"/api/assessments/{created['id']}/analyze")
        assert response.status_code == 200
        assert response.json()["assessment_id"] == created["id"]
        assert len(provider.prompts) == 1

        # second run: users already has findings
        client.post(f"/api/assessments/{created['id']}/analyze")
        assert len(provider.prompts) == 1


class TestAIConfig:
    def test_get_masks_keys(self, client):
        response = client.get("/api/config/ai")
        assert response.status_code == 200
        body = response.json()
        assert body["provider"] == "gemini"
        assert body["available_providers"]["gemini"] is True
        assert body["key_previews"]["gemini"] == "test...3456"
        assert "test-gemini-key-123456" not in response.text

    def test_update(self, client, repo):
        response = client.post(
            "/api/config/ai",
            json={"provider": "openai", "model": "gpt-4o", "api_keys": {"openai": "sk-abcdefghijklmnop"}},
        )
        assert response.status_code == 200
        body = response.json()
        assert body["provider"] == "openai"
        assert body["model"] == "gpt-4o"
        assert body["key_previews"]["openai"] == "sk-a...mnop"
        assert repo.config["openai_api_key"] == "sk-abcdefghijklmnop"

    def test_update_rejects_unknown_provider(self, client):
        response = client.post("/api/config/ai", json={"provider": "watson"})
        assert response.status_code == 422
