"""Supabase-backed persistence for assessments, findings, logs and config.

Every table access of the backend goes through ``SupabaseRepository`` so the
analysis pipeline and the routers share one contract. Tests substitute an
in-memory implementation with the same async methods.
"""

import base64
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional

from supabase import AsyncClient

from app.db.supabase import get_async_supabase_client_async

logger = logging.getLogger(__name__)

# Findings are returned critical → high → medium → low → anything else
SEVERITY_ORDER = {"critical": 1, "high": 2, "medium": 3, "low": 4}

_repository: "SupabaseRepository | None" = None


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def severity_rank(finding: dict) -> int:
    return SEVERITY_ORDER.get((finding.get("severity") or "").lower(), 5)


@dataclass
class StoredDocument:
    """Compressed assessment document plus its upload generation."""

    compressed: bytes
    generation: int


class SupabaseRepository:
    """Table access for the assessment backend."""

    def __init__(self, client: AsyncClient) -> None:
        self._client = client

    # ------------------------------------------------------------------
    # Assessments
    # ------------------------------------------------------------------

    async def create_assessment(
        self,
        domain: str,
        client_id: Optional[str] = None,
        assessment_id: Optional[str] = None,
        status: str = "pending",
    ) -> dict:
        row: dict[str, Any] = {"domain": domain, "client_id": client_id, "status": status}
        if assessment_id:
            row["id"] = assessment_id
        response = await self._client.table("assessments").insert(row).execute()
        return response.data[0]

    async def list_assessments(self, client_id: Optional[str] = None) -> list[dict]:
        query = self._client.table("assessments").select("*")
        if client_id:
            query = query.eq("client_id", client_id)
        response = await query.order("created_at", desc=True).execute()
        return response.data or []

    async def get_assessment(self, assessment_id: str) -> Optional[dict]:
        response = await (
            self._client.table("assessments")
            .select("*")
            .eq("id", assessment_id)
            .limit(1)
            .execute()
        )
        return response.data[0] if response.data else None

    async def update_assessment(self, assessment_id: str, fields: dict) -> Optional[dict]:
        payload = {**fields, "updated_at": _now_iso()}
        response = await (
            self._client.table("assessments")
            .update(payload)
            .eq("id", assessment_id)
            .execute()
        )
        return response.data[0] if response.data else None

    async def delete_assessment(self, assessment_id: str) -> bool:
        # findings, assessment_data and assessment_logs cascade
        response = await (
            self._client.table("assessments").delete().eq("id", assessment_id).execute()
        )
        return bool(response.data)

    # ------------------------------------------------------------------
    # Raw document
    # ------------------------------------------------------------------

    async def save_document(self, assessment_id: str, compressed: bytes) -> int:
        """Upsert the gzip blob and bump its generation. Last writer wins."""
        current = await self.get_document_generation(assessment_id)
        generation = (current or 0) + 1
        await (
            self._client.table("assessment_data")
            .upsert(
                {
                    "assessment_id": assessment_id,
                    "data_gzip": base64.b64encode(compressed).decode("ascii"),
                    "generation": generation,
                    "updated_at": _now_iso(),
                },
                on_conflict="assessment_id",
            )
            .execute()
        )
        return generation

    async def load_document(self, assessment_id: str) -> Optional[StoredDocument]:
        response = await (
            self._client.table("assessment_data")
            .select("data_gzip, generation")
            .eq("assessment_id", assessment_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        row = response.data[0]
        return StoredDocument(
            compressed=base64.b64decode(row["data_gzip"]),
            generation=row.get("generation") or 1,
        )

    async def get_document_generation(self, assessment_id: str) -> Optional[int]:
        response = await (
            self._client.table("assessment_data")
            .select("generation")
            .eq("assessment_id", assessment_id)
            .limit(1)
            .execute()
        )
        if not response.data:
            return None
        return response.data[0].get("generation") or 1

    # ------------------------------------------------------------------
    # Findings
    # ------------------------------------------------------------------

    async def insert_findings(self, rows: list[dict]) -> None:
        """Insert all rows in one request so a category lands atomically."""
        if not rows:
            return
        await self._client.table("findings").insert(rows).execute()

    async def list_findings(self, assessment_id: str) -> list[dict]:
        response = await (
            self._client.table("findings")
            .select("*")
            .eq("assessment_id", assessment_id)
            .order("created_at")
            .execute()
        )
        # PostgREST cannot order by a CASE expression
        return sorted(response.data or [], key=severity_rank)

    async def list_finding_category_ids(self, assessment_id: str) -> set[str]:
        response = await (
            self._client.table("findings")
            .select("category_id")
            .eq("assessment_id", assessment_id)
            .execute()
        )
        return {row["category_id"] for row in response.data or [] if row.get("category_id")}

    async def delete_findings(self, assessment_id: str) -> None:
        await (
            self._client.table("findings").delete().eq("assessment_id", assessment_id).execute()
        )

    # ------------------------------------------------------------------
    # Logs
    # ------------------------------------------------------------------

    async def add_log(
        self,
        assessment_id: str,
        level: str,
        message: str,
        category_id: Optional[str] = None,
    ) -> None:
        await (
            self._client.table("assessment_logs")
            .insert(
                {
                    "assessment_id": assessment_id,
                    "level": level,
                    "message": message,
                    "category_id": category_id,
                }
            )
            .execute()
        )

    async def list_logs(self, assessment_id: str) -> list[dict]:
        response = await (
            self._client.table("assessment_logs")
            .select("*")
            .eq("assessment_id", assessment_id)
            .order("created_at")
            .execute()
        )
        return response.data or []

    # ------------------------------------------------------------------
    # System config
    # ------------------------------------------------------------------

    async def get_config(self, key: str) -> Optional[str]:
        response = await (
            self._client.table("system_config").select("value").eq("key", key).limit(1).execute()
        )
        if not response.data:
            return None
        return response.data[0].get("value")

    async def set_config(self, key: str, value: str) -> None:
        await (
            self._client.table("system_config")
            .upsert({"key": key, "value": value, "updated_at": _now_iso()}, on_conflict="key")
            .execute()
        )

    async def ping(self) -> None:
        """Cheap round-trip used by the health check."""
        await self._client.table("system_config").select("key").limit(1).execute()


async def get_repository() -> SupabaseRepository:
    """Get the repository singleton (FastAPI dependency)."""
    global _repository
    if _repository is None:
        client = await get_async_supabase_client_async()
        _repository = SupabaseRepository(client)
    return _repository


def reset_repository() -> None:
    """Reset repository for testing."""
    global _repository
    _repository = None
