"""Persist one category's merged findings in a single insert."""

import logging
import re
from typing import Any

from app.models.finding import Finding
from app.services.errors import FindingWriteError, ResponseFormatError

logger = logging.getLogger(__name__)

# NUL and C0 control characters except tab, newline and carriage return;
# Postgres text columns reject \u0000 outright
_CONTROL_CHARS = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]")


def sanitize_text(value: Any) -> Any:
    """Strip control characters from every string inside ``value``."""
    if isinstance(value, str):
        return _CONTROL_CHARS.sub("", value)
    if isinstance(value, dict):
        return {k: sanitize_text(v) for k, v in value.items()}
    if isinstance(value, list):
        return [sanitize_text(v) for v in value]
    return value


class FindingWriter:
    def __init__(self, repository) -> None:
        self.repository = repository

    def to_rows(self, assessment_id: str, category_id: str, findings: list[dict]) -> list[dict]:
        rows = []
        for raw in findings:
            try:
                finding = Finding.from_raw(raw)
            except (TypeError, ValueError) as e:
                raise ResponseFormatError(f"Malformed finding in AI response: {e}") from e
            row = sanitize_text(finding.model_dump(mode="json"))
            row["assessment_id"] = assessment_id
            row["category_id"] = category_id
            rows.append(row)
        return rows

    async def write(self, assessment_id: str, category_id: str, findings: list[dict]) -> int:
        """Insert the category's findings; returns the number of rows written.

        Raises:
            ResponseFormatError: a finding could not be normalized.
            FindingWriteError: the insert failed. Nothing is retried here.
        """
        rows = self.to_rows(assessment_id, category_id, findings)
        if not rows:
            return 0
        try:
            await self.repository.insert_findings(rows)
        except Exception as e:
            logger.error(f"Insert of {len(rows)} findings for {category_id} failed: {e}")
            raise FindingWriteError(f"Could not save findings: {e}") from e
        logger.info(f"Saved {len(rows)} findings for {category_id} ({assessment_id})")
        return len(rows)
