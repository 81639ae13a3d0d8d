"""Upload decoding and compressed document storage.

Collector output arrives as a ``.json`` file or a ``.zip`` holding exactly
one ``.json`` entry. PowerShell writes UTF-8 with a BOM, which is stripped
before parsing. Documents are stored gzip-compressed.
"""

import gzip
import io
import json
import logging
import zipfile
from dataclasses import dataclass
from typing import Any

from app.models.assessment import AssessmentStatus
from app.services.errors import UploadError

logger = logging.getLogger(__name__)


@dataclass
class ParsedUpload:
    document: dict[str, Any]
    file_type: str
    original_size: int


def decode_json(raw: bytes) -> dict[str, Any]:
    """Parse a JSON document, tolerating a UTF-8 BOM."""
    try:
        text = raw.decode("utf-8-sig")
    except UnicodeDecodeError as e:
        raise UploadError(f"File is not valid UTF-8: {e}") from e
    # BOM can survive as U+FEFF when the file was re-encoded upstream
    text = text.lstrip("\ufeff")
    try:
        document = json.loads(text)
    except json.JSONDecodeError as e:
        raise UploadError(f"Invalid JSON: {e}") from e
    if not isinstance(document, dict):
        raise UploadError("Assessment document must be a JSON object")
    return document


def _extract_zip(content: bytes) -> bytes:
    try:
        archive = zipfile.ZipFile(io.BytesIO(content))
    except zipfile.BadZipFile as e:
        raise UploadError(f"Invalid ZIP archive: {e}") from e
    with archive:
        entries = [
            info
            for info in archive.infolist()
            if not info.is_dir() and info.filename.lower().endswith(".json")
        ]
        if not entries:
            raise UploadError("No JSON file found in ZIP")
        if len(entries) > 1:
            raise UploadError(
                f"ZIP must contain exactly one JSON file, found {len(entries)}"
            )
        logger.info(f"Extracting {entries[0].filename} from ZIP")
        return archive.read(entries[0])


def parse_upload(filename: str, content: bytes) -> ParsedUpload:
    """Decode an uploaded ``.json`` or ``.zip`` file.

    Raises:
        UploadError: unsupported extension, bad archive, or bad JSON.
    """
    name = (filename or "").lower()
    if name.endswith(".zip"):
        return ParsedUpload(decode_json(_extract_zip(content)), "zip", len(content))
    if name.endswith(".json"):
        return ParsedUpload(decode_json(content), "json", len(content))
    raise UploadError("Only .json and .zip files are accepted")


def compress_document(document: dict[str, Any]) -> bytes:
    return gzip.compress(json.dumps(document, ensure_ascii=False).encode("utf-8"))


def decompress_document(blob: bytes) -> dict[str, Any]:
    return json.loads(gzip.decompress(blob).decode("utf-8"))


class UploadService:
    """Stores documents and moves the assessment to ``uploaded``."""

    def __init__(self, repository) -> None:
        self.repository = repository

    async def store_document(self, assessment_id: str, document: dict[str, Any]) -> int:
        """Compress and upsert the document; returns the new generation."""
        raw_size = len(json.dumps(document, ensure_ascii=False).encode("utf-8"))
        compressed = compress_document(document)
        ratio = round((1 - len(compressed) / raw_size) * 100) if raw_size else 0
        logger.info(
            f"Assessment {assessment_id}: compressed {raw_size} bytes to "
            f"{len(compressed)} bytes ({ratio}% reduction)"
        )
        generation = await self.repository.save_document(assessment_id, compressed)
        fields = {"status": AssessmentStatus.UPLOADED.value}
        if generation > 1:
            # findings belong to the document they were produced from
            await self.repository.delete_findings(assessment_id)
            fields.update(analysis_progress=None, completed_at=None)
            await self.repository.add_log(
                assessment_id, "info", "New data replaced the previous upload, findings cleared"
            )
        await self.repository.update_assessment(assessment_id, fields)
        await self.repository.add_log(
            assessment_id,
            "info",
            f"Data stored ({ratio}% compression), starting analysis",
        )
        return generation
