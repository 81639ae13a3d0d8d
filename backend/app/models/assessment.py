"""Assessment, analysis progress and upload models."""

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class AssessmentStatus(str, Enum):
    """Lifecycle of an assessment."""

    PENDING = "pending"
    UPLOADED = "uploaded"
    ANALYZING = "analyzing"
    COMPLETED = "completed"
    FAILED = "failed"


class CategoryStatus(str, Enum):
    """Analysis state of one category."""

    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"  # No data in the document


class CategoryProgress(BaseModel):
    """Progress entry for one category."""

    id: str = Field(..., description="Stable category id (e.g. 'users')")
    name: str = Field(..., description="Category name as found in the document")
    status: CategoryStatus = Field(default=CategoryStatus.PENDING)
    count: int = Field(default=0, ge=0, description="Records found for this category")


class AnalysisProgress(BaseModel):
    """Per-assessment analysis snapshot, persisted after every transition."""

    categories: list[CategoryProgress] = Field(default_factory=list)
    current: Optional[str] = Field(None, description="Category currently being analyzed")
    completed: int = Field(default=0, ge=0)
    total: int = Field(default=0, ge=0)
    last_error: Optional[str] = Field(None, description="Most recent category-level error")

    @classmethod
    def initial(cls, categories: list[tuple[str, str]]) -> "AnalysisProgress":
        """All categories pending, nothing current."""
        return cls(
            categories=[CategoryProgress(id=cid, name=name) for cid, name in categories],
            total=len(categories),
        )

    def completed_ids(self) -> set[str]:
        return {c.id for c in self.categories if c.status == CategoryStatus.COMPLETED}


class AssessmentCreate(BaseModel):
    """Body of POST /api/assessments."""

    domain: str = Field(..., min_length=1, description="AD domain being assessed")
    client_id: Optional[str] = Field(None, description="Owning client UUID")


class ProcessAssessmentRequest(BaseModel):
    """Body of POST /api/process-assessment (direct JSON submission)."""

    assessment_id: Optional[str] = Field(None, alias="assessmentId")
    json_data: dict[str, Any] = Field(..., alias="jsonData")
    domain_name: Optional[str] = Field(None, alias="domainName")

    model_config = {"populate_by_name": True}


class UploadResponse(BaseModel):
    """Acknowledgement returned by the upload endpoints."""

    success: bool = True
    assessment_id: str = Field(..., serialization_alias="assessmentId")
    message: str
    status: AssessmentStatus = AssessmentStatus.ANALYZING
    file_type: Optional[str] = Field(None, serialization_alias="fileType")
    original_size: Optional[int] = Field(None, serialization_alias="originalSize")


class AnalysisStartResponse(BaseModel):
    """Acknowledgement of POST /api/assessments/{id}/analyze."""

    success: bool = True
    assessment_id: str
    message: str
