from app.models.ai_config import (
    PROVIDER_MODELS,
    AIConfigResponse,
    AIConfigUpdate,
    AIProviderName,
    ProviderConfig,
)
from app.models.assessment import (
    AnalysisProgress,
    AnalysisStartResponse,
    AssessmentCreate,
    AssessmentStatus,
    CategoryProgress,
    CategoryStatus,
    ProcessAssessmentRequest,
    UploadResponse,
)
from app.models.finding import Finding, FindingEvidence, Severity

__all__ = [
    # AI configuration
    "PROVIDER_MODELS",
    "AIConfigResponse",
    "AIConfigUpdate",
    "AIProviderName",
    "ProviderConfig",
    # Assessment models
    "AnalysisProgress",
    "AnalysisStartResponse",
    "AssessmentCreate",
    "AssessmentStatus",
    "CategoryProgress",
    "CategoryStatus",
    "ProcessAssessmentRequest",
    "UploadResponse",
    # Findings
    "Finding",
    "FindingEvidence",
    "Severity",
]
