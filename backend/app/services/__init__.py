from app.services.ai_config_service import AIConfigService
from app.services.ai_providers import AIClient, AIProvider, create_provider
from app.services.analysis_orchestrator import (
    AnalysisOrchestrator,
    get_orchestrator,
    reset_orchestrator,
)
from app.services.chunk_scheduler import ChunkScheduler, merge_findings
from app.services.finding_writer import FindingWriter
from app.services.progress_tracker import ProgressTracker
from app.services.upload_service import UploadService, parse_upload

__all__ = [
    # Analysis orchestrator
    "AnalysisOrchestrator",
    "get_orchestrator",
    "reset_orchestrator",
    # AI providers
    "AIClient",
    "AIConfigService",
    "AIProvider",
    "create_provider",
    # Pipeline pieces
    "ChunkScheduler",
    "FindingWriter",
    "ProgressTracker",
    "merge_findings",
    # Uploads
    "UploadService",
    "parse_upload",
]
