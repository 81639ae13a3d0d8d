"""Assessment document upload.

Both endpoints store the document and return immediately; analysis runs as
a background task and is followed through the assessment's progress.
"""

import logging

from fastapi import APIRouter, BackgroundTasks, Depends, File, Form, HTTPException, UploadFile

from app.db.repository import SupabaseRepository, get_repository
from app.models.assessment import (
    AssessmentStatus,
    ProcessAssessmentRequest,
    UploadResponse,
)
from app.services.analysis_orchestrator import AnalysisOrchestrator, get_orchestrator
from app.services.errors import UploadError
from app.services.upload_service import UploadService, parse_upload

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["upload"])


@router.post("/upload-large-file", response_model=UploadResponse)
async def upload_large_file(
    background_tasks: BackgroundTasks,
    file: UploadFile = File(..., description="Collector output (.json or .zip)"),
    assessment_id: str = Form(..., alias="assessmentId"),
    repository: SupabaseRepository = Depends(get_repository),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> UploadResponse:
    """
    Receive a collector dump for an existing assessment.

    Accepts ``.json`` or a ``.zip`` with exactly one ``.json`` entry. The
    document is stored gzip-compressed and analysis is scheduled.
    """
    if await repository.get_assessment(assessment_id) is None:
        raise HTTPException(status_code=404, detail="Assessment not found")

    content = await file.read()
    logger.info(f"Upload for {assessment_id}: {file.filename} ({len(content)} bytes)")
    try:
        parsed = parse_upload(file.filename or "", content)
    except UploadError as e:
        await repository.add_log(assessment_id, "error", f"Upload rejected: {e}")
        raise HTTPException(status_code=400, detail=str(e))

    try:
        await UploadService(repository).store_document(assessment_id, parsed.document)
    except Exception as e:
        logger.error(f"Storing document for {assessment_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Error processing file: {e}")

    background_tasks.add_task(orchestrator.run_analysis, assessment_id)
    return UploadResponse(
        assessment_id=assessment_id,
        message="File processed, analysis started",
        status=AssessmentStatus.ANALYZING,
        file_type=parsed.file_type,
        original_size=parsed.original_size,
    )


@router.post("/process-assessment", response_model=UploadResponse)
async def process_assessment(
    body: ProcessAssessmentRequest,
    background_tasks: BackgroundTasks,
    repository: SupabaseRepository = Depends(get_repository),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> UploadResponse:
    """Direct JSON submission; creates the assessment when it does not exist."""
    assessment = None
    if body.assessment_id:
        assessment = await repository.get_assessment(body.assessment_id)
    if assessment is None:
        assessment = await repository.create_assessment(
            body.domain_name or "unknown",
            assessment_id=body.assessment_id,
        )
        logger.info(f"Created assessment {assessment['id']} from direct submission")
    assessment_id = assessment["id"]

    try:
        await UploadService(repository).store_document(assessment_id, body.json_data)
    except Exception as e:
        logger.error(f"Storing document for {assessment_id} failed: {e}")
        raise HTTPException(status_code=500, detail=f"Error processing data: {e}")

    background_tasks.add_task(orchestrator.run_analysis, assessment_id)
    return UploadResponse(
        assessment_id=assessment_id,
        message="Data received, analysis started",
        status=AssessmentStatus.ANALYZING,
    )
