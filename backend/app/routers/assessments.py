"""Assessment CRUD, analysis control and result retrieval."""

import logging
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Query, Response

from app.db.repository import SupabaseRepository, get_repository
from app.models.assessment import AnalysisStartResponse, AssessmentCreate
from app.services.analysis_orchestrator import AnalysisOrchestrator, get_orchestrator

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/assessments", tags=["assessments"])


async def _require_assessment(repository: SupabaseRepository, assessment_id: str) -> dict:
    assessment = await repository.get_assessment(assessment_id)
    if assessment is None:
        raise HTTPException(status_code=404, detail="Assessment not found")
    return assessment


@router.post("", status_code=201)
async def create_assessment(
    body: AssessmentCreate,
    repository: SupabaseRepository = Depends(get_repository),
) -> dict:
    assessment = await repository.create_assessment(body.domain, client_id=body.client_id)
    logger.info(f"Created assessment {assessment['id']} for {body.domain}")
    return assessment


@router.get("")
async def list_assessments(
    client_id: Optional[str] = Query(None, alias="clientId"),
    repository: SupabaseRepository = Depends(get_repository),
) -> list[dict]:
    return await repository.list_assessments(client_id)


@router.get("/{assessment_id}")
async def get_assessment(
    assessment_id: str,
    repository: SupabaseRepository = Depends(get_repository),
) -> dict:
    return await _require_assessment(repository, assessment_id)


@router.delete("/{assessment_id}")
async def delete_assessment(
    assessment_id: str,
    repository: SupabaseRepository = Depends(get_repository),
) -> dict:
    """Delete the assessment with its document, findings and logs."""
    if not await repository.delete_assessment(assessment_id):
        raise HTTPException(status_code=404, detail="Assessment not found")
    logger.info(f"Deleted assessment {assessment_id}")
    return {"success": True}


@router.post("/{assessment_id}/reset")
async def reset_assessment(
    assessment_id: str,
    repository: SupabaseRepository = Depends(get_repository),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> dict:
    """Clear findings and put the assessment back to its initial state."""
    await _require_assessment(repository, assessment_id)
    return await orchestrator.reset_assessment(assessment_id)


@router.post("/{assessment_id}/analyze", response_model=AnalysisStartResponse)
async def analyze_assessment(
    assessment_id: str,
    background_tasks: BackgroundTasks,
    repository: SupabaseRepository = Depends(get_repository),
    orchestrator: AnalysisOrchestrator = Depends(get_orchestrator),
) -> AnalysisStartResponse:
    """
    (Re)start analysis on the stored document.

    Categories that already have findings are skipped, so this also resumes
    an interrupted run.
    """
    await _require_assessment(repository, assessment_id)
    if await repository.get_document_generation(assessment_id) is None:
        raise HTTPException(status_code=400, detail="No data uploaded for this assessment")

    background_tasks.add_task(orchestrator.run_analysis, assessment_id)
    return AnalysisStartResponse(assessment_id=assessment_id, message="Analysis started")


@router.get("/{assessment_id}/findings")
async def list_findings(
    assessment_id: str,
    repository: SupabaseRepository = Depends(get_repository),
) -> list[dict]:
    """Findings ordered critical, high, medium, low, then anything else."""
    return await repository.list_findings(assessment_id)


@router.get("/{assessment_id}/logs")
async def list_logs(
    assessment_id: str,
    repository: SupabaseRepository = Depends(get_repository),
) -> list[dict]:
    return await repository.list_logs(assessment_id)


@router.get("/{assessment_id}/data")
async def get_assessment_data(
    assessment_id: str,
    repository: SupabaseRepository = Depends(get_repository),
) -> Response:
    """Raw document as stored: gzip body, client decompresses."""
    stored = await repository.load_document(assessment_id)
    if stored is None:
        raise HTTPException(status_code=404, detail="No data uploaded for this assessment")
    return Response(
        content=stored.compressed,
        media_type="application/json",
        headers={"Content-Encoding": "gzip"},
    )
