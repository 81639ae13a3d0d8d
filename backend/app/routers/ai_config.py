"""AI provider configuration endpoints. API keys are only ever returned masked."""

from fastapi import APIRouter, Depends, HTTPException

from app.config import get_settings
from app.db.repository import SupabaseRepository, get_repository
from app.models.ai_config import AIConfigResponse, AIConfigUpdate
from app.services.ai_config_service import AIConfigService
from app.services.errors import ProviderConfigError

router = APIRouter(prefix="/api/config", tags=["config"])


async def get_ai_config_service(
    repository: SupabaseRepository = Depends(get_repository),
) -> AIConfigService:
    return AIConfigService(repository, get_settings())


@router.get("/ai", response_model=AIConfigResponse)
async def get_ai_config(
    service: AIConfigService = Depends(get_ai_config_service),
) -> AIConfigResponse:
    try:
        return await service.get_public_config()
    except ProviderConfigError as e:
        raise HTTPException(status_code=500, detail=str(e))


@router.post("/ai", response_model=AIConfigResponse)
async def update_ai_config(
    body: AIConfigUpdate,
    service: AIConfigService = Depends(get_ai_config_service),
) -> AIConfigResponse:
    return await service.update(body)
