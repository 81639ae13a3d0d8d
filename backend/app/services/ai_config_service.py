"""AI provider configuration backed by the ``system_config`` table.

Values stored through ``POST /api/config/ai`` take precedence; the
environment (``Settings``) is the fallback for anything not stored. The
analysis pipeline reads the configuration once per run via
``get_provider_config``.
"""

import logging
from typing import Optional

from app.config import Settings
from app.models.ai_config import (
    PROVIDER_MODELS,
    AIConfigResponse,
    AIConfigUpdate,
    AIProviderName,
    ProviderConfig,
)
from app.services.errors import ProviderConfigError

logger = logging.getLogger(__name__)

PROVIDER_KEY = "ai_provider"
MODEL_KEY = "ai_model"


def api_key_name(provider: AIProviderName) -> str:
    return f"{provider.value}_api_key"


def mask_key(key: Optional[str]) -> Optional[str]:
    """Truncated preview safe to show in the admin panel."""
    if not key:
        return None
    if len(key) <= 12:
        return "****"
    return f"{key[:4]}...{key[-4:]}"


class AIConfigService:
    def __init__(self, repository, settings: Settings) -> None:
        self.repository = repository
        self.settings = settings

    async def _stored_or_env(self, key: str) -> Optional[str]:
        value = await self.repository.get_config(key)
        if value:
            return value
        return getattr(self.settings, key, None)

    async def get_provider(self) -> AIProviderName:
        raw = await self._stored_or_env(PROVIDER_KEY) or AIProviderName.GEMINI.value
        try:
            return AIProviderName(raw.strip().lower())
        except ValueError:
            raise ProviderConfigError(f"Unsupported AI provider: {raw}") from None

    async def get_model(self, provider: AIProviderName) -> str:
        model = await self._stored_or_env(MODEL_KEY)
        return model or PROVIDER_MODELS[provider][0]

    async def get_api_key(self, provider: AIProviderName) -> Optional[str]:
        return await self._stored_or_env(api_key_name(provider))

    async def get_provider_config(self) -> ProviderConfig:
        """Active provider, model and key.

        Raises:
            ProviderConfigError: unknown provider or no key configured.
        """
        provider = await self.get_provider()
        api_key = await self.get_api_key(provider)
        if not api_key:
            raise ProviderConfigError(f"No API key configured for {provider.value}")
        model = await self.get_model(provider)
        return ProviderConfig(provider=provider, model=model, api_key=api_key)

    async def get_public_config(self) -> AIConfigResponse:
        provider = await self.get_provider()
        available: dict[str, bool] = {}
        previews: dict[str, Optional[str]] = {}
        for name in AIProviderName:
            key = await self.get_api_key(name)
            available[name.value] = bool(key)
            previews[name.value] = mask_key(key)
        return AIConfigResponse(
            provider=provider,
            model=await self.get_model(provider),
            available_providers=available,
            key_previews=previews,
            models={name.value: models for name, models in PROVIDER_MODELS.items()},
        )

    async def update(self, update: AIConfigUpdate) -> AIConfigResponse:
        if update.provider is not None:
            await self.repository.set_config(PROVIDER_KEY, update.provider.value)
            logger.info(f"AI provider set to {update.provider.value}")
        if update.model is not None:
            await self.repository.set_config(MODEL_KEY, update.model)
            logger.info(f"AI model set to {update.model}")
        for provider, key in update.api_keys.items():
            if key and key.strip():
                await self.repository.set_config(api_key_name(provider), key.strip())
                logger.info(f"API key updated for {provider.value}")
        return await self.get_public_config()
