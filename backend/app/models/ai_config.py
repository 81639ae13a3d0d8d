"""AI provider configuration models."""

from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field


class AIProviderName(str, Enum):
    """Supported LLM providers."""

    GEMINI = "gemini"
    OPENAI = "openai"
    DEEPSEEK = "deepseek"
    ANTHROPIC = "anthropic"
    LOVABLE = "lovable"


# First entry is the default model for the provider
PROVIDER_MODELS: dict[AIProviderName, list[str]] = {
    AIProviderName.GEMINI: ["gemini-2.5-flash", "gemini-1.5-pro", "gemini-1.5-flash"],
    AIProviderName.OPENAI: ["gpt-4o-mini", "gpt-4o", "gpt-4-turbo"],
    AIProviderName.DEEPSEEK: ["deepseek-chat", "deepseek-coder"],
    AIProviderName.ANTHROPIC: [
        "claude-sonnet-4-5-20250929",
        "claude-3-5-sonnet-20241022",
        "claude-3-opus-20240229",
    ],
    AIProviderName.LOVABLE: ["google/gemini-2.5-flash"],
}


class ProviderConfig(BaseModel):
    """Everything needed to call one provider."""

    provider: AIProviderName
    model: str
    api_key: str = Field(..., repr=False)


class AIConfigResponse(BaseModel):
    """GET /api/config/ai - keys are never returned in full."""

    provider: AIProviderName
    model: str
    available_providers: dict[str, bool] = Field(
        default_factory=dict, description="Whether a key is configured per provider"
    )
    key_previews: dict[str, Optional[str]] = Field(
        default_factory=dict, description="Truncated key preview per provider"
    )
    models: dict[str, list[str]] = Field(default_factory=dict)


class AIConfigUpdate(BaseModel):
    """POST /api/config/ai body."""

    provider: Optional[AIProviderName] = None
    model: Optional[str] = Field(None, min_length=1)
    api_keys: dict[AIProviderName, str] = Field(default_factory=dict)
