"""AI provider adapters.

All providers implement ``AIProvider.complete(prompt) -> str``. Two request
shapes exist:

- Gemini: ``generateContent`` with ``contents/parts``, called over raw HTTP.
- Chat ``messages``: OpenAI, DeepSeek and the Lovable gateway through the
  OpenAI SDK (OpenAI-compatible endpoints), Anthropic through its SDK.

Failures are translated to ``ProviderError`` carrying the HTTP status (or
``None`` for transport failures) so the retry controller can classify them.
SDK retries are disabled.
"""

import logging
from abc import ABC, abstractmethod
from typing import Optional

import anthropic
import httpx
import openai

from app.config import Settings
from app.models.ai_config import AIProviderName, ProviderConfig
from app.services.errors import ProviderConfigError, ProviderError, ResponseFormatError
from app.services.llm_utils import parse_findings
from app.services.prompt_builder import SYSTEM_PROMPT

logger = logging.getLogger(__name__)

GEMINI_BASE_URL = "https://generativelanguage.googleapis.com/v1beta"


class AIProvider(ABC):
    """One LLM backend."""

    name: AIProviderName

    def __init__(self, config: ProviderConfig, settings: Settings) -> None:
        self.model = config.model
        self.max_output_tokens = settings.ai_max_output_tokens
        self.temperature = settings.ai_temperature
        self.timeout = settings.ai_request_timeout

    @abstractmethod
    async def complete(self, prompt: str) -> str:
        """Send one prompt and return the raw text answer."""

    async def aclose(self) -> None:
        """Release HTTP resources."""


class GeminiProvider(AIProvider):
    name = AIProviderName.GEMINI

    def __init__(
        self,
        config: ProviderConfig,
        settings: Settings,
        http_client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        super().__init__(config, settings)
        self._api_key = config.api_key
        self._client = http_client or httpx.AsyncClient(
            base_url=GEMINI_BASE_URL, timeout=httpx.Timeout(self.timeout, connect=30.0)
        )

    async def complete(self, prompt: str) -> str:
        payload = {
            "contents": [{"parts": [{"text": f"{SYSTEM_PROMPT}\n\n{prompt}"}]}],
            "generationConfig": {
                "temperature": self.temperature,
                "maxOutputTokens": self.max_output_tokens,
                "responseMimeType": "application/json",
            },
        }
        try:
            response = await self._client.post(
                f"/models/{self.model}:generateContent",
                params={"key": self._api_key},
                json=payload,
            )
        except httpx.HTTPError as e:
            raise ProviderError(f"Gemini request failed: {e}") from e

        if response.status_code >= 400:
            raise ProviderError(
                f"Gemini API error {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise ResponseFormatError(f"Gemini returned a non-JSON body: {e}") from e
        if not isinstance(data, dict):
            raise ResponseFormatError("Gemini returned an unexpected response shape")
        candidates = data.get("candidates") or []
        if not candidates:
            return ""
        candidate = candidates[0]
        if candidate.get("finishReason") == "MAX_TOKENS":
            logger.warning(f"Gemini response hit the output token limit ({self.model})")
        parts = (candidate.get("content") or {}).get("parts") or []
        return "".join(p.get("text", "") for p in parts)

    async def aclose(self) -> None:
        await self._client.aclose()


class OpenAICompatibleProvider(AIProvider):
    """Chat-completions providers reachable through the OpenAI SDK."""

    BASE_URLS: dict[AIProviderName, Optional[str]] = {
        AIProviderName.OPENAI: None,
        AIProviderName.DEEPSEEK: "https://api.deepseek.com/v1",
        AIProviderName.LOVABLE: "https://ai.gateway.lovable.dev/v1",
    }
    JSON_MODE = frozenset({AIProviderName.OPENAI, AIProviderName.DEEPSEEK})

    def __init__(
        self,
        config: ProviderConfig,
        settings: Settings,
        client: Optional[openai.AsyncOpenAI] = None,
    ) -> None:
        super().__init__(config, settings)
        self.name = config.provider
        self._client = client or openai.AsyncOpenAI(
            api_key=config.api_key,
            base_url=self.BASE_URLS.get(config.provider),
            timeout=self.timeout,
            max_retries=0,
        )

    async def complete(self, prompt: str) -> str:
        kwargs = {}
        if self.name in self.JSON_MODE:
            kwargs["response_format"] = {"type": "json_object"}
        try:
            response = await self._client.chat.completions.create(
                model=self.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                temperature=self.temperature,
                max_tokens=self.max_output_tokens,
                **kwargs,
            )
        except openai.APIStatusError as e:
            raise ProviderError(
                f"{self.name.value} API error {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except openai.APIConnectionError as e:
            raise ProviderError(f"{self.name.value} request failed: {e}") from e

        if not response.choices:
            return ""
        choice = response.choices[0]
        if choice.finish_reason == "length":
            logger.warning(f"{self.name.value} response hit the output token limit ({self.model})")
        return choice.message.content or ""

    async def aclose(self) -> None:
        await self._client.close()


class AnthropicProvider(AIProvider):
    name = AIProviderName.ANTHROPIC

    def __init__(
        self,
        config: ProviderConfig,
        settings: Settings,
        client: Optional[anthropic.AsyncAnthropic] = None,
    ) -> None:
        super().__init__(config, settings)
        self._client = client or anthropic.AsyncAnthropic(
            api_key=config.api_key, timeout=self.timeout, max_retries=0
        )

    async def complete(self, prompt: str) -> str:
        try:
            response = await self._client.messages.create(
                model=self.model,
                max_tokens=self.max_output_tokens,
                temperature=self.temperature,
                system=SYSTEM_PROMPT,
                messages=[{"role": "user", "content": prompt}],
            )
        except anthropic.APIStatusError as e:
            raise ProviderError(
                f"anthropic API error {e.status_code}: {e.message}",
                status_code=e.status_code,
            ) from e
        except anthropic.APIConnectionError as e:
            raise ProviderError(f"anthropic request failed: {e}") from e

        if response.stop_reason == "max_tokens":
            logger.warning(f"anthropic response hit the output token limit ({self.model})")
        return "".join(
            block.text for block in response.content if getattr(block, "type", "") == "text"
        )

    async def aclose(self) -> None:
        await self._client.close()


PROVIDER_CLASSES: dict[AIProviderName, type[AIProvider]] = {
    AIProviderName.GEMINI: GeminiProvider,
    AIProviderName.OPENAI: OpenAICompatibleProvider,
    AIProviderName.DEEPSEEK: OpenAICompatibleProvider,
    AIProviderName.LOVABLE: OpenAICompatibleProvider,
    AIProviderName.ANTHROPIC: AnthropicProvider,
}


def create_provider(config: ProviderConfig, settings: Settings) -> AIProvider:
    """Instantiate the adapter registered for ``config.provider``."""
    if not config.api_key:
        raise ProviderConfigError(f"No API key configured for {config.provider.value}")
    try:
        provider_cls = PROVIDER_CLASSES[config.provider]
    except KeyError:
        raise ProviderConfigError(f"Unsupported AI provider: {config.provider}") from None
    logger.info(f"Using AI provider {config.provider.value} with model {config.model}")
    return provider_cls(config, settings)


class AIClient:
    """Provider call plus response parsing: ``call(prompt) -> raw findings``."""

    def __init__(self, provider: AIProvider) -> None:
        self.provider = provider

    async def call(self, prompt: str) -> list[dict]:
        text = await self.provider.complete(prompt)
        return parse_findings(text)
