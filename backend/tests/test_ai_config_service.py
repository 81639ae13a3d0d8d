"""Tests for AI provider configuration."""

import pytest

from app.models.ai_config import AIConfigUpdate, AIProviderName
from app.services.ai_config_service import AIConfigService, mask_key
from app.services.errors import ProviderConfigError

from conftest import make_settings


class TestMaskKey:
    def test_long_key(self):
        assert mask_key("sk-abcdefghijklmnop") == "sk-a...mnop"

    def test_short_key(self):
        assert mask_key("short") == "****"

    def test_missing(self):
        assert mask_key(None) is None


class TestAIConfigService:
    @pytest.mark.asyncio
    async def test_env_fallback(self, repository):
        service = AIConfigService(repository, make_settings())
        config = await service.get_provider_config()
        assert config.provider == AIProviderName.GEMINI
        assert config.model == "gemini-2.5-flash"
        assert config.api_key == "test-gemini-key-123456"

    @pytest.mark.asyncio
    async def test_stored_values_take_precedence(self, repository):
        repository.config.update(
            {"ai_provider": "deepseek", "ai_model": "deepseek-coder", "deepseek_api_key": "ds-key-from-db"}
        )
        config = await AIConfigService(repository, make_settings()).get_provider_config()
        assert config.provider == AIProviderName.DEEPSEEK
        assert config.model == "deepseek-coder"
        assert config.api_key == "ds-key-from-db"

    @pytest.mark.asyncio
    async def test_missing_key(self, repository):
        service = AIConfigService(repository, make_settings(gemini_api_key=None))
        with pytest.raises(ProviderConfigError, match="No API key"):
            await service.get_provider_config()

    @pytest.mark.asyncio
    async def test_unknown_provider(self, repository):
        repository.config["ai_provider"] = "watson"
        with pytest.raises(ProviderConfigError, match="Unsupported"):
            await AIConfigService(repository, make_settings()).get_provider_config()

    @pytest.mark.asyncio
    async def test_public_config_never_exposes_keys(self, repository):
        repository.config["openai_api_key"] = "sk-proj-supersecretvalue"
        public = await AIConfigService(repository, make_settings()).get_public_config()

        dumped = public.model_dump_json()
        assert "supersecret" not in dumped
        assert "test-gemini-key-123456" not in dumped
        assert public.available_providers["openai"] is True
        assert public.available_providers["anthropic"] is False
        assert public.key_previews["openai"] == "sk-p...alue"
        assert public.models["deepseek"][0] == "deepseek-chat"

    @pytest.mark.asyncio
    async def test_update(self, repository):
        service = AIConfigService(repository, make_settings())
        result = await service.update(
            AIConfigUpdate(
                provider=AIProviderName.ANTHROPIC,
                model="claude-3-5-sonnet-20241022",
                api_keys={AIProviderName.ANTHROPIC: " sk-ant-1234567890 ", AIProviderName.OPENAI: ""},
            )
        )
        assert repository.config["anthropic_api_key"] == "sk-ant-1234567890"
        assert "openai_api_key" not in repository.config
        assert result.provider == AIProviderName.ANTHROPIC
        assert result.model == "claude-3-5-sonnet-20241022"

    @pytest.mark.asyncio
    async def test_exported_keys_do_not_reach_test_settings(self, repository, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "sk-ant-from-shell-0000")
        public = await AIConfigService(repository, make_settings()).get_public_config()
        assert public.available_providers["anthropic"] is False
