"""Tests for configuration management."""

import os
from unittest.mock import patch

from lessongen.config import Settings, get_settings, update_settings


class TestSettings:
    """Test Settings configuration class."""

    def test_settings_with_defaults(self):
        """Test settings are created with default values."""
        env_vars_to_clear = [
            "LLM_PROVIDER",
            "LLM_BASE_URL",
            "LLM_MODEL",
            "LLM_API_KEY",
            "LLM_MAX_RETRIES",
            "OPENAI_API_KEY",
            "ITEM_SET_SIZE",
            "IMAGE_RETRY_ATTEMPTS",
            "IMAGE_RETRY_DELAY",
            "IMAGE_BACKOFF_FACTOR",
            "IMAGE_PROMPT_MAX_LENGTH",
            "VISION_MODEL",
            "ALT_TEXT_MAX_TOKENS",
            "LOG_LEVEL",
            "LOG_FORMAT",
            "DEBUG",
            "DEMO_MODE",
        ]
        with patch.dict(os.environ, {}, clear=False):
            for key in env_vars_to_clear:
                os.environ.pop(key, None)

            settings = Settings(_env_file=None)

            assert settings.llm_provider == "openai"
            assert settings.llm_model == "gpt-4o"
            assert settings.llm_max_retries == 0
            assert settings.llm_api_key is None
            assert settings.item_set_size == 5
            assert settings.image_retry_attempts == 3
            assert settings.image_retry_delay == 3.0
            assert settings.image_backoff_factor == 1.5
            assert settings.image_prompt_max_length == 3500
            assert settings.vision_model == "gpt-4o"
            assert settings.alt_text_max_tokens == 150
            assert settings.log_level == "INFO"
            assert settings.log_format == "json"
            assert settings.debug is False
            assert settings.demo_mode is False

    def test_settings_from_environment(self):
        """Test settings are loaded from environment variables."""
        with patch.dict(
            os.environ,
            {
                "LLM_PROVIDER": "ollama",
                "LLM_MODEL": "llama3",
                "LLM_MAX_RETRIES": "2",
                "ITEM_SET_SIZE": "3",
                "DEMO_MODE": "true",
                "LOG_LEVEL": "DEBUG",
            },
            clear=False,
        ):
            settings = Settings(_env_file=None)

            assert settings.llm_provider == "ollama"
            assert settings.llm_model == "llama3"
            assert settings.llm_max_retries == 2
            assert settings.item_set_size == 3
            assert settings.demo_mode is True
            assert settings.log_level == "DEBUG"

    def test_openai_key_used_as_llm_key(self):
        """Test OPENAI_API_KEY fills in a missing LLM_API_KEY."""
        with patch.dict(os.environ, {"OPENAI_API_KEY": "sk-test"}, clear=False):
            os.environ.pop("LLM_API_KEY", None)
            settings = Settings(_env_file=None)

            assert settings.llm_api_key == "sk-test"

    def test_explicit_llm_key_wins(self):
        """Test an explicit LLM_API_KEY is not replaced."""
        with patch.dict(
            os.environ,
            {"OPENAI_API_KEY": "sk-openai", "LLM_API_KEY": "sk-llm"},
            clear=False,
        ):
            settings = Settings(_env_file=None)

            assert settings.llm_api_key == "sk-llm"


class TestLLMConfig:
    """Test provider configuration helpers."""

    def test_get_llm_config_openai(self):
        """Test config for an OpenAI-compatible provider has no num_ctx."""
        settings = Settings(_env_file=None, LLM_PROVIDER="openai", LLM_API_KEY="k")
        config = settings.get_llm_config()

        assert config["provider"] == "openai"
        assert config["api_key"] == "k"
        assert config["max_retries"] == settings.llm_max_retries
        assert "num_ctx" not in config

    def test_get_llm_config_ollama(self):
        """Test Ollama config carries the context window size."""
        settings = Settings(_env_file=None, LLM_PROVIDER="ollama", OLLAMA_NUM_CTX=8192)
        config = settings.get_llm_config()

        assert config["num_ctx"] == 8192

    def test_image_retry_policy(self):
        """Test the image retry policy mirrors the settings."""
        settings = Settings(
            _env_file=None,
            IMAGE_RETRY_ATTEMPTS=5,
            IMAGE_RETRY_DELAY=1.0,
            IMAGE_BACKOFF_FACTOR=2.0,
        )

        assert settings.get_image_retry_policy() == {
            "attempts": 5,
            "delay": 1.0,
            "backoff_factor": 2.0,
        }


class TestGlobalSettings:
    """Test global settings accessors."""

    def test_get_settings_returns_singleton(self):
        """Test get_settings returns the same instance."""
        assert get_settings() is get_settings()

    def test_update_settings(self):
        """Test settings can be updated at runtime."""
        settings = get_settings()
        original = settings.item_set_size
        try:
            update_settings(item_set_size=7, not_a_setting=1)
            assert get_settings().item_set_size == 7
            assert not hasattr(get_settings(), "not_a_setting")
        finally:
            update_settings(item_set_size=original)
