"""Configuration management for the lesson generation engine."""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        env_prefix="",  # No prefix, use exact env var names
        populate_by_name=True,  # Allow populating by field name or alias
        extra="ignore",
    )

    # LLM Configuration - LangChain-based with OpenAI-compatible providers
    llm_provider: str = Field(
        default="openai",
        description="LLM provider: ollama, openai, openrouter, vllm, llama_cpp, or custom",
        alias="LLM_PROVIDER",
    )
    llm_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for OpenAI-compatible API endpoint",
        alias="LLM_BASE_URL",
    )
    llm_model: str = Field(
        default="gpt-4o",
        description="Model name to use for text and structured generation",
        alias="LLM_MODEL",
    )
    llm_api_key: Optional[str] = Field(
        default=None,
        description="API key for LLM provider (optional for local providers)",
        alias="LLM_API_KEY",
    )
    llm_temperature: float = Field(
        default=0.7,
        description="Default temperature for LLM generation",
        alias="LLM_TEMPERATURE",
    )
    llm_timeout: int = Field(
        default=300,
        description="Timeout for LLM requests in seconds",
        alias="LLM_TIMEOUT",
    )
    llm_max_tokens: int = Field(
        default=4096,
        description="Maximum tokens for a text generation request",
        alias="LLM_MAX_TOKENS",
    )
    llm_max_retries: int = Field(
        default=0,
        description="Retries for text/structured generation (image generation has its own policy)",
        alias="LLM_MAX_RETRIES",
    )
    ollama_num_ctx: int = Field(
        default=64000,
        description="Context window size for Ollama models (num_ctx parameter)",
        alias="OLLAMA_NUM_CTX",
    )
    openai_api_key: Optional[str] = Field(
        default=None,
        description="OpenAI API key (alternative to LLM_API_KEY, also used for images)",
        alias="OPENAI_API_KEY",
    )
    demo_mode: bool = Field(
        default=False,
        description="Simulate AI responses without making network calls",
        alias="DEMO_MODE",
    )

    # Structured output
    item_set_size: int = Field(
        default=5,
        description="Number of items requested for multiple-choice item sets",
        alias="ITEM_SET_SIZE",
    )

    # Image generation (primary + secondary provider)
    google_api_key: Optional[str] = Field(
        default=None,
        description="API key for the primary image provider",
        alias="GOOGLE_API_KEY",
    )
    image_primary_model: str = Field(
        default="gemini-3-pro-image-preview",
        description="Primary image generation model",
        alias="IMAGE_PRIMARY_MODEL",
    )
    image_primary_base_url: str = Field(
        default="https://generativelanguage.googleapis.com/v1beta",
        description="Base URL for the primary image provider",
        alias="IMAGE_PRIMARY_BASE_URL",
    )
    image_secondary_model: str = Field(
        default="dall-e-3",
        description="Fallback image generation model",
        alias="IMAGE_SECONDARY_MODEL",
    )
    image_secondary_base_url: str = Field(
        default="https://api.openai.com/v1",
        description="Base URL for the fallback image provider",
        alias="IMAGE_SECONDARY_BASE_URL",
    )
    image_size: str = Field(
        default="1024x1024",
        description="Requested size for the fallback image provider",
        alias="IMAGE_SIZE",
    )
    image_retry_attempts: int = Field(
        default=3,
        description="Attempts against the primary image provider on overload",
        alias="IMAGE_RETRY_ATTEMPTS",
    )
    image_retry_delay: float = Field(
        default=3.0,
        description="Initial delay between image retries in seconds",
        alias="IMAGE_RETRY_DELAY",
    )
    image_backoff_factor: float = Field(
        default=1.5,
        description="Multiplier applied to the image retry delay after each attempt",
        alias="IMAGE_BACKOFF_FACTOR",
    )
    image_prompt_max_length: int = Field(
        default=3500,
        description="Image prompts longer than this are truncated",
        alias="IMAGE_PROMPT_MAX_LENGTH",
    )
    image_timeout: int = Field(
        default=120,
        description="Timeout for image provider requests in seconds",
        alias="IMAGE_TIMEOUT",
    )

    # Vision / alt text
    vision_model: str = Field(
        default="gpt-4o",
        description="Model used to describe generated images",
        alias="VISION_MODEL",
    )
    alt_text_max_tokens: int = Field(
        default=150,
        description="Maximum tokens for generated alt text",
        alias="ALT_TEXT_MAX_TOKENS",
    )

    # Storage Configuration
    lesson_storage_path: str = Field(
        default="data/lessons",
        description="Directory holding one JSON document per lesson",
        alias="LESSON_STORAGE_PATH",
    )
    asset_storage_path: str = Field(
        default="data/assets",
        description="Directory holding uploaded image assets",
        alias="ASSET_STORAGE_PATH",
    )
    asset_base_url: str = Field(
        default="/assets",
        description="Public URL prefix for uploaded assets",
        alias="ASSET_BASE_URL",
    )

    # Application Configuration
    log_level: str = Field(default="INFO", description="Logging level", alias="LOG_LEVEL")
    log_format: str = Field(
        default="json", description="Log format (json or text)", alias="LOG_FORMAT"
    )
    debug: bool = Field(default=False, description="Enable debug mode", alias="DEBUG")

    def model_post_init(self, __context) -> None:
        """Handle post-initialization configuration."""
        if self.openai_api_key and not self.llm_api_key:
            object.__setattr__(self, "llm_api_key", self.openai_api_key)

    def get_llm_config(self) -> dict:
        """Get LangChain LLM configuration dictionary."""
        config = {
            "provider": self.llm_provider,
            "model": self.llm_model,
            "base_url": self.llm_base_url,
            "timeout": self.llm_timeout,
            "temperature": self.llm_temperature,
            "max_tokens": self.llm_max_tokens,
            "max_retries": self.llm_max_retries,
        }

        if self.llm_api_key:
            config["api_key"] = self.llm_api_key

        if self.llm_provider.lower() == "ollama":
            config["num_ctx"] = self.ollama_num_ctx

        return config

    def get_image_retry_policy(self) -> dict:
        """Get the retry/backoff policy for the primary image provider."""
        return {
            "attempts": self.image_retry_attempts,
            "delay": self.image_retry_delay,
            "backoff_factor": self.image_backoff_factor,
        }


# Global settings instance
settings = Settings()


def get_settings() -> Settings:
    """Get the current application settings."""
    return settings


def update_settings(**kwargs) -> None:
    """Update settings dynamically."""
    global settings
    for key, value in kwargs.items():
        if hasattr(settings, key):
            setattr(settings, key, value)
