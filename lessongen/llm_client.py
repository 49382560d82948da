"""Client for text, structured and vision requests to LLM providers via LangChain.

Supports:
- Ollama (local) - using ChatOllama
- OpenAI, OpenRouter, vLLM, llama.cpp server and any other OpenAI-compatible
  endpoint - using ChatOpenAI

Every failure to obtain a response surfaces as ``TransportError``. A structured
response is handed back as-is; judging its shape is the caller's job.
"""

import asyncio
import base64
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from langchain_core.messages import HumanMessage, SystemMessage
from langchain_ollama import ChatOllama
from langchain_openai import ChatOpenAI

from lessongen.config import get_settings
from lessongen.exceptions import TransportError
from lessongen.logger import get_logger
from lessongen.prompts import ALT_TEXT_PROMPT, STRUCTURED_OUTPUT_SYSTEM_PROMPT

logger = get_logger(__name__)

ChatModel = Union[ChatOpenAI, ChatOllama]


class LLMClient:
    """Client for LLM interactions using LangChain chat models.

    Features:
    - Optional retry with exponential backoff (off by default for generation)
    - Demo mode for running without actual LLM calls
    - Structured output through function calling
    - Async context manager for proper resource cleanup
    """

    def __init__(
        self,
        base_url: Optional[str] = None,
        model: Optional[str] = None,
        api_key: Optional[str] = None,
        timeout: Optional[int] = None,
        temperature: Optional[float] = None,
        provider: Optional[str] = None,
        num_ctx: Optional[int] = None,
        max_tokens: Optional[int] = None,
        max_retries: Optional[int] = None,
        retry_delay: float = 1.0,
        backoff_factor: float = 2.0,
        vision_model: Optional[str] = None,
        demo_mode: Optional[bool] = None,
    ):
        """Initialize the LLM client.

        Args:
            base_url: Base URL for the OpenAI-compatible API endpoint
            model: Model name to use for generation
            api_key: API key for authentication (optional for local providers)
            timeout: Timeout for LLM requests in seconds
            temperature: Temperature for generation (0.0 to 1.0)
            provider: LLM provider type (ollama, openai, openrouter, vllm, llama_cpp, custom)
            num_ctx: Context window size (Ollama-specific)
            max_tokens: Default maximum tokens for text generation
            max_retries: Retry attempts after the first failure
            retry_delay: Initial delay between retries in seconds
            backoff_factor: Multiplier for exponential backoff
            vision_model: Model used to describe images
            demo_mode: If True, simulate responses without making API calls
        """
        settings = get_settings()

        self.base_url = base_url or settings.llm_base_url
        self.model = model or settings.llm_model
        self.api_key = api_key or settings.llm_api_key
        self.timeout = timeout or settings.llm_timeout
        self.temperature = (
            temperature if temperature is not None else settings.llm_temperature
        )
        self.provider = (provider or settings.llm_provider).lower()
        self.num_ctx = num_ctx if num_ctx is not None else settings.ollama_num_ctx
        self.max_tokens = max_tokens or settings.llm_max_tokens
        self.max_retries = (
            max_retries if max_retries is not None else settings.llm_max_retries
        )
        self.retry_delay = retry_delay
        self.backoff_factor = backoff_factor
        self.vision_model = vision_model or settings.vision_model
        self.demo_mode = settings.demo_mode if demo_mode is None else demo_mode

        self._llm: Optional[ChatModel] = None

    async def __aenter__(self):
        """Async context manager entry."""
        if not self.demo_mode:
            self._llm = self._build_llm(self.model)
            logger.info(
                "Initialized LangChain chat client",
                provider=self.provider,
                model=self.model,
                base_url=self.base_url,
                temperature=self.temperature,
            )
        else:
            logger.info("LLMClient initialized in demo mode")
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        """Async context manager exit."""
        self._llm = None

    def _build_llm(self, model: str, max_tokens: Optional[int] = None) -> ChatModel:
        if self.provider == "ollama":
            # ChatOllama expects the base Ollama URL without /v1 suffix
            base_url = self.base_url
            if base_url.endswith("/v1"):
                base_url = base_url[:-3]
            return ChatOllama(
                model=model,
                base_url=base_url,
                temperature=self.temperature,
                num_ctx=self.num_ctx,
                num_predict=max_tokens or self.max_tokens,
            )

        return ChatOpenAI(
            model=model,
            base_url=self.base_url,
            timeout=self.timeout,
            temperature=self.temperature,
            max_tokens=max_tokens or self.max_tokens,
            # Retries are handled here so the policy stays in one place
            max_retries=0,
            # Local providers don't need auth but the client insists on a key
            api_key=self.api_key or "sk-dummy-key",
        )

    def _llm_for(self, model: Optional[str], max_tokens: Optional[int] = None) -> ChatModel:
        if not self._llm:
            raise RuntimeError("Client not initialized. Use as async context manager.")
        if (model and model != self.model) or (
            max_tokens and max_tokens != self.max_tokens
        ):
            return self._build_llm(model or self.model, max_tokens=max_tokens)
        return self._llm

    async def _with_retries(
        self, operation: str, call: Callable[[], Awaitable[Any]]
    ) -> Any:
        last_exception: Optional[Exception] = None
        for attempt in range(self.max_retries + 1):
            try:
                return await call()
            except Exception as e:
                last_exception = e
                logger.warning(
                    "Error during LLM request",
                    operation=operation,
                    attempt=attempt + 1,
                    error_type=type(e).__name__,
                    error=str(e),
                )
                if "authentication" in str(e).lower() or "api key" in str(e).lower():
                    logger.error("Authentication error, not retrying")
                    break
                if attempt < self.max_retries:
                    delay = self.retry_delay * (self.backoff_factor**attempt)
                    logger.info(f"Retrying in {delay:.1f} seconds...")
                    await asyncio.sleep(delay)

        logger.error(
            "LLM request failed",
            operation=operation,
            total_attempts=self.max_retries + 1,
            final_error=str(last_exception),
        )
        raise TransportError(
            f"{operation} failed: {last_exception}"
        ) from last_exception

    async def generate(
        self,
        prompt: str,
        system_instructions: Optional[str] = None,
        max_tokens: Optional[int] = None,
        model: Optional[str] = None,
    ) -> str:
        """Generate plain text.

        Raises:
            TransportError: If the provider fails or returns an empty response
        """
        if self.demo_mode:
            logger.info("Using demo mode for text generation")
            return f"Simulated response to: {prompt[:80]}"

        llm = self._llm_for(model, max_tokens)
        messages: List[Any] = []
        if system_instructions:
            messages.append(SystemMessage(content=system_instructions))
        messages.append(HumanMessage(content=prompt))

        async def call() -> str:
            response = await llm.ainvoke(messages)
            text = response.content if isinstance(response.content, str) else ""
            if not text.strip():
                raise ValueError("Empty response from LLM")
            return text

        text = await self._with_retries("text generation", call)
        logger.info("Generation completed successfully", response_length=len(text))
        return text

    async def generate_structured(
        self,
        prompt: str,
        schema: Dict[str, Any],
        model: Optional[str] = None,
    ) -> Any:
        """Generate an object constrained by a function-calling schema.

        Returns:
            Whatever the provider produced for the schema; not validated here.

        Raises:
            TransportError: If the provider fails or produces no tool call at all
        """
        if self.demo_mode:
            logger.info("Using demo mode for structured generation")
            return _demo_structured_response(schema)

        llm = self._llm_for(model)
        structured = llm.with_structured_output(schema, method="function_calling")
        messages = [
            SystemMessage(content=STRUCTURED_OUTPUT_SYSTEM_PROMPT),
            HumanMessage(content=prompt),
        ]

        async def call() -> Any:
            result = await structured.ainvoke(messages)
            if result is None:
                raise ValueError(f"No {schema.get('name', 'function')} call in response")
            return result

        result = await self._with_retries("structured generation", call)
        logger.info("Structured generation completed", schema=schema.get("name"))
        return result

    async def describe_image(
        self, data: bytes, mime_type: str = "image/png"
    ) -> str:
        """Produce short alt text for an image with the vision model."""
        if self.demo_mode:
            return "A simulated illustration for the lesson."

        llm = self._llm_for(self.vision_model, get_settings().alt_text_max_tokens)
        encoded = base64.b64encode(data).decode("ascii")
        message = HumanMessage(
            content=[
                {"type": "text", "text": ALT_TEXT_PROMPT},
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{mime_type};base64,{encoded}"},
                },
            ]
        )

        async def call() -> str:
            response = await llm.ainvoke([message])
            text = response.content if isinstance(response.content, str) else ""
            if not text.strip():
                raise ValueError("Empty alt text from vision model")
            return text.strip()

        return await self._with_retries("alt text", call)


def _demo_structured_response(schema: Dict[str, Any]) -> Dict[str, Any]:
    questions_schema = schema["parameters"]["properties"]["questions"]
    count = questions_schema.get("minItems", 1)
    return {
        "questions": [
            {
                "question_text": f"Simulated question {n}?",
                "choices": {
                    "A": "First option",
                    "B": "Second option",
                    "C": "Third option",
                    "D": "Fourth option",
                },
                "standards": ["DEMO.1"],
                "correct_answer": "A",
            }
            for n in range(1, count + 1)
        ]
    }


def create_client_from_settings(demo_mode: Optional[bool] = None) -> LLMClient:
    """Create an LLMClient from the configured primary provider."""
    config = get_settings().get_llm_config()
    return LLMClient(
        base_url=config["base_url"],
        model=config["model"],
        api_key=config.get("api_key"),
        timeout=config["timeout"],
        temperature=config["temperature"],
        provider=config["provider"],
        num_ctx=config.get("num_ctx"),
        max_tokens=config["max_tokens"],
        max_retries=config["max_retries"],
        demo_mode=demo_mode,
    )
