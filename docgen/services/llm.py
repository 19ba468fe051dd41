import logging
from typing import Protocol
from uuid import uuid4

import httpx
from openai import APIConnectionError
from openai import APITimeoutError
from openai import AsyncOpenAI
from openai import OpenAIError

from docgen.core.config import BackendSettings
from docgen.core.config import Settings
from docgen.core.config import settings
from docgen.core.exceptions import AuthError
from docgen.core.exceptions import BackendError
from docgen.core.exceptions import BackendTimeoutError
from docgen.core.exceptions import EmptyResponseError
from docgen.core.exceptions import InvalidRequestError
from docgen.core.exceptions import NetworkError
from docgen.core.exceptions import RateLimitedError
from docgen.core.exceptions import ServerError
from docgen.models.generation_models import BackendResponse
from docgen.models.generation_models import CapabilityDescriptor
from docgen.models.generation_models import ChatMessage
from docgen.models.generation_models import TokenUsage

# Configure module logger
logger = logging.getLogger(__name__)

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}
AUTH_STATUS_CODES = {401, 403}


class ChatBackend(Protocol):
    """What the generation core needs from a text-generation service."""

    capability: CapabilityDescriptor

    @property
    def backend_id(self) -> str: ...

    async def complete(self, messages: list[ChatMessage], max_response_tokens: int) -> BackendResponse: ...


def classify_openai_error(exc: OpenAIError) -> BackendError:
    """Map an SDK error onto the core's retryable / fatal taxonomy."""
    if isinstance(exc, APITimeoutError):
        return BackendTimeoutError(f"LLM request timed out: {exc}")
    if isinstance(exc, APIConnectionError):
        return NetworkError(f"LLM connection failed: {exc}")

    status = getattr(exc, "status_code", None) or getattr(exc, "status", None)
    if status == 429:
        return RateLimitedError(f"LLM rate limited: {exc}", status_code=status)
    if status in AUTH_STATUS_CODES:
        return AuthError(f"LLM rejected credentials: {exc}", status_code=status)
    if status in RETRYABLE_STATUS_CODES or (status is not None and status >= 500):
        return ServerError(f"LLM server error: {exc}", status_code=status)
    if status is not None and 400 <= status < 500:
        return InvalidRequestError(f"LLM rejected request: {exc}", status_code=status)
    return BackendError(f"OpenAI API error: {exc}", status_code=status)


class OpenAIChatBackend:
    """Chat-completions backend for any OpenAI-compatible endpoint.

    OpenRouter, Azure OpenAI, GitHub Models and Ollama all speak this protocol;
    only ``base_url``, ``model_id`` and the key differ. The SDK's own retries are
    disabled because retry belongs to the resilience layer.
    """

    def __init__(
        self,
        config: BackendSettings,
        client: AsyncOpenAI | None = None,
        app_settings: Settings = settings,
        temperature: float = 0.2,
    ):
        self.config = config
        self.temperature = temperature
        self._settings = app_settings
        self._client = client
        self.capability = CapabilityDescriptor(
            backend_id=config.backend_id,
            max_context_tokens=config.max_context_tokens,
            cost_per_token=config.cost_per_token,
            is_available=config.is_available,
        )

    @property
    def backend_id(self) -> str:
        return self.config.backend_id

    @property
    def client(self) -> AsyncOpenAI:
        if self._client is None:
            api_key = self.config.api_key or self._settings.openrouter_api_key
            if not api_key:
                raise AuthError(f"No API key configured for backend '{self.backend_id}'")
            # Define timeouts based on settings
            timeout_config = httpx.Timeout(
                self._settings.LLM_CONNECT_TIMEOUT,
                read=self._settings.LLM_READ_TIMEOUT,
            )
            self._client = AsyncOpenAI(
                base_url=self.config.base_url,
                api_key=api_key,
                default_headers={"X-Title": "docgen"},
                timeout=timeout_config,
                max_retries=0,
            )
        return self._client

    async def complete(self, messages: list[ChatMessage], max_response_tokens: int) -> BackendResponse:
        request_id = str(uuid4())
        logger.info(
            "[%s] Making LLM API call to %s with model: %s",
            request_id,
            self.backend_id,
            self.config.model_id,
        )

        try:
            rsp = await self.client.chat.completions.create(
                model=self.config.model_id,
                messages=[m.model_dump() for m in messages],
                max_tokens=max_response_tokens,
                temperature=self.temperature,
            )
        except OpenAIError as e:
            mapped = classify_openai_error(e)
            logger.error("[%s] LLM API error from %s: %s", request_id, self.backend_id, mapped)
            raise mapped from e

        # Add null checks for response structure
        if not rsp or not getattr(rsp, "choices", None):
            logger.error("[%s] Invalid response structure from LLM API: %s", request_id, str(rsp))
            raise EmptyResponseError(f"Invalid response structure from LLM API: {str(rsp)[:200]}")

        message = getattr(rsp.choices[0], "message", None)
        content = getattr(message, "content", None) if message is not None else None
        if not content or not content.strip():
            logger.error("[%s] No content in LLM message: %s", request_id, str(message))
            raise EmptyResponseError("LLM returned an empty message")

        usage = TokenUsage()
        if getattr(rsp, "usage", None) is not None:
            usage = TokenUsage(
                prompt_tokens=rsp.usage.prompt_tokens or 0,
                completion_tokens=rsp.usage.completion_tokens or 0,
                total_tokens=rsp.usage.total_tokens or 0,
            )

        content = content.strip()
        logger.debug("[%s] LLM response received, length: %d chars", request_id, len(content))
        return BackendResponse(
            content=content,
            backend_id=self.backend_id,
            model=getattr(rsp, "model", None) or self.config.model_id,
            usage=usage,
        )


def build_backends(app_settings: Settings = settings) -> list[OpenAIChatBackend]:
    """One client per configured backend, in fallback order."""
    return [OpenAIChatBackend(cfg, app_settings=app_settings) for cfg in app_settings.backends]
