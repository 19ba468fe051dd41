"""Application configuration settings.

This module defines the application-wide settings using Pydantic's BaseSettings.
It allows for loading configurations from environment variables and .env files,
providing type validation and default values. Every option the generation core
recognises is enumerated here and validated once, when ``Settings`` is built.
"""

from pathlib import Path

from pydantic import BaseModel
from pydantic import Field
from pydantic import field_validator
from pydantic_settings import BaseSettings

# Default list of CORS allowed origins
DEFAULT_CORS_ORIGINS = [
    "http://localhost:3000",
    "http://localhost:8000",
    "https://localhost:3000",
    "https://localhost:8000",
]

CONTEXT_TIERS = ("core", "enriched", "full")


class BackendSettings(BaseModel):
    """Connection and capability facts for one OpenAI-compatible backend."""

    backend_id: str
    base_url: str
    model_id: str
    api_key: str | None = None
    max_context_tokens: int = Field(default=8000, gt=0)
    cost_per_token: float = Field(default=0.0, ge=0)
    is_available: bool = True


class RetryPolicy(BaseModel):
    """Bounded exponential backoff applied around every backend call."""

    max_retries: int = Field(default=3, ge=1)
    backoff_multiplier: float = Field(default=2.0, ge=1)
    base_delay_ms: int = Field(default=1000, ge=0)
    max_delay_ms: int = Field(default=30_000, ge=0)


class RateLimitConfig(BaseModel):
    requests_per_minute: int = Field(default=600, gt=0)
    requests_per_hour: int = Field(default=10_000, gt=0)


class CircuitBreakerConfig(BaseModel):
    failure_threshold: int = Field(default=5, gt=0)
    reset_timeout_s: float = Field(default=30.0, gt=0)


def _default_backends() -> list[BackendSettings]:
    return [
        BackendSettings(
            backend_id="openrouter",
            base_url="https://openrouter.ai/api/v1",
            model_id="meta-llama/llama-4-maverick:free",
            max_context_tokens=128_000,
        )
    ]


class Settings(BaseSettings):
    """Manages application settings, loading them from environment variables or an .env file.

    Attributes:
        backends: Ordered list of backends; the order is the fallback order.
        openrouter_api_key: API key used by backends that do not define their own.
        LLM_CONNECT_TIMEOUT: LLM client connect timeout in seconds.
        LLM_READ_TIMEOUT: LLM client read timeout in seconds.
        rate_limit_per_minute: Admissions per backend per sliding minute.
        rate_limit_per_hour: Admissions per backend per sliding hour.
        circuit_failure_threshold: Consecutive failures that open a backend's circuit.
        circuit_reset_timeout_s: Seconds a circuit stays open before a trial call.
        retry_max_attempts: Attempts per backend before giving up.
        retry_backoff_multiplier: Exponential base between attempts.
        retry_base_delay_ms: Delay before the second attempt.
        retry_max_delay_ms: Upper bound on a single backoff delay.
        history_size: Results kept per document type.
        default_context_tier: Tier used when a request does not name one.
        chars_per_token: Characters per token used for budget estimates.
        context_min_mandatory_tokens: Smallest share of the project description that must survive truncation.
        quality_min_length: Default minimum content length for quality validation.
        generation_timeout_s: Default wall-clock bound for a generation, None for unbounded.
        template_dir: Directory holding the JSON prompt template catalogue.
        cors_allowed_origins: List of allowed origins for CORS.
    """

    backends: list[BackendSettings] = Field(default_factory=_default_backends)
    openrouter_api_key: str | None = Field(default=None)

    LLM_CONNECT_TIMEOUT: float = Field(default=10.0, description="LLM client connect timeout in seconds.")
    LLM_READ_TIMEOUT: float = Field(default=180.0, description="LLM client read timeout in seconds.")

    rate_limit_per_minute: int = Field(default=600, gt=0)
    rate_limit_per_hour: int = Field(default=10_000, gt=0)

    circuit_failure_threshold: int = Field(default=5, gt=0)
    circuit_reset_timeout_s: float = Field(default=30.0, gt=0)

    retry_max_attempts: int = Field(default=3, ge=1)
    retry_backoff_multiplier: float = Field(default=2.0, ge=1)
    retry_base_delay_ms: int = Field(default=1000, ge=0)
    retry_max_delay_ms: int = Field(default=30_000, ge=0)

    history_size: int = Field(default=10, gt=0)
    default_context_tier: str = Field(default="enriched")
    chars_per_token: float = Field(default=3.5, gt=0)
    context_min_mandatory_tokens: int = Field(default=64, ge=1)
    quality_min_length: int = Field(default=500, ge=0)
    generation_timeout_s: float | None = Field(default=None)

    template_dir: Path = Field(default=Path(__file__).parent.parent / "services" / "prompt_templates")

    cors_allowed_origins: list[str] = Field(
        default_factory=lambda: list(DEFAULT_CORS_ORIGINS),  # Use a copy of the default list
    )

    model_config = {
        "env_file": ".env",
        "protected_namespaces": ("settings_",),
        "env_prefix": "",  # No prefix for environment variables
        "extra": "ignore",  # Ignore extra fields
    }

    @field_validator("cors_allowed_origins", mode="before")  # type: ignore
    @classmethod
    def assemble_cors_origins(cls, v: str | list[str] | None) -> list[str]:
        """Assembles the list of CORS allowed origins.

        If 'v' is a string, it splits it by commas. If 'v' is already a list,
        it's used directly. Otherwise, returns the default list of origins.
        """
        if isinstance(v, str) and v:
            return [origin.strip() for origin in v.split(",")]
        elif isinstance(v, list):
            return v
        return list(DEFAULT_CORS_ORIGINS)

    @field_validator("default_context_tier")
    @classmethod
    def check_context_tier(cls, v: str) -> str:
        tier = v.strip().lower()
        if tier not in CONTEXT_TIERS:
            raise ValueError(f"default_context_tier must be one of {', '.join(CONTEXT_TIERS)}, got '{v}'")
        return tier

    def retry_policy(self) -> RetryPolicy:
        return RetryPolicy(
            max_retries=self.retry_max_attempts,
            backoff_multiplier=self.retry_backoff_multiplier,
            base_delay_ms=self.retry_base_delay_ms,
            max_delay_ms=self.retry_max_delay_ms,
        )

    def rate_limit_config(self) -> RateLimitConfig:
        return RateLimitConfig(
            requests_per_minute=self.rate_limit_per_minute,
            requests_per_hour=self.rate_limit_per_hour,
        )

    def circuit_breaker_config(self) -> CircuitBreakerConfig:
        return CircuitBreakerConfig(
            failure_threshold=self.circuit_failure_threshold,
            reset_timeout_s=self.circuit_reset_timeout_s,
        )


settings = Settings()
