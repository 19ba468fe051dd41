from datetime import datetime
from datetime import timezone
from enum import Enum
from typing import Any

from pydantic import BaseModel
from pydantic import ConfigDict
from pydantic import Field

from docgen.core.config import RetryPolicy
from docgen.core.exceptions import ErrorKind


class ContextTier(str, Enum):
    """Share of a backend's context window handed to project context."""

    CORE = "core"
    ENRICHED = "enriched"
    FULL = "full"

    @property
    def percent(self) -> int:
        return _TIER_PERCENTS[self]


# The remaining 10% of the window is headroom for the template and the response.
_TIER_PERCENTS = {
    ContextTier.CORE: 30,
    ContextTier.ENRICHED: 60,
    ContextTier.FULL: 90,
}


class ChatMessage(BaseModel):
    role: str
    content: str


class CapabilityDescriptor(BaseModel):
    """Static facts about one backend, refreshed from configuration."""

    model_config = ConfigDict(frozen=True)

    backend_id: str
    max_context_tokens: int = Field(gt=0)
    cost_per_token: float = Field(default=0.0, ge=0)
    is_available: bool = True

    def estimated_cost(self, tokens: int) -> float:
        return tokens * self.cost_per_token


class ContextFragment(BaseModel):
    """One piece of project context offered to the allocator."""

    source: str
    text: str
    priority: int = 0
    recency: datetime | None = None
    mandatory: bool = False
    min_tokens: int | None = Field(default=None, ge=1)


class BuiltContext(BaseModel):
    tier: ContextTier
    text: str
    sources_counted: int
    estimated_tokens: int
    budget_tokens: int
    skipped_sources: list[str] = Field(default_factory=list)
    truncated: bool = False


class PromptTemplate(BaseModel):
    """A versioned system/user instruction pair for one class of document."""

    model_config = ConfigDict(frozen=True)

    id: str
    document_type: str
    category: str
    tags: frozenset[str] = frozenset()
    priority: int = Field(default=1, ge=0)
    max_tokens: int = Field(default=2000, gt=0)
    system_prompt: str
    user_prompt_template: str
    structure_instructions: str = ""
    quality_criteria: str = ""
    version: str = "1.0.0"
    last_updated: datetime


class SelectionCriteria(BaseModel):
    document_type: str
    category: str | None = None
    required_tags: list[str] = Field(default_factory=list)
    preferred_tags: list[str] = Field(default_factory=list)
    max_tokens: int | None = None
    min_priority: int | None = None


class QualityRules(BaseModel):
    min_length: int = Field(default=500, ge=0)
    required_sections: list[str] = Field(default_factory=list)
    forbidden_phrases: list[str] = Field(default_factory=list)
    placeholder_terms: list[str] = Field(
        default_factory=lambda: [
            "lorem ipsum",
            "placeholder",
            "todo",
            "tbd",
            "to be determined",
            "replace this",
        ]
    )


class QualityReport(BaseModel):
    score: int
    warnings: list[str] = Field(default_factory=list)


class GenerationOptions(BaseModel):
    """Every per-request knob, with its default, in one place."""

    category: str | None = None
    required_tags: list[str] = Field(default_factory=list)
    preferred_tags: list[str] = Field(default_factory=list)
    context_tier: ContextTier | None = None
    extra_fragments: list[ContextFragment] = Field(default_factory=list)
    custom_variables: dict[str, str] = Field(default_factory=dict)
    max_response_tokens: int | None = Field(default=None, gt=0)
    retry_policy: RetryPolicy | None = None
    quality_rules: QualityRules | None = None
    timeout_s: float | None = Field(default=None, gt=0)


class GenerationRequest(BaseModel):
    document_type: str = Field(min_length=1)
    raw_project_context: str
    options: GenerationOptions = Field(default_factory=GenerationOptions)


class TokenUsage(BaseModel):
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


class BackendResponse(BaseModel):
    content: str
    backend_id: str
    model: str | None = None
    usage: TokenUsage = Field(default_factory=TokenUsage)


class GenerationMetrics(BaseModel):
    """Prompt-building telemetry for one successful generation."""

    selection_time_ms: float
    context_build_time_ms: float
    prompt_length: int
    context_sources: int
    estimated_tokens: int
    budget_tokens: int


class GenerationResult(BaseModel):
    """Outcome of one generation request, successful or not."""

    content: str = ""
    success: bool
    error: str | None = None
    error_kind: ErrorKind | None = None
    quality_score: int | None = None
    warnings: list[str] = Field(default_factory=list)
    latency_ms: float = 0.0
    template_id: str | None = None
    template_version: str | None = None
    backend_id: str | None = None
    context_tier: ContextTier | None = None
    usage: TokenUsage | None = None
    metrics: GenerationMetrics | None = None
    request_id: str | None = None
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    def summary(self) -> dict[str, Any]:
        return self.model_dump(exclude={"content"}, mode="json")


class GenerationAnalytics(BaseModel):
    total_generations: int = 0
    success_rate: float = 0.0
    average_quality_score: float = 0.0
    average_response_time: float = 0.0
    top_performing_document_types: list[str] = Field(default_factory=list)
    common_warnings: list[str] = Field(default_factory=list)
