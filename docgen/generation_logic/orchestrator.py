import asyncio
import logging
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any
from uuid import uuid4

from docgen.core.config import Settings
from docgen.core.config import settings
from docgen.core.exceptions import CircuitOpenError
from docgen.core.exceptions import ContextOverflow
from docgen.core.exceptions import ErrorKind
from docgen.core.exceptions import GenerationError
from docgen.core.exceptions import NoBackendAvailable
from docgen.core.exceptions import ProviderCallError
from docgen.core.exceptions import TemplateNotFound
from docgen.models.generation_models import ContextFragment
from docgen.models.generation_models import ContextTier
from docgen.models.generation_models import GenerationAnalytics
from docgen.models.generation_models import GenerationMetrics
from docgen.models.generation_models import GenerationOptions
from docgen.models.generation_models import GenerationRequest
from docgen.models.generation_models import GenerationResult
from docgen.models.generation_models import PromptTemplate
from docgen.models.generation_models import QualityRules
from docgen.models.generation_models import SelectionCriteria
from docgen.services.context_budget import ContextBudgetAllocator
from docgen.services.llm import build_backends
from docgen.services.metrics import GenerationHistory
from docgen.services.prompt_registry import PromptRegistry
from docgen.services.prompt_registry import render_prompt
from docgen.services.prompt_selector import PromptSelector
from docgen.services.quality import validate_content_quality
from docgen.services.resilience.resilient_backend import ResilientBackend

__all__ = [
    "GenerationOrchestrator",
    "create_orchestrator",
]

logger = logging.getLogger(__name__)

PROJECT_DESCRIPTION_SOURCE = "project-description"

# Errors after which the next backend in the fallback order is tried.
HAND_OVER_ERRORS = (ContextOverflow, CircuitOpenError, ProviderCallError)


@dataclass
class _Progress:
    """What a generation had resolved before it stopped, for failure reporting."""

    template: PromptTemplate | None = None
    backend_id: str | None = None


class GenerationOrchestrator:
    """Turns (document type, project context) into a GenerationResult.

    Holds no per-request state: backends carry their own resilience state and
    the history store is the only thing written to.
    """

    def __init__(
        self,
        selector: PromptSelector,
        allocator: ContextBudgetAllocator,
        backends: list[ResilientBackend],
        history: GenerationHistory,
        app_settings: Settings = settings,
        timer: Callable[[], float] = time.perf_counter,
    ):
        self.selector = selector
        self.allocator = allocator
        self.backends = backends
        self.history = history
        self._settings = app_settings
        self._timer = timer

    async def generate(self, request: GenerationRequest) -> GenerationResult:
        request_id = str(uuid4())
        progress = _Progress()
        started = self._timer()
        timeout = request.options.timeout_s or self._settings.generation_timeout_s
        logger.info("[%s] Generating '%s' (%d chars of context)", request_id, request.document_type, len(request.raw_project_context))

        try:
            if timeout:
                result = await asyncio.wait_for(self._run(request, request_id, progress), timeout)
            else:
                result = await self._run(request, request_id, progress)
        except GenerationError as e:
            logger.error("[%s] Generation of '%s' failed (%s): %s", request_id, request.document_type, e.kind.value, e)
            result = self._failure(e.kind, str(e), progress)
        except asyncio.TimeoutError:
            logger.error("[%s] Generation of '%s' timed out after %ss", request_id, request.document_type, timeout)
            result = self._failure(ErrorKind.TIMEOUT, f"Generation timed out after {timeout}s", progress)
        except asyncio.CancelledError:
            logger.warning("[%s] Generation of '%s' cancelled", request_id, request.document_type)
            self._record(request, self._failure(ErrorKind.CANCELLED, "Generation cancelled", progress), request_id, started)
            raise
        except Exception as e:
            logger.exception("[%s] Unexpected error generating '%s'", request_id, request.document_type)
            result = self._failure(ErrorKind.UNEXPECTED, f"Unexpected error: {e}", progress)

        return self._record(request, result, request_id, started)

    async def _run(self, request: GenerationRequest, request_id: str, progress: _Progress) -> GenerationResult:
        options = request.options
        selection_started = self._timer()
        template = self._select_template(request.document_type, options)
        selection_ms = self._elapsed_ms(selection_started)
        progress.template = template
        max_response_tokens = options.max_response_tokens or template.max_tokens
        fragments = [
            ContextFragment(source=PROJECT_DESCRIPTION_SOURCE, text=request.raw_project_context, mandatory=True),
            *options.extra_fragments,
        ]

        candidates = [b for b in self.backends if b.capability.is_available]
        if not candidates:
            raise NoBackendAvailable("No backend is available for generation")

        last_error: GenerationError | None = None
        for backend in candidates:
            progress.backend_id = backend.backend_id
            try:
                build_started = self._timer()
                built = self.allocator.allocate(backend.capability, fragments, options.context_tier)
                messages = render_prompt(template, built.text, request.document_type, options.custom_variables)
                metrics = GenerationMetrics(
                    selection_time_ms=selection_ms,
                    context_build_time_ms=self._elapsed_ms(build_started),
                    prompt_length=sum(len(m.content) for m in messages),
                    context_sources=built.sources_counted,
                    estimated_tokens=built.estimated_tokens,
                    budget_tokens=built.budget_tokens,
                )
                logger.debug(
                    "[%s] Calling %s with template %s v%s, %s context %d/%d tokens",
                    request_id,
                    backend.backend_id,
                    template.id,
                    template.version,
                    built.tier.value,
                    built.estimated_tokens,
                    built.budget_tokens,
                )
                response = await backend.complete(messages, max_response_tokens, options.retry_policy)
            except HAND_OVER_ERRORS as e:
                logger.warning("[%s] Backend %s unusable (%s): %s", request_id, backend.backend_id, e.kind.value, e)
                last_error = e
                continue

            report = validate_content_quality(response.content, self._quality_rules(options))
            logger.info(
                "[%s] Generated '%s' via %s: %d chars, quality %d",
                request_id,
                request.document_type,
                backend.backend_id,
                len(response.content),
                report.score,
            )
            return GenerationResult(
                content=response.content,
                success=True,
                quality_score=report.score,
                warnings=report.warnings,
                template_id=template.id,
                template_version=template.version,
                backend_id=backend.backend_id,
                context_tier=built.tier,
                usage=response.usage,
                metrics=metrics,
            )

        raise last_error

    @staticmethod
    def _criteria(document_type: str, options: GenerationOptions) -> SelectionCriteria:
        return SelectionCriteria(
            document_type=document_type,
            category=options.category,
            required_tags=options.required_tags,
            preferred_tags=options.preferred_tags,
            max_tokens=options.max_response_tokens,
        )

    def _select_template(self, document_type: str, options: GenerationOptions) -> PromptTemplate:
        selection = self.selector.select(self._criteria(document_type, options))
        if selection is None or selection.template is None:
            raise TemplateNotFound(f"No prompt template found for document type: {document_type}")
        return selection.template

    def _quality_rules(self, options: GenerationOptions) -> QualityRules:
        return options.quality_rules or QualityRules(min_length=self._settings.quality_min_length)

    @staticmethod
    def _failure(kind: ErrorKind, message: str, progress: _Progress) -> GenerationResult:
        return GenerationResult(
            success=False,
            error=message,
            error_kind=kind,
            template_id=progress.template.id if progress.template else None,
            template_version=progress.template.version if progress.template else None,
            backend_id=progress.backend_id,
        )

    def _elapsed_ms(self, started: float) -> float:
        return (self._timer() - started) * 1000

    def _record(self, request: GenerationRequest, result: GenerationResult, request_id: str, started: float) -> GenerationResult:
        result.request_id = request_id
        result.latency_ms = self._elapsed_ms(started)
        self.history.record(request.document_type, result)
        return result

    # --- reporting --------------------------------------------------------

    def available_document_types(self) -> list[str]:
        return self.selector.registry.document_types()

    def preview_prompt(self, request: GenerationRequest) -> dict[str, Any]:
        """Select, budget and render for the first available backend without calling it."""
        options = request.options
        selection = self.selector.select(self._criteria(request.document_type, options))
        backend = next((b for b in self.backends if b.capability.is_available), None)
        if backend is None:
            raise NoBackendAvailable("No backend is available for generation")
        fragments = [
            ContextFragment(source=PROJECT_DESCRIPTION_SOURCE, text=request.raw_project_context, mandatory=True),
            *options.extra_fragments,
        ]
        built = self.allocator.allocate(backend.capability, fragments, options.context_tier)
        messages = render_prompt(selection.template, built.text, request.document_type, options.custom_variables)
        return {
            "template_id": selection.template.id,
            "template_version": selection.template.version,
            "score": selection.score,
            "fallback": selection.fallback,
            "backend_id": backend.backend_id,
            "context": built.model_dump(exclude={"text"}, mode="json"),
            "prompt_length": sum(len(m.content) for m in messages),
            "messages": [m.model_dump() for m in messages],
        }

    def backend_status(self) -> list[dict[str, Any]]:
        return [backend.status() for backend in self.backends]

    def analytics(self) -> GenerationAnalytics:
        return self.history.analytics()


async def create_orchestrator(
    app_settings: Settings = settings,
    registry: PromptRegistry | None = None,
    backends: list[ResilientBackend] | None = None,
) -> GenerationOrchestrator:
    """Wire the collaborators once; callers share the returned instance."""
    if registry is None:
        registry = await PromptRegistry.from_directory(app_settings.template_dir)
    if backends is None:
        backends = [ResilientBackend.from_settings(b, app_settings) for b in build_backends(app_settings)]
    return GenerationOrchestrator(
        selector=PromptSelector(registry),
        allocator=ContextBudgetAllocator(
            chars_per_token=app_settings.chars_per_token,
            min_mandatory_tokens=app_settings.context_min_mandatory_tokens,
            default_tier=ContextTier(app_settings.default_context_tier),
        ),
        backends=backends,
        history=GenerationHistory(app_settings.history_size),
        app_settings=app_settings,
    )
