from datetime import datetime
from datetime import timezone

import pytest

from docgen.models.generation_models import BackendResponse
from docgen.models.generation_models import CapabilityDescriptor
from docgen.models.generation_models import PromptTemplate
from docgen.models.generation_models import TokenUsage

FIXED_NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Monotonic clock that only moves when told to."""

    def __init__(self, start: float = 1000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeSleep:
    """Records requested delays and advances the paired clock instead of sleeping."""

    def __init__(self, clock: FakeClock | None = None):
        self.clock = clock
        self.delays: list[float] = []

    async def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        if self.clock is not None:
            self.clock.advance(seconds)


class FakeBackend:
    """Scripted ChatBackend: each call pops the next outcome (string or exception)."""

    def __init__(self, backend_id: str = "fake", max_context_tokens: int = 8000, outcomes=None, is_available: bool = True):
        self.capability = CapabilityDescriptor(
            backend_id=backend_id,
            max_context_tokens=max_context_tokens,
            is_available=is_available,
        )
        self.outcomes = list(outcomes or [])
        self.calls: list[tuple[list, int]] = []

    @property
    def backend_id(self) -> str:
        return self.capability.backend_id

    async def complete(self, messages, max_response_tokens):
        self.calls.append((messages, max_response_tokens))
        outcome = self.outcomes.pop(0) if self.outcomes else "# Document\n\nGenerated content."
        if isinstance(outcome, BaseException):
            raise outcome
        return BackendResponse(
            content=outcome,
            backend_id=self.backend_id,
            model="fake-model",
            usage=TokenUsage(prompt_tokens=10, completion_tokens=20, total_tokens=30),
        )


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def fake_sleep(clock):
    return FakeSleep(clock)


@pytest.fixture
def make_backend():
    def _make_backend(backend_id: str = "fake", max_context_tokens: int = 8000, outcomes=None, is_available: bool = True):
        return FakeBackend(backend_id, max_context_tokens, outcomes, is_available)

    return _make_backend


# Fixture factory to create prompt templates with sensible defaults
@pytest.fixture
def make_template():
    def _make_template(**overrides) -> PromptTemplate:
        fields = {
            "id": "tpl",
            "document_type": "doc",
            "category": "general",
            "tags": frozenset(),
            "priority": 1,
            "max_tokens": 2000,
            "system_prompt": "You are a technical writer.",
            "user_prompt_template": "Write a {{ document_type }} for:\n{{ project_context }}",
            "structure_instructions": "",
            "quality_criteria": "",
            "version": "1.0.0",
            "last_updated": datetime(2026, 1, 1, tzinfo=timezone.utc),
        }
        fields.update(overrides)
        return PromptTemplate(**fields)

    return _make_template
