from datetime import datetime
from datetime import timezone

import pytest

from docgen.core.exceptions import ContextOverflow
from docgen.models.generation_models import CapabilityDescriptor
from docgen.models.generation_models import ContextFragment
from docgen.models.generation_models import ContextTier
from docgen.services.context_budget import TRUNCATION_MARKER
from docgen.services.context_budget import ContextBudgetAllocator
from docgen.services.context_budget import estimate_tokens


@pytest.fixture
def allocator():
    return ContextBudgetAllocator(chars_per_token=3.5, min_mandatory_tokens=64, default_tier=ContextTier.ENRICHED)


def _capability(max_context_tokens: int) -> CapabilityDescriptor:
    return CapabilityDescriptor(backend_id="test", max_context_tokens=max_context_tokens)


def test_estimate_tokens_rounds_up():
    assert estimate_tokens("") == 0
    assert estimate_tokens("a" * 7) == 2
    assert estimate_tokens("a" * 8) == 3


def test_budget_for_each_tier(allocator):
    capability = _capability(8000)
    assert allocator.budget_for(capability, ContextTier.CORE) == 2400
    assert allocator.budget_for(capability, ContextTier.ENRICHED) == 4800
    assert allocator.budget_for(capability, ContextTier.FULL) == 7200


def test_allocate_uses_default_tier(allocator):
    built = allocator.allocate(_capability(8000), [ContextFragment(source="p", text="short", mandatory=True)])
    assert built.tier is ContextTier.ENRICHED
    assert built.budget_tokens == 4800
    assert built.text == "short"
    assert built.sources_counted == 1
    assert built.truncated is False


def test_fragments_ordered_by_priority_then_recency(allocator):
    older = datetime(2026, 1, 1, tzinfo=timezone.utc)
    newer = datetime(2026, 6, 1, tzinfo=timezone.utc)
    fragments = [
        ContextFragment(source="low", text="LOW", priority=1),
        ContextFragment(source="old", text="OLD", priority=5, recency=older),
        ContextFragment(source="new", text="NEW", priority=5, recency=newer),
        ContextFragment(source="project", text="PROJECT", mandatory=True),
    ]
    built = allocator.allocate(_capability(8000), fragments, ContextTier.FULL)
    assert built.text == "PROJECT\n\nNEW\n\nOLD\n\nLOW"
    assert built.sources_counted == 4
    assert built.skipped_sources == []


def test_large_mandatory_fragment_is_truncated_to_budget(allocator):
    project = "x" * 30_000
    built = allocator.allocate(_capability(8000), [ContextFragment(source="project", text=project, mandatory=True)])
    assert built.truncated is True
    assert built.text.endswith(TRUNCATION_MARKER)
    assert built.estimated_tokens <= 4800
    assert estimate_tokens(built.text) == built.estimated_tokens


def test_accumulation_stops_at_first_fragment_that_does_not_fit(allocator):
    # core tier of a 1000-token window is 300 tokens (1050 chars)
    fragments = [
        ContextFragment(source="project", text="p" * 350, mandatory=True),
        ContextFragment(source="big", text="b" * 700, priority=5),
        ContextFragment(source="small", text="s" * 10, priority=1),
    ]
    built = allocator.allocate(_capability(1000), fragments, ContextTier.CORE)
    assert built.text == "p" * 350
    assert built.sources_counted == 1
    assert built.skipped_sources == ["big", "small"]
    assert built.estimated_tokens <= built.budget_tokens


def test_empty_fragments_are_ignored(allocator):
    fragments = [
        ContextFragment(source="project", text="context", mandatory=True),
        ContextFragment(source="blank", text="   \n"),
    ]
    built = allocator.allocate(_capability(8000), fragments)
    assert built.text == "context"
    assert built.sources_counted == 1


def test_overflow_when_mandatory_minimum_exceeds_core_tier(allocator):
    # core tier of a 100-token window is 30 tokens; the mandatory minimum is 64
    fragment = ContextFragment(source="project", text="z" * 1000, mandatory=True)
    with pytest.raises(ContextOverflow) as exc:
        allocator.allocate(_capability(100), [fragment], ContextTier.FULL)
    assert exc.value.source == "project"
    assert exc.value.budget_tokens == 30
    assert exc.value.deficit_tokens == 34
    assert exc.value.deficit_chars == 119
    assert "project" in str(exc.value)


def test_small_mandatory_fragment_fits_tiny_window(allocator):
    fragment = ContextFragment(source="project", text="tiny project", mandatory=True)
    built = allocator.allocate(_capability(100), [fragment], ContextTier.CORE)
    assert built.text == "tiny project"
    assert built.truncated is False


def test_fragment_min_tokens_overrides_default(allocator):
    fragment = ContextFragment(source="project", text="z" * 1000, mandatory=True, min_tokens=10)
    built = allocator.allocate(_capability(100), [fragment], ContextTier.CORE)
    assert built.truncated is True
    assert built.estimated_tokens <= 30


def test_later_mandatory_fragments_keep_room(allocator):
    # enriched tier of an 8000-token window is 4800 tokens (16800 chars)
    fragments = [
        ContextFragment(source="project-description", text="x" * 100_000, mandatory=True),
        ContextFragment(source="scope", text="s" * 100, mandatory=True),
    ]
    built = allocator.allocate(_capability(8000), fragments)

    assert built.truncated is True
    assert built.sources_counted == 2
    assert built.text.endswith(TRUNCATION_MARKER + "\n\n" + "s" * 100)
    assert len(built.text) == 16800
    assert built.estimated_tokens == 4800


def test_later_mandatory_fragment_truncated_to_its_minimum(allocator):
    # core tier of a 1000-token window is 300 tokens (1050 chars); the minimum is 64 tokens (224 chars)
    fragments = [
        ContextFragment(source="a-project", text="p" * 2000, mandatory=True, priority=1),
        ContextFragment(source="b-scope", text="s" * 2000, mandatory=True),
    ]
    built = allocator.allocate(_capability(1000), fragments, ContextTier.CORE)

    first, second = built.text.split("\n\n")
    assert first.endswith(TRUNCATION_MARKER)
    assert len(first) == 1050 - 2 - 224
    assert second.startswith("s")
    assert len(second) == 224
    assert built.estimated_tokens <= 300


def test_overflow_reports_core_budget_for_combined_minimums(allocator):
    # two 64-token minimums need 128 tokens; the core tier of a 400-token window is 120
    fragments = [
        ContextFragment(source="project", text="z" * 1000, mandatory=True),
        ContextFragment(source="scope", text="y" * 1000, mandatory=True),
    ]
    with pytest.raises(ContextOverflow) as exc:
        allocator.allocate(_capability(400), fragments, ContextTier.FULL)
    assert exc.value.source == "scope"
    assert exc.value.budget_tokens == 120
    assert exc.value.deficit_tokens == 8
    assert "(120 tokens)" in str(exc.value)
