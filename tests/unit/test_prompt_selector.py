from datetime import datetime
from datetime import timedelta
from datetime import timezone

import pytest

from docgen.models.generation_models import SelectionCriteria
from docgen.services.prompt_registry import PromptRegistry
from docgen.services.prompt_selector import PromptSelector

NOW = datetime(2026, 10, 19, 12, 0, tzinfo=timezone.utc)
LONG_AGO = datetime(2025, 1, 1, tzinfo=timezone.utc)


@pytest.fixture
def selector_for():
    def _selector_for(*templates):
        return PromptSelector(PromptRegistry(templates), clock=lambda: NOW)

    return _selector_for


def test_exact_document_type_wins(selector_for, make_template):
    selector = selector_for(
        make_template(id="charter", document_type="project-charter", category="pmbok", last_updated=LONG_AGO),
        make_template(id="other", document_type="other", category="pmbok", priority=9, last_updated=LONG_AGO),
    )
    selection = selector.select(SelectionCriteria(document_type="project-charter", category="pmbok"))
    assert selection.template.id == "charter"
    assert selection.score == 100
    assert selection.fallback is False


def test_category_candidates_ranked_by_priority(selector_for, make_template):
    selector = selector_for(
        make_template(id="a", document_type="x", category="pmbok", priority=1, last_updated=LONG_AGO),
        make_template(id="b", document_type="y", category="pmbok", priority=2, last_updated=LONG_AGO),
        make_template(id="c", document_type="z", category="other", priority=9, last_updated=LONG_AGO),
    )
    selection = selector.select(SelectionCriteria(document_type="risk-register", category="pmbok"))
    assert selection.template.id == "b"
    assert selection.score == 60


def test_required_tag_candidates_are_unioned_with_category(selector_for, make_template):
    selector = selector_for(
        make_template(id="cat", document_type="x", category="pmbok", last_updated=LONG_AGO),
        make_template(
            id="tagged",
            document_type="y",
            category="agile",
            tags=frozenset({"backlog", "scrum"}),
            priority=2,
            last_updated=LONG_AGO,
        ),
    )
    criteria = SelectionCriteria(document_type="sprint-plan", category="pmbok", required_tags=["backlog", "scrum"])
    selection = selector.select(criteria)
    # category: 50 + 5 priority; tags: 2 * 20 + 10 priority
    assert selection.template.id == "cat"
    assert selection.score == 55

    criteria = SelectionCriteria(
        document_type="sprint-plan", category="pmbok", required_tags=["backlog", "scrum"], preferred_tags=["scrum"]
    )
    assert selector.select(criteria).template.id == "tagged"


def test_ties_break_by_recency_then_id(selector_for, make_template):
    older = datetime(2025, 3, 1, tzinfo=timezone.utc)
    newer = datetime(2025, 4, 1, tzinfo=timezone.utc)
    selector = selector_for(
        make_template(id="b-old", document_type="x", category="c", last_updated=older),
        make_template(id="a-new", document_type="y", category="c", last_updated=newer),
        make_template(id="z-new", document_type="z", category="c", last_updated=newer),
    )
    assert selector.select(SelectionCriteria(document_type="q", category="c")).template.id == "a-new"


def test_score_components(selector_for, make_template):
    selector = selector_for()
    template = make_template(
        document_type="doc",
        category="c",
        tags=frozenset({"req", "pref"}),
        priority=2,
        max_tokens=1000,
        last_updated=NOW - timedelta(days=3),
    )
    criteria = SelectionCriteria(
        document_type="doc",
        category="c",
        required_tags=["req", "absent"],
        preferred_tags=["pref"],
        max_tokens=1500,
    )
    # 100 exact + 50 category + 20 tag + 10 preferred + 10 priority + 15 token fit + 5 recent
    assert selector.score(template, criteria) == 210


def test_recency_window_is_thirty_days(selector_for, make_template):
    selector = selector_for()
    criteria = SelectionCriteria(document_type="none")
    recent = make_template(priority=0, last_updated=NOW - timedelta(days=29))
    stale = make_template(priority=0, last_updated=NOW - timedelta(days=31))
    assert selector.score(recent, criteria) == 5
    assert selector.score(stale, criteria) == 0


def test_naive_last_updated_treated_as_utc(selector_for, make_template):
    selector = selector_for()
    template = make_template(priority=0, last_updated=datetime(2026, 10, 18))
    assert selector.score(template, SelectionCriteria(document_type="none")) == 5


def test_min_priority_filters_candidates(selector_for, make_template):
    selector = selector_for(
        make_template(id="low", document_type="x", category="c", priority=1, last_updated=LONG_AGO),
        make_template(id="high", document_type="y", category="c", priority=3, last_updated=LONG_AGO),
    )
    assert selector.select(SelectionCriteria(document_type="q", category="c", min_priority=3)).template.id == "high"

    selection = selector.select(SelectionCriteria(document_type="q", category="c", min_priority=5))
    assert selection.fallback is True


def test_generic_fallback_when_nothing_matches(selector_for, make_template):
    registry_template = make_template(id="only", document_type="x", category="c")
    selector = selector_for(registry_template)

    selection = selector.select(SelectionCriteria(document_type="risk-register", category="missing"))
    assert selection.fallback is True
    assert selection.score == 0
    assert selection.template.id == "generic-risk-register"
    assert selection.template.document_type == "risk-register"
    assert "{{ project_context }}" in selection.template.user_prompt_template
    assert len(selector.registry) == 1


def test_selection_is_deterministic(selector_for, make_template):
    selector = selector_for(
        make_template(id="a", document_type="x", category="c", last_updated=LONG_AGO),
        make_template(id="b", document_type="y", category="c", last_updated=LONG_AGO),
    )
    criteria = SelectionCriteria(document_type="q", category="c")
    picks = {selector.select(criteria).template.id for _ in range(5)}
    assert picks == {"a"}
