"""Prompt template selection.

An exact document-type match always wins. Otherwise templates from the requested
category and templates carrying any required tag are scored, and the best one is
picked; if nothing scores, a generic template is synthesized so selection never
fails. The clock is injected, so a fixed registry and fixed criteria always give
the same answer.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime
from datetime import timedelta
from datetime import timezone

from docgen.models.generation_models import PromptTemplate
from docgen.models.generation_models import SelectionCriteria
from docgen.services.prompt_registry import PromptRegistry

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]

EXACT_MATCH_SCORE = 100
CATEGORY_MATCH_SCORE = 50
REQUIRED_TAG_SCORE = 20
PREFERRED_TAG_SCORE = 10
PRIORITY_WEIGHT = 5
TOKEN_FIT_SCORE = 15
RECENCY_SCORE = 5
RECENCY_WINDOW = timedelta(days=30)

GENERIC_SYSTEM_PROMPT = (
    "You are an expert business analyst and technical writer. Create comprehensive, professional "
    "documentation that follows industry best practices and standards."
)
GENERIC_USER_PROMPT = """Based on the project context below, create a detailed {{ document_type }} document:

Project Context:
{{ project_context }}

Ensure your document is:
- Well-structured and professionally formatted
- Comprehensive and actionable
- Tailored to the specific project needs
- Clear and easy to understand"""


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(value: datetime) -> datetime:
    return value if value.tzinfo else value.replace(tzinfo=timezone.utc)


@dataclass(frozen=True)
class Selection:
    template: PromptTemplate
    score: int
    fallback: bool = False


class PromptSelector:
    def __init__(self, registry: PromptRegistry, clock: Clock = utc_now):
        self.registry = registry
        self.clock = clock

    def select(self, criteria: SelectionCriteria) -> Selection:
        exact = self.registry.get_by_document_type(criteria.document_type)
        if exact is not None:
            logger.debug("Exact template match for '%s': %s", criteria.document_type, exact.id)
            return Selection(template=exact, score=EXACT_MATCH_SCORE)

        candidates: dict[str, PromptTemplate] = {}
        if criteria.category:
            for template in self.registry.get_by_category(criteria.category):
                candidates.setdefault(template.id, template)
        if criteria.required_tags:
            for template in self.registry.search_by_tags(criteria.required_tags):
                candidates.setdefault(template.id, template)
        if criteria.min_priority is not None:
            candidates = {tid: t for tid, t in candidates.items() if t.priority >= criteria.min_priority}

        now = self.clock()
        scored = [(self.score(t, criteria, now), t) for t in candidates.values()]
        scored = [(s, t) for s, t in scored if s > 0]
        if scored:
            scored.sort(key=lambda st: (-st[0], -_as_utc(st[1].last_updated).timestamp(), st[1].id))
            best_score, best = scored[0]
            logger.debug(
                "Selected template %s for '%s' with score %d out of %d candidate(s)",
                best.id,
                criteria.document_type,
                best_score,
                len(scored),
            )
            return Selection(template=best, score=best_score)

        logger.info("No prompt template matches '%s'; using generic fallback", criteria.document_type)
        return Selection(template=self.generic_template(criteria.document_type), score=0, fallback=True)

    def score(self, template: PromptTemplate, criteria: SelectionCriteria, now: datetime | None = None) -> int:
        now = now or self.clock()
        score = 0
        if template.document_type == criteria.document_type:
            score += EXACT_MATCH_SCORE
        if criteria.category and template.category == criteria.category:
            score += CATEGORY_MATCH_SCORE
        score += REQUIRED_TAG_SCORE * sum(1 for tag in criteria.required_tags if tag in template.tags)
        score += PREFERRED_TAG_SCORE * sum(1 for tag in criteria.preferred_tags if tag in template.tags)
        score += PRIORITY_WEIGHT * template.priority
        if criteria.max_tokens is not None and template.max_tokens <= criteria.max_tokens:
            score += TOKEN_FIT_SCORE
        if _as_utc(now) - _as_utc(template.last_updated) < RECENCY_WINDOW:
            score += RECENCY_SCORE
        return score

    def generic_template(self, document_type: str) -> PromptTemplate:
        return PromptTemplate(
            id=f"generic-{document_type}",
            document_type=document_type,
            category="generic",
            tags=frozenset({"generic"}),
            priority=1,
            max_tokens=2000,
            system_prompt=GENERIC_SYSTEM_PROMPT,
            user_prompt_template=GENERIC_USER_PROMPT,
            structure_instructions="Structure your document with clear sections, headings, and logical flow.",
            quality_criteria="Ensure high quality, accuracy, and professional presentation.",
            version="1.0.0",
            last_updated=self.clock(),
        )
