"""Heuristic quality scoring of generated content (0-100)."""

import re

from docgen.models.generation_models import QualityReport
from docgen.models.generation_models import QualityRules

SHORT_CONTENT_PENALTY = 20
MISSING_SECTION_PENALTY = 15
FORBIDDEN_PHRASE_PENALTY = 10
PLACEHOLDER_PENALTY = 5
NO_HEADING_PENALTY = 10

HEADING_PATTERN = re.compile(r"^#+\s", re.MULTILINE)


def validate_content_quality(content: str, rules: QualityRules | None = None) -> QualityReport:
    """Score ``content`` against ``rules``; every deduction adds a warning."""
    rules = rules or QualityRules()
    score = 100
    warnings: list[str] = []
    lowered = content.lower()

    if len(content) < rules.min_length:
        warnings.append(f"Content is shorter than expected ({len(content)} < {rules.min_length} characters)")
        score -= SHORT_CONTENT_PENALTY

    for section in rules.required_sections:
        if section.lower() not in lowered:
            warnings.append(f"Missing required section: {section}")
            score -= MISSING_SECTION_PENALTY

    for phrase in rules.forbidden_phrases:
        if phrase.lower() in lowered:
            warnings.append(f"Contains forbidden phrase: {phrase}")
            score -= FORBIDDEN_PHRASE_PENALTY

    for term in rules.placeholder_terms:
        if term.lower() in lowered:
            warnings.append(f"Contains generic placeholder: {term}")
            score -= PLACEHOLDER_PENALTY

    if not HEADING_PATTERN.search(content):
        warnings.append("Content lacks proper markdown headers")
        score -= NO_HEADING_PENALTY

    return QualityReport(score=max(0, score), warnings=warnings)
