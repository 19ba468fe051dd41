"""Prompt template catalogue and prompt rendering.

Templates are data: one JSON document per template under ``prompt_templates/``.
The registry only indexes them; selection lives in ``prompt_selector``.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path

import jinja2
from async_lru import alru_cache
from jinja2 import meta
from pydantic import ValidationError

from docgen.core.exceptions import ConfigurationError
from docgen.models.generation_models import ChatMessage
from docgen.models.generation_models import PromptTemplate

logger = logging.getLogger(__name__)

# Plain-text prompts: no HTML escaping, unknown placeholders render empty.
env = jinja2.Environment(autoescape=False, keep_trailing_newline=True)

STAKEHOLDER_KEYWORDS = ("stakeholder", "user", "customer", "sponsor", "team", "role")
BUSINESS_KEYWORDS = ("business", "domain", "industry", "market", "customer", "revenue", "budget")
TECHNICAL_KEYWORDS = ("technology", "technical", "system", "architecture", "platform", "api", "database")


def validate_template(template: PromptTemplate) -> list[str]:
    """Return the problems that make a template unusable (empty list when valid)."""
    errors: list[str] = []
    if not template.id.strip():
        errors.append("Template ID is required")
    if not template.document_type.strip():
        errors.append("Document type is required")
    if not template.category.strip():
        errors.append("Category is required")
    if not template.system_prompt.strip():
        errors.append("System prompt is required")
    if not template.user_prompt_template.strip():
        errors.append("User prompt template is required")
    else:
        try:
            env.parse(template.user_prompt_template)
        except jinja2.TemplateSyntaxError as e:
            errors.append(f"User prompt template does not parse: {e.message} (line {e.lineno})")
    return errors


class PromptRegistry:
    """Read-mostly index of prompt templates by id, document type, category and tag."""

    def __init__(self, templates: Iterable[PromptTemplate] = ()):
        self._templates: dict[str, PromptTemplate] = {}
        self._by_category: dict[str, list[str]] = defaultdict(list)
        for template in templates:
            self.register(template)

    @classmethod
    async def from_directory(cls, directory: Path) -> PromptRegistry:
        templates = await load_template_catalogue(Path(directory))
        registry = cls(templates)
        logger.info("Prompt registry loaded %d template(s) from %s", len(registry), directory)
        return registry

    def register(self, template: PromptTemplate) -> None:
        problems = validate_template(template)
        if problems:
            raise ConfigurationError(f"Invalid prompt template '{template.id}': {'; '.join(problems)}")

        previous = self._templates.get(template.id)
        if previous is not None:
            self._by_category[previous.category].remove(previous.id)
            logger.debug("Replacing prompt template '%s' (v%s -> v%s)", template.id, previous.version, template.version)
        self._templates[template.id] = template
        self._by_category[template.category].append(template.id)

    def get(self, template_id: str) -> PromptTemplate | None:
        return self._templates.get(template_id)

    def get_by_document_type(self, document_type: str) -> PromptTemplate | None:
        for template in self._templates.values():
            if template.document_type == document_type:
                return template
        return None

    def get_by_category(self, category: str) -> list[PromptTemplate]:
        return [self._templates[tid] for tid in self._by_category.get(category, [])]

    def search_by_tags(self, tags: Iterable[str]) -> list[PromptTemplate]:
        wanted = set(tags)
        return [t for t in self._templates.values() if wanted & t.tags]

    def categories(self) -> list[str]:
        return sorted(c for c, ids in self._by_category.items() if ids)

    def document_types(self) -> list[str]:
        return sorted({t.document_type for t in self._templates.values()})

    def snapshot(self) -> tuple[PromptTemplate, ...]:
        return tuple(self._templates.values())

    def __len__(self) -> int:
        return len(self._templates)

    def __contains__(self, template_id: object) -> bool:
        return template_id in self._templates


@alru_cache(maxsize=4)
async def load_template_catalogue(directory: Path) -> tuple[PromptTemplate, ...]:
    """Read every ``*.json`` template under ``directory``, skipping unreadable ones."""
    if not directory.is_dir():
        raise ConfigurationError(f"Prompt template directory not found: {directory}")

    def _sync_read(path: Path) -> PromptTemplate:
        return PromptTemplate.model_validate_json(path.read_text(encoding="utf-8"))

    templates = []
    for path in sorted(directory.glob("*.json")):
        try:
            templates.append(await asyncio.to_thread(_sync_read, path))
        except (OSError, ValidationError) as e:
            logger.warning("Skipping unreadable prompt template %s: %s", path.name, e)
    return tuple(templates)


def extract_context_lines(project_context: str, keywords: Iterable[str]) -> str:
    """Pick the project-context lines that mention any of ``keywords``."""
    keywords = tuple(k.lower() for k in keywords)
    lines = [line for line in project_context.splitlines() if any(k in line.lower() for k in keywords)]
    return "\n".join(lines)


def render_prompt(
    template: PromptTemplate,
    project_context: str,
    document_type: str | None = None,
    custom_variables: dict[str, str] | None = None,
) -> list[ChatMessage]:
    """Interpolate the user prompt and pair it with the template's system prompt."""
    variables = {
        "document_type": document_type or template.document_type,
        "project_context": project_context,
        "stakeholders": extract_context_lines(project_context, STAKEHOLDER_KEYWORDS),
        "business_domain": extract_context_lines(project_context, BUSINESS_KEYWORDS),
        "technical_context": extract_context_lines(project_context, TECHNICAL_KEYWORDS),
        "structure_instructions": template.structure_instructions,
        "quality_criteria": template.quality_criteria,
    }
    if custom_variables:
        variables.update(custom_variables)

    try:
        referenced = meta.find_undeclared_variables(env.parse(template.user_prompt_template))
        user_prompt = env.from_string(template.user_prompt_template).render(**variables).strip()
    except jinja2.TemplateError as e:
        raise ConfigurationError(f"Failed to render prompt template '{template.id}': {e}") from e

    # Templates that do not place these blocks themselves get them appended.
    for name in ("structure_instructions", "quality_criteria"):
        block = getattr(template, name)
        if block and name not in referenced:
            user_prompt += "\n\n" + block

    return [
        ChatMessage(role="system", content=template.system_prompt),
        ChatMessage(role="user", content=user_prompt),
    ]
