"""Capability-aware context budgeting.

A backend's context window is split into fixed tiers (30% core, 60% enriched,
90% full). The allocator packs project-context fragments into the chosen tier:
the mandatory project description first, then the remaining fragments by
priority and recency until the next one no longer fits.
"""

from __future__ import annotations

import logging
import math
from collections.abc import Iterable

from docgen.core.config import settings
from docgen.core.exceptions import ContextOverflow
from docgen.models.generation_models import BuiltContext
from docgen.models.generation_models import CapabilityDescriptor
from docgen.models.generation_models import ContextFragment
from docgen.models.generation_models import ContextTier

logger = logging.getLogger(__name__)

FRAGMENT_SEPARATOR = "\n\n"
TRUNCATION_MARKER = "\n[...truncated]"


def estimate_tokens(text: str, chars_per_token: float = 3.5) -> int:
    """Approximate token count used for every budget decision."""
    if not text:
        return 0
    return math.ceil(len(text) / chars_per_token)


class ContextBudgetAllocator:
    """Builds a bounded context string for one backend capability.

    The allocator holds configuration only; ``allocate`` is a pure function of
    its arguments and is safe to call concurrently.
    """

    def __init__(
        self,
        chars_per_token: float | None = None,
        min_mandatory_tokens: int | None = None,
        default_tier: ContextTier | None = None,
    ):
        self.chars_per_token = chars_per_token or settings.chars_per_token
        self.min_mandatory_tokens = min_mandatory_tokens or settings.context_min_mandatory_tokens
        self.default_tier = default_tier or ContextTier(settings.default_context_tier)

    def estimate_tokens(self, text: str) -> int:
        return estimate_tokens(text, self.chars_per_token)

    def budget_for(self, capability: CapabilityDescriptor, tier: ContextTier) -> int:
        return capability.max_context_tokens * tier.percent // 100

    def allocate(
        self,
        capability: CapabilityDescriptor,
        fragments: Iterable[ContextFragment],
        tier: ContextTier | None = None,
    ) -> BuiltContext:
        tier = tier or self.default_tier
        budget = self.budget_for(capability, tier)
        fragments = [f for f in fragments if f.text.strip()]

        mandatory = sorted((f for f in fragments if f.mandatory), key=self._rank)
        optional = sorted((f for f in fragments if not f.mandatory), key=self._rank)

        core_budget = self._check_mandatory_fits(capability, mandatory)

        parts: list[str] = []
        truncated = False
        for idx, fragment in enumerate(mandatory):
            # Later mandatory fragments keep room for at least their minimum size.
            reserved = sum(len(FRAGMENT_SEPARATOR) + self._min_chars(f) for f in mandatory[idx + 1 :])
            if len(self._join([*parts, fragment.text])) + reserved <= self._budget_chars(budget):
                parts.append(fragment.text)
                continue
            allowed = self._chars_left(parts, budget) - reserved
            if allowed <= 0:
                deficit_chars = self._min_chars(fragment) - allowed
                raise ContextOverflow(
                    fragment.source,
                    math.ceil(deficit_chars / self.chars_per_token),
                    deficit_chars,
                    core_budget,
                )
            parts.append(self._truncate(fragment.text, allowed))
            truncated = True
            logger.info(
                "Truncated mandatory fragment '%s' from %d to %d chars to fit %s tier (%d tokens) of %s",
                fragment.source,
                len(fragment.text),
                allowed,
                tier.value,
                budget,
                capability.backend_id,
            )

        skipped: list[str] = []
        for idx, fragment in enumerate(optional):
            if self.estimate_tokens(self._join([*parts, fragment.text])) > budget:
                skipped = [f.source for f in optional[idx:]]
                logger.debug(
                    "Budget of %d tokens reached at fragment '%s'; skipping %d fragment(s)",
                    budget,
                    fragment.source,
                    len(skipped),
                )
                break
            parts.append(fragment.text)

        text = self._join(parts)
        built = BuiltContext(
            tier=tier,
            text=text,
            sources_counted=len(parts),
            estimated_tokens=self.estimate_tokens(text),
            budget_tokens=budget,
            skipped_sources=skipped,
            truncated=truncated,
        )
        logger.debug(
            "Built %s context for %s: %d/%d tokens from %d source(s)",
            tier.value,
            capability.backend_id,
            built.estimated_tokens,
            budget,
            built.sources_counted,
        )
        return built

    # ------------------------------------------------------------------

    def _check_mandatory_fits(self, capability: CapabilityDescriptor, mandatory: list[ContextFragment]) -> int:
        """Raise ContextOverflow when the mandatory minimum cannot fit the core tier.

        Returns the core tier budget in tokens.
        """
        core_budget = self.budget_for(capability, ContextTier.CORE)
        required = 0
        for fragment in mandatory:
            required += self._min_tokens(fragment)
            if required > core_budget:
                deficit_tokens = required - core_budget
                logger.warning(
                    "Mandatory fragment '%s' cannot fit the core tier of %s (%d tokens, deficit %d)",
                    fragment.source,
                    capability.backend_id,
                    core_budget,
                    deficit_tokens,
                )
                raise ContextOverflow(
                    fragment.source,
                    deficit_tokens,
                    math.ceil(deficit_tokens * self.chars_per_token),
                    core_budget,
                )
        return core_budget

    def _min_tokens(self, fragment: ContextFragment) -> int:
        return min(self.estimate_tokens(fragment.text), fragment.min_tokens or self.min_mandatory_tokens)

    def _min_chars(self, fragment: ContextFragment) -> int:
        return min(len(fragment.text), math.ceil(self._min_tokens(fragment) * self.chars_per_token))

    def _budget_chars(self, budget: int) -> int:
        return math.floor(budget * self.chars_per_token)

    def _rank(self, fragment: ContextFragment) -> tuple[int, float, str]:
        recency = -fragment.recency.timestamp() if fragment.recency else math.inf
        return (-fragment.priority, recency, fragment.source)

    def _chars_left(self, parts: list[str], budget: int) -> int:
        used = len(self._join(parts))
        if parts:
            used += len(FRAGMENT_SEPARATOR)
        return self._budget_chars(budget) - used

    @staticmethod
    def _truncate(text: str, allowed: int) -> str:
        if allowed <= len(TRUNCATION_MARKER):
            return text[:allowed]
        return text[: allowed - len(TRUNCATION_MARKER)].rstrip() + TRUNCATION_MARKER

    @staticmethod
    def _join(parts: list[str]) -> str:
        return FRAGMENT_SEPARATOR.join(parts)
