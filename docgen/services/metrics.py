"""Bounded generation history and on-demand analytics."""

from __future__ import annotations

import heapq
import itertools
import logging
from collections import Counter
from collections import deque
from operator import itemgetter

from docgen.models.generation_models import GenerationAnalytics
from docgen.models.generation_models import GenerationResult

logger = logging.getLogger(__name__)

TOP_N = 5


class GenerationHistory:
    """Keeps the last ``capacity`` results per document type.

    Each document type gets a ``deque(maxlen=capacity)``; older entries fall off
    silently. Only the orchestrator appends. Entries carry a recording sequence
    number so the unfiltered history can be merged back into recording order.
    """

    def __init__(self, capacity: int = 10):
        if capacity <= 0:
            raise ValueError("History capacity must be positive")
        self.capacity = capacity
        self._entries: dict[str, deque[tuple[int, GenerationResult]]] = {}
        self._sequence = itertools.count()

    def record(self, document_type: str, result: GenerationResult) -> None:
        entries = self._entries.setdefault(document_type, deque(maxlen=self.capacity))
        entries.append((next(self._sequence), result))
        logger.debug(
            "Recorded %s result for '%s' (%d/%d kept)",
            "successful" if result.success else "failed",
            document_type,
            len(entries),
            self.capacity,
        )

    def history(self, document_type: str | None = None) -> list[GenerationResult]:
        if document_type is not None:
            return [result for _, result in self._entries.get(document_type, ())]
        merged = heapq.merge(*self._entries.values(), key=itemgetter(0))
        return [result for _, result in merged]

    def document_types(self) -> list[str]:
        return sorted(self._entries)

    def clear(self) -> None:
        self._entries.clear()

    def analytics(self) -> GenerationAnalytics:
        total = 0
        successes = 0
        quality_scores: list[int] = []
        total_latency = 0.0
        success_by_type: dict[str, float] = {}
        warning_counts: Counter[str] = Counter()

        for document_type, entries in self._entries.items():
            type_successes = 0
            for _, result in entries:
                total += 1
                total_latency += result.latency_ms
                if result.success:
                    successes += 1
                    type_successes += 1
                if result.quality_score is not None:
                    quality_scores.append(result.quality_score)
                warning_counts.update(result.warnings)
            if entries:
                success_by_type[document_type] = type_successes / len(entries)

        if not total:
            return GenerationAnalytics()

        top_types = sorted(success_by_type.items(), key=lambda item: (-item[1], item[0]))[:TOP_N]
        common_warnings = sorted(warning_counts.items(), key=lambda item: (-item[1], item[0]))[:TOP_N]
        return GenerationAnalytics(
            total_generations=total,
            success_rate=successes / total,
            average_quality_score=sum(quality_scores) / len(quality_scores) if quality_scores else 0.0,
            average_response_time=total_latency / total,
            top_performing_document_types=[t for t, _ in top_types],
            common_warnings=[w for w, _ in common_warnings],
        )
