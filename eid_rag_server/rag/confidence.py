"""Heuristic confidence for an answer, from the sources it was grounded on."""

from .models import Source

EMPTY_CONFIDENCE = 0.1
MAX_CONFIDENCE = 0.95


def confidence_score(sources: list[Source]) -> float:
    """Score in [0.1, 0.95] from source count and mean relevance.

    No sources gives 0.1. Otherwise each source adds 0.1 (capped at 0.8) and
    the mean relevance adds ``avg * 0.05`` (capped at 0.2).
    """
    if not sources:
        return EMPTY_CONFIDENCE

    confidence = min(len(sources) * 0.1, 0.8)
    avg_relevance = sum(source.relevance or 0.0 for source in sources) / len(sources)
    confidence += min(avg_relevance * 0.05, 0.2)
    return round(min(confidence, MAX_CONFIDENCE), 4)
