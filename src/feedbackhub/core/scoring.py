"""Scoring helpers shared by the analyzers."""

import logging
import math
import statistics
from typing import List, Optional, Sequence

from .analysis_models import SentimentLabel
from .constants import InsightConstants, SentimentConstants

logger = logging.getLogger(__name__)


def clamp(x: float, lo: float = 0.0, hi: float = 1.0) -> float:
    """Clamp value to range [lo, hi]; non-numeric input falls back to lo."""
    try:
        value = float(x)
    except (TypeError, ValueError):
        return lo
    if math.isnan(value):
        return lo
    return max(lo, min(hi, value))


def classify_score(score: float, neutral_band: float = SentimentConstants.NEUTRAL_BAND) -> SentimentLabel:
    """Label a [-1, 1] score; scores within the neutral band are neutral."""
    if score > neutral_band:
        return SentimentLabel.POSITIVE
    if score < -neutral_band:
        return SentimentLabel.NEGATIVE
    return SentimentLabel.NEUTRAL


def mean(values: Sequence[float], default: float = 0.0) -> float:
    return math.fsum(values) / len(values) if values else default


def pstdev(values: Sequence[float]) -> float:
    """Population standard deviation."""
    if len(values) < 2:
        return 0.0
    return statistics.pstdev(values)


def _weighted_mean(pairs) -> Optional[float]:  # [(value, weight)]
    """Compute weighted average of value-weight pairs."""
    den = sum(w for _, w in pairs)
    if den <= 0:
        return None
    return sum(v * w for v, w in pairs) / den


def score_histogram(scores: Sequence[float], buckets: int = SentimentConstants.HISTOGRAM_BUCKETS) -> List[int]:
    """Count scores into equal-width buckets over [-1, 1]; 1.0 lands in the last bucket."""
    counts = [0] * buckets
    width = 2.0 / buckets
    for s in scores:
        idx = int((clamp(s, -1.0, 1.0) + 1.0) / width)
        counts[min(idx, buckets - 1)] += 1
    return counts


def cosine_similarity(vec1: Sequence[float], vec2: Sequence[float]) -> float:
    """Cosine similarity of two vectors; 0.0 when either is empty or zero."""
    if not vec1 or not vec2 or len(vec1) != len(vec2):
        return 0.0
    dot = sum(a * b for a, b in zip(vec1, vec2))
    norm1 = math.sqrt(sum(a * a for a in vec1))
    norm2 = math.sqrt(sum(b * b for b in vec2))
    if norm1 == 0 or norm2 == 0:
        return 0.0
    return dot / (norm1 * norm2)


def centroid(vectors: Sequence[Sequence[float]], weights: Optional[Sequence[float]] = None) -> List[float]:
    """Weighted mean vector."""
    if not vectors:
        return []
    weights = list(weights) if weights is not None else [1.0] * len(vectors)
    total = sum(weights) or 1.0
    dims = len(vectors[0])
    return [sum(v[d] * w for v, w in zip(vectors, weights)) / total for d in range(dims)]


def coefficient_of_variation(values: Sequence[float]) -> float:
    """Population CV; 0.0 for fewer than two values or a zero mean."""
    if len(values) < 2:
        return 0.0
    mu = mean(values)
    if mu == 0:
        return 0.0
    return pstdev(values) / abs(mu)


def insight_confidence(volume: float, consistency: float) -> float:
    """
    Confidence of an insight from its evidence volume and consistency.

    confidence = clamp(0.6 * (1 - exp(-volume / 20)) + 0.4 * consistency)

    Non-decreasing in both arguments and always within [0, 1].
    """
    volume_term = 1.0 - math.exp(-max(0.0, float(volume)) / InsightConstants.VOLUME_SCALE)
    return clamp(
        InsightConstants.VOLUME_WEIGHT * volume_term
        + InsightConstants.CONSISTENCY_WEIGHT * clamp(consistency)
    )


def growth_rate(current: int, previous: int) -> Optional[float]:
    """Relative change from previous to current; None when there is no baseline."""
    if previous <= 0:
        return None
    return (current - previous) / previous
