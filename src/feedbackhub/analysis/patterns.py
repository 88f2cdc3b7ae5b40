"""Cross-source pattern recognition over per-source clusters."""

import logging
from dataclasses import dataclass, field
from itertools import combinations
from typing import Dict, List, Optional, Sequence

from ..core.analysis_models import CrossSourcePattern, Discrepancy, IssueCluster, PatternAnalysis, SourcePatternStats
from ..core.constants import PatternConstants
from ..core.models import AnalysisConfig, Source
from ..core.scoring import _weighted_mean, clamp, coefficient_of_variation, cosine_similarity, mean
from ..services.semantic import SemanticSession
from .clustering import normalize_label

logger = logging.getLogger(__name__)


@dataclass
class _ThemeMatch:
    """Clusters from any source that match one anchor theme."""
    anchor: str
    vector: Optional[List[float]]
    clusters: Dict[str, List[IssueCluster]] = field(default_factory=dict)

    @property
    def theme(self) -> str:
        largest = max((c for cs in self.clusters.values() for c in cs), key=lambda c: c.member_count)
        return largest.theme


class PatternRecognizer:
    """Compares per-source clusters to find shared themes and sentiment gaps."""

    name = "patterns"

    def __init__(self, session: Optional[SemanticSession], config: AnalysisConfig):
        self.session = session
        self.config = config

    def _embed_themes(self, themes: Sequence[str]) -> List[Optional[List[float]]]:
        if self.session is None or not themes:
            return [None] * len(themes)
        slots = self.session.embed_batch(list(themes), stage="embed:patterns")
        return [s.value if s.ok else None for s in slots]

    def _match(self, clusters_by_source: Dict[str, List[IssueCluster]]) -> List[_ThemeMatch]:
        ordered = [(s.value, c) for s in Source.ordered(clusters_by_source) for c in clusters_by_source[s.value]]
        vectors = self._embed_themes([c.theme for _, c in ordered])

        matches: List[_ThemeMatch] = []
        for (source, cluster), vector in zip(ordered, vectors):
            target = None
            best_sim = self.config.similarity_threshold
            for match in matches:
                if normalize_label(match.anchor) == normalize_label(cluster.theme):
                    target = match
                    break
                if vector is None or match.vector is None:
                    continue
                sim = cosine_similarity(vector, match.vector)
                if sim > best_sim:
                    target, best_sim = match, sim
            if target is None:
                target = _ThemeMatch(anchor=cluster.theme, vector=vector)
                matches.append(target)
            target.clusters.setdefault(source, []).append(cluster)
        return matches

    def _source_stats(self, source: str, clusters: List[IssueCluster], total: int) -> SourcePatternStats:
        frequency = sum(c.member_count for c in clusters)
        sentiment = _weighted_mean([(c.sentiment_mean, c.member_count) for c in clusters
                                    if c.sentiment_mean is not None])
        return SourcePatternStats(
            source=source,
            frequency=frequency,
            normalized_frequency=round(frequency / total, 4) if total else 0.0,
            sentiment_mean=round(sentiment, 4) if sentiment is not None else 0.0,
            cluster_ids=[c.id for c in clusters],
        )

    @staticmethod
    def _discrepancy(pattern: CrossSourcePattern, scored: Dict[str, float]) -> Optional[Discrepancy]:
        """Flag the extreme pair when any two sources differ by more than the threshold."""
        if len(scored) < 2:
            return None
        pairs = []
        for a, b in combinations(scored, 2):
            high, low = (a, b) if scored[a] >= scored[b] else (b, a)
            pairs.append((scored[high] - scored[low], high, low))
        delta, high, low = max(pairs, key=lambda t: t[0])
        delta = round(delta, 4)
        if delta <= PatternConstants.DISCREPANCY_THRESHOLD:
            return None
        return Discrepancy(
            theme=pattern.theme,
            sources=[high, low],
            sentiment_delta=delta,
            description=(
                f"'{pattern.theme}' reads {scored[high]:+.2f} in {high.replace('_', ' ')} feedback "
                f"but {scored[low]:+.2f} in {low.replace('_', ' ')} feedback"
            ),
        )

    def recognize(self, clusters_by_source: Dict[str, List[IssueCluster]],
                  source_totals: Dict[str, int]) -> PatternAnalysis:
        """Build cross-source patterns, discrepancies and correlation strength."""
        clusters_by_source = {k: v for k, v in clusters_by_source.items() if v}
        if not clusters_by_source:
            return PatternAnalysis()

        all_sources = {s.value for s in Source}
        patterns: List[CrossSourcePattern] = []
        discrepancies: List[Discrepancy] = []
        source_only: Dict[str, List[str]] = {}
        matches = self._match(clusters_by_source)

        for match in matches:
            sources = [s.value for s in Source.ordered(match.clusters)]
            if len(sources) < 2:
                source_only.setdefault(sources[0], []).append(match.theme)
                continue

            stats = [self._source_stats(s, match.clusters[s], source_totals.get(s, 0)) for s in sources]
            pattern = CrossSourcePattern(
                theme=match.theme,
                sources=stats,
                source_count=len(stats),
                consistency=round(clamp(1.0 - coefficient_of_variation([s.normalized_frequency for s in stats])), 4),
                critical=set(sources) == all_sources,
            )
            patterns.append(pattern)

            scored = {
                s.source: s.sentiment_mean for s in stats
                if any(c.sentiment_mean is not None for c in match.clusters[s.source])
            }
            discrepancy = self._discrepancy(pattern, scored)
            if discrepancy:
                discrepancies.append(discrepancy)

        patterns.sort(key=lambda p: (not p.critical, -p.source_count, -p.total_frequency, p.theme))
        correlation = 0.0
        if patterns:
            correlation = len(patterns) / len(matches) * mean([p.consistency for p in patterns])

        logger.info(f"🔗 {len(patterns)} cross-source patterns ({sum(p.critical for p in patterns)} critical), "
                    f"{len(discrepancies)} discrepancies")
        return PatternAnalysis(
            patterns=patterns,
            discrepancies=discrepancies,
            correlation_strength=round(clamp(correlation), 4),
            source_only_themes=source_only,
        )
