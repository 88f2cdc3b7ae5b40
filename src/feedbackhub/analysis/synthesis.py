"""Insight synthesis: candidates, confidence, threshold relaxation and ranking."""

import logging
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence

from ..core.analysis_models import (
    BusinessValue, ClusterAnalysis, CrossSourcePattern, Discrepancy, EvidenceItem, Insight,
    InsightMetrics, InsightType, IssueCluster, PatternAnalysis, Priority, SentimentAnalysis,
    SentimentLabel, Severity, TrendDirection,
)
from ..core.constants import ClusterConstants, InsightConstants
from ..core.models import AnalysisConfig
from ..core.scoring import _weighted_mean, clamp, classify_score, insight_confidence

logger = logging.getLogger(__name__)

CATEGORY_TYPES = {
    "bug": InsightType.BUG_REPORT,
    "feature_request": InsightType.FEATURE_REQUEST,
    "customer_service": InsightType.CUSTOMER_SERVICE,
}

RECOMMENDATIONS = {
    InsightType.BUG_REPORT: [
        "Reproduce and triage the reported {theme} defects",
        "Add regression coverage for {theme} before the next release",
        "Tell affected customers when the fix ships",
    ],
    InsightType.FEATURE_REQUEST: [
        "Size the demand for {theme} against the roadmap",
        "Interview a sample of the requesting customers",
    ],
    InsightType.CUSTOMER_SERVICE: [
        "Review support playbooks and staffing for {theme}",
        "Track first-response and resolution times for {theme} cases",
    ],
    InsightType.PRODUCT_IMPROVEMENT: [
        "Assign an owner to investigate {theme}",
        "Define a success metric and re-check it next period",
    ],
    InsightType.RISK: [
        "Escalate {theme} to product leadership",
        "Monitor {theme} weekly until sentiment recovers",
    ],
    InsightType.OPPORTUNITY: [
        "Highlight {theme} in marketing and onboarding",
        "Protect what customers value about {theme} in upcoming changes",
    ],
}

SENTIMENT_RECOMMENDATIONS = {
    InsightType.RISK: [
        "Review the lowest-scored {scope} items with the owning teams",
        "Re-measure {scope} sentiment next period and compare",
    ],
    InsightType.OPPORTUNITY: [
        "Share what customers praise in {scope} with product and marketing",
        "Keep tracking {scope} sentiment to confirm it holds",
    ],
    InsightType.PRODUCT_IMPROVEMENT: [
        "Sample neutral {scope} items for unmet expectations",
        "Re-measure {scope} sentiment next period and compare",
    ],
}


def _excerpt(text: str) -> str:
    limit = InsightConstants.MAX_EXCERPT_LENGTH
    text = " ".join(text.split())
    return text if len(text) <= limit else text[:limit - 3].rstrip() + "..."


def _business_value(priority: Priority) -> BusinessValue:
    if priority in (Priority.CRITICAL, Priority.HIGH):
        return BusinessValue.HIGH
    if priority == Priority.MEDIUM:
        return BusinessValue.MEDIUM
    return BusinessValue.LOW


@dataclass
class InsightCandidate:
    """An insight before thresholding and ranking."""
    theme: str
    type: InsightType
    title: str
    description: str
    category: str
    priority: Priority
    confidence: float
    evidence: List[EvidenceItem]
    affected_customers: int
    frequency: float
    sentiment_impact: float
    primary: bool = True
    scope: str = "feedback"  # what a sentiment insight describes, for its recommendations
    recommendations: List[str] = field(default_factory=list)

    def to_insight(self, insight_id: str) -> Insight:
        return Insight(
            id=insight_id,
            type=self.type,
            title=self.title,
            description=self.description,
            confidence=round(self.confidence, 4),
            priority=self.priority,
            category=self.category,
            evidence=self.evidence[:InsightConstants.MAX_EVIDENCE],
            metrics=InsightMetrics(
                affected_customers=self.affected_customers,
                frequency=round(self.frequency, 2),
                sentiment_impact=round(self.sentiment_impact, 4),
                business_value=_business_value(self.priority),
            ),
            recommendations=list(self.recommendations),
        )


class InsightSynthesizer:
    """Merges sentiment, cluster and pattern results into ranked insights."""

    name = "synthesis"

    def __init__(self, config: AnalysisConfig):
        self.config = config
        self.focus_areas = [f.strip().lower() for f in config.focus_areas if f.strip()]

    # ---- Candidates ----

    def _sentiment_type(self, score: float, default: InsightType) -> InsightType:
        if score < -self.config.neutral_band:
            return InsightType.RISK
        if score > self.config.neutral_band:
            return InsightType.OPPORTUNITY
        return default

    def _cluster_candidate(self, cluster: IssueCluster, sentiment: SentimentAnalysis,
                           analyzed_items: int) -> InsightCandidate:
        labels = {r.item_id: r.classification for r in sentiment.results}
        member_labels = [labels[i] for i in cluster.member_ids if i in labels]
        consistency = 0.0
        if member_labels:
            consistency = max(member_labels.count(label) for label in SentimentLabel) / len(member_labels)

        primary = cluster.severity == Severity.HIGH
        if primary:
            negative = (cluster.sentiment_mean is not None
                        and cluster.sentiment_mean < ClusterConstants.HIGH_SEVERITY_SENTIMENT)
            priority = Priority.CRITICAL if (
                cluster.percentage / 100.0 >= InsightConstants.CRITICAL_SHARE and negative) else Priority.HIGH
        else:
            priority = Priority.MEDIUM if cluster.severity == Severity.MEDIUM else Priority.LOW

        insight_type = CATEGORY_TYPES.get(cluster.category, InsightType.PRODUCT_IMPROVEMENT)
        if cluster.category == "other" and cluster.sentiment_mean is not None:
            insight_type = self._sentiment_type(cluster.sentiment_mean, insight_type)

        sentiment_mean = cluster.sentiment_mean if cluster.sentiment_mean is not None else 0.0
        evidence = [EvidenceItem(
            kind="cluster",
            reference=cluster.id,
            excerpt=f"{cluster.member_count} items ({cluster.percentage:.1f}%) about {cluster.theme}",
            value=cluster.percentage,
        )] + [
            EvidenceItem(kind="feedback", reference=e.item_id, excerpt=_excerpt(e.text), source=e.source)
            for e in cluster.examples
        ]
        description = (
            f"{cluster.member_count} of {analyzed_items} analyzed items ({cluster.percentage:.1f}%) "
            f"concern {cluster.theme.lower()}, with average sentiment {sentiment_mean:+.2f}."
        )
        if cluster.description:
            description = f"{description} {cluster.description}"

        return InsightCandidate(
            theme=cluster.theme,
            type=insight_type,
            title=f"{cluster.theme}: {cluster.member_count} customers affected",
            description=description,
            category=cluster.category,
            priority=priority,
            confidence=insight_confidence(cluster.member_count, consistency),
            evidence=evidence,
            affected_customers=cluster.member_count,
            frequency=cluster.percentage,
            sentiment_impact=sentiment_mean,
            primary=primary,
        )

    def _pattern_candidate(self, pattern: CrossSourcePattern, analyzed_items: int) -> InsightCandidate:
        sentiment = _weighted_mean([(s.sentiment_mean, s.frequency) for s in pattern.sources]) or 0.0
        names = ", ".join(s.replace("_", " ") for s in pattern.source_names)
        evidence = [
            EvidenceItem(
                kind="pattern",
                reference=pattern.theme,
                excerpt=f"{s.source}: {s.frequency} items, sentiment {s.sentiment_mean:+.2f}",
                source=s.source,
                value=s.normalized_frequency,
            )
            for s in pattern.sources
        ]
        scope = "every feedback channel" if pattern.critical else f"{pattern.source_count} channels"
        return InsightCandidate(
            theme=pattern.theme,
            type=self._sentiment_type(sentiment, InsightType.PRODUCT_IMPROVEMENT),
            title=f"{pattern.theme} reported across {scope}",
            description=(
                f"{pattern.theme} appears in {names} feedback ({pattern.total_frequency} items, "
                f"consistency {pattern.consistency:.2f}, sentiment {sentiment:+.2f})."
            ),
            category="cross_source",
            priority=Priority.CRITICAL if pattern.critical else Priority.MEDIUM,
            confidence=insight_confidence(pattern.total_frequency, pattern.consistency),
            evidence=evidence,
            affected_customers=pattern.total_frequency,
            frequency=100.0 * pattern.total_frequency / analyzed_items if analyzed_items else 0.0,
            sentiment_impact=sentiment,
            primary=pattern.critical,
        )

    def _shift_candidate(self, sentiment: SentimentAnalysis) -> InsightCandidate:
        trend = sentiment.trend
        previous_total = sentiment.previous_metrics.total if sentiment.previous_metrics else 0
        declining = trend.direction == TrendDirection.DECLINING
        delta = trend.current_mean - trend.previous_mean
        return InsightCandidate(
            theme="sentiment trend",
            type=InsightType.RISK if declining else InsightType.OPPORTUNITY,
            title=f"Overall sentiment {trend.direction.value} by {trend.magnitude:.2f}",
            description=(
                f"Mean sentiment moved from {trend.previous_mean:+.2f} in the previous window "
                f"to {trend.current_mean:+.2f} in this one."
            ),
            category="sentiment",
            priority=Priority.HIGH if declining else Priority.MEDIUM,
            confidence=insight_confidence(sentiment.metrics.total + previous_total, clamp(trend.magnitude / 0.5)),
            evidence=[
                EvidenceItem(kind="sentiment", reference="current_window",
                             excerpt=f"{sentiment.metrics.total} items, mean {trend.current_mean:+.2f}",
                             value=trend.current_mean),
                EvidenceItem(kind="sentiment", reference="previous_window",
                             excerpt=f"{previous_total} items, mean {trend.previous_mean:+.2f}",
                             value=trend.previous_mean),
            ],
            affected_customers=sentiment.metrics.total,
            frequency=100.0,
            sentiment_impact=delta,
        )

    def _discrepancy_candidate(self, discrepancy: Discrepancy,
                               patterns: Dict[str, CrossSourcePattern]) -> Optional[InsightCandidate]:
        pattern = patterns.get(discrepancy.theme)
        if pattern is None:
            return None
        stats = {s.source: s for s in pattern.sources}
        evidence = [
            EvidenceItem(kind="pattern", reference=discrepancy.theme,
                         excerpt=f"{source}: sentiment {stats[source].sentiment_mean:+.2f}",
                         source=source, value=stats[source].sentiment_mean)
            for source in discrepancy.sources if source in stats
        ]
        high, low = discrepancy.sources[0], discrepancy.sources[-1]
        return InsightCandidate(
            theme=f"{discrepancy.theme} discrepancy",
            type=InsightType.PRODUCT_IMPROVEMENT,
            title=f"{discrepancy.theme}: {low.replace('_', ' ')} far more negative than {high.replace('_', ' ')}",
            description=discrepancy.description + ".",
            category="cross_source",
            priority=Priority.MEDIUM,
            confidence=insight_confidence(pattern.total_frequency, pattern.consistency)
            * InsightConstants.SECONDARY_FACTOR,
            evidence=evidence,
            affected_customers=pattern.total_frequency,
            frequency=0.0,
            sentiment_impact=-discrepancy.sentiment_delta,
            primary=False,
        )

    def _overall_candidate(self, sentiment: SentimentAnalysis) -> Optional[InsightCandidate]:
        metrics = sentiment.metrics
        if metrics.total == 0:
            return None
        counts = {
            SentimentLabel.NEGATIVE: metrics.negative,
            SentimentLabel.POSITIVE: metrics.positive,
            SentimentLabel.NEUTRAL: metrics.neutral,
        }
        dominant = max(counts, key=counts.get)
        share = counts[dominant] / metrics.total
        if dominant == SentimentLabel.NEUTRAL or share < 0.5:
            return None
        negative = dominant == SentimentLabel.NEGATIVE
        return InsightCandidate(
            theme="overall sentiment",
            type=InsightType.RISK if negative else InsightType.OPPORTUNITY,
            title=f"{share:.0%} of feedback is {dominant.value}",
            description=(
                f"{counts[dominant]} of {metrics.total} scored items are {dominant.value}; "
                f"mean sentiment is {metrics.mean_score:+.2f}."
            ),
            category="sentiment",
            priority=Priority.MEDIUM if negative else Priority.LOW,
            confidence=insight_confidence(metrics.total, share) * InsightConstants.SECONDARY_FACTOR,
            evidence=[EvidenceItem(
                kind="sentiment",
                reference="overall",
                excerpt=f"{metrics.positive} positive, {metrics.neutral} neutral, {metrics.negative} negative",
                value=metrics.mean_score,
            )],
            affected_customers=counts[dominant],
            frequency=100.0 * share,
            sentiment_impact=metrics.mean_score,
            primary=False,
        )

    def _source_candidates(self, sentiment: SentimentAnalysis) -> List[InsightCandidate]:
        """One sentiment summary per source that had scored items."""
        found = []
        for source, metrics in sorted(sentiment.metrics_by_source.items()):
            if metrics.total == 0:
                continue
            label = classify_score(metrics.mean_score, self.config.neutral_band)
            counts = {
                SentimentLabel.NEGATIVE: metrics.negative,
                SentimentLabel.POSITIVE: metrics.positive,
                SentimentLabel.NEUTRAL: metrics.neutral,
            }
            agreeing = counts[label] / metrics.total
            name = source.replace("_", " ")
            found.append(InsightCandidate(
                theme=f"{name} sentiment",
                type=self._sentiment_type(metrics.mean_score, InsightType.PRODUCT_IMPROVEMENT),
                title=f"{name.capitalize()} feedback averages {metrics.mean_score:+.2f} sentiment",
                description=(
                    f"{metrics.total} scored {name} items: {metrics.positive} positive, "
                    f"{metrics.neutral} neutral, {metrics.negative} negative."
                ),
                category="sentiment",
                priority=Priority.MEDIUM if label == SentimentLabel.NEGATIVE else Priority.LOW,
                confidence=insight_confidence(metrics.total, agreeing) * InsightConstants.SECONDARY_FACTOR,
                evidence=[EvidenceItem(
                    kind="sentiment",
                    reference=source,
                    excerpt=f"{metrics.total} items, mean {metrics.mean_score:+.2f}, "
                            f"{agreeing:.0%} {label.value}",
                    source=source,
                    value=metrics.mean_score,
                )],
                affected_customers=counts[label],
                frequency=100.0 * metrics.total / sentiment.metrics.total if sentiment.metrics.total else 0.0,
                sentiment_impact=metrics.mean_score,
                primary=False,
                scope=name,
            ))
        return found

    def _intensity_candidate(self, sentiment: SentimentAnalysis) -> Optional[InsightCandidate]:
        """Customers in the most extreme histogram bucket, negative side first on ties."""
        metrics = sentiment.metrics
        if metrics.total == 0 or not metrics.distribution:
            return None
        strong_negative, strong_positive = metrics.distribution[0], metrics.distribution[-1]
        if not strong_negative and not strong_positive:
            return None
        negative = strong_negative >= strong_positive
        count = strong_negative if negative else strong_positive
        share = count / metrics.total
        tone = "strongly negative" if negative else "strongly positive"
        return InsightCandidate(
            theme=f"{tone} feedback",
            type=InsightType.RISK if negative else InsightType.OPPORTUNITY,
            title=f"{count} customers are {tone}",
            description=(
                f"{share:.0%} of scored items fall in the most {'negative' if negative else 'positive'} "
                f"sentiment band; mean sentiment is {metrics.mean_score:+.2f}."
            ),
            category="sentiment",
            priority=Priority.MEDIUM if negative else Priority.LOW,
            confidence=insight_confidence(count, share) * InsightConstants.SECONDARY_FACTOR,
            evidence=[EvidenceItem(
                kind="sentiment",
                reference="distribution",
                excerpt="Sentiment histogram over [-1, 1]: " + " / ".join(str(c) for c in metrics.distribution),
                value=share,
            )],
            affected_customers=count,
            frequency=100.0 * share,
            sentiment_impact=metrics.mean_score,
            primary=False,
        )

    def candidates(self, sentiment: SentimentAnalysis, clusters: ClusterAnalysis,
                   patterns: PatternAnalysis, analyzed_items: int) -> List[InsightCandidate]:
        """Every candidate with evidence, focus areas applied."""
        found = []
        for cluster in clusters.clusters:
            candidate = self._cluster_candidate(cluster, sentiment, analyzed_items)
            if not candidate.primary:
                candidate.confidence *= InsightConstants.SECONDARY_FACTOR
            found.append(candidate)
        for pattern in patterns.patterns:
            candidate = self._pattern_candidate(pattern, analyzed_items)
            if not candidate.primary:
                candidate.confidence *= InsightConstants.SECONDARY_FACTOR
            found.append(candidate)
        if sentiment.trend is not None:
            found.append(self._shift_candidate(sentiment))

        by_theme = {p.theme: p for p in patterns.patterns}
        found.extend(c for c in (self._discrepancy_candidate(d, by_theme) for d in patterns.discrepancies) if c)
        overall = self._overall_candidate(sentiment)
        if overall:
            found.append(overall)
        found.extend(self._source_candidates(sentiment))
        intensity = self._intensity_candidate(sentiment)
        if intensity:
            found.append(intensity)

        for candidate in found:
            if self._in_focus(candidate):
                candidate.priority = candidate.priority.raised()
            candidate.confidence = clamp(candidate.confidence)
            if candidate.category == "sentiment":
                templates = SENTIMENT_RECOMMENDATIONS.get(candidate.type, SENTIMENT_RECOMMENDATIONS[InsightType.RISK])
                candidate.recommendations = [r.format(scope=candidate.scope) for r in templates]
            else:
                candidate.recommendations = [r.format(theme=candidate.theme.lower())
                                             for r in RECOMMENDATIONS[candidate.type]]
        return [c for c in found if c.evidence]

    def _in_focus(self, candidate: InsightCandidate) -> bool:
        theme = candidate.theme.lower()
        return any(area == candidate.category or area in theme or theme in area for area in self.focus_areas)

    # ---- Selection ----

    def select(self, found: Sequence[InsightCandidate], analyzed_items: int) -> List[InsightCandidate]:
        """
        Keep primary candidates at or above the confidence threshold.

        When fewer than the minimum remain and enough items were analyzed, the
        threshold is lowered step by step, admitting secondary candidates too,
        until the minimum is met or the threshold reaches zero.
        """
        threshold = self.config.min_confidence
        selected = [c for c in found if c.primary and c.confidence >= threshold]
        if len(selected) >= InsightConstants.MIN_INSIGHTS or analyzed_items < InsightConstants.RELAXATION_MIN_ITEMS:
            return selected

        while True:
            selected = [c for c in found if c.confidence >= threshold]
            if len(selected) >= InsightConstants.MIN_INSIGHTS or threshold <= 0:
                break
            threshold = max(0.0, round(threshold - InsightConstants.RELAXATION_STEP, 4))
        logger.info(f"Relaxed insight threshold to {threshold:.2f} ({len(selected)} insights)")
        return selected

    @staticmethod
    def _rank_key(candidate: InsightCandidate):
        return (-candidate.priority.rank, -candidate.confidence, -candidate.affected_customers, candidate.title)

    def _dedupe(self, found: Sequence[InsightCandidate]) -> List[InsightCandidate]:
        """One candidate per theme: the best-ranked one."""
        seen = set()
        unique = []
        for candidate in sorted(found, key=self._rank_key):
            key = candidate.theme.strip().lower()
            if key in seen:
                continue
            seen.add(key)
            unique.append(candidate)
        return unique

    def synthesize(self, sentiment: SentimentAnalysis, clusters: ClusterAnalysis,
                   patterns: PatternAnalysis, analyzed_items: int) -> List[Insight]:
        """Ranked, de-duplicated insights with ids ``insight-001`` onward."""
        found = self._dedupe(self.candidates(sentiment, clusters, patterns, analyzed_items))
        ranked = sorted(self.select(found, analyzed_items), key=self._rank_key)
        insights = [c.to_insight(f"insight-{n:03d}") for n, c in enumerate(ranked, 1)]
        logger.info(f"💡 Synthesized {len(insights)} insights from {len(found)} candidates")
        return insights
