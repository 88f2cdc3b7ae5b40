"""Tests for insight synthesis."""

import pytest

from feedbackhub.analysis.synthesis import InsightSynthesizer
from feedbackhub.core.analysis_models import (
    ClusterAnalysis, CrossSourcePattern, Discrepancy, InsightType, IssueCluster, PatternAnalysis, Priority,
    RepresentativeExample, SentimentAnalysis, SentimentMetrics, SentimentOutcome, SentimentResult,
    SentimentTrend, Severity, SourcePatternStats, TrendDirection,
)
from feedbackhub.core.models import AnalysisConfig
from feedbackhub.core.scoring import classify_score, insight_confidence, mean, score_histogram

from conftest import BASE_TIME


def _cluster(n, theme, members, severity, percentage, sentiment, category="bug", examples=1):
    ids = [f"{theme.lower().replace(' ', '-')}-{k}" for k in range(members)]
    return IssueCluster(
        id=f"cluster-{n:03d}",
        theme=theme,
        description=f"Customers mention {theme.lower()}.",
        category=category,
        member_count=members,
        percentage=percentage,
        severity=severity,
        sentiment_mean=sentiment,
        examples=[RepresentativeExample(ids[k], "survey", f"Example {k} about {theme}", BASE_TIME)
                  for k in range(min(examples, members))],
        member_ids=ids,
    )


def _sentiment(clusters, trend=None, previous=None):
    scores = {i: c.sentiment_mean for c in clusters for i in c.member_ids if c.sentiment_mean is not None}
    outcomes = [SentimentOutcome(i, result=SentimentResult(i, classify_score(s), s, 0.8, ""))
                for i, s in scores.items()]
    labels = [o.result.classification.value for o in outcomes]
    metrics = SentimentMetrics(
        total=len(outcomes),
        positive=labels.count("positive"),
        negative=labels.count("negative"),
        neutral=labels.count("neutral"),
        mean_score=mean(list(scores.values())),
        distribution=score_histogram(list(scores.values())),
    )
    return SentimentAnalysis(outcomes=outcomes, metrics=metrics, trend=trend, previous_metrics=previous)


def _synthesize(config, clusters=(), patterns=None, sentiment=None, analyzed=None):
    clusters = list(clusters)
    sentiment = sentiment or _sentiment(clusters)
    analyzed = analyzed if analyzed is not None else sum(c.member_count for c in clusters)
    return InsightSynthesizer(config).synthesize(
        sentiment, ClusterAnalysis(clusters=clusters), patterns or PatternAnalysis(), analyzed)


def _config(config, **overrides):
    return AnalysisConfig(**{**{"window": config.window, "sources": config.sources}, **overrides})


def _stats(source, frequency, sentiment):
    return SourcePatternStats(source, frequency, frequency / 100, sentiment, [f"{source}-cluster-001"])


class TestClusterInsights:
    """Insights built from issue clusters."""

    def test_large_negative_clusters_are_critical(self, config):
        """Three themes of 40 negative items each give three critical insights."""
        clusters = [_cluster(n, theme, 40, Severity.HIGH, 33.33, -0.9)
                    for n, theme in enumerate(["App Crashes", "Billing", "Slow Sync"], 1)]
        insights = _synthesize(config, clusters)

        assert len(insights) == 3
        assert all(i.priority == Priority.CRITICAL for i in insights)
        assert all(i.confidence == pytest.approx(insight_confidence(40, 1.0), abs=1e-4) for i in insights)
        assert [i.id for i in insights] == ["insight-001", "insight-002", "insight-003"]

    def test_high_cluster_without_critical_share_is_high(self, config):
        insights = _synthesize(config, [_cluster(1, "Billing", 20, Severity.HIGH, 10.0, -0.6)])
        assert insights[0].priority == Priority.HIGH
        assert insights[0].type == InsightType.BUG_REPORT

    def test_category_sets_insight_type(self, config):
        clusters = [
            _cluster(1, "Dark Mode", 30, Severity.HIGH, 30.0, 0.6, category="feature_request"),
            _cluster(2, "Slow Replies", 30, Severity.HIGH, 30.0, -0.6, category="customer_service"),
            _cluster(3, "Great Design", 30, Severity.HIGH, 30.0, 0.7, category="other"),
        ]
        types = {i.title.split(":")[0]: i.type for i in _synthesize(config, clusters)}
        assert types == {
            "Dark Mode": InsightType.FEATURE_REQUEST,
            "Slow Replies": InsightType.CUSTOMER_SERVICE,
            "Great Design": InsightType.OPPORTUNITY,
        }

    def test_evidence_and_bounds(self, config):
        """Every insight has evidence, capped at five items, and a confidence in [0, 1]."""
        clusters = [_cluster(1, "App Crashes", 40, Severity.HIGH, 40.0, -0.9, examples=8)]
        insights = _synthesize(config, clusters)

        for insight in insights:
            assert 1 <= len(insight.evidence) <= 5
            assert 0.0 <= insight.confidence <= 1.0
            assert insight.recommendations
        assert insights[0].evidence[0].kind == "cluster"
        assert insights[0].metrics.affected_customers == 40

    def test_focus_area_raises_priority(self, config):
        cluster = _cluster(1, "Billing Issues", 20, Severity.HIGH, 10.0, -0.2, category="pricing")
        plain = _synthesize(config, [cluster])
        focused = _synthesize(_config(config, focus_areas=["billing"]), [cluster])

        assert plain[0].priority == Priority.HIGH
        assert focused[0].priority == Priority.CRITICAL


class TestSelection:
    """Confidence threshold and relaxation."""

    def _clusters(self):
        return [
            _cluster(1, "App Crashes", 40, Severity.HIGH, 20.0, -0.9),
            _cluster(2, "Billing", 6, Severity.MEDIUM, 3.0, -0.2),
            _cluster(3, "Slow Sync", 4, Severity.MEDIUM, 2.0, -0.2),
        ]

    def test_secondary_candidates_need_relaxation(self, config):
        """With few analyzed items only primary candidates above the threshold survive."""
        insights = _synthesize(config, self._clusters(), analyzed=50)
        assert [i.title for i in insights] == ["App Crashes: 40 customers affected"]

    def test_relaxation_reaches_minimum(self, config):
        """With 100+ analyzed items the threshold drops until three insights exist."""
        insights = _synthesize(config, self._clusters(), analyzed=200)
        assert len(insights) >= 3
        assert insights[0].priority == Priority.CRITICAL

    def test_threshold_filters_primary_candidates(self, config):
        insights = _synthesize(_config(config, min_confidence=0.95), self._clusters(), analyzed=50)
        assert insights == []

    def test_ordering(self, config):
        insights = _synthesize(config, self._clusters(), analyzed=200)
        keys = [(-i.priority.rank, -i.confidence) for i in insights]
        assert keys == sorted(keys), "Insights must be ordered by priority, then confidence"
        assert len({i.id for i in insights}) == len(insights)


class TestOtherCandidates:
    """Insights from patterns, discrepancies and sentiment shifts."""

    def test_critical_pattern(self, config):
        pattern = CrossSourcePattern(
            theme="App Crashes",
            sources=[_stats("survey", 20, -0.6), _stats("support_ticket", 20, -0.5), _stats("app_review", 20, -0.7)],
            source_count=3,
            consistency=1.0,
            critical=True,
        )
        insights = _synthesize(config, patterns=PatternAnalysis(patterns=[pattern]), analyzed=60)

        assert len(insights) == 1
        assert insights[0].priority == Priority.CRITICAL
        assert insights[0].category == "cross_source"
        assert insights[0].type == InsightType.RISK
        assert len(insights[0].evidence) == 3

    def test_pattern_and_cluster_on_same_theme_are_deduplicated(self, config):
        pattern = CrossSourcePattern(
            theme="App Crashes",
            sources=[_stats("survey", 20, -0.6), _stats("support_ticket", 20, -0.5), _stats("app_review", 20, -0.7)],
            source_count=3,
            consistency=1.0,
            critical=True,
        )
        clusters = [_cluster(1, "App Crashes", 60, Severity.HIGH, 50.0, -0.6)]
        insights = _synthesize(config, clusters, patterns=PatternAnalysis(patterns=[pattern]))
        assert sum("App Crashes" in i.title for i in insights) == 1

    def test_discrepancy_is_secondary(self, config):
        pattern = CrossSourcePattern(
            theme="Billing",
            sources=[_stats("survey", 30, 0.6), _stats("app_review", 30, -0.5)],
            source_count=2,
            consistency=1.0,
            critical=False,
        )
        discrepancy = Discrepancy("Billing", ["survey", "app_review"], 1.1, "'Billing' differs")
        analysis = PatternAnalysis(patterns=[pattern], discrepancies=[discrepancy])

        few = _synthesize(config, patterns=analysis, analyzed=60)
        many = _synthesize(config, patterns=analysis, analyzed=150)
        assert few == []
        assert any("far more negative" in i.title for i in many)

    def test_declining_sentiment_is_a_high_risk(self, config):
        previous = SentimentMetrics(total=30, positive=10, negative=5, neutral=15, mean_score=0.1,
                                    distribution=[0, 5, 15, 10, 0])
        trend = SentimentTrend(TrendDirection.DECLINING, 0.5, -0.4, 0.1)
        clusters = [_cluster(1, "Billing", 30, Severity.LOW, 0.5, -0.4)]
        sentiment = _sentiment(clusters, trend=trend, previous=previous)
        insights = _synthesize(config, clusters, sentiment=sentiment, analyzed=30)

        shift = [i for i in insights if i.category == "sentiment"]
        assert len(shift) == 1
        assert shift[0].type == InsightType.RISK
        assert shift[0].priority == Priority.HIGH
        assert [e.reference for e in shift[0].evidence] == ["current_window", "previous_window"]
        assert shift[0].recommendations == [
            "Review the lowest-scored feedback items with the owning teams",
            "Re-measure feedback sentiment next period and compare",
        ]

    def test_single_theme_relaxes_to_sentiment_insights(self, config):
        """One theme over 120 items still reaches three insights through sentiment summaries."""
        clusters = [_cluster(1, "App Crashes", 120, Severity.HIGH, 100.0, -0.9)]
        sentiment = _sentiment(clusters)
        sentiment.metrics_by_source = {"survey": sentiment.metrics}
        insights = _synthesize(config, clusters, sentiment=sentiment, analyzed=120)

        titles = [i.title for i in insights]
        assert len(insights) >= 3
        assert titles[0] == "App Crashes: 120 customers affected"
        assert "Survey feedback averages -0.90 sentiment" in titles
        assert "120 customers are strongly negative" in titles
        assert all(i.type == InsightType.RISK for i in insights if i.category == "sentiment")

    def test_sentiment_recommendations_describe_their_scope(self, config):
        clusters = [_cluster(1, "App Crashes", 120, Severity.HIGH, 100.0, -0.9)]
        sentiment = _sentiment(clusters)
        sentiment.metrics_by_source = {"survey": sentiment.metrics}
        insights = _synthesize(config, clusters, sentiment=sentiment, analyzed=120)

        survey = next(i for i in insights if i.title.startswith("Survey feedback"))
        assert survey.recommendations[0] == "Review the lowest-scored survey items with the owning teams"
        for insight in insights:
            if insight.category == "sentiment":
                assert not any("overall sentiment" in r or "sentiment trend" in r for r in insight.recommendations)

    def test_empty_inputs(self, config):
        assert _synthesize(config, analyzed=0) == []
