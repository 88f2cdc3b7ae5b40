"""Tests for cross-source pattern recognition."""

import pytest

from feedbackhub.analysis.patterns import PatternRecognizer
from feedbackhub.core.analysis_models import IssueCluster, Severity
from feedbackhub.core.models import SemanticConfig
from feedbackhub.services.semantic import SemanticSession
from feedbackhub.services.worker_pool import WorkerPool

from conftest import ScriptedClient, vec


def _cluster(source, theme, count, sentiment=None, n=1):
    return IssueCluster(
        id=f"{source}-cluster-{n:03d}",
        theme=theme,
        description="",
        category="other",
        member_count=count,
        percentage=0.0,
        severity=Severity.MEDIUM,
        sentiment_mean=sentiment,
        examples=[],
    )


@pytest.fixture
def recognizer(session, config):
    return PatternRecognizer(session, config)


TOTALS = {"survey": 100, "support_ticket": 100, "app_review": 100}


class TestRecognize:
    """Matching themes across sources."""

    def test_theme_in_every_source_is_critical(self, recognizer):
        """A theme in all three sources is critical and its sentiment gap is flagged."""
        clusters = {
            "survey": [_cluster("survey", "App Crashes", 20, 0.6)],
            "support_ticket": [_cluster("support_ticket", "App Crashes", 20, 0.5)],
            "app_review": [_cluster("app_review", "App Crashes", 20, -0.5)],
        }
        result = recognizer.recognize(clusters, TOTALS)

        assert len(result.patterns) == 1
        pattern = result.patterns[0]
        assert pattern.critical
        assert pattern.source_count == 3
        assert pattern.source_names == ["survey", "support_ticket", "app_review"]
        assert pattern.consistency == pytest.approx(1.0)

        assert len(result.discrepancies) == 1
        discrepancy = result.discrepancies[0]
        assert discrepancy.sources == ["survey", "app_review"]
        assert discrepancy.sentiment_delta == pytest.approx(1.1)
        assert result.correlation_strength == pytest.approx(1.0)

    def test_two_sources_are_not_critical(self, recognizer):
        clusters = {
            "survey": [_cluster("survey", "Billing", 10, -0.2)],
            "app_review": [_cluster("app_review", "Billing", 30, -0.5)],
        }
        result = recognizer.recognize(clusters, TOTALS)

        pattern = result.patterns[0]
        assert not pattern.critical
        assert pattern.source_count == 2
        assert 0.0 <= pattern.consistency < 1.0
        assert result.discrepancies == [], "A delta of 0.3 is below the discrepancy threshold"

    @pytest.mark.parametrize("survey, app_review, flagged", [
        (0.2, -0.2, False),
        (0.5, 0.1, False),
        (0.21, -0.2, True),
        (0.25, -0.2, True),
    ])
    def test_discrepancy_needs_more_than_threshold(self, recognizer, survey, app_review, flagged):
        """A sentiment gap of exactly 0.4 is not a discrepancy; anything above it is."""
        clusters = {
            "survey": [_cluster("survey", "Billing", 10, survey)],
            "app_review": [_cluster("app_review", "Billing", 10, app_review)],
        }
        result = recognizer.recognize(clusters, TOTALS)
        assert bool(result.discrepancies) is flagged
        if flagged:
            assert result.discrepancies[0].sources == ["survey", "app_review"]
            assert result.discrepancies[0].sentiment_delta > 0.4

    def test_consistency_uses_normalized_frequency(self, recognizer):
        """Equal shares of differently sized sources are fully consistent."""
        clusters = {
            "survey": [_cluster("survey", "Billing", 10)],
            "app_review": [_cluster("app_review", "Billing", 40)],
        }
        result = recognizer.recognize(clusters, {"survey": 50, "app_review": 200})
        assert result.patterns[0].consistency == 1.0
        assert [s.normalized_frequency for s in result.patterns[0].sources] == [0.2, 0.2]

    def test_single_source_themes(self, recognizer):
        clusters = {
            "survey": [_cluster("survey", "Billing", 10, n=1), _cluster("survey", "Dark Mode", 5, n=2)],
            "app_review": [_cluster("app_review", "Billing", 12)],
        }
        result = recognizer.recognize(clusters, TOTALS)

        assert [p.theme for p in result.patterns] == ["Billing"]
        assert result.source_only_themes == {"survey": ["Dark Mode"]}
        assert result.correlation_strength == pytest.approx(0.5 * result.patterns[0].consistency, abs=1e-4)

    def test_similar_labels_match(self, config):
        client = ScriptedClient(vectors={"Login Problems": vec(1.0, 0.0), "Sign-in Issues": vec(0.8, 0.6)})
        with WorkerPool(max_workers=2) as pool:
            recognizer = PatternRecognizer(SemanticSession(client, SemanticConfig(), pool), config)
            result = recognizer.recognize({
                "survey": [_cluster("survey", "Login Problems", 5)],
                "support_ticket": [_cluster("support_ticket", "Sign-in Issues", 9)],
            }, TOTALS)

        assert len(result.patterns) == 1
        assert result.patterns[0].theme == "Sign-in Issues", "The largest matched cluster names the pattern"

    def test_exact_labels_match_without_embeddings(self, config):
        recognizer = PatternRecognizer(None, config)
        result = recognizer.recognize({
            "survey": [_cluster("survey", "App Crashes", 5)],
            "app_review": [_cluster("app_review", "app crashes", 5)],
        }, TOTALS)
        assert len(result.patterns) == 1

    def test_patterns_sorted_critical_first(self, recognizer):
        clusters = {
            "survey": [_cluster("survey", "Billing", 50, n=1), _cluster("survey", "App Crashes", 5, n=2)],
            "support_ticket": [_cluster("support_ticket", "Billing", 50, n=1),
                               _cluster("support_ticket", "App Crashes", 5, n=2)],
            "app_review": [_cluster("app_review", "App Crashes", 5)],
        }
        result = recognizer.recognize(clusters, TOTALS)

        assert [p.theme for p in result.patterns] == ["App Crashes", "Billing"]
        assert result.patterns[0].critical and not result.patterns[1].critical

    def test_missing_sentiment_is_not_a_discrepancy(self, recognizer):
        clusters = {
            "survey": [_cluster("survey", "Billing", 10, None)],
            "app_review": [_cluster("app_review", "Billing", 10, -0.9)],
        }
        assert recognizer.recognize(clusters, TOTALS).discrepancies == []

    def test_no_clusters(self, recognizer):
        result = recognizer.recognize({"survey": []}, TOTALS)
        assert result.patterns == [] and result.correlation_strength == 0.0
