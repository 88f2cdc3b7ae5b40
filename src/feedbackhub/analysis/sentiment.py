"""Per-item sentiment scoring and sentiment aggregation."""

import logging
import math
from collections import defaultdict
from textwrap import dedent
from typing import Dict, List, Optional, Sequence

from ..core.analysis_models import (
    ItemFailure, SentimentAnalysis, SentimentLabel, SentimentMetrics, SentimentOutcome,
    SentimentResult, SentimentTrend, TrendDirection,
)
from ..core.constants import SentimentConstants
from ..core.errors import FeedbackHubError, PermanentServiceError
from ..core.models import AnalysisConfig, FeedbackItem, Source
from ..core.scoring import clamp, classify_score, mean, pstdev, score_histogram
from ..services.semantic import SemanticSession, parse_json_object

logger = logging.getLogger(__name__)

SENTIMENT_PROMPT = dedent("""
TASK=SENTIMENT
Rate the sentiment of one piece of customer feedback ({source}).

Rules:
- score is a float in [-1.0, 1.0]: -1 very negative, 0 neutral, +1 very positive.
- confidence is a float in [0.0, 1.0].
- rationale is one short sentence grounded in the text.

Return ONLY JSON: {{"classification": "positive|negative|neutral", "score": float, "confidence": float, "rationale": str}}

<<<
{text}
>>>
""").strip()


class SentimentAnalyzer:
    """Scores feedback items and aggregates sentiment metrics."""

    name = "sentiment"

    def __init__(self, session: SemanticSession, config: AnalysisConfig):
        self.session = session
        self.config = config

    def build_prompt(self, item: FeedbackItem) -> str:
        text = item.text[:SentimentConstants.MAX_TEXT_FOR_PROMPT]
        return SENTIMENT_PROMPT.format(source=item.source.value.replace("_", " "), text=text)

    def parse_result(self, item_id: str, response: str) -> SentimentResult:
        """Turn a service response into a SentimentResult; the label is derived from the score."""
        data = parse_json_object(response)
        try:
            score = float(data["score"])
        except (KeyError, TypeError, ValueError):
            raise PermanentServiceError("Sentiment response has no numeric score",
                                        operation="sentiment", item_id=item_id)
        if math.isnan(score):
            raise PermanentServiceError("Sentiment score is NaN", operation="sentiment", item_id=item_id)

        score = clamp(score, -1.0, 1.0)
        return SentimentResult(
            item_id=item_id,
            classification=classify_score(score, self.config.neutral_band),
            score=score,
            confidence=clamp(data.get("confidence", 0.5)),
            rationale=str(data.get("rationale", ""))[:SentimentConstants.MAX_RATIONALE_LENGTH],
        )

    def analyze_batch(self, items: Sequence[FeedbackItem], stage: str = "sentiment",
                      track_progress: bool = True) -> List[SentimentOutcome]:
        """Score every item; outcome i belongs to item i and failures stay in their slot."""
        if not items:
            return []
        prompts = [self.build_prompt(item) for item in items]
        slots = self.session.complete_batch(prompts, stage=stage, track_progress=track_progress)

        outcomes = []
        for item, slot in zip(items, slots):
            error = slot.error
            if slot.ok:
                try:
                    outcomes.append(SentimentOutcome(item.id, result=self.parse_result(item.id, slot.value)))
                    continue
                except FeedbackHubError as e:
                    error = e
            error.item_id = error.item_id or item.id
            error.source = error.source or item.source.value
            outcomes.append(SentimentOutcome(item.id, error=ItemFailure.from_error(item.id, error)))

        failed = sum(1 for o in outcomes if not o.ok)
        if failed:
            logger.warning(f"{stage}: {failed}/{len(items)} items could not be scored")
        else:
            logger.info(f"{stage}: scored {len(items)} items")
        return outcomes

    def aggregate(self, outcomes: Sequence[SentimentOutcome], items: Sequence[FeedbackItem]) -> SentimentMetrics:
        """
        Reduce outcomes to metrics.

        Items whose text length lies more than three standard deviations from
        the batch mean are outliers: counted in ``outliers`` and left out of
        every other figure. Failed outcomes are counted in ``failed``.
        """
        lengths = {item.id: len(item.text) for item in items}
        mu = mean(list(lengths.values()))
        sd = pstdev(list(lengths.values()))
        outlier_ids = set()
        if sd > 0:
            outlier_ids = {i for i, n in lengths.items()
                           if abs(n - mu) > SentimentConstants.OUTLIER_STD * sd}

        results = [o.result for o in outcomes if o.ok]
        kept = [r for r in results if r.item_id not in outlier_ids]
        scores = [r.score for r in kept]
        return SentimentMetrics(
            total=len(kept),
            positive=sum(1 for r in kept if r.classification == SentimentLabel.POSITIVE),
            negative=sum(1 for r in kept if r.classification == SentimentLabel.NEGATIVE),
            neutral=sum(1 for r in kept if r.classification == SentimentLabel.NEUTRAL),
            mean_score=mean(scores),
            distribution=score_histogram(scores),
            outliers=len(results) - len(kept),
            failed=sum(1 for o in outcomes if not o.ok),
        )

    def aggregate_by_source(self, outcomes: Sequence[SentimentOutcome],
                            items: Sequence[FeedbackItem]) -> Dict[str, SentimentMetrics]:
        items_by_source = defaultdict(list)
        for item in items:
            items_by_source[item.source].append(item)
        by_id = {o.item_id: o for o in outcomes}

        metrics = {}
        for source in Source.ordered(items_by_source):
            source_items = items_by_source[source]
            source_outcomes = [by_id[i.id] for i in source_items if i.id in by_id]
            metrics[source.value] = self.aggregate(source_outcomes, source_items)
        return metrics

    @staticmethod
    def detect_shift(current: SentimentMetrics, previous: SentimentMetrics) -> Optional[SentimentTrend]:
        """A trend iff the mean moved by more than the shift threshold."""
        if current.total == 0 or previous.total == 0:
            return None
        delta = current.mean_score - previous.mean_score
        if abs(delta) <= SentimentConstants.SHIFT_THRESHOLD:
            return None
        return SentimentTrend(
            direction=TrendDirection.IMPROVING if delta > 0 else TrendDirection.DECLINING,
            magnitude=round(abs(delta), 4),
            current_mean=current.mean_score,
            previous_mean=previous.mean_score,
        )

    def summarize(self, outcomes: Sequence[SentimentOutcome], items: Sequence[FeedbackItem],
                  previous_outcomes: Optional[Sequence[SentimentOutcome]] = None,
                  previous_items: Optional[Sequence[FeedbackItem]] = None) -> SentimentAnalysis:
        metrics = self.aggregate(outcomes, items)
        analysis = SentimentAnalysis(
            outcomes=list(outcomes),
            metrics=metrics,
            metrics_by_source=self.aggregate_by_source(outcomes, items),
        )
        if previous_outcomes is not None and previous_items is not None:
            analysis.previous_metrics = self.aggregate(previous_outcomes, previous_items)
            analysis.trend = self.detect_shift(metrics, analysis.previous_metrics)
            if analysis.trend:
                logger.info(f"📈 Sentiment {analysis.trend.direction.value} by {analysis.trend.magnitude:.2f}")
        return analysis

    def analyze(self, items: Sequence[FeedbackItem],
                previous_items: Optional[Sequence[FeedbackItem]] = None) -> SentimentAnalysis:
        """Score the items (and the previous window's, when given) and aggregate."""
        outcomes = self.analyze_batch(items)
        previous_outcomes = None
        if previous_items is not None:
            previous_outcomes = self.analyze_batch(previous_items, stage="sentiment_previous", track_progress=False)
        return self.summarize(outcomes, items, previous_outcomes, previous_items)
