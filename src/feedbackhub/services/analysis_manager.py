"""Analysis orchestration: fetch, fan out analyzers, join under a deadline, synthesize."""

import logging
import time
import uuid
from collections import Counter, defaultdict
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from ..analysis.clustering import IssueClusterer, ThemeGroup
from ..analysis.patterns import PatternRecognizer
from ..analysis.sentiment import SentimentAnalyzer
from ..analysis.synthesis import InsightSynthesizer
from ..core.analysis_models import (
    AnalysisBundle, AnalyzerState, AnalyzerStatus, ClusterAnalysis, ErrorReport, ItemFailure,
    IssueCluster, PatternAnalysis, ProgressEvent, SentimentOutcome, SourceState, SourceStatus, ThemeOutcome,
)
from ..core.constants import PoolConstants
from ..core.errors import (
    AnalysisAbortedError, BudgetExceededError, FeedbackHubError, InsufficientDataError, PermanentServiceError,
    TransientServiceError,
)
from ..core.models import AnalysisConfig, FeedbackItem
from .llm import SemanticClientFactory
from .semantic import SemanticClient, SemanticSession
from .storage import FeedbackStore
from .worker_pool import ProgressReporter, WorkerPool

logger = logging.getLogger(__name__)

ERROR_KINDS = {
    cls.kind: cls for cls in (
        TransientServiceError, PermanentServiceError, BudgetExceededError, InsufficientDataError,
    )
}


@dataclass
class _ThemeStage:
    """Output of the theme stage: per-item themes plus overall and per-source groups."""
    outcomes: List[ThemeOutcome]
    groups: List[ThemeGroup] = field(default_factory=list)
    groups_by_source: Dict[str, List[ThemeGroup]] = field(default_factory=dict)
    source_errors: List[InsufficientDataError] = field(default_factory=list)


def _failed_sentiment(items: Sequence[FeedbackItem], error: FeedbackHubError) -> List[SentimentOutcome]:
    return [SentimentOutcome(i.id, error=ItemFailure(i.id, error.kind, error.message, error.attempts))
            for i in items]


def _failed_themes(items: Sequence[FeedbackItem], error: FeedbackHubError) -> _ThemeStage:
    return _ThemeStage(outcomes=[ThemeOutcome(i.id, error=ItemFailure(i.id, error.kind, error.message,
                                                                      error.attempts))
                                 for i in items])


def _summarize_failures(failures: Iterable[ItemFailure], operation: str, source: Optional[str] = None
                        ) -> List[ErrorReport]:
    """One report per failure kind, with a count and a sample message."""
    by_kind: Dict[str, List[ItemFailure]] = defaultdict(list)
    for failure in failures:
        by_kind[failure.kind].append(failure)
    reports = []
    for kind, group in by_kind.items():
        cls = ERROR_KINDS.get(kind)
        caveat = cls.default_caveat if cls else "Affected items are missing from the results."
        reports.append(ErrorReport(
            kind=kind,
            operation=operation,
            message=f"{len(group)} items failed; first: {group[0].message}",
            caveat=caveat,
            source=source,
        ))
    return reports


class AnalysisOrchestrator:
    """
    Top-level coordinator of one analysis run.

    Fetches the window from storage, runs sentiment scoring and theme work
    concurrently over a shared worker pool, joins them under the run's time
    budget, then finalises clusters, recognizes cross-source patterns and
    synthesizes insights. Only ConfigurationError and a run where no item
    could be analyzed raise; every other failure ends up in the bundle.
    """

    def __init__(self, store: FeedbackStore, client: Optional[SemanticClient] = None,
                 progress_listeners: Sequence[Callable[[ProgressEvent], None]] = ()):
        if client is None:
            client = SemanticClientFactory.create()
        self.store = store
        self.client = client
        self.progress_listeners = list(progress_listeners)

    def subscribe(self, listener: Callable[[ProgressEvent], None]) -> None:
        self.progress_listeners.append(listener)

    def run(self, config: AnalysisConfig,
            historical_clusters: Optional[Sequence[IssueCluster]] = None) -> AnalysisBundle:
        config.validate()
        run_id = f"run-{uuid.uuid4().hex[:12]}"
        started = time.monotonic()
        deadline = started + config.time_budget_seconds

        items = self.store.fetch_items(config.window, config.sources)
        previous_items = None
        if config.compare_previous_window:
            previous_items = self.store.fetch_items(config.window.previous(), config.sources)
        logger.info(f"🚀 {run_id}: analyzing {len(items)} items from "
                    f"{', '.join(s.value for s in config.sources)}")
        if not items:
            raise AnalysisAbortedError("No feedback items in the requested window and sources",
                                       operation="fetch_items")

        progress = ProgressReporter(
            total=2 * len(items),
            listeners=self.progress_listeners,
            enabled=len(items) > PoolConstants.PROGRESS_MIN_ITEMS,
        )
        with WorkerPool(config.max_workers, deadline=deadline, progress=progress) as pool:
            session = SemanticSession(self.client, config.semantic, pool)
            sentiment_analyzer = SentimentAnalyzer(session, config)
            clusterer = IssueClusterer(session, config)

            outcomes, theme_stage, previous_outcomes, stage_errors = self._run_stages(
                pool, sentiment_analyzer, clusterer, items, previous_items, config)

            source_status, kept_sources = self._source_status(config, items, outcomes, theme_stage)
            kept_items = [i for i in items if i.source in kept_sources]
            if not kept_items:
                reports = [e for s in source_status.values() for e in s.errors]
                raise AnalysisAbortedError("Every feedback item failed analysis in every source",
                                           reports=reports, operation="analyze")

            kept_ids = {i.id for i in kept_items}
            outcomes = [o for o in outcomes if o.item_id in kept_ids]
            theme_outcomes = [o for o in theme_stage.outcomes if o.item_id in kept_ids]

            sentiment = sentiment_analyzer.summarize(outcomes, kept_items, previous_outcomes, previous_items)
            results = sentiment.results
            clusters = ClusterAnalysis(
                clusters=clusterer.build_clusters(theme_stage.groups, kept_items, results, len(kept_items)),
                clusters_by_source=clusterer.build_source_clusters(
                    {k: v for k, v in theme_stage.groups_by_source.items()
                     if k in {s.value for s in kept_sources}},
                    kept_items, results),
                outcomes=theme_outcomes,
            )
            if historical_clusters:
                clusters.trends = clusterer.track_trends(clusters.clusters, historical_clusters)

            source_totals = Counter(i.source.value for i in kept_items)
            patterns = PatternRecognizer(session, config).recognize(clusters.clusters_by_source, source_totals)

            analyzed = {o.item_id for o in outcomes if o.ok} | {o.item_id for o in theme_outcomes if o.ok}
            insights = InsightSynthesizer(config).synthesize(sentiment, clusters, patterns, len(analyzed))

            budget_hit = pool.expired()

        for error in theme_stage.source_errors:
            if error.source in source_status and source_status[error.source].state != SourceState.EXCLUDED:
                source_status[error.source].errors.append(error.to_report())

        analyzer_status = self._analyzer_status(outcomes, theme_outcomes, clusters, patterns, stage_errors,
                                                theme_stage.source_errors, kept_sources)
        errors = [e for s in source_status.values() for e in s.errors]
        errors.extend(e for name in ("sentiment", "clustering") for e in stage_errors.get(name, []))
        if budget_hit:
            errors.append(BudgetExceededError(
                f"Run exceeded its {config.time_budget_seconds:g}s budget; pending calls were cancelled",
                operation="run",
            ).to_report())

        bundle = AnalysisBundle(
            run_id=run_id,
            config=config,
            generated_at=datetime.now(timezone.utc),
            total_items=len(kept_items),
            sentiment=sentiment,
            clusters=clusters,
            patterns=patterns,
            insights=insights,
            source_status=source_status,
            analyzer_status=analyzer_status,
            errors=errors,
        )
        elapsed = time.monotonic() - started
        status = "partial" if bundle.is_partial else "complete"
        logger.info(f"✅ {run_id}: {status} in {elapsed:.1f}s, {len(clusters.clusters)} clusters, "
                    f"{len(patterns.patterns)} patterns, {len(insights)} insights")
        return bundle

    # ---- Stage fan-out and join ----

    def _theme_stage(self, clusterer: IssueClusterer, items: Sequence[FeedbackItem],
                     config: AnalysisConfig) -> _ThemeStage:
        outcomes = clusterer.extract_themes(items)
        groups = clusterer.group(items, outcomes)
        groups_by_source, errors = clusterer.group_by_source(items, outcomes, config.sources)
        return _ThemeStage(outcomes, groups, groups_by_source, errors)

    def _run_stages(self, pool: WorkerPool, sentiment_analyzer: SentimentAnalyzer, clusterer: IssueClusterer,
                    items: Sequence[FeedbackItem], previous_items: Optional[Sequence[FeedbackItem]],
                    config: AnalysisConfig):
        """Run the analyzer stages concurrently and join them with the run deadline plus a grace period."""
        stage_errors: Dict[str, List[ErrorReport]] = {}
        executor = ThreadPoolExecutor(max_workers=3, thread_name_prefix="stage")
        try:
            futures = {
                "sentiment": executor.submit(sentiment_analyzer.analyze_batch, items),
                "clustering": executor.submit(self._theme_stage, clusterer, items, config),
            }
            if previous_items:
                futures["sentiment_previous"] = executor.submit(
                    sentiment_analyzer.analyze_batch, previous_items, "sentiment_previous", False)

            remaining = pool.remaining()
            timeout = None if remaining is None else remaining + PoolConstants.STAGE_JOIN_GRACE_SECONDS
            wait(list(futures.values()), timeout=timeout)

            def collect(name: str, stage_items: Sequence[FeedbackItem], on_failure):
                future = futures[name]
                if not future.done():
                    future.cancel()
                    error = BudgetExceededError(f"{name} stage did not finish within the run budget", operation=name)
                    logger.error(f"❌ {name}: {error.message}")
                    stage_errors.setdefault(name, []).append(error.to_report())
                    return on_failure(stage_items, error)
                try:
                    return future.result()
                except Exception as e:
                    error = e if isinstance(e, FeedbackHubError) else PermanentServiceError(
                        f"{type(e).__name__}: {e}", operation=name)
                    logger.error(f"❌ {name}: stage failed with error: {e}")
                    stage_errors.setdefault(name, []).append(error.to_report())
                    return on_failure(stage_items, error)

            outcomes = collect("sentiment", items, _failed_sentiment)
            theme_stage = collect("clustering", items, _failed_themes)
            previous_outcomes = None
            if previous_items is not None:
                previous_outcomes = (collect("sentiment_previous", previous_items, _failed_sentiment)
                                     if previous_items else [])
        finally:
            executor.shutdown(wait=False, cancel_futures=True)
        return outcomes, theme_stage, previous_outcomes, stage_errors

    # ---- Status ----

    @staticmethod
    def _source_status(config: AnalysisConfig, items: Sequence[FeedbackItem],
                       outcomes: Sequence[SentimentOutcome], theme_stage: _ThemeStage
                       ) -> Tuple[Dict[str, SourceStatus], set]:
        sentiment_by_id = {o.item_id: o for o in outcomes}
        theme_by_id = {o.item_id: o for o in theme_stage.outcomes}
        items_by_source = defaultdict(list)
        for item in items:
            items_by_source[item.source].append(item)

        statuses: Dict[str, SourceStatus] = {}
        kept = set()
        for source in config.sources:
            source_items = items_by_source.get(source, [])
            sentiment_failures = [sentiment_by_id[i.id].error for i in source_items
                                  if i.id in sentiment_by_id and not sentiment_by_id[i.id].ok]
            theme_failures = [theme_by_id[i.id].error for i in source_items
                              if i.id in theme_by_id and not theme_by_id[i.id].ok]
            status = SourceStatus(
                source=source.value,
                state=SourceState.OK,
                items_fetched=len(source_items),
                sentiment_failures=len(sentiment_failures),
                theme_failures=len(theme_failures),
            )
            statuses[source.value] = status
            if source_items and len(sentiment_failures) == len(theme_failures) == len(source_items):
                status.state = SourceState.EXCLUDED
                kind = Counter(f.kind for f in sentiment_failures + theme_failures).most_common(1)[0][0]
                status.errors.append(ErrorReport(
                    kind=kind,
                    operation="analyze",
                    message=(f"All {len(source_items)} {source.value} items failed sentiment and theme analysis; "
                             f"first error: {sentiment_failures[0].message}"),
                    caveat="Source excluded: its feedback is missing from every metric, cluster and insight.",
                    source=source.value,
                ))
                logger.error(f"❌ {source.value}: every item failed, source excluded")
                continue

            kept.add(source)
            if sentiment_failures or theme_failures:
                status.state = SourceState.PARTIAL
                status.errors.extend(_summarize_failures(sentiment_failures, "sentiment", source.value))
                status.errors.extend(_summarize_failures(theme_failures, "themes", source.value))
                logger.warning(f"⚠️ {source.value}: {len(sentiment_failures)} sentiment and "
                               f"{len(theme_failures)} theme failures")
            else:
                logger.info(f"✅ {source.value}: {len(source_items)} items analyzed")
        return statuses, kept

    @staticmethod
    def _analyzer_status(outcomes: Sequence[SentimentOutcome], theme_outcomes: Sequence[ThemeOutcome],
                         clusters: ClusterAnalysis, patterns: PatternAnalysis,
                         stage_errors: Dict[str, List[ErrorReport]],
                         source_errors: Sequence[InsufficientDataError], kept_sources) -> Dict[str, AnalyzerStatus]:
        def status(name: str, done: int, failed: List[ItemFailure], operation: str) -> AnalyzerStatus:
            if stage_errors.get(name) or (failed and not done):
                state = AnalyzerState.FAILED
            elif failed:
                state = AnalyzerState.PARTIAL
            else:
                state = AnalyzerState.OK
            return AnalyzerStatus(name=name, state=state, completed=done, failed=len(failed),
                                  errors=list(stage_errors.get(name, [])) + _summarize_failures(failed, operation))

        sentiment_failures = [o.error for o in outcomes if not o.ok]
        theme_failures = [o.error for o in theme_outcomes if not o.ok]
        kept = {s.value for s in kept_sources}
        pattern_errors = [e.to_report() for e in source_errors if e.source in kept]
        return {
            "sentiment": status("sentiment", len(outcomes) - len(sentiment_failures), sentiment_failures, "sentiment"),
            "clustering": status("clustering", len(theme_outcomes) - len(theme_failures), theme_failures, "themes"),
            "patterns": AnalyzerStatus(
                name="patterns",
                state=AnalyzerState.PARTIAL if pattern_errors else AnalyzerState.OK,
                completed=len(clusters.clusters_by_source),
                failed=len(pattern_errors),
                errors=pattern_errors,
            ),
            "synthesis": AnalyzerStatus(name="synthesis", state=AnalyzerState.OK, completed=1),
        }
