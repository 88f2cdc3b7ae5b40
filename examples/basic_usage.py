"""Basic usage examples for FeedbackHub."""

from datetime import datetime, timedelta, timezone

from feedbackhub import AnalysisConfig, AnalysisOrchestrator, FeedbackItem, InMemoryFeedbackStore, TimeWindow
from feedbackhub.core.models import AppReviewMetadata, Source, SupportTicketMetadata, SurveyMetadata
from feedbackhub.services.llm import FallbackSemanticClient

SAMPLE_TEXTS = {
    Source.SURVEY: [
        "The app crashes every time I open the export screen, terrible",
        "Support never replied to my ticket, awful experience",
        "Love the new dashboard, easy and intuitive",
    ],
    Source.SUPPORT_TICKET: [
        "App crashed twice during checkout, broken since the update",
        "I was charged twice, please refund the duplicate payment",
        "Waited three days for an agent to reply to my ticket",
    ],
    Source.APP_REVIEW: [
        "Crashes constantly on my phone, useless",
        "Great app, fast and helpful",
        "Too expensive for what it offers, poor value",
    ],
}


def _metadata(source: Source, n: int):
    if source == Source.SURVEY:
        return SurveyMetadata(survey_id="q3-nps", question="How likely are you to recommend us?", nps_score=n % 11)
    if source == Source.SUPPORT_TICKET:
        return SupportTicketMetadata(ticket_id=f"T-{n}", channel="email", priority="normal")
    return AppReviewMetadata(platform="ios", rating=1 + n % 5, app_version="4.2.0")


def build_store(now: datetime) -> InMemoryFeedbackStore:
    """Forty items per source, cycling through the sample texts."""
    store = InMemoryFeedbackStore()
    for source, texts in SAMPLE_TEXTS.items():
        for n in range(40):
            store.add(FeedbackItem(
                id=f"{source.value}-{n}",
                source=source,
                text=texts[n % len(texts)],
                timestamp=now - timedelta(hours=n),
                metadata=_metadata(source, n),
            ))
    return store


def example_offline_analysis():
    """Example: full analysis with the offline semantic client."""
    now = datetime.now(timezone.utc)
    store = build_store(now)
    config = AnalysisConfig(
        window=TimeWindow(start=now - timedelta(days=7), end=now + timedelta(seconds=1)),
        sources=list(Source),
        focus_areas=["crashes"],
    )

    orchestrator = AnalysisOrchestrator(store, FallbackSemanticClient())
    orchestrator.subscribe(lambda event: print(f"  {event.stage}: {event.percent:.0f}%"))
    bundle = orchestrator.run(config)

    print(f"📊 Analyzed {bundle.total_items} items, mean sentiment {bundle.sentiment.metrics.mean_score:+.2f}")
    print(f"🧩 {len(bundle.clusters.clusters)} clusters:")
    for cluster in bundle.clusters.clusters:
        print(f"  {cluster.theme}: {cluster.member_count} items ({cluster.severity.value})")
    print(f"🔗 {len(bundle.patterns.patterns)} cross-source patterns, "
          f"{len(bundle.patterns.discrepancies)} discrepancies")
    print("💡 Insights:")
    for insight in bundle.insights:
        print(f"  [{insight.priority.value}] {insight.title} ({insight.confidence:.2f})")


if __name__ == "__main__":
    print("🚀 FeedbackHub Examples")
    print("=" * 50)
    example_offline_analysis()
    print("\n✅ All examples completed successfully!")
