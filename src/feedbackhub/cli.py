"""Command-line interface for FeedbackHub."""

import argparse
import json
import logging
import sys
from datetime import timedelta
from typing import Any, Dict, List

import yaml

from .core.analysis_models import AnalysisBundle, IssueCluster
from .core.config import settings
from .core.constants import FileConstants
from .core.errors import FeedbackHubError
from .core.models import AnalysisConfig
from .services.analysis_manager import AnalysisOrchestrator
from .services.llm import SemanticClientFactory
from .services.storage import JsonFileFeedbackStore
from .utils.data_prep import bundle_from_json, export_to_json, load_bundle

logger = logging.getLogger(__name__)


def setup_logging():
    """Setup logging configuration."""
    logging.basicConfig(
        level=getattr(logging, settings.log_level.upper(), logging.INFO),
        format=FileConstants.LOG_FORMAT
    )


def load_config_file(path: str) -> Dict[str, Any]:
    """Load an analysis configuration YAML file."""
    with open(path, 'r', encoding='utf-8') as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def build_config(args, store: JsonFileFeedbackStore) -> AnalysisConfig:
    """Merge settings defaults, the YAML file and command-line overrides."""
    data: Dict[str, Any] = {
        "min_confidence": settings.min_confidence,
        "similarity_threshold": settings.similarity_threshold,
        "max_workers": settings.max_workers,
        "time_budget_seconds": settings.run_time_budget_seconds,
        "semantic": {
            "model": settings.semantic_model,
            "temperature": settings.temperature,
            "max_tokens": settings.max_tokens,
            "retry_attempts": settings.max_retries,
            "timeout_ms": settings.request_timeout_ms,
        },
    }
    if args.config:
        file_data = load_config_file(args.config)
        data["semantic"].update(file_data.pop("semantic", None) or {})
        data.update(file_data)

    window = dict(data.get("window") or {})
    if args.start:
        window["start"] = args.start
    if args.end:
        window["end"] = args.end
    if not window and len(store):
        # default window covers every loaded item
        timestamps = [item.timestamp for item in store.fetch_all()]
        window = {"start": min(timestamps).isoformat(), "end": (max(timestamps) + timedelta(seconds=1)).isoformat()}
    data["window"] = window

    if args.sources:
        data["sources"] = [s.strip() for s in args.sources.split(",") if s.strip()]
    data.setdefault("sources", ["survey", "support_ticket", "app_review"])
    if args.min_confidence is not None:
        data["min_confidence"] = args.min_confidence
    if args.compare_previous:
        data["compare_previous_window"] = True
    return AnalysisConfig.from_dict(data)


def load_history(path: str) -> List[IssueCluster]:
    """Historical clusters from an exported bundle or a JSON list of clusters."""
    with open(path, 'r', encoding='utf-8') as f:
        text = f.read()
    data = json.loads(text)
    if isinstance(data, list):
        return [IssueCluster.from_dict(c) for c in data]
    return bundle_from_json(text).clusters.clusters


def print_reports(error: FeedbackHubError):
    print(f"Analysis failed [{error.kind}]: {error.message}")
    if error.caveat:
        print(f"  Caveat: {error.caveat}")
    for report in getattr(error, "reports", []):
        where = f" ({report.source})" if report.source else ""
        print(f"  - {report.kind}{where}: {report.message}")
        print(f"    {report.caveat}")


def print_summary(bundle: AnalysisBundle):
    metrics = bundle.sentiment.metrics
    print(f"\nAnalysis {bundle.run_id}: {bundle.total_items} items"
          f"{' (partial)' if bundle.is_partial else ''}")
    print(f"Sentiment: mean {metrics.mean_score:+.2f} "
          f"({metrics.positive} positive, {metrics.neutral} neutral, {metrics.negative} negative)")
    if bundle.sentiment.trend:
        trend = bundle.sentiment.trend
        print(f"Trend: {trend.direction.value} by {trend.magnitude:.2f}")

    for name, status in bundle.source_status.items():
        print(f"  {name}: {status.state.value} ({status.items_fetched} items)")

    print(f"\nTop clusters:")
    for cluster in bundle.clusters.clusters[:5]:
        print(f"  {cluster.id} {cluster.theme}: {cluster.member_count} items, {cluster.severity.value}")

    print(f"\nInsights:")
    for insight in bundle.insights:
        print(f"  [{insight.priority.value}] {insight.title} (confidence {insight.confidence:.2f})")

    for report in bundle.errors:
        print(f"  ! {report.kind}: {report.message}")


def cmd_analyze(args):
    """Analyze command."""
    store = JsonFileFeedbackStore(args.input)
    config = build_config(args, store)
    history = load_history(args.history) if args.history else None

    orchestrator = AnalysisOrchestrator(store, SemanticClientFactory.create())
    print(f"Analyzing {len(store)} feedback items...")
    bundle = orchestrator.run(config, historical_clusters=history)

    if args.out:
        export_to_json(bundle, args.out)
        print(f"Results exported to {args.out}")
    print_summary(bundle)


def cmd_export(args):
    """Export command."""
    try:
        bundle = load_bundle(args.input_file)
    except FileNotFoundError:
        print(f"Input file {args.input_file} not found")
        sys.exit(1)
    except (ValueError, KeyError) as e:
        print(f"Invalid bundle in input file: {e}")
        sys.exit(1)

    if args.pretty:
        print(json.dumps(bundle.to_dict(), indent=2, ensure_ascii=False))
    else:
        output_file = args.output or args.input_file.replace('.json', '_export.json')
        export_to_json(bundle, output_file)
        print(f"Exported to {output_file}")


def main():
    """Main CLI entry point."""
    parser = argparse.ArgumentParser(description="FeedbackHub - Customer Feedback Insight Pipeline")
    subparsers = parser.add_subparsers(dest='command', help='Available commands')

    # Analyze command
    analyze_parser = subparsers.add_parser('analyze', help='Analyze feedback items')
    analyze_parser.add_argument('--input', required=True, help='JSON file of feedback items')
    analyze_parser.add_argument('--config', help='Analysis configuration YAML file')
    analyze_parser.add_argument('--start', help='Window start (ISO-8601)')
    analyze_parser.add_argument('--end', help='Window end (ISO-8601, exclusive)')
    analyze_parser.add_argument('--sources', help='Comma-separated sources: survey,support_ticket,app_review')
    analyze_parser.add_argument('--min-confidence', type=float, help='Minimum insight confidence')
    analyze_parser.add_argument('--compare-previous', action='store_true',
                                help='Compare sentiment with the previous window')
    analyze_parser.add_argument('--history', help='Historical clusters (bundle or cluster list JSON)')
    analyze_parser.add_argument('--out', help='Output JSON file')

    # Export command
    export_parser = subparsers.add_parser('export', help='Export analysis results')
    export_parser.add_argument('--in', dest='input_file', required=True, help='Input JSON file')
    export_parser.add_argument('--out', dest='output', help='Output file (optional)')
    export_parser.add_argument('--pretty', action='store_true', help='Pretty print to stdout')

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        return

    setup_logging()

    try:
        if args.command == 'analyze':
            cmd_analyze(args)
        elif args.command == 'export':
            cmd_export(args)
    except KeyboardInterrupt:
        print("\nOperation cancelled by user")
    except FeedbackHubError as e:
        print_reports(e)
        sys.exit(1)
    except Exception as e:
        logger.error(f"Command failed: {e}")
        sys.exit(1)
