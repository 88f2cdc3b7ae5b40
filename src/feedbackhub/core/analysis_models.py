"""Analysis result models for FeedbackHub."""

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Dict, List, Optional

from .models import AnalysisConfig


def _opt(fn, value):
    return fn(value) if value is not None else None


class SentimentLabel(Enum):
    POSITIVE = "positive"
    NEGATIVE = "negative"
    NEUTRAL = "neutral"


class Severity(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"high": 3, "medium": 2, "low": 1}[self.value]


class TrendStatus(Enum):
    EMERGING = "emerging"
    STABLE = "stable"
    RESOLVING = "resolving"


class TrendDirection(Enum):
    IMPROVING = "improving"
    DECLINING = "declining"


class InsightType(Enum):
    PRODUCT_IMPROVEMENT = "product_improvement"
    CUSTOMER_SERVICE = "customer_service"
    FEATURE_REQUEST = "feature_request"
    BUG_REPORT = "bug_report"
    OPPORTUNITY = "opportunity"
    RISK = "risk"


class Priority(Enum):
    CRITICAL = "critical"
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"

    @property
    def rank(self) -> int:
        return {"critical": 4, "high": 3, "medium": 2, "low": 1}[self.value]

    def raised(self) -> "Priority":
        """One tier up, capped at critical."""
        order = [Priority.LOW, Priority.MEDIUM, Priority.HIGH, Priority.CRITICAL]
        return order[min(order.index(self) + 1, len(order) - 1)]


class BusinessValue(Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


class SourceState(Enum):
    OK = "ok"
    PARTIAL = "partial"
    EXCLUDED = "excluded"


class AnalyzerState(Enum):
    OK = "ok"
    PARTIAL = "partial"
    FAILED = "failed"


# ---- Errors and per-item failures ----

@dataclass
class ErrorReport:
    """A fatal or source-level problem, with the report caveat it implies."""
    kind: str
    operation: str
    message: str
    caveat: str
    source: Optional[str] = None
    item_id: Optional[str] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ErrorReport":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "operation": self.operation,
            "message": self.message,
            "caveat": self.caveat,
            "source": self.source,
            "item_id": self.item_id,
        }


@dataclass
class ItemFailure:
    """Why one item could not be analyzed."""
    item_id: str
    kind: str
    message: str
    attempts: int = 1

    @classmethod
    def from_error(cls, item_id: str, error) -> "ItemFailure":
        return cls(
            item_id=item_id,
            kind=getattr(error, "kind", "error"),
            message=str(getattr(error, "message", error)),
            attempts=getattr(error, "attempts", 1),
        )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ItemFailure":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {"item_id": self.item_id, "kind": self.kind, "message": self.message, "attempts": self.attempts}


# ---- Sentiment ----

@dataclass
class SentimentResult:
    """Sentiment of a single feedback item."""
    item_id: str
    classification: SentimentLabel
    score: float  # [-1.0, 1.0]
    confidence: float  # [0.0, 1.0]
    rationale: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentResult":
        return cls(
            item_id=data["item_id"],
            classification=SentimentLabel(data["classification"]),
            score=data["score"],
            confidence=data["confidence"],
            rationale=data["rationale"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "classification": self.classification.value,
            "score": self.score,
            "confidence": self.confidence,
            "rationale": self.rationale,
        }


@dataclass
class SentimentOutcome:
    """One slot of a sentiment batch: a result or a failure for the item."""
    item_id: str
    result: Optional[SentimentResult] = None
    error: Optional[ItemFailure] = None

    @property
    def ok(self) -> bool:
        return self.result is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentOutcome":
        return cls(
            item_id=data["item_id"],
            result=_opt(SentimentResult.from_dict, data.get("result")),
            error=_opt(ItemFailure.from_dict, data.get("error")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "result": _opt(SentimentResult.to_dict, self.result),
            "error": _opt(ItemFailure.to_dict, self.error),
        }


@dataclass
class SentimentMetrics:
    """Aggregate over a set of sentiment results."""
    total: int
    positive: int
    negative: int
    neutral: int
    mean_score: float
    distribution: List[int]  # five buckets over [-1.0, 1.0]
    outliers: int = 0
    failed: int = 0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentMetrics":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "total": self.total,
            "positive": self.positive,
            "negative": self.negative,
            "neutral": self.neutral,
            "mean_score": self.mean_score,
            "distribution": list(self.distribution),
            "outliers": self.outliers,
            "failed": self.failed,
        }


@dataclass
class SentimentTrend:
    """A significant change of mean sentiment between two windows."""
    direction: TrendDirection
    magnitude: float
    current_mean: float
    previous_mean: float

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentTrend":
        return cls(
            direction=TrendDirection(data["direction"]),
            magnitude=data["magnitude"],
            current_mean=data["current_mean"],
            previous_mean=data["previous_mean"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "direction": self.direction.value,
            "magnitude": self.magnitude,
            "current_mean": self.current_mean,
            "previous_mean": self.previous_mean,
        }


@dataclass
class SentimentAnalysis:
    """Everything the sentiment analyzer produced for one run."""
    outcomes: List[SentimentOutcome]
    metrics: SentimentMetrics
    metrics_by_source: Dict[str, SentimentMetrics] = field(default_factory=dict)
    trend: Optional[SentimentTrend] = None
    previous_metrics: Optional[SentimentMetrics] = None

    @property
    def results(self) -> List[SentimentResult]:
        return [o.result for o in self.outcomes if o.ok]

    @property
    def failures(self) -> List[ItemFailure]:
        return [o.error for o in self.outcomes if not o.ok]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SentimentAnalysis":
        return cls(
            outcomes=[SentimentOutcome.from_dict(o) for o in data["outcomes"]],
            metrics=SentimentMetrics.from_dict(data["metrics"]),
            metrics_by_source={k: SentimentMetrics.from_dict(v) for k, v in data.get("metrics_by_source", {}).items()},
            trend=_opt(SentimentTrend.from_dict, data.get("trend")),
            previous_metrics=_opt(SentimentMetrics.from_dict, data.get("previous_metrics")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "outcomes": [o.to_dict() for o in self.outcomes],
            "metrics": self.metrics.to_dict(),
            "metrics_by_source": {k: v.to_dict() for k, v in self.metrics_by_source.items()},
            "trend": _opt(SentimentTrend.to_dict, self.trend),
            "previous_metrics": _opt(SentimentMetrics.to_dict, self.previous_metrics),
        }


# ---- Themes and clusters ----

@dataclass
class ThemeExtraction:
    """Theme of one feedback item."""
    label: str
    description: str
    category: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThemeExtraction":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {"label": self.label, "description": self.description, "category": self.category}


@dataclass
class ThemeOutcome:
    """One slot of a theme-extraction batch."""
    item_id: str
    theme: Optional[ThemeExtraction] = None
    error: Optional[ItemFailure] = None

    @property
    def ok(self) -> bool:
        return self.theme is not None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ThemeOutcome":
        return cls(
            item_id=data["item_id"],
            theme=_opt(ThemeExtraction.from_dict, data.get("theme")),
            error=_opt(ItemFailure.from_dict, data.get("error")),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "theme": _opt(ThemeExtraction.to_dict, self.theme),
            "error": _opt(ItemFailure.to_dict, self.error),
        }


@dataclass
class RepresentativeExample:
    """A feedback item chosen to illustrate a cluster."""
    item_id: str
    source: str
    text: str
    timestamp: datetime

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "RepresentativeExample":
        return cls(
            item_id=data["item_id"],
            source=data["source"],
            text=data["text"],
            timestamp=datetime.fromisoformat(data["timestamp"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "item_id": self.item_id,
            "source": self.source,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class IssueCluster:
    """A group of feedback items sharing a theme."""
    id: str
    theme: str
    description: str
    category: str
    member_count: int
    percentage: float  # share of the corpus, 0-100
    severity: Severity
    sentiment_mean: Optional[float]
    examples: List[RepresentativeExample]
    related_cluster_ids: List[str] = field(default_factory=list)
    member_ids: List[str] = field(default_factory=list)
    source_counts: Dict[str, int] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "IssueCluster":
        return cls(
            id=data["id"],
            theme=data["theme"],
            description=data["description"],
            category=data["category"],
            member_count=data["member_count"],
            percentage=data["percentage"],
            severity=Severity(data["severity"]),
            sentiment_mean=data.get("sentiment_mean"),
            examples=[RepresentativeExample.from_dict(e) for e in data["examples"]],
            related_cluster_ids=list(data.get("related_cluster_ids", [])),
            member_ids=list(data.get("member_ids", [])),
            source_counts=dict(data.get("source_counts", {})),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "theme": self.theme,
            "description": self.description,
            "category": self.category,
            "member_count": self.member_count,
            "percentage": self.percentage,
            "severity": self.severity.value,
            "sentiment_mean": self.sentiment_mean,
            "examples": [e.to_dict() for e in self.examples],
            "related_cluster_ids": list(self.related_cluster_ids),
            "member_ids": list(self.member_ids),
            "source_counts": dict(self.source_counts),
        }


@dataclass
class ClusterTrend:
    """Change of a cluster's size against a historical cluster list."""
    cluster_id: str
    theme: str
    current_count: int
    previous_count: int
    growth_rate: Optional[float]
    status: TrendStatus

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterTrend":
        return cls(
            cluster_id=data["cluster_id"],
            theme=data["theme"],
            current_count=data["current_count"],
            previous_count=data["previous_count"],
            growth_rate=data.get("growth_rate"),
            status=TrendStatus(data["status"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "cluster_id": self.cluster_id,
            "theme": self.theme,
            "current_count": self.current_count,
            "previous_count": self.previous_count,
            "growth_rate": self.growth_rate,
            "status": self.status.value,
        }


@dataclass
class ClusterAnalysis:
    """Everything the issue clusterer produced for one run."""
    clusters: List[IssueCluster]
    clusters_by_source: Dict[str, List[IssueCluster]] = field(default_factory=dict)
    trends: List[ClusterTrend] = field(default_factory=list)
    outcomes: List[ThemeOutcome] = field(default_factory=list)

    @property
    def failures(self) -> List[ItemFailure]:
        return [o.error for o in self.outcomes if not o.ok]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ClusterAnalysis":
        return cls(
            clusters=[IssueCluster.from_dict(c) for c in data["clusters"]],
            clusters_by_source={
                k: [IssueCluster.from_dict(c) for c in v] for k, v in data.get("clusters_by_source", {}).items()
            },
            trends=[ClusterTrend.from_dict(t) for t in data.get("trends", [])],
            outcomes=[ThemeOutcome.from_dict(o) for o in data.get("outcomes", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "clusters": [c.to_dict() for c in self.clusters],
            "clusters_by_source": {k: [c.to_dict() for c in v] for k, v in self.clusters_by_source.items()},
            "trends": [t.to_dict() for t in self.trends],
            "outcomes": [o.to_dict() for o in self.outcomes],
        }


# ---- Cross-source patterns ----

@dataclass
class SourcePatternStats:
    """How one source contributes to a pattern."""
    source: str
    frequency: int
    normalized_frequency: float
    sentiment_mean: float
    cluster_ids: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourcePatternStats":
        return cls(
            source=data["source"],
            frequency=data["frequency"],
            normalized_frequency=data["normalized_frequency"],
            sentiment_mean=data["sentiment_mean"],
            cluster_ids=list(data.get("cluster_ids", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "frequency": self.frequency,
            "normalized_frequency": self.normalized_frequency,
            "sentiment_mean": self.sentiment_mean,
            "cluster_ids": list(self.cluster_ids),
        }


@dataclass
class CrossSourcePattern:
    """A theme observed in two or more sources."""
    theme: str
    sources: List[SourcePatternStats]
    source_count: int
    consistency: float  # [0, 1]
    critical: bool

    @property
    def source_names(self) -> List[str]:
        return [s.source for s in self.sources]

    @property
    def total_frequency(self) -> int:
        return sum(s.frequency for s in self.sources)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "CrossSourcePattern":
        return cls(
            theme=data["theme"],
            sources=[SourcePatternStats.from_dict(s) for s in data["sources"]],
            source_count=data["source_count"],
            consistency=data["consistency"],
            critical=data["critical"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "theme": self.theme,
            "sources": [s.to_dict() for s in self.sources],
            "source_count": self.source_count,
            "consistency": self.consistency,
            "critical": self.critical,
        }


@dataclass
class Discrepancy:
    """A cross-source pattern whose sentiment differs sharply between sources."""
    theme: str
    sources: List[str]  # most positive first
    sentiment_delta: float
    description: str

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Discrepancy":
        return cls(
            theme=data["theme"],
            sources=list(data["sources"]),
            sentiment_delta=data["sentiment_delta"],
            description=data["description"],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "theme": self.theme,
            "sources": list(self.sources),
            "sentiment_delta": self.sentiment_delta,
            "description": self.description,
        }


@dataclass
class PatternAnalysis:
    """Cross-source comparison of per-source clusters."""
    patterns: List[CrossSourcePattern] = field(default_factory=list)
    discrepancies: List[Discrepancy] = field(default_factory=list)
    correlation_strength: float = 0.0
    source_only_themes: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def critical_patterns(self) -> List[CrossSourcePattern]:
        return [p for p in self.patterns if p.critical]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "PatternAnalysis":
        return cls(
            patterns=[CrossSourcePattern.from_dict(p) for p in data.get("patterns", [])],
            discrepancies=[Discrepancy.from_dict(d) for d in data.get("discrepancies", [])],
            correlation_strength=data.get("correlation_strength", 0.0),
            source_only_themes={k: list(v) for k, v in data.get("source_only_themes", {}).items()},
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "patterns": [p.to_dict() for p in self.patterns],
            "discrepancies": [d.to_dict() for d in self.discrepancies],
            "correlation_strength": self.correlation_strength,
            "source_only_themes": {k: list(v) for k, v in self.source_only_themes.items()},
        }


# ---- Insights ----

@dataclass
class EvidenceItem:
    """A piece of data backing an insight."""
    kind: str  # "feedback", "cluster", "pattern" or "sentiment"
    reference: str
    excerpt: str
    source: Optional[str] = None
    value: Optional[float] = None

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "EvidenceItem":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "kind": self.kind,
            "reference": self.reference,
            "excerpt": self.excerpt,
            "source": self.source,
            "value": self.value,
        }


@dataclass
class InsightMetrics:
    """Impact figures of an insight."""
    affected_customers: int
    frequency: float  # share of analyzed feedback, 0-100
    sentiment_impact: float
    business_value: BusinessValue

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InsightMetrics":
        return cls(
            affected_customers=data["affected_customers"],
            frequency=data["frequency"],
            sentiment_impact=data["sentiment_impact"],
            business_value=BusinessValue(data["business_value"]),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "affected_customers": self.affected_customers,
            "frequency": self.frequency,
            "sentiment_impact": self.sentiment_impact,
            "business_value": self.business_value.value,
        }


@dataclass
class Insight:
    """A prioritized, evidence-backed conclusion."""
    id: str
    type: InsightType
    title: str
    description: str
    confidence: float
    priority: Priority
    category: str
    evidence: List[EvidenceItem]
    metrics: InsightMetrics
    recommendations: List[str] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Insight":
        return cls(
            id=data["id"],
            type=InsightType(data["type"]),
            title=data["title"],
            description=data["description"],
            confidence=data["confidence"],
            priority=Priority(data["priority"]),
            category=data["category"],
            evidence=[EvidenceItem.from_dict(e) for e in data["evidence"]],
            metrics=InsightMetrics.from_dict(data["metrics"]),
            recommendations=list(data.get("recommendations", [])),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "type": self.type.value,
            "title": self.title,
            "description": self.description,
            "confidence": self.confidence,
            "priority": self.priority.value,
            "category": self.category,
            "evidence": [e.to_dict() for e in self.evidence],
            "metrics": self.metrics.to_dict(),
            "recommendations": list(self.recommendations),
        }


# ---- Run status and bundle ----

@dataclass
class SourceStatus:
    """Outcome of one feedback source in a run."""
    source: str
    state: SourceState
    items_fetched: int
    sentiment_failures: int = 0
    theme_failures: int = 0
    errors: List[ErrorReport] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SourceStatus":
        return cls(
            source=data["source"],
            state=SourceState(data["state"]),
            items_fetched=data["items_fetched"],
            sentiment_failures=data.get("sentiment_failures", 0),
            theme_failures=data.get("theme_failures", 0),
            errors=[ErrorReport.from_dict(e) for e in data.get("errors", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "source": self.source,
            "state": self.state.value,
            "items_fetched": self.items_fetched,
            "sentiment_failures": self.sentiment_failures,
            "theme_failures": self.theme_failures,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class AnalyzerStatus:
    """Outcome of one analyzer in a run."""
    name: str
    state: AnalyzerState
    completed: int = 0
    failed: int = 0
    errors: List[ErrorReport] = field(default_factory=list)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalyzerStatus":
        return cls(
            name=data["name"],
            state=AnalyzerState(data["state"]),
            completed=data.get("completed", 0),
            failed=data.get("failed", 0),
            errors=[ErrorReport.from_dict(e) for e in data.get("errors", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "state": self.state.value,
            "completed": self.completed,
            "failed": self.failed,
            "errors": [e.to_dict() for e in self.errors],
        }


@dataclass
class ProgressEvent:
    """Completion notice emitted during large runs."""
    stage: str
    completed: int
    total: int
    percent: float


@dataclass
class AnalysisBundle:
    """The orchestrator's return value for one analysis run."""
    run_id: str
    config: AnalysisConfig
    generated_at: datetime
    total_items: int
    sentiment: SentimentAnalysis
    clusters: ClusterAnalysis
    patterns: PatternAnalysis
    insights: List[Insight]
    source_status: Dict[str, SourceStatus] = field(default_factory=dict)
    analyzer_status: Dict[str, AnalyzerStatus] = field(default_factory=dict)
    errors: List[ErrorReport] = field(default_factory=list)

    @property
    def is_partial(self) -> bool:
        return any(s.state != SourceState.OK for s in self.source_status.values()) or any(
            a.state != AnalyzerState.OK for a in self.analyzer_status.values()
        )

    @property
    def excluded_sources(self) -> List[str]:
        return [k for k, s in self.source_status.items() if s.state == SourceState.EXCLUDED]

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisBundle":
        return cls(
            run_id=data["run_id"],
            config=AnalysisConfig.from_dict(data["config"]),
            generated_at=datetime.fromisoformat(data["generated_at"]),
            total_items=data["total_items"],
            sentiment=SentimentAnalysis.from_dict(data["sentiment"]),
            clusters=ClusterAnalysis.from_dict(data["clusters"]),
            patterns=PatternAnalysis.from_dict(data["patterns"]),
            insights=[Insight.from_dict(i) for i in data["insights"]],
            source_status={k: SourceStatus.from_dict(v) for k, v in data.get("source_status", {}).items()},
            analyzer_status={k: AnalyzerStatus.from_dict(v) for k, v in data.get("analyzer_status", {}).items()},
            errors=[ErrorReport.from_dict(e) for e in data.get("errors", [])],
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "config": self.config.to_dict(),
            "generated_at": self.generated_at.isoformat(),
            "total_items": self.total_items,
            "sentiment": self.sentiment.to_dict(),
            "clusters": self.clusters.to_dict(),
            "patterns": self.patterns.to_dict(),
            "insights": [i.to_dict() for i in self.insights],
            "source_status": {k: v.to_dict() for k, v in self.source_status.items()},
            "analyzer_status": {k: v.to_dict() for k, v in self.analyzer_status.items()},
            "errors": [e.to_dict() for e in self.errors],
        }
