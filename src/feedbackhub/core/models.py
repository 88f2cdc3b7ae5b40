"""Data models for FeedbackHub inputs: feedback items and analysis configuration."""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, ClassVar, Dict, Iterable, Optional, Tuple, Union

from .constants import ClusterConstants, ErrorConstants, PoolConstants, SentimentConstants
from .errors import ConfigurationError


class Source(Enum):
    SURVEY = "survey"
    SUPPORT_TICKET = "support_ticket"
    APP_REVIEW = "app_review"

    @classmethod
    def ordered(cls, sources: Iterable[Union["Source", str]]) -> Tuple["Source", ...]:
        """Deduplicate and sort sources in enumeration order."""
        wanted = {s if isinstance(s, Source) else Source(str(s).strip().lower()) for s in sources}
        return tuple(s for s in cls if s in wanted)


def _as_utc(value: datetime) -> datetime:
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def _parse_datetime(value: Union[str, datetime]) -> datetime:
    if isinstance(value, datetime):
        return _as_utc(value)
    return _as_utc(datetime.fromisoformat(str(value).replace("Z", "+00:00")))


# ---- Source-specific metadata (one variant per source kind) ----

@dataclass(frozen=True)
class SurveyMetadata:
    """Metadata of a survey response."""
    kind: ClassVar[Source] = Source.SURVEY

    survey_id: str
    question: str
    nps_score: int

    def __post_init__(self):
        if not 0 <= int(self.nps_score) <= 10:
            raise ValueError(f"nps_score must be within 0..10, got {self.nps_score}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "survey_id": self.survey_id,
                "question": self.question, "nps_score": self.nps_score}


@dataclass(frozen=True)
class SupportTicketMetadata:
    """Metadata of a support ticket."""
    kind: ClassVar[Source] = Source.SUPPORT_TICKET
    PRIORITIES: ClassVar[Tuple[str, ...]] = ("low", "normal", "high", "urgent")

    ticket_id: str
    channel: str
    priority: str

    def __post_init__(self):
        if self.priority not in self.PRIORITIES:
            raise ValueError(f"Invalid ticket priority: {self.priority}. Must be one of {self.PRIORITIES}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "ticket_id": self.ticket_id,
                "channel": self.channel, "priority": self.priority}


@dataclass(frozen=True)
class AppReviewMetadata:
    """Metadata of an app store review."""
    kind: ClassVar[Source] = Source.APP_REVIEW

    platform: str
    rating: int
    app_version: str

    def __post_init__(self):
        if not 1 <= int(self.rating) <= 5:
            raise ValueError(f"rating must be within 1..5, got {self.rating}")

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "platform": self.platform,
                "rating": self.rating, "app_version": self.app_version}


SourceMetadata = Union[SurveyMetadata, SupportTicketMetadata, AppReviewMetadata]

METADATA_TYPES = {
    Source.SURVEY: SurveyMetadata,
    Source.SUPPORT_TICKET: SupportTicketMetadata,
    Source.APP_REVIEW: AppReviewMetadata,
}


def metadata_from_dict(data: Dict[str, Any]) -> SourceMetadata:
    """Build the metadata variant named by the ``kind`` tag."""
    fields = dict(data)
    kind = Source(fields.pop("kind"))
    return METADATA_TYPES[kind](**fields)


@dataclass(frozen=True)
class FeedbackItem:
    """A single piece of customer feedback. Immutable once stored."""
    id: str
    source: Source
    text: str
    timestamp: datetime
    metadata: SourceMetadata

    def __post_init__(self):
        if not isinstance(self.source, Source):
            object.__setattr__(self, "source", Source(self.source))
        object.__setattr__(self, "timestamp", _as_utc(self.timestamp))
        expected = METADATA_TYPES[self.source]
        if not isinstance(self.metadata, expected):
            raise ValueError(
                f"Item {self.id}: {self.source.value} feedback needs {expected.__name__}, "
                f"got {type(self.metadata).__name__}"
            )

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "FeedbackItem":
        source = Source(data["source"])
        metadata = dict(data["metadata"])
        metadata.setdefault("kind", source.value)
        return cls(
            id=str(data["id"]),
            source=source,
            text=data.get("text", ""),
            timestamp=_parse_datetime(data["timestamp"]),
            metadata=metadata_from_dict(metadata),
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "source": self.source.value,
            "text": self.text,
            "timestamp": self.timestamp.isoformat(),
            "metadata": self.metadata.to_dict(),
        }


@dataclass(frozen=True)
class TimeWindow:
    """Half-open date range [start, end) of one analysis run."""
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, "start", _as_utc(self.start))
        object.__setattr__(self, "end", _as_utc(self.end))

    def contains(self, moment: datetime) -> bool:
        return self.start <= _as_utc(moment) < self.end

    def previous(self) -> "TimeWindow":
        """The equal-length window immediately before this one."""
        return TimeWindow(start=self.start - (self.end - self.start), end=self.start)

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "TimeWindow":
        return cls(start=_parse_datetime(data["start"]), end=_parse_datetime(data["end"]))

    def to_dict(self) -> Dict[str, Any]:
        return {"start": self.start.isoformat(), "end": self.end.isoformat()}


@dataclass(frozen=True)
class SemanticConfig:
    """Options forwarded to every semantic service call of a run."""
    model: str = "gpt-4o-mini"
    temperature: float = 0.2
    max_tokens: int = 300
    retry_attempts: int = ErrorConstants.MAX_RETRY_ATTEMPTS
    timeout_ms: int = ErrorConstants.REQUEST_TIMEOUT_MS

    @classmethod
    def from_settings(cls) -> "SemanticConfig":
        from .config import settings
        return cls(
            model=settings.semantic_model,
            temperature=settings.temperature,
            max_tokens=settings.max_tokens,
            retry_attempts=settings.max_retries,
            timeout_ms=settings.request_timeout_ms,
        )

    @property
    def timeout_seconds(self) -> float:
        return self.timeout_ms / 1000.0

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "SemanticConfig":
        return cls(**data)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "model": self.model,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
            "retry_attempts": self.retry_attempts,
            "timeout_ms": self.timeout_ms,
        }


@dataclass(frozen=True)
class AnalysisConfig:
    """Configuration of one analysis run.

    Immutable for the run's lifetime; every analyzer reads the same instance.
    """
    window: TimeWindow
    sources: Tuple[Source, ...]
    min_confidence: float = 0.5
    focus_areas: Tuple[str, ...] = ()
    custom_categories: Tuple[str, ...] = ()
    semantic: SemanticConfig = field(default_factory=SemanticConfig)
    similarity_threshold: float = ClusterConstants.SIMILARITY_THRESHOLD
    neutral_band: float = SentimentConstants.NEUTRAL_BAND
    representative_count: int = ClusterConstants.REPRESENTATIVE_COUNT
    compare_previous_window: bool = False
    max_workers: int = PoolConstants.DEFAULT_MAX_WORKERS
    time_budget_seconds: float = PoolConstants.RUN_TIME_BUDGET_SECONDS

    def __post_init__(self):
        try:
            object.__setattr__(self, "sources", Source.ordered(self.sources or ()))
        except ValueError as e:
            raise ConfigurationError(f"Unknown feedback source: {e}", operation="configure") from e
        object.__setattr__(self, "focus_areas", tuple(self.focus_areas or ()))
        object.__setattr__(self, "custom_categories", tuple(self.custom_categories or ()))

    def validate(self) -> "AnalysisConfig":
        """Raise ConfigurationError when the configuration cannot drive a run."""
        problems = []
        if not self.sources:
            problems.append("source set is empty")
        if not isinstance(self.window, TimeWindow) or not (
                isinstance(self.window.start, datetime) and isinstance(self.window.end, datetime)):
            problems.append("time window is malformed")
        elif self.window.start >= self.window.end:
            problems.append(f"time window start {self.window.start.isoformat()} is not before end {self.window.end.isoformat()}")
        if not 0.0 <= self.min_confidence <= 1.0:
            problems.append(f"min_confidence {self.min_confidence} outside [0, 1]")
        if not 0.0 < self.similarity_threshold <= 1.0:
            problems.append(f"similarity_threshold {self.similarity_threshold} outside (0, 1]")
        if not 0.0 <= self.neutral_band < 1.0:
            problems.append(f"neutral_band {self.neutral_band} outside [0, 1)")
        if self.representative_count < 1:
            problems.append("representative_count must be at least 1")
        if self.max_workers < 1:
            problems.append("max_workers must be at least 1")
        if self.time_budget_seconds <= 0:
            problems.append("time_budget_seconds must be positive")
        if self.semantic.retry_attempts < 1 or self.semantic.timeout_ms <= 0:
            problems.append("semantic retry_attempts and timeout_ms must be positive")

        if problems:
            raise ConfigurationError("Invalid analysis configuration: " + "; ".join(problems),
                                     operation="configure")
        return self

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "AnalysisConfig":
        defaults = cls.__dataclass_fields__
        kwargs = {k: v for k, v in data.items() if k in defaults and k not in ("window", "semantic")}
        kwargs.setdefault("sources", ())
        try:
            window = TimeWindow.from_dict(data["window"])
        except (KeyError, TypeError, ValueError) as e:
            raise ConfigurationError(f"Malformed time window: {e}", operation="configure") from e
        semantic = SemanticConfig.from_dict(data["semantic"]) if data.get("semantic") else SemanticConfig()
        return cls(window=window, semantic=semantic, **kwargs)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "window": self.window.to_dict(),
            "sources": [s.value for s in self.sources],
            "min_confidence": self.min_confidence,
            "focus_areas": list(self.focus_areas),
            "custom_categories": list(self.custom_categories),
            "semantic": self.semantic.to_dict(),
            "similarity_threshold": self.similarity_threshold,
            "neutral_band": self.neutral_band,
            "representative_count": self.representative_count,
            "compare_previous_window": self.compare_previous_window,
            "max_workers": self.max_workers,
            "time_budget_seconds": self.time_budget_seconds,
        }
