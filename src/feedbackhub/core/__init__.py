"""Core modules for FeedbackHub."""

from .models import *
from .analysis_models import *
from .errors import *
from .config import settings

__all__ = [
    "settings",
    "Source",
    "FeedbackItem",
    "TimeWindow",
    "SemanticConfig",
    "AnalysisConfig",
    "SentimentResult",
    "SentimentMetrics",
    "IssueCluster",
    "CrossSourcePattern",
    "Discrepancy",
    "Insight",
    "AnalysisBundle",
    "ConfigurationError",
]
