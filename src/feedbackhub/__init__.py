"""FeedbackHub - evidence-backed insights from customer feedback."""

__version__ = "1.0.0"
__author__ = "FeedbackHub Team"

from .core.models import *
from .core.analysis_models import AnalysisBundle, Insight
from .core.config import settings
from .services.analysis_manager import AnalysisOrchestrator
from .services.llm import SemanticClientFactory
from .services.storage import InMemoryFeedbackStore, JsonFileFeedbackStore

__all__ = [
    "settings",
    "AnalysisBundle",
    "AnalysisConfig",
    "AnalysisOrchestrator",
    "FeedbackItem",
    "Insight",
    "InMemoryFeedbackStore",
    "JsonFileFeedbackStore",
    "SemanticClientFactory",
    "Source",
    "TimeWindow",
]
