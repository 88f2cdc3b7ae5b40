"""Services for FeedbackHub."""

from .analysis_manager import AnalysisOrchestrator
from .llm import FallbackSemanticClient, OpenAISemanticClient, SemanticClientFactory
from .semantic import EmbeddingCache, RetryPolicy, SemanticClient, SemanticSession
from .storage import FeedbackStore, InMemoryFeedbackStore, JsonFileFeedbackStore
from .worker_pool import ProgressReporter, WorkerPool

__all__ = [
    "AnalysisOrchestrator",
    "FallbackSemanticClient",
    "OpenAISemanticClient",
    "SemanticClientFactory",
    "EmbeddingCache",
    "RetryPolicy",
    "SemanticClient",
    "SemanticSession",
    "FeedbackStore",
    "InMemoryFeedbackStore",
    "JsonFileFeedbackStore",
    "ProgressReporter",
    "WorkerPool",
]
