"""Constants and configuration values for FeedbackHub."""

# Sentiment Constants
class SentimentConstants:
    """Constants related to sentiment scoring and aggregation."""

    NEUTRAL_BAND = 0.1  # |score| <= band is neutral
    SHIFT_THRESHOLD = 0.2  # mean delta needed to report a trend
    OUTLIER_STD = 3.0  # text length z-score beyond which an item is an outlier
    HISTOGRAM_BUCKETS = 5  # buckets over [-1.0, 1.0]
    MAX_RATIONALE_LENGTH = 200  # chars kept from the model's rationale
    MAX_TEXT_FOR_PROMPT = 1200  # chars of feedback text sent per request

# Clustering Constants
class ClusterConstants:
    """Constants for theme grouping, severity and trends."""

    SIMILARITY_THRESHOLD = 0.75  # cosine similarity needed to merge themes
    RELATED_THRESHOLD = 0.5  # clusters this similar are listed as related
    HIGH_SHARE = 0.05  # member share above which a cluster is high severity
    MEDIUM_SHARE = 0.01  # member share above which a cluster is medium severity
    HIGH_SEVERITY_SENTIMENT = -0.4  # mean sentiment below which a cluster is high severity
    REPRESENTATIVE_COUNT = 3  # examples kept per cluster
    TREND_GROWTH = 0.2  # +/- growth rate separating emerging/resolving from stable
    MIN_SOURCE_ITEMS = 3  # themed items a source needs for per-source clustering
    DEFAULT_CATEGORIES = [
        "bug", "performance", "feature_request", "customer_service",
        "usability", "pricing", "other",
    ]

# Pattern Constants
class PatternConstants:
    """Constants for cross-source pattern recognition."""

    DISCREPANCY_THRESHOLD = 0.4  # max pairwise sentiment delta before flagging

# Insight Constants
class InsightConstants:
    """Constants for insight synthesis."""

    MIN_INSIGHTS = 3  # insights wanted for large analyses
    RELAXATION_MIN_ITEMS = 100  # analyzed items needed before relaxing the threshold
    RELAXATION_STEP = 0.1  # threshold decrement per relaxation round
    VOLUME_SCALE = 20.0  # evidence volume at which the volume term reaches ~63%
    VOLUME_WEIGHT = 0.6  # weight of evidence volume in confidence
    CONSISTENCY_WEIGHT = 0.4  # weight of consistency in confidence
    SECONDARY_FACTOR = 0.8  # confidence factor for secondary candidates
    CRITICAL_SHARE = 0.2  # cluster share that makes a negative cluster critical
    MAX_EVIDENCE = 5  # evidence items kept per insight
    MAX_EXCERPT_LENGTH = 160  # chars for evidence excerpts

# Error Handling Constants
class ErrorConstants:
    """Constants for error handling and retries."""

    MAX_RETRY_ATTEMPTS = 3  # maximum retry attempts
    RETRY_DELAYS = (1.0, 2.0, 4.0)  # seconds before each retry
    REQUEST_TIMEOUT_MS = 30000  # timeout for API requests

# Pool Constants
class PoolConstants:
    """Constants for concurrency and progress reporting."""

    DEFAULT_MAX_WORKERS = 24  # concurrent in-flight semantic requests
    RUN_TIME_BUDGET_SECONDS = 600.0  # wall-clock budget per analysis run
    STAGE_JOIN_GRACE_SECONDS = 5.0  # extra wait for analyzer stages after the budget
    PROGRESS_MIN_ITEMS = 1000  # runs above this size emit progress events
    PROGRESS_STEP_PERCENT = 10  # emit an event at every step of this size

# Cache Constants
class CacheConstants:
    """Constants for caching behavior."""

    CACHE_TTL_HOURS = 24  # cache time-to-live in hours
    CACHE_KEY_LENGTH = 8  # length of cache key for logging

# File and Path Constants
class FileConstants:
    """Constants for file operations."""

    LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
    BUNDLE_VERSION = "1.0.0"  # version written into exported bundles
