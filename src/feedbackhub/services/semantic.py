"""Semantic client boundary: retry policy, embedding cache and per-run session."""

import json
import logging
import re
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Callable, Dict, List, Optional, Sequence, Tuple

from tenacity import Retrying, before_sleep_log, retry_if_exception, stop_after_attempt

from ..core.constants import ErrorConstants
from ..core.errors import FeedbackHubError, PermanentServiceError, is_transient
from ..core.models import SemanticConfig
from .worker_pool import Slot, WorkerPool

logger = logging.getLogger(__name__)


def _strip_code_fences(s: str) -> str:
    s = s.strip()
    return re.sub(r"^```(?:json)?|```$", "", s, flags=re.IGNORECASE | re.MULTILINE).strip()


def parse_json_object(s: str) -> dict:
    """Parse the JSON object of a semantic response, tolerating code fences and prose."""
    cleaned = _strip_code_fences(s or "")
    try:
        data = json.loads(cleaned)
    except ValueError:
        cleaned = re.sub(r",\s*([}\]])", r"\1", cleaned)  # trailing commas
        m = re.search(r"\{.*\}", cleaned, re.S)
        if not m:
            raise PermanentServiceError(f"Response is not JSON: {(s or '')[:120]}")
        try:
            data = json.loads(m.group(0))
        except ValueError as e:
            raise PermanentServiceError(f"Response is not valid JSON: {e}")
    if not isinstance(data, dict):
        raise PermanentServiceError(f"Expected a JSON object, got {type(data).__name__}")
    return data


@dataclass(frozen=True)
class RetryPolicy:
    """
    Bounded retry applied at the semantic-client boundary.

    Attempt n (1-based) that fails with a retryable error waits
    ``delay_sequence[n - 1]`` seconds (the last delay repeats) before the next one.
    With the default three attempts only the first two delays are slept;
    the 4s entry applies once both ``max_attempts`` and the call's
    ``retry_attempts`` allow a fourth attempt.
    """
    max_attempts: int = ErrorConstants.MAX_RETRY_ATTEMPTS
    delay_sequence: Tuple[float, ...] = ErrorConstants.RETRY_DELAYS
    retryable: Callable[[BaseException], bool] = is_transient
    sleep: Callable[[float], None] = time.sleep

    @classmethod
    def from_settings(cls) -> "RetryPolicy":
        from ..core.config import settings
        return cls(max_attempts=settings.max_retries, delay_sequence=tuple(settings.retry_delays))

    def delay_for(self, attempt_number: int) -> float:
        if not self.delay_sequence:
            return 0.0
        return float(self.delay_sequence[min(attempt_number, len(self.delay_sequence)) - 1])

    def _wait(self, retry_state) -> float:
        return self.delay_for(retry_state.attempt_number)

    def call(self, fn, *args, max_attempts: Optional[int] = None, **kwargs):
        """Call fn with retries; the final error is re-raised with ``attempts`` set."""
        attempts = max(1, min(self.max_attempts, max_attempts or self.max_attempts))
        retrying = Retrying(
            stop=stop_after_attempt(attempts),
            wait=self._wait,
            retry=retry_if_exception(self.retryable),
            sleep=self.sleep,
            before_sleep=before_sleep_log(logger, logging.WARNING),
            reraise=True,
        )
        try:
            return retrying(fn, *args, **kwargs)
        except FeedbackHubError as e:
            e.attempts = retrying.statistics.get("attempt_number", 1)
            raise


class EmbeddingCache:
    """
    Per-run embedding cache keyed by exact text.

    Append-only; concurrent writers use insert-if-absent so the first stored
    vector for a text wins.
    """

    def __init__(self):
        self._vectors: Dict[str, List[float]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._vectors)

    def __contains__(self, text: str) -> bool:
        return text in self._vectors

    def get(self, text: str) -> Optional[List[float]]:
        with self._lock:
            return self._vectors.get(text)

    def put_if_absent(self, text: str, vector: List[float]) -> List[float]:
        with self._lock:
            return self._vectors.setdefault(text, vector)

    def get_or_compute(self, text: str, compute: Callable[[], List[float]]) -> List[float]:
        cached = self.get(text)
        if cached is not None:
            self.hits += 1
            return cached
        self.misses += 1
        return self.put_if_absent(text, compute())


class SemanticClient(ABC):
    """
    Request/response wrapper around a remote understanding service.

    Subclasses implement one raw attempt of each call and raise
    TransientServiceError or PermanentServiceError; this class adds the retry
    policy, the embedding cache and the batched variants.
    """

    name = "semantic"

    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        self.retry_policy = retry_policy or RetryPolicy.from_settings()

    @abstractmethod
    def _complete_once(self, prompt: str, config: SemanticConfig) -> str:
        """One completion attempt."""

    @abstractmethod
    def _embed_once(self, text: str, config: SemanticConfig) -> List[float]:
        """One embedding attempt."""

    def complete(self, prompt: str, config: SemanticConfig) -> str:
        try:
            return self.retry_policy.call(self._complete_once, prompt, config, max_attempts=config.retry_attempts)
        except FeedbackHubError as e:
            e.operation = e.operation or "complete"
            raise

    def embed(self, text: str, config: Optional[SemanticConfig] = None,
              cache: Optional[EmbeddingCache] = None) -> List[float]:
        config = config or SemanticConfig.from_settings()

        def compute() -> List[float]:
            try:
                return self.retry_policy.call(self._embed_once, text, config, max_attempts=config.retry_attempts)
            except FeedbackHubError as e:
                e.operation = e.operation or "embed"
                raise

        if cache is None:
            return compute()
        return cache.get_or_compute(text, compute)

    def complete_batch(self, prompts: Sequence[str], config: SemanticConfig,
                       pool: Optional[WorkerPool] = None, stage: str = "complete",
                       track_progress: bool = False) -> List[Slot]:
        """Complete every prompt; slot i holds the response or error for prompt i."""
        if pool is None:
            with WorkerPool() as temp_pool:
                return temp_pool.map_ordered(lambda p: self.complete(p, config), prompts, stage)
        return pool.map_ordered(lambda p: self.complete(p, config), prompts, stage, track_progress)

    def embed_batch(self, texts: Sequence[str], config: Optional[SemanticConfig] = None,
                    pool: Optional[WorkerPool] = None, cache: Optional[EmbeddingCache] = None,
                    stage: str = "embed") -> List[Slot]:
        """Embed every text; slot i holds the vector or error for text i."""
        if pool is None:
            with WorkerPool() as temp_pool:
                return temp_pool.map_ordered(lambda t: self.embed(t, config, cache), texts, stage)
        return pool.map_ordered(lambda t: self.embed(t, config, cache), texts, stage)


class SemanticSession:
    """Binds a client to one run's semantic config, worker pool and embedding cache."""

    def __init__(self, client: SemanticClient, config: SemanticConfig, pool: WorkerPool,
                 cache: Optional[EmbeddingCache] = None):
        self.client = client
        self.config = config
        self.pool = pool
        self.cache = cache if cache is not None else EmbeddingCache()

    @property
    def expired(self) -> bool:
        return self.pool.expired()

    def complete(self, prompt: str) -> str:
        return self.client.complete(prompt, self.config)

    def complete_batch(self, prompts: Sequence[str], stage: str = "complete",
                       track_progress: bool = False) -> List[Slot]:
        return self.client.complete_batch(prompts, self.config, self.pool, stage, track_progress)

    def embed(self, text: str) -> List[float]:
        return self.client.embed(text, self.config, self.cache)

    def embed_batch(self, texts: Sequence[str], stage: str = "embed") -> List[Slot]:
        return self.client.embed_batch(texts, self.config, self.pool, self.cache, stage)
