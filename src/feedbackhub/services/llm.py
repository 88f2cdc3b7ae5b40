"""Semantic service providers: OpenAI and an offline fallback."""

import hashlib
import json
import logging
import math
import re
from typing import List, Optional

import openai
from diskcache import Cache

from ..core.config import settings
from ..core.constants import CacheConstants
from ..core.errors import PermanentServiceError, TransientServiceError
from ..core.models import SemanticConfig
from ..core.themes import allowed_categories, lexicon_counts, match_theme
from .semantic import RetryPolicy, SemanticClient

logger = logging.getLogger(__name__)

PROMPT_VERSION = "v1.0"

SYSTEM_PROMPT = "You analyze customer feedback for a product team. Output strict JSON only, no prose."

_TASK_RE = re.compile(r"^TASK=(\w+)", re.MULTILINE)
_CATEGORIES_RE = re.compile(r"CATEGORIES=([^.\n]+)")
_BODY_RE = re.compile(r"<<<\n?(.*?)\n?>>>", re.S)


def _classify_openai_error(e: Exception, operation: str):
    """Map an openai exception onto the transient/permanent taxonomy."""
    message = f"{type(e).__name__}: {e}"
    if isinstance(e, (openai.APITimeoutError, openai.APIConnectionError,
                      openai.RateLimitError, openai.InternalServerError)):
        return TransientServiceError(message, operation=operation)
    status = getattr(e, "status_code", None)
    if status is not None and status >= 500:
        return TransientServiceError(message, operation=operation)
    return PermanentServiceError(message, operation=operation)


class SemanticClientFactory:
    """Factory for creating semantic clients."""

    @staticmethod
    def create(retry_policy: Optional[RetryPolicy] = None) -> SemanticClient:
        """Create appropriate semantic client."""
        if settings.effective_openai_key:
            cache_dir = settings.cache_dir if settings.enable_response_cache else None
            return OpenAISemanticClient(retry_policy=retry_policy, cache_dir=cache_dir)
        return FallbackSemanticClient(retry_policy=retry_policy)


class OpenAISemanticClient(SemanticClient):
    """OpenAI-based semantic client."""

    name = "openai"

    def __init__(self, api_key: Optional[str] = None, client=None, embedding_model: Optional[str] = None,
                 retry_policy: Optional[RetryPolicy] = None, cache_dir: Optional[str] = None):
        super().__init__(retry_policy)
        # Retries belong to our policy, not the SDK's
        self.client = client or openai.OpenAI(api_key=api_key or settings.effective_openai_key, max_retries=0)
        self.embedding_model = embedding_model or settings.embedding_model
        self.cache = Cache(cache_dir) if cache_dir else None
        logger.info(f"OpenAI semantic client initialized (embeddings: {self.embedding_model}, "
                    f"response cache: {'on' if self.cache is not None else 'off'})")

    def _cache_key(self, prompt: str, config: SemanticConfig) -> str:
        return hashlib.md5(
            f"{config.model}|{prompt}|{config.temperature}|{config.max_tokens}|{PROMPT_VERSION}".encode()
        ).hexdigest()

    def _complete_once(self, prompt: str, config: SemanticConfig) -> str:
        cache_key = self._cache_key(prompt, config)
        if self.cache is not None:
            cached = self.cache.get(cache_key)
            if cached:
                logger.debug(f"Cache hit for semantic request: {cache_key[:CacheConstants.CACHE_KEY_LENGTH]}...")
                return cached

        try:
            response = self.client.chat.completions.create(
                model=config.model,
                messages=[
                    {"role": "system", "content": SYSTEM_PROMPT},
                    {"role": "user", "content": prompt},
                ],
                max_tokens=config.max_tokens,
                temperature=config.temperature,
                timeout=config.timeout_seconds,
            )
        except openai.APIError as e:
            raise _classify_openai_error(e, "complete") from e

        content = (response.choices[0].message.content or "").strip() if response.choices else ""
        if not content:
            raise PermanentServiceError("Semantic service returned an empty completion", operation="complete")

        if self.cache is not None:
            self.cache.set(cache_key, content, expire=3600 * CacheConstants.CACHE_TTL_HOURS)
        return content

    def _embed_once(self, text: str, config: SemanticConfig) -> List[float]:
        if not text or not text.strip():
            raise PermanentServiceError("Cannot embed empty text", operation="embed")
        try:
            response = self.client.embeddings.create(
                model=self.embedding_model,
                input=text,
                timeout=config.timeout_seconds,
            )
        except openai.APIError as e:
            raise _classify_openai_error(e, "embed") from e

        vector = list(response.data[0].embedding) if response.data else []
        # Zero vectors have no defined similarity
        if not vector or sum(abs(x) for x in vector) < 1e-9:
            raise PermanentServiceError("Embedding is empty or all zeros", operation="embed")
        return vector


class FallbackSemanticClient(SemanticClient):
    """Offline semantic client using keyword rules and hashed bag-of-words embeddings."""

    name = "fallback"
    DIMENSIONS = 64

    def __init__(self, retry_policy: Optional[RetryPolicy] = None):
        super().__init__(retry_policy)
        logger.info("Using fallback semantic client")

    def _complete_once(self, prompt: str, config: SemanticConfig) -> str:
        task_match = _TASK_RE.search(prompt or "")
        body_match = _BODY_RE.search(prompt or "")
        if not task_match or not body_match:
            raise PermanentServiceError("Fallback client needs a TASK header and a <<< >>> body", operation="complete")

        task = task_match.group(1).upper()
        text = body_match.group(1)
        if task == "SENTIMENT":
            return json.dumps(self._sentiment(text))
        if task == "THEME":
            categories_match = _CATEGORIES_RE.search(prompt)
            categories = [c.strip() for c in categories_match.group(1).split(",")] if categories_match else allowed_categories()
            return json.dumps(self._theme(text, categories))
        raise PermanentServiceError(f"Fallback client cannot handle task {task!r}", operation="complete")

    @staticmethod
    def _sentiment(text: str) -> dict:
        pos, neg = lexicon_counts(text)
        hits = pos + neg
        if hits == 0:
            return {"classification": "neutral", "score": 0.0, "confidence": 0.3,
                    "rationale": "No sentiment-bearing words found"}
        score = (pos - neg) / hits * min(1.0, 0.5 + 0.25 * hits)
        label = "positive" if score > 0 else "negative" if score < 0 else "neutral"
        return {
            "classification": label,
            "score": round(score, 4),
            "confidence": round(min(0.9, 0.4 + 0.1 * hits), 4),
            "rationale": f"{pos} positive and {neg} negative keywords",
        }

    @staticmethod
    def _theme(text: str, categories: List[str]) -> dict:
        label, category, _ = match_theme(text)
        if category not in categories:
            category = "other"
        return {
            "label": label,
            "description": f"Customers mention {label.lower()}.",
            "category": category,
        }

    def _embed_once(self, text: str, config: SemanticConfig) -> List[float]:
        tokens = [t for t in re.findall(r"[a-z0-9]+", (text or "").lower()) if len(t) >= 3]
        if not tokens:
            raise PermanentServiceError("Cannot embed text without words", operation="embed")
        vector = [0.0] * self.DIMENSIONS
        for token in tokens:
            digest = hashlib.md5(token.encode()).digest()
            idx = digest[0] % self.DIMENSIONS
            vector[idx] += 1.0 if digest[1] % 2 == 0 else -1.0
        norm = math.sqrt(sum(v * v for v in vector)) or 1.0
        return [v / norm for v in vector]
