"""Shared fixtures: a scripted offline semantic client and feedback item factories."""

import json
import re
import threading
import time
from datetime import datetime, timedelta, timezone

import pytest

from feedbackhub.core.errors import PermanentServiceError, TransientServiceError
from feedbackhub.core.models import (
    AnalysisConfig, AppReviewMetadata, FeedbackItem, SemanticConfig, Source, SupportTicketMetadata,
    SurveyMetadata, TimeWindow,
)
from feedbackhub.services.semantic import RetryPolicy, SemanticClient, SemanticSession
from feedbackhub.services.worker_pool import WorkerPool

BASE_TIME = datetime(2025, 9, 1, tzinfo=timezone.utc)
DIM = 64

TAG_RE = re.compile(r"\[(\w+)=([^\]]+)\]")


def vec(*values):
    """A DIM-length vector starting with the given values."""
    return list(values) + [0.0] * (DIM - len(values))


class ScriptedClient(SemanticClient):
    """
    Offline client driven by tags in the feedback text.

    ``[score=-0.8]`` sets the sentiment score, ``[theme=App Crashes]`` and
    ``[category=bug]`` the extracted theme. Prompts containing ``fail_marker``
    fail permanently; those containing ``slow_marker`` sleep first. Distinct
    labels embed to orthogonal one-hot vectors unless ``vectors`` overrides them.
    """

    name = "scripted"

    def __init__(self, vectors=None, fail_marker="[fail]", slow_marker="[slow]", slow_seconds=2.0,
                 embed_failures=(), transient_failures=0):
        super().__init__(RetryPolicy(sleep=lambda s: None))
        self.vectors = dict(vectors or {})
        self.fail_marker = fail_marker
        self.slow_marker = slow_marker
        self.slow_seconds = slow_seconds
        self.embed_failures = set(embed_failures)
        self.transient_failures = transient_failures
        self.complete_calls = 0
        self.embed_calls = 0
        self._axes = {}
        self._lock = threading.Lock()

    def _complete_once(self, prompt, config):
        with self._lock:
            self.complete_calls += 1
            if self.transient_failures > 0:
                self.transient_failures -= 1
                raise TransientServiceError("scripted rate limit")
        if self.slow_marker and self.slow_marker in prompt:
            time.sleep(self.slow_seconds)
        if self.fail_marker and self.fail_marker in prompt:
            raise PermanentServiceError("rejected by scripted service")

        tags = dict(TAG_RE.findall(prompt))
        if "TASK=SENTIMENT" in prompt:
            return json.dumps({
                "classification": "ignored",
                "score": float(tags.get("score", 0.0)),
                "confidence": 0.8,
                "rationale": "scripted",
            })
        return json.dumps({
            "label": tags.get("theme", "General Feedback"),
            "description": f"Customers mention {tags.get('theme', 'general feedback').lower()}.",
            "category": tags.get("category", "other"),
        })

    def _embed_once(self, text, config):
        with self._lock:
            self.embed_calls += 1
        if text in self.embed_failures:
            raise PermanentServiceError("scripted embedding failure")
        if text in self.vectors:
            return list(self.vectors[text])
        with self._lock:
            axis = self._axes.setdefault(text.lower(), len(self._axes))
        vector = [0.0] * DIM
        vector[axis % DIM] = 1.0
        return vector


_METADATA = {
    Source.SURVEY: lambda n: SurveyMetadata(survey_id="s-1", question="How are we doing?", nps_score=n % 11),
    Source.SUPPORT_TICKET: lambda n: SupportTicketMetadata(ticket_id=f"T-{n}", channel="email", priority="normal"),
    Source.APP_REVIEW: lambda n: AppReviewMetadata(platform="ios", rating=1 + n % 5, app_version="4.2.0"),
}


def make_item(n, source=Source.SURVEY, text="", score=None, theme=None, category=None,
              timestamp=None, prefix=None):
    tags = []
    if score is not None:
        tags.append(f"[score={score}]")
    if theme is not None:
        tags.append(f"[theme={theme}]")
    if category is not None:
        tags.append(f"[category={category}]")
    return FeedbackItem(
        id=f"{prefix or source.value}-{n}",
        source=source,
        text=" ".join([text or "Feedback text"] + tags),
        timestamp=timestamp or BASE_TIME + timedelta(hours=n),
        metadata=_METADATA[source](n),
    )


@pytest.fixture
def window():
    return TimeWindow(start=BASE_TIME, end=BASE_TIME + timedelta(days=30))


@pytest.fixture
def config(window):
    return AnalysisConfig(window=window, sources=list(Source))


@pytest.fixture
def client():
    return ScriptedClient()


@pytest.fixture
def session(client):
    pool = WorkerPool(max_workers=8)
    yield SemanticSession(client, SemanticConfig(), pool)
    pool.close()
