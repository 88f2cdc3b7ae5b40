"""Tests for the semantic client boundary: retries, JSON parsing, caching and providers."""

import json
import threading
import time
from types import SimpleNamespace

import httpx
import openai
import pytest

from feedbackhub.core.errors import BudgetExceededError, PermanentServiceError, TransientServiceError
from feedbackhub.core.models import SemanticConfig
from feedbackhub.services.llm import FallbackSemanticClient, OpenAISemanticClient, _classify_openai_error
from feedbackhub.services.semantic import EmbeddingCache, RetryPolicy, SemanticClient, parse_json_object
from feedbackhub.services.worker_pool import WorkerPool

from conftest import ScriptedClient


def _flaky(failures, error_cls=TransientServiceError, result="ok"):
    calls = {"n": 0}

    def fn():
        calls["n"] += 1
        if calls["n"] <= failures:
            raise error_cls(f"failure {calls['n']}")
        return result

    return fn, calls


class TestRetryPolicy:
    """Bounded retry with a fixed delay sequence."""

    def test_transient_errors_are_retried_with_delays(self):
        """Two transient failures then success: three calls, sleeps of 1s and 2s."""
        sleeps = []
        policy = RetryPolicy(sleep=sleeps.append)
        fn, calls = _flaky(2)

        assert policy.call(fn) == "ok"
        assert calls["n"] == 3
        assert sleeps == [1.0, 2.0]

    def test_transient_error_exhausts_attempts(self):
        """A persistent transient error is re-raised after three attempts."""
        sleeps = []
        policy = RetryPolicy(sleep=sleeps.append)
        fn, calls = _flaky(10)

        with pytest.raises(TransientServiceError) as exc_info:
            policy.call(fn)
        assert calls["n"] == 3
        assert exc_info.value.attempts == 3
        assert sleeps == [1.0, 2.0]

    def test_permanent_errors_are_not_retried(self):
        """A permanent error fails on the first attempt."""
        sleeps = []
        policy = RetryPolicy(sleep=sleeps.append)
        fn, calls = _flaky(10, error_cls=PermanentServiceError)

        with pytest.raises(PermanentServiceError) as exc_info:
            policy.call(fn)
        assert calls["n"] == 1
        assert exc_info.value.attempts == 1
        assert sleeps == []

    def test_max_attempts_override_is_capped(self):
        """Per-call attempts cannot exceed the policy's maximum."""
        policy = RetryPolicy(sleep=lambda s: None)
        fn, calls = _flaky(10)
        with pytest.raises(TransientServiceError):
            policy.call(fn, max_attempts=1)
        assert calls["n"] == 1

        fn, calls = _flaky(10)
        with pytest.raises(TransientServiceError):
            policy.call(fn, max_attempts=10)
        assert calls["n"] == 3

    def test_fourth_attempt_waits_four_seconds(self):
        """The 4s delay is used once a policy allows a fourth attempt."""
        sleeps = []
        policy = RetryPolicy(max_attempts=4, sleep=sleeps.append)
        fn, calls = _flaky(10)

        with pytest.raises(TransientServiceError) as exc_info:
            policy.call(fn)
        assert calls["n"] == 4
        assert exc_info.value.attempts == 4
        assert sleeps == [1.0, 2.0, 4.0]

    def test_last_delay_repeats(self):
        policy = RetryPolicy(max_attempts=5)
        assert [policy.delay_for(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 4.0, 4.0]


class TestParseJsonObject:
    """Tolerant parsing of model responses."""

    def test_plain_object(self):
        assert parse_json_object('{"score": 0.5}') == {"score": 0.5}

    def test_code_fences_and_prose(self):
        """Fenced and prose-wrapped objects are both recovered."""
        assert parse_json_object('```json\n{"label": "App Crashes"}\n```') == {"label": "App Crashes"}
        assert parse_json_object('Sure! {"score": -0.2, } Hope that helps.') == {"score": -0.2}

    def test_non_json_is_permanent(self):
        with pytest.raises(PermanentServiceError):
            parse_json_object("I cannot rate this feedback.")

    def test_non_object_is_permanent(self):
        with pytest.raises(PermanentServiceError):
            parse_json_object("[1, 2, 3]")


class TestEmbeddingCache:
    """Per-run embedding cache."""

    def test_get_or_compute_computes_once(self):
        cache = EmbeddingCache()
        calls = []

        def compute():
            calls.append(1)
            return [1.0, 0.0]

        assert cache.get_or_compute("crash", compute) == [1.0, 0.0]
        assert cache.get_or_compute("crash", compute) == [1.0, 0.0]
        assert len(calls) == 1
        assert cache.hits == 1 and cache.misses == 1

    def test_first_vector_wins(self):
        """Insert-if-absent keeps the first stored vector."""
        cache = EmbeddingCache()
        assert cache.put_if_absent("crash", [1.0]) == [1.0]
        assert cache.put_if_absent("crash", [2.0]) == [1.0]
        assert cache.get("crash") == [1.0]
        assert len(cache) == 1

    def test_client_embed_uses_cache(self):
        client = ScriptedClient()
        cache = EmbeddingCache()
        first = client.embed("App Crashes", SemanticConfig(), cache)
        second = client.embed("App Crashes", SemanticConfig(), cache)
        assert first == second
        assert client.embed_calls == 1


class TestBatches:
    """Batched calls keep input order and isolate failures."""

    def test_complete_batch_preserves_order(self):
        """Slower early prompts still land in their own slots."""

        class DelayedClient(SemanticClient):
            def _complete_once(self, prompt, config):
                time.sleep(0.01 * (10 - int(prompt)))
                return prompt

            def _embed_once(self, text, config):
                return [1.0]

        client = DelayedClient(RetryPolicy(sleep=lambda s: None))
        prompts = [str(n) for n in range(10)]
        with WorkerPool(max_workers=5) as pool:
            slots = client.complete_batch(prompts, SemanticConfig(), pool)

        assert [s.index for s in slots] == list(range(10))
        assert [s.value for s in slots] == prompts

    def test_permanent_failures_stay_in_their_slots(self):
        """Fifty failing prompts produce fifty failed slots and no exception."""
        client = ScriptedClient()
        prompts = [f"TASK=SENTIMENT [fail] {n}" for n in range(50)]
        with WorkerPool(max_workers=8) as pool:
            slots = client.complete_batch(prompts, SemanticConfig(), pool)

        assert len(slots) == 50
        assert all(isinstance(s.error, PermanentServiceError) for s in slots)
        assert client.complete_calls == 50, "Permanent errors must not be retried"

    def test_transient_failure_is_retried_inside_batch(self):
        client = ScriptedClient(transient_failures=2)
        with WorkerPool(max_workers=1) as pool:
            slots = client.complete_batch(["TASK=SENTIMENT [score=0.5]"], SemanticConfig(), pool)

        assert slots[0].ok
        assert json.loads(slots[0].value)["score"] == 0.5
        assert client.complete_calls == 3

    def test_expired_pool_cancels_calls(self):
        client = ScriptedClient()
        with WorkerPool(max_workers=2, deadline=time.monotonic() - 1) as pool:
            slots = client.embed_batch(["a", "b"], SemanticConfig(), pool)
        assert all(isinstance(s.error, BudgetExceededError) for s in slots)
        assert client.embed_calls == 0


class TestFallbackClient:
    """Offline keyword-rule client."""

    def test_sentiment_of_negative_text(self):
        from feedbackhub.analysis.sentiment import SENTIMENT_PROMPT

        client = FallbackSemanticClient(RetryPolicy(sleep=lambda s: None))
        prompt = SENTIMENT_PROMPT.format(source="survey", text="The app is terrible and broken")
        data = json.loads(client.complete(prompt, SemanticConfig()))
        assert data["score"] < 0
        assert 0.0 <= data["confidence"] <= 1.0

    def test_sentiment_without_keywords_is_neutral(self):
        from feedbackhub.analysis.sentiment import SENTIMENT_PROMPT

        client = FallbackSemanticClient(RetryPolicy(sleep=lambda s: None))
        prompt = SENTIMENT_PROMPT.format(source="survey", text="I opened the settings page today")
        data = json.loads(client.complete(prompt, SemanticConfig()))
        assert data["score"] == 0.0
        assert data["classification"] == "neutral"

    def test_theme_matches_taxonomy(self):
        from feedbackhub.analysis.clustering import THEME_PROMPT
        from feedbackhub.core.themes import theme_hint_for_categories

        client = FallbackSemanticClient(RetryPolicy(sleep=lambda s: None))
        prompt = THEME_PROMPT.format(source="app review", category_hint=theme_hint_for_categories(),
                                     text="It crashes whenever I upload a photo")
        data = json.loads(client.complete(prompt, SemanticConfig()))
        assert data["label"] == "App Crashes"
        assert data["category"] == "bug"

    def test_prompt_without_task_is_permanent(self):
        client = FallbackSemanticClient(RetryPolicy(sleep=lambda s: None))
        with pytest.raises(PermanentServiceError):
            client.complete("hello", SemanticConfig())

    def test_embeddings_are_normalized_and_deterministic(self):
        client = FallbackSemanticClient(RetryPolicy(sleep=lambda s: None))
        first = client.embed("App Crashes", SemanticConfig())
        second = client.embed("App Crashes", SemanticConfig())
        assert first == second
        assert len(first) == FallbackSemanticClient.DIMENSIONS
        assert sum(v * v for v in first) == pytest.approx(1.0)

    def test_embedding_without_words_is_permanent(self):
        client = FallbackSemanticClient(RetryPolicy(sleep=lambda s: None))
        with pytest.raises(PermanentServiceError):
            client.embed("!!", SemanticConfig())


_REQUEST = httpx.Request("POST", "https://api.openai.com/v1/chat/completions")


def _status_error(cls, status):
    return cls(f"HTTP {status}", response=httpx.Response(status, request=_REQUEST), body=None)


def _fake_openai(completion=None, embedding=None):
    return SimpleNamespace(
        chat=SimpleNamespace(completions=SimpleNamespace(create=completion)),
        embeddings=SimpleNamespace(create=embedding),
    )


def _completion(content):
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=content))])


class TestOpenAIClient:
    """OpenAI provider with the SDK replaced by a stub."""

    def test_error_classification(self):
        """Timeouts, rate limits and 5xx are transient; auth and bad requests are permanent."""
        assert isinstance(_classify_openai_error(openai.APITimeoutError(request=_REQUEST), "complete"),
                          TransientServiceError)
        assert isinstance(_classify_openai_error(_status_error(openai.RateLimitError, 429), "complete"),
                          TransientServiceError)
        assert isinstance(_classify_openai_error(_status_error(openai.InternalServerError, 503), "complete"),
                          TransientServiceError)
        assert isinstance(_classify_openai_error(_status_error(openai.AuthenticationError, 401), "complete"),
                          PermanentServiceError)
        assert isinstance(_classify_openai_error(_status_error(openai.BadRequestError, 400), "complete"),
                          PermanentServiceError)

    def test_rate_limit_is_retried(self):
        calls = []
        lock = threading.Lock()

        def create(**kwargs):
            with lock:
                calls.append(kwargs)
            if len(calls) < 3:
                raise _status_error(openai.RateLimitError, 429)
            return _completion('{"score": 0.4}')

        client = OpenAISemanticClient(client=_fake_openai(completion=create),
                                      retry_policy=RetryPolicy(sleep=lambda s: None))
        assert client.complete("TASK=SENTIMENT", SemanticConfig(timeout_ms=5000)) == '{"score": 0.4}'
        assert len(calls) == 3
        assert calls[0]["timeout"] == 5.0
        assert calls[0]["messages"][-1]["content"] == "TASK=SENTIMENT"

    def test_authentication_error_is_not_retried(self):
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            raise _status_error(openai.AuthenticationError, 401)

        client = OpenAISemanticClient(client=_fake_openai(completion=create),
                                      retry_policy=RetryPolicy(sleep=lambda s: None))
        with pytest.raises(PermanentServiceError):
            client.complete("TASK=SENTIMENT", SemanticConfig())
        assert len(calls) == 1

    def test_empty_completion_is_permanent(self):
        client = OpenAISemanticClient(client=_fake_openai(completion=lambda **kw: _completion("")),
                                      retry_policy=RetryPolicy(sleep=lambda s: None))
        with pytest.raises(PermanentServiceError):
            client.complete("TASK=THEME", SemanticConfig())

    def test_zero_embedding_is_permanent(self):
        def embed(**kwargs):
            return SimpleNamespace(data=[SimpleNamespace(embedding=[0.0, 0.0, 0.0])])

        client = OpenAISemanticClient(client=_fake_openai(embedding=embed),
                                      retry_policy=RetryPolicy(sleep=lambda s: None))
        with pytest.raises(PermanentServiceError):
            client.embed("App Crashes", SemanticConfig())

    def test_completion_cache(self, tmp_path):
        """With a cache directory, identical prompts hit the service once."""
        calls = []

        def create(**kwargs):
            calls.append(kwargs)
            return _completion('{"label": "App Crashes"}')

        client = OpenAISemanticClient(client=_fake_openai(completion=create),
                                      retry_policy=RetryPolicy(sleep=lambda s: None),
                                      cache_dir=str(tmp_path / "cache"))
        assert client.complete("TASK=THEME x", SemanticConfig()) == client.complete("TASK=THEME x", SemanticConfig())
        assert len(calls) == 1
