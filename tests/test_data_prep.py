"""Tests for bundle serialization and export."""

import json

import pytest

from feedbackhub.core.models import Source
from feedbackhub.services.analysis_manager import AnalysisOrchestrator
from feedbackhub.services.storage import InMemoryFeedbackStore
from feedbackhub.utils.data_prep import (
    bundle_from_json, bundle_to_dict, bundle_to_json, export_to_json, load_bundle, prepare_export,
)

from conftest import ScriptedClient, make_item


@pytest.fixture
def bundle(config):
    items = [make_item(n, source=source, score=-0.6 if n % 2 else 0.5, theme=["App Crashes", "Billing"][n % 2])
             for source in Source for n in range(6)]
    items.append(make_item(99, source=Source.SURVEY, text="[fail]"))
    return AnalysisOrchestrator(InMemoryFeedbackStore(items), ScriptedClient()).run(config)


def test_json_round_trip_preserves_bundle(bundle):
    """A bundle decoded from its JSON form equals the original."""
    restored = bundle_from_json(bundle_to_json(bundle))
    assert restored == bundle
    assert bundle_to_dict(restored) == bundle_to_dict(bundle)


def test_round_trip_keeps_failures_and_statuses(bundle):
    restored = bundle_from_json(bundle_to_json(bundle, indent=2))
    assert len(restored.sentiment.failures) == 1
    assert restored.source_status["survey"].state == bundle.source_status["survey"].state
    assert restored.patterns.patterns and restored.patterns.patterns[0].critical


def test_prepare_export_metadata(bundle):
    data = prepare_export(bundle)
    assert data["metadata"]["partial"] is True
    assert data["metadata"]["excluded_sources"] == []
    assert data["bundle"]["run_id"] == bundle.run_id


def test_export_and_load(bundle, tmp_path):
    path = tmp_path / "bundle.json"
    export_to_json(bundle, str(path))

    with open(path, encoding="utf-8") as f:
        raw = json.load(f)
    assert raw["metadata"]["export_timestamp"]
    assert load_bundle(str(path)) == bundle


def test_load_bare_bundle(bundle, tmp_path):
    path = tmp_path / "bare.json"
    path.write_text(bundle_to_json(bundle), encoding="utf-8")
    assert load_bundle(str(path)).run_id == bundle.run_id
