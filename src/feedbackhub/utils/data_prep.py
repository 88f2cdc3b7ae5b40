"""Bundle serialization for export and report rendering."""

import datetime
import json
from typing import Any, Dict

from ..core.analysis_models import AnalysisBundle
from ..core.constants import FileConstants


def bundle_to_dict(bundle: AnalysisBundle) -> Dict[str, Any]:
    """Plain-dict form of a bundle; every field survives ``bundle_from_dict``."""
    return bundle.to_dict()


def bundle_from_dict(data: Dict[str, Any]) -> AnalysisBundle:
    return AnalysisBundle.from_dict(data)


def bundle_to_json(bundle: AnalysisBundle, indent: int = None) -> str:
    return json.dumps(bundle_to_dict(bundle), indent=indent, ensure_ascii=False)


def bundle_from_json(text: str) -> AnalysisBundle:
    data = json.loads(text)
    # exported files wrap the bundle with export metadata
    if "bundle" in data and "metadata" in data:
        data = data["bundle"]
    return bundle_from_dict(data)


def prepare_export(bundle: AnalysisBundle) -> Dict[str, Any]:
    """Prepare a bundle for JSON export."""
    return {
        "bundle": bundle_to_dict(bundle),
        "metadata": {
            "export_timestamp": None,  # Will be set by caller
            "version": FileConstants.BUNDLE_VERSION,
            "partial": bundle.is_partial,
            "excluded_sources": bundle.excluded_sources,
        },
    }


def export_to_json(bundle: AnalysisBundle, filename: str) -> None:
    """Export a bundle to a JSON file."""
    data = prepare_export(bundle)
    data["metadata"]["export_timestamp"] = datetime.datetime.now(datetime.timezone.utc).isoformat()

    with open(filename, 'w', encoding='utf-8') as f:
        json.dump(data, f, indent=2, ensure_ascii=False)


def load_bundle(filename: str) -> AnalysisBundle:
    """Load a bundle written by ``export_to_json`` (or a bare bundle dict)."""
    with open(filename, 'r', encoding='utf-8') as f:
        return bundle_from_json(f.read())
