"""Utility modules for FeedbackHub."""

from .data_prep import (
    bundle_from_dict, bundle_from_json, bundle_to_dict, bundle_to_json, export_to_json, load_bundle,
    prepare_export,
)

__all__ = [
    "bundle_from_dict",
    "bundle_from_json",
    "bundle_to_dict",
    "bundle_to_json",
    "export_to_json",
    "load_bundle",
    "prepare_export",
]
