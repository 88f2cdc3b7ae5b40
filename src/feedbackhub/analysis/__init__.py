"""Semantic analyzers for FeedbackHub."""

from .clustering import IssueClusterer, ThemeGroup
from .patterns import PatternRecognizer
from .sentiment import SentimentAnalyzer
from .synthesis import InsightSynthesizer

__all__ = [
    "IssueClusterer",
    "ThemeGroup",
    "PatternRecognizer",
    "SentimentAnalyzer",
    "InsightSynthesizer",
]
