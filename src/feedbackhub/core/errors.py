"""Error taxonomy for FeedbackHub."""

from typing import Any, Dict, List, Optional


class FeedbackHubError(Exception):
    """Base class for all pipeline errors.

    Carries a machine-readable ``kind``, the operation context it happened in
    and a caveat describing which parts of a report are affected.
    """

    kind = "error"
    default_caveat = ""

    def __init__(self, message: str, *, operation: str = "", source: Optional[str] = None,
                 item_id: Optional[str] = None, caveat: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.operation = operation
        self.source = source
        self.item_id = item_id
        self.caveat = caveat if caveat is not None else self.default_caveat
        self.attempts = 1

    @property
    def context(self) -> Dict[str, Any]:
        return {"operation": self.operation, "source": self.source, "item_id": self.item_id}

    def to_report(self):
        """Convert to a serializable ErrorReport."""
        from .analysis_models import ErrorReport
        return ErrorReport(
            kind=self.kind,
            operation=self.operation,
            message=self.message,
            caveat=self.caveat,
            source=self.source,
            item_id=self.item_id,
        )


class TransientServiceError(FeedbackHubError):
    """Timeout, rate limit or 5xx from the semantic service. Retried."""

    kind = "transient_service_error"
    default_caveat = "Item was not analyzed after repeated service failures."


class PermanentServiceError(FeedbackHubError):
    """Malformed request, auth failure or schema violation. Never retried."""

    kind = "permanent_service_error"
    default_caveat = "Item was rejected by the semantic service and is not analyzed."


class BudgetExceededError(FeedbackHubError):
    """A call was cancelled because the run's time budget ran out."""

    kind = "budget_exceeded"
    default_caveat = "Analysis stopped at the run time budget; results are partial."


class InsufficientDataError(FeedbackHubError):
    """A source has too few items for clustering or pattern work."""

    kind = "insufficient_data"
    default_caveat = "Per-source clusters and cross-source patterns omit this source."


class ConfigurationError(FeedbackHubError):
    """Invalid AnalysisConfig. Fatal to the whole run."""

    kind = "configuration_error"
    default_caveat = "No analysis was performed."


class AnalysisAbortedError(FeedbackHubError):
    """Run aborted because no item could be analyzed in any source."""

    kind = "analysis_aborted"
    default_caveat = "No report can be produced for this run."

    def __init__(self, message: str, reports: Optional[List[Any]] = None, **kwargs):
        super().__init__(message, **kwargs)
        self.reports = list(reports or [])


def is_transient(error: BaseException) -> bool:
    """Retry predicate: only transient service failures are retried."""
    return isinstance(error, TransientServiceError)
