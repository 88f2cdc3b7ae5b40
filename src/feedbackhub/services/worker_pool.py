"""Bounded worker pool for per-item semantic calls."""

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from concurrent.futures import TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
from typing import Any, Callable, Iterable, List, Optional, Sequence

from ..core.analysis_models import ProgressEvent
from ..core.constants import PoolConstants
from ..core.errors import BudgetExceededError, FeedbackHubError, PermanentServiceError

logger = logging.getLogger(__name__)

ProgressListener = Callable[[ProgressEvent], None]


@dataclass
class Slot:
    """Result of one input of a batch; index i matches input i."""
    index: int
    value: Any = None
    error: Optional[FeedbackHubError] = None

    @property
    def ok(self) -> bool:
        return self.error is None


class ProgressReporter:
    """Emits completion-percentage events at fixed steps to subscribed listeners."""

    def __init__(self, total: int, listeners: Iterable[ProgressListener] = (),
                 step_percent: int = PoolConstants.PROGRESS_STEP_PERCENT, enabled: bool = True):
        self.total = max(0, int(total))
        self.listeners = list(listeners)
        self.step_percent = step_percent
        self.enabled = enabled and bool(self.listeners) and self.total > 0
        self._completed = 0
        self._next_step = step_percent
        self._lock = threading.Lock()

    def advance(self, stage: str, count: int = 1) -> None:
        if not self.enabled:
            return
        events = []
        with self._lock:
            self._completed = min(self.total, self._completed + count)
            percent = 100.0 * self._completed / self.total
            while self._next_step <= 100 and percent >= self._next_step:
                events.append(ProgressEvent(stage=stage, completed=self._completed,
                                            total=self.total, percent=float(self._next_step)))
                self._next_step += self.step_percent
        for event in events:
            self._emit(event)

    def _emit(self, event: ProgressEvent) -> None:
        for listener in self.listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Progress listener failed: {e}")


class WorkerPool:
    """
    Runs per-item calls on a fixed number of threads.

    ``map_ordered`` blocks until the whole batch is done (or the run deadline
    passes) and returns one Slot per input in input order. Errors raised by
    ``fn`` land in their slot; nothing propagates across the batch.
    """

    def __init__(self, max_workers: int = PoolConstants.DEFAULT_MAX_WORKERS,
                 deadline: Optional[float] = None, progress: Optional[ProgressReporter] = None):
        self.max_workers = max(1, int(max_workers))
        self.deadline = deadline  # time.monotonic() value
        self.progress = progress
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="semantic")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()

    def close(self) -> None:
        self._executor.shutdown(wait=False, cancel_futures=True)

    def remaining(self) -> Optional[float]:
        if self.deadline is None:
            return None
        return max(0.0, self.deadline - time.monotonic())

    def expired(self) -> bool:
        return self.deadline is not None and time.monotonic() >= self.deadline

    def map_ordered(self, fn: Callable[[Any], Any], inputs: Sequence[Any], stage: str = "",
                    track_progress: bool = False) -> List[Slot]:
        slots: List[Optional[Slot]] = [None] * len(inputs)
        if not inputs:
            return []

        if self.expired():
            logger.warning(f"{stage or 'batch'}: run budget already exhausted, skipping {len(inputs)} calls")
            return [Slot(i, error=self._budget_error(stage)) for i in range(len(inputs))]

        future_to_index = {self._executor.submit(fn, x): i for i, x in enumerate(inputs)}
        try:
            for future in as_completed(future_to_index, timeout=self.remaining()):
                i = future_to_index[future]
                slots[i] = self._collect(i, future, stage)
                if track_progress and self.progress is not None:
                    self.progress.advance(stage)
        except FuturesTimeoutError:
            pending = [f for f, i in future_to_index.items() if slots[i] is None]
            for future in pending:
                future.cancel()
            logger.warning(f"{stage or 'batch'}: run budget exceeded, {len(pending)} of {len(inputs)} calls cancelled")

        return [slot if slot is not None else Slot(i, error=self._budget_error(stage))
                for i, slot in enumerate(slots)]

    @staticmethod
    def _collect(index: int, future, stage: str) -> Slot:
        try:
            return Slot(index, value=future.result())
        except FeedbackHubError as e:
            return Slot(index, error=e)
        except Exception as e:
            logger.error(f"{stage or 'batch'}: unexpected error in slot {index}: {e}")
            return Slot(index, error=PermanentServiceError(f"Unexpected error: {e}", operation=stage))

    @staticmethod
    def _budget_error(stage: str) -> BudgetExceededError:
        return BudgetExceededError("Call cancelled: run time budget exceeded", operation=stage)
