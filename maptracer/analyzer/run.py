"""Analysis run context, cancellation and background execution."""
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Dict, Generic, Optional, TypeVar

from maptracer.analyzer.cache import ResultCache
from maptracer.analyzer.errors import AnalysisCancelled

logger = logging.getLogger(__name__)

T = TypeVar('T')


class CancellationToken:
    """Cooperative cancellation flag polled between traversal steps."""

    def __init__(self):
        self._event = threading.Event()

    def cancel(self):
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    def raise_if_cancelled(self):
        """Raise AnalysisCancelled if cancel() was called.

        Raises:
            AnalysisCancelled: If the token is cancelled
        """
        if self._event.is_set():
            raise AnalysisCancelled("analysis cancelled")


@dataclass(frozen=True)
class AnalysisSettings:
    """Tunable limits for one analysis."""
    max_depth: int = 12
    caller_limit: int = 300
    call_site_limit: int = 100
    mapping_site_limit: int = 50
    implementation_limit: int = 50
    prefer_native_hierarchy: bool = True
    extra_entry_patterns: tuple = ()

    def __post_init__(self):
        if self.max_depth < 1:
            raise ValueError(f"max_depth must be >= 1, got {self.max_depth}")
        for name in ('caller_limit', 'call_site_limit', 'mapping_site_limit', 'implementation_limit'):
            if getattr(self, name) < 1:
                raise ValueError(f"{name} must be >= 1, got {getattr(self, name)}")


@dataclass
class AnalysisRun:
    """Transient state for one triggered analysis.

    Holds the result cache and counters. Created per public call and
    discarded afterwards; never shared between concurrent runs.
    """
    settings: AnalysisSettings = field(default_factory=AnalysisSettings)
    token: CancellationToken = field(default_factory=CancellationToken)
    cache: ResultCache = field(default_factory=ResultCache)
    counters: Dict[str, int] = field(default_factory=dict)

    def checkpoint(self):
        """Poll the cancellation token."""
        self.token.raise_if_cancelled()

    def count(self, name: str, amount: int = 1):
        self.counters[name] = self.counters.get(name, 0) + amount


class AnalysisJob(Generic[T]):
    """Runs a single analysis on one background worker thread.

    Example:
        job = AnalysisJob(lambda token: tracer.analyze_call_hierarchy(seed, token))
        job.start()
        tree = job.result()
    """

    def __init__(self, work: Callable[[CancellationToken], T],
                 token: Optional[CancellationToken] = None):
        self.token = token or CancellationToken()
        self._work = work
        self._executor: Optional[ThreadPoolExecutor] = None
        self._future: Optional[Future] = None

    def start(self) -> 'AnalysisJob[T]':
        if self._future is not None:
            raise RuntimeError("job already started")
        self._executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="maptracer")
        self._future = self._executor.submit(self._work, self.token)
        return self

    def cancel(self):
        """Request cancellation; the worker stops at its next checkpoint."""
        self.token.cancel()

    @property
    def done(self) -> bool:
        return self._future is not None and self._future.done()

    def result(self, timeout: Optional[float] = None) -> T:
        """Wait for the job and return its snapshot.

        Args:
            timeout: Seconds to wait (None waits forever)

        Returns:
            The value produced by the work callable

        Raises:
            AnalysisCancelled: If the job was cancelled
            concurrent.futures.TimeoutError: If timeout expires first
        """
        if self._future is None:
            self.start()
        try:
            value = self._future.result(timeout=timeout)
        finally:
            if self._future.done() and self._executor is not None:
                self._executor.shutdown(wait=False)
        if self.token.is_cancelled:
            logger.debug("Discarding result of cancelled job")
            raise AnalysisCancelled("analysis cancelled")
        return value
