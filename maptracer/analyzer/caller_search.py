"""Interchangeable strategies for finding the callers of a method."""
import logging
from abc import ABC, abstractmethod
from typing import List

from maptracer.analyzer.models import MethodId, Reference

logger = logging.getLogger(__name__)


class CallerSearchStrategy(ABC):
    """Finds call sites of a method through some index capability."""

    name = "abstract"

    @abstractmethod
    def supports(self, index) -> bool:
        """Check whether the index offers the capability this strategy needs."""

    @abstractmethod
    def callers_of(self, index, method: MethodId) -> List[Reference]:
        """Return references to method, grouped by caller in discovery order."""


class CallGraphStrategy(CallerSearchStrategy):
    """Walks incoming edges of a precomputed call graph."""

    name = "call-graph"

    def supports(self, index) -> bool:
        return callable(getattr(index, 'callers_of', None))

    def callers_of(self, index, method: MethodId) -> List[Reference]:
        return index.callers_of(method)


class ReferenceSearchStrategy(CallerSearchStrategy):
    """Uses the generic project-wide reference search."""

    name = "reference-search"

    def supports(self, index) -> bool:
        return callable(getattr(index, 'find_references', None))

    def callers_of(self, index, method: MethodId) -> List[Reference]:
        return index.find_references(method)


def select_strategy(index, prefer_native: bool = True) -> CallerSearchStrategy:
    """Pick the first strategy the index supports.

    Args:
        index: Symbol index to probe
        prefer_native: Try the call-graph strategy before reference search

    Returns:
        A supported CallerSearchStrategy

    Raises:
        TypeError: If the index supports neither strategy
    """
    candidates = [CallGraphStrategy(), ReferenceSearchStrategy()]
    if not prefer_native:
        candidates.reverse()
    for strategy in candidates:
        if strategy.supports(index):
            logger.debug("Using %s caller search", strategy.name)
            return strategy
    raise TypeError(f"{type(index).__name__} supports no caller search strategy")
