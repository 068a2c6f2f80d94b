"""Per-run result cache.

Memoizes reference searches, caller lookups and mapping-site detection for a
single analysis run. A cache instance is owned by one AnalysisRun and dropped
with it, so results never leak between runs on a changing codebase.
"""
from collections import defaultdict
from typing import Any, Callable, Dict, Hashable, Tuple, TypeVar

T = TypeVar('T')


class ResultCache:
    """Namespaced in-memory memo table with hit/miss accounting."""

    def __init__(self):
        self._entries: Dict[Tuple[str, Hashable], Any] = {}
        self._hits: Dict[str, int] = defaultdict(int)
        self._misses: Dict[str, int] = defaultdict(int)

    def get_or_compute(self, namespace: str, key: Hashable, factory: Callable[[], T]) -> T:
        """Return the cached value for (namespace, key), computing it on a miss.

        Exceptions raised by factory propagate and nothing is stored, so a
        failed lookup is retried by the next caller rather than cached.

        Args:
            namespace: Logical table name (e.g. 'references')
            key: Hashable lookup key within the namespace
            factory: Zero-argument callable producing the value

        Returns:
            Cached or freshly computed value
        """
        slot = (namespace, key)
        if slot in self._entries:
            self._hits[namespace] += 1
            return self._entries[slot]

        self._misses[namespace] += 1
        value = factory()
        self._entries[slot] = value
        return value

    def contains(self, namespace: str, key: Hashable) -> bool:
        return (namespace, key) in self._entries

    def clear(self):
        """Drop all entries and counters."""
        self._entries.clear()
        self._hits.clear()
        self._misses.clear()

    def stats(self) -> Dict[str, Dict[str, int]]:
        """Get hit/miss/entry counts per namespace.

        Returns:
            Dictionary keyed by namespace, plus a 'total' row
        """
        namespaces = sorted(set(self._hits) | set(self._misses))
        entry_counts: Dict[str, int] = defaultdict(int)
        for namespace, _ in self._entries:
            entry_counts[namespace] += 1

        result = {}
        for namespace in namespaces:
            result[namespace] = {
                'hits': self._hits[namespace],
                'misses': self._misses[namespace],
                'entries': entry_counts[namespace],
            }
        result['total'] = {
            'hits': sum(self._hits.values()),
            'misses': sum(self._misses.values()),
            'entries': len(self._entries),
        }
        return result

    def __len__(self) -> int:
        return len(self._entries)
