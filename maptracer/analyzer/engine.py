"""Public analysis operations exposed to the presentation layer."""
import logging
from typing import List, Optional, Set

from maptracer.analyzer.classifier import NodeClassifier
from maptracer.analyzer.errors import SeedError
from maptracer.analyzer.field_resolver import FieldMappingResolver
from maptracer.analyzer.hierarchy import CallHierarchyBuilder
from maptracer.analyzer.models import CallNode, FieldRef, MappingRelation, MappingSite
from maptracer.analyzer.run import AnalysisRun, AnalysisSettings, CancellationToken
from maptracer.analyzer.symbol_index import SymbolIndex

logger = logging.getLogger(__name__)


class MappingTracer:
    """Entry point for relation and hierarchy analyses over one symbol index.

    Every call creates a fresh AnalysisRun; nothing is carried over between
    calls except the read-only index.

    Example:
        index = ProjectIndex.from_directory("path/to/project")
        tracer = MappingTracer(index)
        tree = tracer.analyze_call_hierarchy(FieldRef("com.shop.OrderDto", "amount"))
    """

    def __init__(self, index: SymbolIndex, settings: Optional[AnalysisSettings] = None):
        self.index = index
        self.settings = settings or AnalysisSettings()
        self.last_run: Optional[AnalysisRun] = None

    def _new_run(self, token: Optional[CancellationToken]) -> AnalysisRun:
        run = AnalysisRun(settings=self.settings, token=token or CancellationToken())
        self.last_run = run
        return run

    def analyze_mapping_relations(self, seed: FieldRef,
                                  token: Optional[CancellationToken] = None) -> Set[MappingRelation]:
        """Resolve every field paired with seed through mapping sites.

        Args:
            seed: Field to start from
            token: Optional cancellation token

        Returns:
            Set of MappingRelation (empty if nothing maps the seed's type)

        Raises:
            AnalysisCancelled: If the token is cancelled during analysis
        """
        run = self._new_run(token)
        relations = FieldMappingResolver(self.index, run).resolve_relations(seed)
        logger.debug("Relation analysis of %s: %s", seed, run.cache.stats()['total'])
        return relations

    def analyze_call_hierarchy(self, seed: FieldRef,
                               token: Optional[CancellationToken] = None) -> CallNode:
        """Build the caller tree of seed, crossing mapping sites.

        Args:
            seed: Field to trace
            token: Optional cancellation token

        Returns:
            Immutable CallNode tree (root-only if the seed cannot be resolved)

        Raises:
            AnalysisCancelled: If the token is cancelled during analysis
        """
        run = self._new_run(token)
        builder = CallHierarchyBuilder(
            self.index, run, classifier=NodeClassifier(self.settings.extra_entry_patterns))
        tree = builder.build(seed)
        logger.debug("Hierarchy of %s: %d nodes, cache %s",
                     seed, run.counters.get('nodes', 0), run.cache.stats()['total'])
        return tree

    def find_mapping_sites(self, seed: FieldRef,
                           token: Optional[CancellationToken] = None) -> List[MappingSite]:
        """List the mapping sites that contribute to seed's relations.

        Returns:
            MappingSite list sorted by file and line
        """
        run = self._new_run(token)
        resolver = FieldMappingResolver(self.index, run)
        resolver.resolve_relations(seed)
        return sorted(resolver.contributing_sites, key=MappingSite.sort_key)


def analyze_mapping_relations(index: SymbolIndex, seed: FieldRef,
                              settings: Optional[AnalysisSettings] = None,
                              token: Optional[CancellationToken] = None) -> Set[MappingRelation]:
    return MappingTracer(index, settings).analyze_mapping_relations(seed, token)


def analyze_call_hierarchy(index: SymbolIndex, seed: FieldRef,
                           settings: Optional[AnalysisSettings] = None,
                           token: Optional[CancellationToken] = None) -> CallNode:
    return MappingTracer(index, settings).analyze_call_hierarchy(seed, token)


def parse_seed(text: str) -> FieldRef:
    """Parse 'pkg.Type.field' or 'pkg.Type#field' into a FieldRef.

    Raises:
        SeedError: If text does not name both a type and a field
    """
    text = (text or "").strip()
    if '#' in text:
        type_name, _, field_name = text.partition('#')
    else:
        type_name, _, field_name = text.rpartition('.')
    type_name, field_name = type_name.strip(), field_name.strip()
    if not type_name or not field_name or not field_name.isidentifier():
        raise SeedError(f"Expected 'Type.field' or 'Type#field', got {text!r}")
    return FieldRef(type_name, field_name)
