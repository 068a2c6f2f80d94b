"""Expansion of a seed field into cross-type field mapping relations."""
import logging
from collections import deque
from dataclasses import dataclass
from typing import Deque, List, Optional, Set, Tuple

from maptracer.analyzer.errors import AnalysisCancelled, ResolutionFailure
from maptracer.analyzer.mapping_detector import MappingSiteDetector
from maptracer.analyzer.models import FieldRef, MappingRelation, MappingSite, MethodId, RelationKind
from maptracer.analyzer.run import AnalysisRun
from maptracer.analyzer.symbol_index import FieldDecl, SymbolIndex

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Crossing:
    """One mapping site carrying a traced field from one type to another.

    Attributes:
        site: The mapping call
        relation: Relation the site establishes
        continue_at: Field on the far side whose accessors continue the trace
        next_type: Type that now holds the traced field name
    """
    site: MappingSite
    relation: MappingRelation
    continue_at: FieldRef
    next_type: str


class FieldMappingResolver:
    """Breadth-first resolver over "same logical field, different type".

    Visits each type once per resolution. A relation is emitted only when
    the field exists on both sides of a detected mapping site.
    """

    def __init__(self, index: SymbolIndex, run: Optional[AnalysisRun] = None,
                 detector: Optional[MappingSiteDetector] = None):
        self.index = index
        self.run = run or AnalysisRun()
        self.detector = detector or MappingSiteDetector(index, self.run)
        self.contributing_sites: List[MappingSite] = []

    def _sites_for(self, type_name: str, within: Optional[MethodId]) -> List[MappingSite]:
        if within is None:
            return self.detector.detect(type_name)
        return [site for site in self.detector.detect(within) if site.involves(type_name)]

    @staticmethod
    def _value_type(holder: FieldDecl) -> str:
        return holder.element_type or holder.type_name

    def _shares_field_name(self, first: str, second: str) -> bool:
        """Name-intersection test used for NESTED pairing."""
        first_names = {ref.name for ref in self.index.fields_of(first)}
        if not first_names:
            return False
        return any(ref.name in first_names for ref in self.index.fields_of(second))

    def crossings(self, type_name: str, field_name: str,
                  within: Optional[MethodId] = None) -> List[Crossing]:
        """Find mapping sites that carry field_name away from type_name.

        Args:
            type_name: Qualified type currently holding the traced field
            field_name: Traced field name
            within: Restrict to sites inside this method (None = whole project)

        Returns:
            Crossings in site discovery order, DIRECT before NESTED
        """
        key = (type_name, field_name, within)
        return self.run.cache.get_or_compute(
            'crossings', key, lambda: self._crossings(type_name, field_name, within))

    def _crossings(self, type_name: str, field_name: str,
                   within: Optional[MethodId]) -> List[Crossing]:
        result: List[Crossing] = []

        if self.index.field_on(type_name, field_name) is not None:
            for site in self._sites_for(type_name, within):
                other = site.counterpart(type_name)
                if other is None or other == type_name:
                    continue
                if self.index.field_on(other, field_name) is None:
                    continue
                relation = MappingRelation(site.source_type, field_name, site.target_type,
                                           field_name, RelationKind.DIRECT)
                result.append(Crossing(site, relation, FieldRef(other, field_name), other))

        for holder in self.index.containers_of(type_name):
            container, holder_name = holder.declaring_type, holder.name
            for site in self._sites_for(container, within):
                other = site.counterpart(container)
                if other is None or other == container:
                    continue
                counterpart_holder = self.index.field_on(other, holder_name)
                if counterpart_holder is None:
                    continue
                nested_type = self._value_type(counterpart_holder)
                if not self._shares_field_name(type_name, nested_type):
                    continue
                relation = MappingRelation(site.source_type, holder_name, site.target_type,
                                           holder_name, RelationKind.NESTED)
                result.append(Crossing(site, relation, FieldRef(other, holder_name), nested_type))
        return result

    def resolve_relations(self, seed: FieldRef) -> Set[MappingRelation]:
        """Expand a seed field into its mapping relations.

        Args:
            seed: Field to start from (type may be simple or qualified)

        Returns:
            Set of MappingRelation; empty if the seed cannot be resolved

        Raises:
            AnalysisCancelled: If the run's token is cancelled
        """
        self.contributing_sites = []
        seed_type = self.index.resolve_type(seed.declaring_type)
        if seed_type is None:
            logger.info("Seed type %s not found in project", seed.declaring_type)
            return set()
        if self.index.field_on(seed_type, seed.name) is None:
            logger.info("Field %s not declared on %s", seed.name, seed_type)
            return set()

        relations: Set[MappingRelation] = set()
        seen_sites: Set[MappingSite] = set()
        visited: Set[str] = set()
        queue: Deque[Tuple[str, str]] = deque([(seed_type, seed.name)])

        while queue:
            self.run.checkpoint()
            type_name, field_name = queue.popleft()
            if type_name in visited:
                continue
            visited.add(type_name)
            self.run.count('resolver_types')

            try:
                for crossing in self.crossings(type_name, field_name):
                    relations.add(crossing.relation)
                    if crossing.site not in seen_sites:
                        seen_sites.add(crossing.site)
                        self.contributing_sites.append(crossing.site)
                    if crossing.next_type not in visited:
                        queue.append((crossing.next_type, field_name))
            except AnalysisCancelled:
                raise
            except ResolutionFailure as e:
                logger.debug("Stopped resolving %s.%s: %s", type_name, field_name, e)
            except Exception as e:
                logger.warning("Failed to resolve relations of %s.%s: %s", type_name, field_name, e)

        logger.debug("Resolved %d relations for %s across %d types", len(relations), seed, len(visited))
        return relations
