"""Detection of object-mapping framework transform calls.

A call counts as a mapping site only when both checks pass:

- Name: the member name is one of MAP_METHOD_NAMES.
- Provenance: the resolved owner or receiver type looks like a mapper
  facade, or the receiver is `<factory>.getMapperFacade()`.
"""
import logging
import re
from typing import List, Optional, Union

from maptracer.analyzer.models import MappingSite, MethodId
from maptracer.analyzer.run import AnalysisRun
from maptracer.analyzer.symbol_index import ArgumentInfo, CallSite, SymbolIndex

logger = logging.getLogger(__name__)

MAP_METHOD_NAMES = frozenset({'map', 'mapAsList', 'mapAsSet', 'mapAsArray'})

# mapAs* variants take a collection and a target element type
COLLECTION_VARIANTS = frozenset({'mapAsList', 'mapAsSet', 'mapAsArray'})

FACADE_PATTERN = re.compile(r'orika|Mapper|Mapping')
FACTORY_PATTERN = re.compile(r'[mM]apperFactory')
FACADE_ACCESSOR = 'getMapperFacade'

TYPED_SHAPES = frozenset({'class_literal', 'variable', 'call'})

CLASS_TYPES = frozenset({'Class', 'java.lang.Class'})


class MappingSiteDetector:
    """Recognize mapping calls and extract their (source, target) types."""

    def __init__(self, index: SymbolIndex, run: Optional[AnalysisRun] = None):
        """Initialize detector.

        Args:
            index: Symbol index to query for call sites
            run: Analysis run whose cache memoizes detect() results
        """
        self.index = index
        self.run = run or AnalysisRun()

    def is_mapping_call(self, call: CallSite) -> bool:
        """Check name and provenance of a call.

        Args:
            call: Call site from the symbol index

        Returns:
            True if the call invokes the mapping framework's transform entrypoint
        """
        if call.name not in MAP_METHOD_NAMES:
            return False

        owner = call.resolved_owner
        if owner and FACADE_PATTERN.search(owner):
            return True
        receiver = call.receiver
        if receiver.static_type and FACADE_PATTERN.search(receiver.static_type):
            return True

        if receiver.kind == 'call' and receiver.call_name == FACADE_ACCESSOR:
            factory_text = receiver.call_receiver_text or ''
            factory_type = receiver.call_receiver_type or ''
            return bool(FACTORY_PATTERN.search(factory_text) or FACTORY_PATTERN.search(factory_type))
        return False

    @staticmethod
    def _argument_type(argument: ArgumentInfo, want_element: bool) -> Optional[str]:
        if argument.shape not in TYPED_SHAPES or not argument.type_name:
            return None
        if argument.type_name in CLASS_TYPES:
            # Class<Foo> token held in a variable
            return argument.element_type
        if want_element:
            return argument.element_type
        return argument.type_name

    def extract(self, call: CallSite) -> Optional[MappingSite]:
        """Build a MappingSite from a mapping call.

        Reads the first two arguments. Either one missing or untyped means no site.

        Args:
            call: A call for which is_mapping_call() is True

        Returns:
            MappingSite, or None if either type is unresolved
        """
        if len(call.arguments) < 2:
            return None
        source_arg, target_arg = call.arguments[0], call.arguments[1]

        source_type = self._argument_type(source_arg, call.name in COLLECTION_VARIANTS
                                          and source_arg.shape != 'class_literal')
        target_type = self._argument_type(target_arg, False)
        if not source_type or not target_type:
            logger.debug("Unresolved mapping arguments at %s: %s, %s",
                         call.location, source_arg.text, target_arg.text)
            return None

        return MappingSite(
            declaring_method=call.enclosing,
            source_type=source_type,
            target_type=target_type,
            location=call.location,
        )

    def _sites_from(self, calls: List[CallSite]) -> List[MappingSite]:
        sites: List[MappingSite] = []
        seen = set()
        for call in calls:
            self.run.checkpoint()
            if not self.is_mapping_call(call):
                continue
            site = self.extract(call)
            if site is not None and site not in seen:
                seen.add(site)
                sites.append(site)
        return sites

    def detect(self, scope: Union[None, MethodId, str] = None) -> List[MappingSite]:
        """Detect mapping sites in a scope, in discovery order.

        Args:
            scope: None for the whole project, a MethodId for one method body,
                or a qualified type name for sites whose source or target is that type

        Returns:
            List of MappingSite
        """
        if scope is None:
            return self._project_sites()
        key = ('method', scope) if isinstance(scope, MethodId) else ('type', scope)
        return self.run.cache.get_or_compute('mapping_sites', key, lambda: self._detect(scope))

    def _project_sites(self) -> List[MappingSite]:
        return self.run.cache.get_or_compute(
            'mapping_sites', ('project',),
            lambda: self._sites_from(self.index.calls_named(MAP_METHOD_NAMES)))

    def _detect(self, scope: Union[MethodId, str]) -> List[MappingSite]:
        if isinstance(scope, MethodId):
            calls = [c for c in self.index.calls_in(scope) if c.name in MAP_METHOD_NAMES]
            return self._sites_from(calls)
        return [site for site in self._project_sites() if site.involves(scope)]
