"""Depth-bounded caller hierarchy for a field, crossing mapping sites.

The builder runs an explicit worklist rather than recursion. Each pending
expansion carries its depth, the keys already on its root path and the
mapping sites already spliced on that path, so the traversal:

- never repeats a (owner, method, params) key on any root-to-leaf path,
- never creates a node deeper than the configured max depth,
- stops at entry points,
- polls the cancellation token before every expansion.

A failure while expanding one node leaves that node as a leaf; the rest of
the tree is still produced.
"""
import logging
from dataclasses import dataclass, field
from typing import FrozenSet, List, Optional, Set, Tuple

from maptracer.analyzer.caller_search import CallerSearchStrategy, select_strategy
from maptracer.analyzer.classifier import NodeClassifier
from maptracer.analyzer.errors import AnalysisCancelled, ResolutionFailure
from maptracer.analyzer.field_resolver import Crossing, FieldMappingResolver
from maptracer.analyzer.models import (
    CallNode, CodeLocation, FieldRef, MappingSite, MethodId, NodeCategory, Reference,
)
from maptracer.analyzer.run import AnalysisRun
from maptracer.analyzer.symbol_index import SymbolIndex

logger = logging.getLogger(__name__)

NodeKey = Tuple[str, str, Tuple[str, ...]]


def _simple(type_name: str) -> str:
    return type_name.rsplit('.', 1)[-1]


def method_label(method: MethodId) -> str:
    params = ', '.join(_simple(p) for p in method.param_types)
    return f"{_simple(method.owner)}.{method.name}({params})"


@dataclass
class _NodeDraft:
    """Mutable node under construction."""
    owner_type: str
    method_name: str
    param_signature: Tuple[str, ...]
    location: Optional[CodeLocation]
    category: NodeCategory
    label: str
    children: List['_NodeDraft'] = field(default_factory=list)

    @property
    def key(self) -> NodeKey:
        return (self.owner_type, self.method_name, self.param_signature)

    def freeze(self) -> CallNode:
        return CallNode(
            owner_type=self.owner_type,
            method_name=self.method_name,
            param_signature=self.param_signature,
            location=self.location,
            category=self.category,
            children=tuple(child.freeze() for child in self.children),
            label=self.label,
        )


@dataclass(frozen=True)
class _Accessor:
    """A getter or setter of a traced field, real or synthesized."""
    owner: str
    name: str
    params: Tuple[str, ...]
    category: NodeCategory
    declared: Optional[MethodId]
    location: Optional[CodeLocation]


@dataclass
class _Expansion:
    """Pending work item: fill in the children of one draft node."""
    draft: _NodeDraft
    kind: str  # 'root', 'method', 'accessor', 'mapping'
    depth: int
    path: FrozenSet[NodeKey]
    spliced: FrozenSet[MappingSite]
    context: Tuple[str, str]  # (type holding the traced field, field name)
    method: Optional[MethodId] = None
    accessor: Optional[_Accessor] = None
    crossing: Optional[Crossing] = None


class CallHierarchyBuilder:
    """Builds the caller tree of a seed field."""

    def __init__(self, index: SymbolIndex, run: Optional[AnalysisRun] = None,
                 classifier: Optional[NodeClassifier] = None,
                 resolver: Optional[FieldMappingResolver] = None,
                 strategy: Optional[CallerSearchStrategy] = None):
        """Initialize builder.

        Args:
            index: Symbol index of the project
            run: Analysis run (settings, cache, cancellation token)
            classifier: Node classifier (defaults to one using the run's entry patterns)
            resolver: Field mapping resolver sharing the same run
            strategy: Caller search strategy (probed from the index by default)
        """
        self.index = index
        self.run = run or AnalysisRun()
        self.settings = self.run.settings
        self.classifier = classifier or NodeClassifier(self.settings.extra_entry_patterns)
        self.resolver = resolver or FieldMappingResolver(index, self.run)
        self.strategy = strategy or select_strategy(index, self.settings.prefer_native_hierarchy)

    # ------------------------------------------------------------------
    # Public entry point
    # ------------------------------------------------------------------

    def build(self, seed: FieldRef) -> CallNode:
        """Build the hierarchy rooted at seed.

        Args:
            seed: Field to trace

        Returns:
            Immutable CallNode tree; root-only if the seed cannot be resolved

        Raises:
            AnalysisCancelled: If the run's token is cancelled (partial tree discarded)
        """
        self.run.checkpoint()
        seed_type = self.index.resolve_type(seed.declaring_type)
        seed_field = self.index.field_on(seed_type, seed.name) if seed_type else None

        root = _NodeDraft(
            owner_type=seed_type or seed.declaring_type,
            method_name=seed.name,
            param_signature=(),
            location=seed_field.location if seed_field else None,
            category=NodeCategory.ROOT,
            label=f"{_simple(seed_type or seed.declaring_type)}.{seed.name}",
        )
        if seed_field is None:
            logger.info("Seed %s not found; returning root-only hierarchy", seed)
            return root.freeze()

        stack: List[_Expansion] = [_Expansion(
            draft=root, kind='root', depth=0, path=frozenset([root.key]),
            spliced=frozenset(), context=(seed_type, seed.name),
        )]
        while stack:
            task = stack.pop()
            self.run.checkpoint()
            try:
                children = self._expand(task)
            except AnalysisCancelled:
                raise
            except ResolutionFailure as e:
                logger.debug("Branch %s ends: %s", task.draft.label, e)
                continue
            except Exception as e:
                logger.warning("Branch %s failed: %s", task.draft.label, e, exc_info=logger.isEnabledFor(logging.DEBUG))
                continue

            for child, _ in children:
                task.draft.children.append(child)
            self.run.count('nodes', len(children))
            for _, child_task in reversed(children):
                if child_task is not None:
                    stack.append(child_task)

        return root.freeze()

    # ------------------------------------------------------------------
    # Expansion dispatch
    # ------------------------------------------------------------------

    def _expand(self, task: _Expansion) -> List[Tuple[_NodeDraft, Optional[_Expansion]]]:
        if task.depth >= self.settings.max_depth:
            return []
        if task.kind == 'root':
            return self._expand_root(task)
        if task.kind == 'mapping':
            return self._expand_mapping(task)
        if task.kind == 'accessor':
            return self._expand_accessor(task)
        return self._expand_method(task)

    def _child(self, parent: _Expansion, draft: _NodeDraft, kind: str, terminal: bool = False,
               context: Optional[Tuple[str, str]] = None, spliced: Optional[FrozenSet[MappingSite]] = None,
               **extra) -> Tuple[_NodeDraft, Optional[_Expansion]]:
        if terminal:
            return draft, None
        return draft, _Expansion(
            draft=draft, kind=kind, depth=parent.depth + 1, path=parent.path | {draft.key},
            spliced=parent.spliced if spliced is None else spliced,
            context=parent.context if context is None else context, **extra,
        )

    def _expand_root(self, task: _Expansion):
        seed_type, field_name = task.context
        children = []

        for crossing in self._limit_crossings(self.resolver.crossings(seed_type, field_name)):
            entry = self._mapping_child(task, crossing, include_declaring=True)
            if entry is not None:
                children.append(entry)

        accessors = self._accessors(FieldRef(seed_type, field_name))
        for accessor in accessors:
            entry = self._accessor_child(task, accessor)
            if entry is not None:
                children.append(entry)

        accessor_keys = {(a.owner, a.name) for a in accessors}
        field_decl = self.index.field_on(seed_type, field_name)
        if field_decl is not None:
            accessor_keys |= {(field_decl.declaring_type, a.name) for a in accessors}
        try:
            users = [ref for ref in self._field_users(field_decl.ref if field_decl else FieldRef(seed_type, field_name))
                     if ref.enclosing_method is not None
                     and (ref.enclosing_method.owner, ref.enclosing_method.name) not in accessor_keys]
        except AnalysisCancelled:
            raise
        except Exception as e:
            logger.warning("Field users of %s.%s failed: %s", seed_type, field_name, e)
            return children
        children.extend(self._caller_children(task, users))
        return children

    def _expand_mapping(self, task: _Expansion):
        crossing = task.crossing
        children = []
        if task.method is not None:
            declaring = crossing.site.declaring_method
            draft = self._method_draft(declaring, self._declared_location(declaring))
            if draft.key not in task.path:
                children.append(self._child(
                    task, draft, 'method', terminal=NodeClassifier.is_terminal(draft.category),
                    method=declaring,
                ))

        next_context = (crossing.next_type, task.context[1])
        for accessor in self._accessors(crossing.continue_at):
            entry = self._accessor_child(task, accessor, context=next_context)
            if entry is not None:
                children.append(entry)
        return children

    def _expand_accessor(self, task: _Expansion):
        accessor = task.accessor
        references = self._member_call_references(accessor)
        return self._caller_children(task, references)

    def _expand_method(self, task: _Expansion):
        method = task.method
        children = self._caller_children(task, self._dispatch_callers(method))

        type_name, field_name = task.context
        crossings = [crossing for crossing in self.resolver.crossings(type_name, field_name, within=method)
                     if crossing.site not in task.spliced]
        for crossing in self._limit_crossings(crossings):
            entry = self._mapping_child(task, crossing, include_declaring=False)
            if entry is not None:
                children.append(entry)
        return children

    def _limit_crossings(self, crossings: List[Crossing]) -> List[Crossing]:
        """Cap crossings at the mapping site limit, one per (source, target) pair first."""
        firsts: dict = {}
        rest = []
        for crossing in crossings:
            pair = (crossing.site.source_type, crossing.site.target_type)
            if pair in firsts:
                rest.append(crossing)
            else:
                firsts[pair] = crossing
        return (list(firsts.values()) + rest)[:self.settings.mapping_site_limit]

    # ------------------------------------------------------------------
    # Node factories
    # ------------------------------------------------------------------

    def _declared_location(self, method: MethodId) -> Optional[CodeLocation]:
        decl = self.index.method(method)
        return decl.location if decl is not None else None

    def _method_draft(self, method: MethodId, location: Optional[CodeLocation]) -> _NodeDraft:
        decl = self.index.method(method)
        category = self.classifier.classify(decl if decl is not None else method)
        return _NodeDraft(
            owner_type=method.owner, method_name=method.name, param_signature=method.param_types,
            location=location, category=category, label=method_label(method),
        )

    def _mapping_child(self, task: _Expansion, crossing: Crossing, include_declaring: bool):
        site = crossing.site
        declaring = site.declaring_method
        draft = _NodeDraft(
            owner_type=declaring.owner,
            method_name='map',
            param_signature=(site.source_type, site.target_type),
            location=site.location,
            category=NodeCategory.MAPPING,
            label=(f"{_simple(declaring.owner)}.{declaring.name}: "
                   f"{_simple(site.source_type)} → {_simple(site.target_type)}"),
        )
        if draft.key in task.path:
            return None
        return self._child(
            task, draft, 'mapping', spliced=task.spliced | {site}, crossing=crossing,
            method=declaring if include_declaring else None,
        )

    def _accessor_child(self, task: _Expansion, accessor: _Accessor,
                        context: Optional[Tuple[str, str]] = None):
        draft = _NodeDraft(
            owner_type=accessor.owner, method_name=accessor.name, param_signature=accessor.params,
            location=accessor.location, category=accessor.category,
            label=f"{_simple(accessor.owner)}.{accessor.name}({', '.join(_simple(p) for p in accessor.params)})"
                  + ("" if accessor.declared else " (virtual)"),
        )
        if draft.key in task.path:
            return None
        return self._child(task, draft, 'accessor', context=context, accessor=accessor)

    def _caller_children(self, task: _Expansion, references: List[Reference]):
        """One node per distinct (caller, line), grouped by caller in discovery order."""
        grouped: dict = {}
        seen_lines: Set[Tuple[MethodId, str, int]] = set()
        for ref in references:
            if ref.enclosing_method is None:
                continue
            if ref.enclosing_method not in grouped and len(grouped) >= self.settings.caller_limit:
                continue
            line_key = (ref.enclosing_method, ref.location.file_path, ref.location.line)
            if line_key in seen_lines:
                continue
            seen_lines.add(line_key)
            sites = grouped.setdefault(ref.enclosing_method, [])
            if len(sites) < self.settings.call_site_limit:
                sites.append(ref.location)

        children = []
        for caller, locations in grouped.items():
            for location in locations:
                draft = self._method_draft(caller, location)
                if draft.key in task.path:
                    continue
                children.append(self._child(
                    task, draft, 'method', terminal=NodeClassifier.is_terminal(draft.category),
                    method=caller,
                ))
        return children

    # ------------------------------------------------------------------
    # Reference lookups (cached per run)
    # ------------------------------------------------------------------

    def _callers(self, method: MethodId) -> List[Reference]:
        return self.run.cache.get_or_compute(
            'callers', method, lambda: self.strategy.callers_of(self.index, method))

    def _implementations(self, method: MethodId) -> List[MethodId]:
        return self.run.cache.get_or_compute(
            'implementations', method,
            lambda: self.index.find_overrides_and_implementations(method)[:self.settings.implementation_limit])

    def _dispatch_callers(self, method: MethodId) -> List[Reference]:
        """Callers of method plus callers through overriding/overridden declarations."""
        family = [method]
        decl = self.index.method(method)
        owner = self.index.type_decl(method.owner)
        if (decl is not None and decl.is_abstract) or (owner is not None and owner.is_interface):
            family.extend(self._implementations(method))
        if decl is None or not decl.is_constructor:
            family.extend(self.index.find_super_methods(method))

        members = set(family)
        references: List[Reference] = []
        for member in dict.fromkeys(family):
            self.run.checkpoint()
            references.extend(ref for ref in self._callers(member) if ref.enclosing_method not in members)
        return references

    def _field_users(self, field_ref: FieldRef) -> List[Reference]:
        self.run.checkpoint()
        return self.run.cache.get_or_compute(
            'references', field_ref, lambda: self.index.find_references(field_ref))

    def _member_call_references(self, accessor: _Accessor) -> List[Reference]:
        self.run.checkpoint()
        references = list(self.run.cache.get_or_compute(
            'member_calls', (accessor.owner, accessor.name),
            lambda: self.index.find_member_calls(accessor.owner, accessor.name)))
        if accessor.declared is not None:
            seen = {(ref.enclosing_method, ref.location) for ref in references}
            for ref in self._callers(accessor.declared):
                if (ref.enclosing_method, ref.location) not in seen:
                    seen.add((ref.enclosing_method, ref.location))
                    references.append(ref)
        return references

    # ------------------------------------------------------------------
    # Accessor synthesis
    # ------------------------------------------------------------------

    def _accessors(self, field_ref: FieldRef) -> List[_Accessor]:
        """Getter and setter for a field, whether or not they are declared.

        Raises:
            ResolutionFailure: If the field is not found on its type
        """
        owner = field_ref.declaring_type
        field_decl = self.index.field_on(owner, field_ref.name)
        if field_decl is None:
            raise ResolutionFailure(f"Field {field_ref} not found")

        suffix = field_ref.name[:1].upper() + field_ref.name[1:]
        getter_name = ('is' if field_decl.type_name == 'boolean' else 'get') + suffix
        setter_name = 'set' + suffix

        getter = self.index.find_method(owner, getter_name, 0)
        setter = self.index.find_method(owner, setter_name, 1)
        return [
            _Accessor(
                owner=owner, name=getter_name,
                params=getter.id.param_types if getter else (),
                category=NodeCategory.ACCESSOR_GET,
                declared=getter.id if getter else None,
                location=getter.location if getter else field_decl.location,
            ),
            _Accessor(
                owner=owner, name=setter_name,
                params=setter.id.param_types if setter else (field_decl.type_name,),
                category=NodeCategory.ACCESSOR_SET,
                declared=setter.id if setter else None,
                location=setter.location if setter else field_decl.location,
            ),
        ]
