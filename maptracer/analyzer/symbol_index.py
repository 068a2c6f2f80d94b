"""Project-wide Java symbol index built on tree-sitter and networkx.

The index answers the questions the tracer asks about a codebase: which
types exist, what fields and methods they declare, who calls a method, who
reads or writes a field, and which methods override one another.

Build runs in three phases so every name can be qualified against the whole
project before any method body is interpreted:

1. Register every type declaration (including nested types).
2. Declare members (fields, methods, constructors) and the inheritance graph.
3. Interpret method bodies: calls, receivers, arguments, field accesses.
"""
import logging
from collections import defaultdict
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, Iterator, List, Optional, Protocol, Set, Tuple, Union

import networkx as nx
from tree_sitter import Node, Tree

from maptracer.analyzer.models import CodeLocation, FieldRef, MethodId, Reference
from maptracer.analyzer.parser import LanguageParser

logger = logging.getLogger(__name__)

TYPE_DECLARATIONS = {
    'class_declaration': 'class',
    'interface_declaration': 'interface',
    'enum_declaration': 'enum',
    'record_declaration': 'record',
    'annotation_type_declaration': 'annotation',
}

EXCLUDED_DIRS = {'.git', '.gradle', '.idea', '.mvn', 'build', 'target', 'out', 'bin', 'node_modules'}

COMMENT_TYPES = {'line_comment', 'block_comment'}

# Parents whose 'name' child is a declaration or member name, never a field read
_NAME_OWNER_TYPES = {
    'method_invocation', 'variable_declarator', 'formal_parameter', 'catch_formal_parameter',
    'enhanced_for_statement', 'resource', 'method_declaration', 'constructor_declaration',
    'class_declaration', 'interface_declaration', 'enum_declaration', 'record_declaration',
    'enum_constant', 'type_pattern', 'instanceof_expression',
}

_NON_VALUE_PARENTS = {
    'inferred_parameters', 'labeled_statement', 'break_statement', 'continue_statement',
    'method_reference', 'scoped_identifier', 'marker_annotation', 'annotation',
    'element_value_pair', 'package_declaration', 'import_declaration',
}


def strip_generics(type_text: str) -> str:
    """Drop generic parameters and surrounding whitespace: 'List<Foo>' -> 'List'."""
    return type_text.split('<', 1)[0].strip()


@dataclass(frozen=True)
class TypeRef:
    """Static type of an expression or declaration."""
    name: str
    element: Optional[str] = None
    static: bool = False  # expression names a type, not a value


@dataclass
class FileContext:
    """Per-file naming context."""
    path: str
    source: bytes
    package: str = ""
    imports: Dict[str, str] = field(default_factory=dict)
    wildcards: List[str] = field(default_factory=list)


@dataclass
class FieldDecl:
    """A declared field."""
    declaring_type: str
    name: str
    type_name: str
    raw_type: str
    element_type: Optional[str]
    location: CodeLocation
    is_static: bool = False

    @property
    def ref(self) -> FieldRef:
        return FieldRef(self.declaring_type, self.name)

    @property
    def type_ref(self) -> TypeRef:
        return TypeRef(self.type_name, self.element_type)


@dataclass
class MethodDecl:
    """A declared method or constructor."""
    id: MethodId
    return_type: Optional[TypeRef]
    params: List[Tuple[str, TypeRef]]
    annotations: List[str]
    owner_annotations: List[str]
    location: CodeLocation
    is_abstract: bool = False
    is_constructor: bool = False
    is_static: bool = False
    is_varargs: bool = False

    @property
    def name(self) -> str:
        return self.id.name

    @property
    def owner(self) -> str:
        return self.id.owner

    @property
    def arity(self) -> int:
        return len(self.params)


@dataclass
class TypeDecl:
    """A declared class, interface, enum, record or annotation type."""
    name: str
    simple_name: str
    kind: str
    file_path: str
    line: int
    package: str
    outer: Optional[str] = None
    supertypes: List[str] = field(default_factory=list)
    annotations: List[str] = field(default_factory=list)
    is_abstract: bool = False
    fields: Dict[str, FieldDecl] = field(default_factory=dict)
    methods: List[MethodDecl] = field(default_factory=list)

    @property
    def is_interface(self) -> bool:
        return self.kind == 'interface'


@dataclass(frozen=True)
class ReceiverInfo:
    """What a method invocation was called on."""
    kind: str  # 'none', 'this', 'super', 'type', 'call', 'expression'
    text: str = ""
    static_type: Optional[str] = None
    call_name: Optional[str] = None
    call_receiver_text: Optional[str] = None
    call_receiver_type: Optional[str] = None


@dataclass(frozen=True)
class ArgumentInfo:
    """One call argument, classified by syntactic shape."""
    shape: str  # 'class_literal', 'variable', 'call', 'other'
    text: str
    type_name: Optional[str] = None
    element_type: Optional[str] = None


@dataclass(frozen=True)
class CallSite:
    """One method invocation inside a method body."""
    enclosing: MethodId
    name: str
    location: CodeLocation
    receiver: ReceiverInfo
    arguments: Tuple[ArgumentInfo, ...] = ()
    resolved: Optional[MethodId] = None

    @property
    def receiver_type(self) -> Optional[str]:
        return self.receiver.static_type

    @property
    def resolved_owner(self) -> Optional[str]:
        return self.resolved.owner if self.resolved else None


class SymbolIndex(Protocol):
    """Read-only view of a project's symbols consumed by the tracer."""

    def resolve_type(self, name: str) -> Optional[str]: ...

    def find_references(self, target: Union[MethodId, FieldRef]) -> List[Reference]: ...

    def find_overrides_and_implementations(self, method: MethodId) -> List[MethodId]: ...

    def fields_of(self, type_name: str, include_inherited: bool = True) -> List[FieldRef]: ...

    def field_on(self, type_name: str, name: str) -> Optional[FieldDecl]: ...

    def type_decl(self, name: str) -> Optional[TypeDecl]: ...

    def method(self, method_id: MethodId) -> Optional[MethodDecl]: ...

    def find_method(self, type_name: str, name: str, arity: Optional[int] = None) -> Optional[MethodDecl]: ...

    def find_super_methods(self, method: MethodId) -> List[MethodId]: ...

    def find_member_calls(self, owner: str, name: str) -> List[Reference]: ...

    def containers_of(self, type_name: str) -> List[FieldDecl]: ...

    def calls_named(self, names: Iterable[str]) -> List[CallSite]: ...

    def calls_in(self, method: MethodId) -> List[CallSite]: ...


class _Local:
    """A local variable or parameter visible within [start, end)."""
    __slots__ = ('start', 'end', 'type_node', 'value_node', 'type_ref', 'iterates')

    def __init__(self, start: int, end: int, type_ref: Optional[TypeRef] = None,
                 type_node: Optional[Node] = None, value_node: Optional[Node] = None,
                 iterates: bool = False):
        self.start = start
        self.end = end
        self.type_node = type_node
        self.value_node = value_node
        self.type_ref = type_ref
        self.iterates = iterates


class _MethodScope:
    """Local variable scopes of one method body."""

    def __init__(self, decl: MethodDecl, chain: List[str], ctx: FileContext):
        self.decl = decl
        self.chain = chain
        self.ctx = ctx
        self.locals: Dict[str, List[_Local]] = defaultdict(list)
        self.resolving: Set[int] = set()

    @property
    def owner(self) -> str:
        return self.chain[0]

    def declare(self, name: str, local: _Local):
        self.locals[name].append(local)

    def lookup(self, name: str, position: int) -> Optional[_Local]:
        best = None
        for local in self.locals.get(name, ()):
            if local.start <= position < local.end and (best is None or local.start >= best.start):
                best = local
        return best


class ProjectIndex:
    """Static symbol index over a set of Java source files."""

    def __init__(self):
        self.parser = LanguageParser('java')
        self.types: Dict[str, TypeDecl] = {}
        self.files: List[str] = []
        self.skipped_files: List[str] = []

        self._sources: Dict[str, bytes] = {}
        self._built = False
        self._order: Dict[str, int] = {}
        self._by_simple_name: Dict[str, List[str]] = defaultdict(list)
        self._type_nodes: Dict[str, Tuple[Node, FileContext]] = {}
        self._methods: Dict[MethodId, MethodDecl] = {}
        self._bodies: List[Tuple[MethodDecl, Node, FileContext]] = []

        self.inheritance = nx.DiGraph()  # subtype -> supertype
        self.call_graph = nx.MultiDiGraph()  # caller -> callee, one edge per call site

        self._calls: List[CallSite] = []
        self._calls_by_name: Dict[str, List[CallSite]] = defaultdict(list)
        self._calls_by_method: Dict[MethodId, List[CallSite]] = defaultdict(list)
        self._method_refs: Dict[MethodId, List[Reference]] = defaultdict(list)
        self._field_refs: Dict[FieldRef, List[Reference]] = defaultdict(list)
        self._call_memo: Dict[int, tuple] = {}

    # ------------------------------------------------------------------
    # Construction
    # ------------------------------------------------------------------

    @classmethod
    def from_directory(cls, root: str | Path) -> 'ProjectIndex':
        """Index every .java file under root.

        Args:
            root: Project root directory

        Returns:
            Built ProjectIndex

        Raises:
            FileNotFoundError: If root does not exist
        """
        root = Path(root)
        if not root.is_dir():
            raise FileNotFoundError(f"Project directory not found: {root}")

        index = cls()
        for path in sorted(root.rglob('*.java')):
            if any(part in EXCLUDED_DIRS for part in path.relative_to(root).parts):
                continue
            try:
                index.add_source(str(path), path.read_bytes())
            except OSError as e:
                logger.warning("Cannot read %s: %s", path, e)
                index.skipped_files.append(str(path))
        return index.build()

    @classmethod
    def from_sources(cls, sources: Dict[str, bytes | str]) -> 'ProjectIndex':
        """Index in-memory sources keyed by file path (in the given order)."""
        index = cls()
        for path, source in sources.items():
            if isinstance(source, str):
                source = source.encode('utf-8')
            index.add_source(path, source)
        return index.build()

    def add_source(self, file_path: str, source: bytes):
        if self._built:
            raise RuntimeError("Cannot add sources after the index is built")
        self._sources[file_path] = source

    def build(self) -> 'ProjectIndex':
        """Run all indexing phases. Safe to call once."""
        if self._built:
            return self
        self._built = True

        trees: List[Tuple[Tree, FileContext]] = []
        for file_path, source in self._sources.items():
            try:
                tree = self.parser.parse_source(source)
                if tree.root_node.has_error:
                    logger.debug("Syntax errors in %s; indexing recoverable parts", file_path)
                ctx = self._file_context(file_path, source, tree.root_node)
                self._register_types(tree.root_node, ctx)
                trees.append((tree, ctx))
                self.files.append(file_path)
            except Exception as e:
                logger.warning("Skipping %s: %s", file_path, e)
                self.skipped_files.append(file_path)

        for type_name in list(self.types):
            node, ctx = self._type_nodes[type_name]
            try:
                self._declare_members(self.types[type_name], node, ctx)
            except Exception as e:
                logger.warning("Failed to declare members of %s: %s", type_name, e)

        self._build_inheritance_graph()

        for decl, body, ctx in self._bodies:
            try:
                self._analyze_body(decl, body, ctx)
            except Exception as e:
                logger.warning("Failed to analyze %s: %s", decl.id.signature, e)

        self._bodies.clear()
        self._type_nodes.clear()
        self._call_memo.clear()
        self._sources.clear()
        logger.debug("Indexed %d files, %d types, %d methods, %d calls",
                     len(self.files), len(self.types), len(self._methods), len(self._calls))
        return self

    # ------------------------------------------------------------------
    # Phase 1: files and type registration
    # ------------------------------------------------------------------

    def _text(self, node: Node, ctx: FileContext) -> str:
        return ctx.source[node.start_byte:node.end_byte].decode('utf-8', errors='replace')

    def _location(self, node: Node, ctx: FileContext) -> CodeLocation:
        return CodeLocation(ctx.path, node.start_point[0] + 1)

    def _file_context(self, file_path: str, source: bytes, root: Node) -> FileContext:
        ctx = FileContext(path=file_path, source=source)
        for child in root.named_children:
            if child.type == 'package_declaration':
                for part in child.named_children:
                    if part.type in ('scoped_identifier', 'identifier'):
                        ctx.package = self._text(part, ctx)
            elif child.type == 'import_declaration':
                if any(c.type == 'static' for c in child.children):
                    continue
                target = None
                wildcard = False
                for part in child.children:
                    if part.type in ('scoped_identifier', 'identifier'):
                        target = self._text(part, ctx)
                    elif part.type == 'asterisk':
                        wildcard = True
                if target is None:
                    continue
                if wildcard:
                    ctx.wildcards.append(target)
                else:
                    ctx.imports[target.rsplit('.', 1)[-1]] = target
        return ctx

    def _register_types(self, root: Node, ctx: FileContext):
        stack: List[Tuple[Node, Optional[str]]] = [
            (child, None) for child in reversed(root.named_children)
        ]
        while stack:
            node, outer = stack.pop()
            kind = TYPE_DECLARATIONS.get(node.type)
            if kind is None:
                continue
            name_node = node.child_by_field_name('name')
            if name_node is None:
                continue
            simple = self._text(name_node, ctx)
            if outer:
                qualified = f"{outer}.{simple}"
            elif ctx.package:
                qualified = f"{ctx.package}.{simple}"
            else:
                qualified = simple

            if qualified in self.types:
                logger.warning("Duplicate type %s in %s (first declared in %s); keeping the first",
                               qualified, ctx.path, self.types[qualified].file_path)
                continue

            self.types[qualified] = TypeDecl(
                name=qualified, simple_name=simple, kind=kind, file_path=ctx.path,
                line=name_node.start_point[0] + 1, package=ctx.package, outer=outer,
            )
            self._order[qualified] = len(self._order)
            self._by_simple_name[simple].append(qualified)
            self._type_nodes[qualified] = (node, ctx)

            body = node.child_by_field_name('body')
            if body is not None:
                nested = [m for m in self._member_nodes(body) if m.type in TYPE_DECLARATIONS]
                for member in reversed(nested):
                    stack.append((member, qualified))

    @staticmethod
    def _member_nodes(body: Node) -> Iterator[Node]:
        for child in body.named_children:
            if child.type == 'enum_body_declarations':
                yield from child.named_children
            else:
                yield child

    # ------------------------------------------------------------------
    # Name qualification
    # ------------------------------------------------------------------

    def _enclosing_chain(self, type_name: str) -> List[str]:
        chain = []
        current: Optional[str] = type_name
        while current:
            chain.append(current)
            decl = self.types.get(current)
            current = decl.outer if decl else None
        return chain

    def qualify(self, name: str, ctx: FileContext, chain: List[str]) -> str:
        """Resolve a type name as written in ctx to a qualified name.

        Order: exact match, single-type import, nested type of the enclosing
        chain, same package, wildcard import, first project type with that
        simple name. Unknown names are returned unchanged.
        """
        name = strip_generics(name)
        if name.endswith('[]'):
            return self.qualify(name[:-2], ctx, chain) + '[]'
        if name in self.types:
            return name

        if '.' in name:
            head, rest = name.split('.', 1)
            qualified_head = self.qualify(head, ctx, chain)
            candidate = f"{qualified_head}.{rest}"
            return candidate if candidate in self.types else name

        if name in ctx.imports:
            return ctx.imports[name]
        for enclosing in chain:
            candidate = f"{enclosing}.{name}"
            if candidate in self.types:
                return candidate
        if ctx.package and f"{ctx.package}.{name}" in self.types:
            return f"{ctx.package}.{name}"
        for package in ctx.wildcards:
            if f"{package}.{name}" in self.types:
                return f"{package}.{name}"
        candidates = self._by_simple_name.get(name)
        if candidates:
            return candidates[0]
        return name

    def _type_ref(self, node: Node, ctx: FileContext, chain: List[str]) -> TypeRef:
        kind = node.type
        if kind == 'generic_type':
            base = node.named_children[0]
            element = None
            for child in node.named_children:
                if child.type == 'type_arguments':
                    for arg in child.named_children:
                        if arg.type == 'wildcard':
                            bound = [c for c in arg.named_children if c.type != 'annotation']
                            if not bound:
                                continue
                            arg = bound[-1]
                        element = self._type_ref(arg, ctx, chain).name
                        break
            return TypeRef(self.qualify(self._text(base, ctx), ctx, chain), element)
        if kind == 'array_type':
            element_node = node.child_by_field_name('element')
            element = self._type_ref(element_node, ctx, chain).name if element_node else None
            return TypeRef(f"{element}[]", element)
        if kind in ('type_identifier', 'scoped_type_identifier'):
            return TypeRef(self.qualify(self._text(node, ctx), ctx, chain))
        if kind == 'annotated_type':
            return self._type_ref(node.named_children[-1], ctx, chain)
        return TypeRef(self._text(node, ctx))

    # ------------------------------------------------------------------
    # Phase 2: members and inheritance
    # ------------------------------------------------------------------

    def _modifiers(self, node: Node, ctx: FileContext) -> Tuple[Set[str], List[str]]:
        keywords: Set[str] = set()
        annotations: List[str] = []
        for child in node.children:
            if child.type != 'modifiers':
                continue
            for mod in child.children:
                if mod.type in ('marker_annotation', 'annotation'):
                    name_node = mod.child_by_field_name('name')
                    if name_node is not None:
                        annotations.append(self._text(name_node, ctx).rsplit('.', 1)[-1])
                elif not mod.is_named:
                    keywords.add(mod.type)
        return keywords, annotations

    def _declare_members(self, decl: TypeDecl, node: Node, ctx: FileContext):
        chain = self._enclosing_chain(decl.name)
        keywords, decl.annotations = self._modifiers(node, ctx)
        decl.is_abstract = 'abstract' in keywords or decl.is_interface

        for child in node.children:
            if child.type == 'superclass':
                for type_node in child.named_children:
                    decl.supertypes.append(self._type_ref(type_node, ctx, chain[1:] or chain).name)
            elif child.type in ('super_interfaces', 'extends_interfaces'):
                for type_list in child.named_children:
                    for type_node in type_list.named_children:
                        decl.supertypes.append(self._type_ref(type_node, ctx, chain[1:] or chain).name)

        if decl.kind == 'record':
            params = node.child_by_field_name('parameters')
            if params is not None:
                for param in params.named_children:
                    self._add_field(decl, param, param, ctx, chain, is_static=False)

        body = node.child_by_field_name('body')
        if body is None:
            return
        for member in self._member_nodes(body):
            if member.type in ('field_declaration', 'constant_declaration'):
                member_keywords, _ = self._modifiers(member, ctx)
                is_static = 'static' in member_keywords or member.type == 'constant_declaration'
                for declarator in member.children_by_field_name('declarator'):
                    self._add_field(decl, member, declarator, ctx, chain, is_static)
            elif member.type in ('method_declaration', 'constructor_declaration'):
                self._add_method(decl, member, ctx, chain)

    def _add_field(self, decl: TypeDecl, typed: Node, named: Node, ctx: FileContext,
                   chain: List[str], is_static: bool):
        type_node = typed.child_by_field_name('type')
        name_node = named.child_by_field_name('name')
        if type_node is None or name_node is None:
            return
        name = self._text(name_node, ctx)
        if name in decl.fields:
            return
        type_ref = self._type_ref(type_node, ctx, chain)
        decl.fields[name] = FieldDecl(
            declaring_type=decl.name, name=name, type_name=type_ref.name,
            raw_type=self._text(type_node, ctx), element_type=type_ref.element,
            location=self._location(name_node, ctx), is_static=is_static,
        )

    def _add_method(self, decl: TypeDecl, node: Node, ctx: FileContext, chain: List[str]):
        is_constructor = node.type != 'method_declaration'
        name_node = node.child_by_field_name('name')
        if name_node is None:
            return
        keywords, annotations = self._modifiers(node, ctx)

        params: List[Tuple[str, TypeRef]] = []
        is_varargs = False
        params_node = node.child_by_field_name('parameters')
        if params_node is not None:
            for param in params_node.named_children:
                if param.type == 'formal_parameter':
                    type_node = param.child_by_field_name('type')
                    pname = param.child_by_field_name('name')
                    if type_node is None:
                        continue
                    params.append((self._text(pname, ctx) if pname else '',
                                   self._type_ref(type_node, ctx, chain)))
                elif param.type == 'spread_parameter':
                    is_varargs = True
                    type_node = next((c for c in param.named_children
                                      if c.type not in ('modifiers', 'variable_declarator')), None)
                    declarator = next((c for c in param.named_children if c.type == 'variable_declarator'), None)
                    pname = declarator.child_by_field_name('name') if declarator else None
                    element = self._type_ref(type_node, ctx, chain).name if type_node else 'Object'
                    params.append((self._text(pname, ctx) if pname else '', TypeRef(f"{element}[]", element)))

        if is_constructor:
            name = '<init>'
            return_type = TypeRef(decl.name)
        else:
            name = self._text(name_node, ctx)
            type_node = node.child_by_field_name('type')
            return_type = self._type_ref(type_node, ctx, chain) if type_node else None

        body = node.child_by_field_name('body')
        is_static = 'static' in keywords
        is_abstract = 'abstract' in keywords or (
            decl.is_interface and body is None and not is_static and 'default' not in keywords
        )

        method_id = MethodId(decl.name, name, tuple(ref.name for _, ref in params))
        if method_id in self._methods:
            return
        method = MethodDecl(
            id=method_id, return_type=return_type, params=params, annotations=annotations,
            owner_annotations=decl.annotations, location=self._location(name_node, ctx),
            is_abstract=is_abstract, is_constructor=is_constructor, is_static=is_static,
            is_varargs=is_varargs,
        )
        decl.methods.append(method)
        self._methods[method_id] = method
        self.call_graph.add_node(method_id)
        if body is not None:
            self._bodies.append((method, node, ctx))

    def _build_inheritance_graph(self):
        for decl in self.types.values():
            self.inheritance.add_node(decl.name)
            for supertype in decl.supertypes:
                if supertype != decl.name:
                    self.inheritance.add_edge(decl.name, supertype)

    def _ordered(self, names: Iterable[str]) -> List[str]:
        return sorted(names, key=lambda n: (self._order.get(n, len(self._order)), n))

    def supertypes_of(self, type_name: str) -> List[str]:
        """All transitive supertypes, nearest first."""
        if type_name not in self.inheritance:
            return []
        distances = nx.single_source_shortest_path_length(self.inheritance, type_name)
        return sorted((n for n in distances if n != type_name),
                      key=lambda n: (distances[n], self._order.get(n, len(self._order)), n))

    def subtypes_of(self, type_name: str) -> List[str]:
        """All transitive project subtypes in declaration order."""
        if type_name not in self.inheritance:
            return []
        return self._ordered(n for n in nx.ancestors(self.inheritance, type_name) if n in self.types)

    def is_subtype(self, type_name: str, ancestor: str) -> bool:
        return type_name == ancestor or ancestor in self.supertypes_of(type_name)

    # ------------------------------------------------------------------
    # Phase 3: method bodies
    # ------------------------------------------------------------------

    def _collect_locals(self, scope: _MethodScope, node: Node):
        for name, ref in scope.decl.params:
            if name:
                scope.declare(name, _Local(node.start_byte, node.end_byte, type_ref=ref))

        body = node.child_by_field_name('body')
        if body is None:
            return
        ctx = scope.ctx
        stack = [body]
        while stack:
            current = stack.pop()
            kind = current.type
            if kind == 'local_variable_declaration':
                type_node = current.child_by_field_name('type')
                block_end = current.parent.end_byte if current.parent else body.end_byte
                for declarator in current.children_by_field_name('declarator'):
                    name_node = declarator.child_by_field_name('name')
                    if name_node is not None:
                        scope.declare(self._text(name_node, ctx), _Local(
                            declarator.start_byte, block_end, type_node=type_node,
                            value_node=declarator.child_by_field_name('value')))
            elif kind == 'enhanced_for_statement':
                name_node = current.child_by_field_name('name')
                if name_node is not None:
                    scope.declare(self._text(name_node, ctx), _Local(
                        current.start_byte, current.end_byte,
                        type_node=current.child_by_field_name('type'),
                        value_node=current.child_by_field_name('value'), iterates=True))
            elif kind == 'resource':
                name_node = current.child_by_field_name('name')
                statement = current.parent.parent if current.parent is not None else None
                if name_node is not None and statement is not None:
                    scope.declare(self._text(name_node, ctx), _Local(
                        current.start_byte, statement.end_byte,
                        type_node=current.child_by_field_name('type'),
                        value_node=current.child_by_field_name('value')))
            elif kind == 'catch_formal_parameter':
                name_node = current.child_by_field_name('name')
                catch_type = next((c for c in current.named_children if c.type == 'catch_type'), None)
                type_node = catch_type.named_children[0] if catch_type and catch_type.named_children else None
                if name_node is not None and current.parent is not None:
                    scope.declare(self._text(name_node, ctx), _Local(
                        current.start_byte, current.parent.end_byte, type_node=type_node))
            elif kind == 'lambda_expression':
                params = current.child_by_field_name('parameters')
                if params is not None:
                    names = [params] if params.type == 'identifier' else [
                        p.child_by_field_name('name') if p.type == 'formal_parameter' else p
                        for p in params.named_children
                    ]
                    for name_node in names:
                        if name_node is not None and name_node.type == 'identifier':
                            scope.declare(self._text(name_node, ctx),
                                          _Local(current.start_byte, current.end_byte))
            stack.extend(current.named_children)

    def _local_type(self, local: _Local, scope: _MethodScope) -> Optional[TypeRef]:
        if local.type_ref is not None:
            return local.type_ref
        key = id(local)
        if key in scope.resolving:
            return None
        scope.resolving.add(key)
        try:
            ref = None
            if local.type_node is not None and self._text(local.type_node, scope.ctx) != 'var':
                ref = self._type_ref(local.type_node, scope.ctx, scope.chain)
            elif local.value_node is not None:
                value_ref = self._type_of(local.value_node, scope)
                if local.iterates:
                    ref = TypeRef(value_ref.element) if value_ref and value_ref.element else None
                else:
                    ref = value_ref
        finally:
            scope.resolving.discard(key)
        local.type_ref = ref
        return ref

    def _field_in_scope(self, scope: _MethodScope, name: str) -> Optional[FieldDecl]:
        for enclosing in scope.chain:
            found = self.field_on(enclosing, name)
            if found is not None:
                return found
        return None

    def _type_of(self, node: Node, scope: _MethodScope) -> Optional[TypeRef]:
        """Best-effort static type of an expression node."""
        kind = node.type
        if kind == 'identifier':
            name = self._text(node, scope.ctx)
            entry = scope.lookup(name, node.start_byte)
            if entry is not None:
                return self._local_type(entry, scope)
            found = self._field_in_scope(scope, name)
            if found is not None:
                return found.type_ref
            if name[:1].isupper():
                return TypeRef(self.qualify(name, scope.ctx, scope.chain), static=True)
            return None
        if kind == 'this':
            return TypeRef(scope.owner)
        if kind == 'super':
            supertypes = self.types[scope.owner].supertypes if scope.owner in self.types else []
            return TypeRef(supertypes[0]) if supertypes else None
        if kind == 'field_access':
            obj = node.child_by_field_name('object')
            member = node.child_by_field_name('field')
            if obj is None or member is None:
                return None
            if member.type == 'this':
                return TypeRef(self.qualify(self._text(obj, scope.ctx), scope.ctx, scope.chain))
            obj_ref = self._type_of(obj, scope)
            member_name = self._text(member, scope.ctx)
            if obj_ref is not None and obj_ref.name in self.types:
                found = self.field_on(obj_ref.name, member_name)
                if found is not None:
                    return found.type_ref
                if obj_ref.static and f"{obj_ref.name}.{member_name}" in self.types:
                    return TypeRef(f"{obj_ref.name}.{member_name}", static=True)
                return None
            qualified = self.qualify(self._text(node, scope.ctx), scope.ctx, scope.chain)
            if qualified in self.types:
                return TypeRef(qualified, static=True)
            return None
        if kind == 'method_invocation':
            target, _, _ = self._resolve_call(node, scope)
            return target.return_type if target is not None else None
        if kind == 'object_creation_expression':
            type_node = node.child_by_field_name('type')
            return self._type_ref(type_node, scope.ctx, scope.chain) if type_node else None
        if kind == 'cast_expression':
            type_node = node.child_by_field_name('type')
            return self._type_ref(type_node, scope.ctx, scope.chain) if type_node else None
        if kind == 'parenthesized_expression':
            inner = [c for c in node.named_children if c.type not in COMMENT_TYPES]
            return self._type_of(inner[0], scope) if inner else None
        if kind == 'string_literal':
            return TypeRef('String')
        if kind in ('true', 'false'):
            return TypeRef('boolean')
        if kind == 'array_access':
            array = node.child_by_field_name('array')
            array_ref = self._type_of(array, scope) if array else None
            return TypeRef(array_ref.element) if array_ref and array_ref.element else None
        if kind == 'ternary_expression':
            branch = node.child_by_field_name('consequence')
            return self._type_of(branch, scope) if branch else None
        if kind == 'assignment_expression':
            left = node.child_by_field_name('left')
            return self._type_of(left, scope) if left else None
        return None

    def _arguments(self, node: Node) -> List[Node]:
        args = node.child_by_field_name('arguments')
        if args is None:
            return []
        return [c for c in args.named_children if c.type not in COMMENT_TYPES]

    def _select_overload(self, candidates: List[MethodDecl], arg_types: List[Optional[TypeRef]]) -> Optional[MethodDecl]:
        arity = len(arg_types)
        exact = [m for m in candidates if m.arity == arity]
        if len(exact) > 1:
            for method in exact:
                if all(t is None or t.name == p.name for (_, p), t in zip(method.params, arg_types)):
                    return method
        if exact:
            return exact[0]
        varargs = [m for m in candidates if m.is_varargs and arity >= m.arity - 1]
        return varargs[0] if varargs else None

    def _lookup_method(self, type_name: str, name: str, arg_types: List[Optional[TypeRef]]) -> Optional[MethodDecl]:
        for candidate_type in [type_name] + self.supertypes_of(type_name):
            decl = self.types.get(candidate_type)
            if decl is None:
                continue
            found = self._select_overload([m for m in decl.methods if m.name == name], arg_types)
            if found is not None:
                return found
        return None

    def _resolve_call(self, node: Node, scope: _MethodScope) -> Tuple[Optional[MethodDecl], ReceiverInfo, List[Node]]:
        """Resolve a method_invocation to its target declaration and receiver."""
        memo = self._call_memo.get(node.id)
        if memo is not None:
            return memo

        self._call_memo[node.id] = (None, ReceiverInfo('none'), [])  # cycle guard
        name_node = node.child_by_field_name('name')
        name = self._text(name_node, scope.ctx) if name_node else ''
        args = self._arguments(node)
        arg_types = [self._type_of(arg, scope) for arg in args]
        obj = node.child_by_field_name('object')

        target = None
        if obj is None:
            receiver = ReceiverInfo('none', static_type=scope.owner)
            for enclosing in scope.chain:
                target = self._lookup_method(enclosing, name, arg_types)
                if target is not None:
                    receiver = ReceiverInfo('none', static_type=enclosing)
                    break
        else:
            obj_ref = self._type_of(obj, scope)
            obj_text = self._text(obj, scope.ctx)
            static_type = obj_ref.name if obj_ref else None
            if obj.type == 'this':
                kind = 'this'
            elif obj.type == 'super':
                kind = 'super'
            elif obj.type == 'method_invocation':
                kind = 'call'
            elif obj_ref is not None and obj_ref.static:
                kind = 'type'
            else:
                kind = 'expression'

            call_name = call_receiver_text = call_receiver_type = None
            if obj.type == 'method_invocation':
                inner_name = obj.child_by_field_name('name')
                call_name = self._text(inner_name, scope.ctx) if inner_name else None
                inner_obj = obj.child_by_field_name('object')
                if inner_obj is not None:
                    call_receiver_text = self._text(inner_obj, scope.ctx)
                    inner_ref = self._type_of(inner_obj, scope)
                    call_receiver_type = inner_ref.name if inner_ref else None

            receiver = ReceiverInfo(kind, obj_text, static_type, call_name,
                                    call_receiver_text, call_receiver_type)
            if static_type is not None and static_type in self.types:
                target = self._lookup_method(static_type, name, arg_types)

        result = (target, receiver, args)
        self._call_memo[node.id] = result
        return result

    def _argument_info(self, arg: Node, scope: _MethodScope) -> ArgumentInfo:
        text = self._text(arg, scope.ctx)
        if arg.type == 'class_literal':
            operand = arg.named_children[0] if arg.named_children else None
            ref = self._type_ref(operand, scope.ctx, scope.chain) if operand is not None else None
            return ArgumentInfo('class_literal', text, ref.name if ref else None, ref.element if ref else None)

        ref = self._type_of(arg, scope)
        if ref is not None and ref.static:
            ref = None
        if arg.type in ('identifier', 'field_access'):
            shape = 'variable'
        elif arg.type == 'method_invocation':
            shape = 'call'
        else:
            shape = 'other'
        return ArgumentInfo(shape, text, ref.name if ref else None, ref.element if ref else None)

    def _is_value_identifier(self, node: Node) -> bool:
        parent = node.parent
        if parent is None:
            return False
        parent_type = parent.type
        if parent_type in _NON_VALUE_PARENTS:
            return False
        if parent_type in _NAME_OWNER_TYPES:
            name_node = parent.child_by_field_name('name')
            if name_node is not None and name_node.id == node.id:
                return False
        if parent_type == 'field_access':
            member = parent.child_by_field_name('field')
            return member is None or member.id != node.id
        if parent_type == 'lambda_expression':
            params = parent.child_by_field_name('parameters')
            return params is None or params.id != node.id
        return True

    def _record_field_use(self, found: FieldDecl, enclosing: MethodId, node: Node, ctx: FileContext):
        self._field_refs[found.ref].append(Reference(enclosing, self._location(node, ctx)))

    def _analyze_body(self, decl: MethodDecl, node: Node, ctx: FileContext):
        chain = self._enclosing_chain(decl.owner)
        scope = _MethodScope(decl, chain, ctx)
        self._collect_locals(scope, node)
        body = node.child_by_field_name('body')
        if body is None:
            return

        stack = [body]
        while stack:
            current = stack.pop()
            kind = current.type
            if kind == 'method_invocation':
                self._record_call(current, scope)
            elif kind == 'object_creation_expression':
                self._record_construction(current, scope)
            elif kind == 'identifier':
                if self._is_value_identifier(current):
                    name = self._text(current, ctx)
                    if scope.lookup(name, current.start_byte) is None:
                        found = self._field_in_scope(scope, name)
                        if found is not None:
                            self._record_field_use(found, decl.id, current, ctx)
            elif kind == 'field_access':
                obj = current.child_by_field_name('object')
                member = current.child_by_field_name('field')
                if obj is not None and member is not None and member.type == 'identifier':
                    obj_ref = self._type_of(obj, scope)
                    if obj_ref is not None and obj_ref.name in self.types:
                        found = self.field_on(obj_ref.name, self._text(member, ctx))
                        if found is not None:
                            self._record_field_use(found, decl.id, member, ctx)
            elif kind == 'method_reference':
                self._record_method_reference(current, scope)
            stack.extend(reversed(current.named_children))

    def _register_call(self, site: CallSite):
        self._calls.append(site)
        self._calls_by_name[site.name].append(site)
        self._calls_by_method[site.enclosing].append(site)
        if site.resolved is not None:
            self.call_graph.add_edge(site.enclosing, site.resolved, location=site.location)
            self._method_refs[site.resolved].append(Reference(site.enclosing, site.location))

    def _record_call(self, node: Node, scope: _MethodScope):
        target, receiver, args = self._resolve_call(node, scope)
        name_node = node.child_by_field_name('name')
        if name_node is None:
            return
        site = CallSite(
            enclosing=scope.decl.id,
            name=self._text(name_node, scope.ctx),
            location=self._location(name_node, scope.ctx),
            receiver=receiver,
            arguments=tuple(self._argument_info(arg, scope) for arg in args),
            resolved=target.id if target is not None else None,
        )
        self._register_call(site)

    def _record_construction(self, node: Node, scope: _MethodScope):
        type_node = node.child_by_field_name('type')
        if type_node is None:
            return
        type_name = self._type_ref(type_node, scope.ctx, scope.chain).name
        decl = self.types.get(type_name)
        if decl is None:
            return
        args = self._arguments(node)
        constructors = [m for m in decl.methods if m.is_constructor]
        target = self._select_overload(constructors, [self._type_of(arg, scope) for arg in args])
        if target is None:
            return
        site = CallSite(
            enclosing=scope.decl.id, name='<init>', location=self._location(node, scope.ctx),
            receiver=ReceiverInfo('type', self._text(type_node, scope.ctx), type_name),
            resolved=target.id,
        )
        self._register_call(site)

    def _record_method_reference(self, node: Node, scope: _MethodScope):
        parts = node.named_children
        if len(parts) < 2 or parts[-1].type != 'identifier':
            return
        qualifier = parts[0]
        if qualifier.type in ('type_identifier', 'scoped_type_identifier', 'generic_type'):
            owner_ref = self._type_ref(qualifier, scope.ctx, scope.chain)
        else:
            owner_ref = self._type_of(qualifier, scope)
        if owner_ref is None or owner_ref.name not in self.types:
            return
        name = self._text(parts[-1], scope.ctx)
        for candidate_type in [owner_ref.name] + self.supertypes_of(owner_ref.name):
            decl = self.types.get(candidate_type)
            matches = [m for m in decl.methods if m.name == name] if decl else []
            if matches:
                self._method_refs[matches[0].id].append(
                    Reference(scope.decl.id, self._location(node, scope.ctx)))
                self.call_graph.add_edge(scope.decl.id, matches[0].id,
                                         location=self._location(node, scope.ctx))
                return

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def resolve_type(self, name: str) -> Optional[str]:
        """Resolve a qualified or simple type name to a declared type.

        Returns:
            Qualified name, or None if no project type matches
        """
        name = strip_generics(name)
        if name in self.types:
            return name
        candidates = self._by_simple_name.get(name)
        if candidates:
            if len(candidates) > 1:
                logger.debug("Ambiguous type %s; using %s", name, candidates[0])
            return candidates[0]
        suffix = '.' + name
        for qualified in self.types:
            if qualified.endswith(suffix):
                return qualified
        return None

    def type_decl(self, name: str) -> Optional[TypeDecl]:
        return self.types.get(name)

    def method(self, method_id: MethodId) -> Optional[MethodDecl]:
        return self._methods.get(method_id)

    def find_method(self, type_name: str, name: str, arity: Optional[int] = None) -> Optional[MethodDecl]:
        """Find a method by name (and optionally arity) on a type or its supertypes."""
        for candidate_type in [type_name] + self.supertypes_of(type_name):
            decl = self.types.get(candidate_type)
            if decl is None:
                continue
            for method in decl.methods:
                if method.name == name and (arity is None or method.arity == arity):
                    return method
        return None

    def fields_of(self, type_name: str, include_inherited: bool = True) -> List[FieldRef]:
        """List fields of a type; subclass declarations hide inherited ones."""
        seen: Set[str] = set()
        result: List[FieldRef] = []
        lineage = [type_name] + (self.supertypes_of(type_name) if include_inherited else [])
        for candidate_type in lineage:
            decl = self.types.get(candidate_type)
            if decl is None:
                continue
            for name, field_decl in decl.fields.items():
                if name not in seen:
                    seen.add(name)
                    result.append(field_decl.ref)
        return result

    def field_on(self, type_name: str, name: str) -> Optional[FieldDecl]:
        """Find a declared or inherited field by name."""
        for candidate_type in [type_name] + self.supertypes_of(type_name):
            decl = self.types.get(candidate_type)
            if decl is not None and name in decl.fields:
                return decl.fields[name]
        return None

    def has_field(self, type_name: str, name: str) -> bool:
        return self.field_on(type_name, name) is not None

    def containers_of(self, type_name: str) -> List[FieldDecl]:
        """Fields (across the project) whose type or element type is type_name."""
        result = []
        for decl in self.types.values():
            for field_decl in decl.fields.values():
                if type_name in (field_decl.type_name, field_decl.element_type):
                    result.append(field_decl)
        return result

    def find_references(self, target: Union[MethodId, FieldRef]) -> List[Reference]:
        """Find project references to a method or field, in discovery order.

        Raises:
            TypeError: If target is neither a MethodId nor a FieldRef
        """
        if isinstance(target, MethodId):
            return list(self._method_refs.get(target, ()))
        if isinstance(target, FieldRef):
            found = self.field_on(target.declaring_type, target.name)
            ref = found.ref if found is not None else target
            return list(self._field_refs.get(ref, ()))
        raise TypeError(f"Unsupported reference target: {target!r}")

    def callers_of(self, method: MethodId) -> List[Reference]:
        """Incoming call-graph edges, grouped by caller in discovery order."""
        if method not in self.call_graph:
            return []
        return [Reference(caller, data['location'])
                for caller, _, data in self.call_graph.in_edges(method, data=True)]

    def find_overrides_and_implementations(self, method: MethodId) -> List[MethodId]:
        result = []
        for subtype in self.subtypes_of(method.owner):
            decl = self.types[subtype]
            match = next((m for m in decl.methods
                          if m.name == method.name and m.id.param_types == method.param_types), None)
            if match is None:
                match = next((m for m in decl.methods
                              if m.name == method.name and m.arity == len(method.param_types)
                              and not m.is_constructor), None)
            if match is not None:
                result.append(match.id)
        return result

    def find_super_methods(self, method: MethodId) -> List[MethodId]:
        """Methods in supertypes that the given method overrides or implements."""
        if method.name == '<init>':
            return []
        result = []
        for supertype in self.supertypes_of(method.owner):
            decl = self.types.get(supertype)
            if decl is None:
                continue
            match = next((m for m in decl.methods
                          if m.name == method.name and m.id.param_types == method.param_types), None)
            if match is not None:
                result.append(match.id)
        return result

    def find_member_calls(self, owner: str, name: str) -> List[Reference]:
        """Text search for calls named `name` whose receiver is typed as owner.

        Works without a resolvable declaration, which is what generated
        accessors need. Receivers typed as a subtype of owner also match.
        """
        result = []
        for site in self._calls_by_name.get(name, ()):
            receiver_type = site.receiver_type
            if site.resolved_owner == owner or receiver_type == owner or (
                    receiver_type in self.types and self.is_subtype(receiver_type, owner)):
                result.append(Reference(site.enclosing, site.location))
        return result

    def calls_named(self, names: Iterable[str]) -> List[CallSite]:
        """Call sites whose member name is in names, in discovery order."""
        wanted = set(names)
        return [site for site in self._calls if site.name in wanted]

    def calls_in(self, method: MethodId) -> List[CallSite]:
        return list(self._calls_by_method.get(method, ()))

    def stats(self) -> Dict[str, int]:
        return {
            'files': len(self.files),
            'skipped_files': len(self.skipped_files),
            'types': len(self.types),
            'methods': len(self._methods),
            'call_sites': len(self._calls),
            'call_edges': self.call_graph.number_of_edges(),
        }
