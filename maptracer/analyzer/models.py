"""Value types shared by the mapping tracer analysis layers."""
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Iterator, List, Optional, Tuple


class NodeCategory(str, Enum):
    """Category of a node in the call hierarchy."""
    ROOT = "root"
    ENTRY_POINT = "entry_point"
    SERVICE = "service"
    DATA_ACCESS = "data_access"
    ACCESSOR_GET = "accessor_get"
    ACCESSOR_SET = "accessor_set"
    CONSTRUCTOR = "constructor"
    PLAIN = "plain"
    MAPPING = "mapping"


class RelationKind(str, Enum):
    """How two fields were paired."""
    DIRECT = "DIRECT"
    NESTED = "NESTED"


@dataclass(frozen=True, order=True)
class FieldRef:
    """A field identified by its declaring type, independent of any instance."""
    declaring_type: str
    name: str

    def __str__(self) -> str:
        return f"{self.declaring_type}.{self.name}"


@dataclass(frozen=True, order=True)
class MethodId:
    """A method keyed by owner, name and parameter types (overloads differ)."""
    owner: str
    name: str
    param_types: Tuple[str, ...] = ()

    @property
    def signature(self) -> str:
        return f"{self.owner}.{self.name}({', '.join(self.param_types)})"

    @property
    def simple_owner(self) -> str:
        return self.owner.rsplit('.', 1)[-1]

    def __str__(self) -> str:
        return self.signature


@dataclass(frozen=True, order=True)
class CodeLocation:
    """A 1-based line inside a source file."""
    file_path: str
    line: int

    @property
    def file_name(self) -> str:
        return self.file_path.replace('\\', '/').rsplit('/', 1)[-1]

    def __str__(self) -> str:
        return f"{self.file_name}:{self.line}"


@dataclass(frozen=True)
class MappingSite:
    """One detected transform call of the mapping framework."""
    declaring_method: MethodId
    source_type: str
    target_type: str
    location: CodeLocation

    def involves(self, type_name: str) -> bool:
        return type_name in (self.source_type, self.target_type)

    def counterpart(self, type_name: str) -> Optional[str]:
        """Return the type on the other side of the site.

        Args:
            type_name: Qualified name of one side

        Returns:
            The opposite side's type, or None if type_name is not part of the site
        """
        if type_name == self.source_type:
            return self.target_type
        if type_name == self.target_type:
            return self.source_type
        return None

    def sort_key(self) -> Tuple:
        return (self.location.file_path, self.location.line,
                self.declaring_method.signature, self.source_type, self.target_type)


@dataclass(frozen=True)
class MappingRelation:
    """Correspondence between same-named fields on two mapped types."""
    source_type: str
    source_field: str
    target_type: str
    target_field: str
    kind: RelationKind = RelationKind.DIRECT

    @property
    def source(self) -> FieldRef:
        return FieldRef(self.source_type, self.source_field)

    @property
    def target(self) -> FieldRef:
        return FieldRef(self.target_type, self.target_field)

    def sort_key(self) -> Tuple:
        return (self.kind.value, self.source_type, self.source_field,
                self.target_type, self.target_field)

    def __str__(self) -> str:
        return f"[{self.kind.value}] {self.source} -> {self.target}"


@dataclass(frozen=True)
class Reference:
    """A use of a declaration, located inside its enclosing method (if any)."""
    enclosing_method: Optional[MethodId]
    location: CodeLocation


@dataclass(frozen=True)
class CallNode:
    """Immutable node of a finished call hierarchy."""
    owner_type: str
    method_name: str
    param_signature: Tuple[str, ...]
    location: Optional[CodeLocation]
    category: NodeCategory
    children: Tuple['CallNode', ...] = field(default_factory=tuple)
    label: str = ""

    @property
    def key(self) -> Tuple[str, str, Tuple[str, ...]]:
        """Identity used for the no-repeat-on-path guarantee."""
        return (self.owner_type, self.method_name, self.param_signature)

    @property
    def is_leaf(self) -> bool:
        return not self.children

    def iter_nodes(self) -> Iterator['CallNode']:
        """Yield every node in pre-order without recursion."""
        stack = [self]
        while stack:
            node = stack.pop()
            yield node
            stack.extend(reversed(node.children))

    def paths(self) -> Iterator[Tuple['CallNode', ...]]:
        """Yield every root-to-leaf path."""
        stack: List[Tuple['CallNode', ...]] = [(self,)]
        while stack:
            path = stack.pop()
            tip = path[-1]
            if not tip.children:
                yield path
                continue
            for child in reversed(tip.children):
                stack.append(path + (child,))

    def height(self) -> int:
        """Number of edges on the longest root-to-leaf path."""
        return max(len(path) - 1 for path in self.paths())

    def find(self, method_name: str) -> List['CallNode']:
        return [node for node in self.iter_nodes() if node.method_name == method_name]

    def to_dict(self) -> Dict[str, Any]:
        """Serialize to plain JSON-compatible data."""
        return {
            'owner_type': self.owner_type,
            'method_name': self.method_name,
            'param_signature': list(self.param_signature),
            'location': str(self.location) if self.location else None,
            'category': self.category.value,
            'label': self.label,
            'children': [child.to_dict() for child in self.children],
        }
