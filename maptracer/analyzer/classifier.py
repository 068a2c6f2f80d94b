"""Rule-based categorization of methods in a call hierarchy."""
import re
from dataclasses import dataclass
from typing import Iterable, List, Sequence, Union

from maptracer.analyzer.models import MethodId, NodeCategory
from maptracer.analyzer.symbol_index import MethodDecl


@dataclass(frozen=True)
class CategoryRule:
    """A single classification rule."""
    pattern: str
    match_type: str  # 'owner_contains', 'owner_annotation_suffix', 'annotation_contains', 'name_regex', 'constructor'
    category: NodeCategory
    reason: str = ""


# First matching rule wins; table order is the priority order
DEFAULT_RULES: List[CategoryRule] = [
    CategoryRule('controller', 'owner_contains', NodeCategory.ENTRY_POINT, "Controller class"),
    CategoryRule('Controller', 'owner_annotation_suffix', NodeCategory.ENTRY_POINT, "@Controller / @RestController"),
    CategoryRule('Mapping', 'annotation_contains', NodeCategory.ENTRY_POINT, "Request mapping handler"),
    CategoryRule('Get', 'annotation_contains', NodeCategory.ENTRY_POINT, "HTTP GET handler"),
    CategoryRule('Post', 'annotation_contains', NodeCategory.ENTRY_POINT, "HTTP POST handler"),
    CategoryRule('Put', 'annotation_contains', NodeCategory.ENTRY_POINT, "HTTP PUT handler"),
    CategoryRule('Delete', 'annotation_contains', NodeCategory.ENTRY_POINT, "HTTP DELETE handler"),
    CategoryRule('repository', 'owner_contains', NodeCategory.DATA_ACCESS, "Repository class"),
    CategoryRule('dao', 'owner_contains', NodeCategory.DATA_ACCESS, "DAO class"),
    CategoryRule('service', 'owner_contains', NodeCategory.SERVICE, "Service class"),
    CategoryRule(r'^(get|is)[A-Z0-9_]', 'name_regex', NodeCategory.ACCESSOR_GET, "Getter naming"),
    CategoryRule(r'^set[A-Z0-9_]', 'name_regex', NodeCategory.ACCESSOR_SET, "Setter naming"),
    CategoryRule('<init>', 'constructor', NodeCategory.CONSTRUCTOR, "Constructor"),
]


class NodeClassifier:
    """Pure, first-match-wins method classifier.

    Never returns MAPPING or ROOT; those categories belong to nodes the
    hierarchy builder creates itself.
    """

    def __init__(self, extra_entry_patterns: Iterable[str] = (),
                 rules: Sequence[CategoryRule] = None):
        """Initialize classifier.

        Args:
            extra_entry_patterns: Additional owner-name substrings that mark entry points
            rules: Replacement rule table (defaults to DEFAULT_RULES)
        """
        extra = [CategoryRule(p.lower(), 'owner_contains', NodeCategory.ENTRY_POINT, "Configured entry point")
                 for p in extra_entry_patterns if p]
        base = list(rules if rules is not None else DEFAULT_RULES)
        # Configured entry patterns rank with the other entry-point rules
        split = next((i for i, r in enumerate(base) if r.category != NodeCategory.ENTRY_POINT), len(base))
        self.rules: List[CategoryRule] = base[:split] + extra + base[split:]
        self._regex = {r.pattern: re.compile(r.pattern) for r in self.rules if r.match_type == 'name_regex'}

    def _matches(self, rule: CategoryRule, owner: str, name: str,
                 annotations: Sequence[str], owner_annotations: Sequence[str],
                 is_constructor: bool) -> bool:
        if rule.match_type == 'owner_contains':
            return rule.pattern in owner.lower()
        if rule.match_type == 'owner_annotation_suffix':
            return any(a.endswith(rule.pattern) for a in owner_annotations)
        if rule.match_type == 'annotation_contains':
            return any(rule.pattern in a for a in annotations)
        if rule.match_type == 'name_regex':
            return bool(self._regex[rule.pattern].match(name))
        if rule.match_type == 'constructor':
            return is_constructor or name == rule.pattern
        return False

    def match(self, method: Union[MethodDecl, MethodId]) -> CategoryRule | None:
        """Return the first rule matching the method, or None."""
        if isinstance(method, MethodDecl):
            method_id = method.id
            annotations, owner_annotations = method.annotations, method.owner_annotations
            is_constructor = method.is_constructor
        else:
            method_id = method
            annotations, owner_annotations = (), ()
            is_constructor = method.name == '<init>'

        owner = method_id.simple_owner
        for rule in self.rules:
            if self._matches(rule, owner, method_id.name, annotations, owner_annotations, is_constructor):
                return rule
        return None

    def classify(self, method: Union[MethodDecl, MethodId]) -> NodeCategory:
        """Categorize a method.

        Args:
            method: Declaration (annotations considered) or bare MethodId

        Returns:
            NodeCategory, PLAIN when no rule matches
        """
        rule = self.match(method)
        return rule.category if rule is not None else NodeCategory.PLAIN

    @staticmethod
    def is_terminal(category: NodeCategory) -> bool:
        return category == NodeCategory.ENTRY_POINT
