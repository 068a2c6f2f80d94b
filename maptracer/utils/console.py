"""Rich console output for analysis results."""
from typing import Any, Iterable, List, Tuple

from rich.console import Console
from rich.markup import escape
from rich.table import Table
from rich.tree import Tree

from maptracer.analyzer.models import CallNode, MappingRelation, MappingSite, NodeCategory
from maptracer.utils.logger import is_utf8_capable, sanitize_for_terminal

CATEGORY_STYLES = {
    NodeCategory.ROOT: ("bold white", "FIELD"),
    NodeCategory.ENTRY_POINT: ("bold green", "ENTRY"),
    NodeCategory.SERVICE: ("cyan", "SERVICE"),
    NodeCategory.DATA_ACCESS: ("magenta", "DATA"),
    NodeCategory.ACCESSOR_GET: ("blue", "GET"),
    NodeCategory.ACCESSOR_SET: ("blue", "SET"),
    NodeCategory.CONSTRUCTOR: ("yellow", "NEW"),
    NodeCategory.PLAIN: ("white", "CALL"),
    NodeCategory.MAPPING: ("bold yellow", "MAP"),
}


class SafeConsole(Console):
    """Console that sanitizes Unicode glyphs on terminals without UTF-8."""

    def __init__(self, *args, **kwargs):
        self._needs_sanitization = not is_utf8_capable()
        if self._needs_sanitization:
            kwargs.setdefault('legacy_windows', True)
        super().__init__(*args, **kwargs)

    @property
    def needs_sanitization(self) -> bool:
        return self._needs_sanitization

    def print(self, *objects: Any, **kwargs) -> None:
        """Print with automatic Unicode sanitization of plain strings."""
        if self._needs_sanitization:
            objects = tuple(sanitize_for_terminal(obj, force=True) if isinstance(obj, str) else obj
                            for obj in objects)
        super().print(*objects, **kwargs)

    def status(self, *args, **kwargs):
        """Status spinner, ASCII-only on terminals without UTF-8."""
        if self._needs_sanitization:
            kwargs['spinner'] = 'line'
        return super().status(*args, **kwargs)


def _node_text(node: CallNode, ascii_only: bool) -> str:
    style, tag = CATEGORY_STYLES[node.category]
    label = sanitize_for_terminal(node.label, force=True) if ascii_only else node.label
    text = f"[{style}]{tag:<7}[/{style}] {escape(label)}"
    if node.location is not None:
        text += f" [dim]{escape(str(node.location))}[/dim]"
    return text


def render_call_tree(root: CallNode, ascii_only: bool = False) -> Tree:
    """Convert a CallNode tree into a rich Tree.

    Args:
        root: Hierarchy root
        ascii_only: Replace Unicode glyphs in labels

    Returns:
        rich.tree.Tree ready to print
    """
    tree = Tree(_node_text(root, ascii_only), guide_style="dim")
    stack: List[Tuple[CallNode, Tree]] = [(root, tree)]
    while stack:
        node, branch = stack.pop()
        pending = []
        for child in node.children:
            pending.append((child, branch.add(_node_text(child, ascii_only))))
        stack.extend(reversed(pending))
    return tree


def render_relations(relations: Iterable[MappingRelation], title: str = "Mapping Relations") -> Table:
    """Table of relations sorted by kind, source and target."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Kind", style="yellow")
    table.add_column("Source", style="cyan")
    table.add_column("Target", style="green")
    for relation in sorted(relations, key=MappingRelation.sort_key):
        table.add_row(relation.kind.value, escape(str(relation.source)), escape(str(relation.target)))
    return table


def render_sites(sites: Iterable[MappingSite], title: str = "Mapping Sites") -> Table:
    """Table of mapping sites in the given order."""
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Method", style="cyan")
    table.add_column("Source", style="yellow")
    table.add_column("Target", style="green")
    table.add_column("Location", style="dim")
    for site in sites:
        table.add_row(
            escape(site.declaring_method.signature),
            escape(site.source_type),
            escape(site.target_type),
            escape(str(site.location)),
        )
    return table
