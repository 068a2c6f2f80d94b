"""Tests for logging setup and console rendering."""
import io
import logging

import pytest
from rich.console import Console

from maptracer.analyzer.models import (
    CallNode, CodeLocation, MappingRelation, MappingSite, MethodId, NodeCategory, RelationKind,
)
from maptracer.utils.console import render_call_tree, render_relations, render_sites
from maptracer.utils.logger import PACKAGE_LOGGER, configure_logging, get_logger, sanitize_for_terminal


def _render(renderable) -> str:
    console = Console(file=io.StringIO(), width=200, color_system=None)
    console.print(renderable)
    return console.file.getvalue()


@pytest.fixture
def tree():
    create = CallNode('com.shop.OrderController', 'create', ('com.shop.OrderDto',),
                      CodeLocation('src/OrderController.java', 10), NodeCategory.ENTRY_POINT,
                      label="OrderController.create(OrderDto)")
    mapping = CallNode('com.shop.OrderService', 'map', ('com.shop.OrderDto', 'com.shop.OrderEntity'),
                       CodeLocation('src/OrderService.java', 12), NodeCategory.MAPPING,
                       children=(create,), label="OrderService.save: OrderDto → OrderEntity")
    return CallNode('com.shop.OrderDto', 'amount', (), None, NodeCategory.ROOT,
                    children=(mapping,), label="OrderDto.amount")


class TestLogging:

    def test_handler_is_not_duplicated(self):
        configure_logging("INFO")
        logger = configure_logging("DEBUG")
        marked = [h for h in logger.handlers if getattr(h, '_maptracer', False)]
        assert len(marked) == 1
        assert logger.level == logging.DEBUG
        configure_logging("WARNING")

    def test_unknown_level_rejected(self):
        with pytest.raises(ValueError):
            configure_logging("LOUD")

    def test_get_logger_namespaces_names(self):
        assert get_logger('analyzer').name == f"{PACKAGE_LOGGER}.analyzer"
        assert get_logger('maptracer.analyzer.engine').name == 'maptracer.analyzer.engine'

    def test_sanitize_replaces_glyphs(self):
        assert sanitize_for_terminal("A → B", force=True) == "A -> B"
        assert sanitize_for_terminal("plain", force=True) == "plain"


class TestRendering:

    def test_call_tree(self, tree):
        text = _render(render_call_tree(tree))
        assert "FIELD" in text and "OrderDto.amount" in text
        assert "MAP" in text and "OrderDto → OrderEntity" in text
        assert "ENTRY" in text and "OrderController.java:10" in text

    def test_call_tree_ascii(self, tree):
        text = _render(render_call_tree(tree, ascii_only=True))
        assert "OrderDto -> OrderEntity" in text

    def test_relations_table(self):
        relation = MappingRelation('com.a.Dto', 'x', 'com.a.Entity', 'x', RelationKind.NESTED)
        text = _render(render_relations([relation]))
        assert "nested" in text.lower()
        assert "com.a.Dto.x" in text and "com.a.Entity.x" in text

    def test_sites_table(self):
        site = MappingSite(MethodId('com.a.Service', 'save', ('com.a.Dto',)), 'com.a.Dto', 'com.a.Entity',
                           CodeLocation('src/Service.java', 7))
        text = _render(render_sites([site]))
        assert "com.a.Service.save(com.a.Dto)" in text
        assert "Service.java:7" in text
