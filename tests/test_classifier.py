"""Tests for hierarchy node classification."""
import pytest

from conftest import build_index
from maptracer.analyzer.classifier import CategoryRule, NodeClassifier
from maptracer.analyzer.models import MethodId, NodeCategory


@pytest.fixture
def classifier():
    return NodeClassifier()


@pytest.mark.parametrize('owner,name,expected', [
    ('com.shop.web.OrderController', 'create', NodeCategory.ENTRY_POINT),
    ('com.shop.OrderRepository', 'persist', NodeCategory.DATA_ACCESS),
    ('com.shop.OrderDao', 'insert', NodeCategory.DATA_ACCESS),
    ('com.shop.OrderService', 'save', NodeCategory.SERVICE),
    ('com.shop.OrderDto', 'getAmount', NodeCategory.ACCESSOR_GET),
    ('com.shop.OrderDto', 'isExpress', NodeCategory.ACCESSOR_GET),
    ('com.shop.OrderDto', 'setAmount', NodeCategory.ACCESSOR_SET),
    ('com.shop.OrderDto', '<init>', NodeCategory.CONSTRUCTOR),
    ('com.shop.OrderDto', 'validate', NodeCategory.PLAIN),
])
def test_classify_method_ids(classifier, owner, name, expected):
    assert classifier.classify(MethodId(owner, name)) == expected


@pytest.mark.parametrize('name', ['get', 'getter', 'issue', 'settle', 'setup'])
def test_accessor_prefix_needs_capital_after_it(classifier, name):
    assert classifier.classify(MethodId('a.Plain', name)) == NodeCategory.PLAIN


def test_first_matching_rule_wins(classifier):
    # Service getters are still services
    assert classifier.classify(MethodId('a.PriceService', 'getPrice')) == NodeCategory.SERVICE
    # Controllers win over repositories
    assert classifier.classify(MethodId('a.RepositoryController', 'list')) == NodeCategory.ENTRY_POINT


def test_package_name_is_ignored(classifier):
    assert classifier.classify(MethodId('com.service.Helper', 'run')) == NodeCategory.PLAIN


def test_annotations_mark_entry_points(classifier):
    index = build_index({'a/Handler.java': b"""
package a;

@RestController
public class Api {
    public void handle() { }
}

class Jobs {
    @GetMapping("/jobs")
    public void list() { }

    @Override
    public String toString() { return ""; }
}
"""})
    assert classifier.classify(index.method(MethodId('a.Api', 'handle'))) == NodeCategory.ENTRY_POINT
    assert classifier.classify(index.method(MethodId('a.Jobs', 'list'))) == NodeCategory.ENTRY_POINT
    assert classifier.classify(index.method(MethodId('a.Jobs', 'toString'))) == NodeCategory.PLAIN


def test_constructor_declaration_is_classified(classifier):
    index = build_index({'a/Thing.java': b"package a; class Thing { Thing(int x) { } }"})
    decl = index.method(MethodId('a.Thing', '<init>', ('int',)))
    assert classifier.classify(decl) == NodeCategory.CONSTRUCTOR


def test_extra_entry_patterns_rank_with_entry_rules():
    classifier = NodeClassifier(extra_entry_patterns=['Listener'])
    assert classifier.classify(MethodId('a.OrderListener', 'onEvent')) == NodeCategory.ENTRY_POINT
    assert classifier.classify(MethodId('a.ListenerService', 'run')) == NodeCategory.ENTRY_POINT
    assert classifier.match(MethodId('a.OrderListener', 'onEvent')).reason == "Configured entry point"


def test_never_produces_mapping_or_root(classifier):
    names = ['map', 'mapAsList', 'convert', 'getAmount', '<init>', 'run']
    owners = ['a.OrderMapper', 'a.MappingService', 'a.Root', 'a.Controller']
    categories = {classifier.classify(MethodId(o, n)) for o in owners for n in names}
    assert NodeCategory.MAPPING not in categories
    assert NodeCategory.ROOT not in categories


def test_custom_rule_table():
    rules = [CategoryRule('batch', 'owner_contains', NodeCategory.ENTRY_POINT, "Batch job")]
    classifier = NodeClassifier(rules=rules)
    assert classifier.classify(MethodId('a.NightlyBatch', 'run')) == NodeCategory.ENTRY_POINT
    assert classifier.classify(MethodId('a.OrderService', 'save')) == NodeCategory.PLAIN


def test_only_entry_points_are_terminal():
    assert NodeClassifier.is_terminal(NodeCategory.ENTRY_POINT)
    assert not any(NodeClassifier.is_terminal(c) for c in NodeCategory if c != NodeCategory.ENTRY_POINT)
