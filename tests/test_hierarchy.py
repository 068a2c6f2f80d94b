"""Tests for the caller hierarchy builder."""
import pytest

from conftest import NESTED_SOURCES, ORDER_SOURCES, build_index
from maptracer.analyzer.caller_search import CallGraphStrategy
from maptracer.analyzer.errors import AnalysisCancelled
from maptracer.analyzer.hierarchy import CallHierarchyBuilder, method_label
from maptracer.analyzer.models import FieldRef, MethodId, NodeCategory
from maptracer.analyzer.run import AnalysisRun, AnalysisSettings, CancellationToken


def _build(index, seed, **settings):
    run = AnalysisRun(settings=AnalysisSettings(**settings))
    return CallHierarchyBuilder(index, run).build(seed)


def _names(path):
    return [node.method_name for node in path]


def _find_path(tree, names):
    for path in tree.paths():
        if _names(path) == names:
            return path
    return None


def _chain_source(length: int) -> bytes:
    calls = "\n".join(f"    void m{i}() {{ m{i - 1}(); }}" for i in range(1, length))
    return f"""
package p;

public class Chain {{
    private int value;

    void m0() {{ value = 1; }}
{calls}
}}
""".encode()


class TestMappingCrossing:

    def test_mapping_node_links_service_and_entry_point(self, order_index):
        tree = _build(order_index, FieldRef('com.shop.OrderDto', 'amount'))
        path = _find_path(tree, ['amount', 'map', 'save', 'create'])
        assert path is not None, [_names(p) for p in tree.paths()]
        assert [node.category for node in path] == [
            NodeCategory.ROOT, NodeCategory.MAPPING, NodeCategory.SERVICE, NodeCategory.ENTRY_POINT]

        mapping = path[1]
        assert mapping.key == ('com.shop.OrderService', 'map', ('com.shop.OrderDto', 'com.shop.OrderEntity'))
        assert mapping.label == "OrderService.save: OrderDto → OrderEntity"
        assert mapping.location.line == 10

    def test_root_carries_seed_identity(self, order_index):
        tree = _build(order_index, FieldRef('OrderDto', 'amount'))
        assert tree.key == ('com.shop.OrderDto', 'amount', ())
        assert tree.category == NodeCategory.ROOT
        assert tree.location.line == 5

    def test_virtual_accessors_are_synthesized(self, order_index):
        tree = _build(order_index, FieldRef('com.shop.OrderDto', 'amount'))
        accessors = {child.method_name: child for child in tree.children
                     if child.category in (NodeCategory.ACCESSOR_GET, NodeCategory.ACCESSOR_SET)}
        assert set(accessors) == {'getAmount', 'setAmount'}
        assert accessors['getAmount'].label == "OrderDto.getAmount() (virtual)"
        assert accessors['setAmount'].param_signature == ('Long',)
        assert accessors['setAmount'].is_leaf

    def test_far_side_accessors_hang_under_mapping_node(self, order_index):
        tree = _build(order_index, FieldRef('com.shop.OrderDto', 'amount'))
        mapping = tree.find('map')[0]
        far_side = [child for child in mapping.children if child.owner_type == 'com.shop.OrderEntity']
        assert {child.method_name for child in far_side} == {'getAmount', 'setAmount'}

    def test_mapping_site_inside_caller_is_spliced(self):
        sources = {path: ORDER_SOURCES[path] for path in ('com/shop/OrderDto.java', 'com/shop/OrderEntity.java')}
        sources['com/shop/Auditor.java'] = b"""
package com.shop;

import ma.glasnost.orika.MapperFacade;

public class Auditor {
    private MapperFacade facade;

    void audit(OrderDto dto) {
        dto.getAmount();
        facade.map(dto, OrderEntity.class);
    }
}
"""
        tree = _build(build_index(sources), FieldRef('com.shop.OrderDto', 'amount'))
        path = _find_path(tree, ['amount', 'getAmount', 'audit', 'map', 'getAmount'])
        assert path is not None, [_names(p) for p in tree.paths()]
        assert [node.category for node in path] == [
            NodeCategory.ROOT, NodeCategory.ACCESSOR_GET, NodeCategory.PLAIN,
            NodeCategory.MAPPING, NodeCategory.ACCESSOR_GET]
        assert path[-1].owner_type == 'com.shop.OrderEntity'

    def test_calls_through_interface_reach_implementation(self):
        index = build_index({
            'com/pay/Types.java': b"""
package com.pay;

class OrderDto { Long amount; }

class OrderEntity { Long amount; }
""",
            'com/pay/OrderPort.java': b"""
package com.pay;

import ma.glasnost.orika.MapperFacade;

interface OrderPort {
    void submit(OrderDto dto);
}

class OrderPortImpl implements OrderPort {
    private MapperFacade facade;

    public void submit(OrderDto dto) {
        facade.map(dto, OrderEntity.class);
    }
}
""",
            'com/pay/CheckoutController.java': b"""
package com.pay;

public class CheckoutController {
    private OrderPort port;

    public void checkout(OrderDto dto) {
        port.submit(dto);
    }
}
""",
        })
        tree = _build(index, FieldRef('com.pay.OrderDto', 'amount'))
        path = _find_path(tree, ['amount', 'map', 'submit', 'checkout'])
        assert path is not None, [_names(p) for p in tree.paths()]
        assert path[2].owner_type == 'com.pay.OrderPortImpl'
        assert path[3].category == NodeCategory.ENTRY_POINT

    def test_nested_site_continues_at_container_accessor(self):
        sources = dict(NESTED_SOURCES)
        sources['com/crm/CustomerRepository.java'] = b"""
package com.crm;

public class CustomerRepository {
    void store(CustomerEntity entity) {
        entity.getAddress();
    }
}
"""
        tree = _build(build_index(sources), FieldRef('com.crm.AddressDto', 'city'))
        path = _find_path(tree, ['city', 'map', 'getAddress', 'store'])
        assert path is not None, [_names(p) for p in tree.paths()]
        assert path[1].category == NodeCategory.MAPPING
        assert path[1].param_signature == ('com.crm.CustomerDto', 'com.crm.CustomerEntity')
        assert path[2].category == NodeCategory.ACCESSOR_GET
        assert path[2].label == "CustomerEntity.getAddress() (virtual)"
        assert path[3].owner_type == 'com.crm.CustomerRepository'

    def test_distinct_mapping_pairs_survive_site_limit(self):
        repeated = b"\n".join(b"        facade.map(dto, OrderEntity.class);" for _ in range(5))
        index = build_index({
            'p/Types.java': b"""
package p;

class OrderDto { Long amount; }

class OrderEntity { Long amount; }

class OrderVo { Long amount; }
""",
            'p/Svc.java': b"""
package p;

import ma.glasnost.orika.MapperFacade;

public class Svc {
    private MapperFacade facade;

    void a(OrderDto dto) {
""" + repeated + b"""
    }

    void b(OrderDto dto) { facade.map(dto, OrderVo.class); }
}
""",
        })
        tree = _build(index, FieldRef('p.OrderDto', 'amount'), mapping_site_limit=3)
        mappings = [child for child in tree.children if child.category == NodeCategory.MAPPING]
        assert len(mappings) == 3
        assert {node.param_signature[1] for node in mappings} == {'p.OrderEntity', 'p.OrderVo'}


class TestTraversalBounds:

    def test_depth_is_capped(self):
        index = build_index({'p/Chain.java': _chain_source(13)})
        assert _build(index, FieldRef('p.Chain', 'value'), max_depth=5).height() == 5
        assert _build(index, FieldRef('p.Chain', 'value'), max_depth=30).height() == 13

    def test_cycles_do_not_repeat_keys_on_a_path(self):
        index = build_index({'p/Loop.java': b"""
package p;

class Loop {
    int count;

    void a() { count++; b(); }

    void b() { a(); }
}
"""})
        tree = _build(index, FieldRef('p.Loop', 'count'))
        for path in tree.paths():
            keys = [node.key for node in path]
            assert len(keys) == len(set(keys))
        path = _find_path(tree, ['count', 'a', 'b'])
        assert path is not None and path[-1].is_leaf

    def test_entry_points_are_leaves(self, order_index):
        tree = _build(order_index, FieldRef('com.shop.OrderDto', 'amount'))
        entries = [n for n in tree.iter_nodes() if n.category == NodeCategory.ENTRY_POINT]
        assert entries
        assert all(node.is_leaf for node in entries)

    def test_each_call_line_gets_its_own_node(self):
        index = build_index({'p/Twice.java': b"""
package p;

class Twice {
    int total;

    void add() { total = total + 1; }

    void run() {
        add();
        add();
    }
}
"""})
        tree = _build(index, FieldRef('p.Twice', 'total'))
        add = tree.find('add')[0]
        assert [child.location.line for child in add.children] == [10, 11]

    def test_build_is_deterministic(self, order_index):
        seed = FieldRef('com.shop.OrderDto', 'amount')
        assert _build(order_index, seed) == _build(order_index, seed)

    def test_call_site_limit_counts_distinct_lines(self):
        index = build_index({'p/Sum.java': b"""
package p;

class Sum {
    int total;

    int getTotal() { return total; }
}

class Report {
    void print(Sum s) {
        int x = s.getTotal() + s.getTotal();
        s.getTotal();
    }
}
"""})
        tree = _build(index, FieldRef('p.Sum', 'total'), call_site_limit=2)
        getter = tree.find('getTotal')[0]
        assert [child.location.line for child in getter.children] == [12, 13]


class TestDegradedInput:

    def test_unknown_seed_returns_root_only(self, order_index):
        tree = _build(order_index, FieldRef('com.shop.Missing', 'amount'))
        assert tree.is_leaf
        assert tree.category == NodeCategory.ROOT
        assert _build(order_index, FieldRef('com.shop.OrderDto', 'nothing')).is_leaf

    def test_failing_branch_becomes_leaf(self, order_index):
        class ExplodingStrategy(CallGraphStrategy):
            def callers_of(self, index, method):
                if method.name == 'save':
                    raise RuntimeError("boom")
                return super().callers_of(index, method)

        builder = CallHierarchyBuilder(order_index, AnalysisRun(), strategy=ExplodingStrategy())
        tree = builder.build(FieldRef('com.shop.OrderDto', 'amount'))
        save = tree.find('save')[0]
        assert save.is_leaf
        assert {child.method_name for child in tree.children} >= {'map', 'getAmount', 'setAmount'}

    def test_cancelled_token_aborts(self, order_index):
        token = CancellationToken()
        token.cancel()
        builder = CallHierarchyBuilder(order_index, AnalysisRun(token=token))
        with pytest.raises(AnalysisCancelled):
            builder.build(FieldRef('com.shop.OrderDto', 'amount'))

    def test_failing_field_user_lookup_keeps_other_children(self, order_index, monkeypatch):
        find_references = order_index.find_references

        def failing(target):
            if isinstance(target, FieldRef):
                raise RuntimeError("boom")
            return find_references(target)

        monkeypatch.setattr(order_index, 'find_references', failing)
        tree = _build(order_index, FieldRef('com.shop.OrderDto', 'amount'))
        assert {child.method_name for child in tree.children} == {'map', 'getAmount', 'setAmount'}


class TestAccessorSynthesis:

    SOURCES = {'p/Flags.java': b"""
package p;

class Flags {
    boolean active;
    Boolean enabled;
}

class Reader {
    void read(Flags flags) {
        flags.isActive();
    }
}
"""}

    def test_primitive_boolean_uses_is_prefix(self):
        tree = _build(build_index(self.SOURCES), FieldRef('p.Flags', 'active'))
        assert {c.method_name for c in tree.children} == {'isActive', 'setActive'}

    def test_boxed_boolean_uses_get_prefix(self):
        tree = _build(build_index(self.SOURCES), FieldRef('p.Flags', 'enabled'))
        assert {c.method_name for c in tree.children} == {'getEnabled', 'setEnabled'}

    def test_calls_to_undeclared_accessor_are_found(self):
        tree = _build(build_index(self.SOURCES), FieldRef('p.Flags', 'active'))
        getter = tree.find('isActive')[0]
        assert [child.method_name for child in getter.children] == ['read']
        assert getter.children[0].location.line == 11


def test_method_label_uses_simple_names():
    method = MethodId('com.shop.OrderService', 'save', ('com.shop.OrderDto', 'int'))
    assert method_label(method) == "OrderService.save(OrderDto, int)"
