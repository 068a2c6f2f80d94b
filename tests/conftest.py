"""Shared Java sources and index builders for the maptracer tests."""
from pathlib import Path

import pytest

from maptracer.analyzer.symbol_index import ProjectIndex

FIXTURES_DIR = Path(__file__).parent / 'fixtures'
ORDER_PROJECT = FIXTURES_DIR / 'order_project'


ORDER_SOURCES = {
    'com/shop/OrderDto.java': b"""
package com.shop;

public class OrderDto {
    private Long amount;
    private String customer;
}
""",
    'com/shop/OrderEntity.java': b"""
package com.shop;

public class OrderEntity {
    private Long id;
    private Long amount;
}
""",
    'com/shop/OrderService.java': b"""
package com.shop;

import ma.glasnost.orika.MapperFacade;

public class OrderService {
    private MapperFacade facade;

    public OrderEntity save(OrderDto dto) {
        OrderEntity entity = facade.map(dto, OrderEntity.class);
        return entity;
    }
}
""",
    'com/shop/OrderController.java': b"""
package com.shop;

@RestController
public class OrderController {
    private OrderService orderService;

    @PostMapping("/orders")
    public void create(OrderDto dto) {
        orderService.save(dto);
    }
}
""",
}


NESTED_SOURCES = {
    'com/crm/Addresses.java': b"""
package com.crm;

class AddressDto {
    String city;
    String zip;
}

class AddressEntity {
    String city;
    String street;
}
""",
    'com/crm/Customers.java': b"""
package com.crm;

class CustomerDto {
    String name;
    AddressDto address;
}

class CustomerEntity {
    String name;
    AddressEntity address;
}
""",
    'com/crm/CustomerService.java': b"""
package com.crm;

import ma.glasnost.orika.MapperFacade;

public class CustomerService {
    private MapperFacade facade;

    CustomerEntity convert(CustomerDto dto) {
        return facade.map(dto, CustomerEntity.class);
    }
}
""",
}


def build_index(sources: dict) -> ProjectIndex:
    """Index inline Java sources keyed by file path."""
    return ProjectIndex.from_sources(sources)


@pytest.fixture
def order_index():
    """Index of the OrderDto -> OrderEntity scenario."""
    return build_index(ORDER_SOURCES)
