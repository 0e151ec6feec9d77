"""Expansion of node resource lists into one attribute per resource."""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any

from kubeharvest.quantity import Quantity, camelcase

ALLOCATABLE = "allocatable"
CAPACITY = "capacity"

_RESOURCE_UNITS = {
    "ephemeral-storage": "Bytes",
    "memory": "Bytes",
    "cpu": "Cores",
    "storage": "Bytes",
}


def add_resource_unit(resource: str) -> str:
    """Append the unit of a well-known resource to its name."""
    return resource + _RESOURCE_UNITS.get(resource, "")


def _one_attribute_per_resource(raw_resources: Any, resource_type: str) -> dict[str, Any]:
    if not isinstance(raw_resources, Mapping) or not all(
        isinstance(quantity, Quantity) for quantity in raw_resources.values()
    ):
        raise TypeError(f"creating resource {resource_type} attributes")

    attributes: dict[str, Any] = {}
    for name, quantity in raw_resources.items():
        with_unit = add_resource_unit(name)
        attribute = camelcase(resource_type + with_unit[:1].upper() + with_unit[1:])
        if name == "cpu":
            # CPU is reported in cores, so keep the fraction instead of rounding up.
            attributes[attribute] = quantity.as_approximate_float()
        else:
            attributes[attribute] = quantity.value()
    return attributes


def one_attribute_per_allocatable(raw_resources: Any) -> dict[str, Any]:
    """Turn a resource list into ``allocatable*`` attributes."""
    return _one_attribute_per_resource(raw_resources, ALLOCATABLE)


def one_attribute_per_capacity(raw_resources: Any) -> dict[str, Any]:
    """Turn a resource list into ``capacity*`` attributes."""
    return _one_attribute_per_resource(raw_resources, CAPACITY)