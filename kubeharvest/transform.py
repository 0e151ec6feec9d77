"""Transformations that expand mapping values into prefixed attributes."""

from __future__ import annotations

from collections.abc import Callable, Mapping
from typing import Any


def prefix_from_map_int(prefix: str) -> Callable[[Any], dict[str, int]]:
    """Return a transform that prefixes every key of a mapping of integers."""

    def transform(value: Any) -> dict[str, int]:
        if not isinstance(value, Mapping) or not all(
            isinstance(v, int) for v in value.values()
        ):
            raise TypeError("cannot make prefixes: value is not a mapping of integers")
        return {f"{prefix}{key}": v for key, v in value.items()}

    return transform


def one_metric_per_label(raw_labels: Any) -> dict[str, str]:
    """Turn a label mapping into one ``label.<name>`` metric per label."""
    if not isinstance(raw_labels, Mapping) or not all(
        isinstance(v, str) for v in raw_labels.values()
    ):
        raise TypeError("error on creating kubelet label metrics")
    return {f"label.{key}": value for key, value in raw_labels.items()}