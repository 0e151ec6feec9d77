"""Grouping of kubelet data: pods, cAdvisor, stats summary and node information."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from kubeharvest.cadvisor import ErrorGroup
from kubeharvest.quantity import Quantity
from kubeharvest.stats import StatsError, get_metrics_data, group_stats_summary

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]
FetchFunc = Callable[[], RawGroups]
NodeGetter = Callable[[str], Mapping]

_CONDITION_VALUES = {"True": 1, "False": 0, "Unknown": -1}


def fill_groups_and_merge_non_existent(destination: RawGroups, source: Mapping) -> None:
    """Merge ``source`` into ``destination`` without overwriting anything.

    Groups missing from ``destination`` are taken whole. For groups present in
    both, only entities already in ``destination`` receive the metrics they lack.
    """
    for label, group in source.items():
        if label not in destination:
            destination[label] = group
            continue
        for entity_id, entity in destination[label].items():
            incoming = group.get(entity_id)
            if incoming is None:
                continue
            for key, value in incoming.items():
                entity.setdefault(key, value)


def _resource_list(raw: Mapping | None) -> dict[str, Quantity]:
    return {
        name: amount if isinstance(amount, Quantity) else Quantity.parse(str(amount))
        for name, amount in (raw or {}).items()
    }


def _node_conditions(conditions: Iterable[Mapping]) -> dict[str, int]:
    result: dict[str, int] = {}
    for condition in conditions:
        value = _CONDITION_VALUES.get(condition.get("status"))
        if value is None:
            # Not allowed by the API; skipped if it ever shows up.
            continue
        kind = str(condition.get("type", ""))
        # Duplicated conditions that disagree are reported as unknown.
        if kind in result and result[kind] != value:
            value = -1
        result[kind] = value
    return result


class KubeletGrouper:
    """Builds raw groups from kubelet fetchers, the stats summary and the node object."""

    def __init__(
        self,
        node_getter: NodeGetter | None,
        client: Any,
        fetchers: Iterable[FetchFunc] = (),
        default_network_interface: str = "",
        logger: logging.Logger | None = None,
    ) -> None:
        if node_getter is None:
            raise ValueError("NodeGetter must be set")
        self._node_getter = node_getter
        self._client = client
        self._fetchers = list(fetchers)
        self._default_network_interface = default_network_interface
        self._logger = logger or logging.getLogger(__name__)

    def group(self, spec_groups: Any = None) -> RawGroups:
        """Fetch and merge all kubelet data; raise :class:`ErrorGroup` on failure."""
        raw_groups: RawGroups = {
            "network": {"interfaces": {"default": self._default_network_interface}},
        }

        for fetch in self._fetchers:
            try:
                fetched = fetch()
            except ErrorGroup as err:
                self._logger.debug("Recoverable errors while fetching kubelet data: %s", err)
                fetched = err.groups or {}
            except Exception as err:
                raise ErrorGroup([RuntimeError(f"error querying Kubelet. {err}")]) from err
            fill_groups_and_merge_non_existent(raw_groups, fetched)

        try:
            summary = get_metrics_data(self._client)
        except StatsError as err:
            raise ErrorGroup([RuntimeError(f"error querying Kubelet. {err}")]) from err

        resources, errors = group_stats_summary(summary)
        if errors:
            raise ErrorGroup(errors, recoverable=True)
        fill_groups_and_merge_non_existent(raw_groups, resources or {})

        node_name = (summary.get("node") or {}).get("nodeName", "")
        try:
            node = self._node_getter(node_name)
        except Exception as err:
            raise ErrorGroup([RuntimeError(f"error querying ApiServer: {err}")]) from err

        requested_memory = 0
        requested_cpu = 0
        for container in raw_groups.get("container", {}).values():
            requested_memory += container.get("memoryRequestedBytes", 0)
            requested_cpu += container.get("cpuRequestedCores", 0)

        metadata = node.get("metadata") or {}
        spec = node.get("spec") or {}
        status = node.get("status") or {}

        node_group: RawGroups = {
            "node": {
                node_name: {
                    "labels": dict(metadata.get("labels") or {}),
                    "allocatable": _resource_list(status.get("allocatable")),
                    "capacity": _resource_list(status.get("capacity")),
                    "memoryRequestedBytes": requested_memory,
                    "cpuRequestedCores": requested_cpu,
                    "conditions": _node_conditions(status.get("conditions") or []),
                    "unschedulable": bool(spec.get("unschedulable", False)),
                    "kubeletVersion": (status.get("nodeInfo") or {}).get("kubeletVersion", ""),
                }
            }
        }
        fill_groups_and_merge_non_existent(raw_groups, node_group)
        return raw_groups