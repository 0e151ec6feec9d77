"""Fetching and grouping of the kubelet ``/stats/summary`` payload."""

from __future__ import annotations

import json
from collections.abc import Callable, Mapping
from typing import Any

STATS_SUMMARY_PATH = "/stats/summary"

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]
EntityIDGenerator = Callable[[str, str, Mapping], str]

_CPU_FIELDS = (
    ("usageNanoCores", "usageNanoCores"),
    ("usageCoreNanoSeconds", "usageCoreNanoSeconds"),
)
_NODE_MEMORY_FIELDS = (
    ("memoryUsageBytes", "usageBytes"),
    ("memoryAvailableBytes", "availableBytes"),
    ("memoryWorkingSetBytes", "workingSetBytes"),
    ("memoryRssBytes", "rssBytes"),
    ("memoryPageFaults", "pageFaults"),
    ("memoryMajorPageFaults", "majorPageFaults"),
)
_CONTAINER_MEMORY_FIELDS = (
    ("usageBytes", "usageBytes"),
    ("workingSetBytes", "workingSetBytes"),
)
_FS_FIELDS = (
    ("AvailableBytes", "availableBytes"),
    ("CapacityBytes", "capacityBytes"),
    ("UsedBytes", "usedBytes"),
    ("InodesFree", "inodesFree"),
    ("Inodes", "inodes"),
    ("InodesUsed", "inodesUsed"),
)


class StatsError(Exception):
    """Raised when kubelet statistics cannot be fetched or interpreted."""


def add_uint64_raw_metric(raw: RawMetrics, name: str, value: int | None) -> None:
    """Store ``value`` under ``name`` unless it is missing."""
    if value is not None:
        raw[name] = value


def get_metrics_data(client: Any) -> dict[str, Any]:
    """Request ``/stats/summary`` from the kubelet and decode the JSON summary."""
    try:
        response = client.get(STATS_SUMMARY_PATH)
    except OSError as err:
        raise StatsError(
            f'performing GET request to kubelet endpoint "{STATS_SUMMARY_PATH}": {err}'
        ) from err

    if response.status_code != 200:
        raise StatsError(
            f"received non-OK response code from kubelet: {response.status_code}: "
            f"response body: {response.text}"
        )

    try:
        summary = json.loads(response.text)
    except ValueError as err:
        raise StatsError(
            f"unmarshaling the response body into kubelet stats Summary: {err}"
        ) from err
    if not isinstance(summary, dict):
        raise StatsError(
            "unmarshaling the response body into kubelet stats Summary: not a JSON object"
        )
    return summary


def _empty_identifier(what: str) -> StatsError:
    return StatsError(
        f"empty {what} identifier, possible data error in {STATS_SUMMARY_PATH} response"
    )


def _add_fields(raw: RawMetrics, source: Mapping, fields) -> None:
    for name, key in fields:
        add_uint64_raw_metric(raw, name, source.get(key))


def _add_fs(raw: RawMetrics, fs: Mapping, prefix: str) -> None:
    _add_fields(raw, fs, ((prefix + suffix, key) for suffix, key in _FS_FIELDS))


def _interface_metrics(stats: Mapping) -> RawMetrics:
    metrics: RawMetrics = {}
    add_uint64_raw_metric(metrics, "rxBytes", stats.get("rxBytes"))
    add_uint64_raw_metric(metrics, "txBytes", stats.get("txBytes"))
    rx_errors, tx_errors = stats.get("rxErrors"), stats.get("txErrors")
    if rx_errors is not None and tx_errors is not None:
        metrics["errors"] = rx_errors + tx_errors
    return metrics


def _add_network(raw: RawMetrics, network: Mapping) -> None:
    raw.update(_interface_metrics(network))
    raw["interfaces"] = {
        interface.get("name", ""): _interface_metrics(interface)
        for interface in network.get("interfaces") or []
    }


def _node_stats(node: Mapping) -> tuple[RawMetrics, str]:
    node_name = node.get("nodeName") or ""
    if not node_name:
        raise _empty_identifier("node")

    raw: RawMetrics = {"nodeName": node_name}
    if (cpu := node.get("cpu")) is not None:
        _add_fields(raw, cpu, _CPU_FIELDS)
    if (memory := node.get("memory")) is not None:
        _add_fields(raw, memory, _NODE_MEMORY_FIELDS)
    if (network := node.get("network")) is not None:
        _add_network(raw, network)
    if (fs := node.get("fs")) is not None:
        _add_fs(raw, fs, "fs")
    runtime = node.get("runtime")
    if runtime is not None and (image_fs := runtime.get("imageFs")) is not None:
        _add_fs(raw, image_fs, "runtime")
    return raw, node_name


def _pod_stats(pod: Mapping) -> tuple[RawMetrics, str]:
    ref = pod.get("podRef") or {}
    name, namespace = ref.get("name") or "", ref.get("namespace") or ""
    if not name or not namespace:
        raise _empty_identifier("pod")

    raw: RawMetrics = {"podName": name, "namespace": namespace}
    if (network := pod.get("network")) is not None:
        _add_network(raw, network)
    return raw, f"{namespace}_{name}"


def _container_stats(container: Mapping) -> RawMetrics:
    name = container.get("name") or ""
    if not name:
        raise _empty_identifier("container")

    raw: RawMetrics = {"containerName": name}
    if (cpu := container.get("cpu")) is not None:
        add_uint64_raw_metric(raw, "usageNanoCores", cpu.get("usageNanoCores"))
    if (memory := container.get("memory")) is not None:
        _add_fields(raw, memory, _CONTAINER_MEMORY_FIELDS)
    if (rootfs := container.get("rootfs")) is not None:
        _add_fs(raw, rootfs, "fs")
    return raw


def _volume_stats(volume: Mapping) -> RawMetrics:
    name = volume.get("name") or ""
    if not name:
        raise _empty_identifier("volume")

    raw: RawMetrics = {"volumeName": name}
    if (pvc_ref := volume.get("pvcRef")) is not None:
        raw["pvcName"] = pvc_ref.get("name", "")
        raw["pvcNamespace"] = pvc_ref.get("namespace", "")
    _add_fs(raw, volume, "fs")
    return raw


def group_stats_summary(
    summary: Mapping | None,
) -> tuple[RawGroups | None, list[StatsError]]:
    """Group a stats summary into pod, container, volume and node metrics.

    Returns the groups together with the errors met on the way; entities
    with errors are left out.
    """
    if summary is None:
        return None, [StatsError("got nil stats summary")]

    errors: list[StatsError] = []
    groups: RawGroups = {"pod": {}, "container": {}, "volume": {}, "node": {}}

    try:
        node_metrics, node_name = _node_stats(summary.get("node") or {})
    except StatsError as err:
        errors.append(err)
    else:
        groups["node"][node_name] = node_metrics

    pods = summary.get("pods")
    if pods is None:
        errors.append(
            StatsError(
                f"pods data not found, possible data error in {STATS_SUMMARY_PATH} response"
            )
        )
        return groups, errors

    for pod in pods:
        try:
            pod_metrics, pod_id = _pod_stats(pod)
        except StatsError as err:
            errors.append(err)
            continue
        groups["pod"][pod_id] = pod_metrics
        owner = {"podName": pod_metrics["podName"], "namespace": pod_metrics["namespace"]}

        for volume in pod.get("volume") or []:
            try:
                volume_metrics = _volume_stats(volume)
            except StatsError as err:
                errors.append(err)
                continue
            volume_metrics.update(owner)
            groups["volume"][f"{pod_id}_{volume_metrics['volumeName']}"] = volume_metrics

        for container in pod.get("containers") or []:
            try:
                container_metrics = _container_stats(container)
            except StatsError as err:
                errors.append(err)
                continue
            container_metrics.update(owner)
            groups["container"][
                f"{pod_id}_{container_metrics['containerName']}"
            ] = container_metrics

    return groups, errors


def from_raw_groups_entity_id_generator(key: str) -> EntityIDGenerator:
    """Return a generator taking the entity ID from the string metric ``key``."""

    def generate(group_label: str, raw_entity_id: str, groups: Mapping) -> str:
        entity = groups.get(group_label, {}).get(raw_entity_id, {})
        if key not in entity:
            raise StatsError(f'"{key}" not found for "{group_label}"')
        value = entity[key]
        if not isinstance(value, str):
            raise StatsError(f'incorrect type of "{key}" for "{group_label}"')
        return value

    return generate


def from_raw_entity_id_group_entity_id_generator(key: str) -> EntityIDGenerator:
    """Return a generator that strips the ``<metric key>_`` prefix from the raw ID."""

    def generate(group_label: str, raw_entity_id: str, groups: Mapping) -> str:
        entity = groups.get(group_label, {}).get(raw_entity_id, {})
        if key not in entity:
            raise StatsError(f'"{key}" not found for "{group_label}"')
        entity_id = raw_entity_id.removeprefix(f"{entity[key]}_")
        if not entity_id:
            raise StatsError("generated entity ID is empty")
        return entity_id

    return generate


def _string_values(
    group_label: str, raw_entity_id: str, groups: Mapping, *keys: str
) -> list[str]:
    if group_label not in groups:
        raise StatsError(f'"{group_label}" not found')
    entities = groups[group_label]
    if raw_entity_id not in entities:
        raise StatsError(f'entity data "{raw_entity_id}" not found for "{group_label}"')
    entity = entities[raw_entity_id]

    values = []
    for key in keys:
        if key not in entity:
            raise StatsError(f'"{key}" not found for "{group_label}"')
        value = entity[key]
        if not isinstance(value, str):
            raise StatsError(f'incorrect type of "{key}" for "{group_label}"')
        values.append(value)
    return values


def from_raw_groups_entity_type_generator(
    group_label: str, raw_entity_id: str, groups: Mapping, cluster_name: str
) -> str:
    """Build the entity type from cluster, namespace and, for containers, pod name."""
    match group_label:
        case "namespace" | "node":
            return f"k8s:{cluster_name}:{group_label}"
        case "container":
            namespace, pod_name = _string_values(
                group_label, raw_entity_id, groups, "namespace", "podName"
            )
            if not namespace or not pod_name:
                raise StatsError(f'empty values for generated entity type for "{group_label}"')
            return f"k8s:{cluster_name}:{namespace}:{pod_name}:{group_label}"
        case _:
            (namespace,) = _string_values(group_label, raw_entity_id, groups, "namespace")
            if not namespace:
                raise StatsError(f'empty namespace for generated entity type for "{group_label}"')
            return f"k8s:{cluster_name}:{namespace}:{group_label}"


def from_label_get_namespace(metrics: Mapping) -> str:
    """Return the string ``namespace`` metric, or an empty string."""
    namespace = metrics.get("namespace")
    return namespace if isinstance(namespace, str) else ""