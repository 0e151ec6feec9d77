"""Fetching of the pods running on a node from the kubelet ``/pods`` endpoint."""

from __future__ import annotations

import json
import logging
import re
from collections.abc import Mapping
from datetime import datetime, timedelta, timezone
from typing import Any

from kubeharvest.quantity import Quantity

KUBELET_PODS_PATH = "/pods"

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]

_TIMESTAMP = re.compile(
    r"(?P<base>\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2})"
    r"(?:\.(?P<fraction>\d+))?"
    r"(?P<zone>Z|z|[+-]\d{2}:\d{2})"
)

_WORKLOAD_ATTRIBUTES = {
    "DaemonSet": "daemonsetName",
    "Deployment": "deploymentName",
    "Job": "jobName",
    "ReplicaSet": "replicasetName",
    "StatefulSet": "statefulsetName",
}

_CONDITION_TIMESTAMPS = {
    "Initialized": "initializedAt",
    "Ready": "readyAt",
    "ContainersReady": "containersReadyAt",
    "PodScheduled": "scheduledAt",
}

_CONDITION_FLAGS = {
    "Ready": "isReady",
    "PodScheduled": "isScheduled",
}


class PodsFetchError(Exception):
    """Raised when the list of pods cannot be read from the kubelet."""


def replicaset_name_to_deployment_name(rs_name: str) -> str:
    """Strip the trailing hash segment from a ReplicaSet name."""
    return "-".join(rs_name.split("-")[:-1])


def _parse_time(raw: Any) -> datetime | None:
    """Parse an RFC 3339 timestamp into an aware UTC datetime; None when absent."""
    if not raw:
        return None
    match = _TIMESTAMP.fullmatch(raw)
    if match is None:
        raise PodsFetchError(f"invalid timestamp {raw!r}")
    parsed = datetime.fromisoformat(match["base"]).replace(tzinfo=timezone.utc)
    fraction = match["fraction"]
    if fraction:
        parsed += timedelta(microseconds=int(fraction[:6].ljust(6, "0")))
    zone = match["zone"]
    if zone not in ("Z", "z"):
        sign = 1 if zone[0] == "+" else -1
        hours, minutes = int(zone[1:3]), int(zone[4:6])
        parsed -= sign * timedelta(hours=hours, minutes=minutes)
    return parsed


def _metadata(pod: Mapping) -> Mapping:
    return pod.get("metadata") or {}


def _pod_id(pod: Mapping) -> str:
    meta = _metadata(pod)
    return f"{meta.get('namespace', '')}_{meta.get('name', '')}"


def _container_id(pod: Mapping, container_name: str) -> str:
    return f"{_pod_id(pod)}_{container_name}"


def _pod_labels(pod: Mapping) -> dict[str, str]:
    return dict(_metadata(pod).get("labels") or {})


def _owner(pod: Mapping) -> tuple[str, str] | None:
    refs = _metadata(pod).get("ownerReferences") or []
    if not refs:
        return None
    return refs[0].get("kind", ""), refs[0].get("name", "")


def _add_workload_name(creator_kind: str, creator_name: str, metrics: RawMetrics) -> None:
    attribute = _WORKLOAD_ATTRIBUTES.get(creator_kind)
    if attribute is None:
        return
    metrics[attribute] = creator_name
    if creator_kind == "ReplicaSet":
        deployment = replicaset_name_to_deployment_name(creator_name)
        if deployment:
            metrics["deploymentName"] = deployment


def _is_fake_pending_pod(status: Mapping) -> bool:
    """Pods created before the API server was up are wrongly reported as Pending."""
    conditions = status.get("conditions") or []
    return (
        status.get("phase") == "Pending"
        and len(conditions) == 1
        and conditions[0].get("type") == "PodScheduled"
        and conditions[0].get("status") == "True"
    )


def _container_statuses(pod: Mapping) -> dict[str, RawMetrics]:
    statuses: dict[str, RawMetrics] = {}
    for status in (pod.get("status") or {}).get("containerStatuses") or []:
        state = status.get("state") or {}
        restart_count = status.get("restartCount", 0)
        metrics: RawMetrics
        if state.get("running") is not None:
            metrics = {
                "status": "Running",
                "startedAt": _parse_time(state["running"].get("startedAt")),
                "restartCount": restart_count,
                "isReady": bool(status.get("ready", False)),
            }
        elif state.get("waiting") is not None:
            metrics = {
                "status": "Waiting",
                "reason": state["waiting"].get("reason", ""),
                "restartCount": restart_count,
            }
        elif state.get("terminated") is not None:
            terminated = state["terminated"]
            metrics = {
                "status": "Terminated",
                "reason": terminated.get("reason", ""),
                "restartCount": restart_count,
                "startedAt": _parse_time(terminated.get("startedAt")),
            }
        else:
            metrics = {"status": "Unknown"}
        statuses[_container_id(pod, status.get("name", ""))] = metrics
    return statuses


class PodsFetcher:
    """Queries the kubelet for the pods running on its node."""

    def __init__(self, client: Any, logger: logging.Logger | None = None) -> None:
        self._client = client
        self._logger = logger or logging.getLogger(__name__)

    def fetch(self) -> RawGroups:
        """Return pod and container metrics grouped by raw entity ID."""
        self._logger.debug("Retrieving the list of pods")
        response = self._client.get(KUBELET_PODS_PATH)

        if response.status_code != 200:
            raise PodsFetchError(
                f"error calling kubelet {KUBELET_PODS_PATH} path. "
                f"Status code {response.status_code}"
            )

        body = response.content
        if not body:
            raise PodsFetchError(
                f"error reading response from kubelet {KUBELET_PODS_PATH} path. "
                "Response is empty"
            )

        try:
            pod_list = json.loads(body)
        except ValueError as err:
            raise PodsFetchError(
                f"error decoding response from kubelet {KUBELET_PODS_PATH} path. {err}"
            ) from err
        if not isinstance(pod_list, dict):
            raise PodsFetchError(
                f"error decoding response from kubelet {KUBELET_PODS_PATH} path. "
                "not a JSON object"
            )

        raw: RawGroups = {"pod": {}, "container": {}}

        # A pod may miss its host IP because of a kubelet bug with pending pods;
        # any other pod on the same node carries it.
        node_ip = ""
        missing_pod_ids: list[str] = []
        missing_container_ids: list[str] = []

        for pod in pod_list.get("items") or []:
            pod_id = _pod_id(pod)
            pod_metrics = self._pod_data(pod)
            raw["pod"][pod_id] = pod_metrics

            if "nodeIP" in pod_metrics and not node_ip:
                node_ip = pod_metrics["nodeIP"]
            if node_ip:
                pod_metrics["nodeIP"] = node_ip
            else:
                missing_pod_ids.append(pod_id)

            for container_id, metrics in self._containers_data(pod).items():
                raw["container"][container_id] = metrics
                if "nodeIP" in metrics and not node_ip:
                    node_ip = metrics["nodeIP"]
                if node_ip:
                    metrics["nodeIP"] = node_ip
                else:
                    missing_container_ids.append(container_id)

        for pod_id in missing_pod_ids:
            raw["pod"][pod_id]["nodeIP"] = node_ip
        for container_id in missing_container_ids:
            raw["container"][container_id]["nodeIP"] = node_ip

        return raw

    def _containers_data(self, pod: Mapping) -> dict[str, RawMetrics]:
        statuses = _container_statuses(pod)
        meta = _metadata(pod)
        spec = pod.get("spec") or {}
        status = pod.get("status") or {}
        owner = _owner(pod)
        labels = _pod_labels(pod)

        containers: dict[str, RawMetrics] = {}
        for container in spec.get("containers") or []:
            name = container.get("name", "")
            container_id = _container_id(pod, name)
            metrics: RawMetrics = {
                "containerName": name,
                "containerImage": container.get("image", ""),
                "namespace": meta.get("namespace", ""),
                "podName": meta.get("name", ""),
                "nodeName": spec.get("nodeName", ""),
            }

            if host_ip := status.get("hostIP"):
                metrics["nodeIP"] = host_ip

            resources = container.get("resources") or {}
            requests = resources.get("requests") or {}
            limits = resources.get("limits") or {}
            if "cpu" in requests:
                metrics["cpuRequestedCores"] = Quantity.parse(str(requests["cpu"])).milli_value()
            if "cpu" in limits:
                metrics["cpuLimitCores"] = Quantity.parse(str(limits["cpu"])).milli_value()
            if "memory" in requests:
                metrics["memoryRequestedBytes"] = Quantity.parse(str(requests["memory"])).value()
            if "memory" in limits:
                metrics["memoryLimitBytes"] = Quantity.parse(str(limits["memory"])).value()

            if owner is not None:
                _add_workload_name(*owner, metrics)

            metrics.update(statuses.get(container_id, {}))

            if labels:
                metrics["labels"] = dict(labels)

            containers[container_id] = metrics
        return containers

    def _pod_data(self, pod: Mapping) -> RawMetrics:
        meta = _metadata(pod)
        spec = pod.get("spec") or {}
        status = pod.get("status") or {}

        metrics: RawMetrics = {
            "namespace": meta.get("namespace", ""),
            "podName": meta.get("name", ""),
            "nodeName": spec.get("nodeName", ""),
        }
        self._fill_pod_status(metrics, status)

        if host_ip := status.get("hostIP"):
            metrics["nodeIP"] = host_ip
        if pod_ip := status.get("podIP"):
            metrics["podIP"] = pod_ip
        if (start_time := _parse_time(status.get("startTime"))) is not None:
            metrics["startTime"] = start_time
        if (created := _parse_time(meta.get("creationTimestamp"))) is not None:
            metrics["createdAt"] = created

        owner = _owner(pod)
        if owner is not None:
            kind, name = owner
            metrics["createdKind"] = kind
            metrics["createdBy"] = name
            _add_workload_name(kind, name, metrics)

        if reason := status.get("reason"):
            metrics["reason"] = reason
        if message := status.get("message"):
            metrics["message"] = message

        labels = _pod_labels(pod)
        if labels:
            metrics["labels"] = labels
        return metrics

    def _fill_pod_status(self, metrics: RawMetrics, status: Mapping) -> None:
        if _is_fake_pending_pod(status):
            metrics["status"] = "Running"
            metrics["isReady"] = "True"
            metrics["isScheduled"] = "True"
            self._logger.debug("Fake Pending Pod marked as Running")
            return

        for condition in status.get("conditions") or []:
            kind = condition.get("type")
            if kind not in _CONDITION_TIMESTAMPS:
                continue
            condition_status = condition.get("status", "")
            if kind in _CONDITION_FLAGS:
                metrics[_CONDITION_FLAGS[kind]] = condition_status
            if condition_status == "True":
                moment = _parse_time(condition.get("lastTransitionTime"))
                if moment is not None:
                    metrics[_CONDITION_TIMESTAMPS[kind]] = moment

        metrics["status"] = status.get("phase", "")