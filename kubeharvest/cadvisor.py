"""Container metrics taken from the kubelet cAdvisor endpoint."""

from __future__ import annotations

import re
from collections.abc import Callable, Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

KUBELET_CADVISOR_METRICS_PATH = "/metrics/cadvisor"

RawMetrics = dict[str, Any]
RawGroups = dict[str, dict[str, RawMetrics]]

_DOCKER_NATIVE_WITHOUT_SYSTEMD = re.compile(r".*([0-9a-f]+)")
_DOCKER_NATIVE_WITH_SYSTEMD = re.compile(r".*\w+-([0-9a-f]+)\.scope")
_DOCKER_GENERIC = re.compile(r"([0-9a-f]+)")


@dataclass
class PromMetric:
    """One Prometheus sample: its labels and its value."""

    labels: dict[str, str] = field(default_factory=dict)
    value: Any = None


@dataclass
class MetricFamily:
    """A named group of Prometheus samples."""

    name: str
    metrics: list[PromMetric] = field(default_factory=list)


class ErrorGroup(Exception):
    """Several errors met while gathering data, with the data gathered anyway."""

    def __init__(
        self,
        errors: Iterable[BaseException],
        recoverable: bool = False,
        groups: RawGroups | None = None,
    ) -> None:
        self.errors = list(errors)
        self.recoverable = recoverable
        self.groups = groups
        super().__init__("; ".join(str(error) for error in self.errors))


def _get_label(labels: Mapping[str, str], *names: str) -> str | None:
    """Return the value of the first of ``names`` present in ``labels``."""
    for name in names:
        if name in labels:
            return labels[name]
    return None


def extract_container_id(value: str) -> str:
    """Extract the container ID from the last segment of a cgroup path."""
    container_id = value[value.rfind("/") + 1 :]
    if match := _DOCKER_NATIVE_WITH_SYSTEMD.fullmatch(container_id):
        return match[1]
    if match := _DOCKER_NATIVE_WITHOUT_SYSTEMD.fullmatch(container_id):
        return match[0]
    if match := _DOCKER_GENERIC.fullmatch(container_id):
        return match[0]
    return container_id


def create_raw_entity_id(metric: PromMetric) -> str:
    """Build ``<namespace>_<pod>_<container>``; empty when no container is named."""
    container_name = _get_label(metric.labels, "container_name", "container")
    if container_name is None:
        raise LookupError("container name not found in cAdvisor metrics")
    if not container_name:
        return ""

    namespace = metric.labels.get("namespace", "")
    if not namespace:
        raise LookupError("namespace not found in cAdvisor metrics")

    pod_name = _get_label(metric.labels, "pod_name", "pod") or ""
    if not pod_name:
        raise LookupError("pod name not found in cAdvisor metrics")

    return f"{namespace}_{pod_name}_{container_name}"


def cadvisor_fetch_func(
    fetch_families: Callable[[Sequence[Any]], Iterable[MetricFamily]],
    queries: Sequence[Any],
) -> Callable[[], RawGroups]:
    """Return a fetcher that groups cAdvisor metrics by container.

    The fetcher raises a recoverable :class:`ErrorGroup` carrying the groups
    it did build when some samples could not be used.
    """

    def fetch() -> RawGroups:
        try:
            families = fetch_families(queries)
        except Exception as err:
            raise RuntimeError(f"error requesting cadvisor metrics endpoint: {err}") from err

        errors: list[Exception] = []
        containers: dict[str, RawMetrics] = {}
        groups: RawGroups = {"container": containers}

        for family in families:
            for metric in family.metrics:
                if _get_label(metric.labels, "container_name", "container") == "POD":
                    continue

                try:
                    raw_entity_id = create_raw_entity_id(metric)
                except LookupError as err:
                    errors.append(err)
                    continue
                if not raw_entity_id:
                    continue

                container_id = extract_container_id(metric.labels.get("id", ""))
                if not container_id:
                    errors.append(LookupError("container id not found in cAdvisor metrics"))
                    continue

                metrics = containers.setdefault(raw_entity_id, {"containerID": container_id})

                if family.name == "container_memory_usage_bytes":
                    image = metric.labels.get("image", "")
                    if not image:
                        errors.append(
                            LookupError("container image not found in cAdvisor metrics")
                        )
                        continue
                    metrics["containerImageID"] = image
                else:
                    metrics[family.name] = metric.value

        if errors:
            raise ErrorGroup(errors, recoverable=True, groups=groups)
        return groups

    return fetch