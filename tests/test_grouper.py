import copy
import json
from dataclasses import dataclass

import pytest

from kubeharvest.cadvisor import ErrorGroup, MetricFamily, PromMetric, cadvisor_fetch_func
from kubeharvest.grouper import KubeletGrouper, fill_groups_and_merge_non_existent
from kubeharvest.pods import PodsFetcher
from kubeharvest.quantity import Quantity

PODS_PAYLOAD = {
    "items": [
        {
            "metadata": {"name": "web-1", "namespace": "default", "labels": {"app": "web"}},
            "spec": {
                "nodeName": "node-a",
                "containers": [
                    {
                        "name": "app",
                        "image": "nginx",
                        "resources": {"requests": {"cpu": "100m", "memory": "64Mi"}},
                    },
                    {
                        "name": "side",
                        "image": "busybox",
                        "resources": {"requests": {"cpu": "250m", "memory": "32Mi"}},
                    },
                ],
            },
            "status": {"phase": "Running", "hostIP": "10.0.0.1"},
        }
    ]
}

SUMMARY_PAYLOAD = {
    "node": {
        "nodeName": "node-a",
        "cpu": {"usageNanoCores": 1000},
        "network": {
            "rxBytes": 5,
            "txBytes": 6,
            "rxErrors": 0,
            "txErrors": 1,
            "interfaces": [
                {"name": "eth0", "rxBytes": 5, "txBytes": 6, "rxErrors": 0, "txErrors": 1}
            ],
        },
    },
    "pods": [
        {
            "podRef": {"name": "web-1", "namespace": "default"},
            "containers": [
                {"name": "app", "cpu": {"usageNanoCores": 42}},
                {"name": "ghost", "cpu": {"usageNanoCores": 7}},
            ],
        }
    ],
}

NODE = {
    "metadata": {"name": "node-a", "labels": {"kubernetes.io/os": "linux"}},
    "spec": {"unschedulable": False},
    "status": {
        "allocatable": {"cpu": "2", "pods": "110", "memory": "2033280000"},
        "capacity": {"cpu": "2", "pods": "110", "memory": "2033283072"},
        "conditions": [
            {"type": "TrueCondition", "status": "True"},
            {"type": "FalseCondition", "status": "False"},
            {"type": "UnknownCondition", "status": "Unknown"},
            {"type": "DuplicatedCondition", "status": "True"},
            {"type": "DuplicatedCondition", "status": "False"},
            {"type": "Weird", "status": "Maybe"},
        ],
        "nodeInfo": {"kubeletVersion": "v1.22.1"},
    },
}


@dataclass
class FakeResponse:
    status_code: int
    content: bytes

    @property
    def text(self):
        return self.content.decode()


class FakeClient:
    def __init__(self, routes):
        self.routes = routes

    def get(self, path):
        status, body = self.routes.get(path, (404, b""))
        return FakeResponse(status, body)


def make_client(summary=None, summary_status=200):
    return FakeClient(
        {
            "/pods": (200, json.dumps(PODS_PAYLOAD).encode()),
            "/stats/summary": (
                summary_status,
                json.dumps(SUMMARY_PAYLOAD if summary is None else summary).encode(),
            ),
        }
    )


def node_getter(name):
    if name != "node-a":
        raise KeyError(name)
    return copy.deepcopy(NODE)


def cadvisor_families(_queries):
    return [
        MetricFamily(
            "container_memory_usage_bytes",
            [
                PromMetric(
                    labels={
                        "container": "app",
                        "namespace": "default",
                        "pod": "web-1",
                        "id": "/kubepods/abc123",
                        "image": "nginx@sha256:placeholder",
                    },
                    value=1.0,
                )
            ],
        )
    ]


def make_grouper(client=None, fetchers=None, getter=node_getter):
    client = client or make_client()
    if fetchers is None:
        fetchers = [PodsFetcher(client).fetch, cadvisor_fetch_func(cadvisor_families, [])]
    return KubeletGrouper(getter, client, fetchers, "eth0")


def test_group_merges_all_sources():
    groups = make_grouper().group(None)

    assert groups["network"] == {"interfaces": {"default": "eth0"}}

    app = groups["container"]["default_web-1_app"]
    assert app["containerImage"] == "nginx"
    assert app["cpuRequestedCores"] == 100
    assert app["usageNanoCores"] == 42
    assert app["containerID"] == "abc123"
    assert app["containerImageID"] == "nginx@sha256:placeholder"
    assert app["nodeIP"] == "10.0.0.1"

    assert "default_web-1_ghost" not in groups["container"]
    assert groups["volume"] == {}
    assert groups["pod"]["default_web-1"]["status"] == "Running"


def test_group_node_entity():
    node = make_grouper().group(None)["node"]["node-a"]

    assert node["nodeName"] == "node-a"
    assert node["usageNanoCores"] == 1000
    assert node["errors"] == 1
    assert node["cpuRequestedCores"] == 350
    assert node["memoryRequestedBytes"] == 96 * 2**20
    assert node["conditions"] == {
        "TrueCondition": 1,
        "FalseCondition": 0,
        "UnknownCondition": -1,
        "DuplicatedCondition": -1,
    }
    assert node["labels"] == {"kubernetes.io/os": "linux"}
    assert node["unschedulable"] is False
    assert node["kubeletVersion"] == "v1.22.1"
    assert node["allocatable"] == {
        "cpu": Quantity.parse("2"),
        "pods": Quantity.parse("110"),
        "memory": Quantity.parse("2033280000"),
    }
    assert node["capacity"]["memory"].value() == 2033283072


def test_recoverable_fetcher_errors_keep_partial_data():
    def families(_queries):
        result = cadvisor_families(_queries)
        result[0].metrics.append(PromMetric(labels={"container": "x", "pod": "p"}, value=1))
        return result

    client = make_client()
    grouper = make_grouper(
        client, [PodsFetcher(client).fetch, cadvisor_fetch_func(families, [])]
    )
    groups = grouper.group(None)
    assert groups["container"]["default_web-1_app"]["containerID"] == "abc123"


def test_unrecoverable_fetcher_error():
    def failing():
        raise RuntimeError("boom")

    with pytest.raises(ErrorGroup) as info:
        make_grouper(fetchers=[failing]).group(None)
    assert str(info.value) == "error querying Kubelet. boom"
    assert info.value.recoverable is False


def test_stats_request_failure():
    grouper = make_grouper(client=make_client(summary_status=500), fetchers=[])
    with pytest.raises(ErrorGroup) as info:
        grouper.group(None)
    assert str(info.value).startswith(
        "error querying Kubelet. received non-OK response code from kubelet: 500"
    )


def test_stats_summary_errors_are_recoverable():
    summary = {"node": {"nodeName": "node-a"}, "pods": [{"podRef": {"name": "x"}}]}
    grouper = make_grouper(client=make_client(summary=summary), fetchers=[])
    with pytest.raises(ErrorGroup) as info:
        grouper.group(None)
    assert info.value.recoverable is True
    assert len(info.value.errors) == 1


def test_node_getter_failure():
    def missing(_name):
        raise LookupError("node not found")

    with pytest.raises(ErrorGroup) as info:
        make_grouper(fetchers=[], getter=missing).group(None)
    assert str(info.value) == "error querying ApiServer: node not found"


def test_node_getter_required():
    with pytest.raises(ValueError, match="NodeGetter must be set"):
        KubeletGrouper(None, make_client(), [], "eth0")


def test_fill_groups_keeps_existing_values():
    destination = {"pod": {"a": {"x": 1}}}
    source = {
        "pod": {"a": {"x": 2, "y": 3}, "b": {"x": 4}},
        "node": {"n": {"z": 5}},
    }
    fill_groups_and_merge_non_existent(destination, source)
    assert destination == {"pod": {"a": {"x": 1, "y": 3}}, "node": {"n": {"z": 5}}}