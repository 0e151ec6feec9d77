import pytest

from kubeharvest.network import from_raw_with_fallback_to_default_interface


def test_uses_raw():
    raw = {
        "node": {"fooNode": {"name": "", "rxBytes": 51419684038}},
        "network": {"interfaces": {"default": "thisIsTheDefault"}},
    }
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    assert fetch("node", "fooNode", raw) == 51419684038


def test_uses_fallback():
    raw = {
        "node": {
            "fooNode": {
                "name": "",
                "interfaces": {
                    "thisIsTheDefault": {
                        "rxBytes": 51419684038,
                        "txBytes": 25630208577,
                        "errors": 0,
                    },
                },
            },
        },
        "network": {"interfaces": {"default": "thisIsTheDefault"}},
    }
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    assert fetch("node", "fooNode", raw) == 51419684038


def test_missing_group():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="group not found"):
        fetch("node", "fooNode", {})


def test_missing_entity():
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="entity not found"):
        fetch("node", "fooNode", {"node": {}})


def test_default_interface_not_set():
    raw = {
        "node": {"fooNode": {"interfaces": {"eth0": {"rxBytes": 1}}}},
        "network": {"interfaces": {"default": ""}},
    }
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="default interface not set"):
        fetch("node", "fooNode", raw)


def test_default_interface_metrics_missing():
    raw = {
        "node": {"fooNode": {"interfaces": {"eth1": {"rxBytes": 1}}}},
        "network": {"interfaces": {"default": "eth0"}},
    }
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(
        LookupError,
        match="metric not found and default interface fallback failed: default interface metrics not found",
    ):
        fetch("node", "fooNode", raw)


def test_network_group_missing():
    raw = {"node": {"fooNode": {"interfaces": {}}}}
    fetch = from_raw_with_fallback_to_default_interface("rxBytes")
    with pytest.raises(LookupError, match="network group not found"):
        fetch("node", "fooNode", raw)