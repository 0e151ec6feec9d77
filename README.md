# kubeharvest

kubeharvest reads metrics from the kubelet of a Kubernetes node and arranges
them into *raw groups*. A raw group is a plain dictionary with this shape:

```
group label -> entity id -> metric name -> value
```

The group labels are `node`, `pod`, `container`, `volume` and `network`.

## Installation

```
pip install kubeharvest
```

To install the test dependencies as well:

```
pip install "kubeharvest[test]"
```

## Connecting to a kubelet (`kubeharvest.client`)

`DefaultConnector(settings, node_port_lookup, logger)` works out how to reach
the kubelet described by a `ConnectorSettings`:

- The port is `settings.kubelet_port`. If that is not set, it comes from
  `node_port_lookup(node_name)`, a callable you provide.
- The scheme is `settings.kubelet_scheme`. If that is not set, port 10255
  means `http` and port 10250 means `https`. For any other port, HTTPS is
  tried first and then HTTP.
- First it probes `/healthz` on the node IP. Over HTTPS it sends the bearer
  token read from `settings.bearer_token_file` and does not verify the
  kubelet's certificate.
- If that fails, it probes through the API server node proxy at
  `<api_server_host>/api/v1/nodes/<node_name>/proxy/`.

If no endpoint answers, `connect()` raises `ConnectionError_`.

`StaticConnector(session, base_url)` does no probing. It hands back the
session and URL you give it.

`KubeletClient(connector, max_retries, logger)` connects once when it is
created. `get(path)` sends a GET request. If the request raises an error or
the server answers with a 5xx status, it tries again, up to `max_retries`
attempts in all (at least one). Before each new attempt it waits one second
more than before. `url_for(path)` returns the full URL for a path.

```python
import requests
from kubeharvest.client import KubeletClient, StaticConnector

connector = StaticConnector(requests.Session(), "http://10.0.0.5:10255")
client = KubeletClient(connector, max_retries=3)

response = client.get("/stats/summary")
```

## Collecting data

- `kubeharvest.stats`
  - `get_metrics_data(client)` fetches and decodes `/stats/summary`. It
    raises `StatsError` on failure.
  - `group_stats_summary(summary)` returns `(groups, errors)`. The groups
    are `node`, `pod`, `container` and `volume`.
  - The module also provides entity ID and entity type helpers:
    `from_raw_groups_entity_id_generator`,
    `from_raw_entity_id_group_entity_id_generator`,
    `from_raw_groups_entity_type_generator` and `from_label_get_namespace`.
- `kubeharvest.pods`
  - `PodsFetcher(client, logger).fetch()` reads `/pods`. It returns `pod`
    and `container` groups with metadata, owner workload names, requests and
    limits, pod conditions and container statuses.
  - It raises `PodsFetchError` on a bad response.
- `kubeharvest.cadvisor`
  - `cadvisor_fetch_func(fetch_families, queries)` returns a fetcher. The
    fetcher calls `fetch_families(queries)`, which must return
    `MetricFamily` objects holding `PromMetric` samples, and builds a
    `container` group from them. It records container IDs, image IDs and
    the value of each other family.
  - When some samples cannot be used, it raises a recoverable `ErrorGroup`.
    The groups it did build are in the error's `groups` attribute.

`KubeletGrouper(node_getter, client, fetchers, default_network_interface,
logger)` brings these together:

- It runs the fetchers and merges their groups.
- It adds the stats summary.
- It adds a `node` entity built from `node_getter(node_name)`, which must
  return the node object as a dictionary. That entity holds labels,
  allocatable and capacity quantities, summed container requests, condition
  values (1, 0 or -1) and the kubelet version.
- It raises `ErrorGroup` on failure.
- `fill_groups_and_merge_non_existent` does the merging. It never overwrites
  a value that is already there.

```python
from kubeharvest.grouper import KubeletGrouper
from kubeharvest.pods import PodsFetcher

grouper = KubeletGrouper(
    node_getter=lookup_node,
    client=client,
    fetchers=[PodsFetcher(client, logger).fetch],
    default_network_interface="eth0",
    logger=logger,
)
groups = grouper.group(None)
```

## Transforming values

- `kubeharvest.quantity.Quantity` parses Kubernetes quantities such as
  `100m`, `1.5Gi` or `1e3`. It offers `value()`, `milli_value()` and
  `as_approximate_float()`. `camelcase(text)` builds lower camel-case names.
- `kubeharvest.resource.one_attribute_per_allocatable` and
  `one_attribute_per_capacity` flatten a mapping of `Quantity` values. For
  example, `{"cpu": Quantity.parse("1985m")}` becomes
  `{"allocatableCpuCores": 1.985}`.
- `kubeharvest.transform.one_metric_per_label` prefixes each label key with
  `label.`. `prefix_from_map_int(prefix)` applies a given prefix to a mapping
  of integers.
- `kubeharvest.network.from_raw_with_fallback_to_default_interface(key)`
  reads a metric from an entity. If the entity lacks it, the value comes
  from the entity's entry for the default network interface.

## What it does not do

kubeharvest is a library only. It has no command-line program and does not
run on a schedule. It does not talk to the Kubernetes API to list or look up
objects: the node object and the node port come from callables you supply.
It does not parse the Prometheus text format; the cAdvisor fetcher expects
already-parsed metric families. It does not send or store the metrics it
gathers.