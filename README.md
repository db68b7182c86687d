# podwatt

podwatt is a library for exporting energy figures of a Kubernetes node,
its containers and its processes as Prometheus metrics. It reads the
exporter's settings, talks to the local kubelet, keeps container
identities in step with pod events, and renders the figures it is given
in the Prometheus text exposition format.

## Installation

```
pip install podwatt
```

For running the tests:

```
pip install "podwatt[test]"
pytest
```

## Configuration (`podwatt.config`)

`get_config(key, default)` reads a setting from the file
`/etc/kepler/kepler.config/<key>`; if that file cannot be read it falls
back to the environment variable `<key>`, and then to `default`.
`get_bool_config(key, default)` treats only the text `true` (in any case)
as true.

`load_settings()` builds a `Settings` dataclass from those sources:

```python
from podwatt.config import load_settings

settings = load_settings()
print(settings.enabled_gpu, settings.expose_irq_counter_metrics)
print(settings.metric_path("/metrics"))        # METRIC_PATH or the default
print(settings.bind_address("0.0.0.0:8888"))   # BIND_ADDRESS or the default
```

The keys read include `KEPLER_NAMESPACE`, `ENABLE_EBPF_CGROUPID`,
`ENABLE_GPU`, `ENABLE_PROCESS_METRICS`, `EXPOSE_HW_COUNTER_METRICS`,
`EXPOSE_CGROUP_METRICS`, `EXPOSE_KUBELET_METRICS`,
`EXPOSE_IRQ_COUNTER_METRICS`, `CPU_ARCH_OVERRIDE`, `ESTIMATOR_MODEL`,
`ESTIMATOR_SELECT_FILTER`, the `*_USAGE_METRIC` keys and
`MODEL_SERVER_ENABLE`. `model_server_request_endpoint()` combines
`MODEL_SERVER_URL`, `MODEL_SERVER_PORT` and `MODEL_SERVER_MODEL_REQ_PATH`.

`Settings` also has setters that combine a flag with what is already set:
`set_enabled_gpu`, `set_enabled_hardware_counter_metrics`,
`set_enabled_ebpf_cgroup_id` (cgroup ids only on cgroup v2 hosts with a
kernel of at least 4.18), `set_estimator_config` and
`set_kernel_source_dir`, which records every sub-directory of a directory
and raises if the path is missing or not a directory.

`MODEL_CONFIG` holds whitespace-separated `KEY=VALUE` pairs.
`model_config_map()` parses it; after `settings.init_model_config_map()`,
`settings.model_config("CONTAINER_COMPONENTS")` returns a `ModelConfig`
with `use_estimator_sidecar`, `selected_model`, `select_filter` and
`init_model_url`.

`kernel_version(system)` returns the kernel's `major.minor` as a float, or
`-1.0` when the release string cannot be read or parsed.
`is_cgroup_v2(system)` and `cgroup_version(system)` check for the cgroup v2
marker file. `system` is a `SystemInfo`; subclass it to supply another
release string or marker path.

## Kubelet (`podwatt.kubelet`)

`parse_metrics(stream)` reads the kubelet's `/metrics/resource` text
output (a string, bytes, or an iterable of lines such as an open file)
and returns two dictionaries, container CPU and container memory, keyed
by `namespace/pod/container`. A `system/system_processes` entry holds
what the node uses beyond its containers. Malformed input raises
`MetricsParseError`.

```python
from podwatt.kubelet import parse_metrics

with open("resource_metrics.txt") as stream:
    cpu, memory = parse_metrics(stream)
```

`KubeletPodLister` talks to `https://<NODE_IP>:<KUBELET_PORT>` (defaults
`localhost` and `10250`, read when the module is imported), using the
service account token as a bearer token and without verifying the
certificate. `list_pods()` returns the pod objects as dictionaries,
`list_metrics()` returns the parsed metrics, and `available_metrics()`
probes the metrics endpoint once and returns the container metric names
if it answered with status 200.

## Pod watching (`podwatt.watcher`)

`PodWatcher` applies pod events, given as dictionaries in the shape of
the Kubernetes pod JSON, to a shared mapping of container ID to container
entry. `handle_update(pod)` records or renames the containers of a ready
pod and remembers the pod once all of its containers have IDs;
`handle_deleted(pod)` removes them. Entries are created with the
`container_factory` given to the watcher (by default a small
`ContainerIdentity` dataclass). `parse_container_id_from_pod_status`
strips a runtime prefix such as `containerd://` from a container ID.

## Exposition

`podwatt.descriptors` holds the metric descriptions (`Desc`, grouped in
`NodeDescriptors`, `ContainerDescriptors`, `PodDescriptors` and
`ProcessDescriptors`), `new_const_metric` for building samples with
checked label counts, and `render_text`, which writes samples in the
Prometheus text format with families sorted by name.

`node_metrics`, `container_metrics` and `process_metrics` (in
`node_exposition`, `container_exposition` and `process_exposition`) turn
one node, container or process metrics object into samples. Energy is
taken in millijoules and exposed in joules, with a `dynamic` and an
`idle` mode.

`PrometheusCollector` ties these together: `describe()` lists the
descriptors enabled by its `Settings`, `collect()` returns all samples
while holding its lock, and `render()` returns the text exposition.

```python
from podwatt.prometheus_collector import PrometheusCollector

collector = PrometheusCollector(
    node_metrics=node,            # your node metrics object
    containers_metrics=containers,
    process_metrics=processes,
    sample_period_sec=3,
    node_name="node-1",
    cpu_architecture="x86_64",
)
collector.describe()
print(collector.render())
```

## What podwatt does not do

podwatt does not measure anything itself: it reads no RAPL, ACPI, GPU,
BPF or cgroup counters and computes no energy attribution. The node,
container and process metrics objects passed to `PrometheusCollector`
must be supplied and updated by the caller. There is no HTTP server for
a `/metrics` endpoint and no command-line program; serve the output of
`render()` with whatever server you use. `PodWatcher` only handles events
you pass to it; it does not connect to the Kubernetes API server.