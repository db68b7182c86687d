"""Metric descriptors, constant metric samples and text exposition."""

from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum

NAMESPACE = "kepler"
MILLI_JOULE_TO_JOULE = 1000
COMMAND_LEN_LIMIT = 10

# The energy stat metrics are only meant for the model server's training.
NODE_METRICS_STAT_LABELS: tuple[str, ...] = (
    "node_name",
    "cpu_architecture",
    "node_curr_cpu_time",
    "node_curr_cpu_cycles",
    "node_curr_cpu_instr",
    "node_curr_cache_miss",
    "node_curr_container_cpu_usage_seconds_total",
    "node_curr_container_memory_working_set_bytes",
    "node_curr_bytes_read",
    "node_curr_bytes_writes",
    "node_block_devices_used",
    "node_curr_energy_in_core_joule",
    "node_curr_energy_in_dram_joule",
    "node_curr_energy_in_gpu_joule",
    "node_curr_energy_in_other_joule",
    "node_curr_energy_in_pkg_joule",
    "node_curr_energy_in_uncore_joule",
)

POD_ENERGY_STAT_LABELS: tuple[str, ...] = (
    "pod_name",
    "container_name",
    "pod_namespace",
    "command",
    "curr_cpu_time",
    "total_cpu_time",
    "curr_cpu_cycles",
    "total_cpu_cycles",
    "curr_cpu_instr",
    "total_cpu_instr",
    "curr_cache_miss",
    "total_cache_miss",
    "curr_container_cpu_usage_seconds_total",
    "total_container_cpu_usage_seconds_total",
    "curr_container_memory_working_set_bytes",
    "total_container_memory_working_set_bytes",
    "curr_bytes_read",
    "total_bytes_read",
    "curr_bytes_writes",
    "total_bytes_writes",
    "block_devices_used",
    "curr_irq_net_rx",
    "total_irq_net_rx",
    "curr_irq_net_tx",
    "total_irq_net_tx",
    "curr_irq_block",
    "total_irq_block",
)

_METRIC_NAME_RE = re.compile(r"^[a-zA-Z_:][a-zA-Z0-9_:]*$")
_LABEL_NAME_RE = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")


class ValueType(Enum):
    """Kind of a metric value."""

    COUNTER = "counter"
    GAUGE = "gauge"


def build_fq_name(namespace: str, subsystem: str, name: str) -> str:
    """Join the non-empty parts with underscores; empty if ``name`` is empty."""
    if not name:
        return ""
    return "_".join(part for part in (namespace, subsystem, name) if part)


@dataclass(frozen=True)
class Desc:
    """Description of a metric: its name, help text and variable labels."""

    fq_name: str
    help: str
    variable_labels: tuple[str, ...] = ()

    def __post_init__(self) -> None:
        labels = tuple(self.variable_labels)
        object.__setattr__(self, "variable_labels", labels)
        if not _METRIC_NAME_RE.match(self.fq_name):
            raise ValueError(f"{self.fq_name!r} is not a valid metric name")
        if not self.help:
            raise ValueError(f"metric {self.fq_name} has no help text")
        for label in labels:
            if not _LABEL_NAME_RE.match(label) or label.startswith("__"):
                raise ValueError(f"{label!r} is not a valid label name for {self.fq_name}")
        if len(set(labels)) != len(labels):
            raise ValueError(f"duplicate label names in {self.fq_name}")


@dataclass(frozen=True)
class ConstMetric:
    """One sample of a described metric with its label values."""

    desc: Desc
    value_type: ValueType
    value: float
    label_values: tuple[str, ...]

    @property
    def labels(self) -> dict[str, str]:
        return dict(zip(self.desc.variable_labels, self.label_values))


def new_const_metric(desc: Desc, value_type: ValueType, value: float, *args: str) -> ConstMetric:
    """Create a sample; the label values must match the descriptor's labels."""
    if len(args) != len(desc.variable_labels):
        raise ValueError(
            f"inconsistent label cardinality for {desc.fq_name}: "
            f"expected {len(desc.variable_labels)} label values but got {len(args)}"
        )
    return ConstMetric(desc, ValueType(value_type), float(value), tuple(str(a) for a in args))


def truncate_command(command: str) -> str:
    """Cut a command name down to the length exposed in labels."""
    return command[:COMMAND_LEN_LIMIT]


def _desc_field(subsystem: str, name: str, help_text: str, labels: Sequence[str]):
    return field(
        default_factory=lambda: Desc(
            build_fq_name(NAMESPACE, subsystem, name), help_text, tuple(labels)
        )
    )


_RAPL_NODE = ("package", "instance", "source", "mode")
_CONTAINER_MODE = ("container_id", "pod_name", "container_name", "container_namespace", "command", "mode")
_CONTAINER_CMD = ("container_id", "pod_name", "container_name", "container_namespace", "command")
_CONTAINER = ("container_id", "pod_name", "container_name", "container_namespace")
_PROCESS_MODE = ("pid", "command", "mode")
_PROCESS = ("pid", "command")


@dataclass(frozen=True)
class NodeDescriptors:
    """Descriptors of the node level metrics."""

    info: Desc = _desc_field("node", "nodeInfo", "Labeled node information", ("cpu_architecture",))
    core_joules_total: Desc = _desc_field(
        "node", "core_joules_total", "Aggregated RAPL value in core in joules", _RAPL_NODE
    )
    uncore_joules_total: Desc = _desc_field(
        "node", "uncore_joules_total", "Aggregated RAPL value in uncore in joules", _RAPL_NODE
    )
    dram_joules_total: Desc = _desc_field(
        "node", "dram_joules_total", "Aggregated RAPL value in dram in joules", _RAPL_NODE
    )
    package_joules_total: Desc = _desc_field(
        "node",
        "package_joules_total",
        "Aggregated RAPL value in package (socket) in joules",
        _RAPL_NODE,
    )
    platform_joules_total: Desc = _desc_field(
        "node",
        "platform_joules_total",
        "Aggregated RAPL value in platform (entire node) in joules",
        ("instance", "source", "mode"),
    )
    other_components_joules_total: Desc = _desc_field(
        "node",
        "other_host_components_joules_total",
        "Aggregated RAPL value in other components (platform - package - dram) in joules",
        ("instance", "mode"),
    )
    gpu_joules_total: Desc = _desc_field(
        "node", "gpu_joules_total", "Current GPU value in joules", ("index", "instance", "source", "mode")
    )
    cpu_frequency: Desc = _desc_field(
        "node",
        "cpu_scaling_frequency_hertz",
        "Current average cpu frequency in hertz",
        ("cpu", "instance"),
    )
    package_millijoules_total: Desc = _desc_field(
        "node",
        "package_energy_millijoule",
        "Aggregated RAPL value in package (socket) in milijoules (deprecated)",
        ("instance", "pkg_id", "core", "dram", "uncore"),
    )
    metrics_stat: Desc = _desc_field(
        "node", "energy_stat", "Several labeled node metrics", NODE_METRICS_STAT_LABELS
    )


@dataclass(frozen=True)
class ContainerDescriptors:
    """Descriptors of the container level metrics."""

    core_joules_total: Desc = _desc_field(
        "container", "core_joules_total", "Aggregated RAPL value in core in joules", _CONTAINER_MODE
    )
    uncore_joules_total: Desc = _desc_field(
        "container", "uncore_joules_total", "Aggregated RAPL value in uncore in joules", _CONTAINER_MODE
    )
    dram_joules_total: Desc = _desc_field(
        "container", "dram_joules_total", "Aggregated RAPL value in dram in joules", _CONTAINER_MODE
    )
    package_joules_total: Desc = _desc_field(
        "container",
        "package_joules_total",
        "Aggregated RAPL value in package (socket) in joules",
        _CONTAINER_MODE,
    )
    other_components_joules_total: Desc = _desc_field(
        "container",
        "other_host_components_joules_total",
        "Aggregated value in other host components (platform - package - dram) in joules",
        _CONTAINER_MODE,
    )
    gpu_joules_total: Desc = _desc_field(
        "container", "gpu_joules_total", "Aggregated GPU value in joules", _CONTAINER_MODE
    )
    joules_total: Desc = _desc_field(
        "container",
        "joules_total",
        "Aggregated RAPL Package + Uncore + DRAM + GPU + other host components "
        "(platform - package - dram) in joules",
        _CONTAINER_MODE,
    )
    cpu_cycles_total: Desc = _desc_field(
        "container", "cpu_cycles_total", "Aggregated CPU cycle value", _CONTAINER_CMD
    )
    cpu_instr_total: Desc = _desc_field(
        "container", "cpu_instructions_total", "Aggregated CPU instruction value", _CONTAINER_CMD
    )
    cache_miss_total: Desc = _desc_field(
        "container", "cache_miss_total", "Aggregated cache miss value", _CONTAINER_CMD
    )
    cgroup_cpu_usage_us_total: Desc = _desc_field(
        "container",
        "cgroupfs_cpu_usage_us_total",
        "Aggregated cpu usage obtained from cGroups",
        _CONTAINER_CMD,
    )
    cgroup_memory_usage_bytes_total: Desc = _desc_field(
        "container",
        "cgroupfs_memory_usage_bytes_total",
        "Aggregated memory bytes obtained from cGroups",
        _CONTAINER_CMD,
    )
    cgroup_system_cpu_usage_us_total: Desc = _desc_field(
        "container",
        "cgroupfs_system_cpu_usage_us_total",
        "Aggregated system cpu usage obtained from cGroups",
        _CONTAINER_CMD,
    )
    cgroup_user_cpu_usage_us_total: Desc = _desc_field(
        "container",
        "cgroupfs_user_cpu_usage_us_total",
        "Aggregated user cpu usage obtained from cGroups",
        _CONTAINER_CMD,
    )
    kubelet_cpu_usage_total: Desc = _desc_field(
        "container",
        "kubelet_cpu_usage_total",
        "Aggregated cpu usage obtained from kubelet",
        _CONTAINER_CMD,
    )
    kubelet_memory_bytes_total: Desc = _desc_field(
        "container",
        "kubelet_memory_bytes_total",
        "Aggregated memory bytes obtained from kubelet",
        _CONTAINER_CMD,
    )
    cpu_time: Desc = _desc_field(
        "container", "bpf_cpu_time_us_total", "Aggregated CPU time obtained from BPF", _CONTAINER
    )
    net_tx_irq_total: Desc = _desc_field(
        "container",
        "bpf_net_tx_irq_total",
        "Aggregated network tx irq value obtained from BPF",
        _CONTAINER,
    )
    net_rx_irq_total: Desc = _desc_field(
        "container",
        "bpf_net_rx_irq_total",
        "Aggregated network rx irq value obtained from BPF",
        _CONTAINER,
    )
    block_irq_total: Desc = _desc_field(
        "container", "bpf_block_irq_total", "Aggregated block irq value obtained from BPF", _CONTAINER
    )


@dataclass(frozen=True)
class PodDescriptors:
    """Descriptors of the pod level metrics used by the model server."""

    energy_stat: Desc = _desc_field(
        "pod", "energy_stat", "Several labeled pod metrics", POD_ENERGY_STAT_LABELS
    )
    cpu_instr_total: Desc = _desc_field(
        "pod",
        "cpu_instructions",
        "Aggregated CPU instruction value (deprecated)",
        ("pod_name", "container_name", "container_namespace", "command"),
    )


@dataclass(frozen=True)
class ProcessDescriptors:
    """Descriptors of the process level metrics."""

    core_joules_total: Desc = _desc_field(
        "process", "core_joules_total", "Aggregated RAPL value in core in joules", _PROCESS_MODE
    )
    uncore_joules_total: Desc = _desc_field(
        "process", "uncore_joules_total", "Aggregated RAPL value in uncore in joules", _PROCESS_MODE
    )
    dram_joules_total: Desc = _desc_field(
        "process", "dram_joules_total", "Aggregated RAPL value in dram in joules", _PROCESS_MODE
    )
    package_joules_total: Desc = _desc_field(
        "process",
        "package_joules_total",
        "Aggregated RAPL value in package (socket) in joules",
        _PROCESS_MODE,
    )
    other_components_joules_total: Desc = _desc_field(
        "process",
        "other_host_components_joules_total",
        "Aggregated value in other host components (platform - package - dram) in joules",
        _PROCESS_MODE,
    )
    gpu_joules_total: Desc = _desc_field(
        "process", "gpu_joules_total", "Aggregated GPU value in joules", _PROCESS_MODE
    )
    joules_total: Desc = _desc_field(
        "process",
        "joules_total",
        "Aggregated RAPL Package + Uncore + DRAM + GPU + other host components "
        "(platform - package - dram) in joules",
        _PROCESS_MODE,
    )
    cpu_cycles_total: Desc = _desc_field(
        "process", "cpu_cycles_total", "Aggregated CPU cycle value", _PROCESS
    )
    cpu_instr_total: Desc = _desc_field(
        "process", "cpu_instructions_total", "Aggregated CPU instruction value", _PROCESS
    )
    cache_miss_total: Desc = _desc_field(
        "process", "cache_miss_total", "Aggregated cache miss value", _PROCESS
    )
    cpu_time: Desc = _desc_field("process", "cpu_cpu_time_us", "Aggregated CPU time", _PROCESS)
    net_tx_irq_total: Desc = _desc_field(
        "process",
        "bpf_net_tx_irq_total",
        "Aggregated network tx irq value obtained from BPF",
        _PROCESS,
    )
    net_rx_irq_total: Desc = _desc_field(
        "process",
        "bpf_net_rx_irq_total",
        "Aggregated network rx irq value obtained from BPF",
        _PROCESS,
    )
    block_irq_total: Desc = _desc_field(
        "process", "bpf_block_irq_total", "Aggregated block irq value obtained from BPF", _PROCESS
    )


def _format_value(value: float) -> str:
    """Format a float the way the text exposition format does (shortest %g)."""
    if math.isnan(value):
        return "NaN"
    if math.isinf(value):
        return "+Inf" if value > 0 else "-Inf"
    if value == 0:
        return "-0" if math.copysign(1.0, value) < 0 else "0"
    sign, digit_tuple, exponent = Decimal(repr(value)).as_tuple()
    digits = list(digit_tuple)
    while len(digits) > 1 and digits[-1] == 0:
        digits.pop()
        exponent += 1
    while len(digits) > 1 and digits[0] == 0:
        digits.pop(0)
    text = "".join(map(str, digits))
    count = len(text)
    point = count + exponent
    exp = point - 1
    prefix = "-" if sign else ""
    if exp < -4 or exp >= 6:
        mantissa = text[0] + ("." + text[1:] if count > 1 else "")
        return f"{prefix}{mantissa}e{'-' if exp < 0 else '+'}{abs(exp):02d}"
    if point <= 0:
        return f"{prefix}0.{'0' * -point}{text}"
    if point >= count:
        return prefix + text + "0" * (point - count)
    return f"{prefix}{text[:point]}.{text[point:]}"


def _escape_label_value(value: str) -> str:
    return value.replace("\\", "\\\\").replace("\n", "\\n").replace('"', '\\"')


def _escape_help(text: str) -> str:
    return text.replace("\\", "\\\\").replace("\n", "\\n")


def render_text(metrics: Iterable[ConstMetric]) -> str:
    """Render samples in the Prometheus text format, families sorted by name."""
    families: dict[str, tuple[Desc, ValueType, list[ConstMetric]]] = {}
    for metric in metrics:
        name = metric.desc.fq_name
        family = families.get(name)
        if family is None:
            families[name] = (metric.desc, metric.value_type, [metric])
            continue
        desc, value_type, items = family
        if desc.help != metric.desc.help or value_type is not metric.value_type:
            raise ValueError(f"collected metric {name} is inconsistent with previously collected ones")
        items.append(metric)

    lines: list[str] = []
    for name in sorted(families):
        desc, value_type, items = families[name]
        rows: list[tuple[tuple[tuple[str, str], ...], float]] = []
        seen: set[tuple[tuple[str, str], ...]] = set()
        for metric in items:
            pairs = tuple(sorted(metric.labels.items()))
            if pairs in seen:
                raise ValueError(
                    f"collected metric {name} {dict(pairs)} was collected before "
                    "with the same name and label values"
                )
            seen.add(pairs)
            rows.append((pairs, metric.value))
        rows.sort(key=lambda row: [value for _, value in row[0]])
        lines.append(f"# HELP {name} {_escape_help(desc.help)}")
        lines.append(f"# TYPE {name} {value_type.value}")
        for pairs, value in rows:
            if pairs:
                label_text = ",".join(f'{key}="{_escape_label_value(val)}"' for key, val in pairs)
                lines.append(f"{name}{{{label_text}}} {_format_value(value)}")
            else:
                lines.append(f"{name} {_format_value(value)}")
    return "".join(line + "\n" for line in lines)