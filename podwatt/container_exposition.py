"""Samples of the container level metrics."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Protocol

from . import config
from .config import Settings
from .descriptors import (
    MILLI_JOULE_TO_JOULE,
    POD_ENERGY_STAT_LABELS,
    ConstMetric,
    ContainerDescriptors,
    PodDescriptors,
    ValueType,
    new_const_metric,
    truncate_command,
)

DYNAMIC = "dynamic"
IDLE = "idle"

# Keys of the hardware counters and soft IRQ counters of a container.
CPU_CYCLE_LABEL = config.CPU_CYCLE
CPU_INSTRUCTION_LABEL = config.CPU_INSTRUCTION
CACHE_MISS_LABEL = config.CACHE_MISS
IRQ_NET_TX = config.IRQ_NET_TX_LABEL
IRQ_NET_RX = config.IRQ_NET_RX_LABEL
IRQ_BLOCK = config.IRQ_BLOCK_LABEL

_POD_DESCS = PodDescriptors()


class _Aggr(Protocol):
    aggr: float


class _CgroupStat(Protocol):
    def sum_all_aggr_values(self) -> float: ...


class _ContainerMetrics(Protocol):
    container_id: str
    pod_name: str
    container_name: str
    namespace: str
    command: str
    cpu_time: _Aggr
    dyn_energy_in_core: _Aggr
    idle_energy_in_core: _Aggr
    dyn_energy_in_uncore: _Aggr
    idle_energy_in_uncore: _Aggr
    dyn_energy_in_dram: _Aggr
    idle_energy_in_dram: _Aggr
    dyn_energy_in_pkg: _Aggr
    idle_energy_in_pkg: _Aggr
    dyn_energy_in_other: _Aggr
    idle_energy_in_other: _Aggr
    dyn_energy_in_gpu: _Aggr
    idle_energy_in_gpu: _Aggr
    counter_stats: Mapping[str, _Aggr | None]
    cgroup_stat_map: Mapping[str, _CgroupStat]
    kubelet_stats: Mapping[str, _Aggr]
    soft_irq_count: Mapping[str, _Aggr]

    def to_prometheus_value(self, label: str) -> str: ...

    def sum_all_dyn_delta_values(self) -> float: ...


def _joules(milli_joules: float) -> float:
    return float(milli_joules) / MILLI_JOULE_TO_JOULE


def container_metrics(
    container: _ContainerMetrics,
    descs: ContainerDescriptors,
    settings: Settings,
    hardware_counters_enabled: bool,
    have_cgroup_metrics: bool,
    have_kubelet_metrics: bool,
) -> Iterator[ConstMetric]:
    """Yield the samples of one container, including its pod energy stat."""
    counter = ValueType.COUNTER
    command = truncate_command(container.command)
    ident = (
        container.container_id,
        container.pod_name,
        container.container_name,
        container.namespace,
    )
    with_command = (*ident, command)

    stat_values = [container.pod_name, container.container_name, container.namespace, command]
    stat_values.extend(
        container.to_prometheus_value(label) for label in POD_ENERGY_STAT_LABELS[4:]
    )
    yield new_const_metric(
        _POD_DESCS.energy_stat,
        ValueType.GAUGE,
        float(container.sum_all_dyn_delta_values()),
        *stat_values,
    )
    yield new_const_metric(descs.cpu_time, counter, float(container.cpu_time.aggr), *ident)

    energies = (
        (descs.core_joules_total, container.dyn_energy_in_core, container.idle_energy_in_core),
        (descs.uncore_joules_total, container.dyn_energy_in_uncore, container.idle_energy_in_uncore),
        (descs.dram_joules_total, container.dyn_energy_in_dram, container.idle_energy_in_dram),
        (descs.package_joules_total, container.dyn_energy_in_pkg, container.idle_energy_in_pkg),
    )
    for desc, dyn, idle in energies:
        yield new_const_metric(desc, counter, _joules(dyn.aggr), *with_command, DYNAMIC)
        yield new_const_metric(desc, counter, _joules(idle.aggr), *with_command, IDLE)

    yield new_const_metric(
        descs.other_components_joules_total,
        counter,
        _joules(container.idle_energy_in_other.aggr),
        *with_command,
        IDLE,
    )

    if settings.enabled_gpu:
        if container.dyn_energy_in_gpu.aggr > 0:
            yield new_const_metric(
                descs.gpu_joules_total,
                counter,
                _joules(container.dyn_energy_in_gpu.aggr),
                *with_command,
                DYNAMIC,
            )
        if container.idle_energy_in_gpu.aggr > 0:
            yield new_const_metric(
                descs.gpu_joules_total,
                counter,
                _joules(container.idle_energy_in_gpu.aggr),
                *with_command,
                IDLE,
            )

    dynamic_total = (
        _joules(container.dyn_energy_in_pkg.aggr)
        + _joules(container.dyn_energy_in_uncore.aggr)
        + _joules(container.dyn_energy_in_dram.aggr)
        + _joules(container.dyn_energy_in_gpu.aggr)
        + _joules(container.dyn_energy_in_other.aggr)
    )
    idle_total = (
        _joules(container.idle_energy_in_pkg.aggr)
        + _joules(container.idle_energy_in_uncore.aggr)
        + _joules(container.idle_energy_in_dram.aggr)
        + _joules(container.idle_energy_in_gpu.aggr)
        + _joules(container.idle_energy_in_other.aggr)
    )
    yield new_const_metric(descs.joules_total, counter, dynamic_total, *with_command, DYNAMIC)
    yield new_const_metric(descs.joules_total, counter, idle_total, *with_command, IDLE)

    if settings.expose_hardware_counter_metrics and hardware_counters_enabled:
        counters = (
            (descs.cpu_cycles_total, CPU_CYCLE_LABEL),
            (descs.cpu_instr_total, CPU_INSTRUCTION_LABEL),
            (descs.cache_miss_total, CACHE_MISS_LABEL),
        )
        for desc, label in counters:
            stat = container.counter_stats.get(label)
            if stat is not None:
                yield new_const_metric(desc, counter, float(stat.aggr), *with_command)

    if settings.expose_cgroup_metrics and have_cgroup_metrics:
        cgroups = (
            (descs.cgroup_cpu_usage_us_total, config.CGROUPFS_CPU),
            (descs.cgroup_memory_usage_bytes_total, config.CGROUPFS_MEMORY),
            (descs.cgroup_system_cpu_usage_us_total, config.CGROUPFS_SYSTEM_CPU),
            (descs.cgroup_user_cpu_usage_us_total, config.CGROUPFS_USER_CPU),
        )
        for desc, key in cgroups:
            value = container.cgroup_stat_map[key].sum_all_aggr_values()
            yield new_const_metric(desc, counter, float(value), *with_command)

    if settings.expose_kubelet_metrics and have_kubelet_metrics:
        yield new_const_metric(
            descs.kubelet_cpu_usage_total,
            counter,
            float(container.kubelet_stats[config.KUBELET_CONTAINER_CPU].aggr),
            *with_command,
        )
        yield new_const_metric(
            descs.kubelet_memory_bytes_total,
            counter,
            float(container.kubelet_stats[config.KUBELET_CONTAINER_MEMORY].aggr),
            *with_command,
        )

    if settings.expose_irq_counter_metrics:
        irqs = (
            (descs.net_tx_irq_total, IRQ_NET_TX),
            (descs.net_rx_irq_total, IRQ_NET_RX),
            (descs.block_irq_total, IRQ_BLOCK),
        )
        for desc, key in irqs:
            yield new_const_metric(
                desc, counter, float(container.soft_irq_count[key].aggr), *ident
            )