"""Samples of the node level metrics."""

from __future__ import annotations

import math
from collections.abc import Iterator, Mapping
from typing import Protocol

from .config import Settings
from .descriptors import (
    MILLI_JOULE_TO_JOULE,
    NODE_METRICS_STAT_LABELS,
    ConstMetric,
    NodeDescriptors,
    ValueType,
    new_const_metric,
)

# Energy components understood by the node metrics source.
PKG = "pkg"
CORE = "core"
UNCORE = "uncore"
DRAM = "dram"
OTHER = "other"
PLATFORM = "platform"
GPU = "gpu"

RAPL_SOURCE = "rapl"
ACPI_SOURCE = "acpi"
GPU_SOURCE = "nvidia"
DYNAMIC = "dynamic"
IDLE = "idle"


class _Delta(Protocol):
    delta: int


class _EnergyStats(Protocol):
    stat: Mapping[str, _Delta]

    def sum_all_delta_values(self) -> float: ...


class _NodeMetrics(Protocol):
    cpu_frequency: Mapping[int, float]
    resource_usage: Mapping[str, float]
    total_energy_in_pkg: _EnergyStats
    total_energy_in_core: _EnergyStats
    total_energy_in_dram: _EnergyStats
    total_energy_in_uncore: _EnergyStats
    total_energy_in_gpu: _EnergyStats
    total_energy_in_platform: _EnergyStats

    def aggr_dyn_energy_per_id(self, component: str, ident: str) -> float: ...

    def aggr_idle_energy_per_id(self, component: str, ident: str) -> float: ...

    def sum_aggr_dyn_energy_from_all_sources(self, component: str) -> float: ...

    def sum_aggr_idle_energy_from_all_sources(self, component: str) -> float: ...


def _divide(numerator: float, denominator: float) -> float:
    """Float division that yields inf or NaN instead of raising on zero."""
    if denominator == 0:
        if numerator == 0 or math.isnan(numerator):
            return math.nan
        return math.copysign(math.inf, numerator) * math.copysign(1.0, denominator)
    return numerator / denominator


def _joules(milli_joules: float) -> float:
    return float(milli_joules) / MILLI_JOULE_TO_JOULE


def node_metrics(
    node: _NodeMetrics,
    descs: NodeDescriptors,
    settings: Settings,
    node_name: str,
    cpu_architecture: str,
    sample_period_sec: float,
) -> Iterator[ConstMetric]:
    """Yield the node level samples built from ``node``."""
    counter = ValueType.COUNTER

    for cpu_id, freq in node.cpu_frequency.items():
        yield new_const_metric(
            descs.cpu_frequency, ValueType.GAUGE, float(freq), f"{cpu_id}", node_name
        )

    core_stat = node.total_energy_in_core.stat
    dram_stat = node.total_energy_in_dram.stat
    uncore_stat = node.total_energy_in_uncore.stat
    for pkg_id, val in node.total_energy_in_pkg.stat.items():
        yield new_const_metric(
            descs.package_millijoules_total,
            counter,
            float(val.delta),
            node_name,
            pkg_id,
            str(int(core_stat[pkg_id].delta)),
            str(int(dram_stat[pkg_id].delta)),
            str(int(uncore_stat[pkg_id].delta)),
        )

    stat_values = [node_name, cpu_architecture]
    stat_values.extend(
        str(int(node.resource_usage.get(label, 0))) for label in NODE_METRICS_STAT_LABELS[2:]
    )
    platform_joules = _joules(node.total_energy_in_platform.sum_all_delta_values())
    yield new_const_metric(
        descs.metrics_stat,
        counter,
        _divide(platform_joules, float(sample_period_sec)),
        *stat_values,
    )
    yield new_const_metric(descs.info, counter, 1, cpu_architecture)

    per_package = (
        (PKG, descs.package_joules_total),
        (CORE, descs.core_joules_total),
        (UNCORE, descs.uncore_joules_total),
        (DRAM, descs.dram_joules_total),
    )
    for pkg_id in core_stat:
        for component, desc in per_package:
            yield new_const_metric(
                desc,
                counter,
                _joules(node.aggr_dyn_energy_per_id(component, pkg_id)),
                pkg_id, node_name, RAPL_SOURCE, DYNAMIC,
            )
            yield new_const_metric(
                desc,
                counter,
                _joules(node.aggr_idle_energy_per_id(component, pkg_id)),
                pkg_id, node_name, RAPL_SOURCE, IDLE,
            )

    yield new_const_metric(
        descs.other_components_joules_total,
        counter,
        _joules(node.sum_aggr_dyn_energy_from_all_sources(OTHER)),
        node_name, DYNAMIC,
    )
    yield new_const_metric(
        descs.other_components_joules_total,
        counter,
        _joules(node.sum_aggr_idle_energy_from_all_sources(OTHER)),
        node_name, IDLE,
    )

    yield new_const_metric(
        descs.platform_joules_total,
        counter,
        _joules(node.sum_aggr_dyn_energy_from_all_sources(PLATFORM)),
        node_name, ACPI_SOURCE, DYNAMIC,
    )
    yield new_const_metric(
        descs.platform_joules_total,
        counter,
        _joules(node.sum_aggr_idle_energy_from_all_sources(PLATFORM)),
        node_name, ACPI_SOURCE, IDLE,
    )

    if settings.enabled_gpu:
        for gpu_id in node.total_energy_in_gpu.stat:
            yield new_const_metric(
                descs.gpu_joules_total,
                counter,
                _joules(node.aggr_dyn_energy_per_id(GPU, gpu_id)),
                gpu_id, node_name, GPU_SOURCE, DYNAMIC,
            )
            yield new_const_metric(
                descs.gpu_joules_total,
                counter,
                _joules(node.aggr_idle_energy_per_id(GPU, gpu_id)),
                gpu_id, node_name, GPU_SOURCE, IDLE,
            )