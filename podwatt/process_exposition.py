"""Samples of the process level metrics."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
from typing import Protocol

from . import config
from .config import Settings
from .descriptors import (
    MILLI_JOULE_TO_JOULE,
    ConstMetric,
    ProcessDescriptors,
    ValueType,
    new_const_metric,
    truncate_command,
)

DYNAMIC = "dynamic"
IDLE = "idle"

# Keys of the hardware counters and soft IRQ counters of a process.
CPU_CYCLE_LABEL = config.CPU_CYCLE
CPU_INSTRUCTION_LABEL = config.CPU_INSTRUCTION
CACHE_MISS_LABEL = config.CACHE_MISS
IRQ_NET_TX = config.IRQ_NET_TX_LABEL
IRQ_NET_RX = config.IRQ_NET_RX_LABEL
IRQ_BLOCK = config.IRQ_BLOCK_LABEL


class _Aggr(Protocol):
    aggr: float


class _ProcessMetrics(Protocol):
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
    soft_irq_count: Mapping[str, _Aggr]


def _joules(milli_joules: float) -> float:
    return float(milli_joules) / MILLI_JOULE_TO_JOULE


def process_metrics(
    pid: int,
    process: _ProcessMetrics,
    descs: ProcessDescriptors,
    settings: Settings,
    hardware_counters_enabled: bool,
) -> Iterator[ConstMetric]:
    """Yield the samples of one process."""
    counter = ValueType.COUNTER
    command = truncate_command(process.command)
    ident = (str(int(pid)), command)

    yield new_const_metric(descs.cpu_time, counter, float(process.cpu_time.aggr), *ident)

    energies = (
        (descs.core_joules_total, process.dyn_energy_in_core, process.idle_energy_in_core),
        (descs.uncore_joules_total, process.dyn_energy_in_uncore, process.idle_energy_in_uncore),
        (descs.dram_joules_total, process.dyn_energy_in_dram, process.idle_energy_in_dram),
        (descs.package_joules_total, process.dyn_energy_in_pkg, process.idle_energy_in_pkg),
        (
            descs.other_components_joules_total,
            process.dyn_energy_in_other,
            process.idle_energy_in_other,
        ),
    )
    for desc, dyn, idle in energies:
        yield new_const_metric(desc, counter, _joules(dyn.aggr), *ident, DYNAMIC)
        yield new_const_metric(desc, counter, _joules(idle.aggr), *ident, IDLE)

    if settings.enabled_gpu:
        yield new_const_metric(
            descs.gpu_joules_total, counter, _joules(process.dyn_energy_in_gpu.aggr), *ident, DYNAMIC
        )
        yield new_const_metric(
            descs.gpu_joules_total, counter, _joules(process.idle_energy_in_gpu.aggr), *ident, IDLE
        )

    dynamic_total = (
        _joules(process.dyn_energy_in_pkg.aggr)
        + _joules(process.dyn_energy_in_uncore.aggr)
        + _joules(process.dyn_energy_in_dram.aggr)
        + _joules(process.dyn_energy_in_gpu.aggr)
        + _joules(process.dyn_energy_in_other.aggr)
    )
    idle_total = (
        _joules(process.idle_energy_in_pkg.aggr)
        + _joules(process.idle_energy_in_uncore.aggr)
        + _joules(process.idle_energy_in_dram.aggr)
        + _joules(process.idle_energy_in_gpu.aggr)
        + _joules(process.idle_energy_in_other.aggr)
    )
    yield new_const_metric(descs.joules_total, counter, dynamic_total, *ident, DYNAMIC)
    yield new_const_metric(descs.joules_total, counter, idle_total, *ident, IDLE)

    if hardware_counters_enabled:
        counters = (
            (descs.cpu_cycles_total, CPU_CYCLE_LABEL),
            (descs.cpu_instr_total, CPU_INSTRUCTION_LABEL),
            (descs.cache_miss_total, CACHE_MISS_LABEL),
        )
        for desc, label in counters:
            stat = process.counter_stats.get(label)
            if stat is not None:
                yield new_const_metric(desc, counter, float(stat.aggr), *ident)

    if settings.expose_irq_counter_metrics:
        irqs = (
            (descs.net_tx_irq_total, IRQ_NET_TX),
            (descs.net_rx_irq_total, IRQ_NET_RX),
            (descs.block_irq_total, IRQ_BLOCK),
        )
        for desc, key in irqs:
            yield new_const_metric(desc, counter, float(process.soft_irq_count[key].aggr), *ident)