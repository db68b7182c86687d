"""Collector gathering node, container and process samples for export."""

from __future__ import annotations

import threading
from collections.abc import Iterable, Mapping
from typing import Any

from .config import Settings
from .container_exposition import container_metrics
from .descriptors import (
    ConstMetric,
    ContainerDescriptors,
    Desc,
    NodeDescriptors,
    PodDescriptors,
    ProcessDescriptors,
    render_text,
)
from .node_exposition import node_metrics
from .process_exposition import process_metrics


class PrometheusCollector:
    """Holds the metric descriptors and turns the shared metrics into samples.

    The node, container and process metrics are shared with whatever updates
    them; ``lock`` synchronises those updates with collection.
    """

    def __init__(
        self,
        node_metrics: Any = None,
        containers_metrics: Mapping[str, Any] | None = None,
        process_metrics: Mapping[int, Any] | None = None,
        sample_period_sec: float = 0.0,
        settings: Settings | None = None,
        node_name: str = "",
        cpu_architecture: str = "",
        hardware_counters_enabled: bool = False,
        available_cgroup_metrics: Iterable[str] = (),
        available_kubelet_metrics: Iterable[str] = (),
        lock: threading.Lock | None = None,
    ) -> None:
        self.node_descs = NodeDescriptors()
        self.container_descs = ContainerDescriptors()
        self.pod_descs = PodDescriptors()
        self.process_descs = ProcessDescriptors()
        self.node_metrics = node_metrics
        self.containers_metrics = {} if containers_metrics is None else containers_metrics
        self.process_metrics = {} if process_metrics is None else process_metrics
        self.sample_period_sec = float(sample_period_sec)
        self.settings = settings if settings is not None else Settings()
        self.node_name = node_name
        self.cpu_architecture = cpu_architecture
        self.hardware_counters_enabled = hardware_counters_enabled
        self.available_cgroup_metrics = list(available_cgroup_metrics)
        self.available_kubelet_metrics = list(available_kubelet_metrics)
        self.lock = lock if lock is not None else threading.Lock()
        self.have_cgroup_metrics = False
        self.have_kubelet_metrics = False

    def describe(self) -> list[Desc]:
        """Return the descriptors exported under the current settings.

        Also records whether cgroup and kubelet metrics are available.
        """
        s = self.settings
        node, cont, pod = self.node_descs, self.container_descs, self.pod_descs
        descs = [
            node.info,
            node.core_joules_total,
            node.uncore_joules_total,
            node.dram_joules_total,
            node.package_joules_total,
            node.platform_joules_total,
            node.other_components_joules_total,
        ]
        if s.enabled_gpu:
            descs.append(node.gpu_joules_total)
        descs += [node.cpu_frequency, node.package_millijoules_total, node.metrics_stat]

        descs += [
            cont.core_joules_total,
            cont.uncore_joules_total,
            cont.dram_joules_total,
            cont.package_joules_total,
            cont.other_components_joules_total,
        ]
        if s.enabled_gpu:
            descs.append(cont.gpu_joules_total)
        descs.append(cont.joules_total)

        if s.expose_hardware_counter_metrics and self.hardware_counters_enabled:
            descs += [cont.cpu_cycles_total, cont.cpu_instr_total, cont.cache_miss_total]

        if s.expose_cgroup_metrics:
            self.have_cgroup_metrics = bool(self.available_cgroup_metrics)
            if self.have_cgroup_metrics:
                descs += [
                    cont.cgroup_cpu_usage_us_total,
                    cont.cgroup_memory_usage_bytes_total,
                    cont.cgroup_system_cpu_usage_us_total,
                    cont.cgroup_user_cpu_usage_us_total,
                ]

        if s.expose_kubelet_metrics:
            self.have_kubelet_metrics = bool(self.available_kubelet_metrics)
            if self.have_kubelet_metrics:
                descs += [cont.kubelet_cpu_usage_total, cont.kubelet_memory_bytes_total]

        descs += [cont.cpu_time, pod.energy_stat]

        if s.expose_irq_counter_metrics:
            descs += [cont.net_tx_irq_total, cont.net_rx_irq_total, cont.block_irq_total]

        descs += self._describe_process()
        return descs

    def _describe_process(self) -> list[Desc]:
        s = self.settings
        proc = self.process_descs
        descs = [
            proc.core_joules_total,
            proc.uncore_joules_total,
            proc.dram_joules_total,
            proc.package_joules_total,
            proc.other_components_joules_total,
        ]
        if s.enabled_gpu:
            descs.append(proc.gpu_joules_total)
        descs.append(proc.joules_total)
        if self.hardware_counters_enabled:
            descs += [proc.cpu_cycles_total, proc.cpu_instr_total, proc.cache_miss_total]
        if s.expose_irq_counter_metrics:
            descs += [proc.net_tx_irq_total, proc.net_rx_irq_total, proc.block_irq_total]
        return descs

    def collect(self) -> list[ConstMetric]:
        """Return every current sample, holding the lock while reading."""
        with self.lock:
            samples: list[ConstMetric] = []
            if self.node_metrics is not None:
                samples.extend(
                    node_metrics(
                        self.node_metrics,
                        self.node_descs,
                        self.settings,
                        self.node_name,
                        self.cpu_architecture,
                        self.sample_period_sec,
                    )
                )
            for container in list(self.containers_metrics.values()):
                samples.extend(
                    container_metrics(
                        container,
                        self.container_descs,
                        self.settings,
                        self.hardware_counters_enabled,
                        self.have_cgroup_metrics,
                        self.have_kubelet_metrics,
                    )
                )
            for pid, process in list(self.process_metrics.items()):
                samples.extend(
                    process_metrics(
                        pid,
                        process,
                        self.process_descs,
                        self.settings,
                        self.hardware_counters_enabled,
                    )
                )
            return samples

    def render(self) -> str:
        """Return the current samples in the Prometheus text format."""
        return render_text(self.collect())