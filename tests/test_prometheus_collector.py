import re
from dataclasses import dataclass, field

import pytest

from podwatt import config
from podwatt.config import Settings
from podwatt.prometheus_collector import PrometheusCollector

NODE_ENERGY_METRIC = "kepler_node_platform_joules_total"
NODE_PACKAGE_ENERGY_METRIC = "kepler_node_package_joules_total"
CONTAINER_CPU_CORE_ENERGY_METRIC = "kepler_container_package_joules_total"

_ENERGY_FIELDS = [
    f"{mode}_energy_in_{component}"
    for mode in ("dyn", "idle")
    for component in ("core", "uncore", "dram", "pkg", "other", "gpu")
]


@dataclass
class Aggr:
    aggr: float = 0


@dataclass
class Delta:
    delta: int = 0


@dataclass
class EnergyStats:
    stat: dict = field(default_factory=dict)

    def sum_all_delta_values(self):
        return sum(d.delta for d in self.stat.values())


@dataclass
class CgroupStat:
    total: float = 0

    def sum_all_aggr_values(self):
        return self.total


class FakeNode:
    def __init__(self, dyn=None, idle=None, packages=("0",)):
        self.cpu_frequency = {}
        self.resource_usage = {}
        for name in ("pkg", "core", "dram", "uncore"):
            setattr(self, f"total_energy_in_{name}", EnergyStats({p: Delta(0) for p in packages}))
        self.total_energy_in_gpu = EnergyStats()
        self.total_energy_in_platform = EnergyStats({"sensor0": Delta(0)})
        self.dyn = dyn or {}
        self.idle = idle or {}

    def aggr_dyn_energy_per_id(self, component, ident):
        return self.dyn.get((component, ident), 0)

    def aggr_idle_energy_per_id(self, component, ident):
        return self.idle.get((component, ident), 0)

    def sum_aggr_dyn_energy_from_all_sources(self, component):
        return sum(v for (c, _), v in self.dyn.items() if c == component)

    def sum_aggr_idle_energy_from_all_sources(self, component):
        return sum(v for (c, _), v in self.idle.items() if c == component)


class FakeContainer:
    def __init__(self, container_name, pod_name, namespace, container_id, command="", **values):
        self.container_id = container_id
        self.pod_name = pod_name
        self.container_name = container_name
        self.namespace = namespace
        self.command = command
        self.cpu_time = Aggr(values.get("cpu_time", 0))
        for name in _ENERGY_FIELDS:
            setattr(self, name, Aggr(values.get(name, 0)))
        self.counter_stats = {config.CPU_INSTRUCTION: Aggr(100)}
        self.cgroup_stat_map = {
            key: CgroupStat(11)
            for key in (
                config.CGROUPFS_CPU,
                config.CGROUPFS_MEMORY,
                config.CGROUPFS_SYSTEM_CPU,
                config.CGROUPFS_USER_CPU,
            )
        }
        self.kubelet_stats = {
            config.KUBELET_CONTAINER_CPU: Aggr(0),
            config.KUBELET_CONTAINER_MEMORY: Aggr(0),
        }
        self.soft_irq_count = {
            config.IRQ_NET_TX_LABEL: Aggr(0),
            config.IRQ_NET_RX_LABEL: Aggr(0),
            config.IRQ_BLOCK_LABEL: Aggr(0),
        }

    def to_prometheus_value(self, label):
        return "0"

    def sum_all_dyn_delta_values(self):
        return 0


class FakeProcess:
    def __init__(self, command=""):
        self.command = command
        self.cpu_time = Aggr(0)
        for name in _ENERGY_FIELDS:
            setattr(self, name, Aggr(0))
        self.counter_stats = {}
        self.soft_irq_count = {
            config.IRQ_NET_TX_LABEL: Aggr(0),
            config.IRQ_NET_RX_LABEL: Aggr(0),
            config.IRQ_BLOCK_LABEL: Aggr(0),
        }


def convert_prom_to_value(body, metric):
    match = re.search(rf"{metric}{{[^{{}}]*}}.*", body)
    assert match is not None
    return float(match[0].split(" ")[1])


def _mock_exporter(**kwargs):
    node = FakeNode(
        dyn={("pkg", "0"): 5, ("core", "0"): 5, ("dram", "0"): 5, ("uncore", "0"): 5,
             ("platform", "sensor0"): 10},
        idle={("pkg", "0"): 5, ("core", "0"): 5, ("dram", "0"): 5, ("uncore", "0"): 5,
              ("platform", "sensor0"): 5},
    )
    containers = {
        "containerA": FakeContainer("containerA", "podA", "test", "containerA", dyn_energy_in_pkg=3),
        "containerB": FakeContainer("containerB", "podB", "test", "containerB", dyn_energy_in_pkg=3),
    }
    return PrometheusCollector(
        node_metrics=node,
        containers_metrics=containers,
        process_metrics={},
        sample_period_sec=3.0,
        **kwargs,
    )


def test_init_and_run():
    exporter = _mock_exporter()
    exporter.describe()
    body = exporter.render()
    assert len(body) > 0
    assert convert_prom_to_value(body, NODE_PACKAGE_ENERGY_METRIC) == pytest.approx(0.005)
    assert convert_prom_to_value(body, NODE_ENERGY_METRIC) == 0.01
    assert convert_prom_to_value(body, CONTAINER_CPU_CORE_ENERGY_METRIC) == 0.003


def test_render_has_type_lines():
    body = _mock_exporter().render()
    assert "# TYPE kepler_node_nodeInfo counter\n" in body
    assert "# TYPE kepler_node_cpu_scaling_frequency_hertz" not in body


def test_describe_follows_gpu_setting():
    on = _mock_exporter(settings=Settings(enabled_gpu=True))
    off = _mock_exporter(settings=Settings(enabled_gpu=False))
    assert on.node_descs.gpu_joules_total in on.describe()
    assert on.process_descs.gpu_joules_total in on.describe()
    assert off.node_descs.gpu_joules_total not in off.describe()
    assert off.container_descs.gpu_joules_total not in off.describe()


def test_describe_records_cgroup_availability_and_collect_uses_it():
    with_cgroup = _mock_exporter(available_cgroup_metrics=[config.CGROUPFS_CPU])
    descs = with_cgroup.describe()
    assert with_cgroup.have_cgroup_metrics is True
    assert with_cgroup.container_descs.cgroup_cpu_usage_us_total in descs
    cpu = [
        m for m in with_cgroup.collect()
        if m.desc == with_cgroup.container_descs.cgroup_cpu_usage_us_total
    ]
    assert sorted(m.labels["container_id"] for m in cpu) == ["containerA", "containerB"]
    assert all(m.value == 11.0 for m in cpu)

    without = _mock_exporter()
    without.describe()
    assert without.have_cgroup_metrics is False
    assert not any(
        m.desc == without.container_descs.cgroup_cpu_usage_us_total for m in without.collect()
    )


def test_describe_records_kubelet_availability():
    exporter = _mock_exporter(available_kubelet_metrics=[config.KUBELET_CONTAINER_CPU])
    assert exporter.container_descs.kubelet_cpu_usage_total in exporter.describe()
    assert exporter.have_kubelet_metrics is True


def test_hardware_counters_need_both_flags():
    enabled = _mock_exporter(hardware_counters_enabled=True)
    assert enabled.container_descs.cpu_instr_total in enabled.describe()
    disabled = _mock_exporter(
        hardware_counters_enabled=True,
        settings=Settings(expose_hardware_counter_metrics=False),
    )
    assert disabled.container_descs.cpu_instr_total not in disabled.describe()
    assert disabled.process_descs.cpu_instr_total in disabled.describe()


def test_collect_includes_processes():
    exporter = _mock_exporter()
    exporter.process_metrics[7] = FakeProcess(command="bash")
    samples = exporter.collect()
    process_samples = [m for m in samples if m.desc == exporter.process_descs.cpu_time]
    assert [m.labels for m in process_samples] == [{"pid": "7", "command": "bash"}]
    assert "kepler_process_joules_total" in exporter.render()