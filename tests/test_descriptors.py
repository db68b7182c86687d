import math

import pytest

from podwatt.descriptors import (
    COMMAND_LEN_LIMIT,
    NODE_METRICS_STAT_LABELS,
    POD_ENERGY_STAT_LABELS,
    ConstMetric,
    ContainerDescriptors,
    Desc,
    NodeDescriptors,
    PodDescriptors,
    ProcessDescriptors,
    ValueType,
    build_fq_name,
    new_const_metric,
    render_text,
    truncate_command,
)


@pytest.mark.parametrize(
    "parts, expected",
    [
        (("kepler", "node", "core_joules_total"), "kepler_node_core_joules_total"),
        (("kepler", "", "x"), "kepler_x"),
        (("", "node", "x"), "node_x"),
        (("", "", "x"), "x"),
        (("kepler", "node", ""), ""),
    ],
)
def test_build_fq_name(parts, expected):
    assert build_fq_name(*parts) == expected


def test_node_descriptor_names_and_labels():
    descs = NodeDescriptors()
    assert descs.package_joules_total.fq_name == "kepler_node_package_joules_total"
    assert descs.package_joules_total.variable_labels == ("package", "instance", "source", "mode")
    assert descs.platform_joules_total.fq_name == "kepler_node_platform_joules_total"
    assert descs.info.fq_name == "kepler_node_nodeInfo"
    assert descs.metrics_stat.variable_labels == NODE_METRICS_STAT_LABELS
    assert descs.package_millijoules_total.fq_name == "kepler_node_package_energy_millijoule"


def test_container_pod_and_process_descriptor_names():
    assert ContainerDescriptors().package_joules_total.fq_name == "kepler_container_package_joules_total"
    assert ContainerDescriptors().kubelet_cpu_usage_total.fq_name == "kepler_container_kubelet_cpu_usage_total"
    assert PodDescriptors().energy_stat.variable_labels == POD_ENERGY_STAT_LABELS
    assert PodDescriptors().energy_stat.fq_name == "kepler_pod_energy_stat"
    assert ProcessDescriptors().cpu_time.fq_name == "kepler_process_cpu_cpu_time_us"
    assert ProcessDescriptors().joules_total.variable_labels == ("pid", "command", "mode")


def test_all_descriptor_names_are_distinct_and_prefixed():
    names = []
    for group in (NodeDescriptors(), ContainerDescriptors(), PodDescriptors(), ProcessDescriptors()):
        names.extend(desc.fq_name for desc in vars(group).values())
    assert len(names) == len(set(names))
    assert all(name.startswith("kepler_") for name in names)


def test_desc_rejects_invalid_metric_name():
    with pytest.raises(ValueError):
        Desc("1bad-name", "help", ())


def test_desc_rejects_duplicate_labels():
    with pytest.raises(ValueError):
        Desc("good_name", "help", ("a", "a"))


def test_new_const_metric_checks_label_count():
    desc = Desc("m_total", "help", ("a", "b"))
    with pytest.raises(ValueError):
        new_const_metric(desc, ValueType.COUNTER, 1, "only-one")


def test_new_const_metric_labels():
    desc = Desc("m_total", "help", ("a", "b"))
    metric = new_const_metric(desc, ValueType.GAUGE, 3, "x", "y")
    assert isinstance(metric, ConstMetric)
    assert metric.labels == {"a": "x", "b": "y"}
    assert metric.value == 3.0
    assert metric.value_type is ValueType.GAUGE


def test_truncate_command():
    assert truncate_command("short") == "short"
    long_command = "abcdefghijklmnop"
    assert truncate_command(long_command) == long_command[:COMMAND_LEN_LIMIT]
    assert len(truncate_command(long_command)) == COMMAND_LEN_LIMIT


def test_render_text_node_package_sample():
    descs = NodeDescriptors()
    metric = new_const_metric(
        descs.package_joules_total, ValueType.COUNTER, 0.005, "0", "node1", "rapl", "dynamic"
    )
    text = render_text([metric])
    lines = text.splitlines()
    assert lines[0] == "# HELP kepler_node_package_joules_total Aggregated RAPL value in package (socket) in joules"
    assert lines[1] == "# TYPE kepler_node_package_joules_total counter"
    assert lines[2] == (
        'kepler_node_package_joules_total{instance="node1",mode="dynamic",package="0",source="rapl"} 0.005'
    )


@pytest.mark.parametrize(
    "value, expected",
    [(1e6, "1e+06"), (100000.0, "100000"), (10.0, "10"), (0.01, "0.01"), (1e-05, "1e-05")],
)
def test_render_text_value_format(value, expected):
    desc = Desc("v", "help", ())
    text = render_text([new_const_metric(desc, ValueType.GAUGE, value)])
    assert text.splitlines()[-1] == f"v {expected}"


def test_render_text_special_values():
    desc = Desc("v", "help", ("k",))
    text = render_text(
        [
            new_const_metric(desc, ValueType.GAUGE, math.inf, "a"),
            new_const_metric(desc, ValueType.GAUGE, math.nan, "b"),
            new_const_metric(desc, ValueType.GAUGE, 0, "c"),
        ]
    )
    assert text.splitlines()[2:] == ['v{k="a"} +Inf', 'v{k="b"} NaN', 'v{k="c"} 0']


def test_render_text_sorts_families_and_samples():
    first = Desc("b_metric", "help b", ("k",))
    second = Desc("a_metric", "help a", ())
    text = render_text(
        [
            new_const_metric(first, ValueType.COUNTER, 2, "z"),
            new_const_metric(first, ValueType.COUNTER, 1, "a"),
            new_const_metric(second, ValueType.GAUGE, 5),
        ]
    )
    samples = [line for line in text.splitlines() if not line.startswith("#")]
    assert samples == ["a_metric 5", 'b_metric{k="a"} 1', 'b_metric{k="z"} 2']


def test_render_text_escapes_label_values():
    desc = Desc("v", "help", ("k",))
    text = render_text([new_const_metric(desc, ValueType.GAUGE, 1, 'say "hi"\\')])
    assert text.splitlines()[-1] == 'v{k="say \\"hi\\"\\\\"} 1'


def test_render_text_rejects_duplicate_samples():
    desc = Desc("v", "help", ("k",))
    with pytest.raises(ValueError):
        render_text(
            [
                new_const_metric(desc, ValueType.GAUGE, 1, "a"),
                new_const_metric(desc, ValueType.GAUGE, 2, "a"),
            ]
        )


def test_render_text_rejects_inconsistent_types():
    desc = Desc("v", "help", ("k",))
    with pytest.raises(ValueError):
        render_text(
            [
                new_const_metric(desc, ValueType.GAUGE, 1, "a"),
                new_const_metric(desc, ValueType.COUNTER, 2, "b"),
            ]
        )


def test_render_text_empty():
    assert render_text([]) == ""