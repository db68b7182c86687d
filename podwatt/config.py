"""Runtime settings read from a configuration directory or the environment."""

from __future__ import annotations

import logging
import os
import platform
import re
import stat
from dataclasses import dataclass, field
from pathlib import Path

log = logging.getLogger(__name__)

# Each setting may be given as a file named after its key inside this directory.
CONFIG_DIR = "/etc/kepler/kepler.config"

# If this file is present, cgroups v2 is enabled on the node.
CGROUP_V2_PATH = "/sys/fs/cgroup/cgroup.controllers"
CGROUP_ID_MIN_KERNEL_VERSION = 4.18

DEFAULT_METRIC_VALUE = ""
DEFAULT_NAMESPACE = "kepler"
DEFAULT_MODEL_SERVER_PORT = "8100"
DEFAULT_MODEL_REQUEST_PATH = "/model"
# Maximum number of IRQs to be monitored.
MAX_IRQ = 10

METRIC_PATH_KEY = "METRIC_PATH"
BIND_ADDRESS_KEY = "BIND_ADDRESS"

# Model items.
NODE_TOTAL_KEY = "NODE_TOTAL"
NODE_COMPONENTS_KEY = "NODE_COMPONENTS"
CONTAINER_TOTAL_KEY = "CONTAINER_TOTAL"
CONTAINER_COMPONENTS_KEY = "CONTAINER_COMPONENTS"
PROCESS_TOTAL_KEY = "PROCESS_TOTAL"
PROCESS_COMPONENTS_KEY = "PROCESS_COMPONENTS"

# Model attributes.
ESTIMATOR_ENABLED_KEY = "ESTIMATOR"
INIT_MODEL_URL_KEY = "INIT_URL"
FIXED_MODEL_NAME_KEY = "MODEL"
MODEL_FILTERS_KEY = "FILTERS"

# Hardware counters.
CPU_CYCLE = "cpu_cycles"
CPU_REF_CYCLE = "cpu_ref_cycles"
CPU_INSTRUCTION = "cpu_instr"
CACHE_MISS = "cache_miss"

# BPF metrics.
CPU_TIME = "cpu_time"
IRQ_NET_TX_LABEL = "irq_net_tx"
IRQ_NET_RX_LABEL = "irq_net_rx"
IRQ_BLOCK_LABEL = "irq_block"

# cgroup metrics.
CGROUPFS_MEMORY = "cgroupfs_memory_usage_bytes"
CGROUPFS_KERNEL_MEMORY = "cgroupfs_kernel_memory_usage_bytes"
CGROUPFS_TCP_MEMORY = "cgroupfs_tcp_memory_usage_bytes"
CGROUPFS_CPU = "cgroupfs_cpu_usage_us"
CGROUPFS_SYSTEM_CPU = "cgroupfs_system_cpu_usage_us"
CGROUPFS_USER_CPU = "cgroupfs_user_cpu_usage_us"
CGROUPFS_READ_IO = "cgroupfs_ioread_bytes"
CGROUPFS_WRITE_IO = "cgroupfs_iowrite_bytes"
BYTES_READ_IO = "bytes_read"
BYTES_WRITE_IO = "bytes_writes"
BLOCK_DEVICES_IO = "block_devices_used"

# kubelet metrics.
KUBELET_CONTAINER_CPU = "container_cpu_usage_seconds_total"
KUBELET_CONTAINER_MEMORY = "container_memory_working_set_bytes"
KUBELET_NODE_CPU = "node_cpu_usage_seconds_total"
KUBELET_NODE_MEMORY = "node_memory_working_set_bytes"

# System.
CPU_FREQUENCY = "avg_cpu_frequency"

# GPU.
GPU_SM_UTILIZATION = "gpu_sm_util"
GPU_MEM_UTILIZATION = "gpu_mem_util"

_VERSION_RE = re.compile(r"^(\d+)\.(\d+).")


class SystemInfo:
    """Access to the facts about the running host that settings depend on."""

    def release(self) -> str:
        """Return the kernel release string."""
        return platform.release()

    def cgroup_v2_file(self) -> str:
        """Return the path whose presence signals cgroup v2."""
        return CGROUP_V2_PATH


def get_config(key: str, default: str) -> str:
    """Read a setting from the config directory, then the environment."""
    try:
        raw = (Path(CONFIG_DIR) / key).read_bytes()
    except OSError:
        return os.environ.get(key, default)
    return raw.decode("utf-8", "surrogateescape")


def get_bool_config(key: str, default: bool) -> bool:
    """Read a boolean setting; only the text ``true`` (any case) is true."""
    return get_config(key, "true" if default else "false").lower() == "true"


def model_server_request_endpoint() -> str:
    """Build the model server request endpoint from the settings."""
    namespace = get_config("KEPLER_NAMESPACE", DEFAULT_NAMESPACE)
    service = f"kepler-model-server.{namespace}.svc.cluster.local"
    url = get_config("MODEL_SERVER_URL", service)
    if url == service:
        port = get_config("MODEL_SERVER_PORT", DEFAULT_MODEL_SERVER_PORT)
        port = port.removesuffix("\n")  # kustomized manifests append a newline
        url = f"http://{url}:{port}"
    return url + get_config("MODEL_SERVER_MODEL_REQ_PATH", DEFAULT_MODEL_REQUEST_PATH)


def model_config_map() -> dict[str, str]:
    """Parse MODEL_CONFIG into a mapping of ``KEY=VALUE`` entries."""
    entries: dict[str, str] = {}
    for line in get_config("MODEL_CONFIG", "").split():
        parts = line.split("=")
        if len(parts) == 2:
            entries[parts[0]] = parts[1]
    return entries


def model_config_key(model_item: str, attribute: str) -> str:
    """Join a model item and an attribute into a config key."""
    return f"{model_item}_{attribute}"


def kernel_version(system: SystemInfo | None = None) -> float:
    """Return the kernel version as ``major.minor``, or -1 if unknown."""
    system = system or SystemInfo()
    try:
        release = system.release()
    except OSError:
        log.debug("failed to read the kernel release")
        return -1.0
    release = release.split("\0", 1)[0]
    match = _VERSION_RE.match(release)
    if match is None:
        log.info(
            "got invalid release version %r (expected format '4.3-1 or 4.3.2-1')",
            release,
        )
        return -1.0
    return float(f"{int(match[1])}.{int(match[2])}")


def _path_present(path: str) -> bool:
    """Tell whether ``path`` exists; errors other than absence count as present."""
    try:
        os.stat(path)
    except FileNotFoundError:
        return False
    except OSError:
        return True
    return True


def is_cgroup_v2(system: SystemInfo | None = None) -> bool:
    """Tell whether the host uses cgroup v2."""
    system = system or SystemInfo()
    return _path_present(system.cgroup_v2_file())


def cgroup_version(system: SystemInfo | None = None) -> int:
    """Return the cgroup version of the host: 1 or 2."""
    system = system or SystemInfo()
    marker = system.cgroup_v2_file()
    version = 2 if _path_present(marker) else 1
    log.debug("cgroup version %d (marker file %s)", version, marker)
    return version


@dataclass
class ModelConfig:
    """Model selection for one model item."""

    use_estimator_sidecar: bool = False
    selected_model: str = ""
    select_filter: str = ""
    init_model_url: str = ""


@dataclass
class Settings:
    """All runtime settings of the exporter."""

    kepler_namespace: str = DEFAULT_NAMESPACE
    enabled_msr: bool = False
    enabled_bpf_batch_delete: bool = True
    kernel_version: float = 0.0
    enabled_ebpf_cgroup_id: bool = True
    enabled_gpu: bool = False
    enable_process_metrics: bool = False
    expose_hardware_counter_metrics: bool = True
    expose_cgroup_metrics: bool = True
    expose_kubelet_metrics: bool = True
    expose_irq_counter_metrics: bool = True
    cpu_arch_override: str = ""
    estimator_model: str = DEFAULT_METRIC_VALUE
    estimator_select_filter: str = DEFAULT_METRIC_VALUE
    core_usage_metric: str = CPU_INSTRUCTION
    dram_usage_metric: str = CACHE_MISS
    uncore_usage_metric: str = DEFAULT_METRIC_VALUE
    gpu_usage_metric: str = GPU_SM_UTILIZATION
    general_usage_metric: str = CPU_INSTRUCTION
    model_server_enable: bool = False
    model_server_endpoint: str = (
        "http://kepler-model-server.kepler.svc.cluster.local:8100/model"
    )
    kernel_source_dirs: list[str] = field(default_factory=list)
    model_config_values: dict[str, str] = field(default_factory=dict)
    kube_config: str = ""
    enable_api_server: bool = False

    def set_enabled_ebpf_cgroup_id(self, enabled: bool, system: SystemInfo | None = None) -> None:
        """Collect cgroup ids in BPF only on cgroup v2 hosts with kernel >= 4.18."""
        enabled = enabled and self.enabled_ebpf_cgroup_id
        log.info("using cgroup ID in the BPF program: %s", enabled)
        self.kernel_version = kernel_version(system)
        log.info("kernel version: %s", self.kernel_version)
        self.enabled_ebpf_cgroup_id = (
            enabled
            and self.kernel_version >= CGROUP_ID_MIN_KERNEL_VERSION
            and is_cgroup_v2(system)
        )

    def set_enabled_hardware_counter_metrics(self, enabled: bool) -> None:
        """Disable hardware counter metrics if any source disables them."""
        self.expose_hardware_counter_metrics = enabled and self.expose_hardware_counter_metrics

    def set_enabled_gpu(self, enabled: bool) -> None:
        """Enable GPU metrics if any source enables them."""
        self.enabled_gpu = enabled or self.enabled_gpu

    def set_estimator_config(self, model_name: str, select_filter: str) -> None:
        self.estimator_model = model_name
        self.estimator_select_filter = select_filter

    def set_kernel_source_dir(self, directory: str) -> None:
        """Record every sub-directory of ``directory`` as a kernel source dir."""
        info = os.stat(directory)
        if not stat.S_ISDIR(info.st_mode):
            raise NotADirectoryError(
                f"expected kernel root path {directory} to be a directory"
            )
        log.info("kernel source dir is set to %s", directory)
        try:
            entries = sorted(os.scandir(directory), key=lambda entry: entry.name)
        except OSError as exc:
            log.warning("failed to read kernel source dir: %s", exc)
            entries = []
        self.kernel_source_dirs.extend(
            os.path.join(directory, entry.name)
            for entry in entries
            if entry.is_dir(follow_symlinks=False)
        )

    def metric_path(self, default: str) -> str:
        return get_config(METRIC_PATH_KEY, default)

    def bind_address(self, default: str) -> str:
        return get_config(BIND_ADDRESS_KEY, default)

    def init_model_config_map(self) -> None:
        """Load the model configuration entries from MODEL_CONFIG."""
        self.model_config_values = model_config_map()

    def model_config(self, model_item: str) -> ModelConfig:
        """Return the model selection for ``model_item``."""
        values = self.model_config_values

        def lookup(attribute: str) -> str:
            return values.get(model_config_key(model_item, attribute), "")

        return ModelConfig(
            use_estimator_sidecar=lookup(ESTIMATOR_ENABLED_KEY).lower() == "true",
            selected_model=lookup(FIXED_MODEL_NAME_KEY),
            select_filter=lookup(MODEL_FILTERS_KEY),
            init_model_url=lookup(INIT_MODEL_URL_KEY),
        )


def load_settings() -> Settings:
    """Build settings from the config directory and the environment."""
    settings = Settings(
        kepler_namespace=get_config("KEPLER_NAMESPACE", DEFAULT_NAMESPACE),
        enabled_ebpf_cgroup_id=get_bool_config("ENABLE_EBPF_CGROUPID", True),
        enabled_gpu=get_bool_config("ENABLE_GPU", False),
        enable_process_metrics=get_bool_config("ENABLE_PROCESS_METRICS", False),
        expose_hardware_counter_metrics=get_bool_config("EXPOSE_HW_COUNTER_METRICS", True),
        expose_cgroup_metrics=get_bool_config("EXPOSE_CGROUP_METRICS", True),
        expose_kubelet_metrics=get_bool_config("EXPOSE_KUBELET_METRICS", True),
        expose_irq_counter_metrics=get_bool_config("EXPOSE_IRQ_COUNTER_METRICS", True),
        cpu_arch_override=get_config("CPU_ARCH_OVERRIDE", ""),
        estimator_model=get_config("ESTIMATOR_MODEL", DEFAULT_METRIC_VALUE),
        estimator_select_filter=get_config("ESTIMATOR_SELECT_FILTER", DEFAULT_METRIC_VALUE),
        core_usage_metric=get_config("CORE_USAGE_METRIC", CPU_INSTRUCTION),
        dram_usage_metric=get_config("DRAM_USAGE_METRIC", CACHE_MISS),
        uncore_usage_metric=get_config("UNCORE_USAGE_METRIC", DEFAULT_METRIC_VALUE),
        gpu_usage_metric=get_config("GPU_USAGE_METRIC", GPU_SM_UTILIZATION),
        general_usage_metric=get_config("GENERAL_USAGE_METRIC", CPU_INSTRUCTION),
        model_server_enable=get_bool_config("MODEL_SERVER_ENABLE", False),
        model_server_endpoint=model_server_request_endpoint(),
    )
    log.debug(
        "ENABLE_EBPF_CGROUPID=%s ENABLE_GPU=%s ENABLE_PROCESS_METRICS=%s "
        "EXPOSE_HW_COUNTER_METRICS=%s EXPOSE_CGROUP_METRICS=%s "
        "EXPOSE_KUBELET_METRICS=%s EXPOSE_IRQ_COUNTER_METRICS=%s",
        settings.enabled_ebpf_cgroup_id,
        settings.enabled_gpu,
        settings.enable_process_metrics,
        settings.expose_hardware_counter_metrics,
        settings.expose_cgroup_metrics,
        settings.expose_kubelet_metrics,
        settings.expose_irq_counter_metrics,
    )
    return settings