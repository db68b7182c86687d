"""Settings, kubelet access, pod tracking and Prometheus text exposition for energy metrics."""

__version__ = "0.1.0"

__all__ = [
    "config",
    "kubelet",
    "descriptors",
    "watcher",
    "node_exposition",
    "container_exposition",
    "process_exposition",
    "prometheus_collector",
]