"""Access to the kubelet pod list and resource metrics endpoints."""

from __future__ import annotations

import json
import logging
import os
import re
import ssl
import threading
import urllib.error
import urllib.request
from collections.abc import Iterable, Mapping
from pathlib import Path

from . import config

log = logging.getLogger(__name__)

SA_PATH = "/var/run/secrets/kubernetes.io/serviceaccount/token"
NODE_ENV = "NODE_IP"
KUBELET_PORT_ENV = "KUBELET_PORT"

SYSTEM_PROCESS_NAME = "system_processes"
SYSTEM_PROCESS_NAMESPACE = "system"

NODE_CPU_USAGE_METRIC = config.KUBELET_NODE_CPU
NODE_MEM_USAGE_METRIC = config.KUBELET_NODE_MEMORY
CONTAINER_CPU_USAGE_METRIC = config.KUBELET_CONTAINER_CPU
CONTAINER_MEM_USAGE_METRIC = config.KUBELET_CONTAINER_MEMORY

POD_NAME_TAG = "pod"
CONTAINER_NAME_TAG = "container"
NAMESPACE_TAG = "namespace"


def _kubelet_base_url() -> str:
    node = os.environ.get(NODE_ENV) or "localhost"
    port = os.environ.get(KUBELET_PORT_ENV) or "10250"
    return f"https://{node}:{port}"


POD_URL = _kubelet_base_url() + "/pods"
METRICS_URL = _kubelet_base_url() + "/metrics/resource"

_METRIC_TYPES = {"counter", "gauge", "histogram", "summary", "untyped"}
_NAME_RE = re.compile(r"[a-zA-Z_:][a-zA-Z0-9_:]*")
_LABEL_RE = re.compile(r'\s*([a-zA-Z_][a-zA-Z0-9_]*)\s*=\s*"((?:[^"\\]|\\.)*)"\s*(,)?')
_CLOSE_RE = re.compile(r"\s*\}")
_ESCAPE_RE = re.compile(r"\\(.)")


class MetricsParseError(ValueError):
    """The metrics text could not be parsed."""


def http_get(url: str):
    """GET ``url`` with the service account bearer token.

    Returns the response, whatever its status; raises ``OSError`` when the
    token cannot be read and ``ConnectionError`` when no response arrives.
    """
    try:
        token = Path(SA_PATH).read_text().rstrip()
    except OSError as exc:
        raise OSError(f"failed to read from {SA_PATH!r}: {exc}") from exc
    request = urllib.request.Request(
        url, method="GET", headers={"Authorization": f"Bearer {token}"}
    )
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    try:
        return urllib.request.urlopen(request, context=context)
    except urllib.error.HTTPError as exc:
        return exc
    except OSError as exc:
        raise ConnectionError(f"failed to get response from {url!r}: {exc}") from exc


def _unescape(value: str) -> str:
    return _ESCAPE_RE.sub(lambda m: "\n" if m[1] == "n" else m[1], value)


def _parse_sample(line: str, lineno: int) -> tuple[str, dict[str, str], float]:
    match = _NAME_RE.match(line)
    if match is None:
        raise MetricsParseError(f"line {lineno}: invalid metric name in {line!r}")
    name = match[0]
    pos = match.end()
    labels: dict[str, str] = {}
    if pos < len(line) and line[pos] == "{":
        pos += 1
        while True:
            close = _CLOSE_RE.match(line, pos)
            if close:
                pos = close.end()
                break
            label = _LABEL_RE.match(line, pos)
            if label is None:
                raise MetricsParseError(f"line {lineno}: invalid label in {line!r}")
            labels[label[1]] = _unescape(label[2])
            pos = label.end()
            if label[3] is None:
                close = _CLOSE_RE.match(line, pos)
                if close is None:
                    raise MetricsParseError(f"line {lineno}: unclosed labels in {line!r}")
                pos = close.end()
                break
    fields = line[pos:].split()
    if not 1 <= len(fields) <= 2:
        raise MetricsParseError(f"line {lineno}: expected value and optional timestamp")
    try:
        value = float(fields[0])
    except ValueError as exc:
        raise MetricsParseError(f"line {lineno}: invalid value {fields[0]!r}") from exc
    if len(fields) == 2:
        try:
            int(fields[1])
        except ValueError as exc:
            raise MetricsParseError(f"line {lineno}: invalid timestamp {fields[1]!r}") from exc
    return name, labels, value


def _parse_families(lines: Iterable) -> dict[str, tuple[str, list[tuple[dict[str, str], float]]]]:
    types: dict[str, str] = {}
    samples: dict[str, list[tuple[dict[str, str], float]]] = {}
    for lineno, raw in enumerate(lines, 1):
        line = raw.decode("utf-8", "replace") if isinstance(raw, bytes) else raw
        line = line.strip()
        if not line:
            continue
        if line.startswith("#"):
            parts = line[1:].split(None, 3)
            if parts and parts[0] == "TYPE":
                if len(parts) < 3:
                    raise MetricsParseError(f"line {lineno}: incomplete TYPE line")
                name, kind = parts[1], parts[2].lower()
                if kind not in _METRIC_TYPES:
                    raise MetricsParseError(f"line {lineno}: unknown metric type {kind!r}")
                if name in types:
                    raise MetricsParseError(f"line {lineno}: second TYPE line for {name}")
                if name in samples:
                    raise MetricsParseError(f"line {lineno}: TYPE for {name} after samples")
                types[name] = kind
            continue
        name, labels, value = _parse_sample(line, lineno)
        samples.setdefault(name, []).append((labels, value))
    return {name: (types.get(name, "untyped"), entries) for name, entries in samples.items()}


def parse_labels(labels) -> tuple[str, str, str]:
    """Return ``(namespace, pod, container)`` from label pairs or a mapping."""
    pairs = labels.items() if isinstance(labels, Mapping) else labels
    namespace = pod = container = ""
    for name, value in pairs:
        if name == POD_NAME_TAG:
            pod = value
        if name == NAMESPACE_TAG:
            namespace = value
        if name == CONTAINER_NAME_TAG:
            container = value
    return namespace, pod, container


def parse_metrics(stream) -> tuple[dict[str, float], dict[str, float]]:
    """Parse kubelet resource metrics into per-container CPU and memory.

    Keys are ``namespace/pod/container``; the remainder of the node usage is
    attributed to the system processes container.
    """
    lines = stream.splitlines() if isinstance(stream, (str, bytes)) else stream
    try:
        families = _parse_families(lines)
    except MetricsParseError as exc:
        raise MetricsParseError(f"failed to parse: {exc}") from exc

    container_cpu: dict[str, float] = {}
    container_mem: dict[str, float] = {}
    node_cpu = node_mem = 0.0
    total_cpu = total_mem = 0.0
    for name, (kind, entries) in families.items():
        for labels, raw_value in entries:
            value = raw_value if kind in ("counter", "gauge") else 0.0
            if name == NODE_CPU_USAGE_METRIC:
                node_cpu = value
            elif name == NODE_MEM_USAGE_METRIC:
                node_mem = value
            elif name == CONTAINER_CPU_USAGE_METRIC:
                namespace, pod, container = parse_labels(labels)
                container_cpu[f"{namespace}/{pod}/{container}"] = value
                total_cpu += value
            elif name == CONTAINER_MEM_USAGE_METRIC:
                namespace, pod, container = parse_labels(labels)
                container_mem[f"{namespace}/{pod}/{container}"] = value
                total_mem += value

    system_container = f"{SYSTEM_PROCESS_NAMESPACE}/{SYSTEM_PROCESS_NAME}"
    container_cpu[system_container] = node_cpu - total_cpu
    container_mem[system_container] = node_mem - total_mem
    return container_cpu, container_mem


class KubeletPodLister:
    """Reads pods and resource metrics from the local kubelet."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._available: list[str] | None = None

    def list_pods(self) -> list[dict]:
        """Return the pod objects the kubelet reports."""
        try:
            response = http_get(POD_URL)
        except OSError as exc:
            raise ConnectionError(f"failed to get response: {exc}") from exc
        with response:
            try:
                body = response.read()
            except OSError as exc:
                raise ConnectionError(f"failed to read response body: {exc}") from exc
        try:
            pod_list = json.loads(body)
        except ValueError as exc:
            raise ValueError(f"failed to parse response body: {exc}") from exc
        if not isinstance(pod_list, dict):
            raise ValueError("failed to parse response body: expected a JSON object")
        return list(pod_list.get("items") or [])

    def list_metrics(self) -> tuple[dict[str, float], dict[str, float]]:
        """Return per-container CPU and memory usage from the kubelet."""
        try:
            response = http_get(METRICS_URL)
        except OSError as exc:
            raise ConnectionError(f"failed to get response: {exc}") from exc
        with response:
            text = response.read().decode("utf-8", "replace")
        return parse_metrics(text)

    def available_metrics(self) -> list[str]:
        """Return the container metric names if the kubelet answers; probed once."""
        with self._lock:
            if self._available is None:
                self._available = self._probe()
            return list(self._available)

    @staticmethod
    def _probe() -> list[str]:
        try:
            response = http_get(METRICS_URL)
        except OSError as exc:
            log.debug("kubelet metrics unavailable: %s", exc)
            return []
        with response:
            if response.status == 200:
                return [CONTAINER_CPU_USAGE_METRIC, CONTAINER_MEM_USAGE_METRIC]
        return []