"""Keeps container identities in step with pod update and delete events."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Callable, Mapping, MutableMapping, Sequence
from dataclasses import dataclass
from typing import Any

log = logging.getLogger(__name__)

POD_RESOURCE_TYPE = "pods"

_CONTAINER_ID_PREFIX_RE = re.compile(r".*//")

_STATUS_LISTS = ("containerStatuses", "initContainerStatuses", "ephemeralContainerStatuses")


class ContainerNotStartedError(RuntimeError):
    """A container of a pod has no container ID yet."""


def parse_container_id_from_pod_status(container_id: str) -> str:
    """Strip the runtime prefix such as ``containerd://`` from a container ID."""
    return _CONTAINER_ID_PREFIX_RE.sub("", container_id)


@dataclass
class ContainerIdentity:
    """The naming information of one container."""

    container_name: str
    pod_name: str
    namespace: str
    container_id: str


ContainerFactory = Callable[[str, str, str, str], Any]


class PodWatcher:
    """Applies pod events to a shared mapping of container ID to container entry.

    Pods are given as mappings in the shape of the Kubernetes pod JSON.
    """

    def __init__(
        self,
        containers: MutableMapping[str, Any] | None = None,
        lock: threading.Lock | None = None,
        container_factory: ContainerFactory = ContainerIdentity,
        resource_kind: str = POD_RESOURCE_TYPE,
    ) -> None:
        self.containers: MutableMapping[str, Any] = {} if containers is None else containers
        self.lock = lock if lock is not None else threading.Lock()
        self.container_factory = container_factory
        self.resource_kind = resource_kind
        self.managed_pods: set[str] = set()

    @staticmethod
    def _status(pod: Mapping) -> Mapping:
        return pod.get("status") or {}

    @staticmethod
    def _metadata(pod: Mapping) -> Mapping:
        return pod.get("metadata") or {}

    def handle_update(self, pod: Any) -> None:
        """Record the containers of a pod once it reports being ready."""
        if self.resource_kind != POD_RESOURCE_TYPE:
            log.info("Watcher does not support object type %s", self.resource_kind)
            return
        if not isinstance(pod, Mapping):
            log.info("Could not convert obj: %s", self.resource_kind)
            return
        pod_id = str(self._metadata(pod).get("uid", ""))
        # Pods get many updates (labels, annotations); once all containers
        # were recorded the pod is skipped.
        if pod_id in self.managed_pods:
            return
        status = self._status(pod)
        for condition in status.get("conditions") or []:
            if condition.get("type") != "ContainersReady" and condition.get("status") != "True":
                continue
            failed = False
            with self.lock:
                for key in _STATUS_LISTS:
                    try:
                        self.fill_info(pod, status.get(key) or [])
                    except ContainerNotStartedError as exc:
                        log.debug("%s", exc)
                        failed = True
            if not failed:
                self.managed_pods.add(pod_id)

    def fill_info(self, pod: Mapping, containers: Sequence[Mapping]) -> None:
        """Create or rename the entries for ``containers`` of ``pod``.

        Every started container is recorded; afterwards
        ``ContainerNotStartedError`` is raised if one had no ID yet.
        """
        metadata = self._metadata(pod)
        pod_name = metadata.get("name", "")
        namespace = metadata.get("namespace", "")
        error: ContainerNotStartedError | None = None
        for container in containers:
            name = container.get("name", "")
            container_id = parse_container_id_from_pod_status(container.get("containerID") or "")
            if not container_id:
                error = ContainerNotStartedError(f"container {name} did not start yet")
                continue
            entry = self.containers.get(container_id)
            if entry is None:
                entry = self.container_factory(name, pod_name, namespace, container_id)
                self.containers[container_id] = entry
            entry.container_name = name
            entry.pod_name = pod_name
            entry.namespace = namespace
        if error is not None:
            raise error

    def handle_deleted(self, pod: Any) -> None:
        """Forget a deleted pod and its containers."""
        if self.resource_kind != POD_RESOURCE_TYPE:
            log.info("Watcher does not support object type %s", self.resource_kind)
            return
        if not isinstance(pod, Mapping):
            raise TypeError(f"Could not convert obj: {self.resource_kind}")
        self.managed_pods.discard(str(self._metadata(pod).get("uid", "")))
        status = self._status(pod)
        with self.lock:
            for key in _STATUS_LISTS:
                self.delete_info(status.get(key) or [])

    def delete_info(self, containers: Sequence[Mapping]) -> None:
        """Remove the entries of ``containers``."""
        for container in containers:
            container_id = parse_container_id_from_pod_status(container.get("containerID") or "")
            self.containers.pop(container_id, None)