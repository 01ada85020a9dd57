"""Tracking of pods running on the local node and of CNI daemon pods."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field

log = logging.getLogger(__name__)

CNI_POD_NAME = "aws-node"
NAMESPACE_SYSTEM = "kube-system"
ENV_MY_NODE_NAME = "MY_NODE_NAME"


class InformerNotSyncedError(RuntimeError):
    """Raised when pods are queried before the first sync with the API server."""

    def __init__(self) -> None:
        super().__init__("discovery: informer not synced")


@dataclass
class K8SPodInfo:
    name: str = ""
    namespace: str = ""
    container: str = ""
    ip: str = ""
    uid: str = ""


@dataclass
class Pod:
    """The parts of a pod object the controller looks at."""

    name: str
    namespace: str = ""
    node_name: str = ""
    host_network: bool = False
    pod_ip: str = ""
    uid: str = ""
    container_ids: list[str] = field(default_factory=list)


def pod_key(pod: Pod) -> str:
    """Return the namespace/name key of a pod."""
    return f"{pod.namespace}/{pod.name}" if pod.namespace else pod.name


class Controller:
    """Keeps the set of local worker pods and known CNI pods."""

    def __init__(self, node_name: str | None = None) -> None:
        self.my_node_name = (
            node_name if node_name is not None else os.environ.get(ENV_MY_NODE_NAME, "")
        )
        self._worker_pods: dict[str, K8SPodInfo] = {}
        self._cni_pods: dict[str, str] = {}
        self._lock = threading.Lock()
        self.synced = False

    def mark_synced(self) -> None:
        """Record that the pod cache has synced with the API server."""
        log.info("Synced successfully with APIServer")
        self.synced = True

    def handle_pod_update(self, key: str, pod: Pod | None) -> None:
        """Apply the current state of the pod under key; None means it is gone."""
        cni_prefix = f"{NAMESPACE_SYSTEM}/{CNI_POD_NAME}"
        if pod is None:
            log.info("Pods deleted on my node: %s", key)
            with self._lock:
                self._worker_pods.pop(key, None)
                if key.startswith(cni_prefix):
                    self._cni_pods.pop(key, None)
            return

        if not isinstance(pod, Pod):
            log.error("updated object received was not a pod: %r", pod)
            raise TypeError("received a non-pod object update")

        with self._lock:
            if self.my_node_name == pod.node_name and not pod.host_network:
                container_id = pod.container_ids[0] if pod.container_ids else ""
                info = K8SPodInfo(
                    name=pod.name,
                    namespace=pod.namespace,
                    container=container_id,
                    ip=pod.pod_ip,
                    uid=pod.uid,
                )
                self._worker_pods[key] = info
                log.info(
                    "Add/Update for Pod %s on my node, namespace = %s, IP = %s",
                    pod.name, info.namespace, info.ip,
                )
            elif key.startswith(cni_prefix):
                log.info("Add/Update for CNI pod %s", pod.name)
                self._cni_pods[pod.name] = pod.name

    def get_cni_pods(self) -> list[str]:
        """Return the names of known CNI pods."""
        with self._lock:
            pods = list(self._cni_pods)
        log.info("GetCNIPods discovered %s", pods)
        return pods

    def k8s_get_local_pod_ips(self) -> list[K8SPodInfo]:
        """Return the pods running on this node."""
        if not self.synced:
            log.info("GetLocalPods: informer not synced yet")
            raise InformerNotSyncedError()
        with self._lock:
            return list(self._worker_pods.values())