"""Local cache of ENIConfig custom resources and the node's chosen config."""

from __future__ import annotations

import logging
import os
import threading
from dataclasses import dataclass, field
from typing import Union

log = logging.getLogger(__name__)

DEFAULT_ENI_CONFIG_ANNOTATION_DEF = "k8s.amazonaws.com/eniConfig"
DEFAULT_ENI_CONFIG_LABEL_DEF = "k8s.amazonaws.com/eniConfig"
ENI_CONFIG_DEFAULT = "default"

ENV_ENI_CONFIG_ANNOTATION_DEF = "ENI_CONFIG_ANNOTATION_DEF"
ENV_ENI_CONFIG_LABEL_DEF = "ENI_CONFIG_LABEL_DEF"
ENV_MY_NODE_NAME = "MY_NODE_NAME"


class NoENIConfigError(LookupError):
    """Raised when no ENIConfig is known for this node."""

    def __init__(self) -> None:
        super().__init__("eniconfig: eniconfig is not available")


@dataclass
class ENIConfigSpec:
    security_groups: list[str] = field(default_factory=list)
    subnet: str = ""

    def copy(self) -> ENIConfigSpec:
        return ENIConfigSpec(list(self.security_groups), self.subnet)


@dataclass
class ENIConfig:
    """An ENIConfig resource: a name and its spec."""

    name: str
    spec: ENIConfigSpec = field(default_factory=ENIConfigSpec)


@dataclass
class Node:
    """The parts of a cluster node the controller looks at."""

    name: str
    annotations: dict[str, str] = field(default_factory=dict)
    labels: dict[str, str] = field(default_factory=dict)


@dataclass
class Event:
    """A change notification for an ENIConfig or a Node."""

    object: Union[ENIConfig, Node, object]
    deleted: bool = False


@dataclass
class ENIConfigInfo:
    """A snapshot of the locally cached ENIConfigs."""

    eni: dict[str, ENIConfigSpec]
    my_eni: str
    eni_config_annotation_def: str
    eni_config_label_def: str


def _env_or_default(name: str, default: str) -> str:
    value = os.environ.get(name)
    if value:
        log.debug("Using %s %s", name, value)
        return value
    return default


def get_eni_config_annotation_def() -> str:
    """Return the node annotation key that names the ENIConfig to use."""
    return _env_or_default(ENV_ENI_CONFIG_ANNOTATION_DEF, DEFAULT_ENI_CONFIG_ANNOTATION_DEF)


def get_eni_config_label_def() -> str:
    """Return the node label key that names the ENIConfig to use."""
    return _env_or_default(ENV_ENI_CONFIG_LABEL_DEF, DEFAULT_ENI_CONFIG_LABEL_DEF)


class ENIConfigController:
    """Holds known ENIConfigs and the name of the one this node uses."""

    def __init__(self, node_name: str | None = None) -> None:
        self.my_node_name = (
            node_name if node_name is not None else os.environ.get(ENV_MY_NODE_NAME, "")
        )
        self.eni: dict[str, ENIConfigSpec] = {}
        self.my_eni = ENI_CONFIG_DEFAULT
        self.eni_config_annotation_def = get_eni_config_annotation_def()
        self.eni_config_label_def = get_eni_config_label_def()
        self.lock = threading.RLock()

    def getter(self) -> ENIConfigInfo:
        """Return a copy of the cached state."""
        with self.lock:
            return ENIConfigInfo(
                eni={name: spec.copy() for name, spec in self.eni.items()},
                my_eni=self.my_eni,
                eni_config_annotation_def=get_eni_config_annotation_def(),
                eni_config_label_def=get_eni_config_label_def(),
            )

    def my_eni_config(self) -> ENIConfigSpec:
        """Return the spec of the ENIConfig this node uses."""
        with self.lock:
            spec = self.eni.get(self.my_eni)
            if spec is None:
                raise NoENIConfigError()
            return spec.copy()


class Handler:
    """Applies ENIConfig and Node events to a controller."""

    def __init__(self, controller: ENIConfigController) -> None:
        self.controller = controller

    def handle(self, event: Event) -> None:
        ctrl = self.controller
        obj = event.object
        if isinstance(obj, ENIConfig):
            with ctrl.lock:
                if event.deleted:
                    log.debug("Deleting ENIConfig: %s", obj.name)
                    ctrl.eni.pop(obj.name, None)
                    return
                log.debug(
                    "Handle ENIConfig Add/Update: %s, %s, %s",
                    obj.name, obj.spec.security_groups, obj.spec.subnet,
                )
                ctrl.eni[obj.name] = obj.spec.copy()
        elif isinstance(obj, Node):
            log.debug("Handle Node: %s, %s, %s", obj.name, obj.annotations, obj.labels)
            if ctrl.my_node_name != obj.name:
                return
            value = obj.annotations.get(ctrl.eni_config_annotation_def)
            if value is None:
                value = obj.labels.get(ctrl.eni_config_label_def, ENI_CONFIG_DEFAULT)
            with ctrl.lock:
                if ctrl.my_eni != value:
                    ctrl.my_eni = value
                    log.debug("Setting myENI to: %s", value)