"""EC2 control-plane data model, client interface and cluster tag lookup."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Protocol, Sequence

from vpceni.imds import InstanceIdentityDocument

log = logging.getLogger(__name__)

MAX_RETRIES = 5
RESOURCE_ID = "resource-id"
RESOURCE_KEY = "key"
CLUSTER_ID_TAG = "CLUSTER_ID"


class AwsError(Exception):
    """An error reported by an AWS API, identified by its error code."""

    def __init__(self, code: str, message: str = "") -> None:
        super().__init__(f"{code}: {message}" if message else code)
        self.code = code
        self.message = message


@dataclass(frozen=True)
class Tag:
    key: str
    value: str | None = None


@dataclass(frozen=True)
class TagDescription:
    key: str | None = None
    value: str | None = None
    resource_id: str | None = None
    resource_type: str | None = None


@dataclass(frozen=True)
class Filter:
    name: str
    values: tuple[str, ...] | list[str] = ()


@dataclass
class NetworkInterfaceAttachment:
    attachment_id: str | None = None
    device_index: int | None = None
    instance_id: str | None = None
    status: str | None = None
    delete_on_termination: bool | None = None


@dataclass
class NetworkInterface:
    network_interface_id: str | None = None
    description: str | None = None
    status: str | None = None
    private_ip_addresses: list[str] = field(default_factory=list)
    attachment: NetworkInterfaceAttachment | None = None
    tag_set: list[Tag] = field(default_factory=list)


@dataclass
class InstanceNetworkInterface:
    """A network interface as listed in an instance description."""

    network_interface_id: str | None = None
    device_index: int | None = None
    owner_id: str | None = None


@dataclass
class Instance:
    instance_id: str | None = None
    network_interfaces: list[InstanceNetworkInterface] = field(default_factory=list)


class EC2Client(Protocol):
    """The EC2 operations this package relies on.

    Failures are reported by raising, normally with AwsError.
    """

    def describe_instances(self, instance_ids: Sequence[str]) -> list[list[Instance]]:
        """Return the matching reservations, each a list of instances."""

    def create_network_interface(
        self, description: str, groups: Sequence[str], subnet_id: str
    ) -> NetworkInterface:
        """Create a network interface and return it."""

    def attach_network_interface(
        self, device_index: int, instance_id: str, network_interface_id: str
    ) -> str:
        """Attach an interface to an instance and return the attachment id."""

    def delete_network_interface(self, network_interface_id: str) -> None:
        """Delete a network interface."""

    def detach_network_interface(self, attachment_id: str) -> None:
        """Detach the interface identified by an attachment id."""

    def assign_private_ip_addresses(self, network_interface_id: str, count: int) -> list[str]:
        """Assign secondary private addresses and return the ones assigned."""

    def unassign_private_ip_addresses(
        self, network_interface_id: str, private_ip_addresses: Sequence[str]
    ) -> None:
        """Release secondary private addresses from an interface."""

    def describe_network_interfaces(
        self,
        network_interface_ids: Sequence[str] | None,
        filters: Sequence[Filter] | None,
    ) -> list[NetworkInterface]:
        """Return interfaces selected by id and/or filters."""

    def modify_network_interface_attribute(
        self, network_interface_id: str, attachment_id: str, delete_on_termination: bool
    ) -> None:
        """Change the attachment attributes of an interface."""

    def create_tags(self, resources: Sequence[str], tags: Sequence[Tag]) -> None:
        """Add tags to resources."""

    def describe_tags(self, filters: Sequence[Filter]) -> list[TagDescription]:
        """Return the tags matching the filters."""


class EC2Wrapper:
    """Reads tags of the local instance through an EC2 client."""

    def __init__(
        self, ec2_client: EC2Client, instance_identity_document: InstanceIdentityDocument
    ) -> None:
        self.ec2_client = ec2_client
        self.instance_identity_document = instance_identity_document

    def get_cluster_tag(self, tag_key: str) -> str:
        """Return the value of the instance tag named tag_key."""
        filters = [
            Filter(RESOURCE_ID, [self.instance_identity_document.instance_id]),
            Filter(RESOURCE_KEY, [tag_key]),
        ]
        log.info("Calling DescribeTags with key %s", tag_key)
        try:
            results = self.ec2_client.describe_tags(filters)
        except (AwsError, OSError) as err:
            raise RuntimeError(
                "get_cluster_tag: unable to obtain EC2 instance tags"
            ) from err
        if not results:
            raise LookupError(f"get_cluster_tag: no tag matching key: {tag_key}")
        return results[0].value or ""