"""ENI and secondary IP management for the local EC2 instance."""

from __future__ import annotations

import logging
import os
import random
import time
from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Sequence, TypeVar

from vpceni import instance as instance_md
from vpceni.ec2 import AwsError, EC2Client, Filter, NetworkInterface, Tag
from vpceni.imds import MetadataSource
from vpceni.limits import UnknownInstanceTypeError, eni_limit, ips_per_eni

log = logging.getLogger(__name__)

MAX_ENI_DELETE_RETRIES = 12
MAX_ENI_BACKOFF_DELAY = 60.0
ENI_DESCRIPTION_PREFIX = "aws-K8S-"
MAX_ENIS = 128
CLUSTER_NAME_ENV_VAR = "CLUSTER_NAME"
ENI_NODE_TAG_KEY = "node.k8s.amazonaws.com/instance_id"
ENI_CLUSTER_TAG_KEY = "cluster.k8s.amazonaws.com/name"
ENI_CLEANUP_STARTUP_DELAY_MAX = 300
DETACH_SETTLE_DELAY = 2.0

_API_ERRORS = (AwsError, OSError)
_T = TypeVar("_T")


class ENINotFoundError(LookupError):
    """Raised when EC2 reports that an ENI does not exist."""

    def __init__(self, eni_id: str = "") -> None:
        super().__init__("ENI is not found")
        self.eni_id = eni_id


class AWSUtilsError(RuntimeError):
    """Raised when an EC2 operation on ENIs or addresses fails."""


def _error_code(err: BaseException) -> str | None:
    return err.code if isinstance(err, AwsError) else None


class _SimpleBackoff:
    """Exponential backoff with proportional jitter, capped at a maximum."""

    def __init__(self, minimum: float, maximum: float, jitter: float, multiple: float) -> None:
        self._current = minimum
        self._maximum = maximum
        self._jitter = jitter
        self._multiple = multiple

    def next_delay(self) -> float:
        base = self._current
        self._current = min(self._current * self._multiple, self._maximum)
        spread = base * self._jitter
        return max(0.0, base + random.uniform(-spread, spread))


@dataclass
class EC2InstanceMetadataCache:
    """Cached facts about the local instance, with ENI and IP operations on top."""

    ec2_client: EC2Client
    metadata: MetadataSource | None = None
    instance_id: str = ""
    instance_type: str = ""
    security_groups: list[str] = field(default_factory=list)
    subnet_id: str = ""
    local_ipv4: str = ""
    vpc_ipv4_cidr: str = ""
    vpc_ipv4_cidrs: list[str] = field(default_factory=list)
    primary_eni: str = ""
    primary_eni_mac: str = ""
    availability_zone: str = ""
    account_id: str = ""
    current_enis: int = 0
    sleep: Callable[[float], None] = time.sleep
    api_errors: Counter = field(default_factory=Counter, init=False, repr=False)
    utils_errors: Counter = field(default_factory=Counter, init=False, repr=False)

    @classmethod
    def from_metadata(
        cls, metadata: MetadataSource, ec2_client: EC2Client
    ) -> EC2InstanceMetadataCache:
        """Build a cache from what the instance metadata service reports."""
        info = instance_md.load_instance_metadata(metadata)
        return cls(
            ec2_client=ec2_client,
            metadata=metadata,
            instance_id=info.instance_id,
            instance_type=info.instance_type,
            security_groups=list(info.security_groups),
            subnet_id=info.subnet_id,
            local_ipv4=info.local_ipv4,
            vpc_ipv4_cidr=info.vpc_ipv4_cidr,
            vpc_ipv4_cidrs=list(info.vpc_ipv4_cidrs),
            primary_eni=info.primary_eni,
            primary_eni_mac=info.primary_eni_mac,
            availability_zone=info.availability_zone,
            account_id=info.account_id,
            current_enis=info.interface_count,
        )

    # -- bookkeeping -------------------------------------------------------

    def _api_error(self, api: str, err: BaseException) -> None:
        code = _error_code(err)
        if code is not None:
            self.api_errors[(api, code)] += 1

    def _utils_error(self, fn: str, err: BaseException) -> None:
        self.utils_errors[(fn, str(err))] += 1

    def _retry(self, backoff: _SimpleBackoff, attempts: int, fn: Callable[[], _T]) -> _T:
        last: Exception | None = None
        for attempt in range(attempts):
            try:
                return fn()
            except Exception as err:
                last = err
                if attempt < attempts - 1:
                    self.sleep(backoff.next_delay())
        assert last is not None
        raise last

    # -- metadata ----------------------------------------------------------

    def get_attached_enis(self) -> list[instance_md.ENIMetadata]:
        """Describe the ENIs currently attached, as the metadata service reports them."""
        if self.metadata is None:
            raise AWSUtilsError("get attached ENIs: no metadata source configured")
        enis = instance_md.get_attached_enis(self.metadata, self.primary_eni)
        self.current_enis = len(enis)
        return enis

    # -- ENI lifecycle -----------------------------------------------------

    def get_free_device_number(self) -> int:
        """Return the lowest device index not used by an attached interface."""
        try:
            reservations = self.ec2_client.describe_instances([self.instance_id])
        except _API_ERRORS as err:
            self._api_error("DescribeInstances", err)
            log.error("Unable to retrieve instance data from EC2 control plane: %s", err)
            raise AWSUtilsError(
                "find a free device number for ENI: not able to retrieve instance data "
                "from EC2 control plane"
            ) from err

        if len(reservations) != 1 or not reservations[0]:
            raise AWSUtilsError(f"get_free_device_number: invalid instance id {self.instance_id}")

        used: set[int] = set()
        for eni in reservations[0][0].network_interfaces:
            index = eni.device_index
            if index is None:
                continue
            if index >= MAX_ENIS:
                log.warning(
                    "The device index %d of the attached ENI %s > instance max slot %d",
                    index, eni.network_interface_id, MAX_ENIS,
                )
            else:
                used.add(index)

        free = next((i for i in range(MAX_ENIS) if i not in used), None)
        if free is None:
            raise AWSUtilsError("get_free_device_number: no available device number")
        log.debug("Found a free device number: %d", free)
        return free

    def _create_eni(self, use_custom_cfg: bool, security_groups: Sequence[str], subnet: str) -> str:
        if use_custom_cfg:
            log.info("Using a custom network config for the new ENI")
            groups, subnet_id = list(security_groups), subnet
        else:
            log.info("Using same config as the primary interface for the new ENI")
            groups, subnet_id = list(self.security_groups), self.subnet_id
        log.info("Creating ENI with security groups: %s in subnet: %s", groups, subnet_id)
        try:
            created = self.ec2_client.create_network_interface(
                ENI_DESCRIPTION_PREFIX + self.instance_id, groups, subnet_id
            )
        except _API_ERRORS as err:
            self._api_error("CreateNetworkInterface", err)
            raise AWSUtilsError("failed to create network interface") from err
        eni_id = created.network_interface_id or ""
        log.info("Created a new ENI: %s", eni_id)
        return eni_id

    def _attach_eni(self, eni_id: str) -> str:
        try:
            device = self.get_free_device_number()
        except AWSUtilsError as err:
            raise AWSUtilsError("attachENI: failed to get a free device number") from err
        try:
            return self.ec2_client.attach_network_interface(device, self.instance_id, eni_id)
        except _API_ERRORS as err:
            self._api_error("AttachNetworkInterface", err)
            if _error_code(err) == "AttachmentLimitExceeded":
                log.info("Exceeded instance ENI attachment limit: %d", self.current_enis)
            log.error("Failed to attach ENI %s: %s", eni_id, err)
            raise AWSUtilsError("attachENI: failed to attach ENI") from err

    def alloc_eni(
        self, use_custom_cfg: bool, security_groups: Sequence[str], subnet: str
    ) -> str:
        """Create an ENI, attach it to this instance and return its id."""
        try:
            eni_id = self._create_eni(use_custom_cfg, security_groups, subnet)
        except AWSUtilsError as err:
            raise AWSUtilsError("AllocENI: failed to create ENI") from err

        try:
            attachment_id = self._attach_eni(eni_id)
        except AWSUtilsError as err:
            try:
                self._delete_eni(eni_id, MAX_ENI_BACKOFF_DELAY)
            except Exception as cleanup_err:
                log.warning("Failed to delete ENI %s after attach error: %s", eni_id, cleanup_err)
            raise AWSUtilsError("AllocENI: error attaching ENI") from err

        self.tag_eni(eni_id)

        try:
            self.ec2_client.modify_network_interface_attribute(eni_id, attachment_id, True)
        except _API_ERRORS as err:
            self._api_error("ModifyNetworkInterfaceAttribute", err)
            try:
                self.free_eni(eni_id)
            except Exception as cleanup_err:
                self._utils_error("ENICleanupUponModifyNetworkErr", cleanup_err)
            raise AWSUtilsError("AllocENI: unable to change the ENI's attribute") from err

        log.info("Successfully created and attached a new ENI %s to instance", eni_id)
        return eni_id

    def tag_eni(self, eni_id: str) -> None:
        """Tag an ENI with the instance id and, if set, the cluster name; failures are logged."""
        tags = [Tag(ENI_NODE_TAG_KEY, self.instance_id)]
        cluster_name = os.environ.get(CLUSTER_NAME_ENV_VAR, "")
        if cluster_name:
            tags.append(Tag(ENI_CLUSTER_TAG_KEY, cluster_name))
        for tag in tags:
            log.debug("Trying to tag newly created ENI: key=%s, value=%s", tag.key, tag.value)

        def attempt() -> None:
            try:
                self.ec2_client.create_tags([eni_id], tags)
            except _API_ERRORS as err:
                self._api_error("CreateTags", err)
                log.warning("Failed to tag the newly created ENI %s: %s", eni_id, err)
                raise
            log.debug("Successfully tagged ENI: %s", eni_id)

        try:
            self._retry(_SimpleBackoff(1.0, 60.0, 0.3, 2.0), 5, attempt)
        except _API_ERRORS:
            pass

    def free_eni(self, eni_id: str, max_backoff_delay: float = MAX_ENI_BACKOFF_DELAY) -> None:
        """Detach and delete an ENI; an ENI that no longer exists is left alone."""
        log.info("Trying to free ENI: %s", eni_id)
        try:
            _, attachment_id = self.describe_eni(eni_id)
        except ENINotFoundError:
            log.info("ENI %s not found. It seems to be already freed", eni_id)
            return
        except AWSUtilsError as err:
            self._utils_error("FreeENIDescribeENIFailed", err)
            raise AWSUtilsError("FreeENI: failed to retrieve ENI's attachment id") from err

        def detach() -> None:
            try:
                self.ec2_client.detach_network_interface(attachment_id or "")
            except _API_ERRORS as err:
                self._api_error("DetachNetworkInterface", err)
                log.error("Failed to detach ENI %s %s", eni_id, err)
                raise AWSUtilsError("unable to detach ENI from EC2 instance, giving up") from err
            log.info("Successfully detached ENI: %s", eni_id)

        self._retry(
            _SimpleBackoff(0.2, max_backoff_delay, 0.15, 2.0), MAX_ENI_DELETE_RETRIES, detach
        )

        # EC2 takes a while to detach an ENI before it can be deleted.
        self.sleep(DETACH_SETTLE_DELAY)
        try:
            self._delete_eni(eni_id, max_backoff_delay)
        except AWSUtilsError as err:
            self._utils_error("FreeENIDeleteErr", err)
            raise AWSUtilsError(f"FreeENI: failed to free ENI: {eni_id}") from err
        log.info("Successfully freed ENI: %s", eni_id)

    def _delete_eni(self, eni_id: str, max_backoff_delay: float) -> None:
        log.debug("Trying to delete ENI: %s", eni_id)

        def delete() -> None:
            try:
                self.ec2_client.delete_network_interface(eni_id)
            except _API_ERRORS as err:
                if _error_code(err) == "InvalidNetworkInterfaceID.NotFound":
                    log.info("ENI %s has already been deleted", eni_id)
                    return
                self._api_error("DeleteNetworkInterface", err)
                log.debug("Not able to delete ENI: %s", err)
                raise AWSUtilsError("unable to delete ENI") from err
            log.info("Successfully deleted ENI: %s", eni_id)

        self._retry(
            _SimpleBackoff(0.5, max_backoff_delay, 0.15, 2.0), MAX_ENI_DELETE_RETRIES, delete
        )

    def describe_eni(self, eni_id: str) -> tuple[list[str], str | None]:
        """Return the private addresses of an ENI and its attachment id."""
        try:
            interfaces = self.ec2_client.describe_network_interfaces([eni_id], None)
        except _API_ERRORS as err:
            if _error_code(err) == "InvalidNetworkInterfaceID.NotFound":
                raise ENINotFoundError(eni_id) from err
            self._api_error("DescribeNetworkInterfaces", err)
            log.error("Failed to get ENI %s information from EC2 control plane %s", eni_id, err)
            raise AWSUtilsError("failed to describe network interface") from err
        if not interfaces:
            raise ENINotFoundError(eni_id)
        eni = interfaces[0]
        attachment_id = eni.attachment.attachment_id if eni.attachment else None
        return list(eni.private_ip_addresses), attachment_id

    # -- secondary addresses -----------------------------------------------

    def alloc_ip_address(self, eni_id: str) -> None:
        """Assign one secondary private address to an ENI."""
        log.info("Trying to allocate an IP address on ENI: %s", eni_id)
        try:
            assigned = self.ec2_client.assign_private_ip_addresses(eni_id, 1)
        except _API_ERRORS as err:
            self._api_error("AssignPrivateIpAddresses", err)
            raise AWSUtilsError("failed to assign private IP addresses") from err
        log.info("Successfully allocated IP address %s on ENI %s", assigned, eni_id)

    def get_eni_ip_limit(self) -> int:
        """Return how many secondary addresses one ENI of this instance type can hold."""
        try:
            return ips_per_eni(self.instance_type) - 1
        except UnknownInstanceTypeError:
            log.error("Failed to get ENI IP limit due to unknown instance type %s",
                      self.instance_type)
            raise

    def get_eni_limit(self) -> int:
        """Return how many ENIs this instance type can have attached."""
        return eni_limit(self.instance_type)

    def alloc_ip_addresses(self, eni_id: str, num_ips: int) -> None:
        """Assign up to num_ips secondary addresses, capped at the per-ENI limit."""
        try:
            limit = self.get_eni_ip_limit()
        except UnknownInstanceTypeError as err:
            self._utils_error("UnknownInstanceType", err)
            raise
        need = min(num_ips, limit)
        if need < 1:
            return
        log.info("Trying to allocate %d IP addresses on ENI %s", need, eni_id)
        try:
            self.ec2_client.assign_private_ip_addresses(eni_id, need)
        except _API_ERRORS as err:
            self._api_error("AssignPrivateIpAddresses", err)
            if _error_code(err) == "PrivateIpAddressLimitExceeded":
                return
            raise AWSUtilsError(
                "allocate IP address: failed to allocate a private IP address"
            ) from err

    def dealloc_ip_addresses(self, eni_id: str, ips: Sequence[str]) -> None:
        """Release the given secondary addresses from an ENI."""
        log.info("Trying to unassign the following IPs %s from ENI %s", list(ips), eni_id)
        try:
            self.ec2_client.unassign_private_ip_addresses(eni_id, list(ips))
        except _API_ERRORS as err:
            self._api_error("UnassignPrivateIpAddresses", err)
            raise AWSUtilsError(
                "deallocate IP addresses: failed to deallocate private IP addresses: "
                f"{list(ips)}"
            ) from err

    # -- leaked ENIs -------------------------------------------------------

    def leaked_network_interfaces(self) -> list[NetworkInterface]:
        """Return available ENIs tagged and described as created by this plugin."""
        filters = [
            Filter("tag-key", [ENI_NODE_TAG_KEY]),
            Filter("status", ["available"]),
        ]
        try:
            interfaces = self.ec2_client.describe_network_interfaces(None, filters)
        except _API_ERRORS as err:
            raise AWSUtilsError(
                "awsutils: unable to obtain filtered list of network interfaces"
            ) from err
        leaked = [
            eni for eni in interfaces
            if (eni.description or "").startswith(ENI_DESCRIPTION_PREFIX)
        ]
        if not leaked:
            log.debug("No AWS CNI leaked ENIs found.")
        else:
            log.debug("Found %d available instances with the AWS CNI tag.", len(leaked))
        return leaked

    def clean_up_leaked_enis(self, startup_delay: float | None = None) -> list[str]:
        """Delete leaked ENIs after a delay and return the ids that were deleted."""
        if startup_delay is None:
            startup_delay = float(random.randrange(ENI_CLEANUP_STARTUP_DELAY_MAX))
        log.info("Will attempt to clean up AWS CNI leaked ENIs after waiting %ss.", startup_delay)
        self.sleep(startup_delay)

        try:
            leaked = self.leaked_network_interfaces()
        except AWSUtilsError as err:
            log.warning("Unable to get leaked ENIs: %s", err)
            return []

        deleted = []
        for eni in leaked:
            eni_id = eni.network_interface_id or ""
            try:
                self._delete_eni(eni_id, MAX_ENI_BACKOFF_DELAY)
            except Exception as err:
                log.warning("Failed to clean up leaked ENI %s: %s", eni_id, err)
            else:
                deleted.append(eni_id)
        return deleted