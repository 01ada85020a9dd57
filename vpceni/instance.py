"""Discovery of the local instance and its ENIs from the instance metadata service."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field

from vpceni.imds import MetadataSource

log = logging.getLogger(__name__)

METADATA_MAC_PATH = "network/interfaces/macs/"
METADATA_AZ = "placement/availability-zone/"
METADATA_LOCAL_IP = "local-ipv4"
METADATA_INSTANCE_ID = "instance-id"
METADATA_INSTANCE_TYPE = "instance-type"
METADATA_MAC = "mac"
METADATA_SGS = "/security-group-ids/"
METADATA_SUBNET_ID = "/subnet-id/"
METADATA_VPC_CIDRS = "/vpc-ipv4-cidr-blocks/"
METADATA_VPC_CIDR = "/vpc-ipv4-cidr-block/"
METADATA_DEVICE_NUM = "/device-number/"
METADATA_INTERFACE = "/interface-id/"
METADATA_SUBNET_CIDR = "/subnet-ipv4-cidr-block"
METADATA_IPV4S = "/local-ipv4s"
METADATA_OWNER_ID = "/owner-id"

_INT32_MIN = -(2**31)
_INT32_MAX = 2**31 - 1
_LEGACY_OCTAL = re.compile(r"[+-]?0[0-7_]+")


class MetadataError(RuntimeError):
    """Raised when instance metadata cannot be read or makes no sense."""


@dataclass
class ENIMetadata:
    """An ENI attached to the instance, as the metadata service describes it."""

    eni_id: str
    mac: str
    device_number: int
    subnet_ipv4_cidr: str
    local_ipv4s: list[str] = field(default_factory=list)


@dataclass
class PrimaryENI:
    """The primary ENI, the owning account and how many interfaces were seen."""

    eni_id: str
    account_id: str
    interface_count: int


@dataclass
class InstanceMetadata:
    """Static facts about the local instance."""

    availability_zone: str
    local_ipv4: str
    instance_id: str
    instance_type: str
    primary_eni_mac: str
    primary_eni: str
    account_id: str
    interface_count: int
    security_groups: list[str]
    subnet_id: str
    vpc_ipv4_cidr: str
    vpc_ipv4_cidrs: list[str]


def _fetch(metadata: MetadataSource, path: str, context: str) -> str:
    try:
        return metadata.get_metadata(path)
    except Exception as err:
        log.error("Failed to retrieve %s from instance metadata: %s", path, err)
        raise MetadataError(context) from err


def _parse_device_number(text: str) -> int:
    """Parse an integer the way a base-prefix-aware 32-bit parser does."""
    try:
        value = int(text, 0)
    except ValueError:
        if not _LEGACY_OCTAL.fullmatch(text):
            raise
        value = int(text, 8)
    if not _INT32_MIN <= value <= _INT32_MAX:
        raise ValueError(f"value out of range: {text}")
    return value


def find_primary_eni(metadata: MetadataSource, primary_mac: str) -> PrimaryENI:
    """Find the ENI whose MAC address is primary_mac."""
    macs = _fetch(
        metadata, METADATA_MAC_PATH, "set primary ENI: failed to retrieve interfaces data"
    ).split()
    log.debug("Discovered %d interfaces.", len(macs))

    account_id = ""
    for mac_entry in macs:
        device = _fetch(
            metadata,
            METADATA_MAC_PATH + mac_entry + METADATA_DEVICE_NUM,
            f"set primary ENI: failed to retrieve the device-number data of ENI {mac_entry}",
        )
        try:
            device_number = _parse_device_number(device)
        except ValueError as err:
            raise MetadataError(f"set primary ENI: invalid device {device}") from err
        log.debug("Found device-number: %d", device_number)

        if not account_id:
            account_id = _fetch(
                metadata,
                METADATA_MAC_PATH + mac_entry + METADATA_OWNER_ID,
                "set primary ENI: failed to retrieve ownerID",
            )
            log.debug("Found account ID: %s", account_id)

        eni = _fetch(
            metadata,
            METADATA_MAC_PATH + mac_entry + METADATA_INTERFACE,
            "set primary ENI: failed to retrieve interface-id",
        )
        log.debug("Found eni: %s", eni)
        if mac_entry.split("/")[0] == primary_mac:
            log.debug("Found ENI %s is a primary ENI", eni)
            return PrimaryENI(eni_id=eni, account_id=account_id, interface_count=len(macs))

    raise MetadataError("set primary ENI: primary ENI not found")


def _eni_device_number(
    metadata: MetadataSource, mac: str, primary_eni: str
) -> tuple[str, int]:
    device = _fetch(
        metadata,
        METADATA_MAC_PATH + mac + METADATA_DEVICE_NUM,
        f"failed to retrieve device-number for ENI {mac}",
    )
    try:
        device_number = _parse_device_number(device)
    except ValueError as err:
        raise MetadataError(f"invalid device {device} for ENI {mac}") from err

    eni = _fetch(
        metadata,
        METADATA_MAC_PATH + mac + METADATA_INTERFACE,
        f"get attached ENIs: failed to retrieve interface-id for ENI {mac}",
    )
    if eni == primary_eni:
        log.debug("Using device number 0 for primary eni: %s", eni)
        return eni, 0
    # 0 is reserved for the primary ENI; the others shift up by one.
    return eni, device_number + 1


def _ips_and_cidr(metadata: MetadataSource, mac: str) -> tuple[list[str], str]:
    cidr = _fetch(
        metadata,
        METADATA_MAC_PATH + mac + METADATA_SUBNET_CIDR,
        f"failed to retrieve subnet-ipv4-cidr-block for ENI {mac}",
    )
    ipv4s = _fetch(
        metadata,
        METADATA_MAC_PATH + mac + METADATA_IPV4S,
        f"failed to retrieve ENI {mac} local-ipv4s",
    ).split()
    log.debug("Found IP addresses %s on ENI %s", ipv4s, mac)
    return ipv4s, cidr


def _eni_metadata(metadata: MetadataSource, mac_entry: str, primary_eni: str) -> ENIMetadata:
    mac = mac_entry.split("/")[0]
    try:
        eni, device_number = _eni_device_number(metadata, mac, primary_eni)
    except MetadataError as err:
        raise MetadataError(
            f"get ENI metadata: failed to retrieve device and ENI from metadata service: {mac}"
        ) from err
    try:
        ips, cidr = _ips_and_cidr(metadata, mac)
    except MetadataError as err:
        raise MetadataError(
            f"get ENI metadata: failed to retrieve IPs and CIDR for ENI: {mac}"
        ) from err
    return ENIMetadata(
        eni_id=eni,
        mac=mac,
        device_number=device_number,
        subnet_ipv4_cidr=cidr,
        local_ipv4s=ips,
    )


def get_attached_enis(metadata: MetadataSource, primary_eni: str) -> list[ENIMetadata]:
    """Describe every ENI the metadata service lists for this instance."""
    macs = _fetch(
        metadata, METADATA_MAC_PATH, "get attached ENIs: failed to retrieve interfaces data"
    ).split()
    log.debug("Total number of interfaces found: %d", len(macs))
    enis = []
    for mac_entry in macs:
        try:
            enis.append(_eni_metadata(metadata, mac_entry, primary_eni))
        except MetadataError as err:
            raise MetadataError(
                f"get attached ENIs: failed to retrieve ENI metadata for ENI: {mac_entry}"
            ) from err
    return enis


def load_instance_metadata(metadata: MetadataSource) -> InstanceMetadata:
    """Read everything needed about the local instance from the metadata service."""
    az = _fetch(
        metadata, METADATA_AZ,
        "get instance metadata: failed to retrieve availability zone data",
    )
    local_ip = _fetch(
        metadata, METADATA_LOCAL_IP,
        "get instance metadata: failed to retrieve the instance primary ip address data",
    )
    instance_id = _fetch(
        metadata, METADATA_INSTANCE_ID, "get instance metadata: failed to retrieve instance-id"
    )
    instance_type = _fetch(
        metadata, METADATA_INSTANCE_TYPE,
        "get instance metadata: failed to retrieve instance-type",
    )
    mac = _fetch(
        metadata, METADATA_MAC,
        "get instance metadata: failed to retrieve primary interface MAC address",
    )
    try:
        primary = find_primary_eni(metadata, mac)
    except MetadataError as err:
        raise MetadataError("get instance metadata: failed to find primary ENI") from err

    security_groups = _fetch(
        metadata, METADATA_MAC_PATH + mac + METADATA_SGS,
        "get instance metadata: failed to retrieve security-group-ids",
    ).split()
    subnet_id = _fetch(
        metadata, METADATA_MAC_PATH + mac + METADATA_SUBNET_ID,
        "get instance metadata: failed to retrieve subnet-ids",
    )
    vpc_cidr = _fetch(
        metadata, METADATA_MAC_PATH + mac + METADATA_VPC_CIDR,
        "get instance metadata: failed to retrieve vpc-ipv4-cidr-block data",
    )
    vpc_cidrs = _fetch(
        metadata, METADATA_MAC_PATH + mac + METADATA_VPC_CIDRS,
        "get instance metadata: failed to retrieve vpc-ipv4-cidr-block data",
    ).split()

    return InstanceMetadata(
        availability_zone=az,
        local_ipv4=local_ip,
        instance_id=instance_id,
        instance_type=instance_type,
        primary_eni_mac=mac,
        primary_eni=primary.eni_id,
        account_id=primary.account_id,
        interface_count=primary.interface_count,
        security_groups=security_groups,
        subnet_id=subnet_id,
        vpc_ipv4_cidr=vpc_cidr,
        vpc_ipv4_cidrs=vpc_cidrs,
    )