"""Access to the EC2 instance metadata service."""

from __future__ import annotations

import json
import logging
import time
from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, Protocol
from urllib.error import HTTPError
from urllib.request import ProxyHandler, Request, build_opener

log = logging.getLogger(__name__)

DEFAULT_ENDPOINT = "http://169.254.169.254"
DEFAULT_MAX_RETRIES = 10
METADATA_RETRIES = 5


@dataclass
class InstanceIdentityDocument:
    private_ip: str = ""
    availability_zone: str = ""
    version: str = ""
    region: str = ""
    account_id: str = ""
    instance_id: str = ""
    billing_products: list[str] = field(default_factory=list)
    image_id: str = ""
    instance_type: str = ""
    pending_time: datetime | None = None
    architecture: str = ""
    kernel_id: str = ""
    ramdisk_id: str = ""


def _parse_time(value: str | None) -> datetime | None:
    if not value:
        return None
    if value.endswith("Z"):
        value = value[:-1] + "+00:00"
    return datetime.fromisoformat(value)


def _document_from_json(data: dict[str, Any]) -> InstanceIdentityDocument:
    return InstanceIdentityDocument(
        private_ip=data.get("privateIp") or "",
        availability_zone=data.get("availabilityZone") or "",
        version=data.get("version") or "",
        region=data.get("region") or "",
        account_id=data.get("accountId") or "",
        instance_id=data.get("instanceId") or "",
        billing_products=list(data.get("billingProducts") or []),
        image_id=data.get("imageId") or "",
        instance_type=data.get("instanceType") or "",
        pending_time=_parse_time(data.get("pendingTime")),
        architecture=data.get("architecture") or "",
        kernel_id=data.get("kernelId") or "",
        ramdisk_id=data.get("ramdiskId") or "",
    )


class MetadataSource(Protocol):
    """Something that answers instance metadata queries."""

    def get_metadata(self, path: str) -> str:
        """Return the metadata value stored under path."""

    def region(self) -> str:
        """Return the region the instance runs in."""


class HttpMetadataClient:
    """Queries the instance metadata service over HTTP, retrying transient failures."""

    def __init__(
        self,
        endpoint: str = DEFAULT_ENDPOINT,
        *,
        max_retries: int = DEFAULT_MAX_RETRIES,
        timeout: float = 5.0,
        retry_delay: float = 0.1,
    ) -> None:
        self.endpoint = endpoint.rstrip("/")
        self.max_retries = max_retries
        self.timeout = timeout
        self.retry_delay = retry_delay
        self._opener = build_opener(ProxyHandler({}))

    def _get(self, path: str) -> str:
        url = f"{self.endpoint}/latest/{path.lstrip('/')}"
        last_error: OSError | None = None
        for attempt in range(self.max_retries + 1):
            try:
                with self._opener.open(Request(url), timeout=self.timeout) as response:
                    return response.read().decode("utf-8")
            except HTTPError as err:
                if err.code < 500:
                    raise
                last_error = err
            except OSError as err:
                last_error = err
            log.debug("metadata request %s failed (attempt %d): %s", url, attempt + 1, last_error)
            if attempt < self.max_retries:
                time.sleep(self.retry_delay * 2**attempt)
        assert last_error is not None
        raise last_error

    def get_metadata(self, path: str) -> str:
        """Return the metadata value under meta-data/path."""
        return self._get("meta-data/" + path.lstrip("/"))

    def region(self) -> str:
        """Return the region, derived from the availability zone."""
        zone = self.get_metadata("placement/availability-zone")
        if not zone:
            raise ValueError("invalid region response from instance metadata")
        return zone[:-1]

    def get_instance_identity_document(self) -> InstanceIdentityDocument:
        """Fetch and parse the instance identity document."""
        text = self._get("dynamic/instance-identity/document")
        return _document_from_json(json.loads(text))


class EC2MetadataClient:
    """Gives the identity document and region of the instance."""

    def __init__(self, client: Any = None) -> None:
        self._client = client if client is not None else HttpMetadataClient(
            max_retries=METADATA_RETRIES
        )

    def get_instance_identity_document(self) -> InstanceIdentityDocument:
        return self._client.get_instance_identity_document()

    def region(self) -> str:
        return self._client.region()