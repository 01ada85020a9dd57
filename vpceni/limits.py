"""Per-instance-type ENI and IP address limits for EC2."""

from __future__ import annotations

from types import MappingProxyType
from typing import Dict, Mapping, Tuple

UNKNOWN_INSTANCE_TYPE = "vpc ip resource(eni ip limit): unknown instance type"


class UnknownInstanceTypeError(LookupError):
    """Raised when an instance type is missing from the limit tables."""

    def __init__(self, instance_type: str) -> None:
        super().__init__(f"{UNKNOWN_INSTANCE_TYPE}: {instance_type}")
        self.instance_type = instance_type


# Each size maps to (attachable ENIs, IPv4 addresses per ENI).
_Sizes = Dict[str, Tuple[int, int]]

_SMALL = {"large": (3, 10), "xlarge": (4, 15), "2xlarge": (4, 15)}
_M5_SIZES: _Sizes = {
    **_SMALL, "4xlarge": (8, 30), "8xlarge": (8, 30), "12xlarge": (8, 30),
    "16xlarge": (15, 50), "24xlarge": (15, 50),
}
_M5_METAL_SIZES: _Sizes = {**_M5_SIZES, "metal": (15, 50)}
_M5AD_SIZES: _Sizes = {
    **_SMALL, "4xlarge": (8, 30), "12xlarge": (8, 30), "24xlarge": (15, 50),
}
_C3_SIZES: _Sizes = {**_SMALL, "4xlarge": (8, 30), "8xlarge": (8, 30)}
_C5N_SIZES: _Sizes = {**_SMALL, "4xlarge": (8, 30), "9xlarge": (8, 30), "18xlarge": (15, 50)}
_BURSTABLE_BASE: _Sizes = {"nano": (2, 2), "micro": (2, 2)}

_LIMITS: Dict[str, _Sizes] = {
    "a1": {"medium": (2, 4), **_SMALL, "4xlarge": (8, 30)},
    "c1": {"medium": (2, 6), "xlarge": (4, 15)},
    "c3": _C3_SIZES,
    "c4": _C3_SIZES,
    "c5": {**_C5N_SIZES, "12xlarge": (8, 30), "24xlarge": (15, 50), "metal": (15, 50)},
    "c5d": {**_C5N_SIZES, "18xlarge": (15, 31)},
    "c5n": _C5N_SIZES,
    "cc2": {"8xlarge": (8, 30)},
    "cr1": {"8xlarge": (8, 30)},
    "d2": {"xlarge": (4, 15), "2xlarge": (4, 15), "4xlarge": (8, 30), "8xlarge": (8, 30)},
    "f1": {"2xlarge": (4, 15), "4xlarge": (8, 30), "16xlarge": (8, 31)},
    "g2": {"2xlarge": (4, 15), "8xlarge": (8, 30)},
    "g3s": {"xlarge": (4, 15)},
    "g3": {"4xlarge": (8, 30), "8xlarge": (8, 30), "16xlarge": (15, 31)},
    "g4dn": {
        "xlarge": (3, 10), "2xlarge": (3, 10), "4xlarge": (3, 10), "8xlarge": (4, 15),
        "12xlarge": (8, 30), "16xlarge": (4, 15), "metal": (15, 50),
    },
    "h1": {"2xlarge": (4, 15), "4xlarge": (8, 30), "8xlarge": (8, 30), "16xlarge": (15, 31)},
    "hs1": {"8xlarge": (8, 30)},
    "i2": {"xlarge": (4, 15), "2xlarge": (4, 15), "4xlarge": (8, 30), "8xlarge": (8, 30)},
    "i3": {**_C3_SIZES, "16xlarge": (15, 31), "metal": (15, 50)},
    "i3en": {
        **_SMALL, "3xlarge": (4, 15), "6xlarge": (8, 30), "12xlarge": (8, 30),
        "24xlarge": (15, 50),
    },
    "m1": {"small": (2, 4), "medium": (2, 6), "large": (3, 10), "xlarge": (4, 15)},
    "m2": {"xlarge": (4, 15), "2xlarge": (4, 30), "4xlarge": (8, 30)},
    "m3": {"medium": (2, 6), "large": (3, 10), "xlarge": (4, 15), "2xlarge": (4, 30)},
    "m4": {
        "large": (2, 10), "xlarge": (4, 15), "2xlarge": (4, 15), "4xlarge": (8, 30),
        "10xlarge": (8, 30), "16xlarge": (8, 30),
    },
    "m5": _M5_METAL_SIZES,
    "m5a": _M5_SIZES,
    "m5ad": _M5AD_SIZES,
    "m5d": _M5_METAL_SIZES,
    "m5dn": _M5_SIZES,
    "m5n": _M5_SIZES,
    "p2": {"xlarge": (4, 15), "8xlarge": (8, 30), "16xlarge": (8, 30)},
    "p3": {"2xlarge": (4, 15), "8xlarge": (8, 30), "16xlarge": (8, 30)},
    "p3dn": {"24xlarge": (15, 50)},
    "r3": _C3_SIZES,
    "r4": {**_C3_SIZES, "16xlarge": (15, 31)},
    "r5": _M5_METAL_SIZES,
    "r5a": _M5_SIZES,
    "r5ad": _M5AD_SIZES,
    "r5d": _M5_METAL_SIZES,
    "r5dn": _M5_SIZES,
    "r5n": _M5_SIZES,
    "t1": {"micro": (2, 2)},
    "t2": {
        **_BURSTABLE_BASE, "small": (3, 4), "medium": (3, 6), "large": (3, 12),
        "xlarge": (3, 15), "2xlarge": (3, 15),
    },
    "t3": {
        **_BURSTABLE_BASE, "small": (3, 4), "medium": (3, 6), "large": (3, 12),
        "xlarge": (4, 15), "2xlarge": (4, 15),
    },
    "t3a": {
        **_BURSTABLE_BASE, "small": (2, 4), "medium": (3, 6), "large": (3, 12),
        "xlarge": (4, 15), "2xlarge": (4, 15),
    },
    "u-6tb1": {"metal": (5, 30)},
    "u-9tb1": {"metal": (5, 30)},
    "u-12tb1": {"metal": (5, 30)},
    "x1": {"16xlarge": (8, 30), "32xlarge": (8, 30)},
    "x1e": {
        "xlarge": (3, 10), "2xlarge": (4, 15), "4xlarge": (4, 15), "8xlarge": (4, 15),
        "16xlarge": (8, 30), "32xlarge": (8, 30),
    },
    "z1d": {
        **_SMALL, "3xlarge": (8, 30), "6xlarge": (8, 30), "12xlarge": (15, 50),
        "metal": (15, 50),
    },
}

_BY_TYPE: Dict[str, Tuple[int, int]] = {
    f"{family}.{size}": limits
    for family, sizes in _LIMITS.items()
    for size, limits in sizes.items()
}

INSTANCE_ENIS_AVAILABLE: Mapping[str, int] = MappingProxyType(
    {name: enis for name, (enis, _) in _BY_TYPE.items()}
)
INSTANCE_IPS_AVAILABLE: Mapping[str, int] = MappingProxyType(
    {name: ips for name, (_, ips) in _BY_TYPE.items()}
)


def eni_limit(instance_type: str) -> int:
    """Return how many ENIs an instance of this type can have attached."""
    try:
        return INSTANCE_ENIS_AVAILABLE[instance_type]
    except KeyError:
        raise UnknownInstanceTypeError(instance_type) from None


def ips_per_eni(instance_type: str) -> int:
    """Return how many IPv4 addresses one ENI of this instance type can hold."""
    try:
        return INSTANCE_IPS_AVAILABLE[instance_type]
    except KeyError:
        raise UnknownInstanceTypeError(instance_type) from None