import pytest

from vpceni.limits import (
    INSTANCE_ENIS_AVAILABLE,
    INSTANCE_IPS_AVAILABLE,
    UNKNOWN_INSTANCE_TYPE,
    UnknownInstanceTypeError,
    eni_limit,
    ips_per_eni,
)


def test_ips_per_eni_for_c5n_18xlarge():
    assert ips_per_eni("c5n.18xlarge") == 50


def test_eni_limit_for_c5n_18xlarge():
    assert eni_limit("c5n.18xlarge") == 15


@pytest.mark.parametrize(
    "instance_type, enis, ips",
    [
        ("c1.medium", 2, 6),
        ("t3a.small", 2, 4),
        ("t2.2xlarge", 3, 15),
        ("m4.large", 2, 10),
        ("m5d.metal", 15, 50),
        ("g4dn.12xlarge", 8, 30),
        ("c5d.18xlarge", 15, 31),
        ("u-12tb1.metal", 5, 30),
        ("m2.2xlarge", 4, 30),
    ],
)
def test_pinned_limits(instance_type, enis, ips):
    assert eni_limit(instance_type) == enis
    assert ips_per_eni(instance_type) == ips


def test_lookups_match_tables():
    assert eni_limit("c1.medium") == INSTANCE_ENIS_AVAILABLE["c1.medium"]
    assert ips_per_eni("c1.medium") == INSTANCE_IPS_AVAILABLE["c1.medium"]


def test_eni_limit_unknown_instance_type_raises():
    with pytest.raises(UnknownInstanceTypeError) as info:
        eni_limit("z9.galactic")
    assert info.value.instance_type == "z9.galactic"
    assert str(info.value).startswith(UNKNOWN_INSTANCE_TYPE)
    assert "z9.galactic" in str(info.value)


def test_ips_per_eni_unknown_instance_type_raises():
    with pytest.raises(UnknownInstanceTypeError) as info:
        ips_per_eni("z9.galactic")
    assert info.value.instance_type == "z9.galactic"
    assert str(info.value).startswith(UNKNOWN_INSTANCE_TYPE)


def test_unknown_instance_type_is_lookup_error():
    with pytest.raises(LookupError):
        eni_limit("")


@pytest.mark.parametrize("instance_type", sorted(INSTANCE_IPS_AVAILABLE))
def test_every_ip_table_type_has_an_eni_limit(instance_type):
    assert eni_limit(instance_type) >= 1


@pytest.mark.parametrize("instance_type", sorted(INSTANCE_ENIS_AVAILABLE))
def test_every_known_type_has_positive_limits(instance_type):
    assert eni_limit(instance_type) >= 1
    assert ips_per_eni(instance_type) >= 1


def test_tables_are_read_only():
    with pytest.raises(TypeError):
        INSTANCE_ENIS_AVAILABLE["c1.medium"] = 100  # type: ignore[index]
    assert eni_limit("c1.medium") == 2