import pytest

from vpceni.instance import (
    METADATA_AZ,
    METADATA_DEVICE_NUM,
    METADATA_INSTANCE_ID,
    METADATA_INSTANCE_TYPE,
    METADATA_INTERFACE,
    METADATA_IPV4S,
    METADATA_LOCAL_IP,
    METADATA_MAC,
    METADATA_MAC_PATH,
    METADATA_OWNER_ID,
    METADATA_SGS,
    METADATA_SUBNET_CIDR,
    METADATA_SUBNET_ID,
    METADATA_VPC_CIDR,
    METADATA_VPC_CIDRS,
    ENIMetadata,
    MetadataError,
    find_primary_eni,
    get_attached_enis,
    load_instance_metadata,
)

AZ = "us-east-1a"
LOCAL_IP = "10.0.0.10"
INSTANCE_ID = "i-00000000000000001"
INSTANCE_TYPE = "c1.medium"
PRIMARY_MAC = "02:00:00:00:00:01"
ENI2_MAC = "02:00:00:00:00:02"
SG1 = "sg-00000001"
SG2 = "sg-00000002"
SGS = SG1 + " " + SG2
SUBNET_ID = "subnet-00000001"
VPC_CIDR = "10.0.0.0/16"
SUBNET_CIDR = "10.0.1.0/24"
PRIMARY_ENI_ID = "eni-00000000"
ENI2_ID = "eni-00000002"
OWNER_ID = "owner-1"


class FakeMetadata:
    def __init__(self, values):
        self.values = dict(values)
        self.calls = []

    def get_metadata(self, path):
        self.calls.append(path)
        value = self.values[path]
        if isinstance(value, Exception):
            raise value
        return value

    def region(self):
        return "us-east-1"


def mac_path(mac, suffix):
    return METADATA_MAC_PATH + mac + suffix


def full_init_values():
    return {
        METADATA_AZ: AZ,
        METADATA_LOCAL_IP: LOCAL_IP,
        METADATA_INSTANCE_ID: INSTANCE_ID,
        METADATA_INSTANCE_TYPE: INSTANCE_TYPE,
        METADATA_MAC: PRIMARY_MAC,
        METADATA_MAC_PATH: PRIMARY_MAC,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM): "1",
        mac_path(PRIMARY_MAC, METADATA_OWNER_ID): "1234",
        mac_path(PRIMARY_MAC, METADATA_INTERFACE): PRIMARY_ENI_ID,
        mac_path(PRIMARY_MAC, METADATA_SGS): SGS,
        mac_path(PRIMARY_MAC, METADATA_SUBNET_ID): SUBNET_ID,
        mac_path(PRIMARY_MAC, METADATA_VPC_CIDR): VPC_CIDR,
        mac_path(PRIMARY_MAC, METADATA_VPC_CIDRS): VPC_CIDR,
    }


def test_load_instance_metadata():
    fake = FakeMetadata(full_init_values())
    info = load_instance_metadata(fake)
    assert info.availability_zone == AZ
    assert info.local_ipv4 == LOCAL_IP
    assert info.instance_id == INSTANCE_ID
    assert info.instance_type == INSTANCE_TYPE
    assert info.primary_eni_mac == PRIMARY_MAC
    assert info.primary_eni == PRIMARY_ENI_ID
    assert info.account_id == "1234"
    assert info.interface_count == 1
    assert info.security_groups == [SG1, SG2]
    assert info.subnet_id == SUBNET_ID
    assert info.vpc_ipv4_cidr == VPC_CIDR
    assert info.vpc_ipv4_cidrs == [VPC_CIDR]


def test_load_instance_metadata_call_order():
    fake = FakeMetadata(full_init_values())
    load_instance_metadata(fake)
    assert fake.calls == [
        METADATA_AZ,
        METADATA_LOCAL_IP,
        METADATA_INSTANCE_ID,
        METADATA_INSTANCE_TYPE,
        METADATA_MAC,
        METADATA_MAC_PATH,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM),
        mac_path(PRIMARY_MAC, METADATA_OWNER_ID),
        mac_path(PRIMARY_MAC, METADATA_INTERFACE),
        mac_path(PRIMARY_MAC, METADATA_SGS),
        mac_path(PRIMARY_MAC, METADATA_SUBNET_ID),
        mac_path(PRIMARY_MAC, METADATA_VPC_CIDR),
        mac_path(PRIMARY_MAC, METADATA_VPC_CIDRS),
    ]


@pytest.mark.parametrize(
    "failing_path",
    [
        METADATA_AZ,
        METADATA_LOCAL_IP,
        METADATA_INSTANCE_ID,
        METADATA_MAC,
        METADATA_MAC_PATH,
        mac_path(PRIMARY_MAC, METADATA_SGS),
        mac_path(PRIMARY_MAC, METADATA_SUBNET_ID),
        mac_path(PRIMARY_MAC, METADATA_VPC_CIDR),
    ],
)
def test_load_instance_metadata_errors(failing_path):
    values = full_init_values()
    values[failing_path] = RuntimeError("metadata failure")
    fake = FakeMetadata(values)
    with pytest.raises(MetadataError):
        load_instance_metadata(fake)
    assert fake.calls[-1] == failing_path


def test_find_primary_eni_first():
    fake = FakeMetadata({
        METADATA_MAC_PATH: PRIMARY_MAC + " " + ENI2_MAC,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM): "0",
        mac_path(PRIMARY_MAC, METADATA_OWNER_ID): OWNER_ID,
        mac_path(PRIMARY_MAC, METADATA_INTERFACE): PRIMARY_ENI_ID,
    })
    primary = find_primary_eni(fake, PRIMARY_MAC)
    assert primary.eni_id == PRIMARY_ENI_ID
    assert primary.account_id == OWNER_ID
    assert primary.interface_count == 2
    assert fake.calls == [
        METADATA_MAC_PATH,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM),
        mac_path(PRIMARY_MAC, METADATA_OWNER_ID),
        mac_path(PRIMARY_MAC, METADATA_INTERFACE),
    ]


def test_find_primary_eni_second_fetches_owner_once():
    fake = FakeMetadata({
        METADATA_MAC_PATH: ENI2_MAC + " " + PRIMARY_MAC,
        mac_path(ENI2_MAC, METADATA_DEVICE_NUM): "1",
        mac_path(ENI2_MAC, METADATA_OWNER_ID): OWNER_ID,
        mac_path(ENI2_MAC, METADATA_INTERFACE): ENI2_ID,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM): "0",
        mac_path(PRIMARY_MAC, METADATA_INTERFACE): PRIMARY_ENI_ID,
    })
    primary = find_primary_eni(fake, PRIMARY_MAC)
    assert primary.eni_id == PRIMARY_ENI_ID
    assert primary.account_id == OWNER_ID
    assert mac_path(PRIMARY_MAC, METADATA_OWNER_ID) not in fake.calls


def test_find_primary_eni_not_found():
    fake = FakeMetadata({
        METADATA_MAC_PATH: ENI2_MAC,
        mac_path(ENI2_MAC, METADATA_DEVICE_NUM): "1",
        mac_path(ENI2_MAC, METADATA_OWNER_ID): OWNER_ID,
        mac_path(ENI2_MAC, METADATA_INTERFACE): ENI2_ID,
    })
    with pytest.raises(MetadataError, match="primary ENI not found"):
        find_primary_eni(fake, PRIMARY_MAC)


def test_find_primary_eni_invalid_device():
    fake = FakeMetadata({
        METADATA_MAC_PATH: PRIMARY_MAC,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM): "abc",
    })
    with pytest.raises(MetadataError, match="invalid device abc"):
        find_primary_eni(fake, PRIMARY_MAC)


def attached_values(primary_device="0", eni2_device="2", eni2_ips=""):
    return {
        METADATA_MAC_PATH: PRIMARY_MAC + " " + ENI2_MAC,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM): primary_device,
        mac_path(PRIMARY_MAC, METADATA_INTERFACE): PRIMARY_ENI_ID,
        mac_path(PRIMARY_MAC, METADATA_SUBNET_CIDR): SUBNET_CIDR,
        mac_path(PRIMARY_MAC, METADATA_IPV4S): "",
        mac_path(ENI2_MAC, METADATA_DEVICE_NUM): eni2_device,
        mac_path(ENI2_MAC, METADATA_INTERFACE): ENI2_ID,
        mac_path(ENI2_MAC, METADATA_SUBNET_CIDR): SUBNET_CIDR,
        mac_path(ENI2_MAC, METADATA_IPV4S): eni2_ips,
    }


def test_get_attached_enis():
    fake = FakeMetadata(attached_values())
    enis = get_attached_enis(fake, PRIMARY_ENI_ID)
    assert len(enis) == 2
    assert enis[0] == ENIMetadata(PRIMARY_ENI_ID, PRIMARY_MAC, 0, SUBNET_CIDR, [])
    assert enis[1] == ENIMetadata(ENI2_ID, ENI2_MAC, 3, SUBNET_CIDR, [])
    assert fake.calls == [
        METADATA_MAC_PATH,
        mac_path(PRIMARY_MAC, METADATA_DEVICE_NUM),
        mac_path(PRIMARY_MAC, METADATA_INTERFACE),
        mac_path(PRIMARY_MAC, METADATA_SUBNET_CIDR),
        mac_path(PRIMARY_MAC, METADATA_IPV4S),
        mac_path(ENI2_MAC, METADATA_DEVICE_NUM),
        mac_path(ENI2_MAC, METADATA_INTERFACE),
        mac_path(ENI2_MAC, METADATA_SUBNET_CIDR),
        mac_path(ENI2_MAC, METADATA_IPV4S),
    ]


def test_get_attached_enis_unknown_primary_shifts_all_devices():
    fake = FakeMetadata(attached_values())
    enis = get_attached_enis(fake, "eni-other")
    assert [eni.device_number for eni in enis] == [1, 3]


def test_get_attached_enis_parses_ips_and_hex_device():
    fake = FakeMetadata(attached_values(eni2_device="0x10", eni2_ips="10.0.1.5 10.0.1.6"))
    enis = get_attached_enis(fake, PRIMARY_ENI_ID)
    assert enis[1].device_number == 17
    assert enis[1].local_ipv4s == ["10.0.1.5", "10.0.1.6"]


def test_get_attached_enis_strips_mac_suffix():
    values = attached_values()
    values[METADATA_MAC_PATH] = PRIMARY_MAC + "/"
    fake = FakeMetadata(values)
    enis = get_attached_enis(fake, PRIMARY_ENI_ID)
    assert [eni.mac for eni in enis] == [PRIMARY_MAC]


def test_get_attached_enis_invalid_device():
    fake = FakeMetadata(attached_values(eni2_device="two"))
    with pytest.raises(MetadataError):
        get_attached_enis(fake, PRIMARY_ENI_ID)


def test_get_attached_enis_cidr_failure():
    values = attached_values()
    values[mac_path(ENI2_MAC, METADATA_SUBNET_CIDR)] = RuntimeError("boom")
    fake = FakeMetadata(values)
    with pytest.raises(MetadataError, match=ENI2_MAC):
        get_attached_enis(fake, PRIMARY_ENI_ID)


def test_get_attached_enis_list_failure():
    fake = FakeMetadata({METADATA_MAC_PATH: RuntimeError("Err on ENIs")})
    with pytest.raises(MetadataError, match="failed to retrieve interfaces data"):
        get_attached_enis(fake, PRIMARY_ENI_ID)