# vpceni

A library for managing elastic network interfaces (ENIs) and their secondary
private IP addresses on a Kubernetes worker node running in a VPC. It has no
run-time dependencies beyond the standard library.

## Modules

- `vpceni.limits`: `eni_limit(instance_type)` and `ips_per_eni(instance_type)`
  look up per-instance-type limits. An unknown type raises
  `UnknownInstanceTypeError` (a `LookupError`).
- `vpceni.imds`: `MetadataSource` is the protocol for metadata lookups
  (`get_metadata(path)`, `region()`). `HttpMetadataClient` queries the instance
  metadata service over HTTP, retrying 5xx responses and connection errors with
  exponential backoff, and can fetch the `InstanceIdentityDocument`.
  `EC2MetadataClient` wraps any client that gives the identity document and
  region; with no client it builds an `HttpMetadataClient`.
- `vpceni.instance`: `load_instance_metadata(metadata)` reads the availability
  zone, primary IP, instance id and type, primary MAC and ENI, account id,
  security groups, subnet and VPC CIDRs into an `InstanceMetadata`.
  `find_primary_eni(metadata, primary_mac)` and
  `get_attached_enis(metadata, primary_eni)` describe the interfaces; the
  primary ENI gets device number 0 and every other ENI its device number plus
  one. Failures raise `MetadataError`.
- `vpceni.ec2`: the EC2 data model (`NetworkInterface`, `Instance`, `Tag`,
  `Filter`, ...), the `EC2Client` protocol listing the EC2 operations used, and
  `AwsError`, which carries an AWS error code. `EC2Wrapper.get_cluster_tag(key)`
  returns the value of a tag on the local instance.
- `vpceni.awsutils`: `EC2InstanceMetadataCache` holds the instance facts and
  performs ENI work through an `EC2Client`: `alloc_eni`, `tag_eni`, `free_eni`,
  `describe_eni`, `get_free_device_number`, `alloc_ip_address`,
  `alloc_ip_addresses` (capped at `ips_per_eni - 1`), `dealloc_ip_addresses`,
  `get_eni_ip_limit`, `get_eni_limit`, `leaked_network_interfaces` and
  `clean_up_leaked_enis`. Detach, delete and tag calls are retried with
  jittered exponential backoff. An ENI that EC2 reports as missing raises
  `ENINotFoundError`; other failures raise `AWSUtilsError`. If the
  `CLUSTER_NAME` environment variable is set, new ENIs are also tagged with
  the cluster name.
- `vpceni.eniconfig`: `ENIConfigController` and `Handler` keep ENIConfig specs
  and choose this node's config from a node annotation, then a node label,
  falling back to `default`. `MY_NODE_NAME`, `ENI_CONFIG_ANNOTATION_DEF` and
  `ENI_CONFIG_LABEL_DEF` choose the node and the keys it reads.
  `my_eni_config()` raises `NoENIConfigError` when no spec matches.
- `vpceni.k8sapi`: `Controller` records pods on the local node and the CNI
  pods in `kube-system`, from updates given to `handle_pod_update(key, pod)`.
  `k8s_get_local_pod_ips()` raises `InformerNotSyncedError` until
  `mark_synced()` has been called.
- `vpceni.netlinkerrors`: `is_not_exists_error`, `is_route_exists_error` and
  `is_network_unreachable_error` recognise `OSError`s with `ESRCH`, `EEXIST`
  and `ENETUNREACH`.

## Example

```python
from vpceni.limits import eni_limit, ips_per_eni
from vpceni.eniconfig import ENIConfig, ENIConfigController, ENIConfigSpec, Event, Handler

print(eni_limit("c5.large"))    # 3
print(ips_per_eni("c5.large"))  # 10

controller = ENIConfigController(node_name="node-1")
handler = Handler(controller)
handler.handle(Event(ENIConfig("default", ENIConfigSpec(["sg-1"], "subnet-1"))))
print(controller.my_eni_config())  # ENIConfigSpec(security_groups=['sg-1'], subnet='subnet-1')
```

`EC2InstanceMetadataCache.from_metadata(metadata, ec2_client)` builds a cache
from any `MetadataSource` and `EC2Client`.

## What this package does not do

- It ships no implementation of `EC2Client`; you supply an object that calls
  the EC2 API.
- It does not watch the Kubernetes API. `Handler` and `Controller` only apply
  the events and pod updates you pass in.
- It does not configure routes, links or addresses on the host; it only
  classifies netlink errors.
- It provides no command, daemon or server.

## Running the tests

```
pip install .[test]
pytest
```