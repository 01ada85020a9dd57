"""Management of VPC ENIs and secondary IPs for Kubernetes nodes: instance metadata, limits, ENIConfig selection and pod tracking."""

__version__ = "0.1.0"