[build-system]
requires = ["hatchling"]
build-backend = "hatchling.build"

[project]
name = "vpceni"
version = "0.1.0"
description = "Manage VPC elastic network interfaces and secondary IP addresses for Kubernetes nodes"
requires-python = ">=3.10"
dependencies = []
keywords = ["vpc", "eni", "ec2", "kubernetes", "cni", "networking"]
classifiers = [
    "Development Status :: 4 - Beta",
    "Intended Audience :: System Administrators",
    "Operating System :: POSIX :: Linux",
    "Programming Language :: Python :: 3",
    "Programming Language :: Python :: 3 :: Only",
    "Programming Language :: Python :: 3.10",
    "Programming Language :: Python :: 3.11",
    "Programming Language :: Python :: 3.12",
    "Programming Language :: Python :: 3.13",
    "Topic :: System :: Networking",
]

[project.optional-dependencies]
test = ["pytest"]

[tool.hatch.build.targets.wheel]
packages = ["vpceni"]

[tool.pytest.ini_options]
addopts = "-ra"
