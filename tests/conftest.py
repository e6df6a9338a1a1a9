"""Root test configuration and shared fixtures."""

import copy
import logging

import pytest
import structlog
from strata.config.settings import Settings
from strata.providers.memory import MemoryProvider
from strata.state.store import StateStore


def pytest_configure(config):
    """Configure structlog for tests to suppress debug/info output."""
    logging.basicConfig(level=logging.WARNING, force=True)
    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.processors.add_log_level,
            structlog.processors.format_exc_info,
            structlog.dev.ConsoleRenderer(),
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


SUBNETS = [
    {"id": "subnet-a", "availability_zone": "us-east-1a", "vpc_id": "vpc-1"},
    {"id": "subnet-b", "availability_zone": "us-east-1b", "vpc_id": "vpc-1"},
    {"id": "subnet-c", "availability_zone": "us-east-1c", "vpc_id": "vpc-1"},
    {"id": "subnet-e", "availability_zone": "us-east-1e", "vpc_id": "vpc-1"},
]

INVENTORY = {
    "subnets": SUBNETS,
    "unsupported-zones": [{"zone": "us-east-1e", "target": "control-plane"}],
}

EKS_DECLARATIONS = {
    "variables": {"cluster_name": "demo", "vpc_id": "vpc-1", "node_count": 2},
    "placement": {
        "control-plane": {"mode": "dynamic", "target": "control-plane"},
        "workers": {"mode": "static", "zones": ["us-east-1a", "us-east-1b", "us-east-1c"]},
    },
    "resources": [
        {
            "id": "cluster-role",
            "kind": "role",
            "attributes": {"name": "${var.cluster_name}-cluster", "service": "eks.amazonaws.com"},
        },
        {
            "id": "cluster-policy",
            "kind": "policy-attachment",
            "attributes": {
                "role": "${cluster-role.name}",
                "policy_arn": "arn:aws:iam::aws:policy/AmazonEKSClusterPolicy",
            },
        },
        {
            "id": "cluster",
            "kind": "cluster",
            "depends_on": ["cluster-policy"],
            "attributes": {
                "name": "${var.cluster_name}",
                "role_arn": "${cluster-role.arn}",
                "subnet_ids": {
                    "discover": "subnets",
                    "filters": {"vpc-id": "${var.vpc_id}"},
                    "placement": "control-plane",
                    "select": "id",
                },
            },
        },
        {
            "id": "node-role",
            "kind": "role",
            "attributes": {"name": "${var.cluster_name}-nodes", "service": "ec2.amazonaws.com"},
        },
        {
            "id": "worker-policy",
            "kind": "policy-attachment",
            "attributes": {
                "role": "${node-role.name}",
                "policy_arn": "arn:aws:iam::aws:policy/AmazonEKSWorkerNodePolicy",
            },
        },
        {
            "id": "cni-policy",
            "kind": "policy-attachment",
            "attributes": {
                "role": "${node-role.name}",
                "policy_arn": "arn:aws:iam::aws:policy/AmazonEKS_CNI_Policy",
            },
        },
        {
            "id": "registry-policy",
            "kind": "policy-attachment",
            "attributes": {
                "role": "${node-role.name}",
                "policy_arn": "arn:aws:iam::aws:policy/AmazonEC2ContainerRegistryReadOnly",
            },
        },
        {
            "id": "nodes",
            "kind": "node-group",
            "depends_on": ["worker-policy", "cni-policy", "registry-policy"],
            "attributes": {
                "cluster": "${cluster.name}",
                "name": "${var.cluster_name}-workers",
                "node_role_arn": "${node-role.arn}",
                "subnet_ids": {
                    "discover": "subnets",
                    "filters": {"vpc-id": "${var.vpc_id}"},
                    "placement": "workers",
                    "select": "id",
                },
                "scaling": {"min_size": 1, "desired_size": "${var.node_count}", "max_size": 3},
            },
        },
    ],
}


@pytest.fixture
def eks_declarations():
    """Declarations for an EKS cluster with one node group."""
    return copy.deepcopy(EKS_DECLARATIONS)


@pytest.fixture
def inventory():
    return copy.deepcopy(INVENTORY)


@pytest.fixture
def provider(inventory):
    """Memory provider seeded with four subnets and one unsupported zone."""
    return MemoryProvider(inventory)


@pytest.fixture
def state_store(tmp_path):
    return StateStore(tmp_path / "strata.state.json")


@pytest.fixture
def settings():
    """Settings with short polling so timeouts are reached in a few polls."""
    return Settings(
        poll_interval_seconds=1.0,
        default_timeout_seconds=5.0,
        cluster_timeout_seconds=10.0,
        iam_timeout_seconds=5.0,
        workers=4,
    )


@pytest.fixture
def sleeps():
    """Fake sleep recording requested delays instead of waiting."""
    delays = []

    async def _sleep(seconds):
        delays.append(seconds)

    _sleep.delays = delays
    return _sleep
