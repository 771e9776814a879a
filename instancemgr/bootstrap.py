"""Arguments for mapping node roles into the cluster's aws-auth config."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import timedelta

NODE_USERNAME = "system:node:{{EC2PrivateDNSName}}"
MIN_RETRY_TIME = timedelta(milliseconds=100)
MAX_RETRY_TIME = timedelta(seconds=30)
MAX_RETRY_COUNT = 12


@dataclass
class MapperArguments:
    """Describes one role mapping to add to or remove from aws-auth."""

    role_arn: str
    username: str
    groups: list[str] = field(default_factory=list)
    map_roles: bool = True
    force: bool = False
    with_retries: bool = True
    min_retry_time: timedelta = MIN_RETRY_TIME
    max_retry_time: timedelta = MAX_RETRY_TIME
    max_retry_count: int = MAX_RETRY_COUNT


def groups_for_os_family(os_family: str) -> list[str]:
    """Return the RBAC groups a node of *os_family* must belong to."""
    groups = ["system:bootstrappers", "system:nodes"]
    if os_family.casefold() == "windows":
        groups.append("eks:kube-proxy-windows")
    return groups


def node_bootstrap_upsert(arn: str, os_family: str) -> MapperArguments:
    """Build mapping arguments that add the node role *arn*."""
    return MapperArguments(
        role_arn=arn,
        username=NODE_USERNAME,
        groups=groups_for_os_family(os_family),
    )


def node_bootstrap_remove(arn: str, os_family: str) -> MapperArguments:
    """Build mapping arguments that forcibly remove the node role *arn*."""
    return MapperArguments(
        role_arn=arn,
        username=NODE_USERNAME,
        groups=groups_for_os_family(os_family),
        force=True,
    )