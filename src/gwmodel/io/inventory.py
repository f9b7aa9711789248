"""
Static cloud inventory.

A YAML snapshot of the AWS objects the builders look up: subnets, VPCs,
security groups, existing load balancers, certificates, trust stores, target
groups and Kubernetes Secrets. :class:`StaticInventory` implements every
collaborator protocol of :mod:`gwmodel.protocols` against that snapshot, so
a Gateway can be compiled offline.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationError
from pydantic.alias_generators import to_camel
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from gwmodel.exceptions import ManifestError
from gwmodel.model.ec2 import Subnet, VPCInfo
from gwmodel.model.elbv2 import (
    LoadBalancerDescription,
    LoadBalancerScheme,
    LoadBalancerType,
)

logger = logging.getLogger(__name__)

SUBNET_ID_PREFIX = "subnet-"
SG_ID_PREFIX = "sg-"
TAG_NAME = "Name"
TAG_ROLE_ELB = "kubernetes.io/role/elb"
TAG_ROLE_INTERNAL_ELB = "kubernetes.io/role/internal-elb"


class InventoryLoadBalancer(LoadBalancerDescription):
    tags: dict[str, str] = Field(default_factory=dict)


class StaticInventory(BaseModel):
    """Offline implementation of the builders' collaborators."""

    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )

    subnets: list[Subnet] = Field(default_factory=list)
    local_zone_subnets: list[str] = Field(
        default_factory=list,
        description="Ids of subnets placed in a local zone or an outpost.",
    )
    vpcs: list[VPCInfo] = Field(default_factory=list)
    load_balancers: list[InventoryLoadBalancer] = Field(default_factory=list)
    security_groups: dict[str, str] = Field(
        default_factory=dict, description="Security group name to id."
    )
    backend_security_group: Optional[str] = None
    certificates: dict[str, str] = Field(
        default_factory=dict,
        description="Certificate domain, possibly a wildcard, to ARN.",
    )
    trust_stores: dict[str, str] = Field(default_factory=dict)
    target_groups: dict[str, str] = Field(default_factory=dict)
    secrets: dict[str, dict[str, str]] = Field(
        default_factory=dict, description="'namespace/name' to Secret data."
    )

    # -----------------------------------------------------------------------
    # SubnetsResolver
    # -----------------------------------------------------------------------

    def resolve_via_name_or_id(
        self,
        names_or_ids: list[str],
        lb_type: LoadBalancerType,
        scheme: LoadBalancerScheme,
    ) -> list[Subnet]:
        resolved = []
        for name_or_id in names_or_ids:
            subnet = next(
                (
                    s
                    for s in self.subnets
                    if s.subnet_id == name_or_id
                    or (
                        not name_or_id.startswith(SUBNET_ID_PREFIX)
                        and s.tags.get(TAG_NAME) == name_or_id
                    )
                ),
                None,
            )
            if subnet is None:
                raise LookupError(f"subnet {name_or_id} not found")
            resolved.append(subnet)
        return resolved

    def resolve_via_selector(
        self,
        selector: dict[str, list[str]],
        lb_type: LoadBalancerType,
        scheme: LoadBalancerScheme,
    ) -> list[Subnet]:
        return [
            s
            for s in self.subnets
            if all(s.tags.get(key) in values for key, values in selector.items())
        ]

    def resolve_via_discovery(
        self, lb_type: LoadBalancerType, scheme: LoadBalancerScheme
    ) -> list[Subnet]:
        """Pick one subnet per availability zone, preferring role-tagged ones."""
        role = (
            TAG_ROLE_INTERNAL_ELB
            if scheme == LoadBalancerScheme.INTERNAL
            else TAG_ROLE_ELB
        )
        candidates = [s for s in self.subnets if role in s.tags] or self.subnets

        by_zone: dict[str, Subnet] = {}
        for subnet in sorted(candidates, key=lambda s: s.subnet_id):
            by_zone.setdefault(subnet.availability_zone, subnet)
        return [by_zone[zone] for zone in sorted(by_zone)]

    def is_subnet_in_local_zone_or_outpost(self, subnet_id: str) -> bool:
        return subnet_id in self.local_zone_subnets

    # -----------------------------------------------------------------------
    # Other collaborators
    # -----------------------------------------------------------------------

    def list_load_balancers_by_tags(
        self, tags: Mapping[str, str]
    ) -> list[LoadBalancerDescription]:
        return [
            lb
            for lb in self.load_balancers
            if all(lb.tags.get(k) == v for k, v in tags.items())
        ]

    def resolve_security_groups(self, names_or_ids: list[str]) -> list[str]:
        ids = []
        for name_or_id in names_or_ids:
            if name_or_id.startswith(SG_ID_PREFIX):
                ids.append(name_or_id)
            elif name_or_id in self.security_groups:
                ids.append(self.security_groups[name_or_id])
            else:
                raise LookupError(f"security group {name_or_id} not found")
        return ids

    def get(self, resource_type: str, namespaced_names: list[str]) -> str:
        if self.backend_security_group is None:
            raise LookupError("no backend security group in inventory")
        return self.backend_security_group

    def discover(self, hostnames: list[str]) -> list[str]:
        arns: list[str] = []
        for host in hostnames:
            arn = self.certificates.get(host)
            if arn is None:
                _, _, parent = host.partition(".")
                arn = self.certificates.get(f"*.{parent}")
            if arn is None:
                raise LookupError(f"no certificate found for host: {host}")
            if arn not in arns:
                arns.append(arn)
        return arns

    def get_arns_by_names(self, names: list[str]) -> dict[str, str]:
        return {
            name: self.trust_stores[name] for name in names if name in self.trust_stores
        }

    def fetch_vpc_info(self, vpc_id: str, use_cache: bool = True) -> VPCInfo:
        for vpc in self.vpcs:
            if vpc.vpc_id == vpc_id:
                return vpc
        raise LookupError(f"vpc {vpc_id} not found")

    def get_arn_by_name(self, name: str) -> str:
        try:
            return self.target_groups[name]
        except KeyError:
            raise LookupError(f"target group {name} not found") from None

    def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        try:
            return self.secrets[f"{namespace}/{name}"]
        except KeyError:
            raise LookupError(f"secret {namespace}/{name} not found") from None


class SecurityGroupLookup:
    """Adapts :class:`StaticInventory` to the SecurityGroupResolver protocol."""

    def __init__(self, inventory: StaticInventory):
        self._inventory = inventory

    def resolve_via_name_or_id(self, names_or_ids: list[str]) -> list[str]:
        return self._inventory.resolve_security_groups(names_or_ids)


def load_inventory(path: Path) -> StaticInventory:
    """
    Load a :class:`StaticInventory` from a YAML file.

    Raises:
        ManifestError: If the file cannot be read, parsed or validated
    """
    yaml = YAML(typ="safe")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.load(f) or {}
    except (OSError, YAMLError) as e:
        raise ManifestError(f"cannot read inventory file {path}: {e}") from e

    try:
        inventory = StaticInventory.model_validate(data)
    except ValidationError as e:
        raise ManifestError(f"invalid inventory file {path}: {e}") from e

    logger.info(
        "Loaded inventory with %d subnets and %d certificates",
        len(inventory.subnets),
        len(inventory.certificates),
    )
    return inventory
