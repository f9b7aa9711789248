"""Shared fakes and fixtures for the gwmodel unit tests."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field

import pytest

from gwmodel.config import ModelBuilderConfig
from gwmodel.model.ec2 import Subnet, VPCInfo
from gwmodel.model.elbv2 import (
    LoadBalancerDescription,
    LoadBalancerScheme,
    LoadBalancerType,
)

# -------------------- Fakes --------------------


class FakeSubnetsResolver:
    def __init__(self, subnets: list[Subnet], local_zone: set[str] | None = None):
        self.subnets = subnets
        self.local_zone = local_zone or set()
        self.calls: list[str] = []

    def resolve_via_name_or_id(
        self,
        names_or_ids: list[str],
        lb_type: LoadBalancerType,
        scheme: LoadBalancerScheme,
    ) -> list[Subnet]:
        self.calls.append("name_or_id")
        by_key = {s.subnet_id: s for s in self.subnets}
        by_key.update({s.tags["Name"]: s for s in self.subnets if "Name" in s.tags})
        return [by_key[key] for key in names_or_ids]

    def resolve_via_selector(
        self,
        selector: dict[str, list[str]],
        lb_type: LoadBalancerType,
        scheme: LoadBalancerScheme,
    ) -> list[Subnet]:
        self.calls.append("selector")
        return [
            s
            for s in self.subnets
            if all(s.tags.get(k) in v for k, v in selector.items())
        ]

    def resolve_via_discovery(
        self, lb_type: LoadBalancerType, scheme: LoadBalancerScheme
    ) -> list[Subnet]:
        self.calls.append("discovery")
        return list(self.subnets)

    def is_subnet_in_local_zone_or_outpost(self, subnet_id: str) -> bool:
        return subnet_id in self.local_zone


class FakeLoadBalancerLister:
    def __init__(self, load_balancers: list[LoadBalancerDescription] | None = None):
        self.load_balancers = load_balancers or []
        self.requested_tags: list[dict[str, str]] = []

    def list_load_balancers_by_tags(
        self, tags: Mapping[str, str]
    ) -> list[LoadBalancerDescription]:
        self.requested_tags.append(dict(tags))
        return self.load_balancers


class FakeSecurityGroupResolver:
    def __init__(self, ids_by_name: dict[str, str] | None = None):
        self.ids_by_name = ids_by_name or {}

    def resolve_via_name_or_id(self, names_or_ids: list[str]) -> list[str]:
        return [self.ids_by_name.get(n, n) for n in names_or_ids]


class FakeBackendSGProvider:
    def __init__(self, sg_id: str = "sg-backend"):
        self.sg_id = sg_id
        self.calls: list[tuple[str, list[str]]] = []

    def get(self, resource_type: str, namespaced_names: list[str]) -> str:
        self.calls.append((resource_type, namespaced_names))
        return self.sg_id


class FakeCertDiscovery:
    def __init__(self, arns: list[str] | None = None):
        self.arns = arns if arns is not None else ["arn:aws:acm:cert/discovered"]
        self.requests: list[list[str]] = []

    def discover(self, hostnames: list[str]) -> list[str]:
        self.requests.append(list(hostnames))
        return self.arns


class FakeTrustStoreResolver:
    def __init__(self, arns_by_name: dict[str, str] | None = None):
        self.arns_by_name = arns_by_name or {}

    def get_arns_by_names(self, names: list[str]) -> dict[str, str]:
        return {n: self.arns_by_name[n] for n in names if n in self.arns_by_name}


class FakeVPCInfoProvider:
    def __init__(self, vpc_info: VPCInfo):
        self.vpc_info = vpc_info
        self.calls: list[tuple[str, bool]] = []

    def fetch_vpc_info(self, vpc_id: str, use_cache: bool = True) -> VPCInfo:
        self.calls.append((vpc_id, use_cache))
        return self.vpc_info


class FakeTargetGroupARNMapper:
    def __init__(self, arns: dict[str, str] | None = None):
        self.arns = arns or {}

    def get_arn_by_name(self, name: str) -> str:
        return self.arns[name]


class FakeSecretsManager:
    def __init__(self, secrets: dict[tuple[str, str], dict[str, str]] | None = None):
        self.secrets = secrets or {}

    def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        return self.secrets[(namespace, name)]


@dataclass
class Collaborators:
    subnets_resolver: FakeSubnetsResolver
    lb_lister: FakeLoadBalancerLister = field(default_factory=FakeLoadBalancerLister)
    sg_resolver: FakeSecurityGroupResolver = field(
        default_factory=FakeSecurityGroupResolver
    )
    backend_sg_provider: FakeBackendSGProvider = field(
        default_factory=FakeBackendSGProvider
    )
    vpc_info_provider: FakeVPCInfoProvider = field(
        default_factory=lambda: FakeVPCInfoProvider(
            VPCInfo(vpc_id="vpc-1", ipv4_cidrs=["10.0.0.0/16"])
        )
    )
    cert_discovery: FakeCertDiscovery = field(default_factory=FakeCertDiscovery)
    trust_store_resolver: FakeTrustStoreResolver = field(
        default_factory=FakeTrustStoreResolver
    )
    tg_arn_mapper: FakeTargetGroupARNMapper = field(
        default_factory=FakeTargetGroupARNMapper
    )
    secrets_manager: FakeSecretsManager = field(default_factory=FakeSecretsManager)

    def as_kwargs(self) -> dict[str, object]:
        return dict(self.__dict__)


# -------------------- Fixtures --------------------


@pytest.fixture
def subnets() -> list[Subnet]:
    return [
        Subnet(
            subnet_id="subnet-a",
            availability_zone="us-west-2a",
            cidr_block="10.0.1.0/24",
            tags={"Name": "public-a"},
        ),
        Subnet(
            subnet_id="subnet-b",
            availability_zone="us-west-2b",
            cidr_block="10.0.2.0/24",
            tags={"Name": "public-b"},
        ),
    ]


@pytest.fixture
def collaborators(subnets: list[Subnet]) -> Collaborators:
    return Collaborators(subnets_resolver=FakeSubnetsResolver(subnets))


@pytest.fixture
def alb_config() -> ModelBuilderConfig:
    return ModelBuilderConfig(cluster_name="prod", vpc_id="vpc-1")


@pytest.fixture
def nlb_config() -> ModelBuilderConfig:
    return ModelBuilderConfig(
        cluster_name="prod",
        vpc_id="vpc-1",
        load_balancer_type=LoadBalancerType.NETWORK,
    )
