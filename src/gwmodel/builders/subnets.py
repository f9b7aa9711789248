"""
Subnet resolution for the load balancer.

Subnets are resolved from explicit identifiers, a tag selector, the subnets of
the load balancer already deployed for this stack, or discovery, in that
order. Network load balancers then run an ordered chain of mutators that add
per-subnet allocations to the resulting subnet mappings.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import ClassVar, Protocol

from gwmodel.builders.common import collaborator_call
from gwmodel.config import ModelBuilderConfig
from gwmodel.exceptions import SubnetConfigurationError
from gwmodel.inputs.configuration import LoadBalancerConfiguration, SubnetConfiguration
from gwmodel.model.ec2 import Subnet
from gwmodel.model.elbv2 import (
    IPAddressType,
    LoadBalancerScheme,
    LoadBalancerType,
    SubnetMapping,
)
from gwmodel.protocols import LoadBalancerLister, SubnetsResolver

logger = logging.getLogger(__name__)

# Optional per-subnet fields and how they are named in error messages.
_ALL_OR_NONE_FIELDS: dict[str, str] = {
    "identifier": "subnet identifiers",
    "eip_allocation": "eip allocations",
    "ipv6_allocation": "ipv6 allocations",
    "private_ipv4_allocation": "private ipv4 allocations",
    "source_nat_ipv6_prefix": "source nat prefixes",
}


def validate_subnet_configs(
    configs: Sequence[SubnetConfiguration] | None,
    lb_type: LoadBalancerType,
    scheme: LoadBalancerScheme,
    ip_address_type: IPAddressType,
) -> bool:
    """
    Validate per-subnet configuration entries.

    Returns:
        True when source NAT prefixes are configured

    Raises:
        SubnetConfigurationError: If a field is only partially specified, or
            an allocation is used where the load balancer cannot support it
    """
    if not configs:
        return False

    first = configs[0]
    for field, label in _ALL_OR_NONE_FIELDS.items():
        expected = getattr(first, field) is not None
        for cfg in configs[1:]:
            if (getattr(cfg, field) is not None) != expected:
                raise SubnetConfigurationError(f"Either specify all {label} or none.")

    is_nlb = lb_type == LoadBalancerType.NETWORK

    if first.eip_allocation is not None:
        if not is_nlb:
            raise SubnetConfigurationError(
                "EIP Allocation is only allowed for Network LoadBalancers"
            )
        if scheme != LoadBalancerScheme.INTERNET_FACING:
            raise SubnetConfigurationError(
                "EIPAllocation can only be set for internet facing load balancers"
            )

    if first.ipv6_allocation is not None:
        if not is_nlb:
            raise SubnetConfigurationError(
                "IPv6 Allocation is only allowed for Network LoadBalancers"
            )
        if ip_address_type != IPAddressType.DUALSTACK:
            raise SubnetConfigurationError(
                "IPv6 Allocation can only be set for dualstack load balancers"
            )

    if first.private_ipv4_allocation is not None:
        if not is_nlb:
            raise SubnetConfigurationError(
                "Private IPv4 Allocation is only allowed for Network LoadBalancers"
            )
        if scheme != LoadBalancerScheme.INTERNAL:
            raise SubnetConfigurationError(
                "Private IPv4 Allocation can only be set for internal load balancers"
            )

    if first.source_nat_ipv6_prefix is not None:
        if not is_nlb:
            raise SubnetConfigurationError(
                "Source NAT prefix is only allowed for Network LoadBalancers"
            )
        return True

    return False


# ---------------------------------------------------------------------------
# Mutators
# ---------------------------------------------------------------------------


class SubnetMutator(Protocol):
    def mutate(
        self,
        mappings: list[SubnetMapping],
        subnets: Sequence[Subnet],
        configs: Sequence[SubnetConfiguration],
    ) -> None:
        """Add allocation data to ``mappings`` in place."""
        ...


class _AllocationMutator:
    """Copies one optional config field onto the matching subnet mapping."""

    config_field: ClassVar[str]
    mapping_field: ClassVar[str]

    def mutate(
        self,
        mappings: list[SubnetMapping],
        subnets: Sequence[Subnet],
        configs: Sequence[SubnetConfiguration],
    ) -> None:
        if not configs or getattr(configs[0], self.config_field) is None:
            return
        if len(configs) != len(subnets):
            raise SubnetConfigurationError(
                f"{_ALL_OR_NONE_FIELDS[self.config_field]} must be specified for "
                f"every subnet: got {len(configs)} entries for {len(subnets)} subnets"
            )

        by_identifier = {cfg.identifier: cfg for cfg in configs if cfg.identifier}
        for index, (mapping, subnet) in enumerate(zip(mappings, subnets)):
            cfg = (
                by_identifier.get(subnet.subnet_id)
                or by_identifier.get(subnet.tags.get("Name", ""))
                or configs[index]
            )
            if getattr(mapping, self.mapping_field) is None:
                setattr(mapping, self.mapping_field, getattr(cfg, self.config_field))


class EIPAllocationMutator(_AllocationMutator):
    config_field = "eip_allocation"
    mapping_field = "allocation_id"


class PrivateIPv4AllocationMutator(_AllocationMutator):
    config_field = "private_ipv4_allocation"
    mapping_field = "private_ipv4_address"


class IPv6AllocationMutator(_AllocationMutator):
    config_field = "ipv6_allocation"
    mapping_field = "ipv6_address"


class SourceNatPrefixMutator(_AllocationMutator):
    config_field = "source_nat_ipv6_prefix"
    mapping_field = "source_nat_ipv6_prefix"


def default_mutator_chain(lb_type: LoadBalancerType) -> list[SubnetMutator]:
    if lb_type != LoadBalancerType.NETWORK:
        return []
    return [
        EIPAllocationMutator(),
        PrivateIPv4AllocationMutator(),
        IPv6AllocationMutator(),
        SourceNatPrefixMutator(),
    ]


# ---------------------------------------------------------------------------
# Builder
# ---------------------------------------------------------------------------


@dataclass
class SubnetsOutput:
    subnets: list[Subnet]
    mappings: list[SubnetMapping]
    source_nat_enabled: bool


class SubnetBuilder:
    """Resolves subnets and builds the load balancer's subnet mappings."""

    def __init__(
        self,
        config: ModelBuilderConfig,
        subnets_resolver: SubnetsResolver,
        lb_lister: LoadBalancerLister,
        mutators: list[SubnetMutator] | None = None,
    ):
        self._logger = logger.getChild(self.__class__.__name__)
        self._lb_type = config.load_balancer_type
        self._resolver = subnets_resolver
        self._lb_lister = lb_lister
        self._mutators = (
            mutators
            if mutators is not None
            else default_mutator_chain(config.load_balancer_type)
        )

    def build(
        self,
        lb_config: LoadBalancerConfiguration,
        scheme: LoadBalancerScheme,
        ip_address_type: IPAddressType,
        stack_tags: Mapping[str, str],
    ) -> SubnetsOutput:
        configs = lb_config.load_balancer_subnets or []
        source_nat_enabled = validate_subnet_configs(
            configs, self._lb_type, scheme, ip_address_type
        )
        subnets = self._resolve(lb_config, scheme, stack_tags)
        if not subnets:
            raise SubnetConfigurationError(
                "unable to resolve at least one subnet for the load balancer"
            )

        mappings = [SubnetMapping(subnet_id=s.subnet_id) for s in subnets]
        for mutator in self._mutators:
            mutator.mutate(mappings, subnets, configs)

        self._logger.info(
            "Resolved subnets: %s", ", ".join(m.subnet_id for m in mappings)
        )
        return SubnetsOutput(
            subnets=subnets, mappings=mappings, source_nat_enabled=source_nat_enabled
        )

    def _resolve(
        self,
        lb_config: LoadBalancerConfiguration,
        scheme: LoadBalancerScheme,
        stack_tags: Mapping[str, str],
    ) -> list[Subnet]:
        configs = lb_config.load_balancer_subnets or []
        if configs and configs[0].identifier is not None:
            names_or_ids = [cfg.identifier for cfg in configs if cfg.identifier]
            self._logger.debug("Resolving subnets by name or id: %s", names_or_ids)
            with collaborator_call(f"failed to resolve subnets {names_or_ids}"):
                return self._resolver.resolve_via_name_or_id(
                    names_or_ids, self._lb_type, scheme
                )

        selector = lb_config.load_balancer_subnets_selector
        if selector:
            self._logger.debug("Resolving subnets by tag selector: %s", selector)
            with collaborator_call("failed to resolve subnets via tag selector"):
                return self._resolver.resolve_via_selector(
                    selector, self._lb_type, scheme
                )

        with collaborator_call("failed to list existing load balancers"):
            existing = self._lb_lister.list_load_balancers_by_tags(stack_tags)

        if not existing or existing[0].scheme != scheme:
            self._logger.debug("Discovering subnets for %s scheme", scheme.value)
            with collaborator_call("failed to discover subnets"):
                return self._resolver.resolve_via_discovery(self._lb_type, scheme)

        stored_ids = list(existing[0].subnet_ids)
        self._logger.debug(
            "Reusing subnets of %s: %s", existing[0].load_balancer_arn, stored_ids
        )
        with collaborator_call(f"failed to resolve subnets {stored_ids}"):
            return self._resolver.resolve_via_name_or_id(
                stored_ids, self._lb_type, scheme
            )
