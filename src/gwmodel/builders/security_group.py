"""
Security groups of the load balancer.

Without explicit security groups a managed one is created, opened on every
listener port for the configured source ranges and prefix lists. The shared
backend security group, when enabled, is appended to the load balancer's
groups and becomes the source of the target-side ingress rules.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from gwmodel.builders.common import collaborator_call, hashed_resource_name
from gwmodel.builders.tags import TagHelper
from gwmodel.config import ModelBuilderConfig
from gwmodel.core.stack import Stack, StringToken, literal
from gwmodel.exceptions import ConfigurationError
from gwmodel.inputs.configuration import LoadBalancerConfiguration
from gwmodel.inputs.gateway import Gateway
from gwmodel.inputs.routes import RouteKind
from gwmodel.model.ec2 import (
    ICMPV4_CODE_FOR_PATH_MTU,
    ICMPV4_PROTOCOL,
    ICMPV4_TYPE_FOR_PATH_MTU,
    ICMPV6_CODE_FOR_PATH_MTU,
    ICMPV6_PROTOCOL,
    ICMPV6_TYPE_FOR_PATH_MTU,
    IPPermission,
    IPRange,
    IPv6Range,
    PrefixList,
    SecurityGroup,
    SecurityGroupSpec,
)
from gwmodel.model.elbv2 import IPAddressType, LoadBalancerType
from gwmodel.protocols import BackendSGProvider, RouteDescriptor, SecurityGroupResolver

logger = logging.getLogger(__name__)

RESOURCE_ID_MANAGED_SECURITY_GROUP = "ManagedLBSecurityGroup"
MANAGED_SG_DESCRIPTION = "[k8s] Managed SecurityGroup for LoadBalancer"
BACKEND_SG_RESOURCE_TYPE = "gateway"

EC2_PROTOCOL_TCP = "tcp"
EC2_PROTOCOL_UDP = "udp"

_ROUTE_KIND_TO_EC2_PROTOCOL = {
    RouteKind.HTTP: EC2_PROTOCOL_TCP,
    RouteKind.GRPC: EC2_PROTOCOL_TCP,
    RouteKind.TCP: EC2_PROTOCOL_TCP,
    RouteKind.TLS: EC2_PROTOCOL_TCP,
    RouteKind.UDP: EC2_PROTOCOL_UDP,
}


@dataclass
class SecurityGroupOutput:
    security_group_tokens: list[StringToken] = field(default_factory=list)
    backend_security_group_token: Optional[StringToken] = None
    backend_security_group_allocated: bool = False


def is_ipv6_supported(ip_address_type: IPAddressType) -> bool:
    return ip_address_type in (
        IPAddressType.DUALSTACK,
        IPAddressType.DUALSTACK_WITHOUT_PUBLIC_IPV4,
    )


def is_ipv6_cidr(cidr: str) -> bool:
    return ":" in cidr


def protocols_from_routes(routes: Sequence[RouteDescriptor]) -> list[str]:
    """Return the distinct EC2 protocols needed by the routes of one port."""
    protocols = {
        _ROUTE_KIND_TO_EC2_PROTOCOL[route.get_route_kind()]
        for route in routes
        if route.get_route_kind() in _ROUTE_KIND_TO_EC2_PROTOCOL
    }
    return sorted(protocols)


def build_ingress_permissions(
    lb_config: LoadBalancerConfiguration,
    routes_by_port: Mapping[int, Sequence[RouteDescriptor]],
    ip_address_type: IPAddressType,
) -> list[IPPermission]:
    """
    Compute the managed security group ingress.

    One permission is emitted per port, protocol and source. UDP permissions
    also open ICMP path MTU discovery for the same CIDR when ICMP is enabled.
    """
    source_ranges = lb_config.source_ranges or []
    prefixes = lb_config.security_group_prefixes
    include_ipv6 = is_ipv6_supported(ip_address_type)

    permissions: list[IPPermission] = []

    def add(permission: IPPermission) -> None:
        if permission not in permissions:
            permissions.append(permission)

    for port in sorted(routes_by_port):
        for protocol in protocols_from_routes(routes_by_port[port]):
            icmp = lb_config.enable_icmp and protocol == EC2_PROTOCOL_UDP

            for cidr in source_ranges:
                if not is_ipv6_cidr(cidr):
                    ranges = [IPRange(cidr_ip=cidr)]
                    add(
                        IPPermission(
                            ip_protocol=protocol,
                            from_port=port,
                            to_port=port,
                            ip_ranges=ranges,
                        )
                    )
                    if icmp:
                        add(
                            IPPermission(
                                ip_protocol=ICMPV4_PROTOCOL,
                                from_port=ICMPV4_TYPE_FOR_PATH_MTU,
                                to_port=ICMPV4_CODE_FOR_PATH_MTU,
                                ip_ranges=ranges,
                            )
                        )
                elif include_ipv6:
                    ranges6 = [IPv6Range(cidr_ipv6=cidr)]
                    add(
                        IPPermission(
                            ip_protocol=protocol,
                            from_port=port,
                            to_port=port,
                            ipv6_ranges=ranges6,
                        )
                    )
                    if icmp:
                        add(
                            IPPermission(
                                ip_protocol=ICMPV6_PROTOCOL,
                                from_port=ICMPV6_TYPE_FOR_PATH_MTU,
                                to_port=ICMPV6_CODE_FOR_PATH_MTU,
                                ipv6_ranges=ranges6,
                            )
                        )

            for prefix_id in prefixes:
                add(
                    IPPermission(
                        ip_protocol=protocol,
                        from_port=port,
                        to_port=port,
                        prefix_lists=[PrefixList(list_id=prefix_id)],
                    )
                )

    return permissions


class SecurityGroupBuilder:
    """Resolves or allocates the security groups of one load balancer."""

    def __init__(
        self,
        config: ModelBuilderConfig,
        tag_helper: TagHelper,
        sg_resolver: SecurityGroupResolver,
        backend_sg_provider: BackendSGProvider,
    ):
        self._logger = logger.getChild(self.__class__.__name__)
        self._config = config
        self._tag_helper = tag_helper
        self._sg_resolver = sg_resolver
        self._backend_sg_provider = backend_sg_provider

    def build(
        self,
        stack: Stack,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        routes_by_port: Mapping[int, Sequence[RouteDescriptor]],
        ip_address_type: IPAddressType,
    ) -> SecurityGroupOutput:
        names_or_ids = lb_config.security_groups or []
        if names_or_ids:
            return self._explicit(gateway, lb_config, names_or_ids)

        if (
            not self._config.nlb_security_groups
            and self._config.load_balancer_type == LoadBalancerType.NETWORK
        ):
            self._logger.info(
                "No security groups for NLB %s, target ingress uses CIDR rules",
                gateway.namespaced_name,
            )
            return SecurityGroupOutput()

        return self._managed(stack, gateway, lb_config, routes_by_port, ip_address_type)

    def _managed(
        self,
        stack: Stack,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        routes_by_port: Mapping[int, Sequence[RouteDescriptor]],
        ip_address_type: IPAddressType,
    ) -> SecurityGroupOutput:
        spec = SecurityGroupSpec(
            group_name=self.managed_security_group_name(gateway),
            description=MANAGED_SG_DESCRIPTION,
            tags=self._tag_helper.gateway_tags(lb_config),
            ingress=build_ingress_permissions(
                lb_config, routes_by_port, ip_address_type
            ),
        )
        managed_sg = SecurityGroup(stack, RESOURCE_ID_MANAGED_SECURITY_GROUP, spec)

        output = SecurityGroupOutput(security_group_tokens=[managed_sg.group_id()])
        if not self._config.enable_backend_security_group:
            output.backend_security_group_token = managed_sg.group_id()
        else:
            backend_sg = self._backend_security_group(gateway)
            output.backend_security_group_token = backend_sg
            output.backend_security_group_allocated = True
            output.security_group_tokens.append(backend_sg)

        self._logger.info(
            "Managed security group %s with %d ingress permissions, backend SG %s",
            spec.group_name,
            len(spec.ingress),
            output.backend_security_group_token,
        )
        return output

    def _explicit(
        self,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        names_or_ids: list[str],
    ) -> SecurityGroupOutput:
        with collaborator_call(f"failed to resolve security groups {names_or_ids}"):
            sg_ids = self._sg_resolver.resolve_via_name_or_id(names_or_ids)

        output = SecurityGroupOutput(
            security_group_tokens=[literal(sg_id) for sg_id in sg_ids]
        )
        if lb_config.manage_backend_security_group_rules:
            if not self._config.enable_backend_security_group:
                raise ConfigurationError(
                    "backendSG feature is required to manage worker node SG rules "
                    "when frontendSG manually specified"
                )
            backend_sg = self._backend_security_group(gateway)
            output.backend_security_group_token = backend_sg
            output.backend_security_group_allocated = True
            output.security_group_tokens.append(backend_sg)

        self._logger.info(
            "Using configured security groups %s, backend SG %s",
            ", ".join(sg_ids),
            output.backend_security_group_token,
        )
        return output

    def _backend_security_group(self, gateway: Gateway) -> StringToken:
        with collaborator_call(
            f"failed to get backend security group for {gateway.namespaced_name}"
        ):
            sg_id = self._backend_sg_provider.get(
                BACKEND_SG_RESOURCE_TYPE, [gateway.namespaced_name]
            )
        return literal(sg_id)

    def managed_security_group_name(self, gateway: Gateway) -> str:
        return hashed_resource_name(
            gateway.namespace,
            gateway.name,
            self._config.cluster_name,
            gateway.name,
            gateway.namespace,
            gateway.uid,
        )
