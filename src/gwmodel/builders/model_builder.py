"""
Top-level Gateway compilation.

:class:`GatewayModelBuilder` holds the immutable configuration and the
injected collaborators. Every call to :meth:`GatewayModelBuilder.build`
creates its own stack and its own per-build builders, so builds of different
Gateways share no mutable state.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from gwmodel.builders.common import hashed_resource_name
from gwmodel.builders.listener import ListenerBuilder
from gwmodel.builders.security_group import SecurityGroupBuilder
from gwmodel.builders.subnets import SubnetBuilder
from gwmodel.builders.tags import TagHelper
from gwmodel.builders.target_group import FrontendNlbTarget, TargetGroupBuilder
from gwmodel.builders.tgb_network import TargetGroupBindingNetworkBuilder, parse_bool
from gwmodel.config import ModelBuilderConfig
from gwmodel.core.stack import Stack
from gwmodel.exceptions import ConfigurationError
from gwmodel.inputs.configuration import LoadBalancerConfiguration
from gwmodel.inputs.gateway import Gateway
from gwmodel.inputs.routes import RouteKind
from gwmodel.model.elbv2 import (
    IPAddressType,
    LoadBalancer,
    LoadBalancerAttribute,
    LoadBalancerScheme,
    LoadBalancerSpec,
)
from gwmodel.protocols import (
    BackendSGProvider,
    CertDiscovery,
    LoadBalancerLister,
    RouteDescriptor,
    SecretsManager,
    SecurityGroupResolver,
    SubnetsResolver,
    TargetGroupARNMapper,
    TrustStoreResolver,
    VPCInfoProvider,
)

logger = logging.getLogger(__name__)

RESOURCE_ID_LOAD_BALANCER = "LoadBalancer"
LB_ATTRIBUTE_DELETION_PROTECTION = "deletion_protection.enabled"
SOURCE_NAT_ENABLED = "on"

TAG_KEY_CLUSTER = "elbv2.k8s.aws/cluster"
TAG_KEY_STACK = "gateway.k8s.aws/stack"

# Gateway listener protocols each route kind may attach to.
_ROUTE_KIND_LISTENER_PROTOCOLS = {
    RouteKind.HTTP: {"HTTP", "HTTPS"},
    RouteKind.GRPC: {"HTTP", "HTTPS"},
    RouteKind.TCP: {"TCP"},
    RouteKind.UDP: {"UDP"},
    RouteKind.TLS: {"TLS"},
}


@dataclass
class BuildResult:
    """Everything one build produced."""

    stack: Stack
    load_balancer: Optional[LoadBalancer]
    backend_sg_allocated: bool = False
    frontend_nlb_targets: dict[str, FrontendNlbTarget] = field(default_factory=dict)
    secrets: set[tuple[str, str]] = field(default_factory=set)


def group_routes_by_port(
    gateway: Gateway, routes: Iterable[RouteDescriptor]
) -> dict[int, list[RouteDescriptor]]:
    """
    Attach routes to Gateway listener ports.

    A route is attached to the ports it has compatible hostnames for. A
    route without any is attached to every listener whose protocol fits
    its kind.
    """
    by_port: dict[int, list[RouteDescriptor]] = {}
    for route in routes:
        ports = set(route.get_compatible_hostnames_by_port())
        if not ports:
            allowed = _ROUTE_KIND_LISTENER_PROTOCOLS.get(route.get_route_kind(), set())
            ports = {ls.port for ls in gateway.listeners if ls.protocol in allowed}
        for port in sorted(ports):
            by_port.setdefault(port, []).append(route)
    return by_port


class GatewayModelBuilder:
    """Compiles one Gateway and its routes into an ELBv2 resource stack."""

    def __init__(
        self,
        config: ModelBuilderConfig,
        subnets_resolver: SubnetsResolver,
        lb_lister: LoadBalancerLister,
        sg_resolver: SecurityGroupResolver,
        backend_sg_provider: BackendSGProvider,
        vpc_info_provider: VPCInfoProvider,
        cert_discovery: CertDiscovery,
        trust_store_resolver: TrustStoreResolver,
        tg_arn_mapper: TargetGroupARNMapper,
        secrets_manager: SecretsManager,
    ):
        self._logger = logger.getChild(self.__class__.__name__)
        self._config = config
        self._subnets_resolver = subnets_resolver
        self._lb_lister = lb_lister
        self._sg_resolver = sg_resolver
        self._backend_sg_provider = backend_sg_provider
        self._vpc_info_provider = vpc_info_provider
        self._cert_discovery = cert_discovery
        self._trust_store_resolver = trust_store_resolver
        self._tg_arn_mapper = tg_arn_mapper
        self._secrets_manager = secrets_manager
        self._tag_helper = TagHelper(config)

    def build(
        self,
        gateway: Gateway,
        lb_config: Optional[LoadBalancerConfiguration],
        routes: Mapping[int, Sequence[RouteDescriptor]],
    ) -> BuildResult:
        """
        Build the resource stack of one Gateway.

        Args:
            gateway: The Gateway to compile
            lb_config: Its LoadBalancerConfiguration, if any
            routes: Attached routes keyed by Gateway listener port

        Returns:
            The populated stack and the side outputs of the build

        Raises:
            GatewayModelError: On any invalid input or collaborator failure;
                no partial result is returned
        """
        lb_config = lb_config or LoadBalancerConfiguration()
        stack = Stack(gateway.namespaced_name)

        if gateway.is_deleting:
            if self.is_delete_protected(lb_config):
                raise ConfigurationError(
                    f"Unable to delete gateway {gateway.namespaced_name} "
                    f"because deletion protection is enabled."
                )
            self._logger.info(
                "Gateway %s is being deleted, building empty stack",
                gateway.namespaced_name,
            )
            return BuildResult(stack=stack, load_balancer=None)

        scheme = self.load_balancer_scheme(lb_config)
        ip_address_type = self.load_balancer_ip_address_type(lb_config)
        self._logger.info(
            "Building %s load balancer for %s (scheme %s, ip type %s)",
            self._config.load_balancer_type.value,
            gateway.namespaced_name,
            scheme.value,
            ip_address_type.value,
        )

        subnet_builder = SubnetBuilder(
            self._config, self._subnets_resolver, self._lb_lister
        )
        subnets = subnet_builder.build(
            lb_config, scheme, ip_address_type, self.stack_tags(gateway)
        )

        sg_builder = SecurityGroupBuilder(
            self._config, self._tag_helper, self._sg_resolver, self._backend_sg_provider
        )
        sg_output = sg_builder.build(
            stack, gateway, lb_config, routes, ip_address_type
        )

        lb = LoadBalancer(
            stack,
            RESOURCE_ID_LOAD_BALANCER,
            LoadBalancerSpec(
                name=self.load_balancer_name(gateway, lb_config, scheme),
                type=self._config.load_balancer_type,
                scheme=scheme,
                ip_address_type=ip_address_type,
                subnet_mappings=subnets.mappings,
                security_groups=list(sg_output.security_group_tokens),
                load_balancer_attributes=[
                    LoadBalancerAttribute(key=a.key, value=a.value)
                    for a in lb_config.load_balancer_attributes
                ],
                enable_prefix_for_ipv6_source_nat=(
                    SOURCE_NAT_ENABLED if subnets.source_nat_enabled else None
                ),
                tags=self._tag_helper.gateway_tags(lb_config),
            ),
        )

        network_builder = TargetGroupBindingNetworkBuilder(
            vpc_id=lb_config.vpc_id or self._config.vpc_id,
            scheme=scheme,
            source_ranges=lb_config.source_ranges,
            sg_output=sg_output,
            subnets=subnets.subnets,
            vpc_info_provider=self._vpc_info_provider,
            disable_restricted_sg_rules=self._config.disable_restricted_sg_rules,
        )
        tg_builder = TargetGroupBuilder(
            self._config, self._tag_helper, network_builder, self._tg_arn_mapper
        )
        listener_builder = ListenerBuilder(
            self._config,
            self._tag_helper,
            tg_builder,
            self._subnets_resolver,
            self._cert_discovery,
            self._trust_store_resolver,
            self._secrets_manager,
        )
        listener_builder.build(
            stack,
            lb,
            gateway,
            lb_config,
            routes,
            subnets.subnets,
            ip_address_type,
        )

        self._logger.info(
            "Built stack %s with %d resources", stack.stack_id, len(stack)
        )
        return BuildResult(
            stack=stack,
            load_balancer=lb,
            backend_sg_allocated=sg_output.backend_security_group_allocated,
            frontend_nlb_targets=dict(tg_builder.frontend_nlb_targets),
            secrets=set(listener_builder.secrets),
        )

    def is_delete_protected(self, lb_config: LoadBalancerConfiguration) -> bool:
        value = lb_config.attribute(LB_ATTRIBUTE_DELETION_PROTECTION)
        if value is None:
            return False
        enabled = parse_bool(value)
        if enabled is None:
            self._logger.warning(
                "Unable to parse deletion protection value '%s', assuming false",
                value,
            )
            return False
        return enabled

    def load_balancer_scheme(
        self, lb_config: LoadBalancerConfiguration
    ) -> LoadBalancerScheme:
        if lb_config.scheme is None:
            return self._config.default_scheme
        try:
            return LoadBalancerScheme(lb_config.scheme)
        except ValueError as e:
            raise ConfigurationError(f"unknown scheme: {lb_config.scheme}") from e

    def load_balancer_ip_address_type(
        self, lb_config: LoadBalancerConfiguration
    ) -> IPAddressType:
        if lb_config.ip_address_type is None:
            return self._config.default_ip_address_type
        try:
            return IPAddressType(lb_config.ip_address_type)
        except ValueError as e:
            raise ConfigurationError(
                f"unknown IPAddressType: {lb_config.ip_address_type}"
            ) from e

    def load_balancer_name(
        self,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        scheme: LoadBalancerScheme,
    ) -> str:
        if lb_config.load_balancer_name:
            return lb_config.load_balancer_name
        return hashed_resource_name(
            gateway.namespace,
            gateway.name,
            self._config.cluster_name,
            gateway.namespace,
            gateway.name,
            scheme.value,
        )

    def stack_tags(self, gateway: Gateway) -> dict[str, str]:
        """Tags identifying resources already deployed for this Gateway."""
        return {
            TAG_KEY_CLUSTER: self._config.cluster_name,
            TAG_KEY_STACK: gateway.namespaced_name,
        }
