"""
Target groups and their TargetGroupBindings.

One target group is built per distinct (route, backend, port) tuple. The
same tuple requested again, for example from a second rule of the same
route, returns the target group already in the stack.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Optional

from gwmodel.builders.common import collaborator_call, hashed_resource_name
from gwmodel.builders.security_group import is_ipv6_supported
from gwmodel.builders.tags import TagHelper
from gwmodel.builders.tgb_network import TargetGroupBindingNetworkBuilder
from gwmodel.config import ModelBuilderConfig
from gwmodel.core.stack import Stack, StringToken, literal
from gwmodel.exceptions import ConfigurationError, ProtocolError
from gwmodel.inputs.configuration import HealthCheckConfiguration, TargetGroupProps
from gwmodel.inputs.gateway import Gateway, Service, ServicePort
from gwmodel.inputs.routes import (
    Backend,
    GatewayBackend,
    LiteralTargetGroupBackend,
    RouteKind,
    ServiceBackend,
)
from gwmodel.model.binding import (
    ObjectMeta,
    ServiceReference,
    TargetGroupBindingResource,
    TargetGroupBindingResourceSpec,
    TargetGroupBindingSpec,
    TargetGroupBindingTemplate,
)
from gwmodel.model.elbv2 import (
    HEALTH_CHECK_PORT_TRAFFIC_PORT,
    HealthCheckMatcher,
    IPAddressType,
    LoadBalancerType,
    Protocol,
    ProtocolVersion,
    TargetGroup,
    TargetGroupAttribute,
    TargetGroupHealthCheckConfig,
    TargetGroupIPAddressType,
    TargetGroupSpec,
    TargetType,
)
from gwmodel.protocols import RouteDescriptor, TargetGroupARNMapper

logger = logging.getLogger(__name__)

_L7_PROTOCOLS = (Protocol.HTTP, Protocol.HTTPS)
_L4_PROTOCOLS = (Protocol.TCP, Protocol.UDP, Protocol.TCP_UDP, Protocol.TLS)

SERVICE_IP_FAMILY_IPV6 = "IPv6"
EXTERNAL_TRAFFIC_POLICY_LOCAL = "Local"


@dataclass(frozen=True)
class HealthCheckDefaults:
    protocol: Optional[Protocol]
    path: str
    interval_seconds: int
    timeout_seconds: int
    healthy_threshold_count: int
    unhealthy_threshold_count: int


DEFAULT_HEALTH_CHECK = HealthCheckDefaults(
    protocol=None,
    path="/",
    interval_seconds=15,
    timeout_seconds=5,
    healthy_threshold_count=3,
    unhealthy_threshold_count=3,
)

# NLB, instance targets, Service with externalTrafficPolicy=Local.
LOCAL_POLICY_HEALTH_CHECK = HealthCheckDefaults(
    protocol=Protocol.HTTP,
    path="/healthz",
    interval_seconds=10,
    timeout_seconds=6,
    healthy_threshold_count=2,
    unhealthy_threshold_count=2,
)

DEFAULT_HEALTH_CHECK_PATH_GRPC = "/AWS.ALB/healthcheck"
DEFAULT_MATCHER_HTTP_CODE = "200-399"
DEFAULT_MATCHER_GRPC_CODE = "12"

_HC_TIMING_FIELDS = {
    "interval_seconds": "health_check_interval",
    "timeout_seconds": "health_check_timeout",
    "healthy_threshold_count": "healthy_threshold_count",
    "unhealthy_threshold_count": "unhealthy_threshold_count",
}


@dataclass
class FrontendNlbTarget:
    """An ALB registered as the target of a frontend NLB target group."""

    name: str
    port: int
    target_port: int
    target_arn: str


class TargetGroupBuilder:
    """
    Builds target groups for route backends.

    An instance lives for a single build: it caches the target groups it
    created by resource id and collects the frontend NLB targets.
    """

    def __init__(
        self,
        config: ModelBuilderConfig,
        tag_helper: TagHelper,
        network_builder: TargetGroupBindingNetworkBuilder,
        arn_mapper: TargetGroupARNMapper,
    ):
        self._logger = logger.getChild(self.__class__.__name__)
        self._config = config
        self._lb_type = config.load_balancer_type
        self._tag_helper = tag_helper
        self._network_builder = network_builder
        self._arn_mapper = arn_mapper
        self._tg_by_res_id: dict[str, TargetGroup] = {}
        self.frontend_nlb_targets: dict[str, FrontendNlbTarget] = {}

    def build_target_group(
        self,
        stack: Stack,
        gateway: Gateway,
        lb_ip_type: IPAddressType,
        route: RouteDescriptor,
        backend: Backend,
        listener_port: int,
    ) -> StringToken:
        """
        Return the ARN token of the target group serving ``backend``.

        Raises:
            ConfigurationError: If the backend is of an unknown type or its
                target group settings are invalid
        """
        match backend:
            case ServiceBackend():
                tg = self._from_service(stack, gateway, lb_ip_type, route, backend)
                return tg.target_group_arn()
            case LiteralTargetGroupBackend(name=name):
                with collaborator_call(f"failed to resolve target group {name}"):
                    arn = self._arn_mapper.get_arn_by_name(name)
                return literal(arn)
            case GatewayBackend():
                tg = self._from_gateway(stack, gateway, route, backend, listener_port)
                return tg.target_group_arn()
            case _:
                raise ConfigurationError("unknown backend type")

    # -----------------------------------------------------------------------
    # Service backends
    # -----------------------------------------------------------------------

    def _from_service(
        self,
        stack: Stack,
        gateway: Gateway,
        lb_ip_type: IPAddressType,
        route: RouteDescriptor,
        backend: ServiceBackend,
    ) -> TargetGroup:
        props = backend.target_group_props or TargetGroupProps()
        route_ns, route_name = route.get_route_namespaced_name()
        kind = route.get_route_kind()
        service = backend.service

        res_id = target_group_resource_id(
            gateway,
            route_ns,
            route_name,
            kind,
            service.namespace,
            service.name,
            backend.service_port.target_port,
            props.target_control_port,
        )
        existing = self._tg_by_res_id.get(res_id)
        if existing is not None:
            self._logger.debug("Reusing target group %s", res_id)
            return existing

        spec = self._service_tg_spec(gateway, route, lb_ip_type, backend, props)
        tg = TargetGroup(stack, res_id, spec)

        target_port: int | str = backend.service_port.target_port
        if spec.target_type == TargetType.INSTANCE:
            target_port = backend.service_port.node_port

        binding = TargetGroupBindingSpec(
            target_group_arn=tg.target_group_arn(),
            target_type=spec.target_type,
            service_ref=ServiceReference(
                name=service.name, port=backend.service_port.port
            ),
            networking=self._network_builder.build(spec, target_port),
            node_selector=(
                props.node_selector if spec.target_type == TargetType.INSTANCE else None
            ),
            ip_address_type=spec.ip_address_type,
            vpc_id=props.vpc_id or self._config.vpc_id,
            multi_cluster_target_group=props.enable_multi_cluster,
            target_group_protocol=spec.protocol,
        )
        infrastructure = gateway.infrastructure
        metadata = ObjectMeta(
            namespace=service.namespace,
            name=spec.name,
            annotations=dict(infrastructure.annotations) if infrastructure else {},
            labels=dict(infrastructure.labels) if infrastructure else {},
        )
        TargetGroupBindingResource(
            stack,
            res_id,
            TargetGroupBindingResourceSpec(
                template=TargetGroupBindingTemplate(metadata=metadata, spec=binding)
            ),
        )

        self._tg_by_res_id[res_id] = tg
        self._logger.info(
            "Built target group %s (%s, %s:%s) for %s",
            spec.name,
            spec.target_type.value,
            spec.protocol.value,
            spec.port,
            service.namespaced_name,
        )
        return tg

    def _service_tg_spec(
        self,
        gateway: Gateway,
        route: RouteDescriptor,
        lb_ip_type: IPAddressType,
        backend: ServiceBackend,
        props: TargetGroupProps,
    ) -> TargetGroupSpec:
        target_type = props.target_type or self._config.default_target_type
        if target_type == TargetType.ALB:
            raise ConfigurationError(
                f"target type {target_type.value} is only valid for gateway backends"
            )
        protocol = self.target_group_protocol(props, route.get_route_kind())
        protocol_version = self.target_group_protocol_version(
            props, route.get_route_kind()
        )
        ip_address_type = self.target_group_ip_address_type(
            backend.service, props, lb_ip_type
        )
        port = target_group_port(target_type, backend.service_port)
        if port == 0:
            if target_type == TargetType.IP:
                raise ConfigurationError(
                    "TargetGroup port is empty. Are you using the correct service type?"
                )
            raise ConfigurationError(
                "TargetGroup port is empty. When using Instance targets, your "
                "service must be of type 'NodePort' or 'LoadBalancer'"
            )

        route_ns, route_name = route.get_route_namespaced_name()
        name = props.target_group_name or self.target_group_name(
            gateway,
            route_ns,
            route_name,
            route.get_route_kind(),
            backend.service.namespace,
            backend.service.name,
            port,
            target_type,
            protocol,
            protocol_version,
        )

        return TargetGroupSpec(
            name=name,
            target_type=target_type,
            port=port,
            protocol=protocol,
            protocol_version=protocol_version,
            ip_address_type=ip_address_type,
            health_check_config=self.health_check_config(
                props, protocol, protocol_version, target_type, backend.service
            ),
            target_group_attributes=_attributes(props),
            target_control_port=props.target_control_port,
            tags=self._tag_helper.target_group_tags(props),
        )

    # -----------------------------------------------------------------------
    # Gateway backends
    # -----------------------------------------------------------------------

    def _from_gateway(
        self,
        stack: Stack,
        gateway: Gateway,
        route: RouteDescriptor,
        backend: GatewayBackend,
        listener_port: int,
    ) -> TargetGroup:
        if self._lb_type != LoadBalancerType.NETWORK:
            raise ConfigurationError(
                f"gateway backend {backend.namespaced_name} requires a network "
                "load balancer"
            )
        props = backend.target_group_props or TargetGroupProps()
        route_ns, route_name = route.get_route_namespaced_name()
        kind = route.get_route_kind()

        res_id = target_group_resource_id(
            gateway,
            route_ns,
            route_name,
            kind,
            backend.namespace,
            backend.name,
            backend.port,
            None,
        )
        existing = self._tg_by_res_id.get(res_id)
        if existing is not None:
            return existing

        protocol = self.target_group_protocol(props, kind)
        if protocol != Protocol.TCP:
            raise ProtocolError(
                f"backend protocol must be {Protocol.TCP.value} for gateway "
                f"backends: {protocol.value}"
            )
        name = props.target_group_name or self.target_group_name(
            gateway,
            route_ns,
            route_name,
            kind,
            backend.namespace,
            backend.name,
            backend.port,
            TargetType.ALB,
            protocol,
            None,
        )

        hc = props.health_check_config
        hc_protocol = (hc.health_check_protocol if hc else None) or Protocol.HTTP
        if hc_protocol == Protocol.TCP:
            raise ConfigurationError(
                "health check protocol must be HTTP or HTTPS for gateway backends"
            )
        spec = TargetGroupSpec(
            name=name,
            target_type=TargetType.ALB,
            port=backend.port,
            protocol=protocol,
            ip_address_type=TargetGroupIPAddressType.IPV4,
            health_check_config=TargetGroupHealthCheckConfig(
                port=_gateway_health_check_port(hc, backend.port),
                protocol=hc_protocol,
                path=(hc.health_check_path if hc else None)
                or DEFAULT_HEALTH_CHECK.path,
                matcher=HealthCheckMatcher(
                    http_code=(hc.matcher.http_code if hc and hc.matcher else None)
                    or DEFAULT_MATCHER_HTTP_CODE
                ),
                **_hc_timings(hc, DEFAULT_HEALTH_CHECK),
            ),
            target_group_attributes=_attributes(props),
            tags=self._tag_helper.target_group_tags(props),
        )
        tg = TargetGroup(stack, res_id, spec)
        self._tg_by_res_id[res_id] = tg
        self.frontend_nlb_targets[name] = FrontendNlbTarget(
            name=name,
            port=listener_port,
            target_port=backend.port,
            target_arn=backend.load_balancer_arn,
        )
        self._logger.info(
            "Built ALB target group %s for gateway %s", name, backend.namespaced_name
        )
        return tg

    # -----------------------------------------------------------------------
    # Spec fields
    # -----------------------------------------------------------------------

    def target_group_protocol(
        self, props: TargetGroupProps, route_kind: RouteKind
    ) -> Protocol:
        allowed = (
            _L7_PROTOCOLS
            if self._lb_type == LoadBalancerType.APPLICATION
            else _L4_PROTOCOLS
        )
        if props.protocol is None:
            return self._infer_protocol(route_kind)
        for protocol in allowed:
            if props.protocol == protocol.value:
                return protocol
        raise ProtocolError(
            f"backend protocol must be within "
            f"[{', '.join(p.value for p in allowed)}]: {props.protocol}"
        )

    def _infer_protocol(self, route_kind: RouteKind) -> Protocol:
        match route_kind:
            case RouteKind.UDP:
                return Protocol.UDP
            case RouteKind.HTTP | RouteKind.GRPC:
                return Protocol.HTTP
            case RouteKind.TLS:
                if self._lb_type == LoadBalancerType.NETWORK:
                    return Protocol.TLS
                return Protocol.HTTPS
            case _:
                return Protocol.TCP

    def target_group_protocol_version(
        self, props: TargetGroupProps, route_kind: RouteKind
    ) -> Optional[ProtocolVersion]:
        if self._lb_type == LoadBalancerType.NETWORK:
            return None
        if props.protocol_version is not None:
            return props.protocol_version
        if route_kind == RouteKind.GRPC:
            return ProtocolVersion.GRPC
        return ProtocolVersion.HTTP1

    @staticmethod
    def target_group_ip_address_type(
        service: Service, props: TargetGroupProps, lb_ip_type: IPAddressType
    ) -> TargetGroupIPAddressType:
        ipv6 = SERVICE_IP_FAMILY_IPV6 in service.ip_families
        if props.ip_address_type is not None:
            ipv6 = props.ip_address_type == TargetGroupIPAddressType.IPV6
        if not ipv6:
            return TargetGroupIPAddressType.IPV4
        if not is_ipv6_supported(lb_ip_type):
            raise ConfigurationError(
                "unsupported IPv6 configuration, lb not dual-stack"
            )
        return TargetGroupIPAddressType.IPV6

    def health_check_config(
        self,
        props: TargetGroupProps,
        tg_protocol: Protocol,
        protocol_version: Optional[ProtocolVersion],
        target_type: TargetType,
        service: Service,
    ) -> TargetGroupHealthCheckConfig:
        local_policy = (
            target_type == TargetType.INSTANCE
            and service.external_traffic_policy == EXTERNAL_TRAFFIC_POLICY_LOCAL
            and self._lb_type == LoadBalancerType.NETWORK
        )
        defaults = LOCAL_POLICY_HEALTH_CHECK if local_policy else DEFAULT_HEALTH_CHECK
        hc = props.health_check_config
        grpc = protocol_version == ProtocolVersion.GRPC

        protocol = hc.health_check_protocol if hc else None
        if protocol is None:
            if self._lb_type == LoadBalancerType.NETWORK:
                protocol = defaults.protocol or Protocol.TCP
            else:
                protocol = tg_protocol

        path: Optional[str] = None
        matcher: Optional[HealthCheckMatcher] = None
        if protocol != Protocol.TCP:
            if hc and hc.health_check_path:
                path = hc.health_check_path
            elif grpc:
                path = DEFAULT_HEALTH_CHECK_PATH_GRPC
            else:
                path = defaults.path

            configured = hc.matcher if hc else None
            if grpc:
                matcher = HealthCheckMatcher(
                    grpc_code=(configured.grpc_code if configured else None)
                    or DEFAULT_MATCHER_GRPC_CODE
                )
            else:
                matcher = HealthCheckMatcher(
                    http_code=(configured.http_code if configured else None)
                    or DEFAULT_MATCHER_HTTP_CODE
                )

        return TargetGroupHealthCheckConfig(
            port=self.health_check_port(props, target_type, service, local_policy),
            protocol=protocol,
            path=path,
            matcher=matcher,
            **_hc_timings(hc, defaults),
        )

    @staticmethod
    def health_check_port(
        props: TargetGroupProps,
        target_type: TargetType,
        service: Service,
        local_policy: bool,
    ) -> int | str:
        configured = (
            props.health_check_config.health_check_port
            if props.health_check_config
            else None
        )
        if configured is None and local_policy:
            return service.health_check_node_port
        if configured is None or configured == HEALTH_CHECK_PORT_TRAFFIC_PORT:
            return HEALTH_CHECK_PORT_TRAFFIC_PORT
        if configured.isdigit():
            return int(configured)

        svc_port = service.lookup_port(configured)
        if svc_port is None:
            raise ConfigurationError(
                f"unable to find port {configured} on service {service.namespaced_name}"
            )
        if target_type == TargetType.INSTANCE:
            return svc_port.node_port
        if isinstance(svc_port.target_port, int):
            return svc_port.target_port
        raise ConfigurationError(
            "cannot use named healthCheckPort for IP TargetType when service's "
            "targetPort is a named port"
        )

    def target_group_name(
        self,
        gateway: Gateway,
        route_ns: str,
        route_name: str,
        route_kind: RouteKind,
        target_ns: str,
        target_name: str,
        port: int,
        target_type: TargetType,
        protocol: Protocol,
        protocol_version: Optional[ProtocolVersion],
    ) -> str:
        parts = [
            self._config.cluster_name,
            gateway.namespace,
            gateway.name,
            route_ns,
            route_name,
            route_kind.value,
            target_ns,
            target_name,
            str(port),
            target_type.value,
            protocol.value,
        ]
        if protocol_version is not None:
            parts.append(protocol_version.value)
        return hashed_resource_name(route_ns, route_name, *parts)


def target_group_resource_id(
    gateway: Gateway,
    route_ns: str,
    route_name: str,
    route_kind: RouteKind,
    target_ns: str,
    target_name: str,
    port: int | str,
    control_port: Optional[int],
) -> str:
    res_id = (
        f"{gateway.namespace}/{gateway.name}:{route_ns}-{route_name}:"
        f"{route_kind.value}-{target_ns}-{target_name}:{port}"
    )
    if control_port is not None:
        res_id = f"{res_id}:{control_port}"
    return res_id


def target_group_port(target_type: TargetType, svc_port: ServicePort) -> int:
    if target_type == TargetType.INSTANCE:
        return svc_port.node_port
    if isinstance(svc_port.target_port, int):
        return svc_port.target_port
    # Targets are always registered with an explicit port.
    return 1


def _attributes(props: TargetGroupProps) -> list[TargetGroupAttribute]:
    merged = {attr.key: attr.value for attr in props.target_group_attributes}
    return [TargetGroupAttribute(key=k, value=v) for k, v in merged.items()]


def _hc_timings(
    hc: Optional[HealthCheckConfiguration], defaults: HealthCheckDefaults
) -> dict[str, int]:
    timings = {}
    for spec_field, config_field in _HC_TIMING_FIELDS.items():
        value = getattr(hc, config_field) if hc is not None else None
        timings[spec_field] = getattr(defaults, spec_field) if value is None else value
    return timings


def _gateway_health_check_port(
    hc: Optional[HealthCheckConfiguration], port: int
) -> int | str:
    configured = hc.health_check_port if hc else None
    if configured is None or configured == HEALTH_CHECK_PORT_TRAFFIC_PORT:
        return HEALTH_CHECK_PORT_TRAFFIC_PORT
    # Gateway backends are always health checked on the listener port.
    return port
