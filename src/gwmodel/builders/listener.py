"""
Listeners and listener rules.

One listener is materialized per Gateway port that has at least one attached
route. Application load balancers get one rule per route rule, in the order
the route layer sorted them; network load balancers forward every listener to
the single backend of its single route.
"""

from __future__ import annotations

import logging
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from typing import Optional

from gwmodel.builders.actions import (
    build_pre_routing_action,
    build_routing_action,
    listener_default_actions,
    no_backend_actions,
)
from gwmodel.builders.common import collaborator_call
from gwmodel.builders.tags import TagHelper
from gwmodel.builders.target_group import TargetGroupBuilder
from gwmodel.config import ModelBuilderConfig
from gwmodel.core.stack import Stack
from gwmodel.exceptions import (
    CollaboratorError,
    ConfigurationError,
    ProtocolError,
)
from gwmodel.inputs.configuration import (
    ListenerConfiguration,
    LoadBalancerConfiguration,
)
from gwmodel.inputs.gateway import TLS_MODE_PASSTHROUGH, Gateway
from gwmodel.model.ec2 import Subnet
from gwmodel.model.elbv2 import (
    Action,
    ActionType,
    Certificate,
    ForwardActionConfig,
    IPAddressType,
    Listener,
    ListenerAttribute,
    ListenerRule,
    ListenerRuleSpec,
    ListenerSpec,
    LoadBalancer,
    LoadBalancerType,
    MutualAuthenticationAttributes,
    MutualAuthenticationMode,
    Protocol,
    TargetGroupTuple,
    is_secure_protocol,
)
from gwmodel.protocols import (
    CertDiscovery,
    RouteDescriptor,
    RouteRule,
    SecretsManager,
    SubnetsResolver,
    TrustStoreResolver,
)

logger = logging.getLogger(__name__)

ALPN_POLICY_NONE = "None"
ALPN_POLICIES = ("None", "HTTP1Only", "HTTP2Only", "HTTP2Optional", "HTTP2Preferred")

_TCP_UDP_PAIR = {Protocol.TCP, Protocol.UDP}
_TCP_QUIC_PAIR = {Protocol.TCP, Protocol.QUIC}


def merge_protocols(stored: Protocol, proposed: Protocol) -> Protocol:
    """
    Merge two protocols sharing one port.

    Raises:
        ProtocolError: If the protocols cannot share a port
    """
    if stored == proposed:
        return stored
    pair = {stored, proposed}
    if pair == _TCP_QUIC_PAIR:
        return Protocol.TCP_QUIC
    if Protocol.TCP_QUIC in pair and pair & _TCP_QUIC_PAIR:
        return Protocol.TCP_QUIC
    if pair == _TCP_UDP_PAIR:
        return Protocol.TCP_UDP
    if Protocol.TCP_UDP in pair and pair & _TCP_UDP_PAIR:
        return Protocol.TCP_UDP
    raise ProtocolError(
        f"unable to merge protocols {stored.value} and {proposed.value}"
    )


def upgrade_to_quic(protocol: Protocol) -> Protocol:
    match protocol:
        case Protocol.UDP:
            return Protocol.QUIC
        case Protocol.TCP_UDP:
            return Protocol.TCP_QUIC
        case _:
            raise ProtocolError(
                f"QUIC can only be enabled on UDP or TCP_UDP listeners, "
                f"not {protocol.value}"
            )


@dataclass
class GatewayListenerConfig:
    protocol: Protocol
    hostnames: list[str] = field(default_factory=list)
    # protocols as declared by the Gateway listeners, before QUIC or merging
    listener_protocols: set[Protocol] = field(default_factory=set)

    def matches(self, lb_listener_config: ListenerConfiguration) -> bool:
        return lb_listener_config.protocol == self.protocol.value or any(
            lb_listener_config.protocol == p.value for p in self.listener_protocols
        )


def _quic_enabled_for(
    protocol: Protocol, lb_listener_config: Optional[ListenerConfiguration]
) -> bool:
    return (
        lb_listener_config is not None
        and lb_listener_config.quic_enabled
        and lb_listener_config.protocol == protocol.value
    )


def gateway_listener_configs(
    gateway: Gateway,
    lb_configs: Optional[Mapping[int, ListenerConfiguration]] = None,
) -> dict[int, GatewayListenerConfig]:
    """
    Group the Gateway listeners by port.

    A listener whose own protocol matches a QUIC-enabled listener
    configuration is upgraded before it is merged with the other listeners
    on its port, so TCP and a QUIC-enabled UDP listener end up as TCP_QUIC.

    Raises:
        ConfigurationError: If listeners on one port use incompatible protocols
        ProtocolError: If QUIC is enabled on a protocol that cannot carry it
    """
    lb_configs = lb_configs or {}
    configs: dict[int, GatewayListenerConfig] = {}
    for listener in gateway.listeners:
        try:
            declared = Protocol(listener.protocol)
        except ValueError as e:
            raise ConfigurationError(
                f"unsupported listener protocol {listener.protocol} "
                f"on gateway {gateway.namespaced_name}"
            ) from e
        if declared == Protocol.TLS and listener.tls_mode == TLS_MODE_PASSTHROUGH:
            declared = Protocol.TCP

        protocol = declared
        if _quic_enabled_for(declared, lb_configs.get(listener.port)):
            protocol = upgrade_to_quic(declared)

        existing = configs.get(listener.port)
        if existing is None:
            existing = configs[listener.port] = GatewayListenerConfig(protocol)
        elif existing.protocol != protocol:
            try:
                existing.protocol = merge_protocols(existing.protocol, protocol)
            except ProtocolError as e:
                raise ConfigurationError(
                    "invalid listeners on gateway, listeners with same ports "
                    "cannot have different protocols"
                ) from e
        existing.listener_protocols.add(declared)

        if listener.hostname:
            existing.hostnames.append(listener.hostname)

    # TCP and UDP listeners merged into TCP_UDP with a TCP_UDP configuration
    for port, config in configs.items():
        if config.protocol == Protocol.TCP_UDP and _quic_enabled_for(
            config.protocol, lb_configs.get(port)
        ):
            config.protocol = upgrade_to_quic(config.protocol)
    return configs


def load_balancer_listener_configs(
    lb_config: LoadBalancerConfiguration,
) -> dict[int, ListenerConfiguration]:
    return {lc.port: lc for lc in lb_config.listener_configurations}


class ListenerBuilder:
    """
    Builds listeners and rules of one load balancer.

    An instance lives for a single build. Secrets read by authentication
    actions are collected in :attr:`secrets`.
    """

    def __init__(
        self,
        config: ModelBuilderConfig,
        tag_helper: TagHelper,
        tg_builder: TargetGroupBuilder,
        subnets_resolver: SubnetsResolver,
        cert_discovery: CertDiscovery,
        trust_store_resolver: TrustStoreResolver,
        secrets_manager: SecretsManager,
    ):
        self._logger = logger.getChild(self.__class__.__name__)
        self._config = config
        self._lb_type = config.load_balancer_type
        self._tag_helper = tag_helper
        self._tg_builder = tg_builder
        self._subnets_resolver = subnets_resolver
        self._cert_discovery = cert_discovery
        self._trust_store_resolver = trust_store_resolver
        self._secrets_manager = secrets_manager
        self.secrets: set[tuple[str, str]] = set()

    def build(
        self,
        stack: Stack,
        lb: LoadBalancer,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        routes_by_port: Mapping[int, Sequence[RouteDescriptor]],
        subnets: Sequence[Subnet],
        ip_address_type: IPAddressType,
    ) -> list[Listener]:
        lb_configs = load_balancer_listener_configs(lb_config)
        gw_configs = gateway_listener_configs(gateway, lb_configs)

        listeners: list[Listener] = []
        for port in sorted(gw_configs):
            routes = list(routes_by_port.get(port, []))
            if not routes:
                self._logger.info(
                    "Skipping listener on port %s of %s: no attached routes",
                    port,
                    gateway.namespaced_name,
                )
                continue

            gw_config = gw_configs[port]
            lb_listener_config = lb_configs.get(port)
            if lb_listener_config is not None and not gw_config.matches(
                lb_listener_config
            ):
                lb_listener_config = None
            protocol = gw_config.protocol

            if self._lb_type == LoadBalancerType.APPLICATION:
                listener = self._build_l7(
                    stack,
                    lb,
                    gateway,
                    lb_config,
                    port,
                    protocol,
                    gw_config,
                    lb_listener_config,
                    routes,
                    subnets,
                    ip_address_type,
                )
            else:
                listener = self._build_l4(
                    stack,
                    lb,
                    gateway,
                    lb_config,
                    port,
                    protocol,
                    gw_config,
                    lb_listener_config,
                    routes,
                    ip_address_type,
                )
            if listener is not None:
                listeners.append(listener)
        return listeners

    # -----------------------------------------------------------------------
    # Listener specs
    # -----------------------------------------------------------------------

    def _base_spec(
        self,
        lb: LoadBalancer,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        port: int,
        protocol: Protocol,
        gw_config: GatewayListenerConfig,
        lb_listener_config: Optional[ListenerConfiguration],
        routes: Sequence[RouteDescriptor],
        default_actions: list[Action],
    ) -> ListenerSpec:
        attributes = (
            lb_listener_config.listener_attributes if lb_listener_config else []
        )
        return ListenerSpec(
            load_balancer_arn=lb.load_balancer_arn(),
            port=port,
            protocol=protocol,
            default_actions=default_actions,
            certificates=self.certificates(
                gateway, port, protocol, gw_config, lb_listener_config, routes
            ),
            ssl_policy=self.ssl_policy(protocol, lb_listener_config),
            listener_attributes=[
                ListenerAttribute(key=a.key, value=a.value) for a in attributes
            ],
            tags=self._tag_helper.gateway_tags(lb_config),
        )

    def _build_l7(
        self,
        stack: Stack,
        lb: LoadBalancer,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        port: int,
        protocol: Protocol,
        gw_config: GatewayListenerConfig,
        lb_listener_config: Optional[ListenerConfiguration],
        routes: Sequence[RouteDescriptor],
        subnets: Sequence[Subnet],
        ip_address_type: IPAddressType,
    ) -> Listener:
        spec = self._base_spec(
            lb,
            gateway,
            lb_config,
            port,
            protocol,
            gw_config,
            lb_listener_config,
            routes,
            listener_default_actions(),
        )
        spec.mutual_authentication = self.mutual_authentication(
            protocol, lb_listener_config, subnets
        )
        listener = Listener(stack, str(port), spec)
        self._logger.info("Built listener %s:%s", protocol.value, port)

        self._build_rules(stack, listener, gateway, port, routes, ip_address_type)
        return listener

    def _build_l4(
        self,
        stack: Stack,
        lb: LoadBalancer,
        gateway: Gateway,
        lb_config: LoadBalancerConfiguration,
        port: int,
        protocol: Protocol,
        gw_config: GatewayListenerConfig,
        lb_listener_config: Optional[ListenerConfiguration],
        routes: Sequence[RouteDescriptor],
        ip_address_type: IPAddressType,
    ) -> Optional[Listener]:
        if len(routes) > 1:
            names = ", ".join("/".join(r.get_route_namespaced_name()) for r in routes)
            raise ConfigurationError(
                f"multiple routes [{names}] are not supported for listener "
                f"{protocol.value}:{port} for gateway {gateway.namespaced_name}"
            )
        route = routes[0]
        route_name = "/".join(route.get_route_namespaced_name())
        backends = route.get_backends()
        if not backends:
            self._logger.info(
                "Skipping listener %s:%s of %s: no backend ref found for route %s",
                protocol.value,
                port,
                gateway.namespaced_name,
                route_name,
            )
            return None
        if len(backends) > 1:
            raise ConfigurationError(
                f"multiple backend refs found for route {route_name} for listener "
                f"on port:protocol {port}:{protocol.value} for gateway "
                f"{gateway.namespaced_name}, only one must be specified"
            )
        backend = backends[0]
        if backend.weight == 0:
            self._logger.info(
                "Ignoring NLB backend with 0 weight. route=%s", route_name
            )
            return None

        tg_arn = self._tg_builder.build_target_group(
            stack, gateway, ip_address_type, route, backend, port
        )
        default_action = Action(
            type=ActionType.FORWARD,
            forward_config=ForwardActionConfig(
                target_groups=[TargetGroupTuple(target_group_arn=tg_arn)]
            ),
        )
        spec = self._base_spec(
            lb,
            gateway,
            lb_config,
            port,
            protocol,
            gw_config,
            lb_listener_config,
            routes,
            [default_action],
        )
        spec.alpn_policy = self.alpn_policy(protocol, lb_listener_config)
        listener = Listener(stack, str(port), spec)
        self._logger.info("Built listener %s:%s", protocol.value, port)
        return listener

    # -----------------------------------------------------------------------
    # Rules
    # -----------------------------------------------------------------------

    def _build_rules(
        self,
        stack: Stack,
        listener: Listener,
        gateway: Gateway,
        port: int,
        routes: Sequence[RouteDescriptor],
        ip_address_type: IPAddressType,
    ) -> None:
        secure = is_secure_protocol(listener.spec.protocol)
        priority = 1
        for route in routes:
            for rule in route.get_attached_rules():
                actions = self._rule_actions(
                    stack, gateway, port, route, rule, secure, ip_address_type
                )
                ListenerRule(
                    stack,
                    f"{port}:{priority}",
                    ListenerRuleSpec(
                        listener_arn=listener.listener_arn(),
                        priority=priority,
                        conditions=list(rule.get_conditions()),
                        actions=actions,
                        tags=self._tag_helper.listener_rule_tags(
                            rule.get_listener_rule_config()
                        ),
                    ),
                )
                priority += 1
        self._logger.info("Built %d rules for listener on port %s", priority - 1, port)

    def _rule_actions(
        self,
        stack: Stack,
        gateway: Gateway,
        port: int,
        route: RouteDescriptor,
        rule: RouteRule,
        secure: bool,
        ip_address_type: IPAddressType,
    ) -> list[Action]:
        rule_config = rule.get_listener_rule_config()
        route_ns, route_name = route.get_route_namespaced_name()
        actions: list[Action] = []

        pre_routing = rule_config.pre_routing_action() if rule_config else None
        if pre_routing is not None:
            if secure:
                action, secret = build_pre_routing_action(
                    pre_routing, route_ns, self._secrets_manager
                )
                actions.append(action)
                if secret is not None:
                    self.secrets.add(secret)
            else:
                self._logger.warning(
                    "Ignoring %s action of route %s/%s on insecure listener port %s",
                    pre_routing.type.value,
                    route_ns,
                    route_name,
                    port,
                )

        backends = rule.get_backends()
        redirect = rule.get_redirect_filter()
        tuples: list[TargetGroupTuple] = []
        if redirect is not None and not backends:
            self._logger.info(
                "Redirect-only rule of route %s/%s, no target groups needed",
                route_ns,
                route_name,
            )
        else:
            for backend in backends:
                tg_arn = self._tg_builder.build_target_group(
                    stack, gateway, ip_address_type, route, backend, port
                )
                tuples.append(
                    TargetGroupTuple(target_group_arn=tg_arn, weight=backend.weight)
                )

        routing_action = rule_config.routing_action() if rule_config else None
        action = build_routing_action(routing_action, redirect, tuples)
        if action is None:
            self._logger.info("Filling in no backend actions with fixed 503")
            actions.extend(no_backend_actions())
        else:
            actions.append(action)
        return actions

    # -----------------------------------------------------------------------
    # Listener settings
    # -----------------------------------------------------------------------

    def certificates(
        self,
        gateway: Gateway,
        port: int,
        protocol: Protocol,
        gw_config: GatewayListenerConfig,
        lb_listener_config: Optional[ListenerConfiguration],
        routes: Sequence[RouteDescriptor],
    ) -> list[Certificate]:
        if not is_secure_protocol(protocol):
            return []

        if lb_listener_config is not None:
            arns = list(lb_listener_config.certificates)
            if lb_listener_config.default_certificate:
                arns.insert(0, lb_listener_config.default_certificate)
            if arns:
                return [Certificate(certificate_arn=arn) for arn in arns]

        hostnames = self.discovery_hostnames(port, gw_config, routes)
        if not hostnames:
            raise ConfigurationError(
                f"No hostnames found for TLS cert discovery for listener on gateway "
                f"{gateway.namespaced_name} with protocol:port {protocol.value}:{port}"
            )
        with collaborator_call(
            f"unable to discover certs for listener on gateway "
            f"{gateway.namespaced_name} with protocol:port {protocol.value}:{port}"
        ):
            arns = self._cert_discovery.discover(hostnames)
        self._logger.debug("Discovered certificates for %s: %s", hostnames, arns)
        return [Certificate(certificate_arn=arn) for arn in arns]

    @staticmethod
    def discovery_hostnames(
        port: int,
        gw_config: GatewayListenerConfig,
        routes: Sequence[RouteDescriptor],
    ) -> list[str]:
        """
        Hostnames to discover certificates for, sorted and deduplicated.

        Route hostnames compatible with the listener are preferred, narrowed
        to the listener hostnames when both are present.
        """
        route_hosts: set[str] = set()
        for route in routes:
            route_hosts.update(route.get_compatible_hostnames_by_port().get(port, []))
        if not route_hosts:
            for route in routes:
                route_hosts.update(route.get_hostnames())

        listener_hosts = set(gw_config.hostnames)
        return sorted((route_hosts & listener_hosts) or route_hosts or listener_hosts)

    def ssl_policy(
        self, protocol: Protocol, lb_listener_config: Optional[ListenerConfiguration]
    ) -> Optional[str]:
        if not is_secure_protocol(protocol):
            return None
        if lb_listener_config is not None and lb_listener_config.ssl_policy:
            return lb_listener_config.ssl_policy
        return self._config.default_ssl_policy

    @staticmethod
    def alpn_policy(
        protocol: Protocol, lb_listener_config: Optional[ListenerConfiguration]
    ) -> Optional[list[str]]:
        if protocol != Protocol.TLS:
            return None
        if lb_listener_config is None or lb_listener_config.alpn_policy is None:
            return [ALPN_POLICY_NONE]
        policy = lb_listener_config.alpn_policy
        if policy not in ALPN_POLICIES:
            raise ConfigurationError(
                f"invalid ALPN policy {policy}, policy must be one of "
                f"[{', '.join(ALPN_POLICIES)}]"
            )
        return [policy]

    def mutual_authentication(
        self,
        protocol: Protocol,
        lb_listener_config: Optional[ListenerConfiguration],
        subnets: Sequence[Subnet],
    ) -> Optional[MutualAuthenticationAttributes]:
        if not is_secure_protocol(protocol):
            return None

        # Local zones and outposts do not support mTLS; subnets never mix zone types.
        if subnets:
            subnet_id = subnets[0].subnet_id
            with collaborator_call(f"failed to inspect subnet {subnet_id}"):
                local = self._subnets_resolver.is_subnet_in_local_zone_or_outpost(
                    subnet_id
                )
            if local:
                self._logger.debug(
                    "Skipping mutual authentication for local zone subnet %s",
                    subnet_id,
                )
                return None

        mtls = lb_listener_config.mutual_authentication if lb_listener_config else None
        if mtls is None:
            return MutualAuthenticationAttributes(mode=MutualAuthenticationMode.OFF)

        trust_store_arn = None
        ignore_expiry = mtls.ignore_client_certificate_expiry
        if mtls.mode == MutualAuthenticationMode.VERIFY:
            trust_store_arn = self._trust_store_arn(mtls.trust_store or "")
            if ignore_expiry is None:
                ignore_expiry = False

        return MutualAuthenticationAttributes(
            mode=mtls.mode,
            trust_store_arn=trust_store_arn,
            ignore_client_certificate_expiry=ignore_expiry,
            advertise_trust_store_ca_names=mtls.advertise_trust_store_ca_names or "",
        )

    def _trust_store_arn(self, name: str) -> str:
        if name.startswith("arn:"):
            return name
        what = f"failed to resolve trustStore ARN for name {name}"
        with collaborator_call(what):
            arns = self._trust_store_resolver.get_arns_by_names([name])
        arn = arns.get(name)
        if not arn:
            raise CollaboratorError(what)
        return arn
