"""
Target-side networking of TargetGroupBindings.

The rules describe which sources may reach the backend pods or nodes. When
the load balancer has security groups, the backend security group is the
only source. A network load balancer without security groups falls back to
CIDR based rules.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence
from typing import Optional

from gwmodel.builders.common import collaborator_call
from gwmodel.builders.security_group import SecurityGroupOutput
from gwmodel.model.binding import (
    NetworkingIngressRule,
    NetworkingPeer,
    NetworkingPort,
    NetworkingProtocol,
    TargetGroupBindingNetworking,
)
from gwmodel.model.ec2 import Subnet
from gwmodel.model.elbv2 import (
    HEALTH_CHECK_PORT_TRAFFIC_PORT,
    LoadBalancerScheme,
    Protocol,
    TargetGroupIPAddressType,
    TargetGroupSpec,
    TargetType,
)
from gwmodel.protocols import VPCInfoProvider

logger = logging.getLogger(__name__)

TG_ATTRIBUTE_PRESERVE_CLIENT_IP = "preserve_client_ip.enabled"

_ANY_IPV4 = "0.0.0.0/0"
_ANY_IPV6 = "::/0"

_TRUE_VALUES = {"1", "t", "true"}
_FALSE_VALUES = {"0", "f", "false"}


def parse_bool(value: str) -> Optional[bool]:
    """Parse a boolean attribute value, returning None when unparsable."""
    lowered = value.strip().lower()
    if lowered in _TRUE_VALUES:
        return True
    if lowered in _FALSE_VALUES:
        return False
    return None


def _udp_capable(protocol: Protocol) -> bool:
    return protocol in (Protocol.UDP, Protocol.TCP_UDP)


class TargetGroupBindingNetworkBuilder:
    """
    Builds the ingress rules of every binding of one Gateway.

    The mode is fixed at construction: no load balancer security groups
    means CIDR mode, anything else means security group mode.
    """

    def __init__(
        self,
        vpc_id: str,
        scheme: LoadBalancerScheme,
        source_ranges: Optional[Sequence[str]],
        sg_output: SecurityGroupOutput,
        subnets: Sequence[Subnet],
        vpc_info_provider: VPCInfoProvider,
        disable_restricted_sg_rules: bool = False,
    ):
        self._logger = logger.getChild(self.__class__.__name__)
        self._vpc_id = vpc_id
        self._scheme = scheme
        self._source_ranges = list(source_ranges or [])
        self._sg_output = sg_output
        self._subnets = list(subnets)
        self._vpc_info_provider = vpc_info_provider
        self._disable_restricted_sg_rules = disable_restricted_sg_rules

    @property
    def cidr_mode(self) -> bool:
        return not self._sg_output.security_group_tokens

    def build(
        self, tg_spec: TargetGroupSpec, target_port: int | str
    ) -> Optional[TargetGroupBindingNetworking]:
        if self.cidr_mode:
            return self._cidr_rules(tg_spec, target_port)
        return self._security_group_rules(tg_spec, target_port)

    # -----------------------------------------------------------------------
    # Security group mode
    # -----------------------------------------------------------------------

    def _security_group_rules(
        self, tg_spec: TargetGroupSpec, target_port: int | str
    ) -> Optional[TargetGroupBindingNetworking]:
        backend_sg = self._sg_output.backend_security_group_token
        if backend_sg is None:
            return None

        peers = [NetworkingPeer(security_group=backend_sg)]
        udp = _udp_capable(tg_spec.protocol)

        if self._disable_restricted_sg_rules:
            ports = [NetworkingPort(protocol=NetworkingProtocol.TCP)]
            if udp:
                ports.append(NetworkingPort(protocol=NetworkingProtocol.UDP))
            return TargetGroupBindingNetworking(
                ingress=[NetworkingIngressRule(from_=peers, ports=ports)]
            )

        ports = [
            NetworkingPort(
                protocol=NetworkingProtocol.UDP if udp else NetworkingProtocol.TCP,
                port=target_port,
            )
        ]

        hc_port = tg_spec.health_check_config.port
        if udp or (isinstance(hc_port, int) and hc_port != target_port):
            ports.append(
                NetworkingPort(
                    protocol=NetworkingProtocol.TCP,
                    port=hc_port if isinstance(hc_port, int) else target_port,
                )
            )

        if tg_spec.target_control_port is not None:
            ports.append(
                NetworkingPort(
                    protocol=NetworkingProtocol.TCP, port=tg_spec.target_control_port
                )
            )

        return TargetGroupBindingNetworking(
            ingress=[NetworkingIngressRule(from_=peers, ports=[p]) for p in ports]
        )

    # -----------------------------------------------------------------------
    # CIDR mode
    # -----------------------------------------------------------------------

    def _cidr_rules(
        self, tg_spec: TargetGroupSpec, target_port: int | str
    ) -> TargetGroupBindingNetworking:
        subnet_cidrs = self._subnet_cidrs(tg_spec.ip_address_type)
        preserve_client_ip = self.preserve_client_ip(tg_spec)

        traffic_source = subnet_cidrs
        default_range_used = False
        if preserve_client_ip:
            traffic_source = list(self._source_ranges)
            if not traffic_source:
                traffic_source = self._default_source_ranges(tg_spec)
                default_range_used = True

        if tg_spec.protocol == Protocol.TCP_UDP:
            traffic_ports = [
                NetworkingPort(protocol=NetworkingProtocol.TCP, port=target_port),
                NetworkingPort(protocol=NetworkingProtocol.UDP, port=target_port),
            ]
        else:
            protocol = (
                NetworkingProtocol.UDP
                if tg_spec.protocol == Protocol.UDP
                else NetworkingProtocol.TCP
            )
            traffic_ports = [NetworkingPort(protocol=protocol, port=target_port)]

        networking = TargetGroupBindingNetworking(
            ingress=[
                NetworkingIngressRule(
                    from_=self._peers(traffic_source), ports=traffic_ports
                )
            ]
        )

        hc_port = tg_spec.health_check_config.port
        if hc_port == HEALTH_CHECK_PORT_TRAFFIC_PORT:
            hc_port = target_port

        if self._needs_health_check_rule(
            tg_spec.protocol,
            hc_port,
            target_port,
            preserve_client_ip,
            default_range_used,
            traffic_source,
        ) and subnet_cidrs:
            networking.ingress.append(
                NetworkingIngressRule(
                    from_=self._peers(subnet_cidrs),
                    ports=[
                        NetworkingPort(protocol=NetworkingProtocol.TCP, port=hc_port)
                    ],
                )
            )
        return networking

    @staticmethod
    def _needs_health_check_rule(
        protocol: Protocol,
        hc_port: int | str,
        target_port: int | str,
        preserve_client_ip: bool,
        default_range_used: bool,
        traffic_source: Sequence[str],
    ) -> bool:
        if protocol == Protocol.UDP or hc_port != target_port:
            return True
        if not preserve_client_ip or default_range_used:
            return False
        return not any(src in (_ANY_IPV4, _ANY_IPV6) for src in traffic_source)

    def preserve_client_ip(self, tg_spec: TargetGroupSpec) -> bool:
        if _udp_capable(tg_spec.protocol):
            return True
        for attr in tg_spec.target_group_attributes:
            if attr.key == TG_ATTRIBUTE_PRESERVE_CLIENT_IP:
                value = parse_bool(attr.value)
                if value is None:
                    self._logger.warning(
                        "Unparsable %s value '%s', treating it as false",
                        TG_ATTRIBUTE_PRESERVE_CLIENT_IP,
                        attr.value,
                    )
                    return False
                return value
        return tg_spec.target_type == TargetType.INSTANCE

    def _default_source_ranges(self, tg_spec: TargetGroupSpec) -> list[str]:
        ipv6 = tg_spec.ip_address_type == TargetGroupIPAddressType.IPV6
        if self._scheme != LoadBalancerScheme.INTERNAL:
            return [_ANY_IPV6 if ipv6 else _ANY_IPV4]

        with collaborator_call(f"failed to fetch VPC info for {self._vpc_id}"):
            vpc_info = self._vpc_info_provider.fetch_vpc_info(
                self._vpc_id, use_cache=False
            )
        self._logger.debug(
            "Using VPC %s CIDRs as default source ranges", vpc_info.vpc_id
        )
        return list(vpc_info.ipv6_cidrs if ipv6 else vpc_info.ipv4_cidrs)

    def _subnet_cidrs(self, ip_address_type: TargetGroupIPAddressType) -> list[str]:
        cidrs: list[str] = []
        for subnet in self._subnets:
            if ip_address_type == TargetGroupIPAddressType.IPV4:
                if subnet.cidr_block:
                    cidrs.append(subnet.cidr_block)
            else:
                cidrs.extend(subnet.ipv6_cidr_blocks)
        return cidrs

    @staticmethod
    def _peers(cidrs: Sequence[str]) -> list[NetworkingPeer]:
        return [NetworkingPeer(ip_block=cidr) for cidr in cidrs]
