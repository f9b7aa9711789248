"""
ELBv2 resource model.

Specs for the load balancer, listeners, listener rules and target groups that
the builders place into a :class:`~gwmodel.core.stack.Stack`.
"""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gwmodel.core.stack import Resource, ResourceRefToken, StringToken

HEALTH_CHECK_PORT_TRAFFIC_PORT = "traffic-port"

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class LoadBalancerType(str, Enum):
    APPLICATION = "application"
    NETWORK = "network"


class LoadBalancerScheme(str, Enum):
    INTERNAL = "internal"
    INTERNET_FACING = "internet-facing"


class IPAddressType(str, Enum):
    IPV4 = "ipv4"
    DUALSTACK = "dualstack"
    DUALSTACK_WITHOUT_PUBLIC_IPV4 = "dualstack-without-public-ipv4"


class Protocol(str, Enum):
    HTTP = "HTTP"
    HTTPS = "HTTPS"
    TCP = "TCP"
    TLS = "TLS"
    UDP = "UDP"
    TCP_UDP = "TCP_UDP"
    QUIC = "QUIC"
    TCP_QUIC = "TCP_QUIC"


class ProtocolVersion(str, Enum):
    HTTP1 = "HTTP1"
    HTTP2 = "HTTP2"
    GRPC = "GRPC"


class TargetType(str, Enum):
    INSTANCE = "instance"
    IP = "ip"
    ALB = "alb"


class TargetGroupIPAddressType(str, Enum):
    IPV4 = "ipv4"
    IPV6 = "ipv6"


class ActionType(str, Enum):
    FORWARD = "forward"
    FIXED_RESPONSE = "fixed-response"
    REDIRECT = "redirect"
    AUTHENTICATE_COGNITO = "authenticate-cognito"
    AUTHENTICATE_OIDC = "authenticate-oidc"


class MutualAuthenticationMode(str, Enum):
    OFF = "off"
    PASSTHROUGH = "passthrough"
    VERIFY = "verify"


def is_secure_protocol(protocol: Protocol) -> bool:
    return protocol in (Protocol.HTTPS, Protocol.TLS)


class _Spec(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


# ---------------------------------------------------------------------------
# Load balancer
# ---------------------------------------------------------------------------


class SubnetMapping(_Spec):
    """Per-subnet placement of the load balancer."""

    subnet_id: str = Field(..., alias="subnetID")
    allocation_id: Optional[str] = Field(None, alias="allocationID")
    private_ipv4_address: Optional[str] = Field(None, alias="privateIPv4Address")
    ipv6_address: Optional[str] = Field(None, alias="ipv6Address")
    source_nat_ipv6_prefix: Optional[str] = Field(None, alias="sourceNatIPv6Prefix")


class LoadBalancerAttribute(_Spec):
    key: str
    value: str


class LoadBalancerSpec(_Spec):
    name: str
    type: LoadBalancerType
    scheme: LoadBalancerScheme
    ip_address_type: IPAddressType
    subnet_mappings: list[SubnetMapping] = Field(default_factory=list)
    security_groups: list[StringToken] = Field(default_factory=list)
    load_balancer_attributes: list[LoadBalancerAttribute] = Field(
        default_factory=list
    )
    enable_prefix_for_ipv6_source_nat: Optional[str] = Field(
        None, alias="enablePrefixForIPv6SourceNat"
    )
    tags: dict[str, str] = Field(default_factory=dict)


class LoadBalancer(Resource):
    kind = "AWS::ElasticLoadBalancingV2::LoadBalancer"

    spec: LoadBalancerSpec

    def load_balancer_arn(self) -> ResourceRefToken:
        return self.token("loadBalancerARN")

    def dns_name(self) -> ResourceRefToken:
        return self.token("dnsName")


class LoadBalancerDescription(_Spec):
    """A load balancer already deployed for this stack, as reported by AWS."""

    load_balancer_arn: str = Field(..., alias="loadBalancerARN")
    scheme: LoadBalancerScheme
    subnet_ids: list[str] = Field(default_factory=list, alias="subnetIDs")


# ---------------------------------------------------------------------------
# Actions & conditions
# ---------------------------------------------------------------------------


class FixedResponseActionConfig(_Spec):
    content_type: Optional[str] = None
    message_body: Optional[str] = None
    status_code: str


class RedirectActionConfig(_Spec):
    host: Optional[str] = None
    path: Optional[str] = None
    port: Optional[str] = None
    protocol: Optional[str] = None
    query: Optional[str] = None
    status_code: str


class TargetGroupTuple(_Spec):
    target_group_arn: StringToken = Field(..., alias="targetGroupARN")
    weight: Optional[int] = None


class TargetGroupStickinessConfig(_Spec):
    enabled: Optional[bool] = None
    duration_seconds: Optional[int] = None


class ForwardActionConfig(_Spec):
    target_groups: list[TargetGroupTuple]
    target_group_stickiness_config: Optional[TargetGroupStickinessConfig] = None


class AuthenticateCognitoActionConfig(_Spec):
    user_pool_arn: str = Field(..., alias="userPoolARN")
    user_pool_client_id: str = Field(..., alias="userPoolClientID")
    user_pool_domain: str
    authentication_request_extra_params: dict[str, str] = Field(
        default_factory=dict
    )
    on_unauthenticated_request: Optional[str] = None
    scope: Optional[str] = None
    session_cookie_name: Optional[str] = None
    session_timeout: Optional[int] = None


class AuthenticateOIDCActionConfig(_Spec):
    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    user_info_endpoint: str
    client_id: str = Field(..., alias="clientID")
    client_secret: str
    authentication_request_extra_params: dict[str, str] = Field(
        default_factory=dict
    )
    on_unauthenticated_request: Optional[str] = None
    scope: Optional[str] = None
    session_cookie_name: Optional[str] = None
    session_timeout: Optional[int] = None


class Action(_Spec):
    type: ActionType
    fixed_response_config: Optional[FixedResponseActionConfig] = None
    redirect_config: Optional[RedirectActionConfig] = None
    forward_config: Optional[ForwardActionConfig] = None
    authenticate_cognito_config: Optional[AuthenticateCognitoActionConfig] = None
    authenticate_oidc_config: Optional[AuthenticateOIDCActionConfig] = Field(
        None, alias="authenticateOIDCConfig"
    )


class QueryStringKeyValuePair(_Spec):
    key: Optional[str] = None
    value: str


class RuleCondition(_Spec):
    """
    A single listener rule condition.

    Conditions are produced by the route matching layer; this package only
    carries them through to the listener rule spec.
    """

    field: str = Field(
        ...,
        description="Condition field, e.g. 'path-pattern' or 'host-header'.",
    )
    values: list[str] = Field(default_factory=list)
    http_header_name: Optional[str] = None
    query_string_pairs: list[QueryStringKeyValuePair] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Listener & rules
# ---------------------------------------------------------------------------


class Certificate(_Spec):
    certificate_arn: str = Field(..., alias="certificateARN")


class MutualAuthenticationAttributes(_Spec):
    mode: MutualAuthenticationMode
    trust_store_arn: Optional[str] = Field(None, alias="trustStoreARN")
    ignore_client_certificate_expiry: Optional[bool] = None
    advertise_trust_store_ca_names: Optional[str] = None


class ListenerAttribute(_Spec):
    key: str
    value: str


class ListenerSpec(_Spec):
    load_balancer_arn: StringToken = Field(..., alias="loadBalancerARN")
    port: int
    protocol: Protocol
    default_actions: list[Action]
    certificates: list[Certificate] = Field(default_factory=list)
    ssl_policy: Optional[str] = None
    alpn_policy: Optional[list[str]] = Field(None, alias="alpnPolicy")
    mutual_authentication: Optional[MutualAuthenticationAttributes] = None
    listener_attributes: list[ListenerAttribute] = Field(default_factory=list)
    tags: dict[str, str] = Field(default_factory=dict)


class Listener(Resource):
    kind = "AWS::ElasticLoadBalancingV2::Listener"

    spec: ListenerSpec

    def listener_arn(self) -> ResourceRefToken:
        return self.token("listenerARN")


class ListenerRuleSpec(_Spec):
    listener_arn: StringToken = Field(..., alias="listenerARN")
    priority: int = Field(..., ge=1)
    conditions: list[RuleCondition] = Field(default_factory=list)
    actions: list[Action]
    tags: dict[str, str] = Field(default_factory=dict)


class ListenerRule(Resource):
    kind = "AWS::ElasticLoadBalancingV2::ListenerRule"

    spec: ListenerRuleSpec


# ---------------------------------------------------------------------------
# Target group
# ---------------------------------------------------------------------------


class HealthCheckMatcher(_Spec):
    http_code: Optional[str] = Field(None, alias="httpCode")
    grpc_code: Optional[str] = Field(None, alias="grpcCode")


class TargetGroupHealthCheckConfig(_Spec):
    port: int | str = Field(
        ..., description="Numeric port or the 'traffic-port' sentinel."
    )
    protocol: Protocol
    path: Optional[str] = None
    matcher: Optional[HealthCheckMatcher] = None
    interval_seconds: int
    timeout_seconds: int
    healthy_threshold_count: int
    unhealthy_threshold_count: int


class TargetGroupAttribute(_Spec):
    key: str
    value: str


class TargetGroupSpec(_Spec):
    name: str
    target_type: TargetType
    port: int
    protocol: Protocol
    protocol_version: Optional[ProtocolVersion] = None
    ip_address_type: TargetGroupIPAddressType = TargetGroupIPAddressType.IPV4
    health_check_config: TargetGroupHealthCheckConfig
    target_group_attributes: list[TargetGroupAttribute] = Field(default_factory=list)
    target_control_port: Optional[int] = None
    tags: dict[str, str] = Field(default_factory=dict)


class TargetGroup(Resource):
    kind = "AWS::ElasticLoadBalancingV2::TargetGroup"

    spec: TargetGroupSpec

    def target_group_arn(self) -> ResourceRefToken:
        return self.token("targetGroupARN")
