"""
Custom resource inputs.

Pydantic models of the LoadBalancerConfiguration, TargetGroupConfiguration
and ListenerRuleConfiguration resources. Field aliases follow the camelCase
keys used in Kubernetes manifests.
"""

from __future__ import annotations

from typing import Any, Optional, Self

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

from gwmodel.model.binding import LabelSelector
from gwmodel.model.elbv2 import (
    ActionType,
    MutualAuthenticationMode,
    Protocol,
    ProtocolVersion,
    TargetGroupIPAddressType,
    TargetType,
)


class _Input(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


def _tags_from_list(value: Any) -> Any:
    """Accept both ``{k: v}`` and ``[{key: k, value: v}]`` tag notations."""
    if isinstance(value, list):
        return {item["key"]: item["value"] for item in value}
    return value


class Attribute(_Input):
    key: str
    value: str


# ---------------------------------------------------------------------------
# LoadBalancerConfiguration
# ---------------------------------------------------------------------------


class SubnetConfiguration(_Input):
    """Per-subnet settings; every optional field is all-or-nothing across entries."""

    identifier: Optional[str] = Field(
        None, description="Subnet id or Name tag value."
    )
    eip_allocation: Optional[str] = None
    ipv6_allocation: Optional[str] = None
    private_ipv4_allocation: Optional[str] = Field(
        None, alias="privateIPv4Allocation"
    )
    source_nat_ipv6_prefix: Optional[str] = Field(None, alias="sourceNatIPv6Prefix")


class MutualAuthenticationConfig(_Input):
    mode: MutualAuthenticationMode
    trust_store: Optional[str] = None
    ignore_client_certificate_expiry: Optional[bool] = None
    advertise_trust_store_ca_names: Optional[str] = None


class ListenerConfiguration(_Input):
    protocol_port: str = Field(..., description="'PROTOCOL:PORT', e.g. 'HTTPS:443'.")
    default_certificate: Optional[str] = None
    certificates: list[str] = Field(default_factory=list)
    ssl_policy: Optional[str] = None
    alpn_policy: Optional[str] = Field(None, alias="alpnPolicy")
    mutual_authentication: Optional[MutualAuthenticationConfig] = None
    listener_attributes: list[Attribute] = Field(default_factory=list)
    quic_enabled: bool = False

    @field_validator("protocol_port")
    @classmethod
    def _validate_protocol_port(cls, v: str) -> str:
        protocol, sep, port = v.partition(":")
        if not sep or not protocol or not port.isdigit():
            raise ValueError(f"protocolPort must be 'PROTOCOL:PORT', got '{v}'")
        return v

    @property
    def protocol(self) -> str:
        return self.protocol_port.split(":", 1)[0]

    @property
    def port(self) -> int:
        return int(self.protocol_port.split(":", 1)[1])


class LoadBalancerConfiguration(_Input):
    """Spec of a LoadBalancerConfiguration resource."""

    name: str = ""
    namespace: str = ""
    load_balancer_name: Optional[str] = None
    scheme: Optional[str] = None
    ip_address_type: Optional[str] = None
    load_balancer_subnets: Optional[list[SubnetConfiguration]] = None
    load_balancer_subnets_selector: Optional[dict[str, list[str]]] = None
    listener_configurations: list[ListenerConfiguration] = Field(default_factory=list)
    security_groups: Optional[list[str]] = None
    security_group_prefixes: list[str] = Field(default_factory=list)
    source_ranges: Optional[list[str]] = None
    vpc_id: Optional[str] = None
    load_balancer_attributes: list[Attribute] = Field(default_factory=list)
    tags: Optional[dict[str, str]] = None
    enable_icmp: bool = Field(False, alias="enableICMP")
    manage_backend_security_group_rules: bool = False

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> Any:
        return _tags_from_list(v)

    def attribute(self, key: str) -> Optional[str]:
        for attr in self.load_balancer_attributes:
            if attr.key == key:
                return attr.value
        return None


# ---------------------------------------------------------------------------
# TargetGroupConfiguration
# ---------------------------------------------------------------------------


class HealthCheckMatcherConfig(_Input):
    http_code: Optional[str] = None
    grpc_code: Optional[str] = None


class HealthCheckConfiguration(_Input):
    healthy_threshold_count: Optional[int] = None
    health_check_interval: Optional[int] = None
    health_check_path: Optional[str] = None
    health_check_port: Optional[str] = None
    health_check_protocol: Optional[Protocol] = None
    health_check_timeout: Optional[int] = None
    unhealthy_threshold_count: Optional[int] = None
    matcher: Optional[HealthCheckMatcherConfig] = None

    @field_validator("health_check_port", mode="before")
    @classmethod
    def _port_as_string(cls, v: Any) -> Any:
        if isinstance(v, int):
            return str(v)
        return v

    @field_validator("health_check_protocol")
    @classmethod
    def _validate_protocol(cls, v: Optional[Protocol]) -> Optional[Protocol]:
        if v is not None and v not in (Protocol.HTTP, Protocol.HTTPS, Protocol.TCP):
            raise ValueError(f"unsupported health check protocol '{v.value}'")
        return v


class TargetGroupProps(_Input):
    target_group_name: Optional[str] = None
    ip_address_type: Optional[TargetGroupIPAddressType] = None
    health_check_config: Optional[HealthCheckConfiguration] = None
    node_selector: Optional[LabelSelector] = None
    target_group_attributes: list[Attribute] = Field(default_factory=list)
    target_type: Optional[TargetType] = None
    protocol: Optional[str] = None
    protocol_version: Optional[ProtocolVersion] = None
    enable_multi_cluster: bool = False
    vpc_id: Optional[str] = Field(None, alias="vpcID")
    target_control_port: Optional[int] = None
    tags: Optional[dict[str, str]] = None

    @field_validator("tags", mode="before")
    @classmethod
    def _normalize_tags(cls, v: Any) -> Any:
        return _tags_from_list(v)


class RouteIdentifier(_Input):
    route_kind: str
    route_namespace: Optional[str] = None
    route_name: Optional[str] = None

    def matches(self, kind: str, namespace: str, name: str) -> bool:
        if self.route_kind != kind:
            return False
        if self.route_namespace is not None and self.route_namespace != namespace:
            return False
        return self.route_name is None or self.route_name == name

    @property
    def specificity(self) -> int:
        return (self.route_namespace is not None) + (self.route_name is not None)


class RouteConfiguration(_Input):
    route_identifier: RouteIdentifier
    target_group_props: TargetGroupProps


class TargetGroupConfiguration(_Input):
    """Spec of a TargetGroupConfiguration, attached to one Service or Gateway."""

    name: str = ""
    namespace: str = ""
    target_reference: str = Field(..., description="Name of the target object.")
    default_configuration: TargetGroupProps = Field(default_factory=TargetGroupProps)
    route_configurations: list[RouteConfiguration] = Field(default_factory=list)

    def props_for_route(self, kind: str, namespace: str, name: str) -> TargetGroupProps:
        """
        Compute the effective props for one route.

        The most specific matching route configuration is layered on top of
        the default configuration: fields it sets win, others fall back.
        """
        matches = [
            rc
            for rc in self.route_configurations
            if rc.route_identifier.matches(kind, namespace, name)
        ]
        if not matches:
            return self.default_configuration
        best = max(matches, key=lambda rc: rc.route_identifier.specificity)
        merged = self.default_configuration.model_dump(exclude_unset=True)
        merged.update(best.target_group_props.model_dump(exclude_unset=True))
        return TargetGroupProps.model_validate(merged)


# ---------------------------------------------------------------------------
# ListenerRuleConfiguration
# ---------------------------------------------------------------------------


class StickinessConfig(_Input):
    duration_seconds: int = 3600
    enabled: bool = False


class ForwardConfig(_Input):
    target_group_stickiness_config: StickinessConfig = Field(
        default_factory=StickinessConfig
    )


class RedirectConfig(_Input):
    query: Optional[str] = None


class FixedResponseConfig(_Input):
    status_code: int = Field(..., ge=200, le=599)
    content_type: Optional[str] = None
    message_body: Optional[str] = None


class SecretReference(_Input):
    name: str
    namespace: Optional[str] = None


class AuthenticateCognitoConfig(_Input):
    user_pool_arn: str
    user_pool_client_id: str
    user_pool_domain: str
    scope: Optional[str] = None
    authentication_request_extra_params: dict[str, str] = Field(default_factory=dict)
    on_unauthenticated_request: str = "authenticate"
    session_cookie_name: Optional[str] = None
    session_timeout: Optional[int] = None


class AuthenticateOidcConfig(_Input):
    authorization_endpoint: str
    secret: SecretReference
    issuer: str
    token_endpoint: str
    user_info_endpoint: str
    scope: Optional[str] = None
    authentication_request_extra_params: dict[str, str] = Field(default_factory=dict)
    on_unauthenticated_request: str = "authenticate"
    session_cookie_name: Optional[str] = None
    session_timeout: Optional[int] = None


class RuleAction(_Input):
    type: ActionType
    forward_config: Optional[ForwardConfig] = None
    redirect_config: Optional[RedirectConfig] = None
    fixed_response_config: Optional[FixedResponseConfig] = None
    authenticate_cognito_config: Optional[AuthenticateCognitoConfig] = None
    authenticate_oidc_config: Optional[AuthenticateOidcConfig] = Field(
        None, alias="authenticateOIDCConfig"
    )

    @model_validator(mode="after")
    def _config_matches_type(self) -> Self:
        required = {
            ActionType.FIXED_RESPONSE: self.fixed_response_config,
            ActionType.AUTHENTICATE_COGNITO: self.authenticate_cognito_config,
            ActionType.AUTHENTICATE_OIDC: self.authenticate_oidc_config,
        }
        if self.type in required and required[self.type] is None:
            raise ValueError(f"action '{self.type.value}' requires its config block")
        return self


class ListenerRuleConfiguration(_Input):
    name: str = ""
    namespace: str = ""
    actions: list[RuleAction] = Field(default_factory=list)
    tags: Optional[dict[str, str]] = None

    def routing_action(self) -> Optional[RuleAction]:
        """Return the first forward, fixed-response or redirect action."""
        for action in self.actions:
            if action.type in (
                ActionType.FORWARD,
                ActionType.FIXED_RESPONSE,
                ActionType.REDIRECT,
            ):
                return action
        return None

    def pre_routing_action(self) -> Optional[RuleAction]:
        """Return the authentication action, if any."""
        for action in self.actions:
            if action.type in (
                ActionType.AUTHENTICATE_COGNITO,
                ActionType.AUTHENTICATE_OIDC,
            ):
                return action
        return None
