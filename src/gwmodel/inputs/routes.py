"""
Route descriptors and backends.

These models are the already-matched output of the route layer: rules arrive
sorted by precedence, with their listener rule conditions built. They satisfy
the :class:`~gwmodel.protocols.RouteDescriptor` and
:class:`~gwmodel.protocols.RouteRule` protocols.
"""

from __future__ import annotations

from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gwmodel.inputs.configuration import ListenerRuleConfiguration, TargetGroupProps
from gwmodel.inputs.gateway import Service, ServicePort
from gwmodel.model.elbv2 import RuleCondition


class RouteKind(str, Enum):
    HTTP = "HTTPRoute"
    GRPC = "GRPCRoute"
    TCP = "TCPRoute"
    UDP = "UDPRoute"
    TLS = "TLSRoute"


L7_ROUTE_KINDS = frozenset({RouteKind.HTTP, RouteKind.GRPC})


class _Input(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


# ---------------------------------------------------------------------------
# Backends
# ---------------------------------------------------------------------------


class ServiceBackend(_Input):
    """A Kubernetes Service port behind a managed target group."""

    kind: Literal["service"] = "service"
    service: Service
    service_port: ServicePort
    weight: int = Field(1, ge=0)
    target_group_props: Optional[TargetGroupProps] = None


class LiteralTargetGroupBackend(_Input):
    """An existing target group referenced by name."""

    kind: Literal["target-group-name"] = "target-group-name"
    name: str
    weight: int = Field(1, ge=0)


class GatewayBackend(_Input):
    """Another Gateway's application load balancer, used as an ALB-type target."""

    kind: Literal["gateway"] = "gateway"
    name: str
    namespace: str
    load_balancer_arn: str = Field(..., alias="loadBalancerARN")
    port: int = Field(..., ge=1, le=65535)
    weight: int = Field(1, ge=0)
    target_group_props: Optional[TargetGroupProps] = None

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"


Backend = Annotated[
    Union[ServiceBackend, LiteralTargetGroupBackend, GatewayBackend],
    Field(discriminator="kind"),
]


# ---------------------------------------------------------------------------
# Rules & routes
# ---------------------------------------------------------------------------


class PathModifier(_Input):
    type: Literal["ReplaceFullPath", "ReplacePrefixMatch"]
    value: str


class RequestRedirectFilter(_Input):
    scheme: Optional[str] = None
    hostname: Optional[str] = None
    path: Optional[PathModifier] = None
    port: Optional[int] = None
    status_code: Optional[int] = None


class RouteRule(_Input):
    conditions: list[RuleCondition] = Field(default_factory=list)
    backends: list[Backend] = Field(default_factory=list)
    listener_rule_config: Optional[ListenerRuleConfiguration] = None
    redirect_filter: Optional[RequestRedirectFilter] = None

    def get_conditions(self) -> list[RuleCondition]:
        return self.conditions

    def get_backends(self) -> list[Backend]:
        return self.backends

    def get_listener_rule_config(self) -> Optional[ListenerRuleConfiguration]:
        return self.listener_rule_config

    def get_redirect_filter(self) -> Optional[RequestRedirectFilter]:
        return self.redirect_filter


class Route(_Input):
    kind: RouteKind
    name: str
    namespace: str
    hostnames: list[str] = Field(default_factory=list)
    compatible_hostnames_by_port: dict[int, list[str]] = Field(default_factory=dict)
    rules: list[RouteRule] = Field(default_factory=list)

    def get_route_kind(self) -> RouteKind:
        return self.kind

    def get_route_namespaced_name(self) -> tuple[str, str]:
        return self.namespace, self.name

    def get_hostnames(self) -> list[str]:
        return self.hostnames

    def get_compatible_hostnames_by_port(self) -> dict[int, list[str]]:
        return self.compatible_hostnames_by_port

    def get_attached_rules(self) -> list[RouteRule]:
        return self.rules

    def get_backends(self) -> list[Backend]:
        return [backend for rule in self.rules for backend in rule.backends]
