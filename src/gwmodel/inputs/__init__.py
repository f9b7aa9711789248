"""Input models for Gateway API objects and their AWS configuration resources."""

from .configuration import (
    ListenerConfiguration,
    ListenerRuleConfiguration,
    LoadBalancerConfiguration,
    SubnetConfiguration,
    TargetGroupConfiguration,
    TargetGroupProps,
)
from .gateway import Gateway, GatewayListener, Service, ServicePort
from .routes import (
    Backend,
    GatewayBackend,
    LiteralTargetGroupBackend,
    Route,
    RouteKind,
    RouteRule,
    ServiceBackend,
)

__all__ = [
    "Backend",
    "Gateway",
    "GatewayBackend",
    "GatewayListener",
    "ListenerConfiguration",
    "ListenerRuleConfiguration",
    "LiteralTargetGroupBackend",
    "LoadBalancerConfiguration",
    "Route",
    "RouteKind",
    "RouteRule",
    "Service",
    "ServiceBackend",
    "ServicePort",
    "SubnetConfiguration",
    "TargetGroupConfiguration",
    "TargetGroupProps",
]
