"""Builders turning Gateway inputs into ELBv2 resources."""

from .listener import ListenerBuilder, merge_protocols
from .model_builder import BuildResult, GatewayModelBuilder, group_routes_by_port
from .security_group import SecurityGroupBuilder, SecurityGroupOutput
from .subnets import SubnetBuilder, SubnetsOutput
from .tags import TagHelper, resolve_tags
from .target_group import FrontendNlbTarget, TargetGroupBuilder
from .tgb_network import TargetGroupBindingNetworkBuilder

__all__ = [
    "BuildResult",
    "FrontendNlbTarget",
    "GatewayModelBuilder",
    "ListenerBuilder",
    "SecurityGroupBuilder",
    "SecurityGroupOutput",
    "SubnetBuilder",
    "SubnetsOutput",
    "TagHelper",
    "TargetGroupBindingNetworkBuilder",
    "TargetGroupBuilder",
    "group_routes_by_port",
    "merge_protocols",
    "resolve_tags",
]
