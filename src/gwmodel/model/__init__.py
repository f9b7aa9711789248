from .binding import TargetGroupBindingResource
from .ec2 import SecurityGroup
from .elbv2 import (
    IPAddressType,
    Listener,
    ListenerRule,
    LoadBalancer,
    LoadBalancerScheme,
    LoadBalancerType,
    Protocol,
    TargetGroup,
    TargetType,
)

__all__ = [
    "IPAddressType",
    "Listener",
    "ListenerRule",
    "LoadBalancer",
    "LoadBalancerScheme",
    "LoadBalancerType",
    "Protocol",
    "SecurityGroup",
    "TargetGroup",
    "TargetGroupBindingResource",
    "TargetType",
]
