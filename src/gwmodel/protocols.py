from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Protocol

if TYPE_CHECKING:
    from gwmodel.inputs.configuration import ListenerRuleConfiguration
    from gwmodel.inputs.routes import Backend, RequestRedirectFilter, RouteKind
    from gwmodel.model.ec2 import Subnet, VPCInfo
    from gwmodel.model.elbv2 import (
        LoadBalancerDescription,
        LoadBalancerScheme,
        LoadBalancerType,
        RuleCondition,
    )


class RouteRule(Protocol):
    """Defines the contract for one precedence-sorted route rule."""

    def get_conditions(self) -> "list[RuleCondition]":
        """Returns the listener rule conditions built by the route layer."""
        ...

    def get_backends(self) -> "list[Backend]":
        ...

    def get_listener_rule_config(self) -> "ListenerRuleConfiguration | None":
        ...

    def get_redirect_filter(self) -> "RequestRedirectFilter | None":
        ...


class RouteDescriptor(Protocol):
    """Defines the contract for a route attached to a Gateway listener."""

    def get_route_kind(self) -> "RouteKind":
        ...

    def get_route_namespaced_name(self) -> tuple[str, str]:
        """Returns the route identity as ``(namespace, name)``."""
        ...

    def get_hostnames(self) -> list[str]:
        ...

    def get_compatible_hostnames_by_port(self) -> dict[int, list[str]]:
        """
        Returns, per listener port, the route hostnames that intersect the
        hostnames declared by the Gateway listener on that port.
        """
        ...

    def get_attached_rules(self) -> Sequence[RouteRule]:
        """Returns the route rules, already sorted by precedence."""
        ...

    def get_backends(self) -> "list[Backend]":
        ...


class SubnetsResolver(Protocol):
    """Defines the contract for resolving VPC subnets for a load balancer."""

    def resolve_via_name_or_id(
        self,
        names_or_ids: list[str],
        lb_type: "LoadBalancerType",
        scheme: "LoadBalancerScheme",
    ) -> "list[Subnet]":
        """
        Resolves subnets by id or by their Name tag.

        Args:
            names_or_ids: Subnet ids (``subnet-...``) or Name tag values
            lb_type: Type of the load balancer the subnets are for
            scheme: Scheme of the load balancer the subnets are for

        Returns:
            The subnets, in the order they were requested
        """
        ...

    def resolve_via_selector(
        self,
        selector: dict[str, list[str]],
        lb_type: "LoadBalancerType",
        scheme: "LoadBalancerScheme",
    ) -> "list[Subnet]":
        """Resolves subnets whose tags match every key of the selector."""
        ...

    def resolve_via_discovery(
        self, lb_type: "LoadBalancerType", scheme: "LoadBalancerScheme"
    ) -> "list[Subnet]":
        """Discovers one eligible subnet per availability zone."""
        ...

    def is_subnet_in_local_zone_or_outpost(self, subnet_id: str) -> bool:
        ...


class LoadBalancerLister(Protocol):
    """Lists load balancers already deployed for a stack."""

    def list_load_balancers_by_tags(
        self, tags: Mapping[str, str]
    ) -> "list[LoadBalancerDescription]":
        ...


class SecurityGroupResolver(Protocol):
    def resolve_via_name_or_id(self, names_or_ids: list[str]) -> list[str]:
        """Resolves security group names or ids into group ids."""
        ...


class BackendSGProvider(Protocol):
    """Allocates or fetches the shared backend security group."""

    def get(self, resource_type: str, namespaced_names: list[str]) -> str:
        """
        Returns the backend security group id for the given owners.

        Args:
            resource_type: Owner resource type, e.g. ``"gateway"``
            namespaced_names: ``namespace/name`` of every owner
        """
        ...


class CertDiscovery(Protocol):
    def discover(self, hostnames: list[str]) -> list[str]:
        """Returns certificate ARNs covering the given hostnames."""
        ...


class TrustStoreResolver(Protocol):
    def get_arns_by_names(self, names: list[str]) -> dict[str, str]:
        """Maps trust store names to their ARNs."""
        ...


class VPCInfoProvider(Protocol):
    def fetch_vpc_info(self, vpc_id: str, use_cache: bool = True) -> "VPCInfo":
        ...


class TargetGroupARNMapper(Protocol):
    def get_arn_by_name(self, name: str) -> str:
        """Returns the ARN of an existing target group."""
        ...


class SecretsManager(Protocol):
    def get_secret(self, namespace: str, name: str) -> dict[str, str]:
        """Returns the decoded data of a Kubernetes Secret."""
        ...
