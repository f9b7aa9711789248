"""Unit tests for the top-level Gateway model builder."""

from __future__ import annotations

import pytest

from gwmodel.builders.model_builder import (
    GatewayModelBuilder,
    group_routes_by_port,
)
from gwmodel.builders.security_group import RESOURCE_ID_MANAGED_SECURITY_GROUP
from gwmodel.config import ModelBuilderConfig
from gwmodel.core.stack import literal
from gwmodel.exceptions import ConfigurationError
from gwmodel.inputs.configuration import (
    Attribute,
    LoadBalancerConfiguration,
    SubnetConfiguration,
)
from gwmodel.inputs.gateway import Gateway, GatewayListener, Service, ServicePort
from gwmodel.inputs.routes import (
    GatewayBackend,
    Route,
    RouteKind,
    RouteRule,
    ServiceBackend,
)
from gwmodel.model.binding import TargetGroupBindingResource
from gwmodel.model.ec2 import SecurityGroup
from gwmodel.model.elbv2 import (
    IPAddressType,
    Listener,
    ListenerRule,
    LoadBalancer,
    LoadBalancerScheme,
    TargetGroup,
)

SERVICE = Service(
    name="svc",
    namespace="web",
    ports=[ServicePort(name="http", port=80, target_port=8080, node_port=30080)],
)


def _gateway(*listeners: GatewayListener, **kwargs) -> Gateway:
    return Gateway(
        name="gw", namespace="web", uid="uid-1", listeners=list(listeners), **kwargs
    )


def _http_route(name: str = "app") -> Route:
    return Route(
        kind=RouteKind.HTTP,
        name=name,
        namespace="web",
        rules=[
            RouteRule(
                backends=[
                    ServiceBackend(service=SERVICE, service_port=SERVICE.ports[0])
                ]
            )
        ],
    )


@pytest.fixture
def make_builder(collaborators):
    def make(config: ModelBuilderConfig) -> GatewayModelBuilder:
        return GatewayModelBuilder(config, **collaborators.as_kwargs())

    return make


# -------------------- Route grouping --------------------


class TestGroupRoutesByPort:
    GATEWAY = _gateway(
        GatewayListener(port=80, protocol="HTTP"),
        GatewayListener(port=443, protocol="HTTPS"),
        GatewayListener(port=5432, protocol="TCP"),
    )

    def test_compatible_hostnames_decide_ports(self) -> None:
        route = Route(
            kind=RouteKind.HTTP,
            name="a",
            namespace="web",
            compatible_hostnames_by_port={443: ["a.example.com"]},
        )
        assert group_routes_by_port(self.GATEWAY, [route]) == {443: [route]}

    def test_routes_attach_to_listeners_of_their_kind(self) -> None:
        http = Route(kind=RouteKind.HTTP, name="a", namespace="web")
        tcp = Route(kind=RouteKind.TCP, name="b", namespace="web")
        assert group_routes_by_port(self.GATEWAY, [http, tcp]) == {
            80: [http],
            443: [http],
            5432: [tcp],
        }

    def test_route_kind_without_listener(self) -> None:
        udp = Route(kind=RouteKind.UDP, name="a", namespace="web")
        assert group_routes_by_port(self.GATEWAY, [udp]) == {}


# -------------------- Build --------------------


class TestGatewayModelBuilder:
    def test_application_load_balancer(
        self, make_builder, alb_config, collaborators
    ) -> None:
        gateway = _gateway(GatewayListener(port=80, protocol="HTTP"))
        lb_config = LoadBalancerConfiguration(
            scheme="internet-facing",
            source_ranges=["0.0.0.0/0"],
            load_balancer_attributes=[
                Attribute(key="idle_timeout.timeout_seconds", value="120")
            ],
        )
        result = make_builder(alb_config).build(
            gateway, lb_config, {80: [_http_route()]}
        )
        stack = result.stack

        assert stack.stack_id == "web/gw"
        assert result.backend_sg_allocated is True
        assert result.frontend_nlb_targets == {}
        assert result.secrets == set()
        for kind in (
            SecurityGroup.kind,
            LoadBalancer.kind,
            TargetGroup.kind,
            TargetGroupBindingResource.kind,
            Listener.kind,
            ListenerRule.kind,
        ):
            assert len(stack.list_resources(kind)) == 1, kind

        lb = result.load_balancer
        assert lb is stack.get_resource(LoadBalancer.kind, "LoadBalancer")
        assert lb.spec.scheme == LoadBalancerScheme.INTERNET_FACING
        assert lb.spec.name.startswith("k8s-web-gw-")
        assert [m.subnet_id for m in lb.spec.subnet_mappings] == [
            "subnet-a",
            "subnet-b",
        ]
        sg = stack.get_resource(SecurityGroup.kind, RESOURCE_ID_MANAGED_SECURITY_GROUP)
        assert lb.spec.security_groups == [sg.group_id(), literal("sg-backend")]
        assert lb.spec.load_balancer_attributes[0].value == "120"
        assert lb.spec.enable_prefix_for_ipv6_source_nat is None

        (listener,) = stack.list_resources(Listener.kind)
        assert listener.spec.load_balancer_arn == lb.load_balancer_arn()

        assert collaborators.lb_lister.requested_tags == [
            {"elbv2.k8s.aws/cluster": "prod", "gateway.k8s.aws/stack": "web/gw"}
        ]

    def test_defaults_come_from_config(self, make_builder, alb_config) -> None:
        gateway = _gateway(GatewayListener(port=80, protocol="HTTP"))
        result = make_builder(alb_config).build(gateway, None, {80: [_http_route()]})
        assert result.load_balancer.spec.scheme == LoadBalancerScheme.INTERNAL
        assert result.load_balancer.spec.ip_address_type == IPAddressType.IPV4

    def test_name_is_deterministic(self, make_builder, alb_config) -> None:
        builder = make_builder(alb_config)
        gateway = _gateway()
        lb_config = LoadBalancerConfiguration()
        public = builder.load_balancer_name(
            gateway, lb_config, LoadBalancerScheme.INTERNET_FACING
        )
        assert public == builder.load_balancer_name(
            gateway, lb_config, LoadBalancerScheme.INTERNET_FACING
        )
        assert public != builder.load_balancer_name(
            gateway, lb_config, LoadBalancerScheme.INTERNAL
        )
        named = LoadBalancerConfiguration(load_balancer_name="my-lb")
        assert builder.load_balancer_name(gateway, named, None) == "my-lb"

    def test_network_load_balancer_with_gateway_backend(
        self, make_builder, nlb_config
    ) -> None:
        gateway = _gateway(GatewayListener(port=443, protocol="TCP"))
        route = Route(
            kind=RouteKind.TCP,
            name="front",
            namespace="web",
            rules=[
                RouteRule(
                    backends=[
                        GatewayBackend(
                            name="inner",
                            namespace="web",
                            load_balancer_arn="arn:aws:lb/inner",
                            port=443,
                        )
                    ]
                )
            ],
        )
        result = make_builder(nlb_config).build(gateway, None, {443: [route]})
        (target,) = result.frontend_nlb_targets.values()
        assert target.target_arn == "arn:aws:lb/inner"
        assert target.port == 443

    def test_source_nat_prefix(self, make_builder, nlb_config) -> None:
        gateway = _gateway(GatewayListener(port=53, protocol="UDP"))
        lb_config = LoadBalancerConfiguration(
            scheme="internet-facing",
            ip_address_type="dualstack",
            load_balancer_subnets=[
                SubnetConfiguration(
                    identifier=subnet_id, source_nat_ipv6_prefix="auto"
                )
                for subnet_id in ("subnet-a", "subnet-b")
            ],
        )
        result = make_builder(nlb_config).build(gateway, lb_config, {})
        spec = result.load_balancer.spec
        assert spec.enable_prefix_for_ipv6_source_nat == "on"
        assert [m.source_nat_ipv6_prefix for m in spec.subnet_mappings] == [
            "auto",
            "auto",
        ]
        assert result.stack.list_resources(Listener.kind) == []

    @pytest.mark.parametrize(
        "field, value, message",
        [
            ("scheme", "public", "unknown scheme: public"),
            ("ip_address_type", "ipv6", "unknown IPAddressType: ipv6"),
        ],
    )
    def test_invalid_lb_settings(
        self, make_builder, alb_config, field: str, value: str, message: str
    ) -> None:
        lb_config = LoadBalancerConfiguration(**{field: value})
        with pytest.raises(ConfigurationError, match=message):
            make_builder(alb_config).build(_gateway(), lb_config, {})


class TestDeletion:
    DELETING = _gateway(deletion_timestamp="2024-01-01T00:00:00Z")

    def _lb_config(self, protection: str) -> LoadBalancerConfiguration:
        return LoadBalancerConfiguration(
            load_balancer_attributes=[
                Attribute(key="deletion_protection.enabled", value=protection)
            ]
        )

    def test_deleting_gateway_yields_empty_stack(
        self, make_builder, alb_config
    ) -> None:
        result = make_builder(alb_config).build(
            self.DELETING, None, {80: [_http_route()]}
        )
        assert result.load_balancer is None
        assert len(result.stack) == 0

    def test_deletion_protection_blocks_delete(self, make_builder, alb_config) -> None:
        with pytest.raises(ConfigurationError, match="deletion protection is enabled"):
            make_builder(alb_config).build(self.DELETING, self._lb_config("true"), {})

    @pytest.mark.parametrize("value, protected", [("false", False), ("junk", False)])
    def test_protection_parsing(
        self, make_builder, alb_config, value: str, protected: bool
    ) -> None:
        builder = make_builder(alb_config)
        assert builder.is_delete_protected(self._lb_config(value)) is protected
        result = builder.build(self.DELETING, self._lb_config(value), {})
        assert result.load_balancer is None
