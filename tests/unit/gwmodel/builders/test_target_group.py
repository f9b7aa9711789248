"""Unit tests for target groups and TargetGroupBindings."""

from __future__ import annotations

import pytest

from gwmodel.builders.security_group import SecurityGroupOutput
from gwmodel.builders.tags import TagHelper
from gwmodel.builders.target_group import (
    FrontendNlbTarget,
    TargetGroupBuilder,
    target_group_resource_id,
)
from gwmodel.builders.tgb_network import TargetGroupBindingNetworkBuilder
from gwmodel.config import ModelBuilderConfig
from gwmodel.core.stack import Stack, literal
from gwmodel.exceptions import CollaboratorError, ConfigurationError, ProtocolError
from gwmodel.inputs.configuration import HealthCheckConfiguration, TargetGroupProps
from gwmodel.inputs.gateway import Gateway, GatewayInfrastructure, Service, ServicePort
from gwmodel.inputs.routes import (
    GatewayBackend,
    LiteralTargetGroupBackend,
    Route,
    RouteKind,
    ServiceBackend,
)
from gwmodel.model.binding import TargetGroupBindingResource
from gwmodel.model.elbv2 import (
    IPAddressType,
    LoadBalancerScheme,
    Protocol,
    ProtocolVersion,
    TargetGroup,
    TargetGroupIPAddressType,
    TargetType,
)

GATEWAY = Gateway(
    name="gw",
    namespace="web",
    uid="uid-1",
    infrastructure=GatewayInfrastructure(labels={"team": "web"}),
)
HTTP_PORT = ServicePort(name="http", port=80, target_port=8080, node_port=30080)
SERVICE = Service(name="svc", namespace="web", ports=[HTTP_PORT])
IPV4 = IPAddressType.IPV4


def _route(kind: RouteKind = RouteKind.HTTP, name: str = "r") -> Route:
    return Route(kind=kind, name=name, namespace="web")


def _backend(
    service: Service = SERVICE, props: TargetGroupProps | None = None
) -> ServiceBackend:
    return ServiceBackend(
        service=service, service_port=service.ports[0], target_group_props=props
    )


@pytest.fixture
def make_builder(subnets, collaborators):
    def make(config: ModelBuilderConfig) -> TargetGroupBuilder:
        sg_token = literal("sg-backend")
        network = TargetGroupBindingNetworkBuilder(
            config.vpc_id,
            LoadBalancerScheme.INTERNET_FACING,
            None,
            SecurityGroupOutput(
                security_group_tokens=[sg_token], backend_security_group_token=sg_token
            ),
            subnets,
            collaborators.vpc_info_provider,
        )
        return TargetGroupBuilder(
            config, TagHelper(config), network, collaborators.tg_arn_mapper
        )

    return make


def _only_tg(stack: Stack) -> TargetGroup:
    (tg,) = stack.list_resources(TargetGroup.kind)
    assert isinstance(tg, TargetGroup)
    return tg


# -------------------- Service backends --------------------


class TestServiceBackends:
    def test_same_backend_is_built_once(self, make_builder, alb_config) -> None:
        builder = make_builder(alb_config)
        stack = Stack("web/gw")
        route = _route()
        first = builder.build_target_group(stack, GATEWAY, IPV4, route, _backend(), 80)
        second = builder.build_target_group(
            stack, GATEWAY, IPV4, route, _backend(), 443
        )
        assert first == second
        assert len(stack.list_resources(TargetGroup.kind)) == 1
        assert len(stack.list_resources(TargetGroupBindingResource.kind)) == 1

    def test_different_routes_get_different_groups(
        self, make_builder, alb_config
    ) -> None:
        builder = make_builder(alb_config)
        stack = Stack("web/gw")
        a = builder.build_target_group(
            stack, GATEWAY, IPV4, _route(name="a"), _backend(), 80
        )
        b = builder.build_target_group(
            stack, GATEWAY, IPV4, _route(name="b"), _backend(), 80
        )
        assert a != b
        assert len(stack.list_resources(TargetGroup.kind)) == 2

    def test_resource_id(self) -> None:
        res_id = target_group_resource_id(
            GATEWAY, "web", "r", RouteKind.HTTP, "web", "svc", 8080, None
        )
        assert res_id == "web/gw:web-r:HTTPRoute-web-svc:8080"
        assert res_id + ":3000" == target_group_resource_id(
            GATEWAY, "web", "r", RouteKind.HTTP, "web", "svc", 8080, 3000
        )

    def test_instance_targets_use_node_port(self, make_builder, alb_config) -> None:
        stack = Stack("web/gw")
        make_builder(alb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(), _backend(), 80
        )
        tg = _only_tg(stack)
        assert tg.spec.target_type == TargetType.INSTANCE
        assert tg.spec.port == 30080
        assert tg.spec.protocol == Protocol.HTTP
        assert tg.spec.protocol_version == ProtocolVersion.HTTP1
        assert tg.spec.name.startswith("k8s-web-r-")

        (binding,) = stack.list_resources(TargetGroupBindingResource.kind)
        template = binding.spec.template
        assert template.metadata.name == tg.spec.name
        assert template.metadata.labels == {"team": "web"}
        assert template.spec.target_group_arn == tg.target_group_arn()
        assert template.spec.service_ref.port == 80
        assert template.spec.vpc_id == "vpc-1"
        (rule,) = template.spec.networking.ingress
        assert rule.ports[0].port == 30080

    def test_ip_targets_use_target_port(self, make_builder, alb_config) -> None:
        stack = Stack("web/gw")
        props = TargetGroupProps(target_type=TargetType.IP, vpc_id="vpc-2")
        make_builder(alb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(), _backend(props=props), 80
        )
        assert _only_tg(stack).spec.port == 8080
        (binding,) = stack.list_resources(TargetGroupBindingResource.kind)
        assert binding.spec.template.spec.vpc_id == "vpc-2"

    def test_explicit_name_and_tags(self, make_builder, alb_config) -> None:
        stack = Stack("web/gw")
        props = TargetGroupProps(target_group_name="my-tg", tags={"owner": "web"})
        make_builder(alb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(), _backend(props=props), 80
        )
        tg = _only_tg(stack)
        assert tg.spec.name == "my-tg"
        assert tg.spec.tags == {"owner": "web"}

    def test_grpc_health_check_defaults(self, make_builder, alb_config) -> None:
        stack = Stack("web/gw")
        make_builder(alb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(RouteKind.GRPC), _backend(), 80
        )
        tg = _only_tg(stack)
        assert tg.spec.protocol_version == ProtocolVersion.GRPC
        hc = tg.spec.health_check_config
        assert hc.path == "/AWS.ALB/healthcheck"
        assert hc.matcher.grpc_code == "12"
        assert hc.protocol == Protocol.HTTP

    def test_alb_rejects_l4_protocol(self, make_builder, alb_config) -> None:
        props = TargetGroupProps(protocol="TCP")
        with pytest.raises(ProtocolError, match=r"\[HTTP, HTTPS\]: TCP"):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), _backend(props=props), 80
            )

    def test_nlb_tcp_health_check(self, make_builder, nlb_config) -> None:
        stack = Stack("web/gw")
        make_builder(nlb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(RouteKind.TCP), _backend(), 80
        )
        tg = _only_tg(stack)
        assert tg.spec.protocol == Protocol.TCP
        assert tg.spec.protocol_version is None
        hc = tg.spec.health_check_config
        assert hc.protocol == Protocol.TCP
        assert hc.path is None
        assert hc.matcher is None
        assert hc.port == "traffic-port"
        assert hc.interval_seconds == 15

    def test_nlb_local_traffic_policy(self, make_builder, nlb_config) -> None:
        service = Service(
            name="svc",
            namespace="web",
            ports=[HTTP_PORT],
            external_traffic_policy="Local",
            health_check_node_port=32000,
        )
        stack = Stack("web/gw")
        make_builder(nlb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(RouteKind.TCP), _backend(service), 80
        )
        hc = _only_tg(stack).spec.health_check_config
        assert hc.protocol == Protocol.HTTP
        assert hc.path == "/healthz"
        assert hc.port == 32000
        assert hc.interval_seconds == 10
        assert hc.healthy_threshold_count == 2

    def test_named_health_check_port(self, make_builder, alb_config) -> None:
        props = TargetGroupProps(
            health_check_config=HealthCheckConfiguration(health_check_port="http")
        )
        stack = Stack("web/gw")
        make_builder(alb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(), _backend(props=props), 80
        )
        assert _only_tg(stack).spec.health_check_config.port == 30080

    def test_unknown_health_check_port(self, make_builder, alb_config) -> None:
        props = TargetGroupProps(
            health_check_config=HealthCheckConfiguration(health_check_port="admin")
        )
        with pytest.raises(ConfigurationError, match="unable to find port admin"):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), _backend(props=props), 80
            )

    def test_named_health_check_port_with_named_target_port(
        self, make_builder, alb_config
    ) -> None:
        service = Service(
            name="svc",
            namespace="web",
            ports=[ServicePort(name="http", port=80, target_port="web")],
        )
        props = TargetGroupProps(
            target_type=TargetType.IP,
            health_check_config=HealthCheckConfiguration(health_check_port="http"),
        )
        with pytest.raises(
            ConfigurationError, match="cannot use named healthCheckPort for IP"
        ):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), _backend(service, props), 80
            )

    def test_named_health_check_port_for_ip_targets(
        self, make_builder, alb_config
    ) -> None:
        props = TargetGroupProps(
            target_type=TargetType.IP,
            health_check_config=HealthCheckConfiguration(health_check_port="http"),
        )
        stack = Stack("web/gw")
        make_builder(alb_config).build_target_group(
            stack, GATEWAY, IPV4, _route(), _backend(props=props), 80
        )
        assert _only_tg(stack).spec.health_check_config.port == 8080

    def test_alb_target_type_needs_gateway_backend(
        self, make_builder, alb_config
    ) -> None:
        props = TargetGroupProps(target_type=TargetType.ALB)
        with pytest.raises(ConfigurationError, match="only valid for gateway"):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), _backend(props=props), 80
            )

    def test_instance_targets_need_node_port(self, make_builder, alb_config) -> None:
        service = Service(
            name="svc",
            namespace="web",
            ports=[ServicePort(port=80, target_port=8080)],
        )
        with pytest.raises(ConfigurationError, match="NodePort"):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), _backend(service), 80
            )

    def test_ipv6_service_needs_dualstack_lb(self, make_builder, alb_config) -> None:
        service = Service(
            name="svc", namespace="web", ports=[HTTP_PORT], ip_families=["IPv6"]
        )
        builder = make_builder(alb_config)
        with pytest.raises(ConfigurationError, match="lb not dual-stack"):
            builder.build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), _backend(service), 80
            )

        stack = Stack("web/gw")
        builder.build_target_group(
            stack,
            GATEWAY,
            IPAddressType.DUALSTACK,
            _route(),
            _backend(service),
            80,
        )
        assert _only_tg(stack).spec.ip_address_type == TargetGroupIPAddressType.IPV6


# -------------------- Other backends --------------------


class TestOtherBackends:
    def test_literal_target_group(
        self, make_builder, alb_config, collaborators
    ) -> None:
        collaborators.tg_arn_mapper.arns = {"shared": "arn:aws:tg/shared"}
        stack = Stack("web/gw")
        token = make_builder(alb_config).build_target_group(
            stack,
            GATEWAY,
            IPV4,
            _route(),
            LiteralTargetGroupBackend(name="shared"),
            80,
        )
        assert token == literal("arn:aws:tg/shared")
        assert len(stack) == 0

    def test_unknown_literal_target_group(self, make_builder, alb_config) -> None:
        with pytest.raises(CollaboratorError, match="target group missing"):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"),
                GATEWAY,
                IPV4,
                _route(),
                LiteralTargetGroupBackend(name="missing"),
                80,
            )

    def test_gateway_backend_registers_frontend_target(
        self, make_builder, nlb_config
    ) -> None:
        builder = make_builder(nlb_config)
        stack = Stack("web/gw")
        backend = GatewayBackend(
            name="inner",
            namespace="web",
            load_balancer_arn="arn:aws:lb/inner",
            port=8443,
        )
        builder.build_target_group(
            stack, GATEWAY, IPV4, _route(RouteKind.TCP), backend, 443
        )

        tg = _only_tg(stack)
        assert tg.spec.target_type == TargetType.ALB
        assert tg.spec.protocol == Protocol.TCP
        assert tg.spec.health_check_config.protocol == Protocol.HTTP
        assert stack.list_resources(TargetGroupBindingResource.kind) == []
        assert builder.frontend_nlb_targets == {
            tg.spec.name: FrontendNlbTarget(
                name=tg.spec.name,
                port=443,
                target_port=8443,
                target_arn="arn:aws:lb/inner",
            )
        }

    def test_gateway_backend_needs_nlb(self, make_builder, alb_config) -> None:
        backend = GatewayBackend(
            name="inner", namespace="web", load_balancer_arn="arn", port=80
        )
        with pytest.raises(ConfigurationError, match="requires a network"):
            make_builder(alb_config).build_target_group(
                Stack("web/gw"), GATEWAY, IPV4, _route(), backend, 80
            )
