"""
Kubernetes manifest loading.

Reads multi-document YAML files holding Gateways, Services, routes and the
LoadBalancerConfiguration, TargetGroupConfiguration and
ListenerRuleConfiguration resources, and turns the routes attached to one
Gateway into :class:`~gwmodel.inputs.routes.Route` descriptors.

Route documents carry the already-matched rule shape used by the builders:
each rule lists its listener rule ``conditions``, its ``backendRefs``, an
optional ``requestRedirect`` filter and an optional
``listenerRuleConfiguration`` name.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Final, Optional

from pydantic import ValidationError
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from gwmodel.exceptions import ManifestError
from gwmodel.inputs.configuration import (
    ListenerRuleConfiguration,
    LoadBalancerConfiguration,
    TargetGroupConfiguration,
    TargetGroupProps,
)
from gwmodel.inputs.gateway import Gateway, Service
from gwmodel.inputs.routes import (
    Backend,
    GatewayBackend,
    LiteralTargetGroupBackend,
    RequestRedirectFilter,
    Route,
    RouteKind,
    RouteRule,
    ServiceBackend,
)
from gwmodel.model.elbv2 import RuleCondition

logger = logging.getLogger(__name__)

KIND_GATEWAY: Final = "Gateway"
KIND_SERVICE: Final = "Service"
KIND_LB_CONFIG: Final = "LoadBalancerConfiguration"
KIND_TG_CONFIG: Final = "TargetGroupConfiguration"
KIND_LR_CONFIG: Final = "ListenerRuleConfiguration"

BACKEND_KIND_SERVICE: Final = "Service"
BACKEND_KIND_TARGET_GROUP: Final = "TargetGroupName"
BACKEND_KIND_GATEWAY: Final = "Gateway"

_ROUTE_KINDS: Final = {kind.value: kind for kind in RouteKind}

_yaml_parser = YAML(typ="safe")


def _key(namespace: str, name: str) -> tuple[str, str]:
    return namespace, name


@dataclass
class ManifestSet:
    """Every object read from a set of manifest files, indexed by namespace/name."""

    gateways: dict[tuple[str, str], Gateway] = field(default_factory=dict)
    services: dict[tuple[str, str], Service] = field(default_factory=dict)
    lb_configs: dict[tuple[str, str], LoadBalancerConfiguration] = field(
        default_factory=dict
    )
    tg_configs: dict[tuple[str, str], TargetGroupConfiguration] = field(
        default_factory=dict
    )
    lr_configs: dict[tuple[str, str], ListenerRuleConfiguration] = field(
        default_factory=dict
    )
    route_docs: list[dict[str, Any]] = field(default_factory=list)

    def gateway(self, namespaced_name: str) -> Gateway:
        namespace, sep, name = namespaced_name.partition("/")
        if not sep:
            raise ManifestError(
                f"gateway must be given as namespace/name, got '{namespaced_name}'"
            )
        try:
            return self.gateways[_key(namespace, name)]
        except KeyError:
            raise ManifestError(f"gateway {namespaced_name} not found") from None

    def lb_config_for(self, gateway: Gateway) -> Optional[LoadBalancerConfiguration]:
        """Return the LoadBalancerConfiguration the Gateway points at, if any."""
        infra = gateway.infrastructure
        ref = infra.parameters_ref if infra else None
        if ref is None:
            return None
        if ref.kind != KIND_LB_CONFIG:
            raise ManifestError(
                f"gateway {gateway.namespaced_name} references unsupported "
                f"parameters kind {ref.kind}"
            )
        config = self.lb_configs.get(_key(gateway.namespace, ref.name))
        if config is None:
            raise ManifestError(
                f"{KIND_LB_CONFIG} {gateway.namespace}/{ref.name} not found"
            )
        return config

    def routes_for(self, gateway: Gateway) -> list[Route]:
        """Build descriptors for every route whose parentRefs name the Gateway."""
        routes = []
        for doc in self.route_docs:
            meta = doc["metadata"]
            namespace = meta.get("namespace", "default")
            spec = doc.get("spec") or {}
            if not any(
                ref.get("name") == gateway.name
                and ref.get("namespace", namespace) == gateway.namespace
                for ref in spec.get("parentRefs", [])
            ):
                continue
            routes.append(self._route(doc))
        logger.info(
            "Found %d routes attached to gateway %s",
            len(routes),
            gateway.namespaced_name,
        )
        return routes

    # -----------------------------------------------------------------------
    # Routes
    # -----------------------------------------------------------------------

    def _route(self, doc: dict[str, Any]) -> Route:
        kind = _ROUTE_KINDS[doc["kind"]]
        name = doc["metadata"]["name"]
        namespace = doc["metadata"].get("namespace", "default")
        spec = doc.get("spec") or {}
        try:
            return Route(
                kind=kind,
                name=name,
                namespace=namespace,
                hostnames=spec.get("hostnames", []),
                compatible_hostnames_by_port={
                    int(port): hosts
                    for port, hosts in (
                        spec.get("compatibleHostnamesByPort") or {}
                    ).items()
                },
                rules=[
                    self._rule(kind, namespace, name, rule)
                    for rule in spec.get("rules", [])
                ],
            )
        except (KeyError, ValidationError) as e:
            raise ManifestError(f"invalid {kind.value} {namespace}/{name}: {e}") from e

    def _rule(
        self, kind: RouteKind, namespace: str, name: str, rule: dict[str, Any]
    ) -> RouteRule:
        lr_config = None
        lr_name = rule.get("listenerRuleConfiguration")
        if lr_name:
            lr_config = self.lr_configs.get(_key(namespace, lr_name))
            if lr_config is None:
                raise ManifestError(
                    f"{KIND_LR_CONFIG} {namespace}/{lr_name} not found"
                )

        redirect = rule.get("requestRedirect")
        return RouteRule(
            conditions=[
                RuleCondition.model_validate(c) for c in rule.get("conditions", [])
            ],
            backends=[
                self._backend(kind, namespace, name, ref)
                for ref in rule.get("backendRefs", [])
            ],
            listener_rule_config=lr_config,
            redirect_filter=(
                RequestRedirectFilter.model_validate(redirect) if redirect else None
            ),
        )

    def _backend(
        self,
        route_kind: RouteKind,
        route_namespace: str,
        route_name: str,
        ref: dict[str, Any],
    ) -> Backend:
        backend_kind = ref.get("kind", BACKEND_KIND_SERVICE)
        weight = ref.get("weight", 1)
        namespace = ref.get("namespace", route_namespace)

        if backend_kind == BACKEND_KIND_TARGET_GROUP:
            return LiteralTargetGroupBackend(name=ref["name"], weight=weight)

        props = self._target_group_props(
            namespace, ref["name"], route_kind, route_namespace, route_name
        )
        if backend_kind == BACKEND_KIND_GATEWAY:
            return GatewayBackend(
                name=ref["name"],
                namespace=namespace,
                load_balancer_arn=ref["loadBalancerARN"],
                port=ref["port"],
                weight=weight,
                target_group_props=props,
            )

        if backend_kind != BACKEND_KIND_SERVICE:
            raise ManifestError(
                f"unsupported backend kind {backend_kind} in route "
                f"{route_namespace}/{route_name}"
            )
        service = self.services.get(_key(namespace, ref["name"]))
        if service is None:
            raise ManifestError(f"service {namespace}/{ref['name']} not found")
        port = next((p for p in service.ports if p.port == ref.get("port")), None)
        if port is None:
            raise ManifestError(
                f"service {service.namespaced_name} has no port {ref.get('port')}"
            )
        return ServiceBackend(
            service=service, service_port=port, weight=weight, target_group_props=props
        )

    def _target_group_props(
        self,
        namespace: str,
        target_name: str,
        route_kind: RouteKind,
        route_namespace: str,
        route_name: str,
    ) -> Optional[TargetGroupProps]:
        for (config_ns, _), config in self.tg_configs.items():
            if config_ns == namespace and config.target_reference == target_name:
                return config.props_for_route(
                    route_kind.value, route_namespace, route_name
                )
        return None


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def read_documents(path: Path) -> list[dict[str, Any]]:
    """
    Read every non-empty document of a YAML file.

    Raises:
        ManifestError: If the file cannot be read or a document is not a mapping
    """
    try:
        with open(path, encoding="utf-8") as f:
            docs = [doc for doc in _yaml_parser.load_all(f) if doc is not None]
    except (OSError, YAMLError) as e:
        raise ManifestError(f"cannot read manifest file {path}: {e}") from e

    for doc in docs:
        if not isinstance(doc, dict) or "kind" not in doc or "metadata" not in doc:
            raise ManifestError(
                f"every document in {path} must be a mapping with kind and metadata"
            )
    logger.debug("Read %d documents from %s", len(docs), path)
    return docs


def _gateway(doc: dict[str, Any]) -> Gateway:
    meta = doc["metadata"]
    spec = doc.get("spec") or {}
    listeners = []
    for listener in spec.get("listeners", []):
        listeners.append(
            {
                "name": listener.get("name", ""),
                "port": listener["port"],
                "protocol": listener["protocol"],
                "hostname": listener.get("hostname"),
                "tls_mode": (listener.get("tls") or {}).get("mode"),
            }
        )
    return Gateway.model_validate(
        {
            "name": meta["name"],
            "namespace": meta.get("namespace", "default"),
            "uid": meta.get("uid", ""),
            "deletion_timestamp": meta.get("deletionTimestamp"),
            "listeners": listeners,
            "infrastructure": spec.get("infrastructure"),
        }
    )


def _service(doc: dict[str, Any]) -> Service:
    meta = doc["metadata"]
    spec = doc.get("spec") or {}
    return Service.model_validate(
        {
            "name": meta["name"],
            "namespace": meta.get("namespace", "default"),
            "ports": [
                {
                    "name": p.get("name"),
                    "protocol": p.get("protocol", "TCP"),
                    "port": p["port"],
                    "target_port": p.get("targetPort", p["port"]),
                    "node_port": p.get("nodePort", 0),
                }
                for p in spec.get("ports", [])
            ],
            "ip_families": spec.get("ipFamilies", ["IPv4"]),
            "external_traffic_policy": spec.get("externalTrafficPolicy", "Cluster"),
            "health_check_node_port": spec.get("healthCheckNodePort", 0),
        }
    )


def _custom_resource(model: type, doc: dict[str, Any]) -> Any:
    meta = doc["metadata"]
    spec = dict(doc.get("spec") or {})
    if model is TargetGroupConfiguration:
        ref = spec.get("targetReference")
        if isinstance(ref, dict):
            spec["targetReference"] = ref["name"]
    spec["name"] = meta["name"]
    spec["namespace"] = meta.get("namespace", "default")
    return model.model_validate(spec)


def load_manifests(paths: list[Path]) -> ManifestSet:
    """
    Load and index every supported object of the given manifest files.

    Documents of other kinds are skipped.

    Raises:
        ManifestError: If a file cannot be read or an object is invalid
    """
    manifests = ManifestSet()
    for path in paths:
        for doc in read_documents(path):
            kind = doc["kind"]
            meta = doc["metadata"]
            key = _key(meta.get("namespace", "default"), meta.get("name", ""))
            try:
                if kind == KIND_GATEWAY:
                    manifests.gateways[key] = _gateway(doc)
                elif kind == KIND_SERVICE:
                    manifests.services[key] = _service(doc)
                elif kind == KIND_LB_CONFIG:
                    manifests.lb_configs[key] = _custom_resource(
                        LoadBalancerConfiguration, doc
                    )
                elif kind == KIND_TG_CONFIG:
                    manifests.tg_configs[key] = _custom_resource(
                        TargetGroupConfiguration, doc
                    )
                elif kind == KIND_LR_CONFIG:
                    manifests.lr_configs[key] = _custom_resource(
                        ListenerRuleConfiguration, doc
                    )
                elif kind in _ROUTE_KINDS:
                    manifests.route_docs.append(doc)
                else:
                    logger.debug("Skipping unsupported kind %s in %s", kind, path)
            except (KeyError, ValidationError) as e:
                raise ManifestError(
                    f"invalid {kind} {key[0]}/{key[1]} in {path}: {e}"
                ) from e

    logger.info(
        "Loaded %d gateways, %d services and %d routes",
        len(manifests.gateways),
        len(manifests.services),
        len(manifests.route_docs),
    )
    return manifests
