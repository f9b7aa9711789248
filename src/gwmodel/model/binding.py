"""Kubernetes-side TargetGroupBinding resource model."""

from __future__ import annotations

from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gwmodel.core.stack import Resource, StringToken
from gwmodel.model.elbv2 import Protocol, TargetGroupIPAddressType, TargetType


class NetworkingProtocol(str, Enum):
    TCP = "TCP"
    UDP = "UDP"


class _Spec(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


class NetworkingPort(_Spec):
    protocol: Optional[NetworkingProtocol] = None
    port: Optional[int | str] = Field(
        None, description="Port number or name; None means all ports."
    )


class NetworkingPeer(_Spec):
    """Either a security group or a CIDR block, never both."""

    security_group: Optional[StringToken] = None
    ip_block: Optional[str] = None


class NetworkingIngressRule(_Spec):
    from_: list[NetworkingPeer] = Field(..., alias="from")
    ports: list[NetworkingPort]


class TargetGroupBindingNetworking(_Spec):
    ingress: list[NetworkingIngressRule] = Field(default_factory=list)


class LabelSelectorRequirement(_Spec):
    key: str
    operator: str
    values: list[str] = Field(default_factory=list)


class LabelSelector(_Spec):
    match_labels: dict[str, str] = Field(default_factory=dict)
    match_expressions: list[LabelSelectorRequirement] = Field(default_factory=list)


class ServiceReference(_Spec):
    name: str
    port: int | str


class ObjectMeta(_Spec):
    namespace: str
    name: str
    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)


class TargetGroupBindingSpec(_Spec):
    target_group_arn: Optional[StringToken] = Field(None, alias="targetGroupARN")
    target_type: TargetType
    service_ref: ServiceReference
    networking: Optional[TargetGroupBindingNetworking] = None
    node_selector: Optional[LabelSelector] = None
    ip_address_type: TargetGroupIPAddressType
    vpc_id: str = Field(..., alias="vpcID")
    multi_cluster_target_group: bool = False
    target_group_protocol: Protocol


class TargetGroupBindingTemplate(_Spec):
    metadata: ObjectMeta
    spec: TargetGroupBindingSpec


class TargetGroupBindingResourceSpec(_Spec):
    template: TargetGroupBindingTemplate


class TargetGroupBindingResource(Resource):
    kind = "K8S::ElasticLoadBalancingV2::TargetGroupBinding"

    spec: TargetGroupBindingResourceSpec
