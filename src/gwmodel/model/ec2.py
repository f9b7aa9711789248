"""EC2 side of the resource model: security groups and the subnets resolvers return."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from gwmodel.core.stack import Resource, ResourceRefToken

ICMPV4_PROTOCOL = "icmp"
ICMPV4_TYPE_FOR_PATH_MTU = 3
ICMPV4_CODE_FOR_PATH_MTU = 4
ICMPV6_PROTOCOL = "58"
ICMPV6_TYPE_FOR_PATH_MTU = 2
ICMPV6_CODE_FOR_PATH_MTU = 0


class _Spec(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


class IPRange(_Spec):
    cidr_ip: str = Field(..., alias="cidrIP")


class IPv6Range(_Spec):
    cidr_ipv6: str = Field(..., alias="cidrIPv6")


class PrefixList(_Spec):
    list_id: str = Field(..., alias="listID")


class IPPermission(_Spec):
    ip_protocol: str
    from_port: Optional[int] = None
    to_port: Optional[int] = None
    ip_ranges: list[IPRange] = Field(default_factory=list)
    ipv6_ranges: list[IPv6Range] = Field(default_factory=list, alias="ipv6Ranges")
    prefix_lists: list[PrefixList] = Field(default_factory=list)


class SecurityGroupSpec(_Spec):
    group_name: str
    description: str
    tags: dict[str, str] = Field(default_factory=dict)
    ingress: list[IPPermission] = Field(default_factory=list)


class SecurityGroup(Resource):
    kind = "AWS::EC2::SecurityGroup"

    spec: SecurityGroupSpec

    def group_id(self) -> ResourceRefToken:
        return self.token("groupID")


class Subnet(_Spec):
    """A VPC subnet as described by the EC2 API."""

    subnet_id: str = Field(..., alias="subnetID")
    availability_zone: str = ""
    vpc_id: str = Field("", alias="vpcID")
    cidr_block: Optional[str] = None
    ipv6_cidr_blocks: list[str] = Field(default_factory=list, alias="ipv6CIDRBlocks")
    tags: dict[str, str] = Field(default_factory=dict)


class VPCInfo(_Spec):
    vpc_id: str = Field(..., alias="vpcID")
    ipv4_cidrs: list[str] = Field(default_factory=list, alias="ipv4CIDRs")
    ipv6_cidrs: list[str] = Field(default_factory=list, alias="ipv6CIDRs")
