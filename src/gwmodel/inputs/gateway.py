"""Gateway and Service inputs."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

TLS_MODE_PASSTHROUGH = "Passthrough"


class _Input(BaseModel):
    model_config = ConfigDict(
        extra="forbid", populate_by_name=True, alias_generator=to_camel
    )


class GatewayListener(_Input):
    name: str = ""
    port: int = Field(..., ge=1, le=65535)
    protocol: str
    hostname: Optional[str] = None
    tls_mode: Optional[str] = Field(
        None, description="Gateway API TLS mode, 'Terminate' or 'Passthrough'."
    )

    @field_validator("protocol")
    @classmethod
    def _upper(cls, v: str) -> str:
        return v.upper()


class ParametersReference(_Input):
    group: str = ""
    kind: str
    name: str


class GatewayInfrastructure(_Input):
    annotations: dict[str, str] = Field(default_factory=dict)
    labels: dict[str, str] = Field(default_factory=dict)
    parameters_ref: Optional[ParametersReference] = None


class Gateway(_Input):
    name: str
    namespace: str
    uid: str = ""
    deletion_timestamp: Optional[str] = None
    listeners: list[GatewayListener] = Field(default_factory=list)
    infrastructure: Optional[GatewayInfrastructure] = None

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    @property
    def is_deleting(self) -> bool:
        return bool(self.deletion_timestamp)


class ServicePort(_Input):
    name: Optional[str] = None
    protocol: str = "TCP"
    port: int
    target_port: int | str
    node_port: int = 0


class Service(_Input):
    name: str
    namespace: str
    ports: list[ServicePort] = Field(default_factory=list)
    ip_families: list[str] = Field(default_factory=lambda: ["IPv4"])
    external_traffic_policy: str = "Cluster"
    health_check_node_port: int = 0

    @property
    def namespaced_name(self) -> str:
        return f"{self.namespace}/{self.name}"

    def lookup_port(self, name: str) -> Optional[ServicePort]:
        for svc_port in self.ports:
            if svc_port.name == name:
                return svc_port
        return None
