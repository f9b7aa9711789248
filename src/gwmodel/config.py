"""
Builder configuration.

Process-wide defaults and feature gates are gathered in one frozen
:class:`ModelBuilderConfig` that is injected into every builder.
"""

from __future__ import annotations

import logging
from enum import Enum
from pathlib import Path

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator
from ruamel.yaml import YAML
from ruamel.yaml.error import YAMLError

from gwmodel.exceptions import ConfigurationError
from gwmodel.model.elbv2 import (
    IPAddressType,
    LoadBalancerScheme,
    LoadBalancerType,
    TargetType,
)

logger = logging.getLogger(__name__)

DEFAULT_SSL_POLICY = "ELBSecurityPolicy-2016-08"


class TagOverrideDirection(str, Enum):
    """Which side wins when default and object tags share a key."""

    DEFAULTS_WIN = "defaults-win"
    OVERRIDE_WINS = "override-wins"


class ModelBuilderConfig(BaseModel):
    """Immutable settings shared by every builder of one controller."""

    cluster_name: str = Field(..., min_length=1)
    vpc_id: str = Field(..., min_length=1)
    load_balancer_type: LoadBalancerType = LoadBalancerType.APPLICATION
    default_ssl_policy: str = DEFAULT_SSL_POLICY
    default_target_type: TargetType = TargetType.INSTANCE
    default_scheme: LoadBalancerScheme = LoadBalancerScheme.INTERNAL
    default_ip_address_type: IPAddressType = IPAddressType.IPV4
    default_tags: dict[str, str] = Field(default_factory=dict)
    external_managed_tags: frozenset[str] = Field(default_factory=frozenset)
    tag_override_direction: TagOverrideDirection = TagOverrideDirection.DEFAULTS_WIN
    enable_backend_security_group: bool = True
    disable_restricted_sg_rules: bool = False
    nlb_security_groups: bool = Field(
        True,
        description="When false, NLBs without explicit security groups get none "
        "and target ingress is scoped by CIDR blocks instead.",
    )

    model_config = ConfigDict(frozen=True, extra="forbid")

    @field_validator("default_target_type")
    @classmethod
    def _no_alb_default(cls, v: TargetType) -> TargetType:
        if v == TargetType.ALB:
            raise ValueError("default_target_type must be 'instance' or 'ip'")
        return v


def load_config(path: Path) -> ModelBuilderConfig:
    """
    Load a :class:`ModelBuilderConfig` from a YAML file.

    Raises:
        ConfigurationError: If the file cannot be read, parsed or validated
    """
    yaml = YAML(typ="safe")
    try:
        with open(path, encoding="utf-8") as f:
            data = yaml.load(f) or {}
    except (OSError, YAMLError) as e:
        raise ConfigurationError(f"cannot read config file {path}: {e}") from e

    try:
        config = ModelBuilderConfig.model_validate(data)
    except ValidationError as e:
        raise ConfigurationError(f"invalid config file {path}: {e}") from e

    logger.info(
        "Loaded config for cluster '%s' (%s load balancers)",
        config.cluster_name,
        config.load_balancer_type.value,
    )
    return config
