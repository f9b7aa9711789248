"""Tag resolution shared by every builder."""

from __future__ import annotations

from collections.abc import Mapping, Set

from gwmodel.config import ModelBuilderConfig, TagOverrideDirection
from gwmodel.exceptions import ReservedTagKeyError
from gwmodel.inputs.configuration import (
    ListenerRuleConfiguration,
    LoadBalancerConfiguration,
    TargetGroupProps,
)


def resolve_tags(
    default_tags: Mapping[str, str],
    object_tags: Mapping[str, str] | None,
    override_direction: TagOverrideDirection,
    reserved_keys: Set[str],
) -> dict[str, str]:
    """
    Merge default tags with per-object tags.

    The direction only changes the merge order: keys from the later mapping
    win. Object tags may never use an externally managed key, whatever the
    direction.

    Raises:
        ReservedTagKeyError: If an object tag key is reserved
    """
    object_tags = object_tags or {}
    for key in object_tags:
        if key in reserved_keys:
            raise ReservedTagKeyError(
                f"external managed tag key {key} cannot be specified"
            )

    if override_direction == TagOverrideDirection.DEFAULTS_WIN:
        return {**object_tags, **default_tags}
    return {**default_tags, **object_tags}


class TagHelper:
    """Applies :func:`resolve_tags` with the configured defaults."""

    def __init__(self, config: ModelBuilderConfig):
        self._default_tags = dict(config.default_tags)
        self._direction = config.tag_override_direction
        self._reserved = config.external_managed_tags

    def _resolve(self, object_tags: Mapping[str, str] | None) -> dict[str, str]:
        return resolve_tags(
            self._default_tags, object_tags, self._direction, self._reserved
        )

    def gateway_tags(
        self, lb_config: LoadBalancerConfiguration | None
    ) -> dict[str, str]:
        return self._resolve(lb_config.tags if lb_config else None)

    def target_group_tags(self, props: TargetGroupProps | None) -> dict[str, str]:
        return self._resolve(props.tags if props else None)

    def listener_rule_tags(
        self, rule_config: ListenerRuleConfiguration | None
    ) -> dict[str, str]:
        return self._resolve(rule_config.tags if rule_config else None)
