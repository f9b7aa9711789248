"""
Resource graph for one Gateway compilation.

Resources are registered into a :class:`Stack` under a ``(kind, id)`` identity.
Cross references between resources are expressed as string tokens: either a
literal value known now, or a reference to an attribute of another resource in
the same stack that only becomes known after deployment.
"""

from __future__ import annotations

import logging
from typing import Annotated, Any, ClassVar, Literal, Union

from pydantic import BaseModel, ConfigDict, Field

from gwmodel.exceptions import DuplicateResourceError

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Tokens
# ---------------------------------------------------------------------------


class LiteralToken(BaseModel):
    """A token whose value is already known."""

    token_type: Literal["literal"] = "literal"
    value: str

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __str__(self) -> str:
        return self.value


class ResourceRefToken(BaseModel):
    """A token referring to an attribute of a resource resolved at deploy time."""

    token_type: Literal["reference"] = "reference"
    resource_kind: str = Field(..., description="Kind of the referenced resource.")
    resource_id: str = Field(..., description="Stack id of the referenced resource.")
    attribute: str = Field(..., description="Attribute name, e.g. 'targetGroupARN'.")

    model_config = ConfigDict(frozen=True, extra="forbid")

    def __str__(self) -> str:
        return f"${{{self.resource_kind}/{self.resource_id}.{self.attribute}}}"


StringToken = Annotated[
    Union[LiteralToken, ResourceRefToken], Field(discriminator="token_type")
]


def literal(value: str) -> LiteralToken:
    """Shorthand for building a literal token."""
    return LiteralToken(value=value)


# ---------------------------------------------------------------------------
# Resources
# ---------------------------------------------------------------------------


class Resource:
    """
    Base class for everything stored in a stack.

    Subclasses set ``kind`` and receive a pydantic ``spec``. Constructing a
    resource registers it into the given stack.
    """

    kind: ClassVar[str] = ""

    def __init__(self, stack: "Stack", resource_id: str, spec: BaseModel):
        self.id = resource_id
        self.spec = spec
        stack.add_resource(self)

    def token(self, attribute: str) -> ResourceRefToken:
        """Return a deferred reference to one of this resource's attributes."""
        return ResourceRefToken(
            resource_kind=self.kind, resource_id=self.id, attribute=attribute
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "kind": self.kind,
            "id": self.id,
            "spec": self.spec.model_dump(mode="json", by_alias=True, exclude_none=True),
        }

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(id={self.id!r})"


class Stack:
    """Typed container owning all resources built for one Gateway."""

    def __init__(self, stack_id: str):
        self.stack_id = stack_id
        self._resources: dict[tuple[str, str], Resource] = {}

    def add_resource(self, resource: Resource) -> None:
        key = (resource.kind, resource.id)
        if key in self._resources:
            raise DuplicateResourceError(
                f"resource {resource.kind}/{resource.id} already exists "
                f"in stack {self.stack_id}"
            )
        logger.debug("Adding %s/%s to stack %s", *key, self.stack_id)
        self._resources[key] = resource

    def get_resource(self, kind: str, resource_id: str) -> Resource | None:
        return self._resources.get((kind, resource_id))

    def list_resources(self, kind: str) -> list[Resource]:
        """Return every resource of ``kind`` in insertion order."""
        return [r for (k, _), r in self._resources.items() if k == kind]

    def __len__(self) -> int:
        return len(self._resources)

    def __iter__(self):
        return iter(self._resources.values())

    def to_dict(self) -> dict[str, Any]:
        """Group resources by kind, then by id, as plain data."""
        result: dict[str, dict[str, Any]] = {}
        for resource in self._resources.values():
            result.setdefault(resource.kind, {})[resource.id] = resource.to_dict()[
                "spec"
            ]
        return {"id": self.stack_id, "resources": result}
