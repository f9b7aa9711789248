"""Helpers shared by the builders."""

from __future__ import annotations

import hashlib
import re
from collections.abc import Iterator
from contextlib import contextmanager

from gwmodel.exceptions import CollaboratorError, GatewayModelError

_INVALID_NAME_CHARS = re.compile(r"[^A-Za-z0-9]")


def sanitize_name(value: str) -> str:
    """Strip every non alphanumeric character."""
    return _INVALID_NAME_CHARS.sub("", value)


def hashed_resource_name(namespace: str, name: str, *hash_parts: str) -> str:
    """
    Build a deterministic AWS resource name.

    The result follows ``k8s-<namespace:8>-<name:8>-<sha256:10>``, with the
    digest taken over the concatenation of ``hash_parts``.
    """
    digest = hashlib.sha256()
    for part in hash_parts:
        digest.update(part.encode("utf-8"))
    uuid = digest.hexdigest()
    return f"k8s-{sanitize_name(namespace)[:8]}-{sanitize_name(name)[:8]}-{uuid[:10]}"


@contextmanager
def collaborator_call(what: str) -> Iterator[None]:
    """
    Wrap failures of an external collaborator into :class:`CollaboratorError`.

    Errors already raised by this package pass through untouched.
    """
    try:
        yield
    except GatewayModelError:
        raise
    except Exception as e:
        raise CollaboratorError(f"{what}: {e}") from e
