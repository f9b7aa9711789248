"""Resource graph primitives."""

from .stack import LiteralToken, Resource, ResourceRefToken, Stack, StringToken, literal

__all__ = [
    "LiteralToken",
    "ResourceRefToken",
    "StringToken",
    "Resource",
    "Stack",
    "literal",
]
