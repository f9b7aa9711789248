"""
Model Builder Exception Classes

Custom exceptions raised while compiling a Gateway into an ELBv2 resource stack.
"""


class GatewayModelError(Exception):
    """Base exception for all model building errors."""

    pass


class ConfigurationError(GatewayModelError):
    """Raised when user supplied configuration is invalid or inconsistent."""

    pass


class ReservedTagKeyError(ConfigurationError):
    """Raised when a user tag collides with an externally managed tag key."""

    pass


class SubnetConfigurationError(ConfigurationError):
    """Raised when load balancer subnet configuration is invalid."""

    pass


class ProtocolError(ConfigurationError):
    """Raised when listener or target group protocols cannot be reconciled."""

    pass


class CollaboratorError(GatewayModelError):
    """Raised when an injected external collaborator call fails."""

    pass


class DuplicateResourceError(GatewayModelError):
    """Raised when a resource identity is registered twice in the same stack."""

    pass


class ManifestError(GatewayModelError):
    """Raised when manifest or inventory files cannot be read or interpreted."""

    pass
