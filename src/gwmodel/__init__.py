"""Compile Kubernetes Gateway API objects into an AWS ELBv2 resource stack."""

__version__ = "0.1.0"
