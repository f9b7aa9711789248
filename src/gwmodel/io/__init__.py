"""Manifest, inventory and output files."""

from .inventory import SecurityGroupLookup, StaticInventory, load_inventory
from .manifests import ManifestSet, load_manifests
from .output import dump_result, result_to_dict, write_result

__all__ = [
    "ManifestSet",
    "SecurityGroupLookup",
    "StaticInventory",
    "dump_result",
    "load_inventory",
    "load_manifests",
    "result_to_dict",
    "write_result",
]
