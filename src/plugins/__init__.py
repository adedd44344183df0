"""
Plugin system for the claim provisioner.

This package provides the plugin architecture for provisioners (which talk
to a storage backend) and inputs (which feed claim changes to the controller).
"""

from plugins.base import BucketOptions
from plugins.provisioners.base import Provisioner
from plugins.registry import PluginRegistry, get_registry

__all__ = [
    "BucketOptions",
    "Provisioner",
    "PluginRegistry",
    "get_registry",
]
