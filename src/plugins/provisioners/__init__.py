"""
Provisioner plugins package.

Provisioner plugins create, grant, delete and revoke buckets on a storage
backend. Third-party provisioners are discovered via Python entry points
(group: 'bucketclaim.provisioners').
"""

from plugins.provisioners.base import Provisioner

__all__ = ["Provisioner"]
