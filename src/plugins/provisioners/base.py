"""
Provisioner Plugin Base - Abstract interface for bucket provisioners.

A provisioner does the actual work against a storage backend. The claim
reconciler decides when to call it and owns every record around it; the
provisioner only creates, grants, deletes and revokes buckets.
"""

from abc import ABC, abstractmethod
from typing import Any, Dict

from models import Binding
from plugins.base import BucketOptions


class Provisioner(ABC):
    """
    Abstract base class for provisioner plugins.

    Dynamic provisioning goes through provision()/delete(); static
    provisioning of a pre-existing bucket goes through grant()/revoke().
    Implementations should raise PluginError (or ResourceExistsError when the
    bucket name is taken) on failure.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this plugin (e.g., 'webhook')."""
        pass

    @property
    @abstractmethod
    def version(self) -> str:
        """Plugin version string."""
        pass

    @abstractmethod
    async def initialize(self, config: Dict[str, Any]) -> None:
        """
        Initialize the plugin with configuration.

        Called once when the plugin is loaded.

        Args:
            config: Plugin-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def provision(self, options: BucketOptions) -> Binding:
        """
        Create a brand-new bucket.

        Called at most once per distinct bucket name by a successful pass.

        Args:
            options: Bucket name, claim snapshot, class parameters and
                reclaim policy

        Returns:
            A Binding with endpoint and authentication populated.
        """
        pass

    @abstractmethod
    async def grant(self, options: BucketOptions) -> Binding:
        """
        Grant access to an existing, externally named bucket.

        Args:
            options: Bucket name, claim snapshot, class parameters and
                reclaim policy

        Returns:
            A Binding with endpoint and authentication populated.
        """
        pass

    @abstractmethod
    async def delete(self, binding: Binding) -> None:
        """Destroy a bucket previously created by provision()."""
        pass

    @abstractmethod
    async def revoke(self, binding: Binding) -> None:
        """Remove access created by grant() without destroying the bucket."""
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load plugin-specific configuration from environment variables.

        Override this method in subclasses to define how the plugin
        loads its configuration from the environment.

        Returns:
            Dictionary of configuration values for this plugin.
        """
        return {}
