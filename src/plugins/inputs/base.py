"""
Input Plugin Base - Abstract interface for claim input sources.

Input plugins let users submit claims and resource classes, and tell the
controller when a claim changes so it does not wait for the next poll:
- HTTP API: REST endpoints
- File watcher, queue listener, etc. via third-party plugins
"""

from abc import ABC, abstractmethod
from typing import Any, Awaitable, Callable, Dict

from models import ObjectKey

# Callback type for claim changes
# (event_type: str, key: ObjectKey) -> None
ClaimCallback = Callable[[str, ObjectKey], Awaitable[None]]


class InputPlugin(ABC):
    """
    Abstract base class for input plugins.

    Input plugins receive claims and resource classes from external sources,
    write them to the store and notify the controller of changes.
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this plugin (e.g., 'http')."""
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

        Args:
            config: Plugin-specific configuration dictionary
        """
        pass

    @abstractmethod
    async def start(self, on_claim_event: ClaimCallback) -> None:
        """
        Start the input plugin.

        Args:
            on_claim_event: Callback to invoke when a claim changes.
                First arg is the event type ('created', 'deleted'),
                second arg is the claim's ObjectKey.
        """
        pass

    @abstractmethod
    async def stop(self) -> None:
        """Stop the input plugin gracefully."""
        pass

    @abstractmethod
    async def health_check(self) -> tuple[bool, str]:
        """
        Check if the input plugin is healthy.

        Returns:
            Tuple of (is_healthy, status_message).
        """
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """
        Load plugin-specific configuration from environment variables.

        Returns:
            Dictionary of configuration values for this plugin.
        """
        return {}

    def set_store(self, store: Any) -> None:
        """
        Set the record store for plugins that read or write records.

        Override this method in subclasses that require store access.

        Args:
            store: The ResourceStore instance
        """
        pass
