"""
Plugin Registry - Discovery and registration of plugins.

This module provides the central registry for provisioner and input plugins,
handling discovery, registration, and instantiation.
"""

from importlib.metadata import entry_points
from typing import Any, Dict, Optional, Type

from plugins.base import logger
from plugins.inputs.base import InputPlugin
from plugins.provisioners.base import Provisioner

PROVISIONER_ENTRY_POINT_GROUP = "bucketclaim.provisioners"


class PluginRegistry:
    """
    Central registry for all plugins.

    Provisioner plugins talk to a storage backend; input plugins feed claim
    changes into the controller.
    """

    def __init__(self):
        # Registered plugin classes (not instantiated)
        self._provisioner_plugins: Dict[str, Type[Provisioner]] = {}
        self._input_plugins: Dict[str, Type[InputPlugin]] = {}

        # Provisioner metadata (name, version) served by the plugins endpoint
        self._provisioner_plugin_info: Dict[str, Dict[str, str]] = {}

        # Instantiated and initialized plugin instances
        self._provisioner_instances: Dict[str, Provisioner] = {}
        self._input_instances: Dict[str, InputPlugin] = {}

        # Plugin configurations loaded from environment
        self._provisioner_plugin_configs: Dict[str, Dict[str, Any]] = {}
        self._input_plugin_configs: Dict[str, Dict[str, Any]] = {}

    # Registration methods

    def register_provisioner_plugin(self, plugin_class: Type[Provisioner]) -> None:
        """
        Register a provisioner plugin class.

        Args:
            plugin_class: The Provisioner subclass to register
        """
        temp_instance = plugin_class()
        name = temp_instance.name
        version = temp_instance.version

        if name in self._provisioner_plugins:
            logger.warning(f"Overwriting existing provisioner plugin: {name}")

        self._provisioner_plugins[name] = plugin_class
        self._provisioner_plugin_info[name] = {"name": name, "version": version}
        self._provisioner_plugin_configs[name] = plugin_class.load_config_from_env()
        logger.info(f"Registered provisioner plugin: {name} v{version}")

    def register_input_plugin(self, plugin_class: Type[InputPlugin]) -> None:
        """
        Register an input plugin class.

        Args:
            plugin_class: The InputPlugin subclass to register
        """
        temp_instance = plugin_class()
        name = temp_instance.name
        version = temp_instance.version

        if name in self._input_plugins:
            logger.warning(f"Overwriting existing input plugin: {name}")

        self._input_plugins[name] = plugin_class
        self._input_plugin_configs[name] = plugin_class.load_config_from_env()
        logger.info(f"Registered input plugin: {name} v{version}")

    # Instantiation methods

    async def get_provisioner_plugin(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> Provisioner:
        """
        Get an initialized provisioner plugin instance.

        Args:
            name: The plugin name to retrieve
            config: Optional configuration to pass to initialize(). Defaults
                to the configuration loaded from the environment.

        Returns:
            An initialized Provisioner instance

        Raises:
            ValueError: If the plugin name is not registered
        """
        if name not in self._provisioner_plugins:
            available = ", ".join(self._provisioner_plugins.keys()) or "none"
            raise ValueError(
                f"Unknown provisioner plugin: {name}. Available plugins: {available}"
            )

        if name not in self._provisioner_instances:
            plugin = self._provisioner_plugins[name]()
            if config is None:
                config = self.get_provisioner_plugin_config(name)
            await plugin.initialize(config)
            self._provisioner_instances[name] = plugin
            logger.info(f"Initialized provisioner plugin: {name}")

        return self._provisioner_instances[name]

    async def get_input_plugin(
        self, name: str, config: Optional[Dict[str, Any]] = None
    ) -> InputPlugin:
        """
        Get an initialized input plugin instance.

        Args:
            name: The plugin name to retrieve
            config: Optional configuration to pass to initialize()

        Returns:
            An initialized InputPlugin instance

        Raises:
            ValueError: If the plugin name is not registered
        """
        if name not in self._input_plugins:
            available = ", ".join(self._input_plugins.keys()) or "none"
            raise ValueError(
                f"Unknown input plugin: {name}. Available plugins: {available}"
            )

        if name not in self._input_instances:
            plugin = self._input_plugins[name]()
            await plugin.initialize(config or {})
            self._input_instances[name] = plugin
            logger.info(f"Initialized input plugin: {name}")

        return self._input_instances[name]

    # Discovery methods

    def list_provisioner_plugins(self) -> list[str]:
        """List all registered provisioner plugin names."""
        return list(self._provisioner_plugins.keys())

    def list_input_plugins(self) -> list[str]:
        """List all registered input plugin names."""
        return list(self._input_plugins.keys())

    def has_input_plugin(self, name: str) -> bool:
        return name in self._input_plugins

    def get_provisioner_plugin_info(self, name: str) -> Optional[Dict[str, str]]:
        """Get 'name' and 'version' of a registered provisioner plugin."""
        return self._provisioner_plugin_info.get(name)

    def get_provisioner_plugin_config(self, name: str) -> Dict[str, Any]:
        """
        Get configuration for a provisioner plugin.

        Args:
            name: The plugin name

        Returns:
            Dictionary of configuration values, or empty dict if not found
        """
        return self._provisioner_plugin_configs.get(name, {})

    def get_input_plugin_config(self, name: str) -> Dict[str, Any]:
        """
        Get configuration for an input plugin.

        Args:
            name: The plugin name

        Returns:
            Dictionary of configuration values, or empty dict if not found
        """
        return self._input_plugin_configs.get(name, {})


# Global registry instance
_registry: Optional[PluginRegistry] = None


def get_registry() -> PluginRegistry:
    """Get the global plugin registry singleton."""
    global _registry
    if _registry is None:
        _registry = PluginRegistry()
    return _registry


def reset_registry() -> None:
    """Reset the global registry (mainly for testing)."""
    global _registry
    _registry = None


def register_builtin_plugins() -> None:
    """
    Register all built-in plugins and discover provisioner plugins
    via entry points.

    Called during application startup. Third-party provisioners are picked
    up from the ``bucketclaim.provisioners`` entry point group; one that
    fails to load is logged and skipped.
    """
    registry = get_registry()

    try:
        from plugins.provisioners.webhook import WebhookProvisioner

        registry.register_provisioner_plugin(WebhookProvisioner)
    except ImportError as e:
        logger.warning(f"Could not load webhook provisioner plugin: {e}")

    try:
        from plugins.inputs.http import HTTPInputPlugin

        registry.register_input_plugin(HTTPInputPlugin)
    except ImportError as e:
        logger.warning(f"Could not load HTTP input plugin: {e}")

    discovered = entry_points(group=PROVISIONER_ENTRY_POINT_GROUP)
    for ep in discovered:
        try:
            provisioner_class = ep.load()
            registry.register_provisioner_plugin(provisioner_class)
        except Exception as e:
            logger.warning(f"Could not load provisioner plugin {ep.name}: {e}")
