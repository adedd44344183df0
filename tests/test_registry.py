"""Unit tests for plugins/registry.py - Plugin discovery and registration."""

import os
from typing import Any, Dict
from unittest.mock import MagicMock, patch

import pytest

from models import Binding
from plugins.base import BucketOptions
from plugins.inputs.base import ClaimCallback, InputPlugin
from plugins.provisioners.base import Provisioner
from plugins.registry import (
    PROVISIONER_ENTRY_POINT_GROUP,
    PluginRegistry,
    get_registry,
    register_builtin_plugins,
    reset_registry,
)


class FakeProvisioner(Provisioner):
    """Provisioner that only records its configuration."""

    instances = 0

    def __init__(self):
        self.config = None

    @property
    def name(self) -> str:
        return "fake"

    @property
    def version(self) -> str:
        return "2.1.0"

    async def initialize(self, config: Dict[str, Any]) -> None:
        FakeProvisioner.instances += 1
        self.config = config

    async def provision(self, options: BucketOptions) -> Binding:
        return Binding()

    async def grant(self, options: BucketOptions) -> Binding:
        return Binding()

    async def delete(self, binding: Binding) -> None:
        pass

    async def revoke(self, binding: Binding) -> None:
        pass

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        return {"endpoint": os.getenv("FAKE_ENDPOINT", "")}


class FakeInput(InputPlugin):
    """Input plugin that never produces events."""

    def __init__(self):
        self.config = None

    @property
    def name(self) -> str:
        return "fake-input"

    @property
    def version(self) -> str:
        return "0.1.0"

    async def initialize(self, config: Dict[str, Any]) -> None:
        self.config = config

    async def start(self, on_claim_event: ClaimCallback) -> None:
        pass

    async def stop(self) -> None:
        pass

    async def health_check(self) -> tuple[bool, str]:
        return True, "ok"


@pytest.fixture
def registry():
    return PluginRegistry()


@pytest.fixture(autouse=True)
def clean_global_registry():
    reset_registry()
    yield
    reset_registry()


class TestRegistration:
    """Tests for plugin class registration."""

    def test_register_provisioner(self, registry):
        with patch.dict(os.environ, {"FAKE_ENDPOINT": "http://fake"}):
            registry.register_provisioner_plugin(FakeProvisioner)

        assert registry.list_provisioner_plugins() == ["fake"]
        assert registry.get_provisioner_plugin_info("fake") == {
            "name": "fake",
            "version": "2.1.0",
        }
        assert registry.get_provisioner_plugin_config("fake") == {
            "endpoint": "http://fake"
        }

    def test_register_input(self, registry):
        registry.register_input_plugin(FakeInput)

        assert registry.list_input_plugins() == ["fake-input"]
        assert registry.has_input_plugin("fake-input")
        assert registry.get_input_plugin_config("fake-input") == {}

    def test_unknown_plugin_info(self, registry):
        assert registry.get_provisioner_plugin_info("missing") is None
        assert registry.get_provisioner_plugin_config("missing") == {}
        assert not registry.has_input_plugin("missing")

    def test_reregistering_overwrites(self, registry):
        registry.register_provisioner_plugin(FakeProvisioner)
        registry.register_provisioner_plugin(FakeProvisioner)

        assert registry.list_provisioner_plugins() == ["fake"]


@pytest.mark.asyncio
class TestInstantiation:
    """Tests for getting initialized plugin instances."""

    async def test_provisioner_uses_env_config_by_default(self, registry):
        with patch.dict(os.environ, {"FAKE_ENDPOINT": "http://fake"}):
            registry.register_provisioner_plugin(FakeProvisioner)

        plugin = await registry.get_provisioner_plugin("fake")

        assert isinstance(plugin, FakeProvisioner)
        assert plugin.config == {"endpoint": "http://fake"}

    async def test_provisioner_explicit_config(self, registry):
        registry.register_provisioner_plugin(FakeProvisioner)

        plugin = await registry.get_provisioner_plugin("fake", {"endpoint": "x"})

        assert plugin.config == {"endpoint": "x"}

    async def test_provisioner_instance_cached(self, registry):
        registry.register_provisioner_plugin(FakeProvisioner)
        FakeProvisioner.instances = 0

        first = await registry.get_provisioner_plugin("fake")
        second = await registry.get_provisioner_plugin("fake")

        assert first is second
        assert FakeProvisioner.instances == 1

    async def test_unknown_provisioner(self, registry):
        registry.register_provisioner_plugin(FakeProvisioner)

        with pytest.raises(ValueError, match="Available plugins: fake"):
            await registry.get_provisioner_plugin("ceph")

    async def test_unknown_provisioner_none_registered(self, registry):
        with pytest.raises(ValueError, match="Available plugins: none"):
            await registry.get_provisioner_plugin("ceph")

    async def test_input_plugin(self, registry):
        registry.register_input_plugin(FakeInput)

        plugin = await registry.get_input_plugin("fake-input", {"port": 1})

        assert plugin.config == {"port": 1}
        assert await registry.get_input_plugin("fake-input") is plugin

    async def test_unknown_input_plugin(self, registry):
        with pytest.raises(ValueError, match="Unknown input plugin"):
            await registry.get_input_plugin("sqs")


class TestGlobalRegistry:
    """Tests for the registry singleton and built-in registration."""

    def test_singleton(self):
        assert get_registry() is get_registry()

    def test_reset(self):
        first = get_registry()
        reset_registry()
        assert get_registry() is not first

    def test_builtin_plugins(self):
        with patch("plugins.registry.entry_points", return_value=[]) as mock_eps:
            register_builtin_plugins()

        registry = get_registry()
        assert "webhook" in registry.list_provisioner_plugins()
        assert registry.has_input_plugin("http")
        mock_eps.assert_called_once_with(group=PROVISIONER_ENTRY_POINT_GROUP)

    def test_entry_point_provisioners(self):
        ep = MagicMock()
        ep.name = "fake"
        ep.load.return_value = FakeProvisioner

        with patch("plugins.registry.entry_points", return_value=[ep]):
            register_builtin_plugins()

        assert "fake" in get_registry().list_provisioner_plugins()

    def test_broken_entry_point_skipped(self):
        ep = MagicMock()
        ep.name = "broken"
        ep.load.side_effect = ImportError("no module named broken")

        with patch("plugins.registry.entry_points", return_value=[ep]):
            register_builtin_plugins()

        registry = get_registry()
        assert "broken" not in registry.list_provisioner_plugins()
        assert "webhook" in registry.list_provisioner_plugins()
