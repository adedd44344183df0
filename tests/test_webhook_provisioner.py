"""Unit tests for the webhook provisioner plugin."""

import os
from unittest.mock import AsyncMock, patch

import aiohttp
import pytest

from errors import PluginError, ResourceExistsError, is_already_exists
from models import (
    Binding,
    Claim,
    Endpoint,
    ObjectKey,
    ObjectMeta,
    ReclaimPolicy,
    ResourceClass,
)
from plugins.base import BucketOptions
from plugins.provisioners.webhook import WebhookProvisioner

SERVICE_RESPONSE = {
    "endpoint": {
        "bucket_host": "s3.example.com",
        "bucket_port": 443,
        "bucket_name": "photos-1a2b3c4d",
        "region": "eu-west-1",
    },
    "authentication": {
        "access_key_id": "AKIDEXAMPLE",
        "secret_access_key": "secret",
    },
}


@pytest.fixture
def options():
    claim = Claim(
        meta=ObjectMeta(name="photos", namespace="team-a", uid="uid-1"),
        resource_class_name="standard",
    )
    rc = ResourceClass(
        meta=ObjectMeta(name="standard"),
        provisioner="bucket.example.com/provisioner",
        parameters={"region": "eu-west-1"},
        reclaim_policy=ReclaimPolicy.RETAIN,
    )
    return BucketOptions.for_claim(claim, rc, "photos-1a2b3c4d")


@pytest.fixture
def binding():
    return Binding(
        meta=ObjectMeta(name="binding-team-a.photos"),
        endpoint=Endpoint(bucket_host="s3.example.com", bucket_name="photos-1a2b3c4d"),
        claim_ref=ObjectKey("team-a", "photos"),
    )


@pytest.fixture
def webhook():
    plugin = WebhookProvisioner()
    plugin.url = "http://provisioner.local"
    plugin._request = AsyncMock()
    return plugin


class TestWebhookConfig:
    """Tests for configuration loading."""

    def test_plugin_identity(self):
        plugin = WebhookProvisioner()
        assert plugin.name == "webhook"
        assert plugin.version == "1.0.0"

    def test_load_config_from_env(self):
        env_vars = {
            "WEBHOOK_PROVISIONER_URL": "http://svc:8080",
            "WEBHOOK_PROVISIONER_TOKEN": "tok",
            "WEBHOOK_PROVISIONER_TIMEOUT": "5",
        }
        with patch.dict(os.environ, env_vars, clear=True):
            cfg = WebhookProvisioner.load_config_from_env()
        assert cfg == {"url": "http://svc:8080", "token": "tok", "timeout": 5}

    def test_headers_with_token(self):
        plugin = WebhookProvisioner()
        plugin.token = "tok"
        assert plugin._get_headers()["Authorization"] == "Bearer tok"

    def test_headers_without_token(self):
        assert "Authorization" not in WebhookProvisioner()._get_headers()


@pytest.mark.asyncio
class TestWebhookInitialize:
    """Tests for initialize."""

    async def test_initialize(self):
        plugin = WebhookProvisioner()
        await plugin.initialize({"url": "http://svc:8080/", "token": "", "timeout": 5})
        assert plugin.url == "http://svc:8080"
        assert plugin.token is None
        assert plugin.timeout == 5

    async def test_initialize_requires_url(self):
        with pytest.raises(ValueError, match="WEBHOOK_PROVISIONER_URL"):
            await WebhookProvisioner().initialize({})


@pytest.mark.asyncio
class TestWebhookProvision:
    """Tests for provision and grant."""

    async def test_provision(self, webhook, options):
        webhook._request.return_value = (201, SERVICE_RESPONSE)

        result = await webhook.provision(options)

        assert result.is_valid()
        assert result.endpoint.bucket_name == "photos-1a2b3c4d"
        assert result.authentication.access_key_id == "AKIDEXAMPLE"
        method, path, payload = webhook._request.call_args[0]
        assert (method, path) == ("POST", "/buckets")
        assert payload == {
            "bucketName": "photos-1a2b3c4d",
            "reclaimPolicy": "Retain",
            "parameters": {"region": "eu-west-1"},
            "claim": {"namespace": "team-a", "name": "photos"},
        }

    async def test_provision_conflict(self, webhook, options):
        """A taken bucket name is reported as an already-exists error."""
        webhook._request.return_value = (409, {"error": "exists"})

        with pytest.raises(ResourceExistsError) as exc_info:
            await webhook.provision(options)
        assert is_already_exists(exc_info.value)

    async def test_provision_failure(self, webhook, options):
        webhook._request.return_value = (500, "boom")

        with pytest.raises(PluginError, match="500 - boom"):
            await webhook.provision(options)

    async def test_provision_non_json_response(self, webhook, options):
        """A body the service didn't encode as JSON gives an invalid binding."""
        webhook._request.return_value = (200, "ok")

        result = await webhook.provision(options)

        assert not result.is_valid()

    async def test_grant(self, webhook, options):
        webhook._request.return_value = (200, SERVICE_RESPONSE)

        result = await webhook.grant(options)

        assert result.is_valid()
        method, path, _ = webhook._request.call_args[0]
        assert (method, path) == ("POST", "/buckets/photos-1a2b3c4d/grants")

    async def test_grant_failure(self, webhook, options):
        webhook._request.return_value = (403, {"error": "denied"})

        with pytest.raises(PluginError, match="granting access"):
            await webhook.grant(options)


@pytest.mark.asyncio
class TestWebhookDeprovision:
    """Tests for delete and revoke."""

    async def test_delete(self, webhook, binding):
        webhook._request.return_value = (204, "")

        await webhook.delete(binding)

        webhook._request.assert_called_once_with(
            "DELETE", "/buckets/photos-1a2b3c4d"
        )

    async def test_delete_already_gone(self, webhook, binding):
        webhook._request.return_value = (404, "")

        await webhook.delete(binding)

    async def test_delete_failure(self, webhook, binding):
        webhook._request.return_value = (500, "boom")

        with pytest.raises(PluginError, match="deleting bucket"):
            await webhook.delete(binding)

    async def test_delete_without_bucket_name(self, webhook):
        with pytest.raises(PluginError, match="no bucket name"):
            await webhook.delete(Binding())
        webhook._request.assert_not_called()

    async def test_revoke(self, webhook, binding):
        webhook._request.return_value = (200, {})

        await webhook.revoke(binding)

        webhook._request.assert_called_once_with(
            "DELETE", "/buckets/photos-1a2b3c4d/grants/team-a.photos"
        )

    async def test_revoke_already_gone(self, webhook, binding):
        webhook._request.return_value = (404, "")

        await webhook.revoke(binding)

    async def test_revoke_without_claim_ref(self, webhook, binding):
        binding.claim_ref = None

        with pytest.raises(PluginError, match="claim reference"):
            await webhook.revoke(binding)


@pytest.mark.asyncio
class TestWebhookRequest:
    """Tests for the HTTP transport."""

    async def test_unreachable_service(self):
        plugin = WebhookProvisioner()
        plugin.url = "http://provisioner.local"

        with patch(
            "plugins.provisioners.webhook.provisioner.aiohttp.ClientSession",
            side_effect=aiohttp.ClientError("connection refused"),
        ):
            with pytest.raises(PluginError, match="connection refused"):
                await plugin._request("POST", "/buckets", {})
