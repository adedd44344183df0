"""
Webhook Provisioner Plugin - delegates bucket operations to an HTTP service.

The service owns the storage backend; this plugin maps the four provisioner
operations onto its REST API:

    POST   {url}/buckets                                   provision
    POST   {url}/buckets/{bucket}/grants                   grant
    DELETE {url}/buckets/{bucket}                          delete
    DELETE {url}/buckets/{bucket}/grants/{namespace}.{claim}   revoke
"""

import asyncio
import logging
import os
from typing import Any, Dict, Optional, Tuple

import aiohttp

from errors import PluginError, ResourceExistsError
from models import Authentication, Binding, Endpoint
from plugins.base import BucketOptions
from plugins.provisioners.base import Provisioner

logger = logging.getLogger(__name__)


class WebhookProvisioner(Provisioner):
    """Provisioner that calls an external bucket provisioning service."""

    def __init__(self):
        self.url: str = ""
        self.token: Optional[str] = None
        self.timeout: int = 30

    @property
    def name(self) -> str:
        return "webhook"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load webhook provisioner configuration from environment variables."""
        return {
            "url": os.getenv("WEBHOOK_PROVISIONER_URL", ""),
            "token": os.getenv("WEBHOOK_PROVISIONER_TOKEN", ""),
            "timeout": int(os.getenv("WEBHOOK_PROVISIONER_TIMEOUT", "30")),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the plugin with configuration."""
        self.url = (config.get("url") or "").rstrip("/")
        self.token = config.get("token") or None
        self.timeout = config.get("timeout", self.timeout)

        if not self.url:
            raise ValueError(
                "Webhook provisioner URL not configured. "
                "Set WEBHOOK_PROVISIONER_URL environment variable."
            )

        logger.debug(
            f"Webhook provisioner initialized: url={self.url}, timeout={self.timeout}s"
        )

    def _get_headers(self) -> Dict[str, str]:
        """Get headers for service requests."""
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    async def _request(
        self, method: str, path: str, payload: Optional[Dict[str, Any]] = None
    ) -> Tuple[int, Any]:
        """
        Send a request to the provisioning service.

        Returns:
            Tuple of (status, parsed JSON body or text).

        Raises:
            PluginError: If the service could not be reached.
        """
        url = f"{self.url}{path}"
        timeout = aiohttp.ClientTimeout(total=self.timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as session:
                async with session.request(
                    method, url, headers=self._get_headers(), json=payload
                ) as response:
                    if response.content_type == "application/json":
                        body = await response.json()
                    else:
                        body = await response.text()
                    return response.status, body
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            raise PluginError(f"{method} {url} failed: {e}") from e

    @staticmethod
    def _payload(options: BucketOptions) -> Dict[str, Any]:
        claim = options.claim
        return {
            "bucketName": options.bucket_name,
            "reclaimPolicy": options.reclaim_policy.value,
            "parameters": options.parameters,
            "claim": {"namespace": claim.meta.namespace, "name": claim.meta.name},
        }

    @staticmethod
    def _binding_from_response(body: Any) -> Binding:
        """Build a Binding from the service's endpoint/authentication response."""
        if not isinstance(body, dict):
            return Binding()
        endpoint = body.get("endpoint")
        authentication = body.get("authentication")
        return Binding(
            endpoint=Endpoint.from_dict(endpoint) if endpoint else None,
            authentication=(
                Authentication.from_dict(authentication) if authentication else None
            ),
        )

    @staticmethod
    def _grant_name(binding: Binding) -> str:
        if binding.claim_ref is None:
            raise PluginError("binding has no claim reference to revoke access for")
        return f"{binding.claim_ref.namespace}.{binding.claim_ref.name}"

    @staticmethod
    def _bucket_name(binding: Binding) -> str:
        if binding.endpoint is None or not binding.endpoint.bucket_name:
            raise PluginError("binding has no bucket name")
        return binding.endpoint.bucket_name

    async def provision(self, options: BucketOptions) -> Binding:
        """Ask the service to create a new bucket."""
        status, body = await self._request("POST", "/buckets", self._payload(options))

        if status == 409:
            raise ResourceExistsError(f"bucket {options.bucket_name} already exists")
        if status not in (200, 201):
            raise PluginError(
                f"error provisioning bucket {options.bucket_name}: {status} - {body}"
            )

        logger.info(f"Provisioned bucket {options.bucket_name}")
        return self._binding_from_response(body)

    async def grant(self, options: BucketOptions) -> Binding:
        """Ask the service to grant access to an existing bucket."""
        status, body = await self._request(
            "POST", f"/buckets/{options.bucket_name}/grants", self._payload(options)
        )

        if status not in (200, 201):
            raise PluginError(
                f"error granting access to bucket {options.bucket_name}: "
                f"{status} - {body}"
            )

        logger.info(f"Granted access to bucket {options.bucket_name}")
        return self._binding_from_response(body)

    async def delete(self, binding: Binding) -> None:
        """Ask the service to destroy a bucket."""
        bucket = self._bucket_name(binding)
        status, body = await self._request("DELETE", f"/buckets/{bucket}")

        if status == 404:
            logger.info(f"Bucket {bucket} already gone")
            return
        if status not in (200, 202, 204):
            raise PluginError(f"error deleting bucket {bucket}: {status} - {body}")

        logger.info(f"Deleted bucket {bucket}")

    async def revoke(self, binding: Binding) -> None:
        """Ask the service to revoke a claim's access to a bucket."""
        bucket = self._bucket_name(binding)
        grant = self._grant_name(binding)
        status, body = await self._request(
            "DELETE", f"/buckets/{bucket}/grants/{grant}"
        )

        if status == 404:
            logger.info(f"Grant {grant} on bucket {bucket} already gone")
            return
        if status not in (200, 202, 204):
            raise PluginError(
                f"error revoking access to bucket {bucket}: {status} - {body}"
            )

        logger.info(f"Revoked access to bucket {bucket} for {grant}")
