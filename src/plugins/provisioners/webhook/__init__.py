"""
Webhook Provisioner Plugin.

This plugin delegates bucket operations to an external HTTP service.
"""

from plugins.provisioners.webhook.provisioner import WebhookProvisioner

__all__ = ["WebhookProvisioner"]
