"""
Core plugin types.

This module contains types shared across the plugin system.
"""

import copy
import logging
from dataclasses import dataclass, field
from typing import Dict

from models import Claim, ReclaimPolicy, ResourceClass

logger = logging.getLogger(__name__)


@dataclass
class BucketOptions:
    """Everything a provisioner needs to provision or grant access to a bucket."""

    reclaim_policy: ReclaimPolicy
    bucket_name: str
    claim: Claim
    parameters: Dict[str, str] = field(default_factory=dict)

    @classmethod
    def for_claim(
        cls, claim: Claim, resource_class: ResourceClass, bucket_name: str
    ) -> "BucketOptions":
        """Build options from a claim and its class, freezing a copy of the claim."""
        return cls(
            reclaim_policy=resource_class.reclaim_policy,
            bucket_name=bucket_name,
            claim=copy.deepcopy(claim),
            parameters=dict(resource_class.parameters),
        )
