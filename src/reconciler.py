"""
Claim Reconciler - turns bucket claims into provisioned buckets and back.

One call to reconcile() is one pass over one claim identity. A claim that
exists and still needs a bucket is provisioned (or granted access to an
existing bucket) through the provisioner plugin, after which a binding,
credentials and connection-info are persisted and the claim is marked Bound.
A claim that no longer exists is deprovisioned: its artifacts are removed,
the plugin deletes or revokes the bucket, and only then is the binding, held
back by its finalizer, removed.

Every step is idempotent under re-delivery because all names derive from the
claim identity. A pass that fails part-way removes what it created and
leaves the claim in its previous phase so the next pass starts over.
"""

import logging
from dataclasses import dataclass
from typing import Any, Optional, Union

from config import ReconcilerOptions
from errors import (
    ConfigurationError,
    ContractViolationError,
    NotFoundError,
    PluginError,
    ProvisionerError,
    StoreError,
    is_already_exists,
)
from models import (
    CLASS_BUCKET_PARAMETER,
    FINALIZER,
    Binding,
    Claim,
    ClaimPhase,
    ConnectionInfo,
    Credentials,
    ObjectKey,
    ObjectMeta,
    RecordKind,
    ResourceClass,
    binding_key_for,
    binding_name_for,
    compose_bucket_name,
    new_connection_info,
    new_credentials,
    should_provision,
)
from plugins.base import BucketOptions
from plugins.provisioners.base import Provisioner
from retry import create_until_visible
from store import ResourceStore

Log = Union[logging.Logger, logging.LoggerAdapter]


class RequestLogAdapter(logging.LoggerAdapter):
    """Prefixes every message with the claim identity being reconciled."""

    def process(self, msg, kwargs):
        return f"[{self.extra['request']}] {msg}", kwargs


@dataclass
class ReconcileResult:
    """Outcome of one reconcile pass, handed back to the dispatcher."""

    requeue: bool = False
    error: Optional[Exception] = None

    @property
    def success(self) -> bool:
        return self.error is None

    @property
    def message(self) -> str:
        return str(self.error) if self.error is not None else ""


@dataclass
class ProvisionArtifacts:
    """What a provision pass has produced so far, for cleanup on failure."""

    binding: Optional[Binding] = None
    binding_persisted: bool = False
    credentials: Optional[Credentials] = None
    connection_info: Optional[ConnectionInfo] = None


class ClaimReconciler:
    """
    Reconciles bucket claims for one provisioner.

    Only claims whose resource class names this provisioner are handled;
    everything else is left untouched.
    """

    def __init__(
        self,
        store: ResourceStore,
        provisioner_name: str,
        provisioner: Provisioner,
        options: Optional[ReconcilerOptions] = None,
        logger: Optional[logging.Logger] = None,
    ):
        self.store = store
        self.provisioner_name = provisioner_name.lower()
        self.provisioner = provisioner
        self.logger = logger or logging.getLogger(__name__)

        options = options or ReconcilerOptions()
        self.retry_interval = options.retry_interval
        self.retry_timeout = options.retry_timeout

        self.logger.info(
            f"Constructing claim reconciler for provisioner {self.provisioner_name}"
        )
        self.logger.debug(
            f"Retry loop settings: retry_interval={self.retry_interval}s, "
            f"retry_timeout={self.retry_timeout}s"
        )

    def _request_logger(self, key: ObjectKey) -> RequestLogAdapter:
        return RequestLogAdapter(self.logger, {"request": str(key)})

    def supported_provisioner(self, provisioner: str) -> bool:
        """Check whether a resource class belongs to this provisioner."""
        return provisioner.lower() == self.provisioner_name

    # ==================== Entry Point ====================

    async def reconcile(self, key: ObjectKey) -> ReconcileResult:
        """
        Run one reconcile pass for a claim identity.

        Errors never escape as exceptions when they belong to the provisioner
        error taxonomy; they come back in the result and the dispatcher decides
        when to retry.

        Args:
            key: Namespace and name of the claim.

        Returns:
            ReconcileResult with the error of a failed pass, if any.
        """
        log = self._request_logger(key)
        log.debug("New reconcile iteration")

        try:
            await self._reconcile(key, log)
        except ProvisionerError as e:
            log.error(f"Reconcile failed: {e}")
            return ReconcileResult(requeue=False, error=e)

        return ReconcileResult(requeue=False)

    async def _reconcile(self, key: ObjectKey, log: Log) -> None:
        try:
            claim = await self.store.get(RecordKind.CLAIM, key)
        except NotFoundError:
            log.info("Claim not found, assuming it was deleted and cleaning up")
            await self.handle_delete_claim(key, log)
            return
        except StoreError as e:
            raise StoreError(f"error getting claim {key}: {e}") from e

        if not should_provision(claim):
            log.info("Claim does not need provisioning, skipping")
            return

        resource_class = await self._resource_class(claim.resource_class_name, log)
        if resource_class is None:
            log.info(
                f"Resource class {claim.resource_class_name!r} not found, skipping"
            )
            return
        if not self.supported_provisioner(resource_class.provisioner):
            log.info(f"Unsupported provisioner {resource_class.provisioner!r}, skipping")
            return

        # The claim matches our provisioner, lacks a binding and needs a bucket
        await self.handle_provision_claim(
            key, resource_class, resource_class.is_dynamic, log
        )

    async def _resource_class(self, name: str, log: Log) -> Optional[ResourceClass]:
        """Fetch a resource class, returning None if it does not exist."""
        if not name:
            return None
        try:
            return await self.store.get(RecordKind.RESOURCE_CLASS, ObjectKey("", name))
        except NotFoundError:
            log.debug(f"Resource class {name!r} not found")
            return None
        except StoreError as e:
            raise StoreError(f"error getting resource class {name!r}: {e}") from e

    # ==================== Provisioning ====================

    async def handle_provision_claim(
        self,
        key: ObjectKey,
        resource_class: ResourceClass,
        dynamic: bool,
        log: Optional[Log] = None,
    ) -> None:
        """
        Provision a bucket for a claim and persist the records around it.

        Once the claim has been re-read, any failure removes the artifacts
        created so far (see cleanup_artifacts) before the error is re-raised.

        Args:
            key: Namespace and name of the claim.
            resource_class: The claim's resource class.
            dynamic: True to create a new bucket, False to grant access to the
                bucket named by the class.
            log: Logger for this pass.
        """
        log = log or self._request_logger(key)

        try:
            claim = await self.store.get(RecordKind.CLAIM, key)
        except NotFoundError as e:
            raise NotFoundError(
                f"claim {key} was lost before it could be provisioned"
            ) from e
        except StoreError as e:
            raise StoreError(f"error getting claim {key}: {e}") from e

        # No artifacts exist until the claim has been resolved
        artifacts = ProvisionArtifacts()
        try:
            await self._provision(claim, resource_class, dynamic, artifacts, log)
        except Exception as e:
            await self.cleanup_artifacts(artifacts, e, dynamic, log)
            raise

    async def _provision(
        self,
        claim: Claim,
        resource_class: ResourceClass,
        dynamic: bool,
        artifacts: ProvisionArtifacts,
        log: Log,
    ) -> None:
        key = claim.key

        if dynamic:
            bucket_name = compose_bucket_name(claim)
        else:
            bucket_name = resource_class.parameters.get(CLASS_BUCKET_PARAMETER, "")
        if not bucket_name:
            raise ConfigurationError(f"bucket name missing for claim {key}")

        if not should_provision(claim):
            log.info("Claim was bound in the meantime, nothing to do")
            return

        options = BucketOptions.for_claim(claim, resource_class, bucket_name)
        provisioned = await self._invoke_provisioner(options, dynamic, log)
        if isinstance(provisioned, Binding):
            artifacts.binding = provisioned
        if not isinstance(provisioned, Binding) or not provisioned.is_valid():
            raise ContractViolationError(
                f"provisioner returned an empty binding for bucket {bucket_name}"
            )

        provisioned.meta = ObjectMeta(
            name=binding_name_for(key),
            finalizers=[FINALIZER],
            labels={"bucketclaim.io/provisioner": self.provisioner_name},
        )
        provisioned.resource_class_name = claim.resource_class_name
        provisioned.claim_ref = key
        provisioned.reclaim_policy = resource_class.reclaim_policy
        provisioned.phase = ClaimPhase.BOUND

        binding = await self._create(provisioned, log)
        artifacts.binding = binding
        artifacts.binding_persisted = True

        artifacts.credentials = await self._create(
            new_credentials(claim, binding.authentication), log
        )
        artifacts.connection_info = await self._create(
            new_connection_info(claim, binding.endpoint), log
        )

        claim.binding_name = binding.meta.name
        claim.bucket_name = bucket_name
        claim.phase = ClaimPhase.BOUND
        try:
            await self.store.update(claim)
        except StoreError as e:
            raise StoreError(f"error updating claim {key}: {e}") from e

        log.info(f"Provisioning succeeded, bound to {binding.meta.name}")

    async def _invoke_provisioner(
        self, options: BucketOptions, dynamic: bool, log: Log
    ) -> Any:
        """Call provision() or grant(), returning whatever the plugin gave back."""
        verb = "provisioning" if dynamic else "granting access to"
        log.info(f"{verb.capitalize()} bucket {options.bucket_name}")

        try:
            if dynamic:
                result = await self.provisioner.provision(options)
            else:
                result = await self.provisioner.grant(options)
        except Exception as e:
            raise PluginError(
                f"error {verb} bucket {options.bucket_name}: {e}"
            ) from e

        return result

    async def _create(self, record: Any, log: Log) -> Any:
        """Persist a record, riding out store visibility lag."""
        kind = record.kind
        key = record.key
        try:
            return await create_until_visible(
                create=lambda: self.store.create(record),
                fetch=lambda: self.store.get(kind, key),
                interval=self.retry_interval,
                timeout=self.retry_timeout,
                log=log,
            )
        except StoreError as e:
            raise StoreError(f"error creating {kind.value} {key}: {e}") from e

    # ==================== Cleanup ====================

    async def cleanup_artifacts(
        self,
        artifacts: ProvisionArtifacts,
        error: BaseException,
        dynamic: bool,
        log: Optional[Log] = None,
    ) -> None:
        """
        Undo a failed provision pass.

        Deletes the bucket (dynamic mode only, and never when the failure was
        an "already exists" race, since the bucket may not be ours), then
        removes persisted connection-info, credentials and binding in reverse
        creation order. Every step is best-effort: failures are logged and
        never replace the original error.

        Args:
            artifacts: What the failed pass produced.
            error: The error that aborted the pass.
            dynamic: Whether the pass was provisioning a new bucket.
            log: Logger for this pass.
        """
        log = log or self.logger
        log.error(f"Cleaning up reconcile artifacts after error: {error}")

        binding = artifacts.binding
        if not is_already_exists(error) and binding is not None and dynamic:
            bucket = binding.endpoint.bucket_name if binding.endpoint else ""
            log.info(f"Deleting bucket {bucket}")
            try:
                await self.provisioner.delete(binding)
            except Exception as e:
                log.error(f"Error deleting bucket {bucket}: {e}")

        if artifacts.connection_info is not None:
            await self._delete_quietly(
                RecordKind.CONNECTION_INFO, artifacts.connection_info.key, log
            )
        if artifacts.credentials is not None:
            await self._delete_quietly(
                RecordKind.CREDENTIALS, artifacts.credentials.key, log
            )
        if artifacts.binding_persisted and binding is not None:
            try:
                await self._delete_binding(binding, log)
            except NotFoundError:
                log.debug(f"Binding {binding.meta.name} already gone")
            except StoreError as e:
                log.error(f"Error deleting binding {binding.meta.name}: {e}")

    async def _delete_quietly(self, kind: RecordKind, key: ObjectKey, log: Log) -> None:
        try:
            await self.store.delete(kind, key)
        except NotFoundError:
            log.debug(f"{kind.value} {key} already gone")
        except StoreError as e:
            log.error(f"Error deleting {kind.value} {key}: {e}")

    async def _delete_binding(self, binding: Binding, log: Log) -> None:
        """Release the finalizer on a binding, then delete it."""
        if FINALIZER in binding.meta.finalizers:
            binding.meta.finalizers = [
                f for f in binding.meta.finalizers if f != FINALIZER
            ]
            binding = await self.store.update(binding)
        log.debug(f"Deleting binding {binding.meta.name}")
        await self.store.delete(RecordKind.BINDING, binding.key)

    # ==================== Deprovisioning ====================

    async def handle_delete_claim(self, key: ObjectKey, log: Optional[Log] = None) -> None:
        """
        Deprovision the bucket of a deleted claim.

        The plugin is always called before the binding is removed, and a
        plugin failure leaves the binding in place so the undeprovisioned
        bucket is not forgotten.

        Args:
            key: Namespace and name of the deleted claim.
            log: Logger for this pass.
        """
        log = log or self._request_logger(key)

        await self._delete_claim_artifact(RecordKind.CONNECTION_INFO, key, log)
        await self._delete_claim_artifact(RecordKind.CREDENTIALS, key, log)

        try:
            binding = await self.store.get(RecordKind.BINDING, binding_key_for(key))
        except NotFoundError:
            log.info("Binding not found, assuming it was already deleted")
            return
        except StoreError as e:
            raise StoreError(f"error getting binding for claim {key}: {e}") from e
        if binding is None:
            log.info("Got empty binding, assuming deletion complete")
            return

        resource_class = await self._resource_class(binding.resource_class_name, log)
        if resource_class is None:
            raise ConfigurationError(
                f"error getting resource class {binding.resource_class_name!r} "
                f"for binding {binding.meta.name}"
            )
        if not self.supported_provisioner(resource_class.provisioner):
            log.info(
                f"Binding belongs to provisioner {resource_class.provisioner!r}, "
                f"skipping"
            )
            return

        # The class decides between delete and revoke, as it did on provisioning
        if resource_class.is_dynamic:
            try:
                await self.provisioner.delete(binding)
            except Exception as e:
                raise PluginError(f"provisioner error deleting bucket: {e}") from e
        else:
            try:
                await self.provisioner.revoke(binding)
            except Exception as e:
                raise PluginError(
                    f"provisioner error revoking access to bucket: {e}"
                ) from e

        try:
            await self._delete_binding(binding, log)
        except NotFoundError:
            log.info("Binding vanished during deprovisioning, assuming deletion complete")
        except StoreError as e:
            raise StoreError(f"error deleting binding {binding.meta.name}: {e}") from e

        log.info("Deprovisioning succeeded")

    async def _delete_claim_artifact(
        self, kind: RecordKind, key: ObjectKey, log: Log
    ) -> None:
        try:
            await self.store.delete(kind, key)
        except NotFoundError:
            log.info(f"No {kind.value} to delete")
        except StoreError as e:
            raise StoreError(f"error deleting {kind.value} for claim {key}: {e}") from e
