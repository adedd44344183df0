"""
Error taxonomy for the claim provisioner.

Every error raised by the store, the reconciler or a provisioner plugin is a
ProvisionerError. Callers that wrap an error for context use ``raise ... from``
so the helpers below can still recognise the underlying signal.
"""

from typing import Optional


class ProvisionerError(Exception):
    """Base class for all claim provisioner errors."""


class StoreError(ProvisionerError):
    """Generic persistence failure."""


class NotFoundError(StoreError):
    """The requested record does not exist."""


class AlreadyExistsError(StoreError):
    """A record with the same kind, namespace and name already exists."""


class ConflictError(StoreError):
    """An update was made against a stale resource version."""


class PluginError(ProvisionerError):
    """A provisioner plugin failed to provision or deprovision a bucket."""


class ResourceExistsError(PluginError):
    """The provisioner reports that the bucket already exists."""


class ContractViolationError(ProvisionerError):
    """A provisioner plugin returned an invalid or empty result."""


class ConfigurationError(ProvisionerError):
    """A claim or binding cannot be resolved to a usable resource class."""


def _walk(err: Optional[BaseException]):
    seen = set()
    while err is not None and id(err) not in seen:
        seen.add(id(err))
        yield err
        err = err.__cause__


def is_not_found(err: Optional[BaseException]) -> bool:
    """Check whether an error, or anything it wraps, is a NotFoundError."""
    return any(isinstance(e, NotFoundError) for e in _walk(err))


def is_already_exists(err: Optional[BaseException]) -> bool:
    """
    Check whether an error signals an "already exists" race.

    Both the store's AlreadyExistsError and a provisioner's
    ResourceExistsError count, including when wrapped.
    """
    return any(
        isinstance(e, (AlreadyExistsError, ResourceExistsError)) for e in _walk(err)
    )
