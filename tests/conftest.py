"""Pytest configuration and fixtures."""

import copy
import uuid
from typing import Any, Dict, List, Optional, Tuple

import pytest

from errors import AlreadyExistsError, ConflictError, NotFoundError
from models import (
    Authentication,
    Binding,
    Claim,
    Endpoint,
    ObjectKey,
    ObjectMeta,
    RecordKind,
    ResourceClass,
    record_from_dict,
)
from plugins.base import BucketOptions
from plugins.provisioners.base import Provisioner
from reconciler import ClaimReconciler
from store import ResourceStore

PROVISIONER_NAME = "bucket.example.com/provisioner"


class InMemoryStore(ResourceStore):
    """
    Store double with the same semantics as PostgresStore.

    Records are copied in and out, versions are checked on update and
    finalizers hold back deletion. Errors can be queued per operation and
    kind with fail(); every call is recorded in ``calls``.
    """

    def __init__(self):
        self._records: Dict[Tuple[RecordKind, str, str], Dict[str, Any]] = {}
        self._errors: Dict[Tuple[str, RecordKind], List[Exception]] = {}
        self.calls: List[Tuple[str, RecordKind, ObjectKey]] = []

    # Test helpers

    def fail(self, op: str, kind: RecordKind, *errors: Exception) -> None:
        """Make the next len(errors) ``op`` calls for ``kind`` raise."""
        self._errors.setdefault((op, kind), []).extend(errors)

    def put(self, record: Any) -> Any:
        """Seed a record directly, bypassing create semantics."""
        if not record.meta.uid:
            record.meta.uid = str(uuid.uuid4())
        if not record.meta.resource_version:
            record.meta.resource_version = 1
        self._records[self._id(record.kind, record.key)] = record.to_dict()
        return self.peek(record.kind, record.key)

    def peek(self, kind: RecordKind, key: ObjectKey) -> Optional[Any]:
        data = self._records.get(self._id(kind, key))
        return record_from_dict(kind, copy.deepcopy(data)) if data else None

    def has(self, kind: RecordKind, key: ObjectKey) -> bool:
        return self._id(kind, key) in self._records

    def count(self, kind: RecordKind) -> int:
        return sum(1 for k in self._records if k[0] == kind)

    def ops(self, op: str) -> List[Tuple[RecordKind, ObjectKey]]:
        return [(kind, key) for name, kind, key in self.calls if name == op]

    @staticmethod
    def _id(kind: RecordKind, key: ObjectKey) -> Tuple[RecordKind, str, str]:
        return (kind, key.namespace, key.name)

    def _maybe_fail(self, op: str, kind: RecordKind) -> None:
        queued = self._errors.get((op, kind))
        if queued:
            raise queued.pop(0)

    # ResourceStore

    async def get(self, kind: RecordKind, key: ObjectKey) -> Any:
        self.calls.append(("get", kind, key))
        self._maybe_fail("get", kind)
        record = self.peek(kind, key)
        if record is None:
            raise NotFoundError(f"{kind.value} {key} not found")
        return record

    async def create(self, record: Any) -> Any:
        self.calls.append(("create", record.kind, record.key))
        self._maybe_fail("create", record.kind)
        if self.has(record.kind, record.key):
            raise AlreadyExistsError(f"{record.kind.value} {record.key} already exists")
        stored = copy.deepcopy(record)
        stored.meta.uid = stored.meta.uid or str(uuid.uuid4())
        stored.meta.resource_version = 1
        stored.meta.deletion_requested = False
        self._records[self._id(stored.kind, stored.key)] = stored.to_dict()
        return self.peek(stored.kind, stored.key)

    async def update(self, record: Any) -> Any:
        self.calls.append(("update", record.kind, record.key))
        self._maybe_fail("update", record.kind)
        current = self.peek(record.kind, record.key)
        if current is None:
            raise NotFoundError(f"{record.kind.value} {record.key} not found")
        if current.meta.resource_version != record.meta.resource_version:
            raise ConflictError(f"{record.kind.value} {record.key} was modified")

        stored = copy.deepcopy(record)
        stored.meta.uid = current.meta.uid
        stored.meta.deletion_requested = current.meta.deletion_requested
        if stored.meta.deletion_requested and not stored.meta.finalizers:
            del self._records[self._id(stored.kind, stored.key)]
            return stored

        stored.meta.resource_version = current.meta.resource_version + 1
        self._records[self._id(stored.kind, stored.key)] = stored.to_dict()
        return self.peek(stored.kind, stored.key)

    async def delete(self, kind: RecordKind, key: ObjectKey) -> None:
        self.calls.append(("delete", kind, key))
        self._maybe_fail("delete", kind)
        data = self._records.get(self._id(kind, key))
        if data is None:
            raise NotFoundError(f"{kind.value} {key} not found")
        if data["meta"]["finalizers"]:
            data["meta"]["deletion_requested"] = True
            return
        del self._records[self._id(kind, key)]

    async def list(self, kind: RecordKind, namespace: Optional[str] = None) -> list:
        self.calls.append(("list", kind, ObjectKey(namespace or "", "")))
        self._maybe_fail("list", kind)
        records = []
        for (k, ns, name), data in sorted(self._records.items(), key=lambda i: i[0][1:]):
            if k != kind or (namespace is not None and ns != namespace):
                continue
            records.append(record_from_dict(kind, copy.deepcopy(data)))
        return records


_DEFAULT = object()


def _bucket(binding: Binding) -> str:
    return binding.endpoint.bucket_name if binding.endpoint else ""


class RecordingProvisioner(Provisioner):
    """Provisioner double recording every call it receives."""

    def __init__(self):
        self.calls: List[Tuple[str, str]] = []
        self.options: List[BucketOptions] = []
        self.provision_error: Optional[Exception] = None
        self.grant_error: Optional[Exception] = None
        self.delete_error: Optional[Exception] = None
        self.revoke_error: Optional[Exception] = None
        self.result: Any = _DEFAULT

    @property
    def name(self) -> str:
        return "recording"

    @property
    def version(self) -> str:
        return "0.0.1"

    async def initialize(self, config: Dict[str, Any]) -> None:
        pass

    def _binding(self, options: BucketOptions) -> Binding:
        if self.result is not _DEFAULT:
            return self.result
        return Binding(
            endpoint=Endpoint(
                bucket_host="s3.example.com",
                bucket_port=443,
                bucket_name=options.bucket_name,
                region="us-east-1",
            ),
            authentication=Authentication(
                access_key_id="AKIDEXAMPLE", secret_access_key="secret"
            ),
        )

    async def provision(self, options: BucketOptions) -> Binding:
        self.calls.append(("provision", options.bucket_name))
        self.options.append(options)
        if self.provision_error:
            raise self.provision_error
        return self._binding(options)

    async def grant(self, options: BucketOptions) -> Binding:
        self.calls.append(("grant", options.bucket_name))
        self.options.append(options)
        if self.grant_error:
            raise self.grant_error
        return self._binding(options)

    async def delete(self, binding: Binding) -> None:
        self.calls.append(("delete", _bucket(binding)))
        if self.delete_error:
            raise self.delete_error

    async def revoke(self, binding: Binding) -> None:
        self.calls.append(("revoke", _bucket(binding)))
        if self.revoke_error:
            raise self.revoke_error

    def ops(self) -> List[str]:
        return [op for op, _ in self.calls]


@pytest.fixture
def store():
    """In-memory record store."""
    return InMemoryStore()


@pytest.fixture
def provisioner():
    """Recording provisioner plugin."""
    return RecordingProvisioner()


@pytest.fixture
def reconciler(store, provisioner):
    """Claim reconciler with retry loops shortened for tests."""
    rec = ClaimReconciler(
        store=store,
        provisioner_name="Bucket.Example.com/Provisioner",
        provisioner=provisioner,
    )
    rec.retry_interval = 0.01
    rec.retry_timeout = 0.05
    return rec


@pytest.fixture
def dynamic_class(store):
    """Resource class provisioning new buckets."""
    return store.put(
        ResourceClass(
            meta=ObjectMeta(name="standard"),
            provisioner=PROVISIONER_NAME,
            parameters={"region": "us-east-1"},
        )
    )


@pytest.fixture
def static_class(store):
    """Resource class granting access to a pre-existing bucket."""
    return store.put(
        ResourceClass(
            meta=ObjectMeta(name="shared"),
            provisioner=PROVISIONER_NAME,
            parameters={"bucketName": "existing-bucket"},
        )
    )


@pytest.fixture
def make_claim(store):
    """Factory seeding a pending claim."""

    def _make(
        name: str = "photos",
        namespace: str = "team-a",
        resource_class_name: str = "standard",
        **kwargs,
    ) -> Claim:
        return store.put(
            Claim(
                meta=ObjectMeta(
                    name=name,
                    namespace=namespace,
                    uid=kwargs.pop("uid", "0b6c1f1e-3c36-4c4e-9a0b-5f5d2b1f3c11"),
                ),
                resource_class_name=resource_class_name,
                **kwargs,
            )
        )

    return _make
