"""
Record types for bucket claims and the artifacts derived from them.

Claims and credentials/connection-info records are namespaced; resource
classes and bindings are cluster scoped and live in the empty namespace.
Every record carries an ObjectMeta and serialises to plain dicts so the
store can persist it as JSON.
"""

import hashlib
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, ClassVar, Dict, List, Optional, Type

FINALIZER = "bucketclaim.io/finalizer"

# Resource class parameter naming a pre-existing bucket (static provisioning)
CLASS_BUCKET_PARAMETER = "bucketName"

BINDING_NAME_FORMAT = "binding-{namespace}.{name}"

MAX_NAME_LENGTH = 63
NAME_SUFFIX_LENGTH = 8

# Credentials keys
ACCESS_KEY_ID = "AWS_ACCESS_KEY_ID"
SECRET_ACCESS_KEY = "AWS_SECRET_ACCESS_KEY"

# Connection-info keys
BUCKET_HOST = "BUCKET_HOST"
BUCKET_PORT = "BUCKET_PORT"
BUCKET_NAME = "BUCKET_NAME"
BUCKET_REGION = "BUCKET_REGION"
BUCKET_SUBREGION = "BUCKET_SUBREGION"


class RecordKind(Enum):
    """Kinds of records held by the resource store."""

    CLAIM = "claim"
    RESOURCE_CLASS = "resourceclass"
    BINDING = "binding"
    CREDENTIALS = "credentials"
    CONNECTION_INFO = "connectioninfo"


class ClaimPhase(Enum):
    """Lifecycle phase of a claim."""

    PENDING = "Pending"
    BOUND = "Bound"
    RELEASED = "Released"
    FAILED = "Failed"


class ReclaimPolicy(Enum):
    """What happens to a bucket once its claim is released."""

    DELETE = "Delete"
    RETAIN = "Retain"


@dataclass(frozen=True)
class ObjectKey:
    """Namespace + name identity of a record."""

    namespace: str
    name: str

    def __str__(self) -> str:
        if not self.namespace:
            return self.name
        return f"{self.namespace}/{self.name}"

    @classmethod
    def parse(cls, value: str) -> "ObjectKey":
        """Parse ``namespace/name`` (or a bare cluster-scoped ``name``)."""
        if "/" in value:
            namespace, name = value.split("/", 1)
            return cls(namespace=namespace, name=name)
        return cls(namespace="", name=value)


@dataclass
class ObjectMeta:
    """Store-level metadata shared by every record."""

    name: str
    namespace: str = ""
    uid: str = ""
    resource_version: int = 0
    finalizers: List[str] = field(default_factory=list)
    deletion_requested: bool = False
    labels: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return ObjectKey(namespace=self.namespace, name=self.name)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "name": self.name,
            "namespace": self.namespace,
            "uid": self.uid,
            "resource_version": self.resource_version,
            "finalizers": list(self.finalizers),
            "deletion_requested": self.deletion_requested,
            "labels": dict(self.labels),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ObjectMeta":
        return cls(
            name=data["name"],
            namespace=data.get("namespace", "") or "",
            uid=data.get("uid", "") or "",
            resource_version=int(data.get("resource_version", 0) or 0),
            finalizers=list(data.get("finalizers") or []),
            deletion_requested=bool(data.get("deletion_requested", False)),
            labels=dict(data.get("labels") or {}),
        )


@dataclass
class Claim:
    """A user's request for a bucket."""

    kind: ClassVar[RecordKind] = RecordKind.CLAIM

    meta: ObjectMeta
    resource_class_name: str = ""
    bucket_name: str = ""
    generate_bucket_name: str = ""
    binding_name: str = ""
    phase: ClaimPhase = ClaimPhase.PENDING
    skip_provisioning: bool = False

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "resource_class_name": self.resource_class_name,
            "bucket_name": self.bucket_name,
            "generate_bucket_name": self.generate_bucket_name,
            "binding_name": self.binding_name,
            "phase": self.phase.value,
            "skip_provisioning": self.skip_provisioning,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Claim":
        return cls(
            meta=ObjectMeta.from_dict(data["meta"]),
            resource_class_name=data.get("resource_class_name", ""),
            bucket_name=data.get("bucket_name", ""),
            generate_bucket_name=data.get("generate_bucket_name", ""),
            binding_name=data.get("binding_name", ""),
            phase=ClaimPhase(data.get("phase", ClaimPhase.PENDING.value)),
            skip_provisioning=bool(data.get("skip_provisioning", False)),
        )


@dataclass
class ResourceClass:
    """Policy naming the provisioner, parameters and reclaim policy of buckets."""

    kind: ClassVar[RecordKind] = RecordKind.RESOURCE_CLASS

    meta: ObjectMeta
    provisioner: str = ""
    parameters: Dict[str, str] = field(default_factory=dict)
    reclaim_policy: ReclaimPolicy = ReclaimPolicy.DELETE

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    @property
    def is_dynamic(self) -> bool:
        """A class without a bucket name provisions new buckets."""
        return not self.parameters.get(CLASS_BUCKET_PARAMETER)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "provisioner": self.provisioner,
            "parameters": dict(self.parameters),
            "reclaim_policy": self.reclaim_policy.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ResourceClass":
        return cls(
            meta=ObjectMeta.from_dict(data["meta"]),
            provisioner=data.get("provisioner", ""),
            parameters=dict(data.get("parameters") or {}),
            reclaim_policy=ReclaimPolicy(
                data.get("reclaim_policy", ReclaimPolicy.DELETE.value)
            ),
        )


@dataclass
class Endpoint:
    """Where a provisioned bucket can be reached."""

    bucket_host: str = ""
    bucket_port: int = 0
    bucket_name: str = ""
    region: str = ""
    sub_region: str = ""
    additional_config: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bucket_host": self.bucket_host,
            "bucket_port": self.bucket_port,
            "bucket_name": self.bucket_name,
            "region": self.region,
            "sub_region": self.sub_region,
            "additional_config": dict(self.additional_config),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Endpoint":
        return cls(
            bucket_host=data.get("bucket_host", ""),
            bucket_port=int(data.get("bucket_port", 0) or 0),
            bucket_name=data.get("bucket_name", ""),
            region=data.get("region", ""),
            sub_region=data.get("sub_region", ""),
            additional_config=dict(data.get("additional_config") or {}),
        )


@dataclass
class Authentication:
    """How a workload authenticates against a provisioned bucket."""

    access_key_id: str = ""
    secret_access_key: str = field(default="", repr=False)
    additional_secret_data: Dict[str, str] = field(default_factory=dict, repr=False)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "access_key_id": self.access_key_id,
            "secret_access_key": self.secret_access_key,
            "additional_secret_data": dict(self.additional_secret_data),
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Authentication":
        return cls(
            access_key_id=data.get("access_key_id", ""),
            secret_access_key=data.get("secret_access_key", ""),
            additional_secret_data=dict(data.get("additional_secret_data") or {}),
        )


@dataclass
class Binding:
    """
    Record linking a claim to its provisioned bucket.

    Provisioner plugins return a Binding carrying only the endpoint and
    authentication; the reconciler fills in the name, class, claim reference
    and finalizer before persisting it.
    """

    kind: ClassVar[RecordKind] = RecordKind.BINDING

    meta: ObjectMeta = field(default_factory=lambda: ObjectMeta(name=""))
    endpoint: Optional[Endpoint] = None
    authentication: Optional[Authentication] = None
    resource_class_name: str = ""
    claim_ref: Optional[ObjectKey] = None
    reclaim_policy: ReclaimPolicy = ReclaimPolicy.DELETE
    phase: ClaimPhase = ClaimPhase.BOUND

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    def is_valid(self) -> bool:
        """A provisioner result must at least say where the bucket is."""
        return (
            self.endpoint is not None
            and bool(self.endpoint.bucket_name)
            and bool(self.endpoint.bucket_host)
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "meta": self.meta.to_dict(),
            "endpoint": self.endpoint.to_dict() if self.endpoint else None,
            "authentication": (
                self.authentication.to_dict() if self.authentication else None
            ),
            "resource_class_name": self.resource_class_name,
            "claim_ref": (
                {"namespace": self.claim_ref.namespace, "name": self.claim_ref.name}
                if self.claim_ref
                else None
            ),
            "reclaim_policy": self.reclaim_policy.value,
            "phase": self.phase.value,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Binding":
        claim_ref = data.get("claim_ref")
        return cls(
            meta=ObjectMeta.from_dict(data["meta"]),
            endpoint=(
                Endpoint.from_dict(data["endpoint"]) if data.get("endpoint") else None
            ),
            authentication=(
                Authentication.from_dict(data["authentication"])
                if data.get("authentication")
                else None
            ),
            resource_class_name=data.get("resource_class_name", ""),
            claim_ref=ObjectKey(**claim_ref) if claim_ref else None,
            reclaim_policy=ReclaimPolicy(
                data.get("reclaim_policy", ReclaimPolicy.DELETE.value)
            ),
            phase=ClaimPhase(data.get("phase", ClaimPhase.BOUND.value)),
        )


@dataclass
class Credentials:
    """Secret material for a claim's workload, named after the claim."""

    kind: ClassVar[RecordKind] = RecordKind.CREDENTIALS

    meta: ObjectMeta
    data: Dict[str, str] = field(default_factory=dict, repr=False)

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    def to_dict(self) -> Dict[str, Any]:
        return {"meta": self.meta.to_dict(), "data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Credentials":
        return cls(
            meta=ObjectMeta.from_dict(data["meta"]),
            data=dict(data.get("data") or {}),
        )


@dataclass
class ConnectionInfo:
    """Endpoint details for a claim's workload, named after the claim."""

    kind: ClassVar[RecordKind] = RecordKind.CONNECTION_INFO

    meta: ObjectMeta
    data: Dict[str, str] = field(default_factory=dict)

    @property
    def key(self) -> ObjectKey:
        return self.meta.key

    def to_dict(self) -> Dict[str, Any]:
        return {"meta": self.meta.to_dict(), "data": dict(self.data)}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "ConnectionInfo":
        return cls(
            meta=ObjectMeta.from_dict(data["meta"]),
            data=dict(data.get("data") or {}),
        )


RECORD_TYPES: Dict[RecordKind, Type] = {
    RecordKind.CLAIM: Claim,
    RecordKind.RESOURCE_CLASS: ResourceClass,
    RecordKind.BINDING: Binding,
    RecordKind.CREDENTIALS: Credentials,
    RecordKind.CONNECTION_INFO: ConnectionInfo,
}


def record_from_dict(kind: RecordKind, data: Dict[str, Any]) -> Any:
    """Build the record type registered for ``kind`` from its dict form."""
    return RECORD_TYPES[kind].from_dict(data)


# ==================== Naming ====================


def binding_name_for(key: ObjectKey) -> str:
    """Deterministic binding name for a claim identity."""
    return BINDING_NAME_FORMAT.format(namespace=key.namespace, name=key.name)


def binding_key_for(key: ObjectKey) -> ObjectKey:
    """Store key of the binding belonging to a claim identity."""
    return ObjectKey(namespace="", name=binding_name_for(key))


def compose_bucket_name(claim: Claim) -> str:
    """
    Resolve the bucket name for a dynamically provisioned claim.

    An explicit bucket name wins. Otherwise the generate-name prefix (or the
    claim name) gets a suffix derived from the claim's identity and uid, so
    repeated passes over the same claim agree on the name while a recreated
    claim with the same name gets a fresh bucket.
    """
    if claim.bucket_name:
        return claim.bucket_name

    prefix = claim.generate_bucket_name or claim.meta.name
    if not prefix:
        return ""

    max_prefix = MAX_NAME_LENGTH - NAME_SUFFIX_LENGTH - 1
    prefix = prefix[:max_prefix].rstrip("-")

    seed = f"{claim.meta.namespace}/{claim.meta.name}/{claim.meta.uid}"
    suffix = hashlib.sha256(seed.encode()).hexdigest()[:NAME_SUFFIX_LENGTH]
    return f"{prefix}-{suffix}"


def should_provision(claim: Claim) -> bool:
    """Check whether a claim still needs a bucket."""
    if claim.skip_provisioning:
        return False
    if claim.binding_name:
        return False
    return claim.phase not in (ClaimPhase.BOUND, ClaimPhase.RELEASED)


def new_credentials(claim: Claim, auth: Optional[Authentication]) -> Credentials:
    """Build the credentials record for a claim from binding authentication."""
    data: Dict[str, str] = {}
    if auth is not None:
        data[ACCESS_KEY_ID] = auth.access_key_id
        data[SECRET_ACCESS_KEY] = auth.secret_access_key
        data.update(auth.additional_secret_data)
    return Credentials(
        meta=ObjectMeta(
            name=claim.meta.name,
            namespace=claim.meta.namespace,
            labels={"bucketclaim.io/claim": claim.meta.name},
        ),
        data=data,
    )


def new_connection_info(claim: Claim, endpoint: Optional[Endpoint]) -> ConnectionInfo:
    """Build the connection-info record for a claim from a binding endpoint."""
    data: Dict[str, str] = {}
    if endpoint is not None:
        data[BUCKET_HOST] = endpoint.bucket_host
        data[BUCKET_PORT] = str(endpoint.bucket_port)
        data[BUCKET_NAME] = endpoint.bucket_name
        data[BUCKET_REGION] = endpoint.region
        data[BUCKET_SUBREGION] = endpoint.sub_region
        data.update(endpoint.additional_config)
    return ConnectionInfo(
        meta=ObjectMeta(
            name=claim.meta.name,
            namespace=claim.meta.namespace,
            labels={"bucketclaim.io/claim": claim.meta.name},
        ),
        data=data,
    )
