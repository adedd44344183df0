"""
HTTP Input Plugin - REST API for claims and resource classes.

This plugin provides a FastAPI-based REST API for submitting and deleting
bucket claims and resource classes, and for reading back the bindings and
connection-info the reconciler produces.
"""

import logging
import os
import re
from typing import Any, Dict, List, Optional

import uvicorn
from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field, field_validator

from errors import AlreadyExistsError, NotFoundError, StoreError
from models import (
    Binding,
    Claim,
    ObjectKey,
    ObjectMeta,
    ReclaimPolicy,
    RecordKind,
    ResourceClass,
)
from plugins.inputs.base import ClaimCallback, InputPlugin

logger = logging.getLogger(__name__)

# Kubernetes-style name pattern: lowercase alphanumeric, hyphens, max 63 chars
NAME_PATTERN = re.compile(r"^[a-z0-9]([a-z0-9-]{0,61}[a-z0-9])?$")
MAX_NAME_LENGTH = 63


def validate_name_format(value: str, field_name: str) -> str:
    """Validate that a name follows Kubernetes naming conventions."""
    if not value:
        raise ValueError(f"{field_name} cannot be empty")
    if len(value) > MAX_NAME_LENGTH:
        raise ValueError(f"{field_name} cannot exceed {MAX_NAME_LENGTH} characters")
    if not NAME_PATTERN.match(value):
        raise ValueError(
            f"{field_name} must consist of lowercase alphanumeric characters or '-', "
            f"must start and end with an alphanumeric character"
        )
    return value


# Resource Class models


class ResourceClassCreate(BaseModel):
    """Request model for creating a resource class."""

    name: str = Field(..., description="Resource class name", examples=["standard"])
    provisioner: str = Field(
        ..., description="Provisioner that serves this class", examples=["webhook"]
    )
    parameters: Dict[str, str] = Field(
        default_factory=dict,
        description="Provisioner parameters; 'bucketName' selects an existing bucket",
    )
    reclaim_policy: str = Field(default=ReclaimPolicy.DELETE.value)

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "name")

    @field_validator("provisioner")
    @classmethod
    def validate_provisioner(cls, v: str) -> str:
        if not v:
            raise ValueError("provisioner cannot be empty")
        return v

    @field_validator("reclaim_policy")
    @classmethod
    def validate_reclaim_policy(cls, v: str) -> str:
        valid = [p.value for p in ReclaimPolicy]
        if v not in valid:
            raise ValueError(f"reclaim_policy must be one of: {', '.join(valid)}")
        return v


class ResourceClassResponse(BaseModel):
    """Response model for a resource class."""

    name: str
    provisioner: str
    parameters: Dict[str, str] = {}
    reclaim_policy: str
    resource_version: int

    @classmethod
    def from_record(cls, rc: ResourceClass) -> "ResourceClassResponse":
        return cls(
            name=rc.meta.name,
            provisioner=rc.provisioner,
            parameters=rc.parameters,
            reclaim_policy=rc.reclaim_policy.value,
            resource_version=rc.meta.resource_version,
        )


# Claim models


class ClaimCreate(BaseModel):
    """Request model for creating a claim."""

    name: str = Field(..., description="Claim name", examples=["my-bucket-claim"])
    resource_class_name: str = Field(..., description="Resource class to claim from")
    bucket_name: Optional[str] = Field(
        default=None, description="Exact bucket name to provision"
    )
    generate_bucket_name: Optional[str] = Field(
        default=None, description="Prefix for a generated bucket name"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return validate_name_format(v, "name")

    @field_validator("resource_class_name")
    @classmethod
    def validate_resource_class_name(cls, v: str) -> str:
        return validate_name_format(v, "resource_class_name")


class ClaimResponse(BaseModel):
    """Response model for a claim."""

    namespace: str
    name: str
    uid: str
    resource_class_name: str
    bucket_name: str = ""
    generate_bucket_name: str = ""
    binding_name: str = ""
    phase: str
    resource_version: int

    @classmethod
    def from_record(cls, claim: Claim) -> "ClaimResponse":
        return cls(
            namespace=claim.meta.namespace,
            name=claim.meta.name,
            uid=claim.meta.uid,
            resource_class_name=claim.resource_class_name,
            bucket_name=claim.bucket_name,
            generate_bucket_name=claim.generate_bucket_name,
            binding_name=claim.binding_name,
            phase=claim.phase.value,
            resource_version=claim.meta.resource_version,
        )


# Binding models


class BindingResponse(BaseModel):
    """Response model for a binding. Authentication is never returned."""

    name: str
    resource_class_name: str
    claim_namespace: Optional[str] = None
    claim_name: Optional[str] = None
    bucket_name: str = ""
    bucket_host: str = ""
    bucket_port: int = 0
    region: str = ""
    reclaim_policy: str
    phase: str
    finalizers: List[str] = []
    deletion_requested: bool = False

    @classmethod
    def from_record(cls, binding: Binding) -> "BindingResponse":
        endpoint = binding.endpoint
        return cls(
            name=binding.meta.name,
            resource_class_name=binding.resource_class_name,
            claim_namespace=binding.claim_ref.namespace if binding.claim_ref else None,
            claim_name=binding.claim_ref.name if binding.claim_ref else None,
            bucket_name=endpoint.bucket_name if endpoint else "",
            bucket_host=endpoint.bucket_host if endpoint else "",
            bucket_port=endpoint.bucket_port if endpoint else 0,
            region=endpoint.region if endpoint else "",
            reclaim_policy=binding.reclaim_policy.value,
            phase=binding.phase.value,
            finalizers=binding.meta.finalizers,
            deletion_requested=binding.meta.deletion_requested,
        )


class PluginInfo(BaseModel):
    """Response model for plugin information."""

    name: str
    version: str


def _raise_for_store_error(e: StoreError, what: str) -> None:
    """Translate a store error into the matching HTTP error."""
    if isinstance(e, NotFoundError):
        raise HTTPException(status_code=404, detail=f"{what} not found")
    if isinstance(e, AlreadyExistsError):
        raise HTTPException(status_code=409, detail=f"{what} already exists")
    logger.error(f"Store error on {what}: {e}")
    raise HTTPException(status_code=500, detail=str(e))


def _check_path_name(value: str, field_name: str) -> None:
    try:
        validate_name_format(value, field_name)
    except ValueError as e:
        raise HTTPException(status_code=400, detail=str(e))


class HTTPInputPlugin(InputPlugin):
    """
    Input plugin that provides a REST API for claims and resource classes.

    Implements the standard InputPlugin interface using FastAPI.
    """

    def __init__(self):
        self.app: Optional[FastAPI] = None
        self.host: str = "0.0.0.0"
        self.port: int = 8000
        self.log_level: str = "info"
        self.server = None
        self._on_claim_event: Optional[ClaimCallback] = None
        self._store = None
        self._config: Dict[str, Any] = {}

    @property
    def name(self) -> str:
        return "http"

    @property
    def version(self) -> str:
        return "1.0.0"

    @classmethod
    def load_config_from_env(cls) -> Dict[str, Any]:
        """Load HTTP plugin configuration from environment variables."""
        return {
            "host": os.getenv("API_HOST", "0.0.0.0"),
            "port": int(os.getenv("API_PORT", "8000")),
            "log_level": os.getenv("LOG_LEVEL", "info").lower(),
        }

    async def initialize(self, config: Dict[str, Any]) -> None:
        """Initialize the HTTP API plugin."""
        self._config = config
        self.host = config.get("host", "0.0.0.0")
        self.port = config.get("port", 8000)
        self.log_level = config.get("log_level", "info")

        self.app = FastAPI(
            title="Claim Provisioner API",
            description="Bucket claims, resource classes and their bindings",
            version="1.0.0",
        )
        self._setup_routes()

        logger.info(f"HTTP input plugin initialized on {self.host}:{self.port}")

    def set_store(self, store) -> None:
        """Set the record store instance."""
        self._store = store

    def _require_store(self):
        if not self._store:
            raise HTTPException(status_code=503, detail="Store not available")
        return self._store

    async def _notify(self, event_type: str, key: ObjectKey) -> None:
        if self._on_claim_event:
            await self._on_claim_event(event_type, key)

    def _setup_routes(self) -> None:
        """
        Set up all FastAPI routes for the REST API.

        Configures the following endpoint groups:
        - Health check: GET /
        - Resource classes: /api/v1/resource-classes
        - Claims: /api/v1/namespaces/{namespace}/claims
        - Bindings (read-only): /api/v1/bindings
        - Plugin discovery: /api/v1/plugins/provisioners

        Raises:
            RuntimeError: If the FastAPI app has not been initialized
        """
        if not self.app:
            raise RuntimeError("App not initialized")

        @self.app.get("/")
        async def health_check():
            """Health check endpoint."""
            return {"status": "ok", "service": "claim-provisioner"}

        # ==================== Resource Class Endpoints ====================

        @self.app.post(
            "/api/v1/resource-classes",
            response_model=ResourceClassResponse,
            status_code=201,
        )
        async def create_resource_class(rc: ResourceClassCreate):
            """Create a new resource class."""
            store = self._require_store()
            record = ResourceClass(
                meta=ObjectMeta(name=rc.name),
                provisioner=rc.provisioner,
                parameters=rc.parameters,
                reclaim_policy=ReclaimPolicy(rc.reclaim_policy),
            )
            try:
                created = await store.create(record)
            except StoreError as e:
                _raise_for_store_error(e, f"Resource class {rc.name}")
            return ResourceClassResponse.from_record(created)

        @self.app.get(
            "/api/v1/resource-classes", response_model=List[ResourceClassResponse]
        )
        async def list_resource_classes():
            """List resource classes."""
            store = self._require_store()
            try:
                classes = await store.list(RecordKind.RESOURCE_CLASS)
            except StoreError as e:
                _raise_for_store_error(e, "Resource classes")
            return [ResourceClassResponse.from_record(rc) for rc in classes]

        @self.app.get(
            "/api/v1/resource-classes/{name}", response_model=ResourceClassResponse
        )
        async def get_resource_class(name: str):
            """Get a resource class by name."""
            store = self._require_store()
            try:
                rc = await store.get(RecordKind.RESOURCE_CLASS, ObjectKey("", name))
            except StoreError as e:
                _raise_for_store_error(e, f"Resource class {name}")
            return ResourceClassResponse.from_record(rc)

        @self.app.delete("/api/v1/resource-classes/{name}", status_code=204)
        async def delete_resource_class(name: str):
            """Delete a resource class (fails while claims still reference it)."""
            store = self._require_store()
            try:
                claims = await store.list(RecordKind.CLAIM)
                if any(c.resource_class_name == name for c in claims):
                    raise HTTPException(
                        status_code=409,
                        detail="Cannot delete: claims still reference this class",
                    )
                await store.delete(RecordKind.RESOURCE_CLASS, ObjectKey("", name))
            except StoreError as e:
                _raise_for_store_error(e, f"Resource class {name}")
            return None

        # ==================== Claim Endpoints ====================

        @self.app.post(
            "/api/v1/namespaces/{namespace}/claims",
            response_model=ClaimResponse,
            status_code=201,
        )
        async def create_claim(namespace: str, claim: ClaimCreate):
            """Create a claim and trigger its reconciliation."""
            _check_path_name(namespace, "namespace")
            store = self._require_store()
            record = Claim(
                meta=ObjectMeta(name=claim.name, namespace=namespace),
                resource_class_name=claim.resource_class_name,
                bucket_name=claim.bucket_name or "",
                generate_bucket_name=claim.generate_bucket_name or "",
            )
            try:
                created = await store.create(record)
            except StoreError as e:
                _raise_for_store_error(e, f"Claim {namespace}/{claim.name}")

            await self._notify("created", created.key)
            return ClaimResponse.from_record(created)

        @self.app.get(
            "/api/v1/namespaces/{namespace}/claims", response_model=List[ClaimResponse]
        )
        async def list_claims(namespace: str, phase: Optional[str] = None):
            """List claims in a namespace, optionally filtered by phase."""
            store = self._require_store()
            try:
                claims = await store.list(RecordKind.CLAIM, namespace=namespace)
            except StoreError as e:
                _raise_for_store_error(e, "Claims")
            if phase:
                claims = [c for c in claims if c.phase.value == phase]
            return [ClaimResponse.from_record(c) for c in claims]

        @self.app.get(
            "/api/v1/namespaces/{namespace}/claims/{name}",
            response_model=ClaimResponse,
        )
        async def get_claim(namespace: str, name: str):
            """Get a claim."""
            store = self._require_store()
            try:
                claim = await store.get(RecordKind.CLAIM, ObjectKey(namespace, name))
            except StoreError as e:
                _raise_for_store_error(e, f"Claim {namespace}/{name}")
            return ClaimResponse.from_record(claim)

        @self.app.delete(
            "/api/v1/namespaces/{namespace}/claims/{name}", status_code=202
        )
        async def delete_claim(namespace: str, name: str):
            """Delete a claim; its bucket is deprovisioned asynchronously."""
            store = self._require_store()
            key = ObjectKey(namespace, name)
            try:
                await store.delete(RecordKind.CLAIM, key)
            except StoreError as e:
                _raise_for_store_error(e, f"Claim {key}")

            await self._notify("deleted", key)
            return {"message": "Claim deleted, deprovisioning", "claim": str(key)}

        @self.app.get("/api/v1/namespaces/{namespace}/claims/{name}/connection-info")
        async def get_connection_info(namespace: str, name: str):
            """Get the connection-info published for a bound claim."""
            store = self._require_store()
            key = ObjectKey(namespace, name)
            try:
                info = await store.get(RecordKind.CONNECTION_INFO, key)
            except StoreError as e:
                _raise_for_store_error(e, f"Connection info for {key}")
            return {"claim": str(key), "data": info.data}

        # ==================== Binding Endpoints ====================

        @self.app.get("/api/v1/bindings", response_model=List[BindingResponse])
        async def list_bindings():
            """List bindings."""
            store = self._require_store()
            try:
                bindings = await store.list(RecordKind.BINDING)
            except StoreError as e:
                _raise_for_store_error(e, "Bindings")
            return [BindingResponse.from_record(b) for b in bindings]

        @self.app.get("/api/v1/bindings/{name}", response_model=BindingResponse)
        async def get_binding(name: str):
            """Get a binding by name."""
            store = self._require_store()
            try:
                binding = await store.get(RecordKind.BINDING, ObjectKey("", name))
            except StoreError as e:
                _raise_for_store_error(e, f"Binding {name}")
            return BindingResponse.from_record(binding)

        # Plugin discovery endpoints
        @self.app.get(
            "/api/v1/plugins/provisioners", response_model=List[PluginInfo]
        )
        async def list_provisioner_plugins():
            """List available provisioner plugins."""
            from plugins.registry import get_registry

            registry = get_registry()
            plugins = []
            for name in registry.list_provisioner_plugins():
                info = registry.get_provisioner_plugin_info(name)
                if info:
                    plugins.append(PluginInfo(**info))
            return plugins

    async def start(self, on_claim_event: ClaimCallback) -> None:
        """Start the HTTP server."""
        if not self.app:
            raise RuntimeError("App not initialized")
        self._on_claim_event = on_claim_event

        config = uvicorn.Config(
            self.app,
            host=self.host,
            port=self.port,
            log_level=self.log_level,
        )
        self.server = uvicorn.Server(config)

        logger.info(f"Starting HTTP input plugin on {self.host}:{self.port}")
        await self.server.serve()

    async def stop(self) -> None:
        """Stop the HTTP server gracefully."""
        logger.info("Stopping HTTP input plugin")
        if self.server:
            self.server.should_exit = True

    async def health_check(self) -> tuple[bool, str]:
        """Check if the HTTP API is healthy."""
        if self.server and self.server.started:
            return True, "HTTP API is running"
        return False, "HTTP API is not running"
