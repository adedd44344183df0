"""
Resource Store - persistence for claims, classes, bindings and their artifacts.

Defines the abstract store contract used by the reconciler and a PostgreSQL
implementation. Records are keyed by kind + namespace + name, versioned for
optimistic concurrency, and held back from physical deletion while they carry
finalizers.
"""

import json
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, List, Optional

import asyncpg

from errors import AlreadyExistsError, ConflictError, NotFoundError, StoreError
from migrate import run_migrations
from models import ObjectKey, RecordKind, record_from_dict

logger = logging.getLogger(__name__)


class ResourceStore(ABC):
    """
    Abstract record store.

    Implementations must raise NotFoundError, AlreadyExistsError and
    ConflictError for the corresponding outcomes and StoreError for anything
    else, and must honour finalizers on delete.
    """

    @abstractmethod
    async def get(self, kind: RecordKind, key: ObjectKey) -> Any:
        """
        Fetch a record.

        Raises:
            NotFoundError: If no record exists under the key.
        """
        pass

    @abstractmethod
    async def create(self, record: Any) -> Any:
        """
        Persist a new record and return the stored copy.

        Raises:
            AlreadyExistsError: If a record exists under the same key.
        """
        pass

    @abstractmethod
    async def update(self, record: Any) -> Any:
        """
        Replace an existing record and return the stored copy.

        If the record was marked for deletion and the update leaves it without
        finalizers, the record is removed.

        Raises:
            NotFoundError: If the record does not exist.
            ConflictError: If ``record.meta.resource_version`` is stale.
        """
        pass

    @abstractmethod
    async def delete(self, kind: RecordKind, key: ObjectKey) -> None:
        """
        Delete a record, or mark it for deletion while finalizers remain.

        Raises:
            NotFoundError: If the record does not exist.
        """
        pass

    @abstractmethod
    async def list(
        self, kind: RecordKind, namespace: Optional[str] = None
    ) -> List[Any]:
        """List records of a kind, optionally restricted to a namespace."""
        pass


class PostgresStore(ResourceStore):
    """ResourceStore backed by a single PostgreSQL ``records`` table."""

    def __init__(
        self,
        host: str,
        port: int,
        database: str,
        user: str,
        password: str,
        min_pool_size: int = 5,
        max_pool_size: int = 20,
    ):
        self.host = host
        self.port = port
        self.database = database
        self.user = user
        self.password = password
        self.min_pool_size = min_pool_size
        self.max_pool_size = max_pool_size
        self.pool: Optional[asyncpg.Pool] = None

    async def connect(self):
        """Establish connection pool to PostgreSQL."""
        self.pool = await asyncpg.create_pool(
            host=self.host,
            port=self.port,
            database=self.database,
            user=self.user,
            password=self.password,
            min_size=self.min_pool_size,
            max_size=self.max_pool_size,
            command_timeout=60,  # Query timeout
        )
        logger.info(
            f"Connected to PostgreSQL (pool: {self.min_pool_size}-{self.max_pool_size})"
        )

    async def close(self):
        """Close the connection pool."""
        if self.pool:
            await self.pool.close()
            logger.info("Closed PostgreSQL connection")

    def _ensure_connected(self) -> None:
        """Ensure the database connection pool is established."""
        if self.pool is None:
            raise RuntimeError(
                "Database not connected. Call connect() before performing operations."
            )

    async def initialize_schema(self) -> None:
        """Apply database migrations to bring schema up to date."""
        self._ensure_connected()
        await run_migrations(self.pool)
        logger.info("Database schema initialized")

    @asynccontextmanager
    async def _connection(self, action: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection, translating driver errors into StoreError."""
        self._ensure_connected()
        try:
            async with self.pool.acquire() as conn:
                yield conn
        except asyncpg.UniqueViolationError as e:
            raise AlreadyExistsError(f"{action}: {e}") from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError, OSError) as e:
            raise StoreError(f"{action}: {e}") from e

    # ==================== Record Methods ====================

    async def get(self, kind: RecordKind, key: ObjectKey) -> Any:
        """Fetch a record by kind and key."""
        async with self._connection(f"error getting {kind.value} {key}") as conn:
            row = await conn.fetchrow(
                """
                SELECT * FROM records
                WHERE kind = $1 AND namespace = $2 AND name = $3
                """,
                kind.value,
                key.namespace,
                key.name,
            )
        if not row:
            raise NotFoundError(f"{kind.value} {key} not found")
        return self._parse_record_row(kind, row)

    async def create(self, record: Any) -> Any:
        """Insert a new record."""
        kind = record.kind
        meta = record.meta
        if not meta.uid:
            meta.uid = str(uuid.uuid4())

        async with self._connection(f"error creating {kind.value} {meta.key}") as conn:
            row = await conn.fetchrow(
                """
                INSERT INTO records (
                    kind, namespace, name, uid, data, finalizers, resource_version
                )
                VALUES ($1, $2, $3, $4, $5, $6, 1)
                RETURNING *
                """,
                kind.value,
                meta.namespace,
                meta.name,
                meta.uid,
                json.dumps(record.to_dict()),
                json.dumps(meta.finalizers),
            )

        logger.debug(f"Created {kind.value} {meta.key}")
        return self._parse_record_row(kind, row)

    async def update(self, record: Any) -> Any:
        """Update a record, enforcing its resource version."""
        kind = record.kind
        meta = record.meta

        async with self._connection(f"error updating {kind.value} {meta.key}") as conn:
            async with conn.transaction():
                current = await conn.fetchrow(
                    """
                    SELECT resource_version, deletion_requested_at FROM records
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    FOR UPDATE
                    """,
                    kind.value,
                    meta.namespace,
                    meta.name,
                )
                if not current:
                    raise NotFoundError(f"{kind.value} {meta.key} not found")
                if current["resource_version"] != meta.resource_version:
                    raise ConflictError(
                        f"{kind.value} {meta.key} was modified "
                        f"(have version {meta.resource_version}, "
                        f"store has {current['resource_version']})"
                    )

                if current["deletion_requested_at"] is not None and not meta.finalizers:
                    await conn.execute(
                        """
                        DELETE FROM records
                        WHERE kind = $1 AND namespace = $2 AND name = $3
                        """,
                        kind.value,
                        meta.namespace,
                        meta.name,
                    )
                    logger.info(f"Finalizers cleared, removed {kind.value} {meta.key}")
                    meta.deletion_requested = True
                    return record

                row = await conn.fetchrow(
                    """
                    UPDATE records
                    SET data = $4,
                        finalizers = $5,
                        resource_version = resource_version + 1,
                        updated_at = NOW()
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    RETURNING *
                    """,
                    kind.value,
                    meta.namespace,
                    meta.name,
                    json.dumps(record.to_dict()),
                    json.dumps(meta.finalizers),
                )

        return self._parse_record_row(kind, row)

    async def delete(self, kind: RecordKind, key: ObjectKey) -> None:
        """Delete a record, or mark it for deletion if it has finalizers."""
        async with self._connection(f"error deleting {kind.value} {key}") as conn:
            async with conn.transaction():
                finalizers = await conn.fetchval(
                    """
                    SELECT finalizers FROM records
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    FOR UPDATE
                    """,
                    kind.value,
                    key.namespace,
                    key.name,
                )
                if finalizers is None:
                    raise NotFoundError(f"{kind.value} {key} not found")
                if isinstance(finalizers, str):
                    finalizers = json.loads(finalizers)

                if finalizers:
                    await conn.execute(
                        """
                        UPDATE records
                        SET deletion_requested_at = COALESCE(deletion_requested_at, NOW()),
                            updated_at = NOW()
                        WHERE kind = $1 AND namespace = $2 AND name = $3
                        """,
                        kind.value,
                        key.namespace,
                        key.name,
                    )
                    logger.info(
                        f"Marked {kind.value} {key} for deletion, "
                        f"waiting on finalizers: {finalizers}"
                    )
                    return

                await conn.execute(
                    """
                    DELETE FROM records
                    WHERE kind = $1 AND namespace = $2 AND name = $3
                    """,
                    kind.value,
                    key.namespace,
                    key.name,
                )
        logger.debug(f"Deleted {kind.value} {key}")

    async def list(
        self, kind: RecordKind, namespace: Optional[str] = None
    ) -> List[Any]:
        """List records of a kind with an optional namespace filter."""
        async with self._connection(f"error listing {kind.value}") as conn:
            query = "SELECT * FROM records WHERE kind = $1"
            params: List[Any] = [kind.value]

            if namespace is not None:
                query += " AND namespace = $2"
                params.append(namespace)

            query += " ORDER BY namespace, name"
            rows = await conn.fetch(query, *params)

        return [self._parse_record_row(kind, row) for row in rows]

    def _parse_record_row(self, kind: RecordKind, row: asyncpg.Record) -> Any:
        """
        Parse a record row into its dataclass.

        The JSON payload carries the record body; store-managed metadata
        (uid, version, finalizers, deletion mark) comes from the columns.
        """
        result: Dict[str, Any] = dict(row)
        data = result.get("data") or {}
        if isinstance(data, str):
            data = json.loads(data)
        finalizers = result.get("finalizers") or []
        if isinstance(finalizers, str):
            finalizers = json.loads(finalizers)

        meta = dict(data.get("meta") or {})
        meta.update(
            {
                "name": result["name"],
                "namespace": result["namespace"],
                "uid": result.get("uid") or meta.get("uid", ""),
                "resource_version": result.get("resource_version", 0),
                "finalizers": finalizers,
                "deletion_requested": result.get("deletion_requested_at") is not None,
            }
        )
        data["meta"] = meta
        return record_from_dict(kind, data)
