"""
Neo4j boundary adapter for the ingestion pipeline.

``GraphStore`` is the only place that talks to the driver. Batch writes run
in an explicit transaction (begin, run, commit; rolled back on any failure)
and surface failures as ``StoreWriteError`` tagged with a ``StoreErrorKind``.
"""

import asyncio
from typing import Any, Dict, List, Optional, Protocol

from neo4j import AsyncDriver, AsyncGraphDatabase
from neo4j.exceptions import DriverError, Neo4jError

from src.ingestion.errors import StoreUnavailableError
from src.neo.errors import StoreWriteError, classify_store_error
from src.neo.schema import (
    CONSTRAINT_STATEMENTS,
    LINK_MENTIONS,
    LINK_REPLIES,
    UPSERT_POSTS,
)
from src.shared.config import Credentials, Neo4jConfig
from src.shared.observability import get_logger

logger = get_logger(__name__)

STORE_EXCEPTIONS = (Neo4jError, DriverError, OSError)


class BatchStore(Protocol):
    """What the pipeline needs from a graph store."""

    async def verify_connectivity(self) -> None: ...

    async def ensure_constraints(self) -> None: ...

    async def write_batch(self, rows: List[Dict[str, Any]]) -> None: ...

    async def link_replies(self) -> Dict[str, Any]: ...

    async def link_mentions(self) -> Dict[str, Any]: ...

    async def close(self) -> None: ...


class GraphStore:
    """Async Neo4j implementation of BatchStore."""

    def __init__(
        self,
        driver: AsyncDriver,
        *,
        database: Optional[str] = None,
        relationship_batch_size: int = 10000,
        constraint_settle_seconds: float = 0.5,
    ):
        self._driver = driver
        self._database = database
        self._relationship_batch_size = relationship_batch_size
        self._constraint_settle_seconds = constraint_settle_seconds

    @classmethod
    def from_credentials(
        cls,
        credentials: Credentials,
        config: Optional[Neo4jConfig] = None,
        *,
        constraint_settle_seconds: float = 0.5,
    ) -> "GraphStore":
        config = config or Neo4jConfig()
        logger.info(
            "Initializing Neo4j driver", uri=credentials.uri, user=credentials.user
        )
        try:
            driver = AsyncGraphDatabase.driver(
                credentials.uri,
                auth=(credentials.user, credentials.password),
                max_connection_lifetime=3600,
                max_connection_pool_size=config.max_connection_pool_size,
                connection_timeout=config.connection_timeout_seconds,
            )
        except (ValueError, DriverError) as e:
            # Malformed URI or unsupported scheme
            raise StoreUnavailableError(f"Invalid Neo4j URI {credentials.uri}: {e}") from e
        return cls(
            driver,
            database=config.database,
            relationship_batch_size=config.relationship_batch_size,
            constraint_settle_seconds=constraint_settle_seconds,
        )

    async def verify_connectivity(self) -> None:
        try:
            await self._driver.verify_connectivity()
        except STORE_EXCEPTIONS as e:
            raise StoreUnavailableError(f"Neo4j is not reachable: {e}") from e
        logger.info("Neo4j driver initialized successfully")

    async def ensure_constraints(self) -> None:
        """Create uniqueness constraints; safe to run on every start."""
        try:
            async with self._driver.session(database=self._database) as session:
                for statement in CONSTRAINT_STATEMENTS:
                    result = await session.run(statement)
                    await result.consume()
        except STORE_EXCEPTIONS as e:
            raise StoreUnavailableError(f"Could not create constraints: {e}") from e

        # Constraint creation is asynchronous on the server side
        logger.info(
            "constraints_ensured", settle_seconds=self._constraint_settle_seconds
        )
        if self._constraint_settle_seconds:
            await asyncio.sleep(self._constraint_settle_seconds)

    async def write_batch(self, rows: List[Dict[str, Any]]) -> None:
        """
        Upsert one batch of serialized posts in a single transaction.

        Raises:
            StoreWriteError: On any store failure; nothing from the batch is kept
        """
        try:
            async with self._driver.session(database=self._database) as session:
                tx = await session.begin_transaction()
                try:
                    result = await tx.run(UPSERT_POSTS, batch=rows)
                    await result.consume()
                    await tx.commit()
                finally:
                    if not tx.closed():
                        await tx.close()
        except STORE_EXCEPTIONS as e:
            raise StoreWriteError(classify_store_error(e), e) from e

    async def _run_bulk(self, name: str, statement: str) -> Dict[str, Any]:
        logger.info("relationship_derivation_started", relationship=name)
        try:
            async with self._driver.session(database=self._database) as session:
                result = await session.run(
                    statement, batch_size=self._relationship_batch_size
                )
                record = await result.single()
        except STORE_EXCEPTIONS as e:
            raise StoreWriteError(classify_store_error(e), e) from e
        summary = dict(record) if record else {}
        if summary.get("errorMessages"):
            logger.warning(
                "relationship_derivation_errors",
                relationship=name,
                errors=summary["errorMessages"],
            )
        logger.info(
            "relationship_derivation_finished",
            relationship=name,
            batches=summary.get("batches"),
            total=summary.get("total"),
        )
        return summary

    async def link_replies(self) -> Dict[str, Any]:
        return await self._run_bulk("REPLIES_TO", LINK_REPLIES)

    async def link_mentions(self) -> Dict[str, Any]:
        return await self._run_bulk("MENTIONS", LINK_MENTIONS)

    async def close(self) -> None:
        logger.info("Closing Neo4j driver")
        await self._driver.close()
