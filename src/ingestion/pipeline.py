"""
End-to-end ingestion run.

constraints -> parallel decode -> batch planning -> bounded writes
-> relationship derivation

Decode and write never overlap. Relationship derivation runs only after
every batch is terminal, because it matches against already-loaded posts
and authors.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

from src.ingestion.batching import plan_batches
from src.ingestion.dispatcher import dispatch
from src.ingestion.retry import RetryPolicy
from src.ingestion.run_stats import IngestStatistics
from src.ingestion.writer import BatchWriter, WriteReport
from src.neo.errors import StoreWriteError
from src.neo.store import BatchStore
from src.shared.config import Config
from src.shared.observability import get_logger, get_run_id, set_run_id

logger = get_logger(__name__)


@dataclass
class IngestionReport:
    statistics: IngestStatistics
    writes: WriteReport
    relationships: Dict[str, Any] = field(default_factory=dict)
    run_id: Optional[str] = None

    def summary_lines(self) -> List[str]:
        writes = self.writes.summary()
        return [
            *self.statistics.summary_lines(),
            (
                f"Batches committed: {writes['committed']}/{writes['batches']} "
                f"({writes['committed_after_retries']} after retries, "
                f"{writes['permanently_failed']} failed, "
                f"{writes['retries_exhausted']} exhausted retries)"
            ),
        ]


class IngestionPipeline:
    """Runs one ingestion over a set of input files against a BatchStore."""

    def __init__(
        self,
        config: Config,
        store: BatchStore,
        *,
        writer: Optional[BatchWriter] = None,
    ):
        self.config = config
        self.store = store
        self.writer = writer or BatchWriter(
            store,
            max_concurrent_batches=config.ingestion.max_concurrent_batches,
            policy=RetryPolicy.from_config(config.retry),
        )

    async def run(self, paths: Iterable[str | Path]) -> IngestionReport:
        """
        Ingest the given files.

        Raises:
            StoreUnavailableError: If constraints can not be created
            FileDecodeError: Only with fail_fast_on_file_error set
        """
        set_run_id(None)
        run_id = get_run_id()
        settings = self.config.ingestion
        logger.info("ingestion_run_started")

        await self.store.ensure_constraints()

        # Nothing else is scheduled on the loop yet, so decoding may block it
        decoded = dispatch(
            paths,
            workers=settings.resolved_decode_workers,
            executor=settings.decode_executor,
            fail_fast=settings.fail_fast_on_file_error,
        )
        decoded.stats.emit_summary()

        batches = plan_batches(decoded.posts, settings.batch_size)
        writes = await self.writer.write_all(batches)

        relationships: Dict[str, Any] = {}
        if settings.link_relationships:
            relationships = await self._derive_relationships()

        report = IngestionReport(
            statistics=decoded.stats,
            writes=writes,
            relationships=relationships,
            run_id=run_id,
        )
        logger.info(
            "ingestion_run_finished",
            **decoded.stats.counts(),
            **writes.summary(),
        )
        return report

    async def _derive_relationships(self) -> Dict[str, Any]:
        results: Dict[str, Any] = {}
        for name, link in (
            ("replies", self.store.link_replies),
            ("mentions", self.store.link_mentions),
        ):
            try:
                results[name] = await link()
            except StoreWriteError as e:
                logger.error(
                    "relationship_derivation_failed",
                    relationship=name,
                    error_kind=e.kind.value,
                    error=str(e),
                )
        return results
