"""
Ingestion statistics accumulator.

Counts are produced once, while decoding, and never touched by the write
stage, so a retried batch can not double-count a line.

Each decode task owns a private ``IngestStatistics`` and the dispatcher
reduces them on a single thread once every task has finished. ``merge`` is
a plain field-wise sum (with failed-file lists concatenated), which makes it
associative and commutative: any reduction order gives the same totals as a
sequential scan over the same files.

Usage:
    from src.ingestion.run_stats import IngestStatistics

    totals = IngestStatistics.combine(per_file_stats)
    totals.emit_summary()
"""

from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import reduce
from typing import Any, Dict, Iterable, List

import structlog

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class FailedFile:
    """A file that could not be decoded at all."""

    path: str
    error: str
    timestamp: str = field(
        default_factory=lambda: datetime.now(timezone.utc).isoformat()
    )


@dataclass
class IngestStatistics:
    """
    Line counts for one file or for a whole run.

    Invariant: ``total == decoded + malformed + deleted``.
    """

    total: int = 0
    deleted: int = 0
    reshares: int = 0
    malformed: int = 0
    decoded: int = 0
    failed_files: List[FailedFile] = field(default_factory=list)

    def merge(self, other: "IngestStatistics") -> "IngestStatistics":
        """Return the sum of two accumulators without modifying either."""
        return IngestStatistics(
            total=self.total + other.total,
            deleted=self.deleted + other.deleted,
            reshares=self.reshares + other.reshares,
            malformed=self.malformed + other.malformed,
            decoded=self.decoded + other.decoded,
            failed_files=[*self.failed_files, *other.failed_files],
        )

    @classmethod
    def combine(cls, parts: Iterable["IngestStatistics"]) -> "IngestStatistics":
        return reduce(lambda acc, part: acc.merge(part), parts, cls())

    def record_failed_file(self, path: str, error: str) -> None:
        self.failed_files.append(FailedFile(path=path, error=error))

    @property
    def is_balanced(self) -> bool:
        return self.total == self.decoded + self.malformed + self.deleted

    @property
    def reshare_percentage(self) -> float:
        """Re-shares as a percentage of every line seen, deletions included."""
        if self.total == 0:
            return 0.0
        return self.reshares / self.total * 100.0

    def counts(self) -> Dict[str, int]:
        return {
            "total": self.total,
            "deleted": self.deleted,
            "reshares": self.reshares,
            "malformed": self.malformed,
            "decoded": self.decoded,
        }

    def summary_lines(self) -> List[str]:
        return [
            f"Number of posts: {self.total}",
            f"Number of deleted posts: {self.deleted}",
            f"Number of malformed posts: {self.malformed}",
            f"Percentage of re-shares: {self.reshare_percentage:.2f}%",
        ]

    def emit_summary(self) -> Dict[str, Any]:
        """
        Emit the decode summary as a structured log event.

        Returns:
            The summary dict that was logged
        """
        summary = {
            **self.counts(),
            "reshare_percentage": round(self.reshare_percentage, 2),
            "failed_files": [
                {"path": f.path, "error": f.error} for f in self.failed_files
            ],
        }

        logger.info(
            "decode_summary",
            total=self.total,
            deleted=self.deleted,
            reshares=self.reshares,
            malformed=self.malformed,
            decoded=self.decoded,
            reshare_percentage=summary["reshare_percentage"],
        )

        if self.failed_files:
            logger.warning(
                "decode_had_failed_files",
                failed_count=len(self.failed_files),
                failures=summary["failed_files"],
            )

        if not self.is_balanced:
            logger.error("decode_counts_unbalanced", **self.counts())

        return summary
