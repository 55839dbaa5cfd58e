"""
Parallel dispatcher: fans the decoder out over every input file.

Each file is one task on a ``concurrent.futures`` pool (processes by default,
since decoding is CPU-bound). Tasks share nothing: every task returns its
own posts and its own ``IngestStatistics``, and the calling thread reduces
the per-file counts after the pool drains. Post order across files is
unspecified; order within a file is preserved.

A file that can not be read is either recorded and skipped (default) or
re-raised after the pool is shut down (``fail_fast=True``).
"""

import glob
import os
from concurrent.futures import (
    Executor,
    Future,
    ProcessPoolExecutor,
    ThreadPoolExecutor,
    as_completed,
)
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from src.ingestion.decoder import FileDecodeResult, decode_file
from src.ingestion.errors import FileDecodeError
from src.ingestion.models import Post
from src.ingestion.run_stats import IngestStatistics
from src.shared.observability import get_logger
from src.shared.observability.metrics import ingest_files_total, record_decode_counts

logger = get_logger(__name__)


@dataclass
class DispatchResult:
    posts: List[Post] = field(default_factory=list)
    stats: IngestStatistics = field(default_factory=IngestStatistics)


def discover_files(pattern: str) -> List[Path]:
    """
    Resolve a glob pattern to the input files it selects.

    Args:
        pattern: Filesystem glob, ``**`` allowed

    Returns:
        Sorted list of matching regular files (empty if nothing matches)
    """
    matches = sorted(
        Path(p) for p in glob.glob(os.path.expanduser(pattern), recursive=True)
    )
    files = [p for p in matches if p.is_file()]
    logger.info("input_files_discovered", pattern=pattern, count=len(files))
    return files


def _make_executor(kind: str, workers: int) -> Executor:
    if kind == "thread":
        return ThreadPoolExecutor(max_workers=workers, thread_name_prefix="decode")
    return ProcessPoolExecutor(max_workers=workers)


def dispatch(
    paths: Iterable[str | Path],
    *,
    workers: Optional[int] = None,
    executor: str = "process",
    fail_fast: bool = False,
) -> DispatchResult:
    """
    Decode every file in parallel and merge the results.

    Args:
        paths: Input files
        workers: Pool size (defaults to the CPU count, never more than the file count)
        executor: "process" or "thread"
        fail_fast: Re-raise the first file-level failure instead of skipping the file

    Returns:
        DispatchResult with concatenated posts and merged counts

    Raises:
        FileDecodeError: Only when fail_fast is set and a file can not be read
    """
    paths = [str(p) for p in paths]
    result = DispatchResult()
    if not paths:
        logger.warning("no_input_files")
        return result

    workers = max(1, min(workers or os.cpu_count() or 1, len(paths)))
    logger.info(
        "decode_started", files=len(paths), workers=workers, executor=executor
    )

    per_file: List[IngestStatistics] = []
    pool = _make_executor(executor, workers)
    try:
        futures: Dict[Future, str] = {
            pool.submit(decode_file, path): path for path in paths
        }
        for future in as_completed(futures):
            path = futures[future]
            try:
                file_result: FileDecodeResult = future.result()
            except Exception as e:
                error = e if isinstance(e, FileDecodeError) else FileDecodeError(path, e)
                ingest_files_total.labels(status="failed").inc()
                if fail_fast:
                    logger.error("file_decode_failed_aborting", path=path, error=str(e))
                    for pending in futures:
                        pending.cancel()
                    if error is e:
                        raise
                    raise error from e
                logger.error("file_decode_failed_skipping", path=path, error=str(e))
                failed = IngestStatistics()
                failed.record_failed_file(path, str(e))
                per_file.append(failed)
                continue

            ingest_files_total.labels(status="decoded").inc()
            per_file.append(file_result.stats)
            result.posts.extend(file_result.posts)
    finally:
        pool.shutdown(wait=True, cancel_futures=True)

    result.stats = IngestStatistics.combine(per_file)
    stats = result.stats
    record_decode_counts(
        total=stats.total,
        deleted=stats.deleted,
        malformed=stats.malformed,
        decoded=stats.decoded,
        reshares=stats.reshares,
    )
    logger.info("decode_finished", posts=len(result.posts), **stats.counts())
    return result
