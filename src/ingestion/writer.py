"""
Concurrency-limited batch writer.

Every batch gets its own asyncio task; an ``asyncio.Semaphore`` keeps at
most ``max_concurrent_batches`` of them holding a write slot at a time.
A slot is held for the whole retry sequence of a batch, backoff sleeps
included. ``write_all`` returns only after every batch is terminal.
"""

import asyncio
import time
import traceback
from dataclasses import dataclass, field
from typing import Any, Awaitable, Callable, Coroutine, Dict, Iterable, List, Optional

from src.ingestion.batching import Batch
from src.ingestion.models import Post
from src.ingestion.retry import BatchOutcome, BatchState, RetryPolicy, run_with_retry
from src.neo.errors import StoreErrorKind
from src.neo.store import BatchStore
from src.shared.observability import get_logger
from src.shared.observability.metrics import (
    ingest_batch_duration_seconds,
    ingest_batches_in_flight,
    ingest_batches_total,
)

log = get_logger(__name__)


def serialize_post(post: Post) -> Dict[str, Any]:
    """Flatten a post and its author snapshot into one parameter map."""
    author = post.author
    return {
        # Post fields
        "id": post.id,
        "text": post.text,
        "created_at": post.created_at.isoformat(),
        "reply_to": post.reply_to,
        "lang": post.lang,
        "hashtags": list(post.hashtags),
        "user_mentions": list(post.mentions),
        "is_reshare": post.is_reshare,
        # Author fields
        "userId": author.id,
        "userName": author.name,
        "userLocation": author.location,
        "userVerified": author.verified,
        "userFollowersCount": author.followers_count,
        "userFriendsCount": author.friends_count,
        "userListedCount": author.listed_count,
        "userFavouritesCount": author.favourites_count,
        "userStatusesCount": author.statuses_count,
        "userCreatedAt": author.created_at.isoformat(),
        "userUtcOffset": author.utc_offset,
    }


def serialize_batch(batch: Batch) -> List[Dict[str, Any]]:
    return [serialize_post(post) for post in batch.posts]


def log_task_exception_callback(task: asyncio.Task) -> None:
    """Done callback that logs a task's exception as soon as it finishes."""
    if task.cancelled():
        log.debug("asyncio_task_cancelled", task_name=task.get_name())
        return
    exception = task.exception()
    if exception is not None:
        log.error(
            "asyncio_task_failed",
            task_name=task.get_name(),
            exception_type=type(exception).__name__,
            exception_str=str(exception),
            traceback="".join(
                traceback.format_exception(
                    type(exception), exception, exception.__traceback__
                )
            ),
        )


def create_monitored_task(coro: Coroutine, name: str | None = None) -> asyncio.Task:
    """asyncio.create_task with exception logging attached."""
    task = asyncio.create_task(coro, name=name)
    task.add_done_callback(log_task_exception_callback)
    return task


@dataclass
class WriteReport:
    outcomes: List[BatchOutcome] = field(default_factory=list)

    def _in_state(self, state: BatchState) -> List[BatchOutcome]:
        return [o for o in self.outcomes if o.state == state]

    @property
    def committed(self) -> List[BatchOutcome]:
        return self._in_state(BatchState.COMMITTED)

    @property
    def permanently_failed(self) -> List[BatchOutcome]:
        return self._in_state(BatchState.PERMANENTLY_FAILED)

    @property
    def retries_exhausted(self) -> List[BatchOutcome]:
        return self._in_state(BatchState.RETRIES_EXHAUSTED)

    @property
    def succeeded_after_retries(self) -> List[BatchOutcome]:
        return [o for o in self.outcomes if o.succeeded_after_retries]

    @property
    def all_terminal(self) -> bool:
        return all(o.is_terminal for o in self.outcomes)

    def summary(self) -> Dict[str, int]:
        return {
            "batches": len(self.outcomes),
            "committed": len(self.committed),
            "committed_after_retries": len(self.succeeded_after_retries),
            "permanently_failed": len(self.permanently_failed),
            "retries_exhausted": len(self.retries_exhausted),
        }


class BatchWriter:
    """Writes batches to a BatchStore under a concurrency cap."""

    def __init__(
        self,
        store: BatchStore,
        *,
        max_concurrent_batches: int = 8,
        policy: Optional[RetryPolicy] = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if max_concurrent_batches < 1:
            raise ValueError("max_concurrent_batches must be >= 1")
        self.store = store
        self.max_concurrent_batches = max_concurrent_batches
        self.policy = policy or RetryPolicy()
        self._sleep = sleep
        self._clock = clock

    async def _write_one(self, batch: Batch, slots: asyncio.Semaphore) -> BatchOutcome:
        async with slots:
            ingest_batches_in_flight.inc()
            try:
                rows = serialize_batch(batch)
                outcome = await run_with_retry(
                    lambda: self.store.write_batch(rows),
                    self.policy,
                    index=batch.index,
                    sleep=self._sleep,
                    clock=self._clock,
                )
            finally:
                ingest_batches_in_flight.dec()

        self._report(batch, outcome)
        return outcome

    def _report(self, batch: Batch, outcome: BatchOutcome) -> None:
        ingest_batches_total.labels(status=outcome.state.value).inc()
        ingest_batch_duration_seconds.observe(outcome.elapsed)
        fields = {
            "batch": batch.index,
            "size": len(batch),
            "attempts": outcome.attempts,
            "elapsed_seconds": round(outcome.elapsed, 3),
        }

        if outcome.state == BatchState.COMMITTED:
            if outcome.succeeded_after_retries:
                log.info("batch_committed_after_retries", retries=outcome.retries, **fields)
            else:
                log.info("batch_committed", **fields)
        elif outcome.state == BatchState.RETRIES_EXHAUSTED:
            log.error(
                "batch_retries_exhausted",
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                error=str(outcome.error),
                **fields,
            )
        else:
            log.error(
                "batch_permanently_failed",
                error_kind=outcome.error_kind.value if outcome.error_kind else None,
                error=str(outcome.error),
                **fields,
            )

    async def write_all(self, batches: Iterable[Batch]) -> WriteReport:
        """
        Write every batch and wait for all of them to finish.

        A failing batch never cancels its siblings. Unexpected task errors are
        recorded as permanent failures of that batch.
        """
        slots = asyncio.Semaphore(self.max_concurrent_batches)
        batches = list(batches)
        tasks = [
            create_monitored_task(self._write_one(batch, slots), name=f"batch-{batch.index}")
            for batch in batches
        ]
        log.info(
            "write_started",
            batches=len(tasks),
            max_concurrent_batches=self.max_concurrent_batches,
        )

        results = await asyncio.gather(*tasks, return_exceptions=True)

        report = WriteReport()
        for batch, result in zip(batches, results):
            if isinstance(result, BatchOutcome):
                report.outcomes.append(result)
                continue
            if isinstance(result, asyncio.CancelledError):
                raise result
            outcome = BatchOutcome(index=batch.index, attempts=0)
            outcome.error = result
            outcome.error_kind = StoreErrorKind.OTHER
            outcome.transition(BatchState.PERMANENTLY_FAILED)
            ingest_batches_total.labels(status=outcome.state.value).inc()
            report.outcomes.append(outcome)

        log.info("write_finished", **report.summary())
        return report
