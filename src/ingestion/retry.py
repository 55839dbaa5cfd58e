"""
Retry controller for batch transactions.

Each batch moves through::

    PENDING -> ATTEMPTING -> COMMITTED
                          -> BACKOFF -> ATTEMPTING ...
                          -> PERMANENTLY_FAILED
                          -> RETRIES_EXHAUSTED

Only failures whose ``StoreErrorKind`` is in the policy's retryable set are
retried. Delays grow geometrically from ``initial_interval`` by
``multiplier``, capped at ``max_interval``. Before every sleep the controller
checks that the sleep would still end inside ``max_elapsed``; if not, the
batch ends as RETRIES_EXHAUSTED, so the loop always terminates.
"""

import asyncio
import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, FrozenSet, Iterator, List, Optional

from src.neo.errors import StoreErrorKind, classify_store_error
from src.shared.config import RetryConfig
from src.shared.observability import get_logger
from src.shared.observability.metrics import ingest_batch_attempts_total

logger = get_logger(__name__)


class BatchState(str, Enum):
    PENDING = "pending"
    ATTEMPTING = "attempting"
    BACKOFF = "backoff"
    COMMITTED = "committed"
    PERMANENTLY_FAILED = "permanently_failed"
    RETRIES_EXHAUSTED = "retries_exhausted"


TERMINAL_STATES = frozenset(
    {BatchState.COMMITTED, BatchState.PERMANENTLY_FAILED, BatchState.RETRIES_EXHAUSTED}
)


@dataclass(frozen=True)
class RetryPolicy:
    initial_interval: float = 0.1
    multiplier: float = 2.0
    max_interval: float = 10.0
    max_elapsed: float = 60.0
    retryable_kinds: FrozenSet[StoreErrorKind] = frozenset({StoreErrorKind.CONFLICT})

    def __post_init__(self):
        if self.initial_interval <= 0:
            raise ValueError("initial_interval must be positive")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_interval < self.initial_interval:
            raise ValueError("max_interval must be >= initial_interval")
        if self.max_elapsed <= 0:
            raise ValueError("max_elapsed must be positive")

    @classmethod
    def from_config(cls, config: RetryConfig) -> "RetryPolicy":
        return cls(
            initial_interval=config.initial_interval_seconds,
            multiplier=config.multiplier,
            max_interval=max(config.max_interval_seconds, config.initial_interval_seconds),
            max_elapsed=config.max_elapsed_seconds,
        )

    def delays(self) -> Iterator[float]:
        """Endless, non-decreasing sequence of backoff delays."""
        delay = self.initial_interval
        while True:
            yield min(delay, self.max_interval)
            delay = min(delay * self.multiplier, self.max_interval)

    def is_retryable(self, kind: StoreErrorKind) -> bool:
        return kind in self.retryable_kinds


@dataclass
class BatchOutcome:
    """Final record of one batch's attempt sequence."""

    index: int
    state: BatchState = BatchState.PENDING
    attempts: int = 0
    error: Optional[BaseException] = None
    error_kind: Optional[StoreErrorKind] = None
    elapsed: float = 0.0
    delays: List[float] = field(default_factory=list)
    history: List[BatchState] = field(default_factory=lambda: [BatchState.PENDING])

    def transition(self, state: BatchState) -> None:
        if self.state in TERMINAL_STATES:
            raise RuntimeError(
                f"batch {self.index} already finished as {self.state.value}"
            )
        self.state = state
        self.history.append(state)

    @property
    def retries(self) -> int:
        return max(0, self.attempts - 1)

    @property
    def is_terminal(self) -> bool:
        return self.state in TERMINAL_STATES

    @property
    def succeeded_after_retries(self) -> bool:
        return self.state == BatchState.COMMITTED and self.retries > 0


async def run_with_retry(
    operation: Callable[[], Awaitable[None]],
    policy: RetryPolicy,
    *,
    index: int,
    sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> BatchOutcome:
    """
    Run ``operation`` until it succeeds, fails permanently or runs out of budget.

    Args:
        operation: Zero-argument coroutine factory performing one attempt
        policy: Backoff and classification policy
        index: Batch index, for diagnostics
        sleep: Awaitable sleep (injectable for tests)
        clock: Monotonic clock in seconds (injectable for tests)

    Returns:
        BatchOutcome in a terminal state; failures are reported, never raised
    """
    outcome = BatchOutcome(index=index)
    delays = policy.delays()
    start = clock()

    while True:
        outcome.transition(BatchState.ATTEMPTING)
        outcome.attempts += 1
        try:
            await operation()
        except Exception as e:
            kind = classify_store_error(e)
            outcome.error, outcome.error_kind = e, kind
            ingest_batch_attempts_total.labels(result=kind.value).inc()

            if not policy.is_retryable(kind):
                outcome.transition(BatchState.PERMANENTLY_FAILED)
                break

            delay = next(delays)
            elapsed = clock() - start
            if elapsed + delay > policy.max_elapsed:
                outcome.transition(BatchState.RETRIES_EXHAUSTED)
                break

            outcome.transition(BatchState.BACKOFF)
            outcome.delays.append(delay)
            logger.warning(
                "batch_conflict_retrying",
                batch=index,
                attempt=outcome.attempts,
                delay_seconds=round(delay, 3),
                error_kind=kind.value,
                error=str(e),
            )
            await sleep(delay)
            continue

        ingest_batch_attempts_total.labels(result="committed").inc()
        outcome.transition(BatchState.COMMITTED)
        break

    outcome.elapsed = clock() - start
    return outcome
