"""Batch planner: slices the merged post stream into transaction-sized groups."""

from dataclasses import dataclass
from itertools import islice
from typing import Iterable, Iterator, Tuple

from src.ingestion.models import Post


@dataclass(frozen=True)
class Batch:
    """One transaction's worth of posts; ``index`` is only used in diagnostics."""

    index: int
    posts: Tuple[Post, ...]

    def __len__(self) -> int:
        return len(self.posts)


def plan_batches(posts: Iterable[Post], batch_size: int) -> Iterator[Batch]:
    """
    Yield consecutive batches of at most ``batch_size`` posts.

    The last batch may be shorter; an empty input yields nothing.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    it = iter(posts)
    index = 0
    while chunk := tuple(islice(it, batch_size)):
        yield Batch(index=index, posts=chunk)
        index += 1
