# Test fixtures for the ingestion pipeline
# Unit tests run against an in-memory graph; integration tests need Neo4j

import asyncio
import json
import os
import socket
import sys
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Set, Tuple
from urllib.parse import urlparse

import pytest

# Add project root to Python path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

# Set test environment
os.environ["ENV"] = "test"

SOURCE_DATE = "Thu May 23 14:54:46 +0000 2019"


class InMemoryGraphStore:
    """
    BatchStore with MERGE-by-id semantics held in dictionaries.

    ``failures`` is consumed one entry per write call; an entry that is an
    exception is raised before anything from the batch is applied, ``None``
    lets the call through.
    """

    def __init__(self, *, delay: float = 0.0, failures: Optional[List] = None):
        self.delay = delay
        self.failures: List[Optional[BaseException]] = list(failures or [])
        self.posts: Dict[str, Dict[str, Any]] = {}
        self.authors: Dict[str, Dict[str, Any]] = {}
        self.edges: Set[Tuple[str, str, str]] = set()
        self.events: List[str] = []
        self.write_calls = 0
        self.in_flight = 0
        self.max_in_flight = 0
        self.closed = False

    async def verify_connectivity(self) -> None:
        self.events.append("verify")

    async def ensure_constraints(self) -> None:
        self.events.append("constraints")

    async def write_batch(self, rows: List[Dict[str, Any]]) -> None:
        self.write_calls += 1
        self.in_flight += 1
        self.max_in_flight = max(self.max_in_flight, self.in_flight)
        try:
            if self.delay:
                await asyncio.sleep(self.delay)
            if self.failures:
                failure = self.failures.pop(0)
                if failure is not None:
                    raise failure
            self._apply(rows)
            self.events.append("write")
        finally:
            self.in_flight -= 1

    def _apply(self, rows: List[Dict[str, Any]]) -> None:
        for row in rows:
            self.posts[row["id"]] = {
                key: row[key]
                for key in (
                    "text",
                    "created_at",
                    "reply_to",
                    "lang",
                    "hashtags",
                    "user_mentions",
                    "is_reshare",
                )
            }
            # ON CREATE SET: first snapshot wins
            self.authors.setdefault(
                row["userId"],
                {"name": row["userName"], "followers_count": row["userFollowersCount"]},
            )
            self.edges.add(("POSTED_BY", row["id"], row["userId"]))

    async def link_replies(self) -> Dict[str, Any]:
        self.events.append("link_replies")
        linked = 0
        for post_id, post in self.posts.items():
            if post["reply_to"] in self.posts:
                self.edges.add(("REPLIES_TO", post_id, post["reply_to"]))
                linked += 1
        return {"batches": 1, "total": linked, "errorMessages": {}}

    async def link_mentions(self) -> Dict[str, Any]:
        self.events.append("link_mentions")
        linked = 0
        for post_id, post in self.posts.items():
            for uid in post["user_mentions"]:
                if uid in self.authors:
                    self.edges.add(("MENTIONS", post_id, uid))
                    linked += 1
        return {"batches": 1, "total": linked, "errorMessages": {}}

    async def close(self) -> None:
        self.closed = True

    def edges_of(self, rel_type: str) -> Set[Tuple[str, str]]:
        return {(a, b) for t, a, b in self.edges if t == rel_type}


class FakeClock:
    """Monotonic clock that only moves when ``sleep`` is awaited."""

    def __init__(self):
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


@pytest.fixture
def memory_store() -> InMemoryGraphStore:
    return InMemoryGraphStore()


@pytest.fixture
def make_store() -> Callable[..., InMemoryGraphStore]:
    return InMemoryGraphStore


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def post_factory() -> Callable[..., Dict[str, Any]]:
    """Build a post object shaped like one archive line."""

    def _make(
        post_id: str = "100",
        *,
        user_id: str = "u1",
        screen_name: str = "someone",
        text: str = "hello world",
        reply_to: Optional[str] = None,
        hashtags: Tuple[str, ...] = (),
        mentions: Tuple[str, ...] = (),
        reshare: bool = False,
        followers: int = 10,
    ) -> Dict[str, Any]:
        post = {
            "created_at": SOURCE_DATE,
            "id_str": post_id,
            "text": text,
            "lang": "en",
            "in_reply_to_status_id_str": reply_to,
            "entities": {
                "hashtags": [{"text": tag, "indices": [0, 1]} for tag in hashtags],
                "user_mentions": [
                    {"id_str": uid, "screen_name": f"user{uid}"} for uid in mentions
                ],
            },
            "user": {
                "id_str": user_id,
                "screen_name": screen_name,
                "location": "Amsterdam",
                "verified": False,
                "followers_count": followers,
                "friends_count": 5,
                "listed_count": None,
                "favourites_count": 3,
                "statuses_count": 42,
                "created_at": "Mon Jan 01 00:00:00 +0000 2018",
                "utc_offset": None,
            },
        }
        if reshare:
            post["retweeted_status"] = {"id_str": f"rt-{post_id}"}
        return post

    return _make


@pytest.fixture
def deletion_line() -> str:
    return json.dumps(
        {"delete": {"status": {"id_str": "999", "user_id_str": "u9"}, "timestamp_ms": "1"}}
    )


@pytest.fixture
def archive_factory(tmp_path) -> Callable[[str, List[Any]], Path]:
    """Write an archive file; dict entries are JSON-encoded, strings written as-is."""

    def _write(name: str, lines: List[Any]) -> Path:
        path = tmp_path / name
        with open(path, "w", encoding="utf-8") as f:
            for line in lines:
                f.write(json.dumps(line) if isinstance(line, dict) else line)
                f.write("\n")
        return path

    return _write


@pytest.fixture(scope="session")
def neo4j_credentials():
    """
    Credentials for a running Neo4j.
    Integration tests require the bolt port to be reachable.
    """
    from src.shared.config import load_credentials

    credentials = load_credentials()
    parsed = urlparse(credentials.uri)
    host, port = parsed.hostname or "localhost", parsed.port or 7687

    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.settimeout(2)
    result = sock.connect_ex((host, port))
    sock.close()
    if result != 0:
        pytest.skip(f"neo4j not available at {host}:{port}")
    return credentials
