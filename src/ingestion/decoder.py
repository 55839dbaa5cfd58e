"""
Record decoder: one line-delimited JSON archive in, typed posts and counts out.

Per-line policy:
- blank lines are not records: they are skipped and excluded from ``total``
- a line carrying the deletion marker is counted as deleted and never parsed
- a line that fails JSON or field decoding is logged and counted as malformed
- a decoded line whose top-level ``retweeted_status`` is non-null is flagged
  and counted as a re-share; the marker text appearing anywhere else (nested
  objects, quoted inside the post text) does not count

Only file-level problems (missing file, unreadable bytes) raise.
"""

import json
from dataclasses import dataclass, field
from pathlib import Path
from typing import List

from pydantic import ValidationError

from src.ingestion.errors import FileDecodeError
from src.ingestion.models import Post
from src.ingestion.run_stats import IngestStatistics
from src.shared.observability import get_logger

logger = get_logger(__name__)

DELETE_MARKER = '"delete":'
RESHARE_KEY = "retweeted_status"

# Malformed line content is truncated to this many characters in logs
LOG_LINE_PREVIEW = 200


@dataclass
class FileDecodeResult:
    path: str
    posts: List[Post] = field(default_factory=list)
    stats: IngestStatistics = field(default_factory=IngestStatistics)


def decode_line(line: str) -> Post:
    """
    Decode one archive line into a Post.

    Raises:
        ValueError: If the line is not a JSON object or misses required fields
    """
    data = json.loads(line)
    if not isinstance(data, dict):
        raise ValueError(f"expected a JSON object, got {type(data).__name__}")

    post = Post.model_validate(data)
    if data.get(RESHARE_KEY) is not None:
        post = post.as_reshare()
    return post


def decode_file(path: str | Path) -> FileDecodeResult:
    """
    Parse a single archive file.

    Args:
        path: Path to a line-delimited JSON file

    Returns:
        FileDecodeResult with the posts in file order and this file's counts

    Raises:
        FileDecodeError: If the file cannot be opened or read as UTF-8
    """
    path = str(path)
    result = FileDecodeResult(path=path)
    stats = result.stats
    logger.info("parsing_file", path=path)

    try:
        with open(path, "r", encoding="utf-8") as f:
            for line_no, raw in enumerate(f, start=1):
                line = raw.strip()
                if not line:
                    continue

                stats.total += 1
                if DELETE_MARKER in line:
                    stats.deleted += 1
                    continue

                try:
                    post = decode_line(line)
                except (ValueError, ValidationError) as e:
                    # json.JSONDecodeError is a ValueError
                    stats.malformed += 1
                    logger.warning(
                        "malformed_line_skipped",
                        path=path,
                        line_no=line_no,
                        error=str(e),
                        content=line[:LOG_LINE_PREVIEW],
                    )
                    continue

                stats.decoded += 1
                if post.is_reshare:
                    stats.reshares += 1
                result.posts.append(post)
    except (OSError, UnicodeDecodeError) as e:
        raise FileDecodeError(path, e) from e

    logger.debug("file_parsed", path=path, **stats.counts())
    return result
