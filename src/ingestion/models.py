"""
Typed records decoded from the line-delimited post archives.

Field aliases map the archive's JSON names (``id_str``, ``screen_name``,
``in_reply_to_status_id_str`` ...) onto the names used throughout the
pipeline. Both models are frozen; the decoder derives a flagged copy when
it detects a re-share instead of mutating the record.
"""

from datetime import datetime, timezone
from typing import Any, List, Optional

from pydantic import ConfigDict, Field, field_validator, model_validator

from src.shared.models import GraphIngestBaseModel

# e.g. "Thu May 23 14:54:46 +0000 2019"
SOURCE_DATE_FORMAT = "%a %b %d %H:%M:%S %z %Y"


def parse_source_date(value: Any) -> datetime:
    """Parse an archive timestamp into an aware UTC datetime."""
    if isinstance(value, datetime):
        if value.tzinfo is None:
            return value.replace(tzinfo=timezone.utc)
        return value.astimezone(timezone.utc)
    if not isinstance(value, str):
        raise ValueError(f"expected date string, got {type(value).__name__}")
    return datetime.strptime(value, SOURCE_DATE_FORMAT).astimezone(timezone.utc)


class Author(GraphIngestBaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="id_str")
    name: str = Field(alias="screen_name")
    location: Optional[str] = None
    verified: bool
    followers_count: int
    friends_count: int
    listed_count: Optional[int] = None
    favourites_count: int
    statuses_count: int
    created_at: datetime
    utc_offset: Optional[int] = None

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v):
        return parse_source_date(v)


class Post(GraphIngestBaseModel):
    model_config = ConfigDict(frozen=True, populate_by_name=True)

    id: str = Field(alias="id_str")
    text: str
    created_at: datetime
    lang: str
    reply_to: Optional[str] = Field(default=None, alias="in_reply_to_status_id_str")
    hashtags: List[str]
    mentions: List[str]
    author: Author = Field(alias="user")
    is_reshare: bool = False

    @model_validator(mode="before")
    @classmethod
    def flatten_entities(cls, data: Any) -> Any:
        """Lift hashtag texts and mentioned author ids out of ``entities``."""
        if not isinstance(data, dict) or "entities" not in data:
            return data
        entities = data["entities"]
        if not isinstance(entities, dict):
            raise ValueError("entities must be an object")

        flattened = {k: v for k, v in data.items() if k != "entities"}
        flattened["hashtags"] = [
            tag["text"]
            for tag in entities.get("hashtags") or []
            if isinstance(tag, dict) and isinstance(tag.get("text"), str)
        ]
        flattened["mentions"] = [
            mention["id_str"]
            for mention in entities.get("user_mentions") or []
            if isinstance(mention, dict) and isinstance(mention.get("id_str"), str)
        ]
        return flattened

    @field_validator("created_at", mode="before")
    @classmethod
    def parse_created_at(cls, v):
        return parse_source_date(v)

    def as_reshare(self) -> "Post":
        return self.model_copy(update={"is_reshare": True})
