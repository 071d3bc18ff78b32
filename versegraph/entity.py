"""Entity system for the verse graph.

Every persisted record (verses, notes, tags, topics, edges, hyperedges) is a
frozen pydantic model carrying an `id` plus `created_at`/`updated_at`
timestamps. The timestamps drive last-writer-wins reconciliation between the
local cache and the remote store, so they are coerced leniently: a missing or
malformed value becomes the Unix epoch and therefore always loses a recency
comparison instead of failing validation.
"""

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Annotated, Any

from pydantic import BaseModel, BeforeValidator, Field, field_validator

EPOCH = datetime(1970, 1, 1, tzinfo=timezone.utc)

_URL_RE = re.compile(r"^https?://\S+$", re.IGNORECASE)


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(timezone.utc)


def coerce_timestamp(value: Any) -> datetime:
    """Convert a stored timestamp into a timezone-aware datetime.

    Accepts datetimes (naive values are taken as UTC), ISO-8601 strings and
    POSIX seconds. Anything else, including None, maps to EPOCH.
    """
    if isinstance(value, datetime):
        return value if value.tzinfo is not None else value.replace(tzinfo=timezone.utc)
    if isinstance(value, bool):
        return EPOCH
    if isinstance(value, (int, float)):
        try:
            return datetime.fromtimestamp(value, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return EPOCH
    if isinstance(value, str):
        try:
            parsed = datetime.fromisoformat(value.strip())
        except ValueError:
            return EPOCH
        return parsed if parsed.tzinfo is not None else parsed.replace(tzinfo=timezone.utc)
    return EPOCH


Timestamp = Annotated[datetime, BeforeValidator(coerce_timestamp)]


class NodeKind(str, Enum):
    """Kinds of node that can appear in the graph view or in a hyperedge member set."""

    VERSE = "verse"
    NOTE = "note"
    TAG = "tag"
    GROUP = "group"
    """A hyperedge materialized as a node."""

    TOPIC = "topic"


class VersionedEntity(BaseModel):
    """Base for every record the reconciler can merge.

    Subclasses are immutable; edits go through `touch()` or
    `model_copy(update=...)` and must advance `updated_at`.
    """

    model_config = {"frozen": True}

    id: str = Field(min_length=1, description="Storage identity of the record.")
    created_at: Timestamp = Field(default=EPOCH, description="When the record was first created.")
    updated_at: Timestamp = Field(default=EPOCH, description="Last modification time, used for recency.")

    def touch(self, when: datetime | None = None, **changes: Any) -> "VersionedEntity":
        """Return a copy with `changes` applied and `updated_at` advanced."""
        return self.model_copy(update={**changes, "updated_at": when or utc_now()})


class VerseNode(VersionedEntity):
    """A single verse of a given translation.

    Verses are created lazily on first reference and are otherwise immutable,
    except for `text`/`translation` backfill.
    """

    book: str = Field(min_length=1)
    chapter: int = Field(gt=0)
    verse_number: int = Field(gt=0)
    text: str = ""
    translation: str = "KJV"

    @property
    def natural_key(self) -> tuple[str, int, int, str]:
        """The (book, chapter, verse_number, translation) uniqueness key."""
        return (self.book, self.chapter, self.verse_number, self.translation)

    @property
    def reference(self) -> str:
        return f"{self.book} {self.chapter}:{self.verse_number}"


class Note(VersionedEntity):
    """A user note attached to a verse."""

    verse_id: str = Field(min_length=1)
    content: str = ""
    tags: tuple[str, ...] = ()
    user_id: str | None = None

    @field_validator("tags", mode="before")
    @classmethod
    def normalize_tags(cls, value: Any) -> tuple[str, ...]:
        # Tags behave as a set: order is irrelevant and duplicates collapse.
        if value is None:
            return ()
        if isinstance(value, str):
            value = [value]
        return tuple(sorted({str(tag).strip() for tag in value if str(tag).strip()}))

    @property
    def is_link(self) -> bool:
        """True when the note's whole content is a URL."""
        return bool(_URL_RE.match(self.content.strip()))


class Tag(VersionedEntity):
    name: str = Field(min_length=1)
    color: str = "#888888"


class Topic(VersionedEntity):
    name: str = Field(min_length=1)
    description: str | None = None
