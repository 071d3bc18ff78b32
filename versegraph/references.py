"""Verse references and lazy verse creation.

Verses enter the graph the first time something references them. A reference
such as "John 3:16" is resolved against the store's natural key
(book, chapter, verse_number, translation); when the verse is missing it can be
created on the spot with empty text, to be backfilled later.
"""

import re

from pydantic import BaseModel, Field

from versegraph.cancellation import CancellationToken
from versegraph.entity import NodeKind, VerseNode
from versegraph.logging import setup_logging
from versegraph.storage.interfaces import RemoteGraphStoreInterface

logger = setup_logging()

# "John 3:16", "1 John 4:8", "Song of Solomon 2:1", "John-3-16", "1-John-4-8"
_REFERENCE_RE = re.compile(r"^\s*(?P<book>.*?\D)[\s\-]+(?P<chapter>\d+)\s*[:.\-]\s*(?P<verse>\d+)\s*$")


class VerseReference(BaseModel, frozen=True):
    book: str = Field(min_length=1)
    chapter: int = Field(gt=0)
    verse_number: int = Field(gt=0)

    def __str__(self) -> str:
        return f"{self.book} {self.chapter}:{self.verse_number}"


def parse_reference(text: str) -> VerseReference:
    """Parse a human-readable verse reference.

    Raises:
        ValueError: if the text isn't a recognizable reference.
    """
    match = _REFERENCE_RE.match(text)
    if match is None:
        raise ValueError(f"Not a verse reference: {text!r}")
    book = " ".join(match.group("book").replace("-", " ").split())
    return VerseReference(
        book=book,
        chapter=int(match.group("chapter")),
        verse_number=int(match.group("verse")),
    )


async def ensure_verse(
    store: RemoteGraphStoreInterface,
    reference: VerseReference | str,
    translation: str = "KJV",
    create: bool = True,
    cancel_token: CancellationToken | None = None,
) -> VerseNode | None:
    """Return the verse for `reference`, creating it if allowed and missing.

    Lookup ignores the translation so an existing verse in another translation
    is reused rather than duplicated.
    """
    if isinstance(reference, str):
        reference = parse_reference(reference)
    verse = await store.get_node_by_natural_key(
        reference.book,
        reference.chapter,
        reference.verse_number,
        cancel_token=cancel_token,
    )
    if verse is not None or not create:
        return verse
    if cancel_token is not None:
        cancel_token.raise_if_cancelled()

    created = await store.create_node(
        NodeKind.VERSE,
        {
            "book": reference.book,
            "chapter": reference.chapter,
            "verse_number": reference.verse_number,
            "translation": translation,
        },
    )
    logger.info(
        {
            "message": f"Created verse {reference} on first reference",
            "verse_id": created.id,
            "translation": translation,
        },
        pprint=True,
    )
    return created if isinstance(created, VerseNode) else None
