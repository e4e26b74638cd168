"""Canonical feed and reply models: source-agnostic record shapes.

Every raw API record is mapped into these by ``margin.normalize`` before
any feed or thread logic runs. The core never looks at raw JSON and never
branches on which wire field a value came from.
"""

from __future__ import annotations

from datetime import datetime
from enum import StrEnum

from pydantic import BaseModel, ConfigDict, Field

QUOTE_SELECTOR_TYPE = "TextQuoteSelector"


class ItemKind(StrEnum):
    """Feed item variants."""

    ANNOTATION = "Annotation"
    HIGHLIGHT = "Highlight"
    BOOKMARK = "Bookmark"
    COLLECTION_ITEM = "CollectionItem"


class Motivation(StrEnum):
    """Why an item was created."""

    COMMENTING = "commenting"
    HIGHLIGHTING = "highlighting"
    BOOKMARKING = "bookmarking"


class TextQuoteSelector(BaseModel):
    """A passage described by its exact text plus optional context."""

    model_config = ConfigDict(frozen=True)

    type: str = QUOTE_SELECTOR_TYPE
    exact: str = ""
    prefix: str | None = None
    suffix: str | None = None

    @property
    def is_usable(self) -> bool:
        """True when this is a quote selector with non-empty exact text."""
        return self.type == QUOTE_SELECTOR_TYPE and bool(self.exact)


class Author(BaseModel):
    """Profile reference for a record's creator."""

    did: str = ""
    handle: str = ""
    display_name: str = ""
    avatar: str = ""

    @property
    def label(self) -> str:
        return self.display_name or self.handle or self.did


class Target(BaseModel):
    """The page an item points at."""

    source: str
    title: str = ""
    selector: TextQuoteSelector | None = None


class CollectionRef(BaseModel):
    """A named collection an item was added to."""

    uri: str = ""
    name: str = ""
    icon: str = ""


class FeedItem(BaseModel):
    """One entry of a feed page.

    Standalone items (annotations, highlights, bookmarks) carry their content
    directly. A ``CollectionItem`` wraps one of those in ``inner`` and says
    who added it to which collection.
    """

    kind: ItemKind
    uri: str = ""
    id: str = ""
    cid: str = ""
    author: Author = Field(default_factory=Author)
    created_at: datetime | None = None
    motivation: str = Motivation.HIGHLIGHTING
    text: str = ""
    target: Target | None = None
    tags: list[str] = Field(default_factory=list)
    like_count: int = 0
    reply_count: int = 0

    inner: FeedItem | None = None
    collection: CollectionRef | None = None
    context: list[CollectionRef] = Field(default_factory=list)
    added_by: Author | None = None

    @property
    def is_collection_item(self) -> bool:
        return self.kind == ItemKind.COLLECTION_ITEM

    @property
    def identities(self) -> tuple[str, ...]:
        """Trimmed, non-empty identities this item can be referenced by."""
        found: list[str] = []
        for value in (self.uri, self.id):
            value = value.strip()
            if value and value not in found:
                found.append(value)
        return tuple(found)

    @property
    def content(self) -> FeedItem:
        """The item whose content is displayed: ``inner`` for wrappers."""
        if self.is_collection_item and self.inner is not None:
            return self.inner
        return self


class ReplyRecord(BaseModel):
    """A single reply in a thread, as fetched in a flat batch."""

    identity: str = ""
    parent_identity: str = ""
    root_identity: str = ""
    author: Author = Field(default_factory=Author)
    text: str = ""
    created_at: datetime | None = None


class ReplyNode(ReplyRecord):
    """A reply with its direct replies nested beneath it."""

    children: list[ReplyNode] = Field(default_factory=list)


class FeedPage(BaseModel):
    """One fetched and reconciled page of a feed."""

    items: list[FeedItem] = Field(default_factory=list)
    cursor: str | None = None
    fetched_count: int = 0
    has_more: bool = False
