"""Feed page reconciliation: one card per piece of content.

An annotation can show up on a page both as a bare entry and inside one or
more collection wrappers. ``reconcile`` keeps the wrappers and drops the
bare duplicates. All state lives inside a single call; duplicates across
pages are left alone.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping

from margin.errors import NormalizationReport
from margin.items import FeedItem, FeedPage
from margin.normalize import normalize_items

logger = logging.getLogger(__name__)

ALL_MOTIVATIONS = "all"
DEFAULT_PAGE_SIZE = 50


def embedded_identities(items: Iterable[FeedItem]) -> set[str]:
    """Identities of every item embedded in a collection wrapper."""
    embedded: set[str] = set()
    for item in items:
        if item.is_collection_item and item.inner is not None:
            embedded.update(item.inner.identities)
    return embedded


def reconcile(items: Iterable[FeedItem]) -> list[FeedItem]:
    """Drop standalone items already shown inside a collection wrapper.

    Two passes: the whole page is scanned for embedded identities first,
    since a wrapper may come after the bare item it duplicates.

    Args:
        items: One fetched page of feed items.

    Returns:
        Every collection item, plus each standalone item whose ``uri`` and
        ``id`` are both absent from the embedded set, in input order.
        Items without any identity are always kept.
    """
    page = list(items)
    embedded = embedded_identities(page)
    kept = [
        item
        for item in page
        if item.is_collection_item or embedded.isdisjoint(item.identities)
    ]
    if len(kept) != len(page):
        logger.debug("Dropped %d item(s) already shown in collections", len(page) - len(kept))
    return kept


def _added_by_did(item: FeedItem) -> str:
    return item.added_by.did if item.added_by is not None else ""


def _same_collection_entry(previous: FeedItem, current: FeedItem) -> bool:
    """True for two wrappers of the same content added by the same user."""
    if previous.collection is None or current.collection is None:
        return False
    if previous.inner is None or current.inner is None:
        return False
    if set(previous.inner.identities).isdisjoint(current.inner.identities):
        return False
    return _added_by_did(previous) == _added_by_did(current)


def group_collection_context(items: Iterable[FeedItem]) -> list[FeedItem]:
    """Merge adjacent wrappers of the same content into one card.

    When the same user adds one annotation to several collections the feed
    returns consecutive wrappers. They collapse into the first one, whose
    ``context`` lists every collection in order. Input items are not
    modified.
    """
    grouped: list[FeedItem] = []
    for item in items:
        if grouped and _same_collection_entry(grouped[-1], item):
            previous = grouped[-1]
            context = list(previous.context)
            if not context and previous.collection is not None:
                context.append(previous.collection)
            if item.collection is not None:
                context.append(item.collection)
            grouped[-1] = previous.model_copy(update={"context": context})
            continue
        grouped.append(item)
    return grouped


def filter_by_motivation(items: Iterable[FeedItem], motivation: str | None) -> list[FeedItem]:
    """Keep items created for ``motivation``; "all" or empty keeps everything."""
    if not motivation or motivation == ALL_MOTIVATIONS:
        return list(items)
    return [item for item in items if item.content.motivation == motivation]


def _recency_key(item: FeedItem) -> tuple[bool, float]:
    created_at = item.created_at
    if created_at is None:
        return (True, 0.0)
    return (False, -created_at.timestamp())


def sort_feed(items: Iterable[FeedItem]) -> list[FeedItem]:
    """Newest first; items without a timestamp go last, in input order."""
    return sorted(items, key=_recency_key)


def popularity(item: FeedItem) -> int:
    content = item.content
    return content.like_count + content.reply_count


def sort_by_popularity(items: Iterable[FeedItem]) -> list[FeedItem]:
    """Most likes plus replies first, ties broken newest first."""
    return sorted(items, key=lambda item: (-popularity(item), *_recency_key(item)))


def remove_item(items: Iterable[FeedItem], identity: str) -> list[FeedItem]:
    """Drop a locally deleted item, including wrappers that embed it."""
    target = identity.strip()
    if not target:
        return list(items)

    kept: list[FeedItem] = []
    for item in items:
        if target in item.identities:
            continue
        if item.inner is not None and target in item.inner.identities:
            continue
        kept.append(item)
    return kept


SORTERS = {
    "recent": sort_feed,
    "popular": sort_by_popularity,
}


def prepare_page(
    raw_page: Mapping[str, object],
    *,
    limit: int = DEFAULT_PAGE_SIZE,
    motivation: str | None = ALL_MOTIVATIONS,
    group: bool = True,
    sort: str = "none",
    report: NormalizationReport | None = None,
) -> FeedPage:
    """Turn one raw feed response into a display-ready page.

    Args:
        raw_page: The decoded response, ``{"items": [...], "cursor": ...}``.
        limit: Page size requested from the API; a full page means more
            may follow.
        motivation: Motivation filter, or "all".
        group: Merge adjacent collection wrappers of the same content.
        sort: "none" keeps API order, "recent" or "popular" re-sorts.
        report: Collects problems found while normalizing.

    Returns:
        The reconciled page.
    """
    raw_items = raw_page.get("items")
    if not isinstance(raw_items, list):
        raw_items = []

    items = normalize_items(raw_items, report=report)
    if group:
        items = group_collection_context(items)
    items = reconcile(items)
    items = filter_by_motivation(items, motivation)
    sorter = SORTERS.get(sort)
    if sorter is not None:
        items = sorter(items)
    elif sort != "none":
        logger.warning("Unknown feed sort %r, keeping API order", sort)

    cursor = raw_page.get("cursor")
    return FeedPage(
        items=items,
        cursor=cursor if isinstance(cursor, str) and cursor else None,
        fetched_count=len(raw_items),
        has_more=limit > 0 and len(raw_items) >= limit,
    )
