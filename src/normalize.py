"""Boundary normalization: raw API records to canonical models.

The annotation API is loose about record shape: identities arrive as ``uri``
or ``id``, authors as ``creator`` or ``author``, text as ``text`` or
``body.value``, targets as a bare URL or an object. Everything is resolved
here, once, so feed and thread logic only ever sees ``FeedItem`` and
``ReplyRecord``.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from datetime import UTC, datetime

from margin.errors import NormalizationReport
from margin.items import (
    Author,
    CollectionRef,
    FeedItem,
    ItemKind,
    Motivation,
    ReplyRecord,
    Target,
    TextQuoteSelector,
)

logger = logging.getLogger(__name__)

_CONTENT_KINDS = (ItemKind.ANNOTATION, ItemKind.HIGHLIGHT, ItemKind.BOOKMARK)
_INNER_KEYS = ("annotation", "highlight", "bookmark")


# ── Field helpers ────────────────────────────────────────────────────


def _str(raw: Mapping[str, object], *keys: str) -> str:
    """First non-empty string value among ``keys``."""
    for key in keys:
        value = raw.get(key)
        if isinstance(value, str) and value:
            return value
    return ""


def _int(raw: Mapping[str, object], key: str) -> int:
    value = raw.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        return 0
    return value


def _nested_uri(raw: Mapping[str, object], *path: str) -> str:
    node: object = raw
    for key in path:
        if not isinstance(node, Mapping):
            return ""
        node = node.get(key)
    return node if isinstance(node, str) else ""


def parse_timestamp(value: object) -> datetime | None:
    """Parse an ISO-8601 timestamp; naive values are taken as UTC."""
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, str) and value:
        try:
            parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
        except ValueError:
            logger.debug("Unparseable timestamp: %r", value)
            return None
    else:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed


def normalize_selector(raw: object) -> TextQuoteSelector | None:
    """Map a raw selector object to a ``TextQuoteSelector``."""
    if isinstance(raw, TextQuoteSelector):
        return raw
    if not isinstance(raw, Mapping):
        return None
    kwargs: dict[str, str] = {"exact": _str(raw, "exact")}
    selector_type = _str(raw, "type")
    if selector_type:
        kwargs["type"] = selector_type
    return TextQuoteSelector(
        **kwargs,
        prefix=_str(raw, "prefix") or None,
        suffix=_str(raw, "suffix") or None,
    )


def normalize_author(raw: object) -> Author:
    if isinstance(raw, str):
        return Author(did=raw)
    if not isinstance(raw, Mapping):
        return Author()
    return Author(
        did=_str(raw, "did"),
        handle=_str(raw, "handle"),
        display_name=_str(raw, "displayName", "display_name"),
        avatar=_str(raw, "avatar"),
    )


def _record_author(raw: Mapping[str, object]) -> Author:
    return normalize_author(raw.get("creator") or raw.get("author"))


def _collection_ref(raw: object) -> CollectionRef | None:
    if not isinstance(raw, Mapping):
        return None
    return CollectionRef(
        uri=_str(raw, "uri"),
        name=_str(raw, "name"),
        icon=_str(raw, "icon"),
    )


def _text(raw: Mapping[str, object]) -> str:
    text = _str(raw, "text")
    if text:
        return text
    body = raw.get("body")
    if isinstance(body, Mapping):
        return _str(body, "value")
    return ""


def _target(raw: Mapping[str, object]) -> Target | None:
    """Resolve the target page from a string, an object, or ``url`` fallbacks."""
    title = _str(raw, "title")
    selector = normalize_selector(raw.get("selector"))
    target = raw.get("target")

    if isinstance(target, str) and target:
        return Target(source=target, title=title, selector=selector)
    if isinstance(target, Mapping):
        title = _str(target, "title") or title
        selector = normalize_selector(target.get("selector")) or selector
        source = _str(target, "source")
        if source:
            return Target(source=source, title=title, selector=selector)

    url = _str(raw, "url", "targetUrl")
    if url:
        return Target(source=url, title=title, selector=selector)
    return None


def _motivation(raw: Mapping[str, object]) -> str:
    return _str(raw, "motivation") or Motivation.HIGHLIGHTING


def _content_kind(raw: Mapping[str, object], motivation: str) -> ItemKind:
    raw_type = _str(raw, "type")
    for kind in _CONTENT_KINDS:
        if raw_type == kind:
            return kind
    if motivation == Motivation.BOOKMARKING:
        return ItemKind.BOOKMARK
    if motivation == Motivation.COMMENTING:
        return ItemKind.ANNOTATION
    return ItemKind.HIGHLIGHT


def is_collection_record(raw: Mapping[str, object]) -> bool:
    return raw.get("type") == ItemKind.COLLECTION_ITEM or bool(raw.get("collectionUri"))


# ── Feed items ───────────────────────────────────────────────────────


def _normalize_content(raw: Mapping[str, object]) -> FeedItem:
    motivation = _motivation(raw)
    tags = raw.get("tags")
    return FeedItem(
        kind=_content_kind(raw, motivation),
        uri=_str(raw, "uri", "id"),
        id=_str(raw, "id"),
        cid=_str(raw, "cid"),
        author=_record_author(raw),
        created_at=parse_timestamp(raw.get("created") or raw.get("createdAt")),
        motivation=motivation,
        text=_text(raw),
        target=_target(raw),
        tags=[t for t in tags if isinstance(t, str)] if isinstance(tags, list) else [],
        like_count=_int(raw, "likeCount"),
        reply_count=_int(raw, "replyCount"),
    )


def _normalize_wrapper(raw: Mapping[str, object]) -> FeedItem:
    inner: FeedItem | None = None
    for key in _INNER_KEYS:
        candidate = raw.get(key)
        if isinstance(candidate, Mapping) and candidate:
            inner = _normalize_content(candidate)
            break

    context: list[CollectionRef] = []
    context_raw = raw.get("context")
    if isinstance(context_raw, list):
        for entry in context_raw:
            ref = _collection_ref(entry)
            if ref is not None:
                context.append(ref)

    added_by = _record_author(raw)
    created_at = parse_timestamp(raw.get("created") or raw.get("createdAt"))

    return FeedItem(
        kind=ItemKind.COLLECTION_ITEM,
        uri=_str(raw, "uri", "id"),
        id=_str(raw, "id"),
        cid=_str(raw, "cid"),
        author=inner.author if inner is not None and inner.author.did else added_by,
        created_at=created_at or (inner.created_at if inner is not None else None),
        motivation=inner.motivation if inner is not None else _motivation(raw),
        inner=inner,
        collection=_collection_ref(raw.get("collection")),
        context=context,
        added_by=added_by,
    )


def normalize_item(raw: Mapping[str, object]) -> FeedItem:
    """Map one raw feed record to a ``FeedItem``.

    Collection records (``type == "CollectionItem"`` or carrying a
    ``collectionUri``) become wrappers whose ``inner`` holds the embedded
    annotation, highlight, or bookmark.
    """
    if is_collection_record(raw):
        return _normalize_wrapper(raw)
    return _normalize_content(raw)


def normalize_items(
    raws: Iterable[object],
    *,
    report: NormalizationReport | None = None,
) -> list[FeedItem]:
    """Normalize a page of raw feed records, skipping non-object entries."""
    items: list[FeedItem] = []
    for position, raw in enumerate(raws):
        if report is not None:
            report.count_record("feed")
        if not isinstance(raw, Mapping):
            logger.warning("Skipping feed record %d: expected an object, got %s", position, type(raw).__name__)
            if report is not None:
                report.add_issue(
                    "feed",
                    f"record {position}: expected an object, got {type(raw).__name__}",
                    issue_type="malformed_record",
                )
            continue

        item = normalize_item(raw)
        if report is not None:
            if not item.identities:
                report.add_issue(
                    "feed",
                    f"record {position} has no uri or id",
                    issue_type="missing_identity",
                )
            elif item.is_collection_item and item.inner is None:
                report.add_issue(
                    "feed",
                    "collection item embeds no annotation, highlight or bookmark",
                    identity=item.identities[0],
                    issue_type="empty_collection_item",
                )
        items.append(item)
    return items


# ── Replies ──────────────────────────────────────────────────────────


def normalize_reply(raw: Mapping[str, object], *, root_identity: str = "") -> ReplyRecord:
    """Map one raw reply record to a ``ReplyRecord``.

    The parent reference may arrive as ``inReplyTo``, ``parentUri`` or
    ``reply.parent.uri``; the root as ``rootUri`` or ``reply.root.uri``,
    defaulting to the thread being fetched.
    """
    return ReplyRecord(
        identity=_str(raw, "uri", "id"),
        parent_identity=_str(raw, "inReplyTo", "parentUri") or _nested_uri(raw, "reply", "parent", "uri"),
        root_identity=_str(raw, "rootUri") or _nested_uri(raw, "reply", "root", "uri") or root_identity,
        author=_record_author(raw),
        text=_text(raw),
        created_at=parse_timestamp(raw.get("created") or raw.get("createdAt")),
    )


def normalize_replies(
    raws: Iterable[object],
    root_identity: str,
    *,
    report: NormalizationReport | None = None,
) -> list[ReplyRecord]:
    """Normalize a flat reply batch for one thread root."""
    replies: list[ReplyRecord] = []
    for position, raw in enumerate(raws):
        if report is not None:
            report.count_record("replies")
        if not isinstance(raw, Mapping):
            logger.warning("Skipping reply %d: expected an object, got %s", position, type(raw).__name__)
            if report is not None:
                report.add_issue(
                    "replies",
                    f"record {position}: expected an object, got {type(raw).__name__}",
                    issue_type="malformed_record",
                )
            continue

        reply = normalize_reply(raw, root_identity=root_identity)
        if report is not None and not reply.identity:
            report.add_issue(
                "replies",
                f"record {position} has no uri or id",
                issue_type="missing_identity",
            )
        replies.append(reply)
    return replies
