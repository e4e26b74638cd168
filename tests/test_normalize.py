"""Tests for raw API record normalization."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta, timezone

import pytest

from margin.errors import NormalizationReport
from margin.items import ItemKind, Motivation, TextQuoteSelector
from margin.normalize import (
    normalize_author,
    normalize_item,
    normalize_items,
    normalize_replies,
    normalize_reply,
    normalize_selector,
    parse_timestamp,
)


class TestParseTimestamp:
    def test_zulu_suffix(self) -> None:
        assert parse_timestamp("2026-03-01T10:00:00Z") == datetime(2026, 3, 1, 10, tzinfo=UTC)

    def test_offset_kept(self) -> None:
        parsed = parse_timestamp("2026-03-01T10:00:00+02:00")
        assert parsed is not None
        assert parsed.utcoffset() == timedelta(hours=2)

    def test_naive_taken_as_utc(self) -> None:
        assert parse_timestamp("2026-03-01T10:00:00") == datetime(2026, 3, 1, 10, tzinfo=UTC)

    def test_datetime_passthrough(self) -> None:
        value = datetime(2026, 3, 1, tzinfo=timezone.utc)
        assert parse_timestamp(value) == value

    @pytest.mark.parametrize("value", [None, "", "yesterday", 1700000000, {"$date": 1}])
    def test_unusable_values(self, value: object) -> None:
        assert parse_timestamp(value) is None


class TestNormalizeSelector:
    def test_full_selector(self) -> None:
        selector = normalize_selector(
            {"type": "TextQuoteSelector", "exact": "hi", "prefix": "oh ", "suffix": "!"}
        )
        assert selector == TextQuoteSelector(exact="hi", prefix="oh ", suffix="!")

    def test_empty_context_becomes_none(self) -> None:
        selector = normalize_selector({"exact": "hi", "prefix": "", "suffix": None})
        assert selector is not None
        assert selector.prefix is None
        assert selector.suffix is None

    def test_other_type_kept(self) -> None:
        selector = normalize_selector({"type": "TextPositionSelector", "start": 3})
        assert selector is not None
        assert selector.is_usable is False

    @pytest.mark.parametrize("raw", [None, "exact text", ["a"]])
    def test_non_mapping(self, raw: object) -> None:
        assert normalize_selector(raw) is None


class TestNormalizeAuthor:
    def test_profile_object(self) -> None:
        author = normalize_author(
            {"did": "did:plc:a", "handle": "a.test", "displayName": "Alice", "avatar": "https://img"}
        )
        assert author.did == "did:plc:a"
        assert author.display_name == "Alice"
        assert author.label == "Alice"

    def test_bare_did(self) -> None:
        assert normalize_author("did:plc:a").did == "did:plc:a"

    def test_missing(self) -> None:
        assert normalize_author(None).label == ""


class TestNormalizeItem:
    def test_identity_prefers_uri_and_keeps_id(self) -> None:
        item = normalize_item({"uri": "at://a", "id": "legacy-a"})
        assert item.uri == "at://a"
        assert item.id == "legacy-a"
        assert item.identities == ("at://a", "legacy-a")

    def test_identity_falls_back_to_id(self) -> None:
        item = normalize_item({"id": "at://a"})
        assert item.uri == "at://a"
        assert item.identities == ("at://a",)

    def test_creator_preferred_over_author(self) -> None:
        item = normalize_item({"uri": "x", "creator": {"did": "did:c"}, "author": {"did": "did:a"}})
        assert item.author.did == "did:c"

    def test_created_fields(self) -> None:
        assert normalize_item({"created": "2026-03-01T10:00:00Z"}).created_at is not None
        assert normalize_item({"createdAt": "2026-03-01T10:00:00Z"}).created_at is not None
        assert normalize_item({}).created_at is None

    def test_text_from_body_value(self) -> None:
        item = normalize_item({"uri": "x", "body": {"type": "TextualBody", "value": "note"}})
        assert item.text == "note"

    def test_text_field_wins(self) -> None:
        item = normalize_item({"uri": "x", "text": "direct", "body": {"value": "nested"}})
        assert item.text == "direct"

    def test_target_string(self) -> None:
        item = normalize_item(
            {"target": "https://ex.com/a", "title": "Page", "selector": {"exact": "quote"}}
        )
        assert item.target is not None
        assert item.target.source == "https://ex.com/a"
        assert item.target.title == "Page"
        assert item.target.selector == TextQuoteSelector(exact="quote")

    def test_target_object(self) -> None:
        item = normalize_item(
            {"target": {"source": "https://ex.com/a", "title": "T", "selector": {"exact": "q"}}}
        )
        assert item.target is not None
        assert item.target.title == "T"
        assert item.target.selector is not None
        assert item.target.selector.exact == "q"

    def test_target_object_without_source_uses_url(self) -> None:
        item = normalize_item({"target": {"selector": {"exact": "q"}}, "url": "https://ex.com/u"})
        assert item.target is not None
        assert item.target.source == "https://ex.com/u"
        assert item.target.selector is not None

    def test_target_url_fallbacks(self) -> None:
        assert normalize_item({"url": "https://ex.com/u"}).target.source == "https://ex.com/u"
        assert normalize_item({"targetUrl": "https://ex.com/t"}).target.source == "https://ex.com/t"

    def test_no_target(self) -> None:
        assert normalize_item({"uri": "x"}).target is None

    @pytest.mark.parametrize(
        ("raw", "kind", "motivation"),
        [
            ({"motivation": "bookmarking"}, ItemKind.BOOKMARK, Motivation.BOOKMARKING),
            ({"motivation": "commenting"}, ItemKind.ANNOTATION, Motivation.COMMENTING),
            ({}, ItemKind.HIGHLIGHT, Motivation.HIGHLIGHTING),
            ({"type": "Annotation"}, ItemKind.ANNOTATION, Motivation.HIGHLIGHTING),
            ({"type": "Bookmark", "motivation": "describing"}, ItemKind.BOOKMARK, "describing"),
        ],
    )
    def test_kind_and_motivation(self, raw: dict, kind: ItemKind, motivation: str) -> None:
        item = normalize_item(raw)
        assert item.kind == kind
        assert item.motivation == motivation

    def test_tags_and_counts(self) -> None:
        item = normalize_item({"tags": ["a", 3, "b"], "likeCount": 4, "replyCount": True})
        assert item.tags == ["a", "b"]
        assert item.like_count == 4
        assert item.reply_count == 0

    def test_wrong_typed_fields_ignored(self) -> None:
        item = normalize_item({"uri": 42, "id": ["x"], "text": None, "target": 7})
        assert item.identities == ()
        assert item.text == ""
        assert item.target is None


class TestNormalizeCollectionItem:
    def _raw(self, **overrides: object) -> dict[str, object]:
        raw: dict[str, object] = {
            "type": "CollectionItem",
            "uri": "at://bob/collectionItem/1",
            "createdAt": "2026-03-02T09:00:00Z",
            "creator": {"did": "did:plc:bob", "handle": "bob.test"},
            "collection": {"uri": "at://bob/collection/1", "name": "Reading", "icon": "icon:book"},
            "annotation": {
                "uri": "at://alice/annotation/1",
                "motivation": "commenting",
                "text": "Nice",
                "createdAt": "2026-03-01T09:00:00Z",
                "author": {"did": "did:plc:alice"},
            },
        }
        raw.update(overrides)
        return raw

    def test_wrapper_fields(self) -> None:
        item = normalize_item(self._raw())
        assert item.kind == ItemKind.COLLECTION_ITEM
        assert item.uri == "at://bob/collectionItem/1"
        assert item.collection is not None
        assert item.collection.name == "Reading"
        assert item.collection.icon == "icon:book"
        assert item.added_by is not None
        assert item.added_by.did == "did:plc:bob"

    def test_wrapper_identity_prefers_uri_and_keeps_id(self) -> None:
        item = normalize_item(self._raw(id="ci-1"))
        assert item.uri == "at://bob/collectionItem/1"
        assert item.id == "ci-1"
        assert item.identities == ("at://bob/collectionItem/1", "ci-1")

    def test_inner_content(self) -> None:
        item = normalize_item(self._raw())
        assert item.inner is not None
        assert item.inner.kind == ItemKind.ANNOTATION
        assert item.inner.uri == "at://alice/annotation/1"
        assert item.content is item.inner
        assert item.author.did == "did:plc:alice"
        assert item.motivation == Motivation.COMMENTING

    def test_collection_uri_marks_wrapper(self) -> None:
        raw = self._raw(collectionUri="at://bob/collection/1")
        del raw["type"]
        assert normalize_item(raw).is_collection_item

    def test_inner_from_highlight_key(self) -> None:
        raw = self._raw()
        raw["highlight"] = raw.pop("annotation")
        raw["highlight"]["motivation"] = "highlighting"  # type: ignore[index]
        item = normalize_item(raw)
        assert item.inner is not None
        assert item.inner.kind == ItemKind.HIGHLIGHT

    def test_created_at_prefers_wrapper(self) -> None:
        item = normalize_item(self._raw())
        assert item.created_at == datetime(2026, 3, 2, 9, tzinfo=UTC)

    def test_created_at_falls_back_to_inner(self) -> None:
        raw = self._raw()
        del raw["createdAt"]
        assert normalize_item(raw).created_at == datetime(2026, 3, 1, 9, tzinfo=UTC)

    def test_inner_without_author_uses_curator(self) -> None:
        raw = self._raw()
        del raw["annotation"]["author"]  # type: ignore[attr-defined]
        assert normalize_item(raw).author.did == "did:plc:bob"

    def test_missing_inner(self) -> None:
        raw = self._raw()
        del raw["annotation"]
        item = normalize_item(raw)
        assert item.inner is None
        assert item.content is item

    def test_context_list(self) -> None:
        raw = self._raw(context=[{"uri": "c1", "name": "One"}, "junk", {"uri": "c2", "name": "Two"}])
        assert [c.name for c in normalize_item(raw).context] == ["One", "Two"]


class TestNormalizeItems:
    def test_skips_non_objects(self) -> None:
        items = normalize_items([{"uri": "a"}, None, "b", {"uri": "c"}])
        assert [i.uri for i in items] == ["a", "c"]

    def test_report(self) -> None:
        report = NormalizationReport()
        normalize_items(
            [
                {"uri": "a"},
                17,
                {"text": "anonymous"},
                {"type": "CollectionItem", "uri": "w"},
            ],
            report=report,
        )
        assert report.records_seen == {"feed": 4}
        assert [i.issue_type for i in report.issues] == [
            "malformed_record",
            "missing_identity",
            "empty_collection_item",
        ]
        assert report.issues[2].identity == "w"


class TestNormalizeReply:
    def test_in_reply_to(self) -> None:
        reply = normalize_reply({"uri": "r2", "inReplyTo": "r1", "text": "hey"}, root_identity="root")
        assert reply.identity == "r2"
        assert reply.parent_identity == "r1"
        assert reply.root_identity == "root"
        assert reply.text == "hey"

    def test_parent_uri(self) -> None:
        assert normalize_reply({"id": "r2", "parentUri": "r1"}).parent_identity == "r1"

    def test_strong_ref_shape(self) -> None:
        reply = normalize_reply(
            {
                "uri": "r2",
                "reply": {"parent": {"uri": "r1", "cid": "c1"}, "root": {"uri": "root", "cid": "c0"}},
                "body": {"value": "nested"},
            }
        )
        assert reply.parent_identity == "r1"
        assert reply.root_identity == "root"
        assert reply.text == "nested"

    def test_root_uri_field_wins(self) -> None:
        reply = normalize_reply({"uri": "r", "rootUri": "explicit"}, root_identity="fallback")
        assert reply.root_identity == "explicit"

    def test_missing_parent(self) -> None:
        assert normalize_reply({"uri": "r"}).parent_identity == ""

    def test_author_and_time(self) -> None:
        reply = normalize_reply(
            {"uri": "r", "author": {"handle": "a.test"}, "createdAt": "2026-03-01T10:00:00Z"}
        )
        assert reply.author.handle == "a.test"
        assert reply.created_at == datetime(2026, 3, 1, 10, tzinfo=UTC)


class TestNormalizeReplies:
    def test_report(self) -> None:
        report = NormalizationReport()
        replies = normalize_replies(
            [{"uri": "r1", "inReplyTo": "root"}, ["bad"], {"inReplyTo": "r1"}],
            "root",
            report=report,
        )
        assert [r.identity for r in replies] == ["r1", ""]
        assert all(r.root_identity == "root" for r in replies)
        assert report.records_seen == {"replies": 3}
        assert [i.issue_type for i in report.issues] == ["malformed_record", "missing_identity"]
