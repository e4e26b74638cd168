"""Text-fragment deep links built from stored quote selectors."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from urllib.parse import quote

from pydantic import ValidationError

from margin.items import FeedItem, TextQuoteSelector

logger = logging.getLogger(__name__)

TEXT_DIRECTIVE = ":~:text="
FRAGMENT_DIRECTIVE = ":~:"

# Characters encodeURIComponent leaves alone besides letters and digits.
_COMPONENT_SAFE = "-_.!~*'()"

SelectorLike = TextQuoteSelector | Mapping[str, object] | None


def _encode(value: str) -> str:
    return quote(value, safe=_COMPONENT_SAFE)


def _as_selector(selector: SelectorLike) -> TextQuoteSelector | None:
    if selector is None or isinstance(selector, TextQuoteSelector):
        return selector
    if isinstance(selector, Mapping):
        try:
            return TextQuoteSelector.model_validate(dict(selector))
        except ValidationError:
            logger.debug("Ignoring malformed selector: %r", selector)
            return None
    return None


def build_anchor_url(base_url: str, selector: SelectorLike) -> str:
    """Build a scroll-to-text URL for a quote selector.

    Args:
        base_url: The page the passage lives on.
        selector: A ``TextQuoteSelector`` (or a mapping of the same shape).

    Returns:
        ``base_url#:~:text=[prefix-,]exact[,-suffix]`` with each part
        percent-encoded on its own, or ``base_url`` unchanged when the
        selector is missing, not a quote selector, or has no exact text.
    """
    quote_selector = _as_selector(selector)
    if quote_selector is None or not quote_selector.is_usable:
        return base_url

    fragment = TEXT_DIRECTIVE
    if quote_selector.prefix:
        fragment += _encode(quote_selector.prefix) + "-,"
    fragment += _encode(quote_selector.exact)
    if quote_selector.suffix:
        fragment += ",-" + _encode(quote_selector.suffix)
    return f"{base_url}#{fragment}"


def strip_text_fragment(url: str) -> str:
    """Drop a fragment directive so the bare page URL can be shown."""
    directive_at = url.find(FRAGMENT_DIRECTIVE)
    if directive_at == -1 or "#" not in url[:directive_at]:
        return url
    return url[:directive_at].rstrip("#")


def quoted_text(selector: SelectorLike) -> str | None:
    """Exact passage text for a usable selector, else None."""
    quote_selector = _as_selector(selector)
    if quote_selector is None or not quote_selector.is_usable:
        return None
    return quote_selector.exact


def anchor_for_item(item: FeedItem) -> str:
    """Deep link for a feed item, or "" when it has no target page."""
    target = item.content.target
    if target is None or not target.source:
        return ""
    return build_anchor_url(target.source, target.selector)
