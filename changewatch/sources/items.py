"""
Pure extraction rules turning a parsed feed into a check outcome.

Feeds are assumed to list entries newest first. Scanning stops at the
first entry that is not strictly newer than the source's watermark, or
whose time cannot be resolved.
"""

import html
import logging
import re
from datetime import datetime, timedelta

from bs4 import BeautifulSoup

from changewatch.sources.schemas import (
    NO_BODY,
    NO_URL,
    CheckOutcome,
    Feed,
    FeedEntry,
    FeedItem,
    SourceChanged,
    SourceUnchanged,
)

logger = logging.getLogger(__name__)

_HTML_TYPE = "text/html"
_PAGE_RELS = frozenset({"alternate", "self"})


def resolve_entry_url(entry: FeedEntry) -> str:
    """
    Pick the URL that best identifies an entry's content.

    Priority:
        1. an alternate/self link of type text/html
        2. the only link
        3. the first of several links
        4. the content element's src
        5. the NO_URL sentinel
    """
    for link in entry.links:
        if link.rel in _PAGE_RELS and link.media_type == _HTML_TYPE:
            return link.href

    if len(entry.links) == 1:
        return entry.links[0].href

    if entry.links:
        logger.info(
            "No html link for %r, falling back to first of %d links",
            entry.title, len(entry.links),
        )
        return entry.links[0].href

    if entry.content_src:
        return entry.content_src

    return NO_URL


def html_to_text(html_content: str) -> str:
    """Extract readable text from an HTML fragment."""
    if not html_content:
        return ""

    soup = BeautifulSoup(html_content, "html.parser")
    for element in soup(["script", "style"]):
        element.decompose()

    text = html.unescape(soup.get_text(separator=" "))
    return re.sub(r"\s+", " ", text).strip()


def entry_body(entry: FeedEntry) -> str:
    """Full content preferred over summary; NO_BODY when neither has text."""
    for candidate in (entry.content, entry.summary):
        if candidate:
            text = html_to_text(candidate)
            if text:
                return text
    return NO_BODY


def extract_new_items(feed: Feed, last_checked: datetime) -> list[FeedItem]:
    """Collect the entries strictly newer than ``last_checked``, in feed order."""
    items: list[FeedItem] = []

    for entry in feed.entries:
        if entry.published is None:
            logger.info(
                "Entry %r has no parseable time, treating as end of feed", entry.title
            )
            break
        if entry.published <= last_checked:
            break
        items.append(
            FeedItem(
                title=entry.title,
                url=resolve_entry_url(entry),
                published=entry.published,
                body=entry_body(entry),
            )
        )

    return items


def evaluate_feed(
    feed: Feed,
    last_checked: datetime,
    tolerance: timedelta,
) -> CheckOutcome:
    """
    Decide whether a successfully fetched feed has anything new.

    A feed whose own 'updated' time lies more than ``tolerance`` before
    the watermark is unchanged without looking at its entries.
    """
    if feed.updated is not None and feed.updated < last_checked - tolerance:
        return SourceUnchanged()

    items = extract_new_items(feed, last_checked)
    if not items:
        return SourceUnchanged()

    return SourceChanged(
        most_recent_item_time=items[0].published,
        items=tuple(items),
        feed_title=feed.title,
    )
