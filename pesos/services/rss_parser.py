import io
import json
import re
from dataclasses import dataclass
from datetime import datetime, timezone
from html import unescape
from typing import List, Optional

import feedparser

from pesos.services.errors import ParseError

MAX_ENTRIES_PER_FEED = 50
UNTITLED = '•'

# What to store when an entry has no usable publish date
MISSING_DATE_NOW = 'now'
MISSING_DATE_NULL = 'null'
MISSING_DATE_POLICIES = (MISSING_DATE_NOW, MISSING_DATE_NULL)


def strip_html(text: str) -> str:
    """Remove HTML tags and decode entities from text."""
    if not text:
        return ""
    # Remove HTML tags
    text = re.sub(r'<[^>]+>', ' ', text)
    # Decode HTML entities
    text = unescape(text)
    # Clean up whitespace
    text = re.sub(r'\s+', ' ', text).strip()
    return text


def _first_text(item: dict, *keys: str) -> str:
    """First non-empty string value among keys; other JSON types are ignored."""
    for key in keys:
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return ''


@dataclass
class ParsedEntry:
    """A feed entry normalized across RSS, Atom and JSON Feed."""

    title: str
    link: Optional[str]
    publish_date: Optional[datetime]
    content: str = ''


class RSSParser:
    """Parse RSS/Atom/JSON feed bodies into normalized entries."""

    def __init__(self, max_entries: int = MAX_ENTRIES_PER_FEED, untitled: str = UNTITLED,
                 missing_date_policy: str = MISSING_DATE_NOW):
        if missing_date_policy not in MISSING_DATE_POLICIES:
            raise ValueError(
                f"Unknown missing date policy {missing_date_policy!r}, "
                f"expected one of {', '.join(MISSING_DATE_POLICIES)}"
            )
        self.max_entries = max_entries
        self.untitled = untitled
        self.missing_date_policy = missing_date_policy

    def parse(self, text: str, content_type: Optional[str] = None,
              now: Optional[datetime] = None) -> List[ParsedEntry]:
        """
        Parse a fetched feed body.

        Args:
            text: Raw feed body
            content_type: Declared Content-Type header, if any
            now: Timestamp used for entries without a publish date

        Returns:
            At most max_entries normalized entries, in feed order

        Raises:
            ParseError: If the body is not a readable feed
        """
        if now is None:
            now = datetime.utcnow()

        if self._looks_like_json(text, content_type):
            entries = self._parse_json_feed(text, now)
        else:
            entries = self._parse_xml_feed(text, now)

        return entries[:self.max_entries]

    @staticmethod
    def _looks_like_json(text: str, content_type: Optional[str]) -> bool:
        if content_type and 'json' in content_type.lower():
            return True
        return (text or '').lstrip().startswith('{')

    def _parse_xml_feed(self, text: str, now: datetime) -> List[ParsedEntry]:
        # Hand feedparser a stream so it never treats the body as a URL or path
        feed = feedparser.parse(io.BytesIO((text or '').encode('utf-8')))

        if feed.bozo and not feed.entries:
            raise ParseError(f"Failed to parse feed: {feed.bozo_exception}") from feed.bozo_exception
        if not feed.entries and not feed.get('version'):
            raise ParseError("Body is not an RSS or Atom feed")

        return [self._extract_entry(e, now) for e in feed.entries]

    def _extract_entry(self, entry, now: datetime) -> ParsedEntry:
        """Extract entry data from a feedparser entry."""
        published = None
        for field in ('published_parsed', 'updated_parsed'):
            time_struct = entry.get(field)
            if time_struct:
                try:
                    published = datetime(*time_struct[:6])
                    break
                except (TypeError, ValueError):
                    continue

        # Full content (content:encoded, Atom content) before the summary
        content = ''
        if entry.get('content'):
            content = entry.get('content')[0].get('value', '') or ''
        if not content:
            content = entry.get('summary', '') or ''

        return ParsedEntry(
            title=strip_html(entry.get('title', '')) or self.untitled,
            link=(entry.get('link') or '').strip() or None,
            publish_date=self._resolve_date(published, now),
            content=content,
        )

    def _parse_json_feed(self, text: str, now: datetime) -> List[ParsedEntry]:
        try:
            data = json.loads(text)
        except json.JSONDecodeError as e:
            raise ParseError(f"Failed to parse JSON feed: {e}") from e

        if not isinstance(data, dict) or not isinstance(data.get('items'), list):
            raise ParseError("JSON body is not a JSON Feed (missing 'items')")

        entries = []
        for item in data['items']:
            if not isinstance(item, dict):
                continue
            published = (self._parse_iso_date(item.get('date_published'))
                         or self._parse_iso_date(item.get('date_modified')))
            link = _first_text(item, 'url', 'external_url')
            entries.append(ParsedEntry(
                title=strip_html(_first_text(item, 'title')) or self.untitled,
                link=link.strip() or None,
                publish_date=self._resolve_date(published, now),
                content=_first_text(item, 'content_html', 'content_text', 'summary'),
            ))
        return entries

    @staticmethod
    def _parse_iso_date(value) -> Optional[datetime]:
        """Parse an RFC 3339 date into a naive UTC datetime."""
        if not isinstance(value, str) or not value:
            return None
        try:
            parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
        except ValueError:
            return None
        if parsed.tzinfo is not None:
            parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
        return parsed

    def _resolve_date(self, published: Optional[datetime], now: datetime) -> Optional[datetime]:
        if published is not None:
            return published
        if self.missing_date_policy == MISSING_DATE_NOW:
            return now
        return None
