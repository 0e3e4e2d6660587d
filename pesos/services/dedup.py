"""Deduplication of feed entries against stored items."""
from typing import Iterable, List, Optional, Sequence

from sqlalchemy import desc

from pesos import db
from pesos.models import Item
from pesos.services.rss_parser import ParsedEntry


def filter_new_entries(user_id: str, source_id: int, entries: Sequence[ParsedEntry]) -> List[ParsedEntry]:
    """
    Return the entries not yet stored for this user and source.

    Entries without a link are dropped, as are repeated links within the
    batch. Existing links are looked up with a single query.
    """
    linked = [e for e in entries if e.link]
    if not linked:
        return []

    links = list({e.link for e in linked})
    existing = {
        url for (url,) in db.session.query(Item.url).filter(
            Item.user_id == user_id,
            Item.source_id == source_id,
            Item.url.in_(links),
        )
    }

    new_entries = []
    seen = set(existing)
    for entry in linked:
        if entry.link in seen:
            continue
        seen.add(entry.link)
        new_entries.append(entry)
    return new_entries


def dedupe_items(items: Iterable) -> list:
    """
    Collapse items sharing (title, url, user) regardless of source.

    The first occurrence wins, so callers should pass items in display
    order. Accepts Item rows or their dict form. Idempotent.
    """
    seen = set()
    result = []
    for item in items:
        if isinstance(item, dict):
            key = (item.get('title'), item.get('url'), item.get('user_id'))
        else:
            key = (item.title, item.url, item.user_id)
        if key in seen:
            continue
        seen.add(key)
        result.append(item)
    return result


def get_user_items(user_id: str, limit: Optional[int] = None) -> List[Item]:
    """
    Items for a user, newest first, with display duplicates removed.

    With a limit, rows are read in pages of twice the limit until enough
    unique items are collected, so large accounts are never loaded whole.
    """
    query = Item.query.filter_by(user_id=user_id).order_by(desc(Item.postdate), desc(Item.id))
    if limit is None:
        return dedupe_items(query.all())
    if limit <= 0:
        return []

    page_size = limit * 2
    items: List[Item] = []
    offset = 0
    while len(items) < limit:
        page = query.offset(offset).limit(page_size).all()
        # Re-dedupe the running list so duplicates across pages collapse too
        items = dedupe_items(items + page)
        if len(page) < page_size:
            break
        offset += page_size
    return items[:limit]
