from pesos.services.errors import (
    SyncError,
    FetchError,
    FetchTimeout,
    HttpStatusError,
    ParseError,
    PersistenceError,
    ConcurrencyConflict,
    FatalError,
)
from pesos.services.fetcher import FeedFetcher, FetchedFeed
from pesos.services.rss_parser import RSSParser, ParsedEntry
from pesos.services.dedup import filter_new_entries, dedupe_items, get_user_items
from pesos.services.item_writer import ItemWriter, generate_slug
from pesos.services.failure_tracker import FailureTracker
from pesos.services.run_status import RunStatus
from pesos.services.activity_logger import ActivityLogger
from pesos.services.feed_sync import FeedSynchronizer, SyncStats, FeedStats

__all__ = [
    'SyncError',
    'FetchError',
    'FetchTimeout',
    'HttpStatusError',
    'ParseError',
    'PersistenceError',
    'ConcurrencyConflict',
    'FatalError',
    'FeedFetcher',
    'FetchedFeed',
    'RSSParser',
    'ParsedEntry',
    'filter_new_entries',
    'dedupe_items',
    'get_user_items',
    'ItemWriter',
    'generate_slug',
    'FailureTracker',
    'RunStatus',
    'ActivityLogger',
    'FeedSynchronizer',
    'SyncStats',
    'FeedStats',
]
